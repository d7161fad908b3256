"""
Check-in Platform
Scheduler Service.

The background sweeps (retention, result auto-heal, insight generation)
are plain functions registered by name.  Something outside the process
(cron calling ``flask run-jobs``, or a super-admin through the API)
decides *when*; this module only runs a job and records the outcome on its
ScheduledJob row.

    @register_job("retention_delete")
    def delete_expired_conversations(app): ...

    SchedulerService.run_job("retention_delete")
"""

from __future__ import annotations

import contextlib
import logging
import time
from typing import Callable

from flask import Flask, current_app, has_app_context
from sqlalchemy.exc import SQLAlchemyError

from checkin.models import db
from checkin.models.scheduling import ScheduledJob

logger = logging.getLogger(__name__)

_job_registry: dict[str, Callable] = {}

# Cron-style defaults written when a job row is first created
DEFAULT_SCHEDULES = {
    "retention_anonymize": {"hour": "2", "minute": "0", "description": "Daily at 02:00"},
    "retention_delete": {"hour": "3", "minute": "0", "description": "Daily at 03:00"},
    "result_auto_heal": {"hour": "*", "minute": "15", "description": "Hourly at :15"},
    "insight_auto_generate": {"hour": "23", "minute": "0", "description": "Daily at 23:00"},
}
_FALLBACK_SCHEDULE = {"hour": "0", "minute": "0", "description": "Daily at midnight"}


def register_job(name: str):
    """Register the decorated ``fn(app) -> dict`` under ``name``."""
    def decorator(fn: Callable) -> Callable:
        _job_registry[name] = fn
        return fn
    return decorator


def get_registered_jobs() -> dict[str, Callable]:
    return dict(_job_registry)


def _outcome(job_name, status, duration_ms=0, result=None, error=None) -> dict:
    return {"job_name": job_name, "status": status, "duration_ms": duration_ms,
            "result": result, "error": error}


class SchedulerService:
    """Runs registered jobs inside the app context and keeps their job rows."""

    _app: Flask | None = None

    @classmethod
    def init_app(cls, app: Flask) -> None:
        cls._app = app
        app.extensions["scheduler"] = cls
        logger.info("SchedulerService ready with %d jobs: %s",
                    len(_job_registry), ", ".join(sorted(_job_registry)))

    @classmethod
    def _context(cls):
        """Reuse the caller's app context when it is ours (admin API, tests)."""
        if has_app_context() and current_app._get_current_object() is cls._app:
            return contextlib.nullcontext()
        return cls._app.app_context()

    @staticmethod
    def _row(job_name: str) -> ScheduledJob | None:
        return ScheduledJob.query.filter_by(job_name=job_name).first()

    @classmethod
    def ensure_jobs_registered(cls) -> list[ScheduledJob]:
        """Insert a ScheduledJob row for every registered job that lacks one."""
        if cls._app is None:
            return []
        with cls._context():
            missing = [name for name in _job_registry if cls._row(name) is None]
            rows = []
            for name in missing:
                doc = (_job_registry[name].__doc__ or f"Scheduled job: {name}").strip()
                rows.append(ScheduledJob(
                    job_name=name,
                    description=doc.splitlines()[0],
                    schedule_type="cron",
                    schedule_config=dict(DEFAULT_SCHEDULES.get(name, _FALLBACK_SCHEDULE)),
                    status="active",
                    is_enabled=True,
                ))
            if rows:
                db.session.add_all(rows)
                db.session.commit()
                logger.info("Created job rows: %s", ", ".join(missing))
        return rows

    @classmethod
    def run_job(cls, job_name: str, *, force: bool = False) -> dict:
        """Run ``job_name`` once and record the outcome.

        A disabled job is skipped unless ``force`` (manual runs).  A job that
        raises is rolled back and reported as ``failed``; the scheduler itself
        never raises.
        """
        fn = _job_registry.get(job_name)
        if fn is None:
            return _outcome(job_name, "error", error=f"Unknown job: {job_name}")
        if cls._app is None:
            return _outcome(job_name, "error", error="Scheduler not initialized")

        log_extra = {"job_name": job_name}
        with cls._context():
            row = cls._row(job_name)
            if row is not None and not row.is_enabled and not force:
                logger.info("Job %s is disabled, skipping", job_name, extra=log_extra)
                return _outcome(job_name, "skipped")

            started = time.monotonic()
            try:
                result = fn(cls._app)
                db.session.commit()
            except Exception as exc:  # job boundary: record the failure, keep the scheduler alive
                db.session.rollback()
                logger.exception("Job %s failed: %s", job_name, exc, extra=log_extra)
                outcome = _outcome(job_name, "failed", error=str(exc))
            else:
                outcome = _outcome(job_name, "success", result=result)
            outcome["duration_ms"] = int((time.monotonic() - started) * 1000)

            cls._record(outcome)
            logger.info("Job %s finished: %s in %dms", job_name, outcome["status"],
                        outcome["duration_ms"], extra=log_extra)
        return outcome

    @classmethod
    def _record(cls, outcome: dict) -> None:
        """Store the outcome on the job row; a bookkeeping failure is only logged."""
        result = outcome["result"]
        try:
            row = cls._row(outcome["job_name"])
            if row is None:
                return
            row.record_run(
                status=outcome["status"],
                duration_ms=outcome["duration_ms"],
                result=result if isinstance(result, dict) else {"output": str(result)},
                error=outcome["error"],
            )
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            logger.exception("Could not record run of %s", outcome["job_name"])

    @classmethod
    def list_jobs(cls) -> list[dict]:
        jobs = []
        for name in sorted(_job_registry):
            row = cls._row(name)
            jobs.append({"job_name": name, "registered": True,
                         "db_record": row.to_dict() if row else None})
        return jobs

    @classmethod
    def toggle_job(cls, job_name: str, enabled: bool) -> dict | None:
        """Enable or pause a job; None when it has no row yet."""
        row = cls._row(job_name)
        if row is None:
            return None
        row.is_enabled = enabled
        row.status = "active" if enabled else "paused"
        db.session.commit()
        logger.info("Job %s %s", job_name, "enabled" if enabled else "paused")
        return row.to_dict()
