"""
Check-in Platform
Persisted state of the background sweeps (one ScheduledJob row per job name).
"""

from datetime import datetime, timezone

from checkin.models import db


def _utcnow():
    return datetime.now(timezone.utc)


class ScheduledJob(db.Model):
    """Schedule config, enable switch and last-run bookkeeping of a sweep.

    ``schedule_config`` is informational (``{"hour", "minute", "description"}``);
    the trigger lives outside the process.
    """

    __tablename__ = "scheduled_jobs"

    id = db.Column(db.Integer, primary_key=True)
    job_name = db.Column(db.String(100), unique=True, nullable=False)
    description = db.Column(db.String(500), default="")
    schedule_type = db.Column(db.String(30), default="cron")
    schedule_config = db.Column(db.JSON, default=dict)
    status = db.Column(db.String(20), default="active", comment="active | paused")
    is_enabled = db.Column(db.Boolean, default=True)

    last_run_at = db.Column(db.DateTime(timezone=True), nullable=True)
    last_run_status = db.Column(db.String(20), nullable=True, comment="success | failed | skipped")
    last_run_duration_ms = db.Column(db.Integer, nullable=True)
    last_run_result = db.Column(db.JSON, nullable=True)
    run_count = db.Column(db.Integer, default=0)
    error_count = db.Column(db.Integer, default=0)
    last_error = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def record_run(self, *, status="success", duration_ms=0, result=None, error=None):
        self.run_count = (self.run_count or 0) + 1
        self.last_run_at = _utcnow()
        self.last_run_status = status
        self.last_run_duration_ms = duration_ms
        self.last_run_result = result
        if status != "failed":
            return
        self.error_count = (self.error_count or 0) + 1
        self.last_error = str(error) if error else None

    def to_dict(self):
        data = {
            column: getattr(self, column)
            for column in ("job_name", "description", "schedule_type", "schedule_config",
                           "status", "is_enabled", "last_run_status", "last_run_duration_ms",
                           "last_run_result", "run_count", "error_count", "last_error")
        }
        data["last_run_at"] = self.last_run_at.isoformat() if self.last_run_at else None
        return data

    def __repr__(self):
        return f"<ScheduledJob {self.job_name} enabled={self.is_enabled}>"
