"""
Retention sweeps, run off the request path by the scheduler.

    anonymize:  completed conversations with ended_at < now - anonymize_after_days
                and no anonymized_at get anonymized_at = now
    delete:     completed conversations with ended_at < now - delete_after_days
                are removed together with their history and results

Open conversations are never touched.  Each organization is processed in
its own savepoint; one failing org is logged and the sweep continues.
"""

import logging
from datetime import timedelta

from sqlalchemy import delete, update
from sqlalchemy.exc import SQLAlchemyError

from checkin.models import db
from checkin.models.audit import record_audit
from checkin.models.conversation import Conversation
from checkin.models.organization import Organization
from checkin.services import period_clock

logger = logging.getLogger(__name__)


class RetentionSweeper:
    """Per-organization anonymization and deletion passes."""

    def __init__(self, session=None, clock=None):
        self.session = session or db.session
        self.clock = clock or period_clock.utcnow

    @staticmethod
    def anonymize_cutoff(org: Organization, now):
        return now - timedelta(days=org.anonymize_after_days)

    @staticmethod
    def delete_cutoff(org: Organization, now):
        return now - timedelta(days=org.delete_after_days)

    def anonymize(self, org: Organization) -> int:
        now = self.clock()
        cutoff = self.anonymize_cutoff(org, now)
        result = self.session.execute(
            update(Conversation)
            .where(
                Conversation.organization_id == org.id,
                Conversation.status == "completed",
                Conversation.ended_at.isnot(None),
                Conversation.ended_at < cutoff,
                Conversation.anonymized_at.is_(None),
            )
            .values(anonymized_at=now)
            .execution_options(synchronize_session=False)
        )
        count = result.rowcount or 0
        if count:
            record_audit(
                entity_type="organization", entity_id=org.id, action="retention.anonymize",
                organization_id=org.id, diff={"count": count, "cutoff": cutoff.isoformat()},
                session=self.session,
            )
        return count

    def delete(self, org: Organization) -> int:
        now = self.clock()
        cutoff = self.delete_cutoff(org, now)
        result = self.session.execute(
            delete(Conversation)
            .where(
                Conversation.organization_id == org.id,
                Conversation.status == "completed",
                Conversation.ended_at.isnot(None),
                Conversation.ended_at < cutoff,
            )
            .execution_options(synchronize_session=False)
        )
        count = result.rowcount or 0
        if count:
            record_audit(
                entity_type="organization", entity_id=org.id, action="retention.delete",
                organization_id=org.id, diff={"count": count, "cutoff": cutoff.isoformat()},
                session=self.session,
            )
        return count

    def sweep(self, mode: str) -> dict:
        """Run ``mode`` ("anonymize" or "delete") over every active organization."""
        if mode not in ("anonymize", "delete"):
            raise ValueError(f"unknown retention mode {mode!r}")
        step = self.anonymize if mode == "anonymize" else self.delete

        orgs = self.session.query(Organization).filter(Organization.active.is_(True)).all()
        results = {"mode": mode, "organizations": 0, "affected": 0, "errors": []}
        for org in orgs:
            try:
                with self.session.begin_nested():
                    affected = step(org)
            except SQLAlchemyError as exc:
                logger.error("Retention %s failed for org %s: %s", mode, org.id, exc, exc_info=True)
                results["errors"].append({"organization_id": org.id, "error": str(exc)})
                continue
            results["organizations"] += 1
            results["affected"] += affected
            if affected:
                logger.info("Retention %s org=%s affected=%d", mode, org.id, affected)

        logger.info("Retention %s done: %d orgs, %d conversations, %d errors",
                    mode, results["organizations"], results["affected"], len(results["errors"]))
        return results
