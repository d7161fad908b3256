"""
Check-in Platform
Append-only audit trail of lifecycle, settings and retention events.

    record_audit(entity_type="conversation", entity_id=conv.id,
                 action="conversation.complete", actor=member.email,
                 organization_id=conv.organization_id, diff={"reason": "clear_enough"})

Rows are written in a savepoint of the caller's transaction: the caller
still owns the commit, and a failing audit insert is logged instead of
taking the business write down with it.
"""

import json
import logging
from datetime import datetime, timezone

from sqlalchemy.exc import SQLAlchemyError

from checkin.models import db

logger = logging.getLogger(__name__)

AUDIT_ACTIONS = frozenset({
    "conversation.create",
    "conversation.complete",
    "theme.create",
    "theme.update",
    "theme_override.set",
    "insight.generate",
    "top_actions.generate",
    "settings.update",
    "team.create",
    "team.archive",
    "member.assign_team",
    "retention.anonymize",
    "retention.delete",
})


class AuditLog(db.Model):
    """One audited event.  ``diff_json`` holds old/new values or sweep counts."""

    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("idx_audit_entity", "entity_type", "entity_id"),
        db.Index("idx_audit_org", "organization_id"),
        db.Index("idx_audit_action", "action"),
        db.Index("idx_audit_ts", "timestamp"),
    )

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.Integer, db.ForeignKey("organizations.id", ondelete="SET NULL"),
                                nullable=True)
    entity_type = db.Column(db.String(30), nullable=False)
    entity_id = db.Column(db.String(36), nullable=False)
    action = db.Column(db.String(60), nullable=False)
    actor = db.Column(db.String(150), nullable=False, default="system",
                      comment="member e-mail, or 'system' for sweeps")
    actor_member_id = db.Column(db.Integer, db.ForeignKey("members.id", ondelete="SET NULL"),
                                nullable=True)
    diff_json = db.Column(db.Text, default="{}")
    timestamp = db.Column(db.DateTime(timezone=True), nullable=False,
                          default=lambda: datetime.now(timezone.utc))

    @property
    def diff(self) -> dict:
        try:
            return json.loads(self.diff_json or "{}")
        except (json.JSONDecodeError, TypeError):
            return {}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "entity": f"{self.entity_type}/{self.entity_id}",
            "action": self.action,
            "actor": self.actor,
            "actor_member_id": self.actor_member_id,
            "diff": self.diff,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }

    def __repr__(self):
        return f"<AuditLog {self.action} {self.entity_type}/{self.entity_id}>"


def record_audit(*, entity_type: str, entity_id, action: str, actor: str = "system",
                 organization_id: int | None = None, actor_member_id: int | None = None,
                 diff: dict | None = None, session=None) -> AuditLog | None:
    """Flush one AuditLog inside a savepoint; None when the insert failed."""
    if action not in AUDIT_ACTIONS:
        logger.warning("Unregistered audit action %r", action)
    session = session or db.session
    row = AuditLog(
        organization_id=organization_id,
        entity_type=entity_type,
        entity_id=str(entity_id),
        action=action,
        actor=actor,
        actor_member_id=actor_member_id,
        diff_json=json.dumps(diff or {}, default=str),
    )
    try:
        with session.begin_nested():
            session.add(row)
            session.flush()
    except SQLAlchemyError as exc:
        logger.warning("Audit write failed for %s %s/%s: %s", action, entity_type, entity_id, exc)
        return None
    return row
