"""
Check-in Platform
Organization domain models.

Models:
    - Organization: subscribing customer plus its conversation settings
    - Team: optional subdivision scoping visibility and aggregation
    - Member: individual participant (one org, at most one team)
"""

from datetime import datetime, timezone

from checkin.models import db

# ── Constants ────────────────────────────────────────────────────────────────

MEMBER_ROLES = {"member", "org_admin", "team_lead", "super_admin"}

DEFAULT_ACTIVE_MONTHS = [3, 6, 9]
DEFAULT_ANONYMIZE_AFTER_DAYS = 60
DEFAULT_DELETE_AFTER_DAYS = 365


def _default_active_months():
    return list(DEFAULT_ACTIVE_MONTHS)


class Organization(db.Model):
    """
    Subscribing customer.

    The conversation settings live on the row itself: which calendar months
    are open for conversations, whether participation is mandatory and how
    long completed conversations are kept before anonymization/deletion.
    """

    __tablename__ = "organizations"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)

    active_months = db.Column(db.JSON, nullable=False, default=_default_active_months,
                              comment="Calendar months (1..12) open for conversations")
    mandatory = db.Column(db.Boolean, nullable=False, default=True)
    active = db.Column(db.Boolean, nullable=False, default=True,
                       comment="Inactive orgs are skipped by background sweeps")
    anonymize_after_days = db.Column(db.Integer, nullable=False,
                                     default=DEFAULT_ANONYMIZE_AFTER_DAYS)
    delete_after_days = db.Column(db.Integer, nullable=False,
                                  default=DEFAULT_DELETE_AFTER_DAYS)
    description = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    teams = db.relationship("Team", backref="organization", lazy="dynamic")
    members = db.relationship("Member", backref="organization", lazy="dynamic")

    def settings_dict(self):
        return {
            "active_months": sorted(self.active_months or []),
            "mandatory": self.mandatory,
            "active": self.active,
            "anonymize_after_days": self.anonymize_after_days,
            "delete_after_days": self.delete_after_days,
            "description": self.description,
        }

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            **self.settings_dict(),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<Organization {self.id}: {self.name}>"


class Team(db.Model):
    """Subdivision of one organization. Archived teams accept no new links."""

    __tablename__ = "teams"
    __table_args__ = (
        db.UniqueConstraint("organization_id", "name", name="uq_team_org_name"),
    )

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(
        db.Integer, db.ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    name = db.Column(db.String(200), nullable=False)
    archived = db.Column(db.Boolean, nullable=False, default=False)
    archived_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "name": self.name,
            "archived": self.archived,
            "archived_at": self.archived_at.isoformat() if self.archived_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Team {self.id}: {self.name}{' [archived]' if self.archived else ''}>"


class Member(db.Model):
    """Participant. ``team_id`` is optional; ``role`` drives capabilities."""

    __tablename__ = "members"

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(
        db.Integer, db.ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    team_id = db.Column(
        db.Integer, db.ForeignKey("teams.id", ondelete="SET NULL"),
        nullable=True, index=True,
    )
    email = db.Column(db.String(255), nullable=False, unique=True)
    full_name = db.Column(db.String(200), default="")
    role = db.Column(db.String(20), nullable=False, default="member",
                     comment="member | org_admin | team_lead | super_admin")

    created_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc))

    team = db.relationship("Team", foreign_keys=[team_id])

    @property
    def is_super_admin(self) -> bool:
        return self.role == "super_admin"

    def to_dict(self):
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "team_id": self.team_id,
            "email": self.email,
            "full_name": self.full_name,
            "role": self.role,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Member {self.id}: {self.email} ({self.role})>"
