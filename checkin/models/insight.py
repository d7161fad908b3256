"""
Check-in Platform
Aggregated outputs.

Models:
    - OrganizationInsight: quorum-gated theme aggregate for an org or team
    - TopActionsPlan: member's ranked cross-theme plan for one period
"""

from datetime import datetime, timezone

from sqlalchemy import text

from checkin.models import db

# ── Constants ────────────────────────────────────────────────────────────────

INSIGHT_STATUSES = {"unavailable", "available", "complete"}
ACTION_PRIORITIES = ("high", "medium", "low")


def _iso(value):
    return value.isoformat() if value else None


class OrganizationInsight(db.Model):
    """
    Aggregate keyed by (organization, theme, team|null).

    Team-scoped and org-wide rows are independent keys; regeneration
    replaces the row in place.
    """

    __tablename__ = "organization_insights"
    __table_args__ = (
        db.Index(
            "uq_insight_org_scope", "organization_id", "theme_id",
            unique=True,
            sqlite_where=text("team_id IS NULL"),
            postgresql_where=text("team_id IS NULL"),
        ),
        db.Index(
            "uq_insight_team_scope", "organization_id", "theme_id", "team_id",
            unique=True,
            sqlite_where=text("team_id IS NOT NULL"),
            postgresql_where=text("team_id IS NOT NULL"),
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.Integer, db.ForeignKey("organizations.id", ondelete="CASCADE"),
                                nullable=False, index=True)
    theme_id = db.Column(db.Integer, db.ForeignKey("themes.id", ondelete="CASCADE"),
                         nullable=False)
    team_id = db.Column(db.Integer, db.ForeignKey("teams.id", ondelete="CASCADE"),
                        nullable=True)

    summary = db.Column(db.Text, nullable=True)
    advice = db.Column(db.JSON, nullable=True, comment="[{text, priority 1..3}]")
    signal_words = db.Column(db.JSON, nullable=True)
    mean_score = db.Column(db.Float, nullable=True, comment="Rounded to 1 decimal")
    conversation_count = db.Column(db.Integer, nullable=False, default=0)
    member_count = db.Column(db.Integer, nullable=False, default=0,
                             comment="Members in scope")
    completed_member_count = db.Column(db.Integer, nullable=False, default=0,
                                       comment="Distinct members with a qualifying result")
    status = db.Column(db.String(20), nullable=False, default="unavailable",
                       comment="unavailable | available | complete")
    generated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self):
        return {
            "organization_id": self.organization_id,
            "theme_id": self.theme_id,
            "team_id": self.team_id,
            "summary": self.summary,
            "advice": self.advice or [],
            "signal_words": self.signal_words or [],
            "mean_score": self.mean_score,
            "conversation_count": self.conversation_count,
            "member_count": self.member_count,
            "completed_member_count": self.completed_member_count,
            "status": self.status,
            "generated_at": _iso(self.generated_at),
        }

    def __repr__(self):
        scope = f"team={self.team_id}" if self.team_id else "org-wide"
        return f"<OrganizationInsight org={self.organization_id} theme={self.theme_id} {scope} [{self.status}]>"


class TopActionsPlan(db.Model):
    """Three ranked actions per (member, period).  Regeneration overwrites."""

    __tablename__ = "top_actions_plans"
    __table_args__ = (
        db.UniqueConstraint("member_id", "period_key", name="uq_top_actions_member_period"),
    )

    id = db.Column(db.Integer, primary_key=True)
    member_id = db.Column(db.Integer, db.ForeignKey("members.id", ondelete="CASCADE"),
                          nullable=False, index=True)
    period_key = db.Column(db.String(7), nullable=False)
    actions = db.Column(db.JSON, nullable=False, default=list,
                        comment="[{rank, text, priority, rationale}]")
    general_rationale = db.Column(db.Text, nullable=True)
    source_conversation_ids = db.Column(db.JSON, nullable=False, default=list)
    generated_at = db.Column(db.DateTime(timezone=True),
                             default=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "member_id": self.member_id,
            "period": self.period_key,
            "actions": self.actions or [],
            "general_rationale": self.general_rationale,
            "source_conversation_ids": self.source_conversation_ids or [],
            "generated_at": _iso(self.generated_at),
        }

    def __repr__(self):
        return f"<TopActionsPlan member={self.member_id} period={self.period_key}>"
