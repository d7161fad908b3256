"""
Check-in Platform
Theme catalogue and visibility overrides.

Models:
    - Theme: survey topic with default visibility and readiness flag
    - ThemeQuestion: fixed question template (max 5 per theme)
    - ThemeOverride: org/team scoped visibility exception
"""

from datetime import datetime, timezone

from sqlalchemy import text

from checkin.models import db

# ── Constants ────────────────────────────────────────────────────────────────

THEME_VISIBILITIES = {"open", "restricted"}
MAX_FIXED_QUESTIONS = 5


class Theme(db.Model):
    """
    Survey topic.  Read-mostly catalogue row.

    ``default_visibility`` decides how overrides are read:
    open themes are allowed unless excluded, restricted themes are
    denied unless explicitly included.
    """

    __tablename__ = "themes"

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, default="")
    default_visibility = db.Column(db.String(20), nullable=False, default="open",
                                   comment="open | restricted")
    is_ready = db.Column(db.Boolean, nullable=False, default=True,
                         comment="Unready themes are never offered")
    sort_order = db.Column(db.Integer, nullable=False, default=0)
    gives_summary = db.Column(db.Boolean, nullable=False, default=True,
                              comment="False skips summary/score generation")
    scoring_rubric = db.Column(db.Text, default="",
                               comment="Guidance handed to the completion service for scoring")
    goal = db.Column(db.Text, default="", comment="Conversation goal shown to the agent")

    created_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc))

    questions = db.relationship(
        "ThemeQuestion", backref="theme", lazy="select",
        order_by="ThemeQuestion.position", cascade="all, delete-orphan",
    )

    def to_dict(self, include_questions=False):
        d = {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "default_visibility": self.default_visibility,
            "is_ready": self.is_ready,
            "sort_order": self.sort_order,
            "gives_summary": self.gives_summary,
        }
        if include_questions:
            d["questions"] = [q.to_dict() for q in self.questions]
        return d

    def __repr__(self):
        return f"<Theme {self.id}: {self.title} [{self.default_visibility}]>"


class ThemeQuestion(db.Model):
    """One fixed question of a theme's template."""

    __tablename__ = "theme_questions"
    __table_args__ = (
        db.UniqueConstraint("theme_id", "position", name="uq_theme_question_position"),
    )

    id = db.Column(db.Integer, primary_key=True)
    theme_id = db.Column(db.Integer, db.ForeignKey("themes.id", ondelete="CASCADE"),
                         nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False, comment="1-based order within the theme")
    text = db.Column(db.Text, nullable=False)
    explanation = db.Column(db.Text, default="")

    def to_dict(self):
        return {
            "id": self.id,
            "theme_id": self.theme_id,
            "position": self.position,
            "text": self.text,
            "explanation": self.explanation,
        }


class ThemeOverride(db.Model):
    """
    Visibility exception keyed by (organization, theme, team|null).

    A null team id is the org-wide scope.  NULLs compare distinct in
    a plain unique constraint, so each scope gets its own partial index.
    """

    __tablename__ = "theme_overrides"
    __table_args__ = (
        db.Index(
            "uq_theme_override_org_scope", "organization_id", "theme_id",
            unique=True,
            sqlite_where=text("team_id IS NULL"),
            postgresql_where=text("team_id IS NULL"),
        ),
        db.Index(
            "uq_theme_override_team_scope", "organization_id", "theme_id", "team_id",
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
    visible = db.Column(db.Boolean, nullable=False)

    updated_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "theme_id": self.theme_id,
            "team_id": self.team_id,
            "visible": self.visible,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        scope = f"team={self.team_id}" if self.team_id else "org-wide"
        return f"<ThemeOverride org={self.organization_id} theme={self.theme_id} {scope} visible={self.visible}>"
