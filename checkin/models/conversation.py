"""
Check-in Platform
Conversation domain models.

Models:
    - Conversation: one member working through one theme within one period
    - ConversationHistoryItem: append-only question/answer log
    - ConversationResult: derived summary/score/actions (one per conversation)
    - ThemeEvaluation: member's rating of a completed conversation
"""

from datetime import datetime, timezone

from sqlalchemy import text

from checkin.models import db

# ── Constants ────────────────────────────────────────────────────────────────

CONVERSATION_STATUSES = {"open", "completed"}
COMPLETION_REASONS = {"max_answers", "clear_enough"}
HISTORY_KINDS = {"fixed_question", "followup", "annotation"}
ANSWERABLE_KINDS = {"fixed_question", "followup"}

MIN_SCORE = 1
MAX_SCORE = 10
MAX_FOLLOWUP_ACTIONS = 5


def _iso(value):
    return value.isoformat() if value else None


class Conversation(db.Model):
    """
    One instance of a member progressing through a theme.

    ``period_key`` ("YYYY-MM") is derived from ``started_at`` at creation
    and stored so the one-per-period rule can be enforced by an index.
    Anonymized rows drop out of that index.
    """

    __tablename__ = "conversations"
    __table_args__ = (
        db.Index(
            "uq_conversation_member_theme_period",
            "member_id", "theme_id", "period_key",
            unique=True,
            sqlite_where=text("anonymized_at IS NULL"),
            postgresql_where=text("anonymized_at IS NULL"),
        ),
        db.Index("ix_conversation_org_theme", "organization_id", "theme_id"),
        db.Index("ix_conversation_status_ended", "status", "ended_at"),
    )

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.Integer, db.ForeignKey("organizations.id", ondelete="CASCADE"),
                                nullable=False)
    member_id = db.Column(db.Integer, db.ForeignKey("members.id", ondelete="CASCADE"),
                          nullable=False, index=True)
    theme_id = db.Column(db.Integer, db.ForeignKey("themes.id", ondelete="CASCADE"),
                         nullable=False)
    team_id = db.Column(db.Integer, db.ForeignKey("teams.id", ondelete="SET NULL"),
                        nullable=True, index=True,
                        comment="Member's team at creation time")
    period_key = db.Column(db.String(7), nullable=False, comment="YYYY-MM of started_at")

    status = db.Column(db.String(20), nullable=False, default="open",
                       comment="open | completed")
    completion_reason = db.Column(db.String(20), nullable=True,
                                  comment="max_answers | clear_enough")
    started_at = db.Column(db.DateTime(timezone=True), nullable=False,
                           default=lambda: datetime.now(timezone.utc))
    ended_at = db.Column(db.DateTime(timezone=True), nullable=True)
    anonymized_at = db.Column(db.DateTime(timezone=True), nullable=True)

    history = db.relationship(
        "ConversationHistoryItem", backref="conversation", lazy="select",
        order_by="ConversationHistoryItem.sequence",
        cascade="all, delete-orphan", passive_deletes=True,
    )
    result = db.relationship(
        "ConversationResult", backref="conversation", uselist=False,
        cascade="all, delete-orphan", passive_deletes=True,
    )

    @property
    def is_open(self) -> bool:
        return self.status == "open"

    def to_dict(self):
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "member_id": self.member_id,
            "theme_id": self.theme_id,
            "team_id": self.team_id,
            "period": self.period_key,
            "status": self.status,
            "completion_reason": self.completion_reason,
            "started_at": _iso(self.started_at),
            "ended_at": _iso(self.ended_at),
            "anonymized_at": _iso(self.anonymized_at),
        }

    def __repr__(self):
        return f"<Conversation {self.id} member={self.member_id} theme={self.theme_id} [{self.status}]>"


class ConversationHistoryItem(db.Model):
    """Append-only entry.  ``sequence`` is strictly increasing per conversation."""

    __tablename__ = "conversation_history_items"
    __table_args__ = (
        db.UniqueConstraint("conversation_id", "sequence", name="uq_history_conversation_sequence"),
    )

    id = db.Column(db.Integer, primary_key=True)
    conversation_id = db.Column(db.Integer, db.ForeignKey("conversations.id", ondelete="CASCADE"),
                                nullable=False, index=True)
    sequence = db.Column(db.Integer, nullable=False)
    kind = db.Column(db.String(20), nullable=False,
                     comment="fixed_question | followup | annotation")
    question_id = db.Column(db.Integer, db.ForeignKey("theme_questions.id", ondelete="SET NULL"),
                            nullable=True)
    text = db.Column(db.Text, nullable=False, default="", comment="Question or annotation text")
    answer = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "sequence": self.sequence,
            "kind": self.kind,
            "question_id": self.question_id,
            "text": self.text,
            "answer": self.answer,
            "created_at": _iso(self.created_at),
        }


class ConversationResult(db.Model):
    """
    Derived output of a completed conversation.

    Summary/score and actions are owned by different writers and are
    merged field-by-field; see services/result_store.py.
    """

    __tablename__ = "conversation_results"

    id = db.Column(db.Integer, primary_key=True)
    conversation_id = db.Column(db.Integer, db.ForeignKey("conversations.id", ondelete="CASCADE"),
                                nullable=False, unique=True)
    member_id = db.Column(db.Integer, db.ForeignKey("members.id", ondelete="CASCADE"),
                          nullable=False, index=True)
    theme_id = db.Column(db.Integer, db.ForeignKey("themes.id", ondelete="CASCADE"),
                         nullable=False, index=True)
    period_key = db.Column(db.String(7), nullable=False)
    round_number = db.Column(db.Integer, nullable=False, default=1,
                             comment="Rank among the member's completed conversations for the theme")

    summary = db.Column(db.Text, nullable=True)
    score = db.Column(db.Integer, nullable=True, comment="1..10")
    summary_fallback = db.Column(db.Boolean, nullable=False, default=False,
                                 comment="summary is canned text after a contract violation")
    actions = db.Column(db.JSON, nullable=True, comment="0..5 follow-up action strings")
    actions_rationale = db.Column(db.Text, nullable=True)

    summary_generated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    actions_generated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "conversation_id": self.conversation_id,
            "member_id": self.member_id,
            "theme_id": self.theme_id,
            "period": self.period_key,
            "round_number": self.round_number,
            "summary": self.summary,
            "score": self.score,
            "summary_fallback": bool(self.summary_fallback),
            "actions": self.actions,
            "actions_rationale": self.actions_rationale,
            "summary_generated_at": _iso(self.summary_generated_at),
            "actions_generated_at": _iso(self.actions_generated_at),
        }

    def __repr__(self):
        return f"<ConversationResult conversation={self.conversation_id} round={self.round_number}>"


class ThemeEvaluation(db.Model):
    """Member's 1..10 rating of a completed conversation, at most once."""

    __tablename__ = "theme_evaluations"

    id = db.Column(db.Integer, primary_key=True)
    conversation_id = db.Column(db.Integer, db.ForeignKey("conversations.id", ondelete="CASCADE"),
                                nullable=False, unique=True)
    member_id = db.Column(db.Integer, db.ForeignKey("members.id", ondelete="CASCADE"),
                          nullable=False, index=True)
    theme_id = db.Column(db.Integer, db.ForeignKey("themes.id", ondelete="CASCADE"),
                         nullable=False)
    score = db.Column(db.Integer, nullable=False)
    remark = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "conversation_id": self.conversation_id,
            "member_id": self.member_id,
            "theme_id": self.theme_id,
            "score": self.score,
            "remark": self.remark,
            "created_at": _iso(self.created_at),
        }
