"""
Conversation lifecycle: creation, answer append, completion.

States: open → completed (exactly once).

Creation gates (all must hold, nothing is written otherwise):
    - actor may create conversations and the organization is active
    - the theme is allowed for the actor's org/team (AccessResolver)
    - the current month is active for the org, unless the actor is a
      super-admin or listed in ACTIVE_MONTH_BYPASS_EMAILS
    - no non-anonymized conversation exists for (member, theme, period)

Every mutation re-checks theme access; a revoked theme blocks further
answers and completion of conversations that are already open.

Usage:
    from checkin.services.conversation_service import ConversationStateMachine

    machine = ConversationStateMachine()
    conv = machine.create(actor, theme_id=3)
    item, decision = machine.append_answer(actor, conv.id, {...})
    machine.complete(actor, conv.id, "clear_enough")
"""

import logging

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from checkin.ai import prompts
from checkin.ai.contracts import FollowupDecision, parse_completion
from checkin.ai.gateway import get_gateway
from checkin.core.exceptions import (
    AccessDenied,
    ConflictError,
    NotFoundError,
    PersonalDataBlocked,
    StateConflictError,
    TransientStoreConflict,
    UpstreamContractViolation,
    UpstreamUnavailable,
    ValidationError,
)
from checkin.models import db
from checkin.models.audit import record_audit
from checkin.models.conversation import (
    ANSWERABLE_KINDS,
    COMPLETION_REASONS,
    HISTORY_KINDS,
    Conversation,
    ConversationHistoryItem,
)
from checkin.models.organization import Team
from checkin.models.theme import Theme, ThemeQuestion
from checkin.services import period_clock
from checkin.services.capability import Scope, check_capability, require_capability
from checkin.services.pii_screen import PIIScreen
from checkin.services.theme_access import AccessResolver
from checkin.utils.helpers import config_value
from checkin.utils.retry import retry_with_backoff

logger = logging.getLogger(__name__)

NUDGE_QUESTION = (
    "Could you tell a bit more about that? "
    "For example, what happened, and how did it affect you?"
)
NUDGE_RATIONALE = "answer shorter than the minimum length"

_APPEND_ATTEMPTS = 3


def member_team_id(member) -> int | None:
    """Team id usable as a scope for ``member`` (archived teams count as none)."""
    team = member.team
    if team is None or team.archived:
        return None
    return team.id


def load_history(session, conversation_id: int) -> list[dict]:
    items = (
        session.query(ConversationHistoryItem)
        .filter(ConversationHistoryItem.conversation_id == conversation_id)
        .order_by(ConversationHistoryItem.sequence)
        .all()
    )
    return [i.to_dict() for i in items]


def bypasses_active_month(actor) -> bool:
    if actor.is_super_admin:
        return True
    bypass = config_value("ACTIVE_MONTH_BYPASS_EMAILS", []) or []
    return (actor.email or "").lower() in bypass


class ConversationStateMachine:
    """Gated transitions of one conversation.

    Args:
        session: SQLAlchemy session; defaults to ``db.session``.
        resolver: AccessResolver; defaults to one bound to ``session``.
        gateway: object with ``chat(messages, **kw) -> {"content": ...}``.
        pii: PIIScreen (or anything with ``check(text) -> PIIVerdict``).
        watcher: CompletionWatcher notified after completion, optional.
        clock: zero-arg callable returning an aware UTC datetime.
    """

    def __init__(self, session=None, resolver=None, gateway=None, pii=None,
                 watcher=None, clock=None):
        self.session = session or db.session
        self.resolver = resolver or AccessResolver(self.session)
        self.gateway = gateway
        self.pii = pii or PIIScreen()
        self.watcher = watcher
        self.clock = clock or period_clock.utcnow

    def _gateway(self):
        return self.gateway or get_gateway()

    # ── Lookups ──────────────────────────────────────────────────────────

    def load(self, actor, conversation_id: int, action: str) -> Conversation:
        """Fetch a conversation the actor may act on.

        Conversations of other members read as missing.
        """
        conv = self.session.get(Conversation, conversation_id)
        if conv is None:
            raise NotFoundError("Conversation", conversation_id)
        decision = check_capability(actor, action, Scope(conv.organization_id, member_id=conv.member_id))
        if not decision.allowed:
            if decision.reason in ("not_owner", "other_organization"):
                raise NotFoundError("Conversation", conversation_id)
            raise AccessDenied(getattr(actor, "id", None), action, decision.reason)
        return conv

    def _recheck_access(self, actor, conv: Conversation, action: str) -> None:
        team_id = conv.team_id
        if team_id is not None:
            team = self.session.get(Team, team_id)
            if team is None or team.archived:
                team_id = None
        if not self.resolver.check(conv.organization_id, conv.theme_id, team_id):
            logger.info("Theme %s no longer allowed for conversation %s", conv.theme_id, conv.id)
            raise AccessDenied(actor.id, action, "theme_not_allowed")

    def history_dicts(self, conversation_id: int) -> list[dict]:
        return load_history(self.session, conversation_id)

    # ── Creation ─────────────────────────────────────────────────────────

    def create(self, actor, theme_id: int) -> Conversation:
        """Open a conversation for ``actor`` on ``theme_id`` in the current period.

        Raises:
            AccessDenied: capability, inactive org, theme not allowed or inactive month.
            NotFoundError: unknown theme.
            ConflictError: a conversation already exists for this period.
        """
        action = "conversation.create"
        require_capability(actor, action, Scope(actor.organization_id, member_id=actor.id))

        org = self.resolver.get_organization(actor.organization_id)
        if not org.active:
            raise AccessDenied(actor.id, action, "organization_inactive")

        team_id = member_team_id(actor)
        if not self.resolver.check(org.id, theme_id, team_id):
            raise AccessDenied(actor.id, action, "theme_not_allowed")

        now = self.clock()
        if not period_clock.is_active_month(org, now.month) and not bypasses_active_month(actor):
            raise AccessDenied(actor.id, action, "inactive_month")

        period = period_clock.period_of(now)
        existing = (
            self.session.query(Conversation.id)
            .filter(
                Conversation.member_id == actor.id,
                Conversation.theme_id == theme_id,
                Conversation.period_key == period,
                Conversation.anonymized_at.is_(None),
            )
            .first()
        )
        if existing is not None:
            raise ConflictError("Conversation", "period", period)

        conv = Conversation(
            organization_id=org.id,
            member_id=actor.id,
            theme_id=theme_id,
            team_id=team_id,
            period_key=period,
            status="open",
            started_at=now,
        )
        try:
            with self.session.begin_nested():
                self.session.add(conv)
        except IntegrityError as exc:
            logger.info("Concurrent creation lost for member=%s theme=%s period=%s",
                        actor.id, theme_id, period)
            raise ConflictError("Conversation", "period", period) from exc

        record_audit(
            entity_type="conversation", entity_id=conv.id, action="conversation.create",
            actor=actor.email, actor_member_id=actor.id, organization_id=org.id,
            diff={"theme_id": theme_id, "period": period, "team_id": team_id},
            session=self.session,
        )
        logger.info("Conversation created id=%s member=%s theme=%s period=%s",
                    conv.id, actor.id, theme_id, period)
        return conv

    # ── Answers ──────────────────────────────────────────────────────────

    def _validate_item(self, conv: Conversation, item: dict) -> dict:
        if not isinstance(item, dict):
            raise ValidationError("History item must be an object")
        kind = item.get("kind")
        if kind not in HISTORY_KINDS:
            raise ValidationError("Invalid kind", details={"kind": f"expected one of {sorted(HISTORY_KINDS)}"})

        text = item.get("text")
        answer = item.get("answer")
        if text is not None and not isinstance(text, str):
            raise ValidationError("text must be a string", details={"text": "invalid"})
        if answer is not None and not isinstance(answer, str):
            raise ValidationError("answer must be a string", details={"answer": "invalid"})

        question_id = item.get("question_id")
        question = None
        if question_id is not None:
            if isinstance(question_id, bool) or not isinstance(question_id, int):
                raise ValidationError("question_id must be an integer", details={"question_id": question_id})
            question = self.session.get(ThemeQuestion, question_id)
            if question is None or question.theme_id != conv.theme_id:
                raise ValidationError("Question does not belong to the theme",
                                      details={"question_id": question_id})

        if kind == "fixed_question":
            if question is None:
                raise ValidationError("question_id is required for fixed questions",
                                      details={"question_id": "required"})
            text = text or question.text
        elif not (text or "").strip():
            raise ValidationError("text is required", details={"text": "required"})

        if kind in ANSWERABLE_KINDS:
            if not (answer or "").strip():
                raise ValidationError("answer is required", details={"answer": "required"})
        else:
            answer = None

        return {"kind": kind, "question_id": question_id, "text": text, "answer": answer}

    def _insert_item(self, conv: Conversation, values: dict) -> ConversationHistoryItem:
        """Append with sequence = max + 1; a lost race re-reads the max."""

        def _attempt(_attempt_no):
            last = (
                self.session.query(func.max(ConversationHistoryItem.sequence))
                .filter(ConversationHistoryItem.conversation_id == conv.id)
                .scalar()
            )
            row = ConversationHistoryItem(conversation_id=conv.id, sequence=(last or 0) + 1, **values)
            with self.session.begin_nested():
                self.session.add(row)
            return row

        return retry_with_backoff(
            _attempt, attempts=_APPEND_ATTEMPTS, delay=0.0, retry_on=(IntegrityError,),
            on_exhausted=lambda exc: TransientStoreConflict("ConversationHistoryItem", conv.id, _APPEND_ATTEMPTS),
            label="history append",
        )

    def _already_nudged(self, conv: Conversation, question_id: int | None) -> bool:
        return (
            self.session.query(ConversationHistoryItem.id)
            .filter(
                ConversationHistoryItem.conversation_id == conv.id,
                ConversationHistoryItem.kind == "followup",
                ConversationHistoryItem.question_id == question_id,
                ConversationHistoryItem.text == NUDGE_QUESTION,
            )
            .first()
            is not None
        )

    def _decide(self, actor, conv: Conversation, row: ConversationHistoryItem) -> dict:
        min_chars = config_value("SHORT_ANSWER_MIN_CHARS", 40)
        if (row.kind == "fixed_question"
                and len(row.answer.strip()) < min_chars
                and not self._already_nudged(conv, row.question_id)):
            return {
                "continue": True,
                "reply": "Thank you.",
                "next_question": NUDGE_QUESTION,
                "rationale": NUDGE_RATIONALE,
            }

        theme = self.session.get(Theme, conv.theme_id)
        messages = prompts.followup_decision(
            theme.to_dict(), row.text, row.answer, self.history_dicts(conv.id),
        )
        result = self._gateway().chat(
            messages, purpose=prompts.TASK_FOLLOWUP,
            user=actor.email, organization_id=conv.organization_id,
        )
        decision = parse_completion(result.get("content"), FollowupDecision, purpose=prompts.TASK_FOLLOWUP)
        return decision.to_dict()

    def append_answer(self, actor, conversation_id: int, item: dict, *, decide: bool = True):
        """Append one history item; for answers, decide whether to follow up.

        Returns ``(history_item, decision | None)``.

        Raises:
            StateConflictError: conversation already completed.
            AccessDenied: theme revoked since creation.
            ValidationError / PersonalDataBlocked: bad or sensitive input.
            UpstreamContractViolation: malformed decision from the completion service.
        """
        action = "conversation.write"
        conv = self.load(actor, conversation_id, action)
        if not conv.is_open:
            raise StateConflictError("Conversation", conv.id, conv.status)
        self._recheck_access(actor, conv, action)

        values = self._validate_item(conv, item)
        screened = values["answer"] if values["kind"] in ANSWERABLE_KINDS else values["text"]
        verdict = self.pii.check(screened)
        if not verdict.allowed:
            logger.info("Answer blocked by PII screen conversation=%s labels=%s source=%s",
                        conv.id, verdict.labels, verdict.source)
            raise PersonalDataBlocked(verdict.labels, verdict.source)

        row = self._insert_item(conv, values)
        decision = None
        if decide and row.kind in ANSWERABLE_KINDS:
            decision = self._decide(actor, conv, row)
        return row, decision

    # ── Completion ───────────────────────────────────────────────────────

    def complete(self, actor, conversation_id: int, reason: str) -> Conversation:
        """open → completed, guarded by a conditional update on status.

        Raises:
            ValidationError: reason missing or unknown.
            StateConflictError: already completed (including a concurrent winner).
        """
        if reason not in COMPLETION_REASONS:
            raise ValidationError("Invalid completion reason",
                                  details={"reason": f"expected one of {sorted(COMPLETION_REASONS)}"})
        action = "conversation.write"
        conv = self.load(actor, conversation_id, action)
        self._recheck_access(actor, conv, action)

        now = self.clock()
        result = self.session.execute(
            update(Conversation)
            .where(Conversation.id == conv.id, Conversation.status == "open")
            .values(status="completed", completion_reason=reason, ended_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise StateConflictError("Conversation", conv.id, "completed")
        self.session.refresh(conv)

        record_audit(
            entity_type="conversation", entity_id=conv.id, action="conversation.complete",
            actor=actor.email, actor_member_id=actor.id, organization_id=conv.organization_id,
            diff={"status": {"old": "open", "new": "completed"}, "reason": reason},
            session=self.session,
        )
        logger.info("Conversation completed id=%s reason=%s", conv.id, reason)

        if self.watcher is not None:
            self._notify_watcher(conv)
        return conv

    def _notify_watcher(self, conv: Conversation) -> None:
        """Run the completion watcher; its failure never undoes the completion."""
        try:
            with self.session.begin_nested():
                self.watcher.on_completed(conv)
        except (UpstreamContractViolation, UpstreamUnavailable, TransientStoreConflict,
                SQLAlchemyError) as exc:
            logger.error("Completion watcher failed for conversation %s: %s", conv.id, exc,
                         exc_info=True)

    # ── Reads ────────────────────────────────────────────────────────────

    def get_history(self, actor, conversation_id: int) -> list[dict]:
        self.load(actor, conversation_id, "conversation.read")
        return self.history_dicts(conversation_id)

    def member_dashboard(self, actor) -> dict:
        """Allowed themes with this period's status for the acting member."""
        require_capability(actor, "theme.list", Scope(actor.organization_id, member_id=actor.id))
        org = self.resolver.get_organization(actor.organization_id)
        team_id = member_team_id(actor)
        themes = self.resolver.list_allowed_themes(org.id, team_id)

        now = self.clock()
        period = period_clock.period_of(now)
        month_open = period_clock.is_active_month(org, now.month) or bypasses_active_month(actor)

        current = {
            c.theme_id: c
            for c in self.session.query(Conversation).filter(
                Conversation.member_id == actor.id,
                Conversation.period_key == period,
                Conversation.anonymized_at.is_(None),
            )
        }

        rows = []
        for theme in themes:
            conv = current.get(theme.id)
            status = "not_started" if conv is None else conv.status
            rows.append({
                "theme": theme.to_dict(),
                "status": status,
                "conversation_id": conv.id if conv else None,
                "can_start": bool(org.active and month_open and conv is None),
            })

        all_done = bool(rows) and all(r["status"] == "completed" for r in rows)
        next_date = None
        if not month_open or all_done:
            nxt = period_clock.next_period(org.active_months, now)
            next_date = nxt.isoformat() if nxt else None

        return {
            "period": period,
            "active_month": month_open,
            "next_period": next_date,
            "themes": rows,
        }
