"""
Summary and action writers for completed conversations.

Both writers go through ResultStore and touch only the fields they own:
the summary writer sets summary/score, the actions writer sets
actions/rationale.  Call order does not matter.

Failure policy:
    - summary: a contract violation stores FALLBACK_SUMMARY with a null
      score
    - actions: strict, a contract violation fails the call

Themes with ``gives_summary`` off get neither; both writers skip them.
"""

import logging

from checkin.ai import prompts
from checkin.ai.contracts import ConversationActions, ConversationSummary, parse_completion
from checkin.ai.gateway import get_gateway
from checkin.core.exceptions import NotFoundError, StateConflictError, UpstreamContractViolation
from checkin.models import db
from checkin.models.conversation import Conversation, ConversationResult
from checkin.models.organization import Member
from checkin.models.theme import Theme
from checkin.services import period_clock
from checkin.services.capability import Scope, require_capability
from checkin.services.conversation_service import ConversationStateMachine, load_history, member_team_id
from checkin.services.result_store import ResultStore
from checkin.services.theme_access import AccessResolver

logger = logging.getLogger(__name__)

FALLBACK_SUMMARY = (
    "Thank you for taking part in this conversation. "
    "A written summary could not be prepared this time."
)


class ResultWriter:
    """Generate and persist per-conversation derived results.

    Args:
        session: SQLAlchemy session; defaults to ``db.session``.
        gateway: completion gateway; defaults to the shared one.
        store: ResultStore; defaults to one bound to ``session``.
        resolver: AccessResolver for the member results view.
    """

    def __init__(self, session=None, gateway=None, store=None, clock=None, resolver=None):
        self.session = session or db.session
        self.gateway = gateway
        self.store = store or ResultStore(self.session)
        self.resolver = resolver or AccessResolver(self.session)
        self.clock = clock or period_clock.utcnow

    def _gateway(self):
        return self.gateway or get_gateway()

    def _require_completed(self, conversation: Conversation) -> Theme:
        if conversation.status != "completed":
            raise StateConflictError("Conversation", conversation.id, conversation.status)
        return self.session.get(Theme, conversation.theme_id)

    def _load_for(self, actor, conversation_id: int, action: str) -> Conversation:
        return ConversationStateMachine(self.session).load(actor, conversation_id, action)

    # ── Writers (no actor checks; used by requests, sweeps and the watcher) ──

    def generate_summary(self, conversation: Conversation, *, user: str = "system"):
        """Write summary/score.  Returns the stored result, or None when skipped."""
        theme = self._require_completed(conversation)
        if not theme.gives_summary:
            logger.info("Theme %s gives no summary; conversation %s skipped", theme.id, conversation.id)
            return None

        messages = prompts.conversation_summary(theme.to_dict(), load_history(self.session, conversation.id))
        result = self._gateway().chat(
            messages, purpose=prompts.TASK_SUMMARY,
            user=user, organization_id=conversation.organization_id,
        )
        try:
            parsed = parse_completion(result.get("content"), ConversationSummary, purpose=prompts.TASK_SUMMARY)
            fields = {"summary": parsed.summary, "score": parsed.score, "summary_fallback": False}
        except UpstreamContractViolation as exc:
            logger.warning("Summary contract violated for conversation %s, storing fallback: %s",
                           conversation.id, exc)
            fields = {"summary": FALLBACK_SUMMARY, "score": None, "summary_fallback": True}

        fields["summary_generated_at"] = self.clock()
        return self.store.upsert_result(conversation.id, fields)

    def generate_actions(self, conversation: Conversation, *, user: str = "system"):
        """Write exactly three actions plus rationale.  Strict contract.

        Returns None when the theme gives no summary.
        """
        theme = self._require_completed(conversation)
        if not theme.gives_summary:
            logger.info("Theme %s gives no summary; actions for conversation %s skipped",
                        theme.id, conversation.id)
            return None
        existing = self.store.get(conversation.id)
        messages = prompts.conversation_actions(
            theme.to_dict(),
            load_history(self.session, conversation.id),
            existing.summary if existing else None,
        )
        result = self._gateway().chat(
            messages, purpose=prompts.TASK_ACTIONS,
            user=user, organization_id=conversation.organization_id,
        )
        parsed = parse_completion(result.get("content"), ConversationActions, purpose=prompts.TASK_ACTIONS)
        return self.store.upsert_result(conversation.id, {
            "actions": parsed.actions,
            "actions_rationale": parsed.rationale,
            "actions_generated_at": self.clock(),
        })

    # ── Actor-facing operations ──────────────────────────────────────────

    def request_summary(self, actor, conversation_id: int) -> dict:
        conv = self._load_for(actor, conversation_id, "result.request")
        stored = self.generate_summary(conv, user=actor.email)
        if stored is None:
            stored = self.store.get(conv.id)
        return {
            "conversation_id": conv.id,
            "summary": stored.summary if stored else None,
            "score": stored.score if stored else None,
        }

    def request_actions(self, actor, conversation_id: int) -> dict:
        conv = self._load_for(actor, conversation_id, "result.request")
        stored = self.generate_actions(conv, user=actor.email)
        if stored is None:
            stored = self.store.get(conv.id)
        return {
            "conversation_id": conv.id,
            "actions": (stored.actions if stored else None) or [],
            "rationale": stored.actions_rationale if stored else None,
        }

    def get_result(self, actor, conversation_id: int):
        conv = self._load_for(actor, conversation_id, "result.read")
        return self.store.get(conv.id)

    def member_results(self, actor, member_id: int, period: str | None = None) -> dict:
        """Every allowed theme of a member with that period's stored result.

        Themes without a result are listed with ``has_result`` false, so the
        member sees what is still open.  Defaults to the current period.
        """
        member = self.session.get(Member, member_id)
        if member is None:
            raise NotFoundError("Member", member_id)
        require_capability(actor, "result.read", Scope(member.organization_id, member_id=member.id))
        period = period_clock.validate_period_key(period) if period else period_clock.period_of(self.clock())

        org = self.resolver.get_organization(member.organization_id)
        themes = self.resolver.list_allowed_themes(org.id, member_team_id(member))
        stored = {
            r.theme_id: r
            for r in self.session.query(ConversationResult)
            .join(Conversation, Conversation.id == ConversationResult.conversation_id)
            .filter(
                ConversationResult.member_id == member.id,
                ConversationResult.period_key == period,
                Conversation.anonymized_at.is_(None),
            )
        }

        rows = []
        for theme in themes:
            result = stored.get(theme.id)
            rows.append({
                "theme": theme.to_dict(),
                "has_result": result is not None,
                "conversation_id": result.conversation_id if result else None,
                "round_number": result.round_number if result else None,
                "summary": result.summary if result else None,
                "score": result.score if result else None,
                "actions": result.actions if result else None,
                "actions_rationale": result.actions_rationale if result else None,
            })
        return {
            "member_id": member.id,
            "period": period,
            "active_months": list(org.active_months or []),
            "results": rows,
            "total_themes": len(rows),
            "themes_with_result": sum(1 for r in rows if r["has_result"]),
        }
