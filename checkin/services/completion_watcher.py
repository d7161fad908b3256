"""
Cross-theme completion detection and the member's top-actions plan.

When a conversation completes, the watcher compares the member's allowed
theme set (team-aware) with the themes they completed in the same
period.  Full coverage triggers TopActionsPlanner directly, in-process.

Plans are replace-upserted by (member, period), so firing more than once
for the same period only refreshes the plan.
"""

import logging

from checkin.ai import prompts
from checkin.ai.contracts import TopActions, parse_completion
from checkin.ai.gateway import get_gateway
from checkin.core.exceptions import NotFoundError, ValidationError
from checkin.models import db
from checkin.models.audit import record_audit
from checkin.models.conversation import Conversation, ConversationResult
from checkin.models.insight import TopActionsPlan
from checkin.models.organization import Member
from checkin.models.theme import Theme
from checkin.services import period_clock
from checkin.services.capability import Scope, require_capability
from checkin.services.conversation_service import load_history, member_team_id
from checkin.services.result_store import KeyedUpsert
from checkin.services.theme_access import AccessResolver

logger = logging.getLogger(__name__)


class TopActionsPlanner:
    """Ranked three-action plan across a member's themes for one period."""

    def __init__(self, session=None, gateway=None, clock=None, upsert: KeyedUpsert | None = None):
        self.session = session or db.session
        self.gateway = gateway
        self.clock = clock or period_clock.utcnow
        self.upsert = upsert or KeyedUpsert(self.session)

    def _gateway(self):
        return self.gateway or get_gateway()

    def _completed_conversations(self, member_id: int, period: str) -> list[Conversation]:
        return (
            self.session.query(Conversation)
            .filter(
                Conversation.member_id == member_id,
                Conversation.period_key == period,
                Conversation.status == "completed",
                Conversation.anonymized_at.is_(None),
            )
            .order_by(Conversation.started_at, Conversation.id)
            .all()
        )

    def generate(self, member: Member, period: str, *, user: str = "system") -> TopActionsPlan:
        """Build and store the plan from every completed conversation in ``period``.

        Raises:
            ValidationError: no completed conversation in the period.
            UpstreamContractViolation: plan does not match the contract.
        """
        conversations = self._completed_conversations(member.id, period)
        if not conversations:
            raise ValidationError("No completed conversations in period", details={"period": period})

        context = []
        for conv in conversations:
            theme = self.session.get(Theme, conv.theme_id)
            result = (
                self.session.query(ConversationResult)
                .filter(ConversationResult.conversation_id == conv.id)
                .first()
            )
            context.append({
                "theme": theme.title,
                "summary": result.summary if result else None,
                "score": result.score if result else None,
                "history": load_history(self.session, conv.id),
            })

        messages = prompts.top_actions_plan(period, context)
        response = self._gateway().chat(
            messages, purpose=prompts.TASK_TOP_ACTIONS,
            user=user, organization_id=member.organization_id,
        )
        parsed = parse_completion(response.get("content"), TopActions, purpose=prompts.TASK_TOP_ACTIONS)

        actions = [{"rank": i, **a.model_dump()} for i, a in enumerate(parsed.actions, start=1)]
        source_ids = [c.id for c in conversations]
        plan = self.upsert.upsert(
            TopActionsPlan,
            {"member_id": member.id, "period_key": period},
            {
                "actions": actions,
                "general_rationale": parsed.general_rationale,
                "source_conversation_ids": source_ids,
                "generated_at": self.clock(),
            },
            label="TopActionsPlan",
        )
        record_audit(
            entity_type="top_actions_plan", entity_id=plan.id, action="top_actions.generate",
            actor=user, organization_id=member.organization_id,
            diff={"member_id": member.id, "period": period, "sources": source_ids},
            session=self.session,
        )
        logger.info("Top actions plan stored member=%s period=%s sources=%s", member.id, period, source_ids)
        return plan

    def get(self, member_id: int, period: str) -> TopActionsPlan | None:
        return (
            self.session.query(TopActionsPlan)
            .filter(TopActionsPlan.member_id == member_id, TopActionsPlan.period_key == period)
            .first()
        )

    # ── Actor-facing operations ──────────────────────────────────────────

    def _member_for(self, actor, member_id: int, action: str) -> Member:
        member = self.session.get(Member, member_id)
        if member is None:
            raise NotFoundError("Member", member_id)
        require_capability(actor, action, Scope(member.organization_id, member_id=member.id))
        return member

    def read(self, actor, member_id: int, period: str | None = None) -> TopActionsPlan:
        member = self._member_for(actor, member_id, "top_actions.read")
        period = period_clock.validate_period_key(period) if period else period_clock.period_of(self.clock())
        plan = self.get(member.id, period)
        if plan is None:
            raise NotFoundError("TopActionsPlan", f"{member.id}/{period}")
        return plan

    def request(self, actor, member_id: int, period: str | None = None) -> TopActionsPlan:
        member = self._member_for(actor, member_id, "top_actions.generate")
        period = period_clock.validate_period_key(period) if period else period_clock.period_of(self.clock())
        return self.generate(member, period, user=actor.email)


class CompletionWatcher:
    """Fires the top-actions plan once a member covers every allowed theme."""

    def __init__(self, session=None, resolver=None, planner=None):
        self.session = session or db.session
        self.resolver = resolver or AccessResolver(self.session)
        self.planner = planner or TopActionsPlanner(self.session)

    def completed_themes(self, member_id: int, period: str) -> set[int]:
        rows = (
            self.session.query(Conversation.theme_id)
            .filter(
                Conversation.member_id == member_id,
                Conversation.period_key == period,
                Conversation.status == "completed",
                Conversation.anonymized_at.is_(None),
            )
            .distinct()
            .all()
        )
        return {r[0] for r in rows}

    def on_completed(self, conversation: Conversation) -> TopActionsPlan | None:
        """Check coverage for the conversation's member and period.

        Returns the generated plan, or None when themes remain.
        """
        member = self.session.get(Member, conversation.member_id)
        if member is None:
            return None
        allowed = set(self.resolver.list_allowed(member.organization_id, member_team_id(member)))
        if not allowed:
            return None

        period = period_clock.period_of(period_clock.as_utc(conversation.started_at))
        covered = self.completed_themes(member.id, period) & allowed
        if len(covered) != len(allowed):
            logger.debug("Member %s covered %d/%d themes in %s", member.id, len(covered), len(allowed), period)
            return None

        logger.info("Member %s completed all %d allowed themes in %s; generating plan",
                    member.id, len(allowed), period)
        return self.planner.generate(member, period)
