"""
Quorum-gated organization insights.

An insight for (organization, theme, team|null) exists only once at least
INSIGHT_QUORUM distinct members have a non-anonymized conversation with a
score or summary in that theme and scope.  Below quorum the request is
answered with InsufficientQuorum, never a partial aggregate.

Team-scoped and org-wide insights are independent keys.  A team scope
counts conversations by the team snapshotted at conversation creation,
for the quorum and for completion alike.  Only participants (role
``member``) make up the in-scope population; admins and team leads who
never hold a conversation do not keep a theme from completing.  A summary
that fell back to canned text does not qualify.

The theme overview doubles as the auto-trigger: when every in-scope
member completed the theme this period and nothing is stored yet, it
generates the insight inline.  A failure there is logged and the overview
is served without it.
"""

import logging

from sqlalchemy import and_, or_
from sqlalchemy.exc import SQLAlchemyError

from checkin.ai import prompts
from checkin.ai.contracts import OrganizationInsightPayload, parse_completion
from checkin.ai.gateway import get_gateway
from checkin.core.exceptions import (
    InsufficientQuorum,
    NotFoundError,
    TransientStoreConflict,
    UpstreamContractViolation,
    UpstreamUnavailable,
)
from checkin.models import db
from checkin.models.audit import record_audit
from checkin.models.conversation import Conversation, ConversationResult
from checkin.models.insight import OrganizationInsight
from checkin.models.organization import Member
from checkin.models.theme import Theme
from checkin.services import period_clock
from checkin.services.capability import Scope, require_capability
from checkin.services.conversation_service import load_history
from checkin.services.result_store import KeyedUpsert
from checkin.services.theme_access import AccessResolver
from checkin.utils.helpers import config_value

logger = logging.getLogger(__name__)

_DEFAULT_QUORUM = 4

PARTICIPANT_ROLE = "member"


def mean_score(scores) -> float | None:
    values = [s for s in scores if s is not None]
    if not values:
        return None
    return round(sum(values) / len(values), 1)


class InsightAggregator:
    """Generate, store and expose theme insights for an org or team.

    Args:
        session: SQLAlchemy session; defaults to ``db.session``.
        resolver: AccessResolver used for scope validation and theme lists.
        gateway: completion gateway; defaults to the shared one.
        quorum: minimum distinct members; defaults to ``INSIGHT_QUORUM``.
    """

    def __init__(self, session=None, resolver=None, gateway=None, clock=None,
                 upsert: KeyedUpsert | None = None, quorum: int | None = None):
        self.session = session or db.session
        self.resolver = resolver or AccessResolver(self.session)
        self.gateway = gateway
        self.clock = clock or period_clock.utcnow
        self.upsert = upsert or KeyedUpsert(self.session)
        self.quorum = quorum or config_value("INSIGHT_QUORUM", _DEFAULT_QUORUM)

    def _gateway(self):
        return self.gateway or get_gateway()

    # ── Counting ─────────────────────────────────────────────────────────

    def qualifying(self, organization_id: int, theme_id: int, team_id: int | None = None):
        """(Conversation, ConversationResult) pairs that count towards the quorum."""
        q = (
            self.session.query(Conversation, ConversationResult)
            .join(ConversationResult, ConversationResult.conversation_id == Conversation.id)
            .filter(
                Conversation.organization_id == organization_id,
                Conversation.theme_id == theme_id,
                Conversation.status == "completed",
                Conversation.anonymized_at.is_(None),
                or_(
                    ConversationResult.score.isnot(None),
                    and_(ConversationResult.summary.isnot(None),
                         ConversationResult.summary_fallback.is_(False)),
                ),
            )
        )
        if team_id is not None:
            q = q.filter(Conversation.team_id == team_id)
        return q.order_by(Conversation.started_at, Conversation.id).all()

    def members_in_scope(self, organization_id: int, team_id: int | None = None) -> int:
        q = self.session.query(Member).filter(
            Member.organization_id == organization_id,
            Member.role == PARTICIPANT_ROLE,
        )
        if team_id is not None:
            q = q.filter(Member.team_id == team_id)
        return q.count()

    def completed_members(self, organization_id: int, theme_id: int, team_id: int | None,
                          period: str) -> set[int]:
        """Participants with a completed conversation on the theme in ``period``."""
        q = (
            self.session.query(Conversation.member_id)
            .join(Member, Member.id == Conversation.member_id)
            .filter(
                Conversation.organization_id == organization_id,
                Conversation.theme_id == theme_id,
                Conversation.period_key == period,
                Conversation.status == "completed",
                Conversation.anonymized_at.is_(None),
                Member.role == PARTICIPANT_ROLE,
            )
        )
        if team_id is not None:
            q = q.filter(Conversation.team_id == team_id)
        return {row[0] for row in q.distinct().all()}

    def everyone_completed(self, organization_id: int, theme_id: int, team_id: int | None,
                           period: str) -> bool:
        in_scope = self.members_in_scope(organization_id, team_id)
        if in_scope == 0:
            return False
        return len(self.completed_members(organization_id, theme_id, team_id, period)) >= in_scope

    # ── Generation ───────────────────────────────────────────────────────

    def generate(self, organization_id: int, theme_id: int, team_id: int | None = None,
                 *, user: str = "system") -> OrganizationInsight:
        """Aggregate qualifying results and replace-upsert the insight.

        Raises:
            NotFoundError: unknown organization or theme.
            InvalidScope: team not in the org, or archived.
            InsufficientQuorum: fewer than ``quorum`` distinct members.
            UpstreamContractViolation: aggregate does not match the contract.
        """
        self.resolver.get_organization(organization_id)
        theme = self.session.get(Theme, theme_id)
        if theme is None:
            raise NotFoundError("Theme", theme_id)
        self.resolver.assert_team_in_org(organization_id, team_id)

        rows = self.qualifying(organization_id, theme_id, team_id)
        member_ids = {conv.member_id for conv, _ in rows}
        if len(member_ids) < self.quorum:
            logger.info("Insight below quorum org=%s theme=%s team=%s: %d/%d",
                        organization_id, theme_id, team_id, len(member_ids), self.quorum)
            raise InsufficientQuorum(len(member_ids), self.quorum)

        participants = [
            {"summary": result.summary, "score": result.score,
             "history": load_history(self.session, conv.id)}
            for conv, result in rows
        ]
        scope_label = f"team {team_id}" if team_id is not None else "whole organization"
        messages = prompts.organization_insight(theme.to_dict(), scope_label, participants)
        response = self._gateway().chat(
            messages, purpose=prompts.TASK_INSIGHT, user=user, organization_id=organization_id,
        )
        parsed = parse_completion(response.get("content"), OrganizationInsightPayload,
                                  purpose=prompts.TASK_INSIGHT)

        now = self.clock()
        period = period_clock.period_of(now)
        status = ("complete" if self.everyone_completed(organization_id, theme_id, team_id, period)
                  else "available")
        insight = self.upsert.upsert(
            OrganizationInsight,
            {"organization_id": organization_id, "theme_id": theme_id, "team_id": team_id},
            {
                "summary": parsed.summary,
                "advice": [a.model_dump() for a in parsed.advice],
                "signal_words": parsed.signal_words,
                "mean_score": mean_score(result.score for _, result in rows),
                "conversation_count": len(rows),
                "member_count": self.members_in_scope(organization_id, team_id),
                "completed_member_count": len(member_ids),
                "status": status,
                "generated_at": now,
            },
            label="OrganizationInsight",
        )
        record_audit(
            entity_type="organization_insight", entity_id=insight.id, action="insight.generate",
            actor=user, organization_id=organization_id,
            diff={"theme_id": theme_id, "team_id": team_id, "members": len(member_ids)},
            session=self.session,
        )
        logger.info("Insight stored org=%s theme=%s team=%s members=%d",
                    organization_id, theme_id, team_id, len(member_ids))
        return insight

    def get(self, organization_id: int, theme_id: int, team_id: int | None = None):
        q = self.session.query(OrganizationInsight).filter(
            OrganizationInsight.organization_id == organization_id,
            OrganizationInsight.theme_id == theme_id,
        )
        if team_id is None:
            q = q.filter(OrganizationInsight.team_id.is_(None))
        else:
            q = q.filter(OrganizationInsight.team_id == team_id)
        return q.first()

    # ── Actor-facing operations ──────────────────────────────────────────

    def request(self, actor, organization_id: int, theme_id: int, team_id: int | None = None):
        require_capability(actor, "insight.generate", Scope(organization_id, team_id))
        return self.generate(organization_id, theme_id, team_id, user=actor.email)

    def read(self, actor, organization_id: int, theme_id: int, team_id: int | None = None):
        require_capability(actor, "insight.read", Scope(organization_id, team_id))
        self.resolver.get_organization(organization_id)
        self.resolver.assert_team_in_org(organization_id, team_id)
        insight = self.get(organization_id, theme_id, team_id)
        if insight is None:
            raise NotFoundError("OrganizationInsight", f"{organization_id}/{theme_id}/{team_id}")
        return insight

    def theme_overview(self, actor, organization_id: int, team_id: int | None = None) -> dict:
        """Progress per allowed theme for the org or one team.

        Status per theme:
            not_available  fewer than ``quorum`` qualifying members
            available      quorum met
            complete       quorum met and every in-scope member completed this period
        """
        require_capability(actor, "theme.overview", Scope(organization_id, team_id))
        themes = self.resolver.list_allowed_themes(organization_id, team_id)
        period = period_clock.period_of(self.clock())
        in_scope = self.members_in_scope(organization_id, team_id)

        rows = []
        for theme in themes:
            qualifying = self.qualifying(organization_id, theme.id, team_id)
            qualified_members = len({conv.member_id for conv, _ in qualifying})
            completed = len(self.completed_members(organization_id, theme.id, team_id, period))

            quorum_met = qualified_members >= self.quorum
            all_done = in_scope > 0 and completed >= in_scope
            if not quorum_met:
                status = "not_available"
            elif all_done:
                status = "complete"
            else:
                status = "available"

            insight = self.get(organization_id, theme.id, team_id) if quorum_met else None
            if status == "complete" and insight is None:
                insight = self._auto_generate(organization_id, theme.id, team_id)

            rows.append({
                "theme": theme.to_dict(),
                "status": status,
                "members_in_scope": in_scope,
                "members_completed": completed,
                "mean_score": mean_score(r.score for _, r in qualifying) if quorum_met else None,
                "insight": insight.to_dict() if insight is not None else None,
            })

        return {"organization_id": organization_id, "team_id": team_id, "period": period, "themes": rows}

    def _auto_generate(self, organization_id: int, theme_id: int, team_id: int | None):
        try:
            with self.session.begin_nested():
                return self.generate(organization_id, theme_id, team_id)
        except (InsufficientQuorum, UpstreamContractViolation, UpstreamUnavailable,
                TransientStoreConflict, SQLAlchemyError) as exc:
            logger.error("Insight auto-generation failed org=%s theme=%s team=%s: %s",
                         organization_id, theme_id, team_id, exc, exc_info=True)
            return None
