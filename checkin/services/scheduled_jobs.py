"""
Check-in Platform
Scheduled Jobs.

Jobs:
    - retention_anonymize: anonymize completed conversations past the org cutoff
    - retention_delete: delete completed conversations past the deletion horizon
    - result_auto_heal: generate missing or fallback summaries for completed conversations
    - insight_auto_generate: org-wide insights once a theme is done for the period

Every job isolates failures per unit of work (org, theme or conversation)
and returns a results dict that SchedulerService stores on the job row.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError

from checkin.core.exceptions import (
    InsufficientQuorum,
    StateConflictError,
    TransientStoreConflict,
    UpstreamContractViolation,
    UpstreamUnavailable,
)
from checkin.models import db
from checkin.models.conversation import Conversation, ConversationResult
from checkin.models.organization import Organization
from checkin.models.theme import Theme
from checkin.services import period_clock
from checkin.services.insight_service import InsightAggregator
from checkin.services.result_generation import ResultWriter
from checkin.services.retention_service import RetentionSweeper
from checkin.services.scheduler_service import register_job
from checkin.services.theme_access import AccessResolver

logger = logging.getLogger(__name__)

AUTO_HEAL_BATCH = 100

_UNIT_ERRORS = (
    InsufficientQuorum,
    StateConflictError,
    TransientStoreConflict,
    UpstreamContractViolation,
    UpstreamUnavailable,
    SQLAlchemyError,
)


# ═══════════════════════════════════════════════════════════════════════════
#  Retention
# ═══════════════════════════════════════════════════════════════════════════

@register_job("retention_anonymize")
def anonymize_old_conversations(app) -> dict[str, Any]:
    """Anonymize completed conversations older than each org's anonymize window."""
    return RetentionSweeper().sweep("anonymize")


@register_job("retention_delete")
def delete_expired_conversations(app) -> dict[str, Any]:
    """Delete completed conversations older than each org's deletion horizon."""
    return RetentionSweeper().sweep("delete")


# ═══════════════════════════════════════════════════════════════════════════
#  Result auto-heal
# ═══════════════════════════════════════════════════════════════════════════

@register_job("result_auto_heal")
def heal_missing_summaries(app) -> dict[str, Any]:
    """Generate summaries for completed conversations that have none or only the fallback."""
    results = {"candidates": 0, "healed": 0, "failed": 0}

    candidates = (
        db.session.query(Conversation)
        .join(Theme, Theme.id == Conversation.theme_id)
        .outerjoin(ConversationResult, ConversationResult.conversation_id == Conversation.id)
        .filter(
            Conversation.status == "completed",
            Conversation.anonymized_at.is_(None),
            Theme.gives_summary.is_(True),
            or_(ConversationResult.summary.is_(None), ConversationResult.summary_fallback.is_(True)),
        )
        .order_by(Conversation.ended_at)
        .limit(AUTO_HEAL_BATCH)
        .all()
    )
    results["candidates"] = len(candidates)

    writer = ResultWriter()
    for conv in candidates:
        try:
            with db.session.begin_nested():
                writer.generate_summary(conv)
            results["healed"] += 1
        except _UNIT_ERRORS as exc:
            results["failed"] += 1
            logger.error("Auto-heal failed for conversation %s: %s", conv.id, exc, exc_info=True)

    logger.info("Result auto-heal: %s", results)
    return results


# ═══════════════════════════════════════════════════════════════════════════
#  Insight auto-generation
# ═══════════════════════════════════════════════════════════════════════════

@register_job("insight_auto_generate")
def generate_due_insights(app) -> dict[str, Any]:
    """Generate missing org-wide insights for themes that are done this period."""
    results = {"checked": 0, "generated": 0, "skipped": 0, "failed": 0}

    now = period_clock.utcnow()
    period = period_clock.period_of(now)
    month_end = period_clock.is_last_day_of_month(now)

    resolver = AccessResolver()
    aggregator = InsightAggregator(resolver=resolver)
    orgs = Organization.query.filter(Organization.active.is_(True)).all()

    for org in orgs:
        try:
            themes = resolver.list_allowed_themes(org.id)
        except SQLAlchemyError as exc:
            results["failed"] += 1
            logger.error("Insight job could not list themes for org %s: %s", org.id, exc, exc_info=True)
            continue

        for theme in themes:
            results["checked"] += 1
            if aggregator.get(org.id, theme.id) is not None:
                results["skipped"] += 1
                continue

            members = {c.member_id for c, _ in aggregator.qualifying(org.id, theme.id)}
            due = month_end or aggregator.everyone_completed(org.id, theme.id, None, period)
            if len(members) < aggregator.quorum or not due:
                results["skipped"] += 1
                continue

            try:
                with db.session.begin_nested():
                    aggregator.generate(org.id, theme.id)
                results["generated"] += 1
            except _UNIT_ERRORS as exc:
                results["failed"] += 1
                logger.error("Insight generation failed org=%s theme=%s: %s",
                             org.id, theme.id, exc, exc_info=True)

    logger.info("Insight auto-generation: %s", results)
    return results
