"""
Result store: keyed upsert for derived rows written by independent actors.

Several triggers may write the same ConversationResult at the same time
(explicit request, auto-heal sweep, action-plan generation) and the
datastore has no portable atomic "insert or update by key".  Every write
therefore follows one discipline:

    1. conditional UPDATE ... WHERE <key>; read the affected-row count
    2. 0 rows → INSERT inside a savepoint, backfilling required columns
    3. IntegrityError on INSERT → a concurrent writer won; wait
       attempt × delay and start again at 1
    4. after ``max_attempts`` → TransientStoreConflict (never dropped silently)

Writers pass only the fields they own, so a summary writer and an actions
writer merge into the same row without clobbering each other.

``KeyedUpsert`` is the reusable form; TopActionsPlan and
OrganizationInsight use it with replace semantics.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import and_, func, insert, or_, update
from sqlalchemy.exc import IntegrityError

from checkin.core.exceptions import NotFoundError, TransientStoreConflict, ValidationError
from checkin.models import db
from checkin.models.conversation import Conversation, ConversationResult
from checkin.utils.helpers import config_value
from checkin.utils.retry import retry_with_backoff

logger = logging.getLogger(__name__)

SUMMARY_FIELDS = frozenset({"summary", "score", "summary_fallback", "summary_generated_at"})
ACTIONS_FIELDS = frozenset({"actions", "actions_rationale", "actions_generated_at"})
WRITABLE_FIELDS = SUMMARY_FIELDS | ACTIONS_FIELDS

_DEFAULT_ATTEMPTS = 3
_DEFAULT_BACKOFF = 1.0


def _key_clause(model, key: dict):
    clauses = []
    for column, value in key.items():
        col = getattr(model, column)
        clauses.append(col.is_(None) if value is None else col == value)
    return and_(*clauses)


class KeyedUpsert:
    """Update-else-insert for one model keyed by a natural key.

    Subclasses (and tests) can override ``_conditional_update`` and
    ``_insert`` to observe or perturb each step.
    """

    def __init__(self, session=None, *, max_attempts: int | None = None,
                 backoff: float | None = None, sleep=None):
        self.session = session or db.session
        self.max_attempts = max_attempts or config_value("RESULT_UPSERT_MAX_ATTEMPTS", _DEFAULT_ATTEMPTS)
        self.backoff = backoff if backoff is not None else config_value(
            "RESULT_UPSERT_BACKOFF_SECONDS", _DEFAULT_BACKOFF)
        self.sleep = sleep

    def _conditional_update(self, model, key: dict, values: dict) -> int:
        result = self.session.execute(
            update(model)
            .where(_key_clause(model, key))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def _insert(self, model, row: dict) -> None:
        with self.session.begin_nested():
            self.session.execute(insert(model).values(**row))

    def _load(self, model, key: dict):
        return (
            self.session.query(model)
            .filter(_key_clause(model, key))
            .populate_existing()
            .one()
        )

    def upsert(self, model, key: dict, values: dict, *, insert_values=None, label=None):
        """Merge ``values`` into the row identified by ``key``.

        ``insert_values`` is a callable returning the extra columns an insert
        needs (evaluated lazily, once per insert attempt).
        """
        label = label or model.__name__

        def _attempt(attempt_no):
            affected = self._conditional_update(model, key, values)
            if affected == 0:
                row = {**key, **(insert_values() if insert_values else {}), **values}
                self._insert(model, row)
                logger.debug("%s %s inserted on attempt %d", label, key, attempt_no)
            return self._load(model, key)

        return retry_with_backoff(
            _attempt,
            attempts=self.max_attempts,
            delay=self.backoff,
            retry_on=(IntegrityError,),
            sleep=self.sleep,
            on_exhausted=lambda exc: TransientStoreConflict(label, key, self.max_attempts),
            label=f"{label} upsert",
        )


class ResultStore(KeyedUpsert):
    """Idempotent, field-merging writes of ConversationResult rows."""

    def round_number_for(self, conversation: Conversation) -> int:
        """1-based rank among the member's completed conversations for the theme.

        Recounted on every write, so a conversation backfilled with an
        earlier start time shifts the rank of later ones.
        """
        earlier = (
            self.session.query(func.count(Conversation.id))
            .filter(
                Conversation.member_id == conversation.member_id,
                Conversation.theme_id == conversation.theme_id,
                Conversation.status == "completed",
                Conversation.id != conversation.id,
                or_(
                    Conversation.started_at < conversation.started_at,
                    and_(Conversation.started_at == conversation.started_at,
                         Conversation.id < conversation.id),
                ),
            )
            .scalar()
        )
        return int(earlier or 0) + 1

    def upsert_result(self, conversation_id: int, fields: dict) -> ConversationResult:
        """Merge ``fields`` into the result of ``conversation_id``.

        Raises:
            ValidationError: unknown or empty field set.
            NotFoundError: conversation does not exist.
            TransientStoreConflict: retry budget exhausted.
        """
        if not fields:
            raise ValidationError("No result fields to write")
        unknown = set(fields) - WRITABLE_FIELDS
        if unknown:
            raise ValidationError("Unknown result fields", details={f: "not writable" for f in sorted(unknown)})

        conversation = self.session.get(Conversation, conversation_id)
        if conversation is None:
            raise NotFoundError("Conversation", conversation_id)

        values = dict(fields)
        values["round_number"] = self.round_number_for(conversation)
        values["updated_at"] = datetime.now(timezone.utc)

        def _insert_values():
            return {
                "member_id": conversation.member_id,
                "theme_id": conversation.theme_id,
                "period_key": conversation.period_key,
                "created_at": datetime.now(timezone.utc),
            }

        result = self.upsert(
            ConversationResult,
            {"conversation_id": conversation_id},
            values,
            insert_values=_insert_values,
            label="ConversationResult",
        )
        logger.info("Conversation result stored: conversation=%s fields=%s",
                    conversation_id, sorted(fields))
        return result

    def get(self, conversation_id: int) -> ConversationResult | None:
        return (
            self.session.query(ConversationResult)
            .filter(ConversationResult.conversation_id == conversation_id)
            .first()
        )
