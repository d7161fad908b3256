"""
Check-in Platform
Tests: keyed upsert and ConversationResult merging.
"""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import IntegrityError

from checkin.core.exceptions import NotFoundError, TransientStoreConflict, ValidationError
from checkin.models import db as _db
from checkin.models.conversation import Conversation, ConversationResult
from checkin.models.theme import Theme
from checkin.services.result_store import ResultStore

T0 = datetime(2025, 3, 10, 9, 0, tzinfo=timezone.utc)


def _make_theme():
    t = Theme(title="Workload")
    _db.session.add(t)
    _db.session.flush()
    return t


def _make_conversation(member, theme, started_at=T0, status="completed", period=None):
    conv = Conversation(
        organization_id=member.organization_id, member_id=member.id, theme_id=theme.id,
        period_key=period or f"{started_at.year:04d}-{started_at.month:02d}",
        status=status, started_at=started_at,
        ended_at=started_at + timedelta(hours=1) if status == "completed" else None,
    )
    _db.session.add(conv)
    _db.session.flush()
    return conv


class _LosingStore(ResultStore):
    """Every insert loses the race."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.inserts = 0

    def _insert(self, model, row):
        self.inserts += 1
        raise IntegrityError("INSERT INTO conversation_results", {}, Exception("UNIQUE constraint failed"))


class _RacedOnceStore(ResultStore):
    """First insert loses to a concurrent writer that already stored a summary."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.raced = False

    def _insert(self, model, row):
        if not self.raced:
            self.raced = True
            super()._insert(model, {**row, "summary": "written by the other writer", "score": 4,
                                    "actions": None, "actions_rationale": None,
                                    "actions_generated_at": None})
            raise IntegrityError("INSERT INTO conversation_results", {}, Exception("UNIQUE constraint failed"))
        super()._insert(model, row)


class TestUpsertResult:
    def test_repeated_write_is_idempotent(self, member):
        conv = _make_conversation(member, _make_theme())
        store = ResultStore()
        store.upsert_result(conv.id, {"summary": "Fine.", "score": 7})
        store.upsert_result(conv.id, {"summary": "Fine.", "score": 7})

        assert ConversationResult.query.count() == 1
        row = store.get(conv.id)
        assert (row.summary, row.score) == ("Fine.", 7)

    def test_disjoint_writers_merge_in_any_order(self, member):
        theme = _make_theme()
        first = _make_conversation(member, theme, T0)
        second = _make_conversation(member, theme, T0 + timedelta(days=100))
        store = ResultStore()

        store.upsert_result(first.id, {"summary": "S", "score": 6})
        store.upsert_result(first.id, {"actions": ["a", "b", "c"], "actions_rationale": "r"})
        store.upsert_result(second.id, {"actions": ["x", "y", "z"], "actions_rationale": "r"})
        store.upsert_result(second.id, {"summary": "S2", "score": 3})

        for conv_id, summary, actions in ((first.id, "S", ["a", "b", "c"]),
                                          (second.id, "S2", ["x", "y", "z"])):
            row = store.get(conv_id)
            assert row.summary == summary
            assert row.actions == actions

    def test_insert_backfills_identity_columns(self, member):
        theme = _make_theme()
        conv = _make_conversation(member, theme)
        row = ResultStore().upsert_result(conv.id, {"score": 5})
        assert row.member_id == member.id
        assert row.theme_id == theme.id
        assert row.period_key == "2025-03"

    def test_round_number_counts_earlier_completed_conversations(self, member):
        theme = _make_theme()
        first = _make_conversation(member, theme, T0)
        _make_conversation(member, theme, T0 + timedelta(days=40), status="open")
        third = _make_conversation(member, theme, T0 + timedelta(days=90))
        store = ResultStore()

        assert store.upsert_result(first.id, {"score": 5}).round_number == 1
        assert store.upsert_result(third.id, {"score": 5}).round_number == 2

    def test_unknown_fields_are_rejected(self, member):
        conv = _make_conversation(member, _make_theme())
        with pytest.raises(ValidationError):
            ResultStore().upsert_result(conv.id, {"member_id": 3})
        with pytest.raises(ValidationError):
            ResultStore().upsert_result(conv.id, {})

    def test_unknown_conversation(self):
        with pytest.raises(NotFoundError):
            ResultStore().upsert_result(404, {"score": 5})


class TestRaces:
    def test_lost_race_retries_as_update(self, member):
        conv = _make_conversation(member, _make_theme())
        store = _RacedOnceStore()
        row = store.upsert_result(conv.id, {"actions": ["a", "b", "c"], "actions_rationale": "r"})

        assert ConversationResult.query.count() == 1
        assert row.summary == "written by the other writer"
        assert row.actions == ["a", "b", "c"]

    def test_exhausted_retries_raise_with_linear_backoff(self, member):
        conv = _make_conversation(member, _make_theme())
        waits = []
        store = _LosingStore(max_attempts=3, backoff=0.5, sleep=waits.append)

        with pytest.raises(TransientStoreConflict) as exc:
            store.upsert_result(conv.id, {"score": 5})

        assert store.inserts == 3
        assert waits == [0.5, 1.0]
        assert exc.value.attempts == 3
        assert ConversationResult.query.count() == 0
