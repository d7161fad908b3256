"""
Check-in Platform
Tests: summary and action generation (ResultWriter).
"""

from datetime import datetime, timezone

import pytest

from checkin.ai import prompts
from checkin.core.exceptions import (
    AccessDenied,
    NotFoundError,
    StateConflictError,
    UpstreamContractViolation,
    ValidationError,
)
from checkin.models import db as _db
from checkin.models.conversation import Conversation, ConversationHistoryItem, ConversationResult
from checkin.models.organization import Member
from checkin.models.theme import Theme
from checkin.services.result_generation import FALLBACK_SUMMARY, ResultWriter

STARTED = datetime(2025, 6, 3, 9, 0, tzinfo=timezone.utc)


def _make_theme(gives_summary=True):
    t = Theme(title="Energy", gives_summary=gives_summary)
    _db.session.add(t)
    _db.session.flush()
    return t


def _make_conversation(member, theme, status="completed"):
    conv = Conversation(
        organization_id=member.organization_id, member_id=member.id, theme_id=theme.id,
        period_key="2025-06", status=status, started_at=STARTED,
        ended_at=STARTED if status == "completed" else None,
        completion_reason="clear_enough" if status == "completed" else None,
    )
    _db.session.add(conv)
    _db.session.flush()
    _db.session.add(ConversationHistoryItem(
        conversation_id=conv.id, sequence=1, kind="followup",
        text="What gives you energy?", answer="Helping new colleagues find their way in the team.",
    ))
    _db.session.flush()
    return conv


class TestSummary:
    def test_stores_summary_and_score(self, member, gateway, clock):
        conv = _make_conversation(member, _make_theme())
        row = ResultWriter(gateway=gateway, clock=clock).generate_summary(conv)

        assert row.summary == "You are doing fine overall."
        assert row.score == 7
        assert row.summary_generated_at is not None
        sent = gateway.calls_for(prompts.TASK_SUMMARY)[0]["messages"][1]["content"]
        assert "Helping new colleagues" in sent

    def test_contract_violation_stores_fallback(self, member, gateway, clock):
        gateway.script(prompts.TASK_SUMMARY, {"summary": "Nice.", "score": 42})
        conv = _make_conversation(member, _make_theme())
        row = ResultWriter(gateway=gateway, clock=clock).generate_summary(conv)

        assert row.summary == FALLBACK_SUMMARY
        assert row.score is None
        assert row.summary_fallback is True

    def test_theme_without_summary_is_skipped(self, member, gateway, clock):
        conv = _make_conversation(member, _make_theme(gives_summary=False))
        assert ResultWriter(gateway=gateway, clock=clock).generate_summary(conv) is None
        assert gateway.calls == []
        assert ConversationResult.query.count() == 0

    def test_open_conversation_is_rejected(self, member, gateway, clock):
        conv = _make_conversation(member, _make_theme(), status="open")
        with pytest.raises(StateConflictError):
            ResultWriter(gateway=gateway, clock=clock).generate_summary(conv)

    def test_long_summary_is_cut_to_six_sentences(self, member, gateway, clock):
        gateway.script(prompts.TASK_SUMMARY, {
            "summary": " ".join(f"Sentence {i}." for i in range(1, 9)), "score": 5,
        })
        conv = _make_conversation(member, _make_theme())
        row = ResultWriter(gateway=gateway, clock=clock).generate_summary(conv)
        assert row.summary.endswith("Sentence 6.")


class TestActions:
    def test_stores_three_actions(self, member, gateway, clock):
        conv = _make_conversation(member, _make_theme())
        row = ResultWriter(gateway=gateway, clock=clock).generate_actions(conv)
        assert len(row.actions) == 3
        assert row.actions_rationale == "Small steps."

    def test_actions_contract_is_strict(self, member, gateway, clock):
        gateway.script(prompts.TASK_ACTIONS, {"actions": ["only one"], "rationale": ""})
        conv = _make_conversation(member, _make_theme())
        with pytest.raises(UpstreamContractViolation):
            ResultWriter(gateway=gateway, clock=clock).generate_actions(conv)
        assert ConversationResult.query.count() == 0

    def test_actions_then_summary_keep_both(self, member, gateway, clock):
        conv = _make_conversation(member, _make_theme())
        writer = ResultWriter(gateway=gateway, clock=clock)
        writer.generate_actions(conv)
        writer.generate_summary(conv)

        row = writer.store.get(conv.id)
        assert row.summary and row.score == 7
        assert len(row.actions) == 3

    def test_theme_without_summary_gets_no_actions(self, member, gateway, clock):
        conv = _make_conversation(member, _make_theme(gives_summary=False))
        assert ResultWriter(gateway=gateway, clock=clock).generate_actions(conv) is None
        assert gateway.calls_for(prompts.TASK_ACTIONS) == []
        assert ConversationResult.query.count() == 0


class TestActorOperations:
    def test_request_summary_payload(self, member, gateway, clock):
        conv = _make_conversation(member, _make_theme())
        payload = ResultWriter(gateway=gateway, clock=clock).request_summary(member, conv.id)
        assert payload == {"conversation_id": conv.id, "summary": "You are doing fine overall.", "score": 7}
        assert gateway.calls[0]["user"] == member.email

    def test_request_actions_on_theme_without_summary_is_empty(self, member, gateway, clock):
        conv = _make_conversation(member, _make_theme(gives_summary=False))
        payload = ResultWriter(gateway=gateway, clock=clock).request_actions(member, conv.id)
        assert payload == {"conversation_id": conv.id, "actions": [], "rationale": None}
        assert gateway.calls == []

    def test_someone_else_cannot_read_result(self, org, member, gateway, clock):
        conv = _make_conversation(member, _make_theme())
        other = Member(organization_id=org.id, email="other@acme.test")
        _db.session.add(other)
        _db.session.flush()
        with pytest.raises(NotFoundError):
            ResultWriter(gateway=gateway, clock=clock).get_result(other, conv.id)


class TestMemberResults:
    def _stored(self, member, theme, score=8):
        conv = _make_conversation(member, theme)
        _db.session.add(ConversationResult(
            conversation_id=conv.id, member_id=member.id, theme_id=theme.id, period_key="2025-06",
            summary="Steady month.", score=score, actions=["a", "b", "c"], actions_rationale="Small steps.",
        ))
        _db.session.flush()
        return conv

    def test_lists_allowed_themes_with_results(self, member, gateway, clock):
        done, pending = _make_theme(), _make_theme()
        hidden = Theme(title="Hidden", default_visibility="restricted")
        _db.session.add(hidden)
        _db.session.flush()
        conv = self._stored(member, done)

        view = ResultWriter(gateway=gateway, clock=clock).member_results(member, member.id)

        assert view["period"] == "2025-06"
        by_theme = {row["theme"]["id"]: row for row in view["results"]}
        assert set(by_theme) == {done.id, pending.id}
        assert by_theme[done.id]["has_result"] is True
        assert by_theme[done.id]["conversation_id"] == conv.id
        assert by_theme[done.id]["score"] == 8
        assert by_theme[pending.id]["has_result"] is False
        assert view["total_themes"] == 2
        assert view["themes_with_result"] == 1
        assert gateway.calls == []

    def test_other_period_has_no_results(self, member, gateway, clock):
        self._stored(member, _make_theme())
        view = ResultWriter(gateway=gateway, clock=clock).member_results(member, member.id, "2025-03")
        assert view["themes_with_result"] == 0

    def test_colleague_is_refused(self, org, member, gateway, clock):
        other = Member(organization_id=org.id, email="other@acme.test")
        _db.session.add(other)
        _db.session.flush()
        with pytest.raises(AccessDenied):
            ResultWriter(gateway=gateway, clock=clock).member_results(other, member.id)

    def test_bad_period(self, member, gateway, clock):
        with pytest.raises(ValidationError):
            ResultWriter(gateway=gateway, clock=clock).member_results(member, member.id, "June")
