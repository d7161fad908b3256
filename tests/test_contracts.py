"""
Check-in Platform
Tests: completion-service response contracts.
"""

import json

import pytest

from checkin.ai.contracts import (
    ConversationActions,
    ConversationSummary,
    FollowupDecision,
    OrganizationInsightPayload,
    TopActions,
    parse_completion,
)
from checkin.core.exceptions import UpstreamContractViolation


def _parse(payload, model):
    content = payload if isinstance(payload, str) else json.dumps(payload)
    return parse_completion(content, model, purpose="test")


class TestFollowupDecision:
    def test_valid_stop(self):
        d = _parse({"continue": False, "reply": "Thanks", "rationale": "clear"}, FollowupDecision)
        assert d.to_dict() == {"continue": False, "reply": "Thanks", "next_question": None, "rationale": "clear"}

    def test_continue_requires_question(self):
        with pytest.raises(UpstreamContractViolation):
            _parse({"continue": True, "rationale": "vague", "next_question": " "}, FollowupDecision)

    def test_string_boolean_is_rejected(self):
        with pytest.raises(UpstreamContractViolation):
            _parse({"continue": "false", "rationale": "x"}, FollowupDecision)

    def test_fenced_json_is_accepted(self):
        content = '```json\n{"continue": false, "rationale": "ok"}\n```'
        assert _parse(content, FollowupDecision).continue_ is False


class TestSummary:
    @pytest.mark.parametrize("score", [0, 11, "7", 7.5])
    def test_score_must_be_int_in_range(self, score):
        with pytest.raises(UpstreamContractViolation):
            _parse({"summary": "Fine.", "score": score}, ConversationSummary)

    def test_missing_summary(self):
        with pytest.raises(UpstreamContractViolation) as exc:
            _parse({"score": 5}, ConversationSummary)
        assert "summary" in str(exc.value)


class TestActions:
    def test_exactly_three(self):
        assert len(_parse({"actions": ["a", "b", "c"]}, ConversationActions).actions) == 3
        with pytest.raises(UpstreamContractViolation):
            _parse({"actions": ["a", "b", "c", "d"]}, ConversationActions)

    def test_blank_action_is_rejected(self):
        with pytest.raises(UpstreamContractViolation):
            _parse({"actions": ["a", " ", "c"]}, ConversationActions)

    def test_top_actions_priorities(self):
        ok = [{"text": t, "priority": p} for t, p in (("a", "high"), ("b", "medium"), ("c", "low"))]
        assert _parse({"actions": ok}, TopActions).actions[1].priority == "medium"


class TestInsight:
    def test_advice_priority_range(self):
        with pytest.raises(UpstreamContractViolation):
            _parse({"summary": "s", "advice": [{"text": "t", "priority": 4}]}, OrganizationInsightPayload)

    def test_at_least_one_advice(self):
        with pytest.raises(UpstreamContractViolation):
            _parse({"summary": "s", "advice": []}, OrganizationInsightPayload)


@pytest.mark.parametrize("content", ["", "   ", "not json", "[1, 2]"])
def test_unparseable_content(content):
    with pytest.raises(UpstreamContractViolation):
        parse_completion(content, ConversationSummary, purpose="test")
