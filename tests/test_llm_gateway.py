"""
Check-in Platform
Tests: LLM gateway routing, retry and usage logging.
"""

import pytest

from checkin.ai import prompts
from checkin.ai.contracts import ConversationSummary, FollowupDecision, TopActions, parse_completion
from checkin.ai.gateway import LLMGateway, LLMProvider, LocalStubProvider
from checkin.core.exceptions import UpstreamUnavailable
from checkin.models.ai import AIUsageLog, calculate_cost


class _FlakyProvider(LLMProvider):
    def __init__(self, failures):
        self.failures = failures
        self.calls = 0

    def chat(self, messages, model, **kwargs):
        self.calls += 1
        if self.calls <= self.failures:
            raise RuntimeError("provider hiccup")
        return {"content": '{"ok": true}', "prompt_tokens": 100, "completion_tokens": 50, "model": model}


def _gateway(provider):
    waits = []
    gw = LLMGateway(providers={"openai": provider, "local": LocalStubProvider()},
                    default_model="gpt-4o-mini", wait=waits.append)
    return gw, waits


MESSAGES = [{"role": "system", "content": "Task: test"}, {"role": "user", "content": "{}"}]


class TestRetry:
    def test_recovers_after_transient_failures(self):
        provider = _FlakyProvider(failures=2)
        gw, waits = _gateway(provider)
        result = gw.chat(MESSAGES, purpose="test", organization_id=None)

        assert result["content"] == '{"ok": true}'
        assert result["provider"] == "openai"
        assert provider.calls == 3
        assert waits == [1, 2]

    def test_exhaustion_raises_unavailable_and_logs_failure(self):
        gw, _ = _gateway(_FlakyProvider(failures=10))
        with pytest.raises(UpstreamUnavailable):
            gw.chat(MESSAGES, purpose="conversation_summary", max_retries=2)

        log = AIUsageLog.query.one()
        assert log.success is False
        assert log.purpose == "conversation_summary"
        assert "provider hiccup" in log.error_message


class TestUsage:
    def test_successful_call_is_costed(self):
        gw, _ = _gateway(_FlakyProvider(failures=0))
        result = gw.chat(MESSAGES, purpose="followup_decision", user="m@acme.test")

        assert result["cost_usd"] == pytest.approx(calculate_cost("gpt-4o-mini", 100, 50))
        log = AIUsageLog.query.one()
        assert log.total_tokens == 150
        assert log.user == "m@acme.test"


class TestLocalStub:
    def test_unknown_provider_falls_back_to_stub(self):
        gw = LLMGateway(providers={"local": LocalStubProvider()}, default_model="gpt-4o")
        result = gw.chat(prompts.conversation_summary({"title": "Energy"}, []), purpose=prompts.TASK_SUMMARY)
        assert result["provider"] == "local"

    @pytest.mark.parametrize("messages,model", [
        (prompts.followup_decision({"title": "T"}, "Q?", "A.", []), FollowupDecision),
        (prompts.conversation_summary({"title": "T"}, []), ConversationSummary),
        (prompts.top_actions_plan("2025-06", []), TopActions),
    ])
    def test_stub_output_honours_contracts(self, messages, model):
        content = LocalStubProvider().chat(messages)["content"]
        assert parse_completion(content, model, purpose="stub")
