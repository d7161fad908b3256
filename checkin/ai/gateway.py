"""
Check-in Platform
LLM Gateway: the only way the service talks to the completion service.

    gw = get_gateway()
    result = gw.chat(messages, purpose=prompts.TASK_SUMMARY, organization_id=3)
    result["content"]   # raw text; validate with checkin.ai.contracts

Routing is by model family (``gpt-*`` → OpenAI, ``claude-*`` → Anthropic);
a family without a configured API key falls back to the local stub, which
answers every task with a contract-valid canned payload.  Each call is
retried with capped exponential backoff and leaves one AIUsageLog row
(success or failure).  The gateway never looks inside the content.
"""

import json
import logging
import os
import re
import time
from abc import ABC, abstractmethod

from sqlalchemy.exc import SQLAlchemyError

from checkin.ai import prompts
from checkin.core.exceptions import UpstreamUnavailable
from checkin.models import db
from checkin.models.ai import AIUsageLog, calculate_cost

logger = logging.getLogger(__name__)

MAX_BACKOFF_SECONDS = 4

_TASK_LINE = re.compile(r"^Task: (\w+)", re.M)


class LLMProvider(ABC):
    """One chat-completion backend.

    ``chat`` returns ``{content, prompt_tokens, completion_tokens, model}``
    and raises whatever its SDK raises.
    """

    @abstractmethod
    def chat(self, messages: list, model: str, **kwargs) -> dict:
        ...


def _split_system(messages: list) -> tuple[str, list]:
    system = "\n".join(m["content"] for m in messages if m["role"] == "system")
    return system, [m for m in messages if m["role"] != "system"]


class AnthropicProvider(LLMProvider):
    """Claude models through the ``anthropic`` SDK."""

    def __init__(self, api_key: str | None = None):
        self.api_key = api_key or os.getenv("ANTHROPIC_API_KEY", "")
        self._client = None

    @property
    def client(self):
        if self._client is None:
            import anthropic
            self._client = anthropic.Anthropic(api_key=self.api_key)
        return self._client

    def chat(self, messages: list, model: str = "claude-3-5-haiku-20241022", **kwargs) -> dict:
        system, rest = _split_system(messages)
        params = {
            "model": model,
            "messages": rest,
            "max_tokens": kwargs.get("max_tokens", 2048),
            "temperature": kwargs.get("temperature", 0.3),
        }
        if system:
            params["system"] = system
        response = self.client.messages.create(**params)
        return {
            "content": response.content[0].text,
            "prompt_tokens": response.usage.input_tokens,
            "completion_tokens": response.usage.output_tokens,
            "model": model,
        }


class OpenAIProvider(LLMProvider):
    """GPT models through the ``openai`` SDK, in JSON-object output mode."""

    def __init__(self, api_key: str | None = None):
        self.api_key = api_key or os.getenv("OPENAI_API_KEY", "")
        self._client = None

    @property
    def client(self):
        if self._client is None:
            import openai
            self._client = openai.OpenAI(api_key=self.api_key)
        return self._client

    def chat(self, messages: list, model: str = "gpt-4o-mini", **kwargs) -> dict:
        response = self.client.chat.completions.create(
            model=model,
            messages=messages,
            max_tokens=kwargs.get("max_tokens", 2048),
            temperature=kwargs.get("temperature", 0.3),
            response_format={"type": "json_object"},
        )
        return {
            "content": response.choices[0].message.content,
            "prompt_tokens": response.usage.prompt_tokens,
            "completion_tokens": response.usage.completion_tokens,
            "model": model,
        }


# Canned, contract-valid answers of the local stub, per task
STUB_REPLIES = {
    prompts.TASK_FOLLOWUP: {
        "continue": False,
        "reply": "Thank you, that is clear.",
        "next_question": None,
        "rationale": "The answer is specific enough to move on.",
    },
    prompts.TASK_SUMMARY: {
        "summary": "You describe a workable situation with a few points of attention.",
        "score": 6,
    },
    prompts.TASK_ACTIONS: {
        "actions": [
            "Plan a short check-in with your manager.",
            "Block one focus hour per day.",
            "Write down what gave you energy this week.",
        ],
        "rationale": "Small steps that fit the points raised.",
    },
    prompts.TASK_TOP_ACTIONS: {
        "actions": [
            {"text": "Discuss workload priorities with your manager.", "priority": "high",
             "rationale": "Workload came up in several themes."},
            {"text": "Schedule recovery time after peak weeks.", "priority": "medium",
             "rationale": "Energy dips after busy periods."},
            {"text": "Share one success with your team.", "priority": "low",
             "rationale": "Recognition supports motivation."},
        ],
        "general_rationale": "Focus on workload first, then recovery and recognition.",
    },
    prompts.TASK_INSIGHT: {
        "summary": "Participants are broadly positive with recurring remarks about workload.",
        "advice": [
            {"text": "Review workload distribution per team.", "priority": 1},
            {"text": "Make recovery time after deadlines explicit.", "priority": 2},
        ],
        "signal_words": ["workload", "deadlines"],
    },
}


class LocalStubProvider(LLMProvider):
    """Deterministic offline provider for development and tests."""

    def chat(self, messages: list, model: str = "local-stub", **kwargs) -> dict:
        system, rest = _split_system(messages)
        match = _TASK_LINE.search(system)
        content = json.dumps(STUB_REPLIES.get(match.group(1) if match else "", {"response": "ok"}))
        user_words = sum(len(m["content"].split()) for m in rest)
        return {
            "content": content,
            "prompt_tokens": user_words * 2,
            "completion_tokens": len(content.split()) * 2,
            "model": "local-stub",
        }


def provider_for(model: str) -> str:
    """Provider name for a model id."""
    if model.startswith("gpt-"):
        return "openai"
    if model.startswith("claude-"):
        return "anthropic"
    return "local"


class LLMGateway:
    """Routes, retries and accounts for completion calls.

    Args:
        providers: name → LLMProvider; built from API keys in the env when omitted.
        default_model: model used when ``chat`` gets none.
        wait: ``wait(seconds)`` between attempts; tests pass a recorder.
    """

    def __init__(self, providers: dict | None = None, default_model: str | None = None,
                 wait=None):
        self._providers = dict(providers) if providers else self._providers_from_env()
        self.default_model = default_model or os.getenv("LLM_DEFAULT_CHAT_MODEL", "gpt-4o-mini")
        self._wait = wait or time.sleep

    @staticmethod
    def _providers_from_env() -> dict:
        found = {"local": LocalStubProvider()}
        if os.getenv("OPENAI_API_KEY"):
            found["openai"] = OpenAIProvider()
        if os.getenv("ANTHROPIC_API_KEY"):
            found["anthropic"] = AnthropicProvider()
        return found

    def _resolve(self, model: str) -> tuple[str, LLMProvider]:
        name = provider_for(model)
        if name in self._providers:
            return name, self._providers[name]
        logger.warning("No %s provider configured; model %s served by the local stub", name, model)
        return "local", self._providers.get("local") or LocalStubProvider()

    def chat(self, messages: list, model: str | None = None, *, purpose: str = "",
             user: str = "system", organization_id: int | None = None,
             max_retries: int = 3, **kwargs) -> dict:
        """Send ``messages``; return the provider reply plus accounting.

        Returns:
            ``{content, prompt_tokens, completion_tokens, model, cost_usd,
            latency_ms, provider}``

        Raises:
            UpstreamUnavailable: all ``max_retries`` attempts failed.
        """
        model = model or self.default_model
        provider_name, provider = self._resolve(model)
        usage = {"provider": provider_name, "model": model, "user": user,
                 "purpose": purpose, "organization_id": organization_id}

        last_error = None
        for attempt in range(1, max_retries + 1):
            started = time.monotonic()
            try:
                reply = provider.chat(messages, model, **kwargs)
            except Exception as exc:  # SDKs raise their own error hierarchies
                last_error = exc
                logger.warning("Completion attempt %d/%d (%s) failed: %s",
                               attempt, max_retries, purpose or "chat", exc)
                if attempt < max_retries:
                    self._wait(min(2 ** (attempt - 1), MAX_BACKOFF_SECONDS))
                continue

            reply["latency_ms"] = int((time.monotonic() - started) * 1000)
            reply["cost_usd"] = calculate_cost(model, reply["prompt_tokens"], reply["completion_tokens"])
            reply["provider"] = provider_name
            self._record(usage, prompt_tokens=reply["prompt_tokens"],
                         completion_tokens=reply["completion_tokens"],
                         cost_usd=reply["cost_usd"], latency_ms=reply["latency_ms"])
            return reply

        self._record(usage, success=False, error_message=str(last_error))
        raise UpstreamUnavailable("completion service",
                                  f"failed after {max_retries} attempts: {last_error}")

    @staticmethod
    def _record(usage: dict, *, prompt_tokens=0, completion_tokens=0, cost_usd=0.0,
                latency_ms=0, success=True, error_message=None) -> None:
        """Write one AIUsageLog in a savepoint; a failed write is logged only."""
        try:
            with db.session.begin_nested():
                db.session.add(AIUsageLog(
                    **usage,
                    prompt_tokens=prompt_tokens,
                    completion_tokens=completion_tokens,
                    total_tokens=prompt_tokens + completion_tokens,
                    cost_usd=cost_usd,
                    latency_ms=latency_ms,
                    success=success,
                    error_message=error_message,
                ))
        except SQLAlchemyError as exc:
            logger.error("Could not record completion usage: %s", exc)


_default_gateway: LLMGateway | None = None


def get_gateway() -> LLMGateway:
    """Process-wide gateway, built on first use."""
    global _default_gateway
    if _default_gateway is None:
        _default_gateway = LLMGateway()
    return _default_gateway
