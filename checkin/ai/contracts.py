"""
Check-in Platform
Response contracts for the completion service.

Each call site has a strict pydantic model.  ``parse_completion`` turns
raw model output into a validated instance or raises
``UpstreamContractViolation``; it never guesses missing fields.

Usage:
    from checkin.ai.contracts import FollowupDecision, parse_completion

    decision = parse_completion(result["content"], FollowupDecision, purpose="followup_decision")
"""

import json
import logging
import re
from typing import Literal, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from checkin.core.exceptions import UpstreamContractViolation

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

_FENCE_OPEN = re.compile(r"^```\w*\n?")
_FENCE_CLOSE = re.compile(r"\n?```$")


class _Strict(BaseModel):
    model_config = ConfigDict(extra="ignore", strict=True, populate_by_name=True)


class FollowupDecision(_Strict):
    """Whether to ask one more follow-up question after an answer."""

    continue_: bool = Field(alias="continue")
    reply: str = ""
    next_question: str | None = None
    rationale: str = Field(min_length=1)

    @model_validator(mode="after")
    def _question_when_continuing(self):
        if self.continue_ and not (self.next_question or "").strip():
            raise ValueError("next_question is required when continue is true")
        return self

    def to_dict(self) -> dict:
        return {
            "continue": self.continue_,
            "reply": self.reply,
            "next_question": self.next_question if self.continue_ else None,
            "rationale": self.rationale,
        }


class ConversationSummary(_Strict):
    summary: str = Field(min_length=1)
    score: int = Field(ge=1, le=10)

    @field_validator("summary")
    @classmethod
    def _max_six_sentences(cls, value: str) -> str:
        sentences = [s for s in re.split(r"(?<=[.!?])\s+", value.strip()) if s]
        if len(sentences) > 6:
            return " ".join(sentences[:6])
        return value.strip()


class ConversationActions(_Strict):
    actions: list[str] = Field(min_length=3, max_length=3)
    rationale: str = ""

    @field_validator("actions")
    @classmethod
    def _non_blank(cls, value: list[str]) -> list[str]:
        cleaned = [a.strip() for a in value]
        if any(not a for a in cleaned):
            raise ValueError("actions must be non-empty strings")
        return cleaned


class RankedAction(_Strict):
    text: str = Field(min_length=1)
    priority: Literal["high", "medium", "low"]
    rationale: str = ""


class TopActions(_Strict):
    actions: list[RankedAction] = Field(min_length=3, max_length=3)
    general_rationale: str = ""


class InsightAdvice(_Strict):
    text: str = Field(min_length=1)
    priority: int = Field(ge=1, le=3)


class OrganizationInsightPayload(_Strict):
    summary: str = Field(min_length=1)
    advice: list[InsightAdvice] = Field(min_length=1, max_length=5)
    signal_words: list[str] = Field(default_factory=list)


def _strip_fences(content: str) -> str:
    cleaned = content.strip()
    if cleaned.startswith("```"):
        cleaned = _FENCE_OPEN.sub("", cleaned)
        cleaned = _FENCE_CLOSE.sub("", cleaned)
    return cleaned.strip()


def parse_completion(content: str | None, model_cls: type[M], *, purpose: str) -> M:
    """Validate raw completion text against ``model_cls``.

    Raises:
        UpstreamContractViolation: empty output, non-JSON, non-object or
            schema mismatch.
    """
    if not content or not content.strip():
        raise UpstreamContractViolation(purpose, "empty response", raw=content)

    cleaned = _strip_fences(content)
    try:
        payload = json.loads(cleaned)
    except json.JSONDecodeError as exc:
        logger.warning("Completion for %s is not JSON: %s", purpose, exc)
        raise UpstreamContractViolation(purpose, "response is not valid JSON", raw=content[:500]) from exc

    if not isinstance(payload, dict):
        raise UpstreamContractViolation(purpose, "response is not a JSON object", raw=content[:500])

    try:
        return model_cls.model_validate(payload)
    except ValidationError as exc:
        fields = sorted({".".join(str(p) for p in err["loc"]) or "<root>" for err in exc.errors()})
        logger.warning("Completion for %s violates contract on %s", purpose, fields)
        raise UpstreamContractViolation(
            purpose, f"schema violation on {', '.join(fields)}", raw=content[:500],
        ) from exc
