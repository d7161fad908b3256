"""
PII screening gateway.

All outbound calls to the remote personal-data screening API go through
this class.  The API takes ``{"text": ...}`` and answers with an array of
verdicts ``{satisfies, labels[], reason, article}``.

Failure semantics:
  - transport error, timeout, non-2xx  → PIIServiceUnavailable
  - 2xx with a body that is not a verdict array → UpstreamContractViolation
Policy (block / fail open / local fallback) is decided by the caller,
see ``checkin.services.pii_screen``.

Testability: pass a fake ``session`` exposing ``post(url, json=, timeout=, headers=)``.
"""

from __future__ import annotations

import logging
import time

import requests

from checkin.core.exceptions import UpstreamContractViolation, UpstreamUnavailable

logger = logging.getLogger(__name__)

_DEFAULT_TIMEOUT = 10


class PIIServiceUnavailable(UpstreamUnavailable):
    """The screening API could not be reached or answered non-2xx."""

    def __init__(self, message: str) -> None:
        super().__init__("pii screening", message)


class PIIVerdict:
    """Aggregated outcome of one screening call.

    Attributes:
        allowed:   False when any verdict had ``satisfies == False``.
        labels:    Labels of the failing verdicts, in order, de-duplicated.
        reasons:   Reasons of the failing verdicts.
        articles:  Distinct legal articles cited by failing verdicts.
        source:    "remote" or "local".
    """

    def __init__(self, allowed: bool, labels=None, reasons=None, articles=None,
                 source: str = "remote") -> None:
        self.allowed = allowed
        self.labels = list(labels or [])
        self.reasons = list(reasons or [])
        self.articles = list(articles or [])
        self.source = source

    def to_dict(self) -> dict:
        return {
            "allowed": self.allowed,
            "labels": self.labels,
            "reasons": self.reasons,
            "articles": self.articles,
            "source": self.source,
        }

    def __repr__(self):
        return f"<PIIVerdict allowed={self.allowed} labels={self.labels} source={self.source}>"


class PIIGateway:
    """Remote PII screening API client.

    Usage:
        gw = PIIGateway(base_url="https://pii.example/api/validate")
        verdict = gw.screen("my answer")
    """

    def __init__(self, base_url: str, *, timeout: float = _DEFAULT_TIMEOUT,
                 session: requests.Session | None = None) -> None:
        self.base_url = base_url
        self.timeout = timeout
        self._session: requests.Session | None = session

    @property
    def session(self) -> requests.Session:
        """Return (or lazily create) the requests.Session."""
        if self._session is None:
            self._session = requests.Session()
        return self._session

    def screen(self, text: str) -> PIIVerdict:
        """Screen ``text``; empty text is trivially allowed without a call."""
        if not text or not text.strip():
            return PIIVerdict(allowed=True)

        start = time.monotonic()
        try:
            resp = self.session.post(
                self.base_url,
                json={"text": text},
                headers={"Accept": "application/json"},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            logger.warning("PII screening request failed: %s", exc)
            raise PIIServiceUnavailable(str(exc)) from exc

        duration_ms = int((time.monotonic() - start) * 1000)
        if not (200 <= resp.status_code < 300):
            logger.warning("PII screening returned HTTP %s (%dms)", resp.status_code, duration_ms)
            raise PIIServiceUnavailable(f"HTTP {resp.status_code}")

        try:
            data = resp.json()
        except ValueError as exc:
            raise UpstreamContractViolation("pii_screening", "response is not JSON") from exc

        return self._aggregate(data)

    @staticmethod
    def _aggregate(data) -> PIIVerdict:
        if not isinstance(data, list):
            raise UpstreamContractViolation("pii_screening", "response is not a verdict array")

        labels: list[str] = []
        reasons: list[str] = []
        articles: list[str] = []
        for item in data:
            if not isinstance(item, dict) or not isinstance(item.get("satisfies"), bool):
                raise UpstreamContractViolation("pii_screening", "verdict without boolean 'satisfies'")
            if item["satisfies"]:
                continue
            for label in item.get("labels") or []:
                if label not in labels:
                    labels.append(label)
            reasons.append(item.get("reason") or "unspecified")
            article = item.get("article")
            if article and article not in articles:
                articles.append(article)

        return PIIVerdict(allowed=not reasons, labels=labels, reasons=reasons,
                          articles=articles, source="remote")
