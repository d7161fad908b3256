"""
PII screening policy.

Answers are screened before they are persisted:
    1. Remote screening API (when configured): any failing verdict blocks.
    2. Remote unreachable or malformed → logged, fall back to the local
       heuristic screen below (fail open on the remote, not on the heuristic).
    3. No remote configured → local heuristic only.

The local screen looks for e-mail addresses, Dutch phone numbers, NL IBANs,
BSNs passing the 11-check, birth dates, script tags, links to executable
files and long base64 blobs.
"""

import logging
import re

from checkin.core.exceptions import UpstreamContractViolation
from checkin.integrations.pii_gateway import PIIGateway, PIIServiceUnavailable, PIIVerdict

logger = logging.getLogger(__name__)

PATTERNS = {
    "email": re.compile(r"[a-z0-9._%+-]+@[a-z0-9.-]+\.[a-z]{2,}", re.I),
    "phone_mobile": re.compile(r"(?:\+31|0)\s*6(?:[\s-]?\d){8}\b"),
    "phone_landline": re.compile(r"(?:\+31|0)\s*\d(?:[\s-]?\d){8,9}\b"),
    "iban": re.compile(r"\b[A-Z]{2}\d{2}[A-Z0-9]{4}\d{7}(?:[A-Z0-9]?){0,16}\b", re.I),
    "bsn": re.compile(r"\b\d{9}\b"),
    "birth_date": re.compile(r"\b(0?[1-9]|[12]\d|3[01])[-/](0?[1-9]|1[0-2])[-/](19|20)\d{2}\b"),
    "script": re.compile(r"<\s*script.*?>.*?<\s*/\s*script\s*>", re.I | re.S),
    "suspicious_link": re.compile(r"(https?://)?[a-z0-9.-]+\.(exe|zip|scr|php|bat|cmd|sh)(\b|/|$)", re.I),
    "base64": re.compile(r"\b([A-Za-z0-9+/]{40,}={0,2})(?![A-Za-z0-9+/=])"),
}

_NL_IBAN = re.compile(r"^NL\d{2}[A-Z]{4}\d{10}$")


def is_valid_bsn(value: str) -> bool:
    """Dutch citizen service number 11-check (weights 9..2, last digit -1)."""
    if len(value) != 9 or not value.isdigit():
        return False
    total = sum(int(value[i]) * (9 - i) for i in range(8)) - int(value[8])
    return total % 11 == 0


def is_valid_iban(value: str) -> bool:
    """Shape check for Dutch IBANs (NL + 2 digits + 4 letters + 10 digits)."""
    if not value:
        return False
    return bool(_NL_IBAN.match(re.sub(r"\s", "", value).upper()))


_MASKS = (
    ("email", "EMAIL"),
    ("phone_mobile", "PHONE"),
    ("phone_landline", "PHONE"),
    ("iban", "IBAN"),
    ("bsn", "BSN"),
    ("birth_date", "BIRTHDATE"),
)


def _accept(label: str, match: str) -> bool:
    if label == "bsn":
        return is_valid_bsn(match)
    if label == "iban":
        return is_valid_iban(match)
    return True


def find_sensitive(text: str) -> list[str]:
    """Return the labels of every heuristic that fires on ``text``."""
    if not text:
        return []
    found = []
    for label, pattern in PATTERNS.items():
        for m in pattern.finditer(text):
            if _accept(label, m.group(0)):
                found.append(label)
                break
    return found


def mask_sensitive(text: str) -> tuple[str, dict[str, int]]:
    """Replace detected personal data with numbered placeholders.

    Returns the masked text and a per-placeholder count, e.g.
    ``("mail [EMAIL_1]", {"EMAIL": 1})``.  Used for free-text remarks that
    are stored without a blocking screen.
    """
    counts: dict[str, int] = {}
    masked = text or ""

    for label, placeholder in _MASKS:
        def _sub(m, _label=label, _ph=placeholder):
            if not _accept(_label, m.group(0)):
                return m.group(0)
            counts[_ph] = counts.get(_ph, 0) + 1
            return f"[{_ph}_{counts[_ph]}]"

        masked = PATTERNS[label].sub(_sub, masked)
    return masked, counts


def local_verdict(text: str) -> PIIVerdict:
    labels = find_sensitive(text)
    return PIIVerdict(
        allowed=not labels,
        labels=labels,
        reasons=[f"local heuristic matched {label}" for label in labels],
        source="local",
    )


class PIIScreen:
    """Screening policy in front of the optional remote gateway."""

    def __init__(self, gateway: PIIGateway | None = None):
        self.gateway = gateway

    def check(self, text: str) -> PIIVerdict:
        if self.gateway is None:
            return local_verdict(text)

        try:
            return self.gateway.screen(text)
        except PIIServiceUnavailable as exc:
            logger.warning("PII service unreachable, using local screen: %s", exc)
        except UpstreamContractViolation as exc:
            logger.error("PII service returned malformed verdicts, using local screen: %s", exc)
        return local_verdict(text)


def build_pii_screen(app) -> PIIScreen:
    """Build the screen from app config (remote only when PII_SERVICE_URL is set)."""
    url = app.config.get("PII_SERVICE_URL")
    if not url:
        return PIIScreen()
    return PIIScreen(PIIGateway(url, timeout=app.config.get("PII_SERVICE_TIMEOUT", 10)))
