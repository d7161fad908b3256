"""
Logging setup for the check-in service.

Two output shapes share one handler:
    - JSON lines when running as a deployed service (no DEBUG, no TESTING)
    - short coloured lines on a developer terminal

LOG_LEVEL overrides the level.  Every record emitted while serving a
request carries the request id and, once identity is resolved, the acting
member and organization; background jobs add ``job_name`` via ``extra``.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

from flask import g, has_request_context

# Record attributes copied into the output when present
CONTEXT_FIELDS = (
    "request_id",
    "member_id",
    "organization_id",
    "job_name",
    "method",
    "path",
    "status",
    "duration_ms",
    "remote_addr",
)

_LEVEL_COLOURS = {
    logging.DEBUG: "\033[36m",
    logging.INFO: "\033[32m",
    logging.WARNING: "\033[33m",
    logging.ERROR: "\033[31m",
    logging.CRITICAL: "\033[35m",
}
_RESET = "\033[0m"

# Third-party loggers kept at WARNING
QUIET_LOGGERS = ("werkzeug", "urllib3", "sqlalchemy.engine", "httpx", "openai", "anthropic")


def _context_of(record: logging.LogRecord) -> dict:
    return {k: getattr(record, k) for k in CONTEXT_FIELDS if getattr(record, k, None) is not None}


class ActorContextFilter(logging.Filter):
    """Stamp request id and acting member from ``flask.g`` onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not has_request_context():
            return True
        record.request_id = getattr(record, "request_id", None) or g.get("request_id")
        actor = g.get("actor")
        if actor is not None:
            record.member_id = getattr(record, "member_id", None) or actor.id
            record.organization_id = getattr(record, "organization_id", None) or actor.organization_id
        return True


class JSONLineFormatter(logging.Formatter):
    """One JSON object per line for log shipping."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "where": f"{record.module}.{record.funcName}:{record.lineno}",
            **_context_of(record),
        }
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ConsoleFormatter(logging.Formatter):
    """``HH:MM:SS LEVEL logger (request) member=..: message [12ms]``"""

    def format(self, record: logging.LogRecord) -> str:
        ctx = _context_of(record)
        parts = [
            f"{_LEVEL_COLOURS.get(record.levelno, '')}"
            f"{datetime.fromtimestamp(record.created).strftime('%H:%M:%S')} "
            f"{record.levelname:<8}{_RESET}",
            record.name,
        ]
        if "request_id" in ctx:
            parts.append(f"({ctx['request_id']})")
        if "member_id" in ctx:
            parts.append(f"member={ctx['member_id']}")
        line = " ".join(parts) + f": {record.getMessage()}"
        if "duration_ms" in ctx:
            line += f" [{ctx['duration_ms']:.0f}ms]"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """Install the root handler for ``app``; safe to call once per app build."""
    testing = app.config.get("TESTING", False)
    deployed = not app.config.get("DEBUG", False) and not testing

    level_name = os.getenv("LOG_LEVEL", "INFO" if deployed else "DEBUG").upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        level = logging.INFO

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONLineFormatter() if deployed else ConsoleFormatter())
    handler.setLevel(level)
    handler.addFilter(ActorContextFilter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    app.logger.setLevel(level)

    if not testing:
        app.logger.info("Logging configured: level=%s format=%s", level_name,
                        "json" if deployed else "console")
