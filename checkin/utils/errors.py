"""JSON error envelope for every API response that is not a success.

Body shape::

    {"error": "<human message>", "code": "ERR_…", "details": {...}}

``details`` is omitted when empty.  Usage::

    from checkin.utils.errors import E, api_error

    return api_error(E.NOT_FOUND, "Result not found")
    return api_error(E.INSUFFICIENT_QUORUM, "Insufficient data",
                     details={"observed": 3, "required": 4})
"""

from __future__ import annotations

from flask import jsonify


class E:
    """Error codes.  The HTTP status for each lives in ``STATUS_BY_CODE``."""

    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"
    INVALID_SCOPE = "ERR_INVALID_SCOPE"
    PII_BLOCKED = "ERR_PII_BLOCKED"
    INSUFFICIENT_QUORUM = "ERR_INSUFFICIENT_QUORUM"

    UNAUTHENTICATED = "ERR_UNAUTHENTICATED"
    FORBIDDEN = "ERR_FORBIDDEN"
    NOT_FOUND = "ERR_NOT_FOUND"

    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"
    CONFLICT_STATE = "ERR_CONFLICT_STATE"

    UPSTREAM_CONTRACT = "ERR_UPSTREAM_CONTRACT"
    UPSTREAM_UNAVAILABLE = "ERR_UPSTREAM_UNAVAILABLE"
    STORE_CONFLICT = "ERR_STORE_CONFLICT"

    DATABASE = "ERR_DATABASE"
    INTERNAL = "ERR_INTERNAL"


STATUS_BY_CODE: dict[str, int] = {
    # caller sent something unusable
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    # well-formed but refused by a domain rule
    E.INVALID_SCOPE: 422,
    E.PII_BLOCKED: 422,
    E.INSUFFICIENT_QUORUM: 422,
    # identity and authorization
    E.UNAUTHENTICATED: 401,
    E.FORBIDDEN: 403,
    E.NOT_FOUND: 404,
    # state
    E.CONFLICT_DUPLICATE: 409,
    E.CONFLICT_STATE: 409,
    # collaborators
    E.UPSTREAM_CONTRACT: 502,
    E.UPSTREAM_UNAVAILABLE: 503,
    E.STORE_CONFLICT: 503,
    # ours
    E.DATABASE: 500,
    E.INTERNAL: 500,
}


def api_error(code: str, message: str, *, status: int | None = None, details: dict | None = None):
    """Build ``(response, status)`` for a Flask view.

    ``status`` overrides the code's default; unknown codes fall back to 400.
    """
    body = {"error": message, "code": code}
    if details:
        body["details"] = details
    return jsonify(body), status or STATUS_BY_CODE.get(code, 400)
