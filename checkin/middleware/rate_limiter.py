"""
Rate limiting configuration.

Applies per-blueprint limits using Flask-Limiter.  The Limiter instance is
created in checkin/__init__.py with no default limits; this module applies
limits per route group, keyed by the acting member when known.

Usage:
    from checkin.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

from flask import g, request as flask_request

logger = logging.getLogger(__name__)

CONVERSATION_LIMIT = "60/minute"
ORGANIZATION_LIMIT = "120/minute"
ADMIN_LIMIT = "10/minute"


def member_rate_limit_key():
    """Member id when resolved, else remote IP."""
    actor = getattr(g, "actor", None)
    if actor is not None:
        return f"member:{actor.id}"
    return flask_request.remote_addr or "unknown"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits:
        - Conversation endpoints:  60/minute per member (each answer may call the completion service)
        - Organization endpoints:  120/minute per member
        - Admin job endpoints:     10/minute
        - Health check:            exempt

    Rate limiting is disabled in testing mode.
    """
    if app.config.get("TESTING") or not app.config.get("RATELIMIT_ENABLED", True):
        app.logger.info("Rate limiter disabled")
        return

    limits = {
        "conversation": CONVERSATION_LIMIT,
        "organization": ORGANIZATION_LIMIT,
        "admin_jobs": ADMIN_LIMIT,
    }
    for bp_name, limit in limits.items():
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(limit, key_func=member_rate_limit_key)(bp)

    bp = app.blueprints.get("health_bp")
    if bp:
        limiter.exempt(bp)

    app.logger.info("Rate limiter configured (conversation=%s, organization=%s, admin=%s)",
                    CONVERSATION_LIMIT, ORGANIZATION_LIMIT, ADMIN_LIMIT)
