"""
Actor context middleware.

Resolves the acting Member for every API request and stores it on
``g.actor``.  Token verification happens upstream (gateway / identity
provider); by the time a request reaches us it carries the verified
member id in the ``X-Member-ID`` header.

Chain order:
  timing.py  →  actor_context.py  →  route handler
"""

import logging

from flask import g, request

from checkin.models import db
from checkin.models.organization import Member
from checkin.utils.errors import E, api_error

logger = logging.getLogger(__name__)

ACTOR_HEADER = "X-Member-ID"

# Paths that run without an identity
ACTOR_SKIP_PREFIXES = (
    "/api/v1/health",
)


def init_actor_context(app):
    """Register actor resolution as a before_request hook."""

    @app.before_request
    def _actor_context():
        g.actor = None

        if not request.path.startswith("/api/v1/"):
            return None
        for prefix in ACTOR_SKIP_PREFIXES:
            if request.path.startswith(prefix):
                return None

        raw = request.headers.get(ACTOR_HEADER, "").strip()
        if not raw:
            return api_error(E.UNAUTHENTICATED, "Missing member identity")
        try:
            member_id = int(raw)
        except ValueError:
            return api_error(E.UNAUTHENTICATED, "Malformed member identity")

        member = db.session.get(Member, member_id)
        if member is None:
            logger.info("Unknown member id on request: %s", member_id)
            return api_error(E.UNAUTHENTICATED, "Unknown member")

        g.actor = member
        return None
