"""
Check-in Platform
HTTP blueprints.  Every blueprint lives under ``/api/v1`` and maps the
exception taxonomy in ``checkin.core.exceptions`` through ``register_error_handlers``.
"""

import logging

from checkin.core.exceptions import (
    AccessDenied,
    ConflictError,
    InsufficientQuorum,
    InvalidScope,
    NotFoundError,
    PersonalDataBlocked,
    StateConflictError,
    TransientStoreConflict,
    UpstreamContractViolation,
    UpstreamUnavailable,
    ValidationError,
)
from checkin.models import db
from checkin.utils.errors import E, api_error

logger = logging.getLogger(__name__)


def register_error_handlers(bp):
    """Map the exception taxonomy to JSON error responses for ``bp``.

    Every handler rolls back the request's unit of work first.
    """

    @bp.errorhandler(PersonalDataBlocked)
    def _pii_blocked(error):
        db.session.rollback()
        return api_error(E.PII_BLOCKED, str(error), details={"labels": error.labels})

    @bp.errorhandler(ValidationError)
    def _validation(error):
        db.session.rollback()
        return api_error(E.VALIDATION_INVALID, str(error), details=error.details)

    @bp.errorhandler(AccessDenied)
    def _forbidden(error):
        db.session.rollback()
        return api_error(E.FORBIDDEN, "Not allowed", details={"reason": error.reason})

    @bp.errorhandler(InvalidScope)
    def _invalid_scope(error):
        db.session.rollback()
        return api_error(E.INVALID_SCOPE, str(error), details={"team_id": error.team_id})

    @bp.errorhandler(NotFoundError)
    def _not_found(error):
        db.session.rollback()
        return api_error(E.NOT_FOUND, f"{error.resource} not found")

    @bp.errorhandler(StateConflictError)
    def _state_conflict(error):
        db.session.rollback()
        return api_error(E.CONFLICT_STATE, str(error))

    @bp.errorhandler(ConflictError)
    def _conflict(error):
        db.session.rollback()
        return api_error(E.CONFLICT_DUPLICATE, str(error),
                         details={"field": error.field, "value": error.value})

    @bp.errorhandler(InsufficientQuorum)
    def _quorum(error):
        db.session.rollback()
        return api_error(E.INSUFFICIENT_QUORUM, "Insufficient data",
                         details={"observed": error.observed, "required": error.required})

    @bp.errorhandler(UpstreamContractViolation)
    def _contract(error):
        db.session.rollback()
        logger.warning("Upstream contract violation: %s", error)
        return api_error(E.UPSTREAM_CONTRACT, "Completion service returned an invalid response",
                         details={"purpose": error.purpose})

    @bp.errorhandler(UpstreamUnavailable)
    def _unavailable(error):
        db.session.rollback()
        return api_error(E.UPSTREAM_UNAVAILABLE, str(error))

    @bp.errorhandler(TransientStoreConflict)
    def _store_conflict(error):
        db.session.rollback()
        logger.error("Store conflict surfaced to client: %s", error)
        return api_error(E.STORE_CONFLICT, "Concurrent update conflict, please retry")

    return bp
