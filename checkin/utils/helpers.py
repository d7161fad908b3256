"""Shared blueprint helpers.

get_json_body:       request body as dict, ValidationError when not an object
config_value:       app setting with a default outside an app context
optional_int_arg:    query-string int (team_id) with a 400 on garbage
db_commit_or_error:  commit the request's unit of work, mapping DB errors
"""
import logging

from flask import current_app, has_app_context, request
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError

from checkin.core.exceptions import ValidationError
from checkin.models import db
from checkin.utils.errors import E, api_error

logger = logging.getLogger(__name__)


def get_json_body() -> dict:
    """Return the JSON body as a dict; an empty body is treated as ``{}``."""
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def optional_int_arg(name: str) -> int | None:
    """Read an optional integer query argument.

    ``?team_id=`` (empty) reads as None; ``?team_id=abc`` is a 400.
    """
    raw = request.args.get(name)
    if raw is None or raw == "":
        return None
    try:
        return int(raw)
    except ValueError as exc:
        raise ValidationError(f"{name} must be an integer", details={name: raw}) from exc


def require_int(data: dict, name: str) -> int:
    """Pull a required integer field out of a JSON body."""
    value = data.get(name)
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{name} is required", details={name: "required"})
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{name} must be an integer", details={name: value}) from exc


# ── Database commit helper ───────────────────────────────────────────────────

def db_commit_or_error():
    """Commit the request's unit of work.

    Returns None on success, otherwise an ``api_error`` response after a
    rollback: a constraint violation is a 409 duplicate, anything else a 500.

        err = db_commit_or_error()
        if err:
            return err
    """
    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        logger.warning("Commit rejected by a constraint: %s", exc.orig)
        return api_error(E.CONFLICT_DUPLICATE, "Duplicate or constraint violation")
    except OperationalError:
        db.session.rollback()
        logger.exception("Commit failed: database unavailable or locked")
        return api_error(E.DATABASE, "Database error")
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Commit failed")
        return api_error(E.DATABASE, "Database error")
    return None


def config_value(name: str, default=None):
    """Read an app setting, falling back to ``default`` outside an app context."""
    if has_app_context():
        return current_app.config.get(name, default)
    return default
