"""
Check-in Platform
Flask application factory.

    from checkin import create_app
    app = create_app()           # APP_ENV, or "development"
    app = create_app("testing")
"""

import importlib
import logging
import os

import click
from flask import Flask, abort, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import engine as _sa_engine
from sqlalchemy import event as _sa_event
from sqlalchemy.exc import SQLAlchemyError

from checkin.config import config
from checkin.middleware.actor_context import init_actor_context
from checkin.middleware.logging_config import configure_logging
from checkin.middleware.rate_limiter import init_rate_limits
from checkin.middleware.timing import init_request_timing
from checkin.models import db
from checkin.services.pii_screen import build_pii_screen
from checkin.utils.errors import E, api_error

logger = logging.getLogger(__name__)

_MODEL_MODULES = ("ai", "audit", "conversation", "insight", "organization", "scheduling", "theme")


@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """SQLite ignores foreign keys (and ON DELETE CASCADE) unless asked."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


migrate = Migrate()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],  # per-blueprint limits only
    storage_uri=os.getenv("REDIS_URL") or "memory://",
)


def create_app(config_name=None):
    """Build the app for ``config_name`` (development | testing | production)."""
    config_name = config_name or os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    cfg = config[config_name]
    app.config.from_object(cfg() if config_name == "production" else cfg)
    app.config.setdefault("MAX_CONTENT_LENGTH", 1024 * 1024)

    configure_logging(app)

    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)
    origins = [o.strip() for o in app.config.get("CORS_ORIGINS", "*").split(",") if o.strip()]
    if origins and origins != ["*"]:
        CORS(app, origins=origins)
    else:
        CORS(app)

    app.extensions["pii_screen"] = build_pii_screen(app)

    init_request_timing(app)
    init_actor_context(app)
    _register_request_guards(app)
    _create_tables(app)
    _register_blueprints(app)
    _register_error_handlers(app)
    init_rate_limits(app, limiter)
    _register_jobs(app)
    return app


def _register_request_guards(app):
    @app.before_request
    def _guard_request():
        max_len = app.config.get("MAX_CONTENT_LENGTH")
        if max_len and request.content_length and request.content_length > max_len:
            abort(413)
        if (request.method in ("POST", "PUT", "PATCH") and request.path.startswith("/api/")
                and request.data and "json" not in (request.content_type or "")):
            abort(415, description="Content-Type must be application/json")
        return None


def _create_tables(app):
    """Import every model module, then CREATE IF NOT EXISTS."""
    for name in _MODEL_MODULES:
        importlib.import_module(f"checkin.models.{name}")
    with app.app_context():
        try:
            db.create_all()
        except SQLAlchemyError as exc:
            app.logger.warning("db.create_all() failed: %s", exc)


def _register_blueprints(app):
    from checkin.blueprints.admin_jobs_bp import admin_jobs_bp
    from checkin.blueprints.conversation_bp import conversation_bp
    from checkin.blueprints.health_bp import health_bp
    from checkin.blueprints.organization_bp import organization_bp

    for bp in (conversation_bp, organization_bp, admin_jobs_bp, health_bp):
        app.register_blueprint(bp)


def _register_error_handlers(app):
    @app.errorhandler(404)
    def not_found(e):
        return api_error(E.NOT_FOUND, "Not found", details={"path": request.path})

    @app.errorhandler(405)
    def method_not_allowed(e):
        return api_error(E.VALIDATION_INVALID, "Method not allowed", status=405)

    @app.errorhandler(413)
    def too_large(e):
        return api_error(E.VALIDATION_INVALID, "Request body too large", status=413)

    @app.errorhandler(415)
    def unsupported_media(e):
        return api_error(E.VALIDATION_INVALID, e.description, status=415)

    @app.errorhandler(429)
    def rate_limited(e):
        return api_error(E.VALIDATION_INVALID, "Too many requests", status=429,
                         details={"limit": str(e.description)})

    @app.errorhandler(500)
    def server_error(e):
        db.session.rollback()
        logger.error("Unhandled error: %s", e, exc_info=True)
        return api_error(E.INTERNAL, "Internal server error")


def _register_jobs(app):
    """Register the sweeps and the ``flask run-jobs`` cron entry point."""
    importlib.import_module("checkin.services.scheduled_jobs")
    from checkin.services.scheduler_service import SchedulerService, get_registered_jobs
    SchedulerService.init_app(app)

    @app.cli.command("run-jobs")
    def run_jobs():
        """Run every enabled background job once."""
        SchedulerService.ensure_jobs_registered()
        for name in sorted(get_registered_jobs()):
            outcome = SchedulerService.run_job(name)
            click.echo(f"{name}: {outcome['status']} ({outcome['duration_ms']}ms)")
