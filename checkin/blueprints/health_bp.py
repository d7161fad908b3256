"""
Readiness and liveness checks for load balancers and operators; no identity required.

    GET /api/v1/health/ready   process is up
    GET /api/v1/health/live    database round-trip plus collaborator configuration
"""

import logging
import time

from flask import Blueprint, current_app, jsonify
from sqlalchemy.exc import SQLAlchemyError

from checkin.models import db

logger = logging.getLogger(__name__)

health_bp = Blueprint("health_bp", __name__, url_prefix="/api/v1/health")


def _database_check() -> dict:
    started = time.perf_counter()
    try:
        db.session.execute(db.text("SELECT 1"))
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("Health check: database unreachable: %s", exc)
        return {"status": "error", "detail": str(exc)}
    return {"status": "ok", "latency_ms": round((time.perf_counter() - started) * 1000, 1)}


@health_bp.route("/ready", methods=["GET"])
def ready():
    return jsonify({"status": "ok"}), 200


@health_bp.route("/live", methods=["GET"])
def live():
    """Collaborators are reported from configuration only; nothing is called."""
    cfg = current_app.config
    checks = {
        "database": _database_check(),
        "pii_service": {"status": "remote" if cfg.get("PII_SERVICE_URL") else "local_heuristic"},
        "completion_service": {"model": cfg.get("LLM_DEFAULT_CHAT_MODEL")},
    }
    healthy = checks["database"]["status"] == "ok"
    return jsonify({
        "status": "healthy" if healthy else "degraded",
        "checks": checks,
        "app": {"debug": current_app.debug, "testing": current_app.testing},
    }), 200 if healthy else 503
