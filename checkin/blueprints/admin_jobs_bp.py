"""
Super-admin administration: background jobs and the theme catalogue.

Endpoints:
    GET  /api/v1/admin/jobs                 list registered jobs
    POST /api/v1/admin/jobs/<name>/run      run a job now
    POST /api/v1/admin/jobs/<name>/toggle   {enabled: bool}
    POST /api/v1/admin/themes               create a theme with its questions
    PUT  /api/v1/admin/themes/<id>          update; ``questions`` replaces the template
"""

import logging

from flask import Blueprint, g, jsonify

from checkin.blueprints import register_error_handlers
from checkin.services.capability import require_capability
from checkin.services.scheduler_service import SchedulerService
from checkin.services.theme_catalog import ThemeCatalog
from checkin.utils.errors import E, api_error
from checkin.utils.helpers import db_commit_or_error, get_json_body

logger = logging.getLogger(__name__)

admin_jobs_bp = Blueprint("admin_jobs", __name__, url_prefix="/api/v1/admin")
register_error_handlers(admin_jobs_bp)


@admin_jobs_bp.before_request
def _require_super_admin():
    require_capability(g.actor, "jobs.run")


@admin_jobs_bp.route("/jobs", methods=["GET"])
def list_jobs():
    jobs = SchedulerService.list_jobs()
    return jsonify({"jobs": jobs, "total": len(jobs)}), 200


@admin_jobs_bp.route("/jobs/<job_name>/run", methods=["POST"])
def run_job(job_name):
    """Manually trigger a job; disabled jobs run too."""
    logger.info("Manual job run %s by member %s", job_name, g.actor.id)
    result = SchedulerService.run_job(job_name, force=True)
    if result.get("status") == "error" and "Unknown job" in (result.get("error") or ""):
        return api_error(E.NOT_FOUND, f"Job '{job_name}' not found")
    return jsonify(result), 200


@admin_jobs_bp.route("/jobs/<job_name>/toggle", methods=["POST"])
def toggle_job(job_name):
    enabled = get_json_body().get("enabled")
    if not isinstance(enabled, bool):
        return api_error(E.VALIDATION_REQUIRED, "'enabled' field is required (true/false)")
    result = SchedulerService.toggle_job(job_name, enabled)
    if not result:
        return api_error(E.NOT_FOUND, f"Job '{job_name}' not found")
    return jsonify(result), 200


# ── Theme catalogue ──────────────────────────────────────────────────────────

@admin_jobs_bp.route("/themes", methods=["POST"])
def create_theme():
    theme = ThemeCatalog().save_theme(g.actor, get_json_body())
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(theme.to_dict(include_questions=True)), 201


@admin_jobs_bp.route("/themes/<int:theme_id>", methods=["PUT"])
def update_theme(theme_id):
    theme = ThemeCatalog().save_theme(g.actor, get_json_body(), theme_id=theme_id)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(theme.to_dict(include_questions=True)), 200
