"""
Organization Blueprint: theme access, insights, settings and teams.

Endpoints:
    GET  /api/v1/organizations/<org>/allowed-themes?team_id=
    PUT  /api/v1/organizations/<org>/themes/<theme>/override       {team_id?, visible}
    GET  /api/v1/organizations/<org>/themes?team_id=                overview
    GET  /api/v1/organizations/<org>/themes/<theme>/insight?team_id=
    POST /api/v1/organizations/<org>/themes/<theme>/insight?team_id=
    GET  /api/v1/organizations/<org>/settings
    PUT  /api/v1/organizations/<org>/settings
    POST /api/v1/organizations/<org>/teams                          {name}
    POST /api/v1/organizations/<org>/teams/<team>/archive
    PUT  /api/v1/organizations/<org>/members/<member>/team          {team_id}
    GET  /api/v1/members/<member>/top-actions?period=
    POST /api/v1/members/<member>/top-actions                       {period?}
    GET  /api/v1/members/<member>/results?period=                   per-theme results
"""

import logging

from flask import Blueprint, g, jsonify, request

from checkin.blueprints import register_error_handlers
from checkin.core.exceptions import ValidationError
from checkin.services.completion_watcher import TopActionsPlanner
from checkin.services.insight_service import InsightAggregator
from checkin.services.org_settings_service import OrganizationSettingsService
from checkin.services.result_generation import ResultWriter
from checkin.services.theme_access import list_allowed_for, set_theme_override
from checkin.utils.helpers import db_commit_or_error, get_json_body, optional_int_arg

logger = logging.getLogger(__name__)

organization_bp = Blueprint("organization", __name__, url_prefix="/api/v1")
register_error_handlers(organization_bp)


def _body_team_id(data: dict) -> int | None:
    team_id = data.get("team_id")
    if team_id is None:
        return None
    if isinstance(team_id, bool) or not isinstance(team_id, int):
        raise ValidationError("team_id must be an integer or null", details={"team_id": team_id})
    return team_id


# ── Theme access ─────────────────────────────────────────────────────────────

@organization_bp.route("/organizations/<int:org_id>/allowed-themes", methods=["GET"])
def allowed_themes(org_id):
    team_id = optional_int_arg("team_id")
    theme_ids = list_allowed_for(g.actor, org_id, team_id)
    return jsonify({"organization_id": org_id, "team_id": team_id, "theme_ids": theme_ids}), 200


@organization_bp.route("/organizations/<int:org_id>/themes/<int:theme_id>/override", methods=["PUT"])
def put_theme_override(org_id, theme_id):
    data = get_json_body()
    override = set_theme_override(g.actor, org_id, theme_id, _body_team_id(data), data.get("visible"))
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(override.to_dict()), 200


# ── Overview & insights ──────────────────────────────────────────────────────

@organization_bp.route("/organizations/<int:org_id>/themes", methods=["GET"])
def theme_overview(org_id):
    overview = InsightAggregator().theme_overview(g.actor, org_id, optional_int_arg("team_id"))
    # Auto-generated insights are part of the read
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(overview), 200


@organization_bp.route("/organizations/<int:org_id>/themes/<int:theme_id>/insight", methods=["GET"])
def get_insight(org_id, theme_id):
    insight = InsightAggregator().read(g.actor, org_id, theme_id, optional_int_arg("team_id"))
    return jsonify(insight.to_dict()), 200


@organization_bp.route("/organizations/<int:org_id>/themes/<int:theme_id>/insight", methods=["POST"])
def generate_insight(org_id, theme_id):
    insight = InsightAggregator().request(g.actor, org_id, theme_id, optional_int_arg("team_id"))
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(insight.to_dict()), 200


# ── Settings ─────────────────────────────────────────────────────────────────

@organization_bp.route("/organizations/<int:org_id>/settings", methods=["GET"])
def get_settings(org_id):
    return jsonify(OrganizationSettingsService().get_settings(g.actor, org_id)), 200


@organization_bp.route("/organizations/<int:org_id>/settings", methods=["PUT"])
def update_settings(org_id):
    payload = OrganizationSettingsService().update_settings(g.actor, org_id, get_json_body())
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(payload), 200


# ── Teams ────────────────────────────────────────────────────────────────────

@organization_bp.route("/organizations/<int:org_id>/teams", methods=["POST"])
def create_team(org_id):
    team = OrganizationSettingsService().create_team(g.actor, org_id, get_json_body().get("name"))
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(team.to_dict()), 201


@organization_bp.route("/organizations/<int:org_id>/teams/<int:team_id>/archive", methods=["POST"])
def archive_team(org_id, team_id):
    team = OrganizationSettingsService().archive_team(g.actor, org_id, team_id)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(team.to_dict()), 200


@organization_bp.route("/organizations/<int:org_id>/members/<int:member_id>/team", methods=["PUT"])
def assign_team(org_id, member_id):
    data = get_json_body()
    member = OrganizationSettingsService().assign_member_team(g.actor, org_id, member_id, _body_team_id(data))
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(member.to_dict()), 200


# ── Top actions ──────────────────────────────────────────────────────────────

@organization_bp.route("/members/<int:member_id>/top-actions", methods=["GET"])
def get_top_actions(member_id):
    plan = TopActionsPlanner().read(g.actor, member_id, request.args.get("period") or None)
    return jsonify(plan.to_dict()), 200


@organization_bp.route("/members/<int:member_id>/top-actions", methods=["POST"])
def generate_top_actions(member_id):
    plan = TopActionsPlanner().request(g.actor, member_id, get_json_body().get("period"))
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(plan.to_dict()), 200


# ── Member results ───────────────────────────────────────────────────────────

@organization_bp.route("/members/<int:member_id>/results", methods=["GET"])
def member_results(member_id):
    payload = ResultWriter().member_results(g.actor, member_id, request.args.get("period") or None)
    return jsonify(payload), 200
