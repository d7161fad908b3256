"""
Conversation Blueprint: lifecycle, history and derived results.

Endpoints:
    POST /api/v1/conversations                          create {theme_id}
    POST /api/v1/conversations/<id>/answers             append history item
    POST /api/v1/conversations/<id>/complete            complete {reason}
    GET  /api/v1/conversations/<id>/history             ordered history
    POST /api/v1/conversations/<id>/summary             generate summary + score
    POST /api/v1/conversations/<id>/actions             generate follow-up actions
    GET  /api/v1/conversations/<id>/result              stored result
    POST /api/v1/conversations/<id>/evaluation          rate the conversation
    GET  /api/v1/members/me/themes                      member dashboard

The service layer owns business rules; routes commit.
"""

import logging

from flask import Blueprint, current_app, g, jsonify

from checkin.blueprints import register_error_handlers
from checkin.services.completion_watcher import CompletionWatcher
from checkin.services.conversation_service import ConversationStateMachine
from checkin.services.evaluation_service import create_evaluation
from checkin.services.result_generation import ResultWriter
from checkin.utils.errors import E, api_error
from checkin.utils.helpers import db_commit_or_error, get_json_body, require_int

logger = logging.getLogger(__name__)

conversation_bp = Blueprint("conversation", __name__, url_prefix="/api/v1")
register_error_handlers(conversation_bp)


def _machine() -> ConversationStateMachine:
    return ConversationStateMachine(
        pii=current_app.extensions.get("pii_screen"),
        watcher=CompletionWatcher(),
    )


@conversation_bp.route("/conversations", methods=["POST"])
def create_conversation():
    data = get_json_body()
    theme_id = require_int(data, "theme_id")
    conv = _machine().create(g.actor, theme_id)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"conversation_id": conv.id, "period": conv.period_key,
                    "conversation": conv.to_dict()}), 201


@conversation_bp.route("/conversations/<int:conversation_id>/answers", methods=["POST"])
def append_answer(conversation_id):
    """Append a fixed-question answer, follow-up answer or annotation.

    Body: {kind, question_id?, text?, answer?}
    Returns: {item, decision}; decision is null for annotations.
    """
    data = get_json_body()
    item, decision = _machine().append_answer(g.actor, conversation_id, data)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"item": item.to_dict(), "decision": decision}), 201


@conversation_bp.route("/conversations/<int:conversation_id>/complete", methods=["POST"])
def complete_conversation(conversation_id):
    data = get_json_body()
    reason = data.get("reason")
    if not reason:
        return api_error(E.VALIDATION_REQUIRED, "reason is required")
    conv = _machine().complete(g.actor, conversation_id, reason)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(conv.to_dict()), 200


@conversation_bp.route("/conversations/<int:conversation_id>/history", methods=["GET"])
def get_history(conversation_id):
    items = _machine().get_history(g.actor, conversation_id)
    return jsonify({"conversation_id": conversation_id, "items": items, "total": len(items)}), 200


@conversation_bp.route("/conversations/<int:conversation_id>/summary", methods=["POST"])
def request_summary(conversation_id):
    payload = ResultWriter().request_summary(g.actor, conversation_id)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(payload), 200


@conversation_bp.route("/conversations/<int:conversation_id>/actions", methods=["POST"])
def request_actions(conversation_id):
    payload = ResultWriter().request_actions(g.actor, conversation_id)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(payload), 200


@conversation_bp.route("/conversations/<int:conversation_id>/result", methods=["GET"])
def get_result(conversation_id):
    result = ResultWriter().get_result(g.actor, conversation_id)
    if result is None:
        return api_error(E.NOT_FOUND, "Result not found")
    return jsonify(result.to_dict()), 200


@conversation_bp.route("/conversations/<int:conversation_id>/evaluation", methods=["POST"])
def evaluate_conversation(conversation_id):
    evaluation = create_evaluation(g.actor, conversation_id, get_json_body())
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(evaluation.to_dict()), 201


@conversation_bp.route("/members/me/themes", methods=["GET"])
def my_themes():
    return jsonify(_machine().member_dashboard(g.actor)), 200
