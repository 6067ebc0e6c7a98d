"""Scheduled issues blueprint — /api/scheduled-issues/*

CRUD for recurring issue templates. The scheduler itself has no HTTP
surface; it only reacts to the persisted next_run_at.

Route Map:
  POST   /api/scheduled-issues                  — Create template
  GET    /api/scheduled-issues/board/<board_id> — List templates of a board
  PUT    /api/scheduled-issues/<id>             — Update template
  DELETE /api/scheduled-issues/<id>             — Delete template
"""

from flask import Blueprint, g, jsonify, request

from tracker.decorators import actor_required
from tracker.errors import ValidationError
from tracker.extensions import db
from tracker.services import template_service

scheduled_bp = Blueprint("scheduled", __name__, url_prefix="/api/scheduled-issues")


def _json_body():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object.")
    return data


@scheduled_bp.route("", methods=["POST"])
@actor_required
def api_create_template():
    data = _json_body()
    template = template_service.create_template(data.get("board_id"), data, g.actor)
    db.session.commit()
    return jsonify(template.to_dict()), 201


@scheduled_bp.route("/board/<board_id>", methods=["GET"])
@actor_required
def api_list_templates(board_id):
    templates = template_service.list_templates(board_id, g.actor)
    return jsonify([t.to_dict() for t in templates])


@scheduled_bp.route("/<template_id>", methods=["PUT"])
@actor_required
def api_update_template(template_id):
    template = template_service.update_template(template_id, _json_body(), g.actor)
    db.session.commit()
    return jsonify(template.to_dict())


@scheduled_bp.route("/<template_id>", methods=["DELETE"])
@actor_required
def api_delete_template(template_id):
    template_service.delete_template(template_id, g.actor)
    db.session.commit()
    return jsonify({"message": "Scheduled issue removed"})
