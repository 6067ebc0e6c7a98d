"""Issues blueprint — /api/*

JSON surface over the move engine. The acting user and tenant come from
the tenant middleware (g.actor). Domain errors raised by the services are
rendered by the app-level handler in tracker.errors.

Route Map:
  POST   /api/columns/<column_id>/issues     — Create issue at column tail
  GET    /api/columns/<column_id>/issues     — Column issues in rank order
  GET    /api/projects/<project_id>/issues   — Project issues (board snapshot)
  GET    /api/issues/<id>                    — Issue details + history
  PATCH  /api/issues/<id>                    — Update fields
  PUT    /api/issues/<id>/move               — Move / reorder
  DELETE /api/issues/<id>                    — Delete issue
  GET    /api/issues/<id>/subtasks           — Sub-tasks
"""

from flask import Blueprint, current_app, g, jsonify, request

from tracker.decorators import actor_required
from tracker.errors import ValidationError
from tracker.extensions import limiter
from tracker.services import issue_service

issues_bp = Blueprint("issues", __name__, url_prefix="/api")


def _json_body():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object.")
    return data


def _move_limit():
    return current_app.config.get("MOVE_RATE_LIMIT", "120 per minute")


# ─── Create / list ───────────────────────────────────────────────

@issues_bp.route("/columns/<column_id>/issues", methods=["POST"])
@actor_required
def api_create_issue(column_id):
    issue = issue_service.create_issue(column_id, _json_body(), g.actor)
    return jsonify(issue.to_dict()), 201


@issues_bp.route("/columns/<column_id>/issues", methods=["GET"])
@actor_required
def api_column_issues(column_id):
    return jsonify(issue_service.list_column_issues(column_id, g.actor))


@issues_bp.route("/projects/<project_id>/issues", methods=["GET"])
@actor_required
def api_project_issues(project_id):
    return jsonify(issue_service.list_project_issues(project_id, g.actor))


# ─── Single issue ────────────────────────────────────────────────

@issues_bp.route("/issues/<issue_id>", methods=["GET"])
@actor_required
def api_get_issue(issue_id):
    return jsonify(issue_service.get_issue(issue_id, g.actor))


@issues_bp.route("/issues/<issue_id>", methods=["PATCH"])
@actor_required
def api_update_issue(issue_id):
    issue = issue_service.update_issue(issue_id, _json_body(), g.actor)
    return jsonify(issue.to_dict())


@issues_bp.route("/issues/<issue_id>/move", methods=["PUT"])
@actor_required
@limiter.limit(_move_limit)
def api_move_issue(issue_id):
    data = _json_body()
    for key in ("source_column_id", "destination_column_id", "new_position"):
        if key not in data:
            raise ValidationError(f"Missing required field '{key}'.")

    result = issue_service.move_issue(
        issue_id,
        data["source_column_id"],
        data["destination_column_id"],
        data["new_position"],
        g.actor,
    )
    return jsonify({
        "success": True,
        "moved": result.changed,
        "column_id": result.new_column_id,
        "position": result.new_position,
    })


@issues_bp.route("/issues/<issue_id>", methods=["DELETE"])
@actor_required
def api_delete_issue(issue_id):
    issue_service.delete_issue(issue_id, g.actor)
    return jsonify({"success": True})


@issues_bp.route("/issues/<issue_id>/subtasks", methods=["GET"])
@actor_required
def api_subtasks(issue_id):
    return jsonify(issue_service.get_subtasks(issue_id, g.actor))
