"""Error taxonomy for the board core.

Services raise these; the handler registered in create_app() turns them
into JSON responses. Nothing below the blueprint layer builds HTTP
responses itself.
"""

import logging

from flask import jsonify

logger = logging.getLogger(__name__)


class TrackerError(Exception):
    """Base class. ``status_code`` is the HTTP status the API reports."""

    status_code = 500
    public_message = None

    def __init__(self, message, **context):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self):
        return {
            "error": self.public_message or self.message,
            "type": type(self).__name__,
        }


class ValidationError(TrackerError, ValueError):
    """Malformed input. Never retried."""

    status_code = 400


class InvalidPositionError(ValidationError):
    pass


class ProjectMismatchError(ValidationError):
    """Issue, columns or linked entities span more than one project."""


class NotFoundError(TrackerError):
    status_code = 404


class AuthorizationError(TrackerError):
    """The auth collaborator's verdict was negative. Propagated, not computed."""

    status_code = 403


class CapacityError(TrackerError):
    """Destination column is at its WIP limit."""

    status_code = 409


class DependencyError(TrackerError):
    """Delete blocked by dependents (sub-tasks)."""

    status_code = 409


class InfrastructureError(TrackerError):
    """Transaction or storage failure. Details are logged, not returned."""

    status_code = 500
    public_message = "A storage error occurred. Please try again."


def register_error_handlers(app):
    """Render every TrackerError as ``{"error": ..., "type": ...}``."""

    @app.errorhandler(TrackerError)
    def handle_tracker_error(e):
        if isinstance(e, InfrastructureError):
            logger.error(f"Infrastructure error: {e.message} context={e.context}")
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({"error": "Not found"}), 404

    @app.errorhandler(429)
    def rate_limited(e):
        return jsonify({"error": "Too many requests"}), 429

    @app.errorhandler(500)
    def server_error(e):
        return jsonify({"error": "Internal server error"}), 500
