"""
Custom route decorators for access control.

- actor_required: the request must carry a resolved actor (set by the tenant
  middleware). Returns a JSON 401 otherwise.
"""

from functools import wraps

from flask import g, jsonify


def actor_required(f):
    """Require an actor resolved from the identity headers."""

    @wraps(f)
    def decorated(*args, **kwargs):
        if getattr(g, "actor", None) is None:
            return jsonify({"error": "Unauthorized"}), 401
        return f(*args, **kwargs)

    return decorated
