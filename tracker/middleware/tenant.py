"""Tenant middleware — resolves the acting user and tenant for API requests.

Authentication happens upstream; the gateway forwards the resolved ids as
``X-Actor-Id`` and ``X-Tenant-Id``. This hook trusts them, asks the
configured authorizer for a pass/fail verdict, and sets ``g.actor``.

The core never computes membership or roles itself. A negative verdict is
carried on the Actor and raised as AuthorizationError by the services.
"""

from dataclasses import dataclass

from flask import current_app, g, request
from werkzeug.utils import import_string


@dataclass(frozen=True)
class Actor:
    user_id: str
    tenant_id: str
    authorized: bool = True


# Scheduler-created issues are attributed to the template's reporter, or
# to this id when the template names none.
SYSTEM_USER_ID = "system"


def _verdict(user_id, tenant_id):
    authorizer = current_app.config.get("AUTHORIZER")
    if authorizer is None:
        return True
    if isinstance(authorizer, str):
        authorizer = import_string(authorizer)
    return bool(authorizer(user_id, tenant_id))


def resolve_actor():
    """Before-request hook for /api routes.

    Sets g.actor to an Actor, or None when the identity headers are absent.
    """
    g.actor = None
    if not request.path.startswith("/api/"):
        return

    user_id = request.headers.get("X-Actor-Id")
    tenant_id = request.headers.get("X-Tenant-Id")
    if not user_id or not tenant_id:
        return

    g.actor = Actor(
        user_id=user_id,
        tenant_id=tenant_id,
        authorized=_verdict(user_id, tenant_id),
    )


def init_tenant_middleware(app):
    """Register the actor resolver as a before_request hook."""
    app.before_request(resolve_actor)
