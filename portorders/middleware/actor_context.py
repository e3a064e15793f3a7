"""
Actor Context Middleware — resolves the acting user and organization.

An upstream identity provider (gateway, SSO proxy) authenticates the caller
and forwards two headers:

    X-User-Id:          the authenticated user
    X-Organization-Id:  the organization the user acts for in this request

This middleware turns them into ``g.actor`` (a ``services.access.Actor``).
It does not check membership; every service call does that against the
database. Requests under /api/v1/ without valid headers get 401, except the
paths listed in ACTOR_SKIP_PREFIXES.

Chain order:
    actor_context.py  →  rate limiter  →  route handler
"""

import logging

from flask import g, request

from portorders.services.access import Actor
from portorders.utils.errors import E, api_error

logger = logging.getLogger(__name__)

USER_HEADER = "X-User-Id"
ORGANIZATION_HEADER = "X-Organization-Id"

# Paths that do not need an acting context
ACTOR_SKIP_PREFIXES = (
    "/api/v1/health",
)


def _header_id(name: str) -> int | None:
    raw = (request.headers.get(name) or "").strip()
    if not raw.isdigit():
        return None
    value = int(raw)
    return value if value > 0 else None


def init_actor_context(app):
    """Register actor context middleware as a before_request hook."""

    @app.before_request
    def _actor_context():
        g.actor = None

        if not request.path.startswith("/api/v1/"):
            return None
        for prefix in ACTOR_SKIP_PREFIXES:
            if request.path.startswith(prefix):
                return None

        user_id = _header_id(USER_HEADER)
        organization_id = _header_id(ORGANIZATION_HEADER)
        if user_id is None or organization_id is None:
            logger.info(
                "Missing or invalid actor headers on %s %s", request.method, request.path,
                extra={"event_type": "actor_missing", "path": request.path},
            )
            return api_error(
                E.UNAUTHENTICATED,
                f"{USER_HEADER} and {ORGANIZATION_HEADER} headers are required",
            )

        g.actor = Actor(user_id=user_id, organization_id=organization_id)
        return None

    logger.info("Actor context middleware installed")
