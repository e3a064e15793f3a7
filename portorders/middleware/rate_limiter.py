"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter. The Limiter instance
is created in portorders/__init__.py with no default limits; this module
applies granular limits per route group.

Usage:
    from portorders.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

from flask import g, request as flask_request

logger = logging.getLogger(__name__)

WIZARD_LIMIT = "120/minute"
ORDER_LIMIT = "60/minute"


def actor_rate_limit_key():
    """Rate limit key: acting organization if known, else remote IP."""
    actor = getattr(g, "actor", None)
    if actor is not None:
        return f"org:{actor.organization_id}"
    return flask_request.remote_addr or "unknown"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per acting organization, falling back to remote IP):
        - Wizard endpoints:  120/minute (step-by-step form submissions)
        - Order endpoints:    60/minute (completion + group transitions)

    Rate limiting is disabled in testing mode.
    """

    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    bp = app.blueprints.get("wizard")
    if bp:
        limiter.limit(WIZARD_LIMIT, key_func=actor_rate_limit_key)(bp)

    bp = app.blueprints.get("orders")
    if bp:
        limiter.limit(ORDER_LIMIT, key_func=actor_rate_limit_key)(bp)

    app.logger.info(
        "Rate limiter configured — wizard: %s, orders: %s", WIZARD_LIMIT, ORDER_LIMIT,
    )
