"""
Port Orders
Blueprint helpers shared by the wizard and order APIs.
"""

import logging

from flask import g, request
from sqlalchemy.exc import SQLAlchemyError

from portorders.core.exceptions import (
    AuthorizationError,
    ConflictError,
    ConsistencyError,
    NotFoundError,
    ValidationError,
)
from portorders.utils.errors import E, api_error

logger = logging.getLogger(__name__)


def current_actor():
    """Actor resolved by the actor_context middleware for this request."""
    return g.actor


def json_body() -> dict:
    """Request JSON object, or {} for an empty / non-object body."""
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def paginate_items(items, default_limit=50, max_limit=200):
    """Apply limit/offset pagination to an already-loaded list.

    Query params:
        limit  — max items (default 50, capped at max_limit)
        offset — starting position (default 0)

    Returns:
        (page_items, total_count)
    """
    total = len(items)
    try:
        limit = min(int(request.args.get("limit", default_limit)), max_limit)
    except (ValueError, TypeError):
        limit = default_limit
    try:
        offset = max(int(request.args.get("offset", 0)), 0)
    except (ValueError, TypeError):
        offset = 0
    return items[offset:offset + max(limit, 0)], total


def register_error_handlers(bp):
    """Map the service exception hierarchy onto HTTP responses for ``bp``."""

    @bp.errorhandler(ValidationError)
    def _handle_validation(error: ValidationError):
        return api_error(E.VALIDATION_RULE, str(error), details=error.details)

    @bp.errorhandler(AuthorizationError)
    def _handle_forbidden(error: AuthorizationError):
        return api_error(E.FORBIDDEN, str(error))

    @bp.errorhandler(NotFoundError)
    def _handle_not_found(error: NotFoundError):
        return api_error(E.NOT_FOUND, f"{error.resource} not found")

    @bp.errorhandler(ConflictError)
    def _handle_conflict(error: ConflictError):
        return api_error(E.CONFLICT_STATE, str(error))

    @bp.errorhandler(ConsistencyError)
    def _handle_consistency(error: ConsistencyError):
        logger.error("Consistency error in %s: %s", request.endpoint, error, exc_info=error)
        return api_error(E.CONSISTENCY, "The operation could not be completed, please retry")

    @bp.errorhandler(SQLAlchemyError)
    def _handle_database(error: SQLAlchemyError):
        logger.exception("Database error in %s", request.endpoint)
        return api_error(E.CONSISTENCY, "The operation could not be completed, please retry")
