"""
Scoped query helpers.

Look-ups of rows owned by an organization (vessels, services, order groups)
go through these helpers so the ownership filter cannot be forgotten. A row
outside the requested scope is indistinguishable from a missing row: both
raise NotFoundError.

Usage:
    vessel = get_scoped(Vessel, vessel_id, organization_id=actor.organization_id)
    svc = get_scoped_or_none(Service, service_id, port_id=session.port_id)
    rows = get_many_scoped(Service, ids, port_id=session.port_id)

Scope field resolution:
    Each keyword argument maps directly to a column name on the model. A
    keyword naming a column the model lacks raises ValueError at call time.
"""

import logging

from sqlalchemy import select

from portorders.core.exceptions import NotFoundError
from portorders.models import db

logger = logging.getLogger(__name__)


def _scoped_select(model, scopes: dict):
    provided = {k: v for k, v in scopes.items() if v is not None}
    if not provided:
        raise ValueError(
            f"{model.__name__} lookup requires at least one scope filter. "
            "Unscoped lookups are forbidden."
        )
    missing = sorted(field for field in provided if not hasattr(model, field))
    if missing:
        raise ValueError(f"{model.__name__} has no scope column(s) {missing}")

    stmt = select(model)
    for field, value in provided.items():
        stmt = stmt.where(getattr(model, field) == value)
    return stmt, provided


def get_scoped(model, pk: int, **scopes):
    """Fetch a single entity by PK with a mandatory scope filter.

    Args:
        model: SQLAlchemy model class with an ``id`` PK column.
        pk: Primary key value to look up.
        **scopes: column=value filters, e.g. ``organization_id=3``.

    Returns:
        The model instance if found within the given scope.

    Raises:
        ValueError: If no scope is given or a scope column does not exist.
        NotFoundError: If the entity does not exist OR is outside the scope.
    """
    stmt, applied = _scoped_select(model, scopes)
    result = db.session.execute(stmt.where(model.id == pk)).scalar_one_or_none()

    if result is None:
        logger.debug("get_scoped: %s id=%s not found in scope %s", model.__name__, pk, applied)
        raise NotFoundError(resource=model.__name__, resource_id=pk)

    return result


def get_scoped_or_none(model, pk: int, **scopes):
    """Same as get_scoped but returns None instead of raising NotFoundError."""
    try:
        return get_scoped(model, pk, **scopes)
    except NotFoundError:
        return None


def get_many_scoped(model, pks, **scopes) -> dict:
    """Fetch several entities by PK within a scope.

    Returns:
        Dict of pk → instance for the rows that exist in scope. Callers
        compare the keys against ``pks`` to report the missing ones.
    """
    pks = set(pks)
    if not pks:
        return {}
    stmt, _ = _scoped_select(model, scopes)
    rows = db.session.execute(stmt.where(model.id.in_(pks))).scalars().all()
    return {row.id: row for row in rows}
