"""
Order Decomposition — Service Layer.

Turns a review-step wizard session into one Order plus one OrderGroup per
fulfilling agency, inside a single transaction:

    1. claim the session (conditional UPDATE draft → completed)
    2. insert the Order under a unique order number (bounded retry)
    3. partition the service selections by organization_id
    4. one OrderGroup per partition, one OrderGroupService per selection,
       copying the price snapshot taken at selection time
    5. Order.total_amount = Σ OrderGroup.subtotal_amount
    6. commit; any failure rolls back every row, including the claim

Also hosts the read side: order / order-group listing and detail, scoped to
what the acting organization may see.
"""

import logging
import uuid
from decimal import Decimal

from flask import current_app
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from portorders.core.exceptions import (
    ConflictError,
    ConsistencyError,
    NotFoundError,
    ValidationError,
)
from portorders.models import db
from portorders.models.base import utcnow
from portorders.models.order import (
    Order,
    OrderGroup,
    OrderGroupService,
    OrderGroupServiceStatus,
    OrderGroupStatus,
    OrderStatus,
)
from portorders.models.wizard import (
    WizardServiceSelection,
    WizardSession,
    WizardSessionStatus,
    WizardStep,
)
from portorders.services import wizard_service
from portorders.services.access import (
    Actor,
    can_view_order,
    is_platform_member,
    require_membership,
)

logger = logging.getLogger(__name__)

_CENTS = Decimal("0.01")
# largest value a Numeric(12, 2) amount column holds
MAX_AMOUNT = Decimal("9999999999.99")

# Canonical status of a freshly decomposed order: waiting on every agency.
INITIAL_ORDER_STATUS = OrderStatus.PENDING_AGENCY_CONFIRMATION


# ── Number Generation ────────────────────────────────────────────────────────


def generate_order_number(prefix: str = "ORD") -> str:
    """Opaque order number: ORD-3F9A0C1B7E22. Uniqueness is enforced by the DB."""
    return f"{prefix}-{uuid.uuid4().hex[:12].upper()}"


def group_number_for(order_number: str, sequence: int) -> str:
    """Group number sequential within its order: ORD-...-G01, ORD-...-G02."""
    return f"{order_number}-G{sequence:02d}"


def _insert_order(order: Order) -> Order:
    """Flush ``order`` under a fresh order number, retrying on collision.

    Each attempt runs inside a SAVEPOINT so a unique-constraint violation
    only discards that attempt, not the surrounding transaction.

    Raises:
        ConsistencyError: every attempt collided.
    """
    prefix = current_app.config.get("ORDER_NUMBER_PREFIX", "ORD")
    attempts = current_app.config.get("ORDER_NUMBER_ATTEMPTS", 3)

    for attempt in range(1, attempts + 1):
        order.order_number = generate_order_number(prefix)
        try:
            with db.session.begin_nested():
                db.session.add(order)
        except IntegrityError as exc:
            logger.warning(
                "Order number collision on attempt %d/%d: %s (%s)",
                attempt, attempts, order.order_number, exc.orig,
                extra={"event_type": "order_number_collision"},
            )
            continue
        return order

    raise ConsistencyError(f"Could not allocate a unique order number after {attempts} attempts")


# ── Decomposition ────────────────────────────────────────────────────────────


def _claim_session(session: WizardSession, now) -> bool:
    """Atomically flip a draft session to completed. False if already claimed."""
    result = db.session.execute(
        update(WizardSession)
        .where(
            WizardSession.id == session.id,
            WizardSession.status == WizardSessionStatus.DRAFT,
        )
        .values(status=WizardSessionStatus.COMPLETED, completed_at=now)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def _line_total(sel: WizardServiceSelection) -> Decimal:
    return (Decimal(sel.price_snapshot).quantize(_CENTS) * sel.quantity).quantize(_CENTS)


def _partition_by_organization(selections) -> dict[int, list[WizardServiceSelection]]:
    partitions: dict[int, list[WizardServiceSelection]] = {}
    for sel in selections:
        partitions.setdefault(sel.organization_id, []).append(sel)
    return partitions


def complete_session(actor: Actor, session_id: int, notes: str | None = None) -> Order:
    """
    Convert a review-step wizard session into an Order with its OrderGroups.

    Args:
        actor: Session owner.
        session_id: WizardSession PK.
        notes: Optional free text copied onto the Order.

    Returns:
        The committed Order (status pending_agency_confirmation).

    Raises:
        NotFoundError: session missing, expired or already completed.
        AuthorizationError: actor does not own the session.
        ValidationError: vessel/port/services missing, session not at review,
            or the order total does not fit an amount column.
        ConflictError: a concurrent request completed the session first.
        ConsistencyError: no unique order number could be allocated.
    """
    if notes is not None and not isinstance(notes, str):
        raise ValidationError("Invalid notes", details={"notes": "Must be a string"})
    max_notes = current_app.config.get("MAX_ORDER_NOTES_LENGTH", 1000)
    if notes and len(notes) > max_notes:
        raise ValidationError("Notes too long", details={"notes": f"At most {max_notes} characters"})

    session = wizard_service.get_owned_session(actor, session_id)

    selections = db.session.execute(
        select(WizardServiceSelection)
        .where(WizardServiceSelection.wizard_session_id == session.id)
        .order_by(WizardServiceSelection.organization_id, WizardServiceSelection.id)
    ).scalars().all()

    details = {}
    if session.vessel_id is None:
        details["vessel_id"] = "No vessel selected"
    if session.port_id is None:
        details["port_id"] = "No port selected"
    if not selections:
        details["services"] = "No services selected"
    if details:
        raise ValidationError("Incomplete session", details=details)
    if session.current_step != WizardStep.REVIEW:
        raise ValidationError(
            "Session is not at the review step",
            details={"step": f"Current step is '{session.current_step.value}'"},
        )

    preview_total = sum((_line_total(sel) for sel in selections), Decimal("0"))
    if preview_total > MAX_AMOUNT:
        raise ValidationError(
            "Order total too large",
            details={"services": f"Order total {preview_total} exceeds {MAX_AMOUNT}"},
        )

    now = utcnow()
    try:
        if not _claim_session(session, now):
            raise ConflictError(
                "WizardSession", "status", WizardSessionStatus.COMPLETED.value,
                message="Wizard session was already completed by another request",
            )

        order = _insert_order(Order(
            wizard_session_id=session.id,
            vessel_id=session.vessel_id,
            port_id=session.port_id,
            placed_by_user_id=session.user_id,
            placed_by_organization_id=session.organization_id,
            notes=(notes or "").strip(),
            status=INITIAL_ORDER_STATUS,
            total_amount=Decimal("0"),
        ))

        total = Decimal("0")
        partitions = _partition_by_organization(selections)
        for sequence, org_id in enumerate(sorted(partitions), start=1):
            group = OrderGroup(
                order_id=order.id,
                group_number=group_number_for(order.order_number, sequence),
                fulfilling_organization_id=org_id,
                status=OrderGroupStatus.PENDING,
                subtotal_amount=Decimal("0"),
            )
            db.session.add(group)
            db.session.flush()

            subtotal = Decimal("0")
            for sel in partitions[org_id]:
                unit_price = Decimal(sel.price_snapshot).quantize(_CENTS)
                line_total = _line_total(sel)
                db.session.add(OrderGroupService(
                    order_group_id=group.id,
                    service_id=sel.service_id,
                    service_name=sel.service_name,
                    quantity=sel.quantity,
                    unit_price=unit_price,
                    total_price=line_total,
                    status=OrderGroupServiceStatus.PENDING,
                ))
                subtotal += line_total
            group.subtotal_amount = subtotal
            total += subtotal

        order.total_amount = total
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info(
        "Order %s created from wizard session %s with %d group(s), total %s",
        order.order_number, session_id, len(partitions), total,
        extra={
            "event_type": "order_created",
            "order_id": order.id,
            "session_id": session_id,
            "user_id": actor.user_id,
            "organization_id": actor.organization_id,
        },
    )
    return order


# ── Read side ────────────────────────────────────────────────────────────────


def list_orders(actor: Actor, status: str | None = None) -> list[Order]:
    """Orders placed by the acting organization (all orders for platform members)."""
    require_membership(actor)
    stmt = select(Order)
    if not is_platform_member(actor):
        stmt = stmt.where(Order.placed_by_organization_id == actor.organization_id)
    if status:
        stmt = stmt.where(Order.status == _parse_status(OrderStatus, status))
    stmt = stmt.order_by(Order.created_at.desc(), Order.id.desc())
    return db.session.execute(stmt).scalars().all()


def get_order(actor: Actor, order_id: int) -> Order:
    """Order visible to the actor; invisible orders read as missing."""
    require_membership(actor)
    order = db.session.get(Order, order_id)
    if order is None or not can_view_order(actor, order):
        raise NotFoundError(resource="Order", resource_id=order_id)
    return order


def list_order_groups(actor: Actor, status: str | None = None) -> tuple[list[OrderGroup], dict]:
    """
    Order groups addressed to the acting agency (all groups for platform members).

    Returns:
        (groups, counts) where counts maps every OrderGroupStatus value to the
        number of the actor's groups in that status, regardless of ``status``.
    """
    require_membership(actor)
    wanted = _parse_status(OrderGroupStatus, status) if status else None

    stmt = select(OrderGroup)
    if not is_platform_member(actor):
        stmt = stmt.where(OrderGroup.fulfilling_organization_id == actor.organization_id)
    groups = db.session.execute(
        stmt.order_by(OrderGroup.created_at.desc(), OrderGroup.id.desc())
    ).scalars().all()

    counts = {s.value: 0 for s in OrderGroupStatus}
    for g in groups:
        counts[g.status.value] += 1
    if wanted is not None:
        groups = [g for g in groups if g.status == wanted]
    return groups, counts


def get_order_group(actor: Actor, group_id: int) -> OrderGroup:
    require_membership(actor)
    group = db.session.get(OrderGroup, group_id)
    if group is None or not can_view_order(actor, group.order):
        raise NotFoundError(resource="OrderGroup", resource_id=group_id)
    return group


def _parse_status(enum_cls, value):
    try:
        return enum_cls(value)
    except ValueError:
        raise ValidationError(
            "Unknown status filter",
            details={"status": f"Must be one of {[s.value for s in enum_cls]}"},
        ) from None
