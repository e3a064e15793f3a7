"""
Order Status Aggregation — Service Layer.

Business logic for:
    - OrderGroup transitions:  accept / reject / start / complete
    - Line-item cascade:       group status pushed down to its line items
    - Line-item updates:       one item changes, its group is re-derived from
                               every item, then the order is re-aggregated
    - Order aggregation:       parent status recomputed from every sibling group

Aggregation rule, evaluated in this order over all groups of the order:
    1. any group rejected                       → rejected
    2. every group accepted or further along    → confirmed
    3. otherwise                                → pending_agency_confirmation

in_progress and completed count as "accepted or further along", so a
confirmed order stays confirmed while agencies deliver.

A group transition and the re-aggregation of its order commit together or
not at all. The parent order row is locked first so concurrent transitions
on sibling groups serialize and each sees the other's write.
"""

import logging

from flask import current_app
from sqlalchemy import select, update

from portorders.core.exceptions import ConsistencyError, NotFoundError, ValidationError
from portorders.models import db
from portorders.models.base import utcnow
from portorders.models.order import (
    GROUP_ITEM_CASCADE,
    Order,
    OrderGroup,
    OrderGroupService,
    OrderGroupServiceStatus,
    OrderGroupStatus,
    OrderStatus,
    validate_group_transition,
)
from portorders.services.access import Actor, require_group_manager

logger = logging.getLogger(__name__)


# ── Aggregation ──────────────────────────────────────────────────────────────

_REJECTED = "rejected"
_ACCEPTED = "accepted"
_UNDECIDED = "undecided"

# How each group status counts toward the parent order. Must cover every
# OrderGroupStatus; checked at import time.
GROUP_DECISION = {
    OrderGroupStatus.PENDING: _UNDECIDED,
    OrderGroupStatus.ACCEPTED: _ACCEPTED,
    OrderGroupStatus.IN_PROGRESS: _ACCEPTED,
    OrderGroupStatus.COMPLETED: _ACCEPTED,
    OrderGroupStatus.REJECTED: _REJECTED,
}

if set(GROUP_DECISION) != set(OrderGroupStatus):
    raise RuntimeError(
        "GROUP_DECISION does not cover OrderGroupStatus: "
        f"{sorted(s.value for s in set(OrderGroupStatus) ^ set(GROUP_DECISION))}"
    )


def compute_order_status(group_statuses) -> OrderStatus:
    """
    Derive the parent Order status from its groups' statuses.

    Raises:
        ConsistencyError: the order has no groups.
    """
    decisions = [GROUP_DECISION[OrderGroupStatus(s)] for s in group_statuses]
    if not decisions:
        raise ConsistencyError("Order has no order groups to aggregate")

    if _REJECTED in decisions:
        return OrderStatus.REJECTED
    if all(d == _ACCEPTED for d in decisions):
        return OrderStatus.CONFIRMED
    return OrderStatus.PENDING_AGENCY_CONFIRMATION


def aggregate_order_status(order: Order) -> OrderStatus:
    """
    Re-read every sibling group status and write the derived Order status.

    Runs inside the caller's transaction and does not commit; the group
    status change that triggered it must already be flushed.
    """
    statuses = db.session.execute(
        select(OrderGroup.status).where(OrderGroup.order_id == order.id)
    ).scalars().all()
    new_status = compute_order_status(statuses)
    if order.status != new_status:
        logger.info(
            "Order %s status %s → %s", order.order_number,
            order.status.value if order.status else None, new_status.value,
            extra={"event_type": "order_status_aggregated", "order_id": order.id},
        )
        order.status = new_status
    return new_status


def recompute_order_status(order_id: int) -> OrderStatus:
    """Lock the order, re-aggregate it and commit. Safe to call repeatedly."""
    try:
        order = _lock_order(order_id)
        status = aggregate_order_status(order)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return status


def _lock_order(order_id: int) -> Order:
    order = db.session.execute(
        select(Order).where(Order.id == order_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if order is None:
        raise NotFoundError(resource="Order", resource_id=order_id)
    return order


# ── Line-item cascade ────────────────────────────────────────────────────────


def _cascade_to_items(group: OrderGroup) -> int:
    rule = GROUP_ITEM_CASCADE[group.status]
    if rule is None:
        return 0
    from_statuses, target = rule
    stmt = (
        update(OrderGroupService)
        .where(OrderGroupService.order_group_id == group.id)
        .values(status=target, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if from_statuses is not None:
        stmt = stmt.where(OrderGroupService.status.in_(from_statuses))
    return db.session.execute(stmt).rowcount


# ── Group transitions ────────────────────────────────────────────────────────

_ACTION_TARGETS = {
    "accept": OrderGroupStatus.ACCEPTED,
    "reject": OrderGroupStatus.REJECTED,
    "start": OrderGroupStatus.IN_PROGRESS,
    "complete": OrderGroupStatus.COMPLETED,
}


def transition_group(
    actor: Actor,
    group_id: int,
    action: str,
    *,
    notes: str | None = None,
    reason: str | None = None,
) -> OrderGroup:
    """
    Apply ``action`` to an OrderGroup and re-aggregate its parent Order.

    Args:
        actor: Admin of the fulfilling agency, or a platform admin.
        group_id: OrderGroup PK.
        action: accept | reject | start | complete.
        notes: Optional agency reply stored in response_notes (accept/reject).
        reason: Rejection reason; required for reject.

    Raises:
        NotFoundError: group does not exist.
        AuthorizationError: actor may not manage this group.
        ValidationError: unknown action, illegal transition, missing reason
            or over-long notes.
    """
    target = _ACTION_TARGETS.get(action)
    if target is None:
        raise ValidationError("Unknown action", details={"action": f"Must be one of {sorted(_ACTION_TARGETS)}"})

    max_len = current_app.config.get("MAX_REASON_LENGTH", 500)
    if target == OrderGroupStatus.REJECTED:
        if not isinstance(reason, str) or not reason.strip():
            raise ValidationError("Rejection reason is required", details={"rejection_reason": "Required"})
        if len(reason) > max_len:
            raise ValidationError("Rejection reason too long", details={"rejection_reason": f"At most {max_len} characters"})
    if notes is not None and not isinstance(notes, str):
        raise ValidationError("Invalid notes", details={"notes": "Must be a string"})
    max_notes = current_app.config.get("MAX_ORDER_NOTES_LENGTH", 1000)
    if notes and len(notes) > max_notes:
        raise ValidationError("Notes too long", details={"notes": f"At most {max_notes} characters"})

    group = db.session.get(OrderGroup, group_id)
    if group is None:
        raise NotFoundError(resource="OrderGroup", resource_id=group_id)
    require_group_manager(actor, group)

    try:
        order = _lock_order(group.order_id)
        group = db.session.execute(
            select(OrderGroup).where(OrderGroup.id == group_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one()

        old = group.status
        if not validate_group_transition(old, target):
            raise ValidationError(
                f"Invalid transition: {old.value} → {target.value}",
                details={"status": f"Cannot {action} an order group that is {old.value}"},
            )

        now = utcnow()
        group.status = target
        if target == OrderGroupStatus.ACCEPTED:
            group.accepted_at = now
            group.accepted_by_user_id = actor.user_id
            group.response_notes = notes
        elif target == OrderGroupStatus.REJECTED:
            group.rejected_at = now
            group.rejected_by_user_id = actor.user_id
            group.rejection_reason = reason.strip()
            group.response_notes = notes
        elif target == OrderGroupStatus.IN_PROGRESS:
            group.started_at = now
        elif target == OrderGroupStatus.COMPLETED:
            group.completed_at = now

        db.session.flush()
        items = _cascade_to_items(group)
        aggregate_order_status(order)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info(
        "Order group %s %s → %s (%d line item(s) updated)",
        group.group_number, old.value, target.value, items,
        extra={
            "event_type": "order_group_transitioned",
            "order_group_id": group.id,
            "order_id": group.order_id,
            "user_id": actor.user_id,
            "organization_id": actor.organization_id,
        },
    )
    return group


def accept_group(actor: Actor, group_id: int, notes: str | None = None) -> OrderGroup:
    return transition_group(actor, group_id, "accept", notes=notes)


def reject_group(actor: Actor, group_id: int, reason: str, notes: str | None = None) -> OrderGroup:
    return transition_group(actor, group_id, "reject", notes=notes, reason=reason)


def start_group(actor: Actor, group_id: int) -> OrderGroup:
    return transition_group(actor, group_id, "start")


def complete_group(actor: Actor, group_id: int) -> OrderGroup:
    return transition_group(actor, group_id, "complete")


# ── Line-item status (upward aggregation) ────────────────────────────────────


def compute_group_status(item_statuses) -> OrderGroupStatus:
    """
    Derive an OrderGroup status from its line items, first match wins:

        1. any item rejected           → rejected
        2. every item completed        → completed
        3. any item in_progress        → in_progress
        4. any item accepted           → accepted
        5. otherwise (or no items)     → pending
    """
    statuses = [OrderGroupServiceStatus(s) for s in item_statuses]
    if OrderGroupServiceStatus.REJECTED in statuses:
        return OrderGroupStatus.REJECTED
    if statuses and all(s == OrderGroupServiceStatus.COMPLETED for s in statuses):
        return OrderGroupStatus.COMPLETED
    if OrderGroupServiceStatus.IN_PROGRESS in statuses:
        return OrderGroupStatus.IN_PROGRESS
    if OrderGroupServiceStatus.ACCEPTED in statuses:
        return OrderGroupStatus.ACCEPTED
    return OrderGroupStatus.PENDING


_CLOSED_GROUP_STATUSES = {OrderGroupStatus.REJECTED, OrderGroupStatus.COMPLETED}


def _stamp_group(group: OrderGroup, actor: Actor, now) -> None:
    if group.status == OrderGroupStatus.ACCEPTED and group.accepted_at is None:
        group.accepted_at = now
        group.accepted_by_user_id = actor.user_id
    elif group.status == OrderGroupStatus.REJECTED and group.rejected_at is None:
        group.rejected_at = now
        group.rejected_by_user_id = actor.user_id
    elif group.status == OrderGroupStatus.IN_PROGRESS and group.started_at is None:
        group.started_at = now
    elif group.status == OrderGroupStatus.COMPLETED and group.completed_at is None:
        group.completed_at = now


def update_item_status(actor: Actor, item_id: int, status) -> OrderGroupService:
    """
    Set one line item's status, then re-derive its group and the parent order.

    The group status is recomputed from all of its items with
    ``compute_group_status``; the order is re-aggregated from the groups as
    for a group transition. Nothing cascades back down to sibling items.

    Raises:
        NotFoundError: line item does not exist.
        AuthorizationError: actor may not manage the item's group.
        ValidationError: unknown status, or the group is already rejected
            or completed.
    """
    try:
        target = OrderGroupServiceStatus(status)
    except ValueError:
        raise ValidationError(
            "Unknown line item status",
            details={"status": f"Must be one of {[s.value for s in OrderGroupServiceStatus]}"},
        ) from None

    item = db.session.get(OrderGroupService, item_id)
    if item is None:
        raise NotFoundError(resource="OrderGroupService", resource_id=item_id)
    group = db.session.get(OrderGroup, item.order_group_id)
    require_group_manager(actor, group)

    try:
        order = _lock_order(group.order_id)
        group = db.session.execute(
            select(OrderGroup).where(OrderGroup.id == group.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one()
        if group.status in _CLOSED_GROUP_STATUSES:
            raise ValidationError(
                "Order group is closed",
                details={"status": f"Line items of a {group.status.value} order group cannot change"},
            )

        old_item = item.status
        item.status = target
        db.session.flush()

        statuses = db.session.execute(
            select(OrderGroupService.status).where(OrderGroupService.order_group_id == group.id)
        ).scalars().all()
        old_group = group.status
        group.status = compute_group_status(statuses)
        _stamp_group(group, actor, utcnow())
        db.session.flush()
        aggregate_order_status(order)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info(
        "Order group item %s %s → %s (group %s %s → %s)",
        item.id, old_item.value, target.value,
        group.group_number, old_group.value, group.status.value,
        extra={
            "event_type": "order_group_item_updated",
            "order_group_service_id": item.id,
            "order_group_id": group.id,
            "order_id": group.order_id,
            "user_id": actor.user_id,
        },
    )
    return item
