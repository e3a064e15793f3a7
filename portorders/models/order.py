"""
Order models — parent orders, per-agency order groups and line items.

Models:
    - Order:              what the vessel owner placed; status is derived only
    - OrderGroup:         the slice of an order one fulfilling agency handles
    - OrderGroupService:  a line item with its immutable price snapshot

Architecture:
    Order ──1:N──▶ OrderGroup ──1:N──▶ OrderGroupService
    OrderGroup ──N:1──▶ Organization (fulfilling agency, one per order)

Lifecycle states:
    Order:              pending_agency_confirmation → confirmed | rejected
                        (recomputed from the groups after every group transition)
    OrderGroup:         pending → accepted → in_progress → completed
                        pending → rejected
    OrderGroupService:  follows its group (see GROUP_ITEM_CASCADE)
"""

import enum

from portorders.models import db
from portorders.models.base import enum_column, utcnow


# ── Status enumerations ──────────────────────────────────────────────────────


class OrderStatus(str, enum.Enum):
    DRAFT = "draft"
    PENDING_AGENCY_CONFIRMATION = "pending_agency_confirmation"
    CONFIRMED = "confirmed"
    PARTIALLY_ACCEPTED = "partially_accepted"
    REJECTED = "rejected"


class OrderGroupStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class OrderGroupServiceStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


# ── Lifecycle Transition Guards ──────────────────────────────────────────────

ORDER_GROUP_TRANSITIONS = {
    OrderGroupStatus.PENDING:     [OrderGroupStatus.ACCEPTED, OrderGroupStatus.REJECTED],
    OrderGroupStatus.ACCEPTED:    [OrderGroupStatus.IN_PROGRESS],
    OrderGroupStatus.IN_PROGRESS: [OrderGroupStatus.COMPLETED],
    OrderGroupStatus.REJECTED:    [],
    OrderGroupStatus.COMPLETED:   [],
}

# Group status → (line-item statuses that move, target line-item status).
# None as the source set means every line item moves.
GROUP_ITEM_CASCADE = {
    OrderGroupStatus.PENDING: None,
    OrderGroupStatus.ACCEPTED: (
        {OrderGroupServiceStatus.PENDING},
        OrderGroupServiceStatus.ACCEPTED,
    ),
    OrderGroupStatus.IN_PROGRESS: (
        {OrderGroupServiceStatus.PENDING, OrderGroupServiceStatus.ACCEPTED},
        OrderGroupServiceStatus.IN_PROGRESS,
    ),
    OrderGroupStatus.COMPLETED: (None, OrderGroupServiceStatus.COMPLETED),
    OrderGroupStatus.REJECTED: (None, OrderGroupServiceStatus.REJECTED),
}


def validate_group_transition(old_status, new_status):
    """Return True if OrderGroup status transition is valid."""
    return OrderGroupStatus(new_status) in ORDER_GROUP_TRANSITIONS.get(OrderGroupStatus(old_status), [])


# ═════════════════════════════════════════════════════════════════════════════
# 1. Order
# ═════════════════════════════════════════════════════════════════════════════


class Order(db.Model):
    """
    Parent order created atomically from one completed wizard session.
    Order number format: ORD-<12 hex chars>, unique, retried on collision.
    """

    __tablename__ = "orders"

    id = db.Column(db.Integer, primary_key=True)
    order_number = db.Column(db.String(40), unique=True, nullable=False)
    wizard_session_id = db.Column(
        db.Integer, db.ForeignKey("wizard_sessions.id", ondelete="SET NULL"),
        unique=True, nullable=True,
        comment="Source session; unique so one session can never yield two orders",
    )
    vessel_id = db.Column(
        db.Integer, db.ForeignKey("vessels.id"), nullable=False, index=True,
    )
    port_id = db.Column(
        db.Integer, db.ForeignKey("ports.id"), nullable=False, index=True,
    )
    placed_by_user_id = db.Column(
        db.Integer, db.ForeignKey("users.id"), nullable=False,
    )
    placed_by_organization_id = db.Column(
        db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True,
    )
    notes = db.Column(db.Text, default="")
    status = enum_column(
        OrderStatus, nullable=False, default=OrderStatus.PENDING_AGENCY_CONFIRMATION,
        comment="Derived from OrderGroup statuses; never set by agency actions",
    )
    total_amount = db.Column(
        db.Numeric(12, 2), nullable=False, default=0,
        comment="Σ OrderGroup.subtotal_amount at creation time",
    )
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    # ── Relationships ────────────────────────────────────────────────────
    groups = db.relationship(
        "OrderGroup", backref="order", lazy="dynamic",
        cascade="all, delete-orphan", order_by="OrderGroup.group_number",
    )
    vessel = db.relationship("Vessel")
    port = db.relationship("Port")

    def to_dict(self, include_groups=False):
        result = {
            "id": self.id,
            "order_number": self.order_number,
            "wizard_session_id": self.wizard_session_id,
            "vessel_id": self.vessel_id,
            "port_id": self.port_id,
            "placed_by_user_id": self.placed_by_user_id,
            "placed_by_organization_id": self.placed_by_organization_id,
            "notes": self.notes,
            "status": self.status.value if self.status else None,
            "total_amount": str(self.total_amount) if self.total_amount is not None else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "group_count": self.groups.count(),
        }
        if include_groups:
            result["groups"] = [g.to_dict(include_items=True) for g in self.groups]
        return result

    def __repr__(self):
        return f"<Order {self.id}: {self.order_number} [{self.status}]>"


# ═════════════════════════════════════════════════════════════════════════════
# 2. OrderGroup
# ═════════════════════════════════════════════════════════════════════════════


class OrderGroup(db.Model):
    """
    One fulfilling agency's share of an Order.
    Group number format: <order_number>-G01, -G02, ... (sequential per order).
    """

    __tablename__ = "order_groups"

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(
        db.Integer, db.ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    group_number = db.Column(db.String(50), unique=True, nullable=False)
    fulfilling_organization_id = db.Column(
        db.Integer, db.ForeignKey("organizations.id"),
        nullable=False, index=True,
    )
    status = enum_column(OrderGroupStatus, nullable=False, default=OrderGroupStatus.PENDING)
    subtotal_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    notes = db.Column(db.Text, default="")
    response_notes = db.Column(db.Text, nullable=True, comment="Agency reply on accept/reject")
    rejection_reason = db.Column(db.String(500), nullable=True)

    accepted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    accepted_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    rejected_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejected_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    started_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        db.UniqueConstraint(
            "order_id", "fulfilling_organization_id", name="uq_order_group_org",
        ),
    )

    items = db.relationship(
        "OrderGroupService", backref="order_group", lazy="dynamic",
        cascade="all, delete-orphan", order_by="OrderGroupService.id",
    )
    fulfilling_organization = db.relationship("Organization")

    def to_dict(self, include_items=False):
        result = {
            "id": self.id,
            "order_id": self.order_id,
            "group_number": self.group_number,
            "fulfilling_organization_id": self.fulfilling_organization_id,
            "status": self.status.value if self.status else None,
            "subtotal_amount": str(self.subtotal_amount) if self.subtotal_amount is not None else None,
            "notes": self.notes,
            "response_notes": self.response_notes,
            "rejection_reason": self.rejection_reason,
            "accepted_at": self.accepted_at.isoformat() if self.accepted_at else None,
            "accepted_by_user_id": self.accepted_by_user_id,
            "rejected_at": self.rejected_at.isoformat() if self.rejected_at else None,
            "rejected_by_user_id": self.rejected_by_user_id,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
        if include_items:
            result["items"] = [i.to_dict() for i in self.items]
        return result

    def __repr__(self):
        return f"<OrderGroup {self.id}: {self.group_number} [{self.status}]>"


# ═════════════════════════════════════════════════════════════════════════════
# 3. OrderGroupService (line item)
# ═════════════════════════════════════════════════════════════════════════════


class OrderGroupService(db.Model):
    __tablename__ = "order_group_services"

    id = db.Column(db.Integer, primary_key=True)
    order_group_id = db.Column(
        db.Integer, db.ForeignKey("order_groups.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    service_id = db.Column(db.Integer, db.ForeignKey("services.id"), nullable=False)
    service_name = db.Column(db.String(200), nullable=False, comment="Name at order time")
    quantity = db.Column(db.Integer, nullable=False, default=1)
    unit_price = db.Column(
        db.Numeric(12, 2), nullable=False,
        comment="Price snapshot; immutable after creation",
    )
    total_price = db.Column(
        db.Numeric(12, 2), nullable=False,
        comment="quantity × unit_price, computed at creation",
    )
    status = enum_column(
        OrderGroupServiceStatus, nullable=False, default=OrderGroupServiceStatus.PENDING,
    )
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        db.UniqueConstraint("order_group_id", "service_id", name="uq_order_group_service"),
        db.CheckConstraint("quantity > 0", name="ck_order_group_service_quantity_positive"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "order_group_id": self.order_group_id,
            "service_id": self.service_id,
            "service_name": self.service_name,
            "quantity": self.quantity,
            "unit_price": str(self.unit_price),
            "total_price": str(self.total_price),
            "status": self.status.value if self.status else None,
        }

    def __repr__(self):
        return f"<OrderGroupService {self.id}: svc={self.service_id} x{self.quantity}>"
