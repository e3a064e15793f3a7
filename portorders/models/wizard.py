"""
Order wizard models — resumable draft sessions and their selections.

Models:
    - WizardSession:            draft aggregate owned by one (user, organization) pair
    - WizardCategorySelection:  sub-categories picked at the categories step
    - WizardServiceSelection:   services picked at the services step, with the
                                price snapshot taken when they were selected

Lifecycle:
    WizardSession.current_step:  vessel_port → categories → services → review
    WizardSession.status:        draft → completed   (cancel deletes the row)

A session past ``expires_at`` is treated as gone by every reader; rows are
swept by ``flask purge-expired-sessions``.
"""

import enum

from portorders.models import db
from portorders.models.base import as_utc, enum_column, utcnow


class WizardStep(str, enum.Enum):
    VESSEL_PORT = "vessel_port"
    CATEGORIES = "categories"
    SERVICES = "services"
    REVIEW = "review"

    @property
    def number(self) -> int:
        return WIZARD_STEP_ORDER.index(self) + 1

    @property
    def label(self) -> str:
        return _STEP_LABELS[self]

    @property
    def progress(self) -> int:
        """Percentage shown on the wizard progress bar (25/50/75/100)."""
        return self.number * 100 // len(WIZARD_STEP_ORDER)

    def next(self):
        """Step that follows this one, or None at review."""
        idx = WIZARD_STEP_ORDER.index(self)
        return WIZARD_STEP_ORDER[idx + 1] if idx + 1 < len(WIZARD_STEP_ORDER) else None


WIZARD_STEP_ORDER = [
    WizardStep.VESSEL_PORT,
    WizardStep.CATEGORIES,
    WizardStep.SERVICES,
    WizardStep.REVIEW,
]

_STEP_LABELS = {
    WizardStep.VESSEL_PORT: "Vessel & Port",
    WizardStep.CATEGORIES: "Categories",
    WizardStep.SERVICES: "Services",
    WizardStep.REVIEW: "Review",
}


class WizardSessionStatus(str, enum.Enum):
    DRAFT = "draft"
    COMPLETED = "completed"


# ═════════════════════════════════════════════════════════════════════════════
# 1. WizardSession
# ═════════════════════════════════════════════════════════════════════════════


class WizardSession(db.Model):
    __tablename__ = "wizard_sessions"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    organization_id = db.Column(
        db.Integer, db.ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
    )
    session_name = db.Column(db.String(200), nullable=False)
    current_step = enum_column(WizardStep, nullable=False, default=WizardStep.VESSEL_PORT)
    status = enum_column(WizardSessionStatus, nullable=False, default=WizardSessionStatus.DRAFT)

    vessel_id = db.Column(
        db.Integer, db.ForeignKey("vessels.id", ondelete="SET NULL"), nullable=True,
    )
    port_id = db.Column(
        db.Integer, db.ForeignKey("ports.id", ondelete="SET NULL"), nullable=True,
    )

    expires_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        comment="created_at + WIZARD_SESSION_TTL_DAYS; reads past this point see 404",
    )
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        db.Index("ix_wizard_sessions_owner", "user_id", "organization_id", "status"),
        db.Index("ix_wizard_sessions_expires_at", "expires_at"),
        # at most one draft per (user, organization)
        db.Index(
            "uq_wizard_sessions_one_draft", "user_id", "organization_id",
            unique=True,
            sqlite_where=db.text("status = 'draft'"),
            postgresql_where=db.text("status = 'draft'"),
        ),
    )

    # ── Relationships ────────────────────────────────────────────────────
    category_selections = db.relationship(
        "WizardCategorySelection", backref="wizard_session", lazy="dynamic",
        cascade="all, delete-orphan", passive_deletes=True,
        order_by="WizardCategorySelection.order_index",
    )
    service_selections = db.relationship(
        "WizardServiceSelection", backref="wizard_session", lazy="dynamic",
        cascade="all, delete-orphan", passive_deletes=True,
        order_by="WizardServiceSelection.id",
    )
    vessel = db.relationship("Vessel")
    port = db.relationship("Port")

    def is_expired(self, now=None) -> bool:
        return as_utc(self.expires_at) <= (now or utcnow())

    def is_active(self, now=None) -> bool:
        return self.status == WizardSessionStatus.DRAFT and not self.is_expired(now)

    def to_dict(self, include_selections=True):
        step = self.current_step
        following = step.next() if step else None
        result = {
            "id": self.id,
            "user_id": self.user_id,
            "organization_id": self.organization_id,
            "session_name": self.session_name,
            "status": self.status.value if self.status else None,
            "current_step": step.value if step else None,
            "step_number": step.number if step else None,
            "step_label": step.label if step else None,
            "progress": step.progress if step else None,
            "next_step": following.value if following else None,
            "vessel_id": self.vessel_id,
            "port_id": self.port_id,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_selections:
            result["category_selections"] = [c.to_dict() for c in self.category_selections]
            result["service_selections"] = [s.to_dict() for s in self.service_selections]
        return result

    def __repr__(self):
        return f"<WizardSession {self.id}: user={self.user_id} org={self.organization_id} {self.current_step}>"


# ═════════════════════════════════════════════════════════════════════════════
# 2. Selections
# ═════════════════════════════════════════════════════════════════════════════


class WizardCategorySelection(db.Model):
    __tablename__ = "wizard_category_selections"

    id = db.Column(db.Integer, primary_key=True)
    wizard_session_id = db.Column(
        db.Integer, db.ForeignKey("wizard_sessions.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    service_category_id = db.Column(
        db.Integer, db.ForeignKey("service_categories.id", ondelete="CASCADE"),
        nullable=False,
    )
    service_sub_category_id = db.Column(
        db.Integer, db.ForeignKey("service_sub_categories.id", ondelete="CASCADE"),
        nullable=False,
    )
    order_index = db.Column(db.Integer, nullable=False, default=0)

    __table_args__ = (
        db.UniqueConstraint(
            "wizard_session_id", "service_sub_category_id",
            name="uq_wizard_category_selection",
        ),
    )

    def to_dict(self):
        return {
            "service_category_id": self.service_category_id,
            "service_sub_category_id": self.service_sub_category_id,
            "order_index": self.order_index,
        }


class WizardServiceSelection(db.Model):
    __tablename__ = "wizard_service_selections"

    id = db.Column(db.Integer, primary_key=True)
    wizard_session_id = db.Column(
        db.Integer, db.ForeignKey("wizard_sessions.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    service_id = db.Column(
        db.Integer, db.ForeignKey("services.id", ondelete="CASCADE"), nullable=False,
    )
    service_category_id = db.Column(db.Integer, nullable=False)
    service_sub_category_id = db.Column(db.Integer, nullable=False)
    organization_id = db.Column(
        db.Integer, db.ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False, comment="Fulfilling agency, copied from the service",
    )
    service_name = db.Column(db.String(200), nullable=False)
    price_snapshot = db.Column(
        db.Numeric(12, 2), nullable=False,
        comment="Service price at selection time; never re-read from the catalog",
    )
    quantity = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        db.UniqueConstraint("wizard_session_id", "service_id", name="uq_wizard_service_selection"),
        db.CheckConstraint("quantity > 0", name="ck_wizard_service_quantity_positive"),
    )

    def to_dict(self):
        return {
            "service_id": self.service_id,
            "service_name": self.service_name,
            "service_category_id": self.service_category_id,
            "service_sub_category_id": self.service_sub_category_id,
            "organization_id": self.organization_id,
            "price_snapshot": str(self.price_snapshot),
            "quantity": self.quantity,
        }
