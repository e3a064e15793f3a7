"""
Catalog models — ports, vessels and the service catalog.

Reference data read by the order wizard. Maintenance screens for these
tables live outside this service; only the columns the wizard and the
decomposition engine depend on are modelled here.

Architecture:
    Organization ──1:N──▶ Vessel
    ServiceCategory ──1:N──▶ ServiceSubCategory ──1:N──▶ Service
    Port ──1:N──▶ Service ◀──N:1── Organization (fulfilling agency)
"""

import enum

from portorders.models import db
from portorders.models.base import enum_column, utcnow


class CatalogStatus(str, enum.Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


# ═════════════════════════════════════════════════════════════════════════════
# 1. Port / Vessel
# ═════════════════════════════════════════════════════════════════════════════


class Port(db.Model):
    __tablename__ = "ports"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    code = db.Column(db.String(10), unique=True, nullable=False, comment="UN/LOCODE, e.g. NLRTM")
    country = db.Column(db.String(100), default="")
    city = db.Column(db.String(100), default="")
    timezone = db.Column(db.String(64), default="UTC")
    status = enum_column(CatalogStatus, nullable=False, default=CatalogStatus.ACTIVE)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "country": self.country,
            "city": self.city,
            "status": self.status.value if self.status else None,
        }

    def __repr__(self):
        return f"<Port {self.id}: {self.code}>"


class Vessel(db.Model):
    __tablename__ = "vessels"

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(
        db.Integer, db.ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False, index=True, comment="Owning vessel_owner organization",
    )
    name = db.Column(db.String(200), nullable=False)
    imo_number = db.Column(db.String(20), unique=True, nullable=True)
    vessel_type = db.Column(db.String(50), default="")
    status = enum_column(CatalogStatus, nullable=False, default=CatalogStatus.ACTIVE)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "name": self.name,
            "imo_number": self.imo_number,
            "vessel_type": self.vessel_type,
            "status": self.status.value if self.status else None,
        }

    def __repr__(self):
        return f"<Vessel {self.id}: {self.name}>"


# ═════════════════════════════════════════════════════════════════════════════
# 2. Service catalog
# ═════════════════════════════════════════════════════════════════════════════


class ServiceCategory(db.Model):
    __tablename__ = "service_categories"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, default="")
    sort_order = db.Column(db.Integer, default=0)

    sub_categories = db.relationship(
        "ServiceSubCategory", backref="category", lazy="dynamic",
        cascade="all, delete-orphan", order_by="ServiceSubCategory.sort_order",
    )

    def to_dict(self):
        return {"id": self.id, "name": self.name, "sort_order": self.sort_order}


class ServiceSubCategory(db.Model):
    __tablename__ = "service_sub_categories"

    id = db.Column(db.Integer, primary_key=True)
    service_category_id = db.Column(
        db.Integer, db.ForeignKey("service_categories.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    name = db.Column(db.String(200), nullable=False)
    sort_order = db.Column(db.Integer, default=0)

    def to_dict(self):
        return {
            "id": self.id,
            "service_category_id": self.service_category_id,
            "name": self.name,
            "sort_order": self.sort_order,
        }


class Service(db.Model):
    """A priced service one agency offers at one port."""

    __tablename__ = "services"

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(
        db.Integer, db.ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False, index=True, comment="Fulfilling shipping_agency organization",
    )
    port_id = db.Column(
        db.Integer, db.ForeignKey("ports.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    service_sub_category_id = db.Column(
        db.Integer, db.ForeignKey("service_sub_categories.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, default="")
    price = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    status = enum_column(CatalogStatus, nullable=False, default=CatalogStatus.ACTIVE)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        db.CheckConstraint("price >= 0", name="ck_service_price_non_negative"),
    )

    sub_category = db.relationship("ServiceSubCategory")

    @property
    def service_category_id(self):
        return self.sub_category.service_category_id if self.sub_category else None

    def to_dict(self):
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "port_id": self.port_id,
            "service_sub_category_id": self.service_sub_category_id,
            "service_category_id": self.service_category_id,
            "name": self.name,
            "price": str(self.price) if self.price is not None else None,
            "status": self.status.value if self.status else None,
        }

    def __repr__(self):
        return f"<Service {self.id}: {self.name} org={self.organization_id}>"
