"""
Organization models — organizations, users and memberships.

Every actor in the marketplace acts on behalf of one organization:

    vessel_owner     places orders through the wizard
    shipping_agency  fulfils the OrderGroups addressed to it
    platform_admin   operator organization that may oversee everything

A user may belong to several organizations with a different role in each;
the organization in effect for a request is carried explicitly by the
caller (see ``portorders.services.access.Actor``).
"""

import enum

from portorders.models import db
from portorders.models.base import enum_column, utcnow


class BusinessType(str, enum.Enum):
    VESSEL_OWNER = "vessel_owner"
    SHIPPING_AGENCY = "shipping_agency"
    PLATFORM_ADMIN = "platform_admin"


class MemberRole(str, enum.Enum):
    ADMIN = "admin"
    CEO = "ceo"
    MANAGER = "manager"
    OPERATIONS = "operations"
    FINANCE = "finance"
    VIEWER = "viewer"


# ═══════════════════════════════════════════════════════════════
# 1. ORGANIZATIONS
# ═══════════════════════════════════════════════════════════════
class Organization(db.Model):
    __tablename__ = "organizations"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    slug = db.Column(db.String(100), unique=True, nullable=False)
    business_type = enum_column(BusinessType, nullable=False)
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
    )

    # Relationships
    members = db.relationship(
        "OrganizationMember", back_populates="organization", lazy="dynamic",
        cascade="all, delete-orphan",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "business_type": self.business_type.value if self.business_type else None,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Organization {self.id}: {self.slug} ({self.business_type})>"


# ═══════════════════════════════════════════════════════════════
# 2. USERS
# ═══════════════════════════════════════════════════════════════
class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(200), unique=True, nullable=False)
    full_name = db.Column(db.String(200))
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)

    memberships = db.relationship(
        "OrganizationMember", back_populates="user", lazy="dynamic",
        cascade="all, delete-orphan",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "email": self.email,
            "full_name": self.full_name,
            "is_active": self.is_active,
        }

    def __repr__(self):
        return f"<User {self.id}: {self.email}>"


# ═══════════════════════════════════════════════════════════════
# 3. MEMBERSHIPS  (user ↔ organization, with role)
# ═══════════════════════════════════════════════════════════════
class OrganizationMember(db.Model):
    __tablename__ = "organization_members"

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(
        db.Integer, db.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    role = enum_column(MemberRole, nullable=False, default=MemberRole.VIEWER)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        db.UniqueConstraint("organization_id", "user_id", name="uq_org_member"),
        db.Index("ix_org_members_user_id", "user_id"),
    )

    organization = db.relationship("Organization", back_populates="members")
    user = db.relationship("User", back_populates="memberships")

    def to_dict(self):
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "user_id": self.user_id,
            "role": self.role.value if self.role else None,
        }

    def __repr__(self):
        return f"<OrganizationMember org={self.organization_id} user={self.user_id} {self.role}>"
