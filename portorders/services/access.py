"""
Acting context and authorization checks.

Every service entry point receives an ``Actor``: the user performing the
call and the organization they act for in this request. Nothing here reads
request globals; the HTTP layer builds the Actor (see
``portorders.middleware.actor_context``) and tests build it directly.

Rules:
    - the actor must be a member of the organization they claim
    - only vessel_owner organizations may start wizard sessions
    - a wizard session is visible and mutable only to its (user, organization)
      owner; platform admins may read any session
    - OrderGroup transitions need an admin of the fulfilling agency, or an
      admin of a platform_admin organization (operator override)
    - an Order is readable by the placing organization, by every fulfilling
      agency of one of its groups, and by platform admins
"""

import logging
from dataclasses import dataclass

from sqlalchemy import select

from portorders.core.exceptions import AuthorizationError
from portorders.models import db
from portorders.models.order import OrderGroup
from portorders.models.organization import (
    BusinessType,
    MemberRole,
    Organization,
    OrganizationMember,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Actor:
    """The (user, organization) pair an operation is performed for."""

    user_id: int
    organization_id: int


# ── Membership lookups ───────────────────────────────────────────────────────


def get_membership(actor: Actor) -> OrganizationMember | None:
    return db.session.execute(
        select(OrganizationMember).where(
            OrganizationMember.user_id == actor.user_id,
            OrganizationMember.organization_id == actor.organization_id,
        )
    ).scalar_one_or_none()


def require_membership(actor: Actor) -> OrganizationMember:
    """Return the actor's membership row or raise AuthorizationError."""
    member = get_membership(actor)
    if member is None or not member.organization.is_active:
        logger.warning(
            "Actor is not an active member of the organization",
            extra={"user_id": actor.user_id, "organization_id": actor.organization_id},
        )
        raise AuthorizationError("User is not a member of this organization")
    return member


def require_business_type(actor: Actor, *business_types: BusinessType) -> Organization:
    """Ensure the actor's organization is one of ``business_types``."""
    org = require_membership(actor).organization
    if org.business_type not in business_types:
        allowed = ", ".join(bt.value for bt in business_types)
        raise AuthorizationError(f"Organization type must be one of: {allowed}")
    return org


def is_platform_admin(actor: Actor) -> bool:
    """True when the actor is an admin of a platform_admin organization."""
    member = get_membership(actor)
    return (
        member is not None
        and member.role == MemberRole.ADMIN
        and member.organization.business_type == BusinessType.PLATFORM_ADMIN
    )


def is_platform_member(actor: Actor) -> bool:
    """True for any member of a platform_admin organization (read override)."""
    member = get_membership(actor)
    return member is not None and member.organization.business_type == BusinessType.PLATFORM_ADMIN


# ── Wizard sessions ──────────────────────────────────────────────────────────


def owns_session(actor: Actor, wizard_session) -> bool:
    return (
        wizard_session.user_id == actor.user_id
        and wizard_session.organization_id == actor.organization_id
    )


def require_session_owner(actor: Actor, wizard_session) -> None:
    require_membership(actor)
    if not owns_session(actor, wizard_session):
        raise AuthorizationError("Only the session owner may modify this wizard session")


def require_session_viewer(actor: Actor, wizard_session) -> None:
    require_membership(actor)
    if owns_session(actor, wizard_session) or is_platform_member(actor):
        return
    raise AuthorizationError("Not allowed to view this wizard session")


# ── Orders and order groups ──────────────────────────────────────────────────


def require_group_manager(actor: Actor, group) -> None:
    """Allow admins of the fulfilling agency, or platform admins."""
    member = require_membership(actor)
    if is_platform_admin(actor):
        return
    if (
        actor.organization_id == group.fulfilling_organization_id
        and member.role == MemberRole.ADMIN
    ):
        return
    raise AuthorizationError("Only an admin of the fulfilling organization may update this order group")


def can_view_order(actor: Actor, order) -> bool:
    if order.placed_by_organization_id == actor.organization_id:
        return True
    if is_platform_member(actor):
        return True
    return db.session.execute(
        select(OrderGroup.id).where(
            OrderGroup.order_id == order.id,
            OrderGroup.fulfilling_organization_id == actor.organization_id,
        ).limit(1)
    ).first() is not None
