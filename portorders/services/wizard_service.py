"""
Order Wizard — Service Layer.

Business logic for the four-step order wizard:
    - Session lifecycle:   start (supersedes older drafts), cancel, expiry sweep
    - Step 1 vessel_port:  vessel of the acting organization + an active port
    - Step 2 categories:   one or more service sub-categories (replaces prior picks)
    - Step 3 services:     active services at the port within the picked
                           sub-categories, with a price snapshot per service
    - Navigation:          jump to any step whose prerequisites are populated

Completing the wizard (step 4 → Order) lives in ``order_service`` because
it is the entry point of the decomposition engine.

Every mutating function commits once on success or rolls back everything
and re-raises; a failed validation leaves the session untouched.
"""

import logging
from datetime import timedelta

from flask import current_app
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError

from portorders.core.exceptions import ConflictError, NotFoundError, ValidationError
from portorders.models import db
from portorders.models.base import utcnow
from portorders.models.catalog import CatalogStatus, Port, Service, ServiceSubCategory, Vessel
from portorders.models.organization import BusinessType
from portorders.models.wizard import (
    WIZARD_STEP_ORDER,
    WizardCategorySelection,
    WizardServiceSelection,
    WizardSession,
    WizardSessionStatus,
    WizardStep,
)
from portorders.services.access import (
    Actor,
    require_business_type,
    require_membership,
    require_session_owner,
    require_session_viewer,
)
from portorders.services.helpers.scoped_queries import get_many_scoped, get_scoped_or_none

logger = logging.getLogger(__name__)


# ── Input helpers ────────────────────────────────────────────────────────────


# primary keys are 32-bit INTEGER columns
MAX_ID = 2**31 - 1


def _is_positive_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def _is_id(value) -> bool:
    return _is_positive_int(value) and value <= MAX_ID


def _id_list(values, field: str) -> list[int]:
    """Validate a non-empty list of distinct positive integer ids."""
    if not isinstance(values, list) or not values:
        raise ValidationError(f"{field} must be a non-empty list", details={field: "At least one id is required"})
    bad = [v for v in values if not _is_id(v)]
    if bad:
        raise ValidationError(f"{field} contains invalid ids", details={field: f"Invalid id(s): {bad}"})
    if len(set(values)) != len(values):
        raise ValidationError(f"{field} contains duplicate ids", details={field: "Each id may appear only once"})
    return list(values)


def _parse_service_entries(entries) -> list[tuple[int, int]]:
    """Normalise ``[id | {"service_id": id, "quantity": n}]`` into (id, qty) pairs."""
    if not isinstance(entries, list) or not entries:
        raise ValidationError("services must be a non-empty list", details={"services": "At least one service is required"})

    max_quantity = current_app.config.get("MAX_SERVICE_QUANTITY", 10000)
    parsed = []
    for idx, entry in enumerate(entries):
        if isinstance(entry, dict):
            service_id = entry.get("service_id")
            quantity = entry.get("quantity", 1)
        else:
            service_id, quantity = entry, 1
        if not _is_id(service_id):
            raise ValidationError("Invalid service id", details={f"services[{idx}].service_id": "Must be a positive integer"})
        if not _is_positive_int(quantity):
            raise ValidationError("Invalid quantity", details={f"services[{idx}].quantity": "Must be a positive integer"})
        if quantity > max_quantity:
            raise ValidationError(
                "Quantity too large", details={f"services[{idx}].quantity": f"Must be at most {max_quantity}"},
            )
        parsed.append((service_id, quantity))

    ids = [sid for sid, _ in parsed]
    if len(set(ids)) != len(ids):
        raise ValidationError("services contains duplicate ids", details={"services": "Each service may appear only once"})
    return parsed


def default_session_name(now) -> str:
    return f"Order Draft - {now:%b} {now.day}, {now.year} {now:%I:%M %p}"


# ── Step prerequisites ───────────────────────────────────────────────────────


def _has_categories(session: WizardSession) -> bool:
    return db.session.execute(
        select(WizardCategorySelection.id)
        .where(WizardCategorySelection.wizard_session_id == session.id)
        .limit(1)
    ).first() is not None


def _has_services(session: WizardSession) -> bool:
    return db.session.execute(
        select(WizardServiceSelection.id)
        .where(WizardServiceSelection.wizard_session_id == session.id)
        .limit(1)
    ).first() is not None


def missing_prerequisite(session: WizardSession, step: WizardStep) -> WizardStep | None:
    """Return the earliest incomplete step that ``step`` depends on, or None."""
    position = WIZARD_STEP_ORDER.index(step)
    if position >= 1 and (session.vessel_id is None or session.port_id is None):
        return WizardStep.VESSEL_PORT
    if position >= 2 and not _has_categories(session):
        return WizardStep.CATEGORIES
    if position >= 3 and not _has_services(session):
        return WizardStep.SERVICES
    return None


def _require_prerequisites(session: WizardSession, step: WizardStep) -> None:
    missing = missing_prerequisite(session, step)
    if missing is not None:
        raise ValidationError(
            "Previous step incomplete",
            details={"step": f"Complete '{missing.value}' before '{step.value}'"},
        )


# ── Session loading ──────────────────────────────────────────────────────────


def _load_session(session_id: int) -> WizardSession:
    """Return a live draft session; expired or completed ones read as missing."""
    session = db.session.get(WizardSession, session_id)
    if session is None or not session.is_active():
        raise NotFoundError(resource="WizardSession", resource_id=session_id)
    return session


def get_session(actor: Actor, session_id: int) -> WizardSession:
    """Session readable by its owner (or a platform operator)."""
    session = _load_session(session_id)
    require_session_viewer(actor, session)
    return session


def get_owned_session(actor: Actor, session_id: int) -> WizardSession:
    """Session the actor may mutate: must be its (user, organization) owner."""
    session = _load_session(session_id)
    require_session_owner(actor, session)
    return session


def list_active_sessions(actor: Actor) -> list[WizardSession]:
    """The actor's non-expired draft sessions for the acting organization, newest first."""
    require_membership(actor)
    return db.session.execute(
        select(WizardSession)
        .where(
            WizardSession.user_id == actor.user_id,
            WizardSession.organization_id == actor.organization_id,
            WizardSession.status == WizardSessionStatus.DRAFT,
            WizardSession.expires_at > utcnow(),
        )
        .order_by(WizardSession.created_at.desc(), WizardSession.id.desc())
    ).scalars().all()


# ── Session lifecycle ────────────────────────────────────────────────────────


def _supersede_drafts(actor: Actor) -> int:
    """Delete the actor's draft sessions, expired or not. Returns the count."""
    drafts = db.session.execute(
        select(WizardSession).where(
            WizardSession.user_id == actor.user_id,
            WizardSession.organization_id == actor.organization_id,
            WizardSession.status == WizardSessionStatus.DRAFT,
        )
    ).scalars().all()
    for old in drafts:
        _delete_session(old)
    # the one-draft index needs the delete on disk before the insert
    db.session.flush()
    return len(drafts)


def start_session(actor: Actor, session_name: str | None = None) -> WizardSession:
    """
    Start a new wizard session at the vessel_port step.

    Any other draft session of the same (user, organization) pair, expired
    or not, is deleted first so at most one active session exists. The
    ``uq_wizard_sessions_one_draft`` index backs this up: when a concurrent
    start inserts first, the supersede step is retried inside a fresh
    SAVEPOINT.

    Raises:
        AuthorizationError: actor is not a member of a vessel_owner organization.
        ValidationError: session_name is not a string of at most 200 chars.
        ConflictError: concurrent starts kept winning the draft slot.
    """
    require_business_type(actor, BusinessType.VESSEL_OWNER)
    if session_name is not None and (not isinstance(session_name, str) or len(session_name) > 200):
        raise ValidationError("Invalid session name", details={"session_name": "Must be a string of at most 200 characters"})

    now = utcnow()
    ttl_days = current_app.config.get("WIZARD_SESSION_TTL_DAYS", 30)
    attempts = current_app.config.get("WIZARD_START_ATTEMPTS", 2)
    name = (session_name or "").strip() or default_session_name(now)

    try:
        for attempt in range(1, attempts + 1):
            try:
                with db.session.begin_nested():
                    superseded = _supersede_drafts(actor)
                    session = WizardSession(
                        user_id=actor.user_id,
                        organization_id=actor.organization_id,
                        session_name=name,
                        current_step=WizardStep.VESSEL_PORT,
                        status=WizardSessionStatus.DRAFT,
                        expires_at=now + timedelta(days=ttl_days),
                    )
                    db.session.add(session)
            except IntegrityError as exc:
                logger.warning(
                    "Concurrent wizard start for user %s in org %s on attempt %d/%d (%s)",
                    actor.user_id, actor.organization_id, attempt, attempts, exc.orig,
                    extra={"event_type": "wizard_session_start_conflict", "user_id": actor.user_id},
                )
                continue
            break
        else:
            raise ConflictError(
                "WizardSession", "status", "draft",
                message="Another wizard session is being started for this user and organization",
            )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info(
        "Wizard session %s started (superseded %d)", session.id, superseded,
        extra={
            "event_type": "wizard_session_started",
            "session_id": session.id,
            "user_id": actor.user_id,
            "organization_id": actor.organization_id,
        },
    )
    return session


def _delete_session(session: WizardSession) -> None:
    db.session.execute(
        delete(WizardServiceSelection).where(WizardServiceSelection.wizard_session_id == session.id)
    )
    db.session.execute(
        delete(WizardCategorySelection).where(WizardCategorySelection.wizard_session_id == session.id)
    )
    db.session.delete(session)


def cancel_session(actor: Actor, session_id: int) -> None:
    """Delete a draft session and its selections. Existing orders are unaffected."""
    session = get_owned_session(actor, session_id)
    try:
        _delete_session(session)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    logger.info(
        "Wizard session %s cancelled", session_id,
        extra={"event_type": "wizard_session_cancelled", "session_id": session_id, "user_id": actor.user_id},
    )


def purge_expired_sessions(now=None) -> int:
    """Delete draft sessions whose expires_at has passed. Returns the count."""
    now = now or utcnow()
    expired_ids = select(WizardSession.id).where(
        WizardSession.status == WizardSessionStatus.DRAFT,
        WizardSession.expires_at <= now,
    )
    try:
        ids = db.session.execute(expired_ids).scalars().all()
        if ids:
            db.session.execute(
                delete(WizardServiceSelection).where(WizardServiceSelection.wizard_session_id.in_(ids))
            )
            db.session.execute(
                delete(WizardCategorySelection).where(WizardCategorySelection.wizard_session_id.in_(ids))
            )
            db.session.execute(
                delete(WizardSession)
                .where(WizardSession.id.in_(ids))
                .execution_options(synchronize_session=False)
            )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    if ids:
        logger.info("Purged %d expired wizard session(s)", len(ids), extra={"event_type": "wizard_sessions_purged"})
    return len(ids)


# ── Step 1: vessel & port ────────────────────────────────────────────────────


def set_vessel_and_port(actor: Actor, session_id: int, vessel_id, port_id) -> WizardSession:
    """
    Record the vessel and port and advance to the categories step.

    The vessel must belong to the acting organization and the port must be
    active. Changing the port discards service selections, which are
    port-specific; category selections are kept.
    """
    details = {}
    if not _is_id(vessel_id):
        details["vessel_id"] = "vessel_id is required"
    if not _is_id(port_id):
        details["port_id"] = "port_id is required"
    if details:
        raise ValidationError("vessel_id and port_id are required", details=details)

    session = get_owned_session(actor, session_id)

    vessel = get_scoped_or_none(Vessel, vessel_id, organization_id=actor.organization_id)
    if vessel is None or vessel.status != CatalogStatus.ACTIVE:
        details["vessel_id"] = "Vessel not found for this organization"
    port = db.session.get(Port, port_id)
    if port is None or port.status != CatalogStatus.ACTIVE:
        details["port_id"] = "Port not found"
    if details:
        raise ValidationError("Invalid vessel or port", details=details)

    try:
        if session.port_id is not None and session.port_id != port.id:
            db.session.execute(
                delete(WizardServiceSelection).where(WizardServiceSelection.wizard_session_id == session.id)
            )
        session.vessel_id = vessel.id
        session.port_id = port.id
        session.current_step = WizardStep.CATEGORIES
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return session


# ── Step 2: categories ───────────────────────────────────────────────────────


def set_categories(actor: Actor, session_id: int, sub_category_ids) -> WizardSession:
    """
    Replace the session's category selections and advance to services.

    Several sub-categories of the same parent category are allowed. Service
    selections whose sub-category is no longer selected are dropped.
    """
    ids = _id_list(sub_category_ids, "sub_category_ids")
    session = get_owned_session(actor, session_id)
    _require_prerequisites(session, WizardStep.CATEGORIES)

    subs = {
        s.id: s
        for s in db.session.execute(
            select(ServiceSubCategory).where(ServiceSubCategory.id.in_(ids))
        ).scalars()
    }
    unknown = [i for i in ids if i not in subs]
    if unknown:
        raise ValidationError(
            "Unknown sub-category",
            details={"sub_category_ids": f"Unknown sub-category id(s): {unknown}"},
        )

    try:
        db.session.execute(
            delete(WizardCategorySelection).where(WizardCategorySelection.wizard_session_id == session.id)
        )
        for idx, sub_id in enumerate(ids):
            db.session.add(WizardCategorySelection(
                wizard_session_id=session.id,
                service_category_id=subs[sub_id].service_category_id,
                service_sub_category_id=sub_id,
                order_index=idx,
            ))
        db.session.execute(
            delete(WizardServiceSelection).where(
                WizardServiceSelection.wizard_session_id == session.id,
                WizardServiceSelection.service_sub_category_id.notin_(ids),
            )
        )
        session.current_step = WizardStep.SERVICES
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return session


# ── Step 3: services ─────────────────────────────────────────────────────────


def set_services(actor: Actor, session_id: int, services) -> WizardSession:
    """
    Replace the session's service selections and advance to review.

    ``services`` is a list of service ids or ``{"service_id", "quantity"}``
    objects. Each service must be active, offered at the session's port and
    belong to one of the selected sub-categories. The current catalog price
    is copied into ``price_snapshot`` together with the fulfilling agency.
    """
    requested = _parse_service_entries(services)
    session = get_owned_session(actor, session_id)
    _require_prerequisites(session, WizardStep.SERVICES)

    selected_subs = set(db.session.execute(
        select(WizardCategorySelection.service_sub_category_id)
        .where(WizardCategorySelection.wizard_session_id == session.id)
    ).scalars())
    found = get_many_scoped(Service, [sid for sid, _ in requested], port_id=session.port_id)

    problems = {}
    for sid, _ in requested:
        svc = found.get(sid)
        if svc is None:
            problems[f"services.{sid}"] = "Service is not offered at the selected port"
        elif svc.status != CatalogStatus.ACTIVE:
            problems[f"services.{sid}"] = "Service is not active"
        elif svc.service_sub_category_id not in selected_subs:
            problems[f"services.{sid}"] = "Service is outside the selected categories"
    if problems:
        raise ValidationError("Invalid service selection", details=problems)

    try:
        db.session.execute(
            delete(WizardServiceSelection).where(WizardServiceSelection.wizard_session_id == session.id)
        )
        for sid, quantity in requested:
            svc = found[sid]
            db.session.add(WizardServiceSelection(
                wizard_session_id=session.id,
                service_id=svc.id,
                service_category_id=svc.service_category_id,
                service_sub_category_id=svc.service_sub_category_id,
                organization_id=svc.organization_id,
                service_name=svc.name,
                price_snapshot=svc.price,
                quantity=quantity,
            ))
        session.current_step = WizardStep.REVIEW
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return session


# ── Navigation ───────────────────────────────────────────────────────────────


def go_to_step(actor: Actor, session_id: int, step) -> WizardSession:
    """Move the session to ``step`` without touching its selections."""
    try:
        target = WizardStep(step)
    except ValueError:
        raise ValidationError("Unknown wizard step", details={"step": f"Must be one of {[s.value for s in WizardStep]}"}) from None

    session = get_owned_session(actor, session_id)
    _require_prerequisites(session, target)
    try:
        session.current_step = target
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return session
