"""
Wizard session lifecycle tests (service layer).

Covers:
    - start: vessel_owner only, supersedes older drafts, default name, expiry
    - step order: setServices / setCategories on a fresh session fail and
      leave no selection rows
    - replace semantics for categories and services, price snapshots
    - port change clears service selections
    - ownership: another user or organization cannot read or modify
    - expiry: expired sessions read as missing and are purged
    - go_to_step navigation and step metadata
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from portorders.core.exceptions import AuthorizationError, ConflictError, NotFoundError, ValidationError
from portorders.models import db
from portorders.models.base import utcnow
from portorders.models.wizard import (
    WizardCategorySelection,
    WizardServiceSelection,
    WizardSession,
    WizardSessionStatus,
    WizardStep,
)
from portorders.services import wizard_service
from portorders.services.access import Actor


def _count(model, **filters):
    stmt = select(func.count()).select_from(model)
    for field, value in filters.items():
        stmt = stmt.where(getattr(model, field) == value)
    return db.session.execute(stmt).scalar_one()


# ═════════════════════════════════════════════════════════════════════════════
# Start / supersede
# ═════════════════════════════════════════════════════════════════════════════


class TestStartSession:
    def test_start_creates_draft_at_first_step(self, app, market):
        ws = wizard_service.start_session(market.owner)

        assert ws.status == WizardSessionStatus.DRAFT
        assert ws.current_step == WizardStep.VESSEL_PORT
        assert ws.user_id == market.owner.user_id
        assert ws.organization_id == market.owner.organization_id
        assert ws.session_name.startswith("Order Draft - ")

    def test_expiry_uses_configured_ttl(self, app, market):
        before = utcnow()
        ws = wizard_service.start_session(market.owner)
        expires = ws.expires_at.replace(tzinfo=timezone.utc) if ws.expires_at.tzinfo is None else ws.expires_at
        ttl = timedelta(days=app.config["WIZARD_SESSION_TTL_DAYS"])
        assert before + ttl <= expires <= utcnow() + ttl

    def test_explicit_name_is_kept(self, market):
        ws = wizard_service.start_session(market.owner, "  Rotterdam call  ")
        assert ws.session_name == "Rotterdam call"

    def test_new_session_supersedes_previous_draft(self, market):
        first = wizard_service.start_session(market.owner)
        wizard_service.set_vessel_and_port(market.owner, first.id, market.vessel.id, market.rotterdam.id)
        wizard_service.set_categories(market.owner, first.id, [market.fuel.id])
        first_id = first.id

        second = wizard_service.start_session(market.owner)

        assert db.session.get(WizardSession, first_id) is None
        assert _count(WizardCategorySelection, wizard_session_id=first_id) == 0
        assert [s.id for s in wizard_service.list_active_sessions(market.owner)] == [second.id]

    def test_second_draft_row_violates_one_draft_index(self, market):
        first = wizard_service.start_session(market.owner)
        db.session.add(WizardSession(
            user_id=first.user_id,
            organization_id=first.organization_id,
            session_name="Duplicate",
            current_step=WizardStep.VESSEL_PORT,
            status=WizardSessionStatus.DRAFT,
            expires_at=first.expires_at,
        ))
        with pytest.raises(IntegrityError):
            db.session.commit()
        db.session.rollback()

    def test_completed_session_does_not_hold_the_draft_slot(self, market):
        first = wizard_service.start_session(market.owner)
        first.status = WizardSessionStatus.COMPLETED
        db.session.commit()
        first_id = first.id

        second = wizard_service.start_session(market.owner)

        assert db.session.get(WizardSession, first_id).status == WizardSessionStatus.COMPLETED
        assert [s.id for s in wizard_service.list_active_sessions(market.owner)] == [second.id]

    def test_concurrent_start_is_retried(self, market, monkeypatch):
        existing_id = wizard_service.start_session(market.owner).id
        real_supersede = wizard_service._supersede_drafts
        calls = []

        def _read_before_other_insert(actor):
            # first pass misses the draft another request just inserted
            calls.append(actor)
            return 0 if len(calls) == 1 else real_supersede(actor)

        monkeypatch.setattr(wizard_service, "_supersede_drafts", _read_before_other_insert)
        fresh = wizard_service.start_session(market.owner)

        assert len(calls) == 2
        assert db.session.get(WizardSession, existing_id) is None
        assert [s.id for s in wizard_service.list_active_sessions(market.owner)] == [fresh.id]

    def test_start_gives_up_when_draft_slot_stays_taken(self, market, monkeypatch):
        existing_id = wizard_service.start_session(market.owner).id
        monkeypatch.setattr(wizard_service, "_supersede_drafts", lambda actor: 0)

        with pytest.raises(ConflictError):
            wizard_service.start_session(market.owner)

        assert _count(WizardSession, status=WizardSessionStatus.DRAFT) == 1
        assert db.session.get(WizardSession, existing_id) is not None

    def test_other_users_drafts_survive(self, market):
        mine = wizard_service.start_session(market.owner)
        wizard_service.start_session(market.other_owner)
        assert db.session.get(WizardSession, mine.id) is not None

    def test_agency_cannot_start_session(self, market):
        with pytest.raises(AuthorizationError):
            wizard_service.start_session(market.agency_a_admin)

    def test_non_member_cannot_start_session(self, market):
        outsider = Actor(user_id=market.agency_a_admin.user_id, organization_id=market.owner_org.id)
        with pytest.raises(AuthorizationError):
            wizard_service.start_session(outsider)

    def test_default_session_name_format(self):
        now = datetime(2026, 10, 19, 15, 4, tzinfo=timezone.utc)
        assert wizard_service.default_session_name(now) == "Order Draft - Oct 19, 2026 03:04 PM"


# ═════════════════════════════════════════════════════════════════════════════
# Step order enforcement
# ═════════════════════════════════════════════════════════════════════════════


class TestStepOrder:
    def test_services_before_categories_fails_without_rows(self, market):
        ws = wizard_service.start_session(market.owner)

        with pytest.raises(ValidationError) as exc:
            wizard_service.set_services(market.owner, ws.id, [market.a_fuel.id])

        assert "step" in exc.value.details
        assert _count(WizardServiceSelection, wizard_session_id=ws.id) == 0
        assert _count(WizardCategorySelection, wizard_session_id=ws.id) == 0
        assert db.session.get(WizardSession, ws.id).current_step == WizardStep.VESSEL_PORT

    def test_categories_before_vessel_port_fails_without_rows(self, market):
        ws = wizard_service.start_session(market.owner)

        with pytest.raises(ValidationError):
            wizard_service.set_categories(market.owner, ws.id, [market.fuel.id])

        assert _count(WizardCategorySelection, wizard_session_id=ws.id) == 0

    def test_services_after_vessel_port_but_before_categories_fails(self, market):
        ws = wizard_service.start_session(market.owner)
        wizard_service.set_vessel_and_port(market.owner, ws.id, market.vessel.id, market.rotterdam.id)

        with pytest.raises(ValidationError):
            wizard_service.set_services(market.owner, ws.id, [market.a_fuel.id])
        assert _count(WizardServiceSelection, wizard_session_id=ws.id) == 0

    def test_full_walk_advances_steps(self, market):
        ws = wizard_service.start_session(market.owner)
        ws = wizard_service.set_vessel_and_port(market.owner, ws.id, market.vessel.id, market.rotterdam.id)
        assert ws.current_step == WizardStep.CATEGORIES
        ws = wizard_service.set_categories(market.owner, ws.id, [market.fuel.id, market.provisions.id])
        assert ws.current_step == WizardStep.SERVICES
        ws = wizard_service.set_services(market.owner, ws.id, [market.a_fuel.id, market.b_provisions.id])
        assert ws.current_step == WizardStep.REVIEW


# ═════════════════════════════════════════════════════════════════════════════
# Step 1: vessel & port
# ═════════════════════════════════════════════════════════════════════════════


class TestVesselAndPort:
    def test_missing_ids_are_reported_per_field(self, market):
        ws = wizard_service.start_session(market.owner)
        with pytest.raises(ValidationError) as exc:
            wizard_service.set_vessel_and_port(market.owner, ws.id, None, None)
        assert set(exc.value.details) == {"vessel_id", "port_id"}

    def test_vessel_of_another_organization_is_rejected(self, market):
        ws = wizard_service.start_session(market.owner)
        with pytest.raises(ValidationError) as exc:
            wizard_service.set_vessel_and_port(market.owner, ws.id, market.foreign_vessel.id, market.rotterdam.id)
        assert "vessel_id" in exc.value.details
        assert db.session.get(WizardSession, ws.id).vessel_id is None

    def test_inactive_port_is_rejected(self, market):
        ws = wizard_service.start_session(market.owner)
        with pytest.raises(ValidationError) as exc:
            wizard_service.set_vessel_and_port(market.owner, ws.id, market.vessel.id, market.closed_port.id)
        assert "port_id" in exc.value.details

    def test_port_change_clears_service_selections(self, wizard_at_review, market):
        ws = wizard_at_review([market.a_fuel])
        assert _count(WizardServiceSelection, wizard_session_id=ws.id) == 1

        ws = wizard_service.set_vessel_and_port(market.owner, ws.id, market.vessel.id, market.hamburg.id)

        assert _count(WizardServiceSelection, wizard_session_id=ws.id) == 0
        assert _count(WizardCategorySelection, wizard_session_id=ws.id) == 1
        assert ws.port_id == market.hamburg.id
        assert ws.current_step == WizardStep.CATEGORIES

    def test_same_port_keeps_service_selections(self, wizard_at_review, market):
        ws = wizard_at_review([market.a_fuel])
        wizard_service.set_vessel_and_port(market.owner, ws.id, market.vessel.id, market.rotterdam.id)
        assert _count(WizardServiceSelection, wizard_session_id=ws.id) == 1


# ═════════════════════════════════════════════════════════════════════════════
# Step 2 / 3: replace semantics and snapshots
# ═════════════════════════════════════════════════════════════════════════════


class TestSelections:
    def _at_categories(self, market):
        ws = wizard_service.start_session(market.owner)
        return wizard_service.set_vessel_and_port(market.owner, ws.id, market.vessel.id, market.rotterdam.id)

    def test_categories_replace_previous_selection(self, market):
        ws = self._at_categories(market)
        wizard_service.set_categories(market.owner, ws.id, [market.fuel.id, market.provisions.id])
        wizard_service.set_categories(market.owner, ws.id, [market.repairs.id])

        rows = db.session.execute(
            select(WizardCategorySelection).where(WizardCategorySelection.wizard_session_id == ws.id)
        ).scalars().all()
        assert [r.service_sub_category_id for r in rows] == [market.repairs.id]
        assert rows[0].service_category_id == market.technical.id

    def test_sub_categories_of_same_category_allowed(self, market):
        ws = self._at_categories(market)
        wizard_service.set_categories(market.owner, ws.id, [market.fuel.id, market.provisions.id])
        assert _count(WizardCategorySelection, wizard_session_id=ws.id) == 2

    @pytest.mark.parametrize("ids", [[], None, [0], ["1"], [True]])
    def test_invalid_category_lists(self, market, ids):
        ws = self._at_categories(market)
        with pytest.raises(ValidationError):
            wizard_service.set_categories(market.owner, ws.id, ids)

    def test_duplicate_and_unknown_sub_categories(self, market):
        ws = self._at_categories(market)
        with pytest.raises(ValidationError):
            wizard_service.set_categories(market.owner, ws.id, [market.fuel.id, market.fuel.id])
        with pytest.raises(ValidationError) as exc:
            wizard_service.set_categories(market.owner, ws.id, [market.fuel.id, 99999])
        assert "99999" in exc.value.details["sub_category_ids"]
        assert _count(WizardCategorySelection, wizard_session_id=ws.id) == 0

    def test_narrowing_categories_prunes_services(self, wizard_at_review, market):
        ws = wizard_at_review([market.a_fuel, market.b_provisions])
        wizard_service.set_categories(market.owner, ws.id, [market.fuel.id])

        remaining = db.session.execute(
            select(WizardServiceSelection.service_id).where(WizardServiceSelection.wizard_session_id == ws.id)
        ).scalars().all()
        assert remaining == [market.a_fuel.id]

    def test_services_replace_previous_selection(self, wizard_at_review, market):
        ws = wizard_at_review([market.a_fuel, market.a_provisions], sub_categories=[market.fuel.id, market.provisions.id])
        wizard_service.set_services(market.owner, ws.id, [{"service_id": market.b_provisions.id, "quantity": 3}])

        rows = db.session.execute(
            select(WizardServiceSelection).where(WizardServiceSelection.wizard_session_id == ws.id)
        ).scalars().all()
        assert [(r.service_id, r.quantity) for r in rows] == [(market.b_provisions.id, 3)]

    def test_service_selection_snapshots_catalog_data(self, wizard_at_review, market):
        ws = wizard_at_review([(market.b_repairs, 2)])
        sel = ws.service_selections.one()

        assert sel.organization_id == market.agency_b.id
        assert sel.service_category_id == market.technical.id
        assert sel.service_sub_category_id == market.repairs.id
        assert sel.service_name == "Hull inspection"
        assert Decimal(sel.price_snapshot) == Decimal("300.00")

        market.b_repairs.price = Decimal("999.00")
        db.session.commit()
        db.session.expire_all()
        assert Decimal(ws.service_selections.one().price_snapshot) == Decimal("300.00")

    def test_service_outside_selected_categories_rejected(self, wizard_at_review, market):
        ws = wizard_at_review([market.a_fuel])
        with pytest.raises(ValidationError) as exc:
            wizard_service.set_services(market.owner, ws.id, [market.b_repairs.id])
        assert f"services.{market.b_repairs.id}" in exc.value.details
        assert ws.service_selections.one().service_id == market.a_fuel.id

    def test_service_at_other_port_rejected(self, wizard_at_review, market):
        ws = wizard_at_review([market.a_fuel])
        with pytest.raises(ValidationError):
            wizard_service.set_services(market.owner, ws.id, [market.a_fuel_hamburg.id])

    def test_inactive_service_rejected(self, wizard_at_review, market):
        ws = wizard_at_review([market.a_fuel])
        with pytest.raises(ValidationError) as exc:
            wizard_service.set_services(market.owner, ws.id, [market.a_fuel_inactive.id])
        assert "not active" in exc.value.details[f"services.{market.a_fuel_inactive.id}"]

    @pytest.mark.parametrize("entry", [{"service_id": 1, "quantity": 0}, {"service_id": 1, "quantity": -2}, {"quantity": 1}])
    def test_invalid_service_entries(self, wizard_at_review, market, entry):
        ws = wizard_at_review([market.a_fuel])
        with pytest.raises(ValidationError):
            wizard_service.set_services(market.owner, ws.id, [entry])

    def test_duplicate_services_rejected(self, wizard_at_review, market):
        ws = wizard_at_review([market.a_fuel])
        with pytest.raises(ValidationError):
            wizard_service.set_services(market.owner, ws.id, [market.a_fuel.id, {"service_id": market.a_fuel.id}])

    def test_quantity_is_bounded(self, app, wizard_at_review, market):
        ws = wizard_at_review([market.a_fuel])
        limit = app.config["MAX_SERVICE_QUANTITY"]
        for quantity in (limit + 1, 2**64):
            with pytest.raises(ValidationError) as exc:
                wizard_service.set_services(
                    market.owner, ws.id, [{"service_id": market.a_fuel.id, "quantity": quantity}],
                )
            assert "services[0].quantity" in exc.value.details

        ws = wizard_service.set_services(market.owner, ws.id, [{"service_id": market.a_fuel.id, "quantity": limit}])
        assert ws.service_selections.one().quantity == limit

    def test_out_of_range_ids_are_invalid_input(self, market):
        ws = self._at_categories(market)
        with pytest.raises(ValidationError) as exc:
            wizard_service.set_categories(market.owner, ws.id, [2**64])
        assert "sub_category_ids" in exc.value.details

        wizard_service.set_categories(market.owner, ws.id, [market.fuel.id])
        with pytest.raises(ValidationError) as exc:
            wizard_service.set_services(market.owner, ws.id, [2**64])
        assert "services[0].service_id" in exc.value.details


# ═════════════════════════════════════════════════════════════════════════════
# Ownership
# ═════════════════════════════════════════════════════════════════════════════


class TestOwnership:
    def test_colleague_in_same_org_cannot_modify(self, market):
        ws = wizard_service.start_session(market.owner)
        with pytest.raises(AuthorizationError):
            wizard_service.set_vessel_and_port(market.owner_colleague, ws.id, market.vessel.id, market.rotterdam.id)
        with pytest.raises(AuthorizationError):
            wizard_service.get_session(market.owner_colleague, ws.id)

    def test_other_org_cannot_cancel(self, market):
        ws = wizard_service.start_session(market.owner)
        with pytest.raises(AuthorizationError):
            wizard_service.cancel_session(market.other_owner, ws.id)
        assert db.session.get(WizardSession, ws.id) is not None

    def test_platform_member_can_read_but_not_modify(self, market):
        ws = wizard_service.start_session(market.owner)
        assert wizard_service.get_session(market.platform_viewer, ws.id).id == ws.id
        with pytest.raises(AuthorizationError):
            wizard_service.go_to_step(market.platform_admin, ws.id, "vessel_port")

    def test_cancel_deletes_session_and_selections(self, wizard_at_review, market):
        ws = wizard_at_review([market.a_fuel])
        ws_id = ws.id
        wizard_service.cancel_session(market.owner, ws_id)

        assert db.session.get(WizardSession, ws_id) is None
        assert _count(WizardServiceSelection, wizard_session_id=ws_id) == 0
        assert _count(WizardCategorySelection, wizard_session_id=ws_id) == 0


# ═════════════════════════════════════════════════════════════════════════════
# Expiry
# ═════════════════════════════════════════════════════════════════════════════


class TestExpiry:
    def _expire(self, ws):
        ws.expires_at = utcnow() - timedelta(seconds=1)
        db.session.commit()

    def test_expired_session_reads_as_missing(self, market):
        ws = wizard_service.start_session(market.owner)
        self._expire(ws)

        with pytest.raises(NotFoundError):
            wizard_service.get_session(market.owner, ws.id)
        with pytest.raises(NotFoundError):
            wizard_service.set_vessel_and_port(market.owner, ws.id, market.vessel.id, market.rotterdam.id)
        assert wizard_service.list_active_sessions(market.owner) == []

    def test_purge_removes_only_expired_drafts(self, wizard_at_review, market):
        expired = wizard_at_review([market.a_fuel])
        expired_id = expired.id
        self._expire(expired)
        live = wizard_service.start_session(market.other_owner)

        assert wizard_service.purge_expired_sessions() == 1
        assert db.session.get(WizardSession, expired_id) is None
        assert _count(WizardServiceSelection, wizard_session_id=expired_id) == 0
        assert db.session.get(WizardSession, live.id) is not None

    def test_purge_with_nothing_to_do(self, market):
        wizard_service.start_session(market.owner)
        assert wizard_service.purge_expired_sessions() == 0

    def test_purge_cli_command(self, app, market):
        ws = wizard_service.start_session(market.owner)
        self._expire(ws)

        result = app.test_cli_runner().invoke(args=["purge-expired-sessions"])
        assert result.exit_code == 0
        assert "Purged 1 expired wizard session(s)." in result.output


# ═════════════════════════════════════════════════════════════════════════════
# Navigation and step metadata
# ═════════════════════════════════════════════════════════════════════════════


class TestNavigation:
    def test_go_back_keeps_selections(self, wizard_at_review, market):
        ws = wizard_at_review([market.a_fuel, market.b_provisions])
        ws = wizard_service.go_to_step(market.owner, ws.id, "categories")

        assert ws.current_step == WizardStep.CATEGORIES
        assert _count(WizardServiceSelection, wizard_session_id=ws.id) == 2

        ws = wizard_service.go_to_step(market.owner, ws.id, "review")
        assert ws.current_step == WizardStep.REVIEW

    def test_cannot_jump_past_missing_prerequisite(self, market):
        ws = wizard_service.start_session(market.owner)
        with pytest.raises(ValidationError):
            wizard_service.go_to_step(market.owner, ws.id, "review")
        assert db.session.get(WizardSession, ws.id).current_step == WizardStep.VESSEL_PORT

    def test_unknown_step(self, market):
        ws = wizard_service.start_session(market.owner)
        with pytest.raises(ValidationError):
            wizard_service.go_to_step(market.owner, ws.id, "payment")

    @pytest.mark.parametrize("step, number, label, progress, following", [
        (WizardStep.VESSEL_PORT, 1, "Vessel & Port", 25, WizardStep.CATEGORIES),
        (WizardStep.CATEGORIES, 2, "Categories", 50, WizardStep.SERVICES),
        (WizardStep.SERVICES, 3, "Services", 75, WizardStep.REVIEW),
        (WizardStep.REVIEW, 4, "Review", 100, None),
    ])
    def test_step_metadata(self, step, number, label, progress, following):
        assert step.number == number
        assert step.label == label
        assert step.progress == progress
        assert step.next() == following

    def test_to_dict_exposes_progress(self, wizard_at_review, market):
        data = wizard_at_review([market.a_fuel]).to_dict()
        assert data["current_step"] == "review"
        assert data["progress"] == 100
        assert data["next_step"] is None
        assert data["service_selections"][0]["price_snapshot"] == "100.00"
        assert data["category_selections"][0]["service_sub_category_id"] == market.fuel.id
