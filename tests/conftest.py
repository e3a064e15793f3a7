"""
Shared pytest fixtures for the Port Orders test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - market: a small marketplace (owner, two agencies, platform operator,
      two ports, catalog) built directly through the ORM
    - headers(): X-User-Id / X-Organization-Id headers for an Actor
    - wizard_at_review(): drive a wizard session to the review step
"""

from decimal import Decimal
from types import SimpleNamespace

import pytest

from portorders import create_app
from portorders.models import db as _db
from portorders.models.catalog import (
    CatalogStatus,
    Port,
    Service,
    ServiceCategory,
    ServiceSubCategory,
    Vessel,
)
from portorders.models.organization import (
    BusinessType,
    MemberRole,
    Organization,
    OrganizationMember,
    User,
)
from portorders.services import wizard_service
from portorders.services.access import Actor


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ═════════════════════════════════════════════════════════════════════════════
# ORM Helper Factories (DB-level, bypass the API)
# ═════════════════════════════════════════════════════════════════════════════


def make_org(slug: str, business_type: BusinessType, **kw) -> Organization:
    org = Organization(name=slug.replace("-", " ").title(), slug=slug, business_type=business_type, **kw)
    _db.session.add(org)
    _db.session.flush()
    return org


def make_user(email: str) -> User:
    user = User(email=email, full_name=email.split("@")[0])
    _db.session.add(user)
    _db.session.flush()
    return user


def add_member(org: Organization, user: User, role: MemberRole = MemberRole.ADMIN) -> Actor:
    """Attach ``user`` to ``org`` and return the Actor for that pair."""
    _db.session.add(OrganizationMember(organization_id=org.id, user_id=user.id, role=role))
    _db.session.flush()
    return Actor(user_id=user.id, organization_id=org.id)


def make_service(agency, port, sub, name, price, status=CatalogStatus.ACTIVE) -> Service:
    svc = Service(
        organization_id=agency.id,
        port_id=port.id,
        service_sub_category_id=sub.id,
        name=name,
        price=Decimal(price),
        status=status,
    )
    _db.session.add(svc)
    _db.session.flush()
    return svc


@pytest.fixture()
def market():
    """
    A committed marketplace:

        owner_org (vessel_owner)     owner, owner_viewer, second owner user
        agency_a / agency_b          admins + a non-admin operations user
        platform (platform_admin)    operator admin + operator viewer
        rotterdam / hamburg          active ports; closed_port inactive
        Marine Services              Fuel, Provisions;  Technical: Repairs

        rotterdam:  A Fuel 100.00, A Provisions 50.00, B Provisions 75.00,
                    B Repairs 300.00, A Fuel (inactive) 10.00
        hamburg:    A Fuel 90.00
    """
    owner_org = make_org("north-sea-shipping", BusinessType.VESSEL_OWNER)
    other_owner_org = make_org("baltic-lines", BusinessType.VESSEL_OWNER)
    agency_a = make_org("harbour-agency-a", BusinessType.SHIPPING_AGENCY)
    agency_b = make_org("harbour-agency-b", BusinessType.SHIPPING_AGENCY)
    platform = make_org("platform-ops", BusinessType.PLATFORM_ADMIN)

    owner = add_member(owner_org, make_user("captain@northsea.test"))
    owner_colleague = add_member(owner_org, make_user("purser@northsea.test"), MemberRole.OPERATIONS)
    other_owner = add_member(other_owner_org, make_user("ops@baltic.test"))
    agency_a_admin = add_member(agency_a, make_user("admin@agency-a.test"))
    agency_a_ops = add_member(agency_a, make_user("ops@agency-a.test"), MemberRole.OPERATIONS)
    agency_b_admin = add_member(agency_b, make_user("admin@agency-b.test"))
    platform_admin = add_member(platform, make_user("root@platform.test"))
    platform_viewer = add_member(platform, make_user("support@platform.test"), MemberRole.VIEWER)

    vessel = Vessel(organization_id=owner_org.id, name="MV Northern Star", imo_number="9321483")
    foreign_vessel = Vessel(organization_id=other_owner_org.id, name="MV Baltic Dawn", imo_number="9412257")
    rotterdam = Port(name="Rotterdam", code="NLRTM", country="Netherlands")
    hamburg = Port(name="Hamburg", code="DEHAM", country="Germany")
    closed_port = Port(name="Closed Harbour", code="XXCLS", status=CatalogStatus.INACTIVE)
    _db.session.add_all([vessel, foreign_vessel, rotterdam, hamburg, closed_port])

    marine = ServiceCategory(name="Marine Services", sort_order=1)
    technical = ServiceCategory(name="Technical", sort_order=2)
    _db.session.add_all([marine, technical])
    _db.session.flush()
    fuel = ServiceSubCategory(service_category_id=marine.id, name="Fuel", sort_order=1)
    provisions = ServiceSubCategory(service_category_id=marine.id, name="Provisions", sort_order=2)
    repairs = ServiceSubCategory(service_category_id=technical.id, name="Repairs", sort_order=1)
    _db.session.add_all([fuel, provisions, repairs])
    _db.session.flush()

    m = SimpleNamespace(
        owner_org=owner_org, other_owner_org=other_owner_org,
        agency_a=agency_a, agency_b=agency_b, platform=platform,
        owner=owner, owner_colleague=owner_colleague, other_owner=other_owner,
        agency_a_admin=agency_a_admin, agency_a_ops=agency_a_ops,
        agency_b_admin=agency_b_admin,
        platform_admin=platform_admin, platform_viewer=platform_viewer,
        vessel=vessel, foreign_vessel=foreign_vessel,
        rotterdam=rotterdam, hamburg=hamburg, closed_port=closed_port,
        marine=marine, technical=technical,
        fuel=fuel, provisions=provisions, repairs=repairs,
    )
    m.a_fuel = make_service(agency_a, rotterdam, fuel, "Bunkering MGO", "100.00")
    m.a_provisions = make_service(agency_a, rotterdam, provisions, "Fresh provisions", "50.00")
    m.b_provisions = make_service(agency_b, rotterdam, provisions, "Dry stores", "75.00")
    m.b_repairs = make_service(agency_b, rotterdam, repairs, "Hull inspection", "300.00")
    m.a_fuel_inactive = make_service(
        agency_a, rotterdam, fuel, "Bunkering HFO", "10.00", status=CatalogStatus.INACTIVE,
    )
    m.a_fuel_hamburg = make_service(agency_a, hamburg, fuel, "Bunkering MGO (HH)", "90.00")
    _db.session.commit()
    return m


@pytest.fixture()
def headers():
    """Build actor headers: ``headers(actor)``."""

    def _headers(actor: Actor) -> dict:
        return {
            "X-User-Id": str(actor.user_id),
            "X-Organization-Id": str(actor.organization_id),
        }

    return _headers


@pytest.fixture()
def wizard_at_review(market):
    """Drive a session for ``market.owner`` to review with the given services.

    Usage:
        session = wizard_at_review([market.a_fuel, (market.b_provisions, 2)])
    """

    def _build(services, sub_categories=None, port=None):
        actor = market.owner
        port = port or market.rotterdam
        entries = []
        subs = []
        for item in services:
            svc, qty = item if isinstance(item, tuple) else (item, 1)
            entries.append({"service_id": svc.id, "quantity": qty})
            if svc.service_sub_category_id not in subs:
                subs.append(svc.service_sub_category_id)
        ws = wizard_service.start_session(actor)
        wizard_service.set_vessel_and_port(actor, ws.id, market.vessel.id, port.id)
        wizard_service.set_categories(actor, ws.id, sub_categories or subs)
        return wizard_service.set_services(actor, ws.id, entries)

    return _build
