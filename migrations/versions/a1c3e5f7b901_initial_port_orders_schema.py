"""initial_port_orders_schema

Creates the order wizard and order decomposition tables:
  - organizations, users, organization_members     — acting context
  - ports, vessels, service_categories,
    service_sub_categories, services               — catalog reference data
  - wizard_sessions, wizard_category_selections,
    wizard_service_selections                      — resumable drafts
  - orders, order_groups, order_group_services     — decomposed orders

Tables are created conditionally (IF NOT EXISTS semantics) so the revision
can be stamped onto a development database built with db.create_all().

Revision ID: a1c3e5f7b901
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = 'a1c3e5f7b901'
down_revision = None
branch_labels = None
depends_on = None


def _status(name, values, default=None, **kwargs):
    """VARCHAR status column with a CHECK over its closed value set."""
    quoted = ",".join(f"'{v}'" for v in values)
    return (
        sa.Column(name, sa.String(length=40), nullable=False,
                  server_default=default, **kwargs),
        sa.CheckConstraint(f"{name} IN ({quoted})"),
    )


_CATALOG = ("active", "inactive")
_GROUP = ("pending", "accepted", "rejected", "in_progress", "completed")
_ORDER = ("draft", "pending_agency_confirmation", "confirmed", "partially_accepted", "rejected")


def upgrade():
    bind = op.get_bind()
    existing = set(sa_inspect(bind).get_table_names())

    # ── Acting context ────────────────────────────────────────────────────
    if "organizations" not in existing:
        op.create_table(
            "organizations",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("slug", sa.String(length=100), nullable=False),
            *_status("business_type", ("vessel_owner", "shipping_agency", "platform_admin")),
            sa.Column("is_active", sa.Boolean(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("slug"),
        )

    if "users" not in existing:
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("email", sa.String(length=200), nullable=False),
            sa.Column("full_name", sa.String(length=200), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("email"),
        )

    if "organization_members" not in existing:
        op.create_table(
            "organization_members",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("organization_id", sa.Integer(), nullable=False),
            sa.Column("user_id", sa.Integer(), nullable=False),
            *_status("role", ("admin", "ceo", "manager", "operations", "finance", "viewer"), "viewer"),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("organization_id", "user_id", name="uq_org_member"),
        )
        op.create_index("ix_org_members_user_id", "organization_members", ["user_id"])

    # ── Catalog ───────────────────────────────────────────────────────────
    if "ports" not in existing:
        op.create_table(
            "ports",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("code", sa.String(length=10), nullable=False, comment="UN/LOCODE, e.g. NLRTM"),
            sa.Column("country", sa.String(length=100), nullable=True),
            sa.Column("city", sa.String(length=100), nullable=True),
            sa.Column("timezone", sa.String(length=64), nullable=True),
            *_status("status", _CATALOG, "active"),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("code"),
        )

    if "vessels" not in existing:
        op.create_table(
            "vessels",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("organization_id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("imo_number", sa.String(length=20), nullable=True),
            sa.Column("vessel_type", sa.String(length=50), nullable=True),
            *_status("status", _CATALOG, "active"),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("imo_number"),
        )
        op.create_index("ix_vessels_organization_id", "vessels", ["organization_id"])

    if "service_categories" not in existing:
        op.create_table(
            "service_categories",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("sort_order", sa.Integer(), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )

    if "service_sub_categories" not in existing:
        op.create_table(
            "service_sub_categories",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("service_category_id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("sort_order", sa.Integer(), nullable=True),
            sa.ForeignKeyConstraint(["service_category_id"], ["service_categories.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_service_sub_categories_service_category_id",
                        "service_sub_categories", ["service_category_id"])

    if "services" not in existing:
        op.create_table(
            "services",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("organization_id", sa.Integer(), nullable=False),
            sa.Column("port_id", sa.Integer(), nullable=False),
            sa.Column("service_sub_category_id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("price", sa.Numeric(12, 2), nullable=False),
            *_status("status", _CATALOG, "active"),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.CheckConstraint("price >= 0", name="ck_service_price_non_negative"),
            sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["port_id"], ["ports.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["service_sub_category_id"], ["service_sub_categories.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_services_organization_id", "services", ["organization_id"])
        op.create_index("ix_services_port_id", "services", ["port_id"])
        op.create_index("ix_services_service_sub_category_id", "services", ["service_sub_category_id"])

    # ── Wizard ────────────────────────────────────────────────────────────
    if "wizard_sessions" not in existing:
        op.create_table(
            "wizard_sessions",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("user_id", sa.Integer(), nullable=False),
            sa.Column("organization_id", sa.Integer(), nullable=False),
            sa.Column("session_name", sa.String(length=200), nullable=False),
            *_status("current_step", ("vessel_port", "categories", "services", "review"), "vessel_port"),
            *_status("status", ("draft", "completed"), "draft"),
            sa.Column("vessel_id", sa.Integer(), nullable=True),
            sa.Column("port_id", sa.Integer(), nullable=True),
            sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["vessel_id"], ["vessels.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["port_id"], ["ports.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_wizard_sessions_owner", "wizard_sessions",
                        ["user_id", "organization_id", "status"])
        op.create_index("ix_wizard_sessions_expires_at", "wizard_sessions", ["expires_at"])
        op.create_index(
            "uq_wizard_sessions_one_draft", "wizard_sessions", ["user_id", "organization_id"],
            unique=True,
            sqlite_where=sa.text("status = 'draft'"),
            postgresql_where=sa.text("status = 'draft'"),
        )

    if "wizard_category_selections" not in existing:
        op.create_table(
            "wizard_category_selections",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("wizard_session_id", sa.Integer(), nullable=False),
            sa.Column("service_category_id", sa.Integer(), nullable=False),
            sa.Column("service_sub_category_id", sa.Integer(), nullable=False),
            sa.Column("order_index", sa.Integer(), nullable=False),
            sa.ForeignKeyConstraint(["wizard_session_id"], ["wizard_sessions.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["service_category_id"], ["service_categories.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["service_sub_category_id"], ["service_sub_categories.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("wizard_session_id", "service_sub_category_id",
                                name="uq_wizard_category_selection"),
        )
        op.create_index("ix_wizard_category_selections_wizard_session_id",
                        "wizard_category_selections", ["wizard_session_id"])

    if "wizard_service_selections" not in existing:
        op.create_table(
            "wizard_service_selections",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("wizard_session_id", sa.Integer(), nullable=False),
            sa.Column("service_id", sa.Integer(), nullable=False),
            sa.Column("service_category_id", sa.Integer(), nullable=False),
            sa.Column("service_sub_category_id", sa.Integer(), nullable=False),
            sa.Column("organization_id", sa.Integer(), nullable=False),
            sa.Column("service_name", sa.String(length=200), nullable=False),
            sa.Column("price_snapshot", sa.Numeric(12, 2), nullable=False),
            sa.Column("quantity", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.CheckConstraint("quantity > 0", name="ck_wizard_service_quantity_positive"),
            sa.ForeignKeyConstraint(["wizard_session_id"], ["wizard_sessions.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["service_id"], ["services.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("wizard_session_id", "service_id", name="uq_wizard_service_selection"),
        )
        op.create_index("ix_wizard_service_selections_wizard_session_id",
                        "wizard_service_selections", ["wizard_session_id"])

    # ── Orders ────────────────────────────────────────────────────────────
    if "orders" not in existing:
        op.create_table(
            "orders",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("order_number", sa.String(length=40), nullable=False),
            sa.Column("wizard_session_id", sa.Integer(), nullable=True),
            sa.Column("vessel_id", sa.Integer(), nullable=False),
            sa.Column("port_id", sa.Integer(), nullable=False),
            sa.Column("placed_by_user_id", sa.Integer(), nullable=False),
            sa.Column("placed_by_organization_id", sa.Integer(), nullable=False),
            sa.Column("notes", sa.Text(), nullable=True),
            *_status("status", _ORDER, "pending_agency_confirmation"),
            sa.Column("total_amount", sa.Numeric(12, 2), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["wizard_session_id"], ["wizard_sessions.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["vessel_id"], ["vessels.id"]),
            sa.ForeignKeyConstraint(["port_id"], ["ports.id"]),
            sa.ForeignKeyConstraint(["placed_by_user_id"], ["users.id"]),
            sa.ForeignKeyConstraint(["placed_by_organization_id"], ["organizations.id"]),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("order_number"),
            sa.UniqueConstraint("wizard_session_id"),
        )
        op.create_index("ix_orders_vessel_id", "orders", ["vessel_id"])
        op.create_index("ix_orders_port_id", "orders", ["port_id"])
        op.create_index("ix_orders_placed_by_organization_id", "orders", ["placed_by_organization_id"])

    if "order_groups" not in existing:
        op.create_table(
            "order_groups",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("order_id", sa.Integer(), nullable=False),
            sa.Column("group_number", sa.String(length=50), nullable=False),
            sa.Column("fulfilling_organization_id", sa.Integer(), nullable=False),
            *_status("status", _GROUP, "pending"),
            sa.Column("subtotal_amount", sa.Numeric(12, 2), nullable=False),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("response_notes", sa.Text(), nullable=True),
            sa.Column("rejection_reason", sa.String(length=500), nullable=True),
            sa.Column("accepted_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("accepted_by_user_id", sa.Integer(), nullable=True),
            sa.Column("rejected_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("rejected_by_user_id", sa.Integer(), nullable=True),
            sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["order_id"], ["orders.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["fulfilling_organization_id"], ["organizations.id"]),
            sa.ForeignKeyConstraint(["accepted_by_user_id"], ["users.id"]),
            sa.ForeignKeyConstraint(["rejected_by_user_id"], ["users.id"]),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("group_number"),
            sa.UniqueConstraint("order_id", "fulfilling_organization_id", name="uq_order_group_org"),
        )
        op.create_index("ix_order_groups_order_id", "order_groups", ["order_id"])
        op.create_index("ix_order_groups_fulfilling_organization_id",
                        "order_groups", ["fulfilling_organization_id"])

    if "order_group_services" not in existing:
        op.create_table(
            "order_group_services",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("order_group_id", sa.Integer(), nullable=False),
            sa.Column("service_id", sa.Integer(), nullable=False),
            sa.Column("service_name", sa.String(length=200), nullable=False),
            sa.Column("quantity", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("unit_price", sa.Numeric(12, 2), nullable=False),
            sa.Column("total_price", sa.Numeric(12, 2), nullable=False),
            *_status("status", _GROUP, "pending"),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.CheckConstraint("quantity > 0", name="ck_order_group_service_quantity_positive"),
            sa.ForeignKeyConstraint(["order_group_id"], ["order_groups.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["service_id"], ["services.id"]),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("order_group_id", "service_id", name="uq_order_group_service"),
        )
        op.create_index("ix_order_group_services_order_group_id",
                        "order_group_services", ["order_group_id"])


def downgrade():
    op.drop_table("order_group_services")
    op.drop_table("order_groups")
    op.drop_table("orders")
    op.drop_table("wizard_service_selections")
    op.drop_table("wizard_category_selections")
    op.drop_table("wizard_sessions")
    op.drop_table("services")
    op.drop_table("service_sub_categories")
    op.drop_table("service_categories")
    op.drop_table("vessels")
    op.drop_table("ports")
    op.drop_table("organization_members")
    op.drop_table("users")
    op.drop_table("organizations")
