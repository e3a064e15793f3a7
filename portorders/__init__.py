"""
Port Orders
Flask Application Factory.

Usage:
    from portorders import create_app
    app = create_app()           # defaults to APP_ENV or "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

import click
from flask import Flask, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate

from portorders.config import config
from portorders.middleware.actor_context import init_actor_context
from portorders.middleware.logging_config import configure_logging
from portorders.middleware.rate_limiter import init_rate_limits
from portorders.middleware.timing import init_request_timing
from portorders.models import db
from portorders.utils.errors import E, api_error

logger = logging.getLogger(__name__)

# ── SQLite FK enforcement (global engine event) ─────────────────────────
from sqlalchemy import event as _sa_event, engine as _sa_engine


@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """Enable foreign key enforcement for SQLite connections."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


migrate = Migrate()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],                     # no global limit; applied per blueprint
    storage_uri=os.getenv("REDIS_URL", "memory://"),  # Redis in production, memory for dev
)


def create_app(config_name=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: Configuration environment name.
                     One of: "development", "testing", "production".
                     Defaults to APP_ENV env var, or "development" if unset.

    Returns:
        Configured Flask application instance.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config[config_name]())

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Request timing + actor context (before the limiter reads g.actor) ─
    init_request_timing(app)
    init_actor_context(app)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)
    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()])
    else:
        CORS(app)

    # ── Import all models so Alembic can detect them ─────────────────────
    from portorders.models import organization as _organization_models  # noqa: F401
    from portorders.models import catalog as _catalog_models            # noqa: F401
    from portorders.models import wizard as _wizard_models              # noqa: F401
    from portorders.models import order as _order_models                # noqa: F401

    # ── Auto-create tables in development (migrations own production) ────
    if app.config.get("DEBUG"):
        os.makedirs(app.instance_path, exist_ok=True)
        with app.app_context():
            try:
                db.create_all()
                app.logger.info("db.create_all() completed successfully")
            except Exception as e:
                app.logger.warning("db.create_all() failed: %s", e)

    # ── Blueprints ───────────────────────────────────────────────────────
    from portorders.blueprints.order_bp import order_bp
    from portorders.blueprints.wizard_bp import wizard_bp

    app.register_blueprint(wizard_bp)
    app.register_blueprint(order_bp)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("purge-expired-sessions")
    def purge_expired_sessions_cmd():
        """Delete wizard sessions whose expiry has passed."""
        from portorders.services.wizard_service import purge_expired_sessions
        count = purge_expired_sessions()
        click.echo(f"Purged {count} expired wizard session(s).")

    @app.cli.command("recompute-order-status")
    @click.argument("order_id", type=int)
    def recompute_order_status_cmd(order_id):
        """Re-aggregate one order's status from its order groups."""
        from portorders.services.order_status_service import recompute_order_status
        status = recompute_order_status(order_id)
        click.echo(f"Order {order_id}: {status.value}")

    # ── Health check ─────────────────────────────────────────────────────
    @app.route("/api/v1/health")
    def health():
        return {"status": "ok", "app": "Port Orders"}

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        return api_error(E.NOT_FOUND, "Not found", details={"path": request.path})

    @app.errorhandler(405)
    def method_not_allowed(e):
        return api_error(E.VALIDATION_INVALID, "Method not allowed", status=405)

    @app.errorhandler(429)
    def rate_limited(e):
        return api_error(E.VALIDATION_INVALID, "Too many requests", status=429,
                         details={"retry_after": e.description})

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return api_error(E.INTERNAL, "Internal server error")

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    return app
