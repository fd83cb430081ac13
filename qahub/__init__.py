"""
QA Hub — multi-tenant test management API.
Flask Application Factory.

Usage:
    from qahub import create_app
    app = create_app()           # defaults to APP_ENV or "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

import click
from flask import Flask
from flask_cors import CORS
from flask_migrate import Migrate
from sqlalchemy import engine as _sa_engine
from sqlalchemy import event as _sa_event
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import HTTPException

from qahub.config import config
from qahub.core.exceptions import AppError, InternalServerError
from qahub.middleware.guards import init_guard_chain
from qahub.middleware.logging_config import configure_logging
from qahub.middleware.timing import init_request_timing
from qahub.models import db
from qahub.models._session_hooks import acting_as, clear_request_context, register_session_hooks
from qahub.models.soft_delete import register_soft_delete_filter
from qahub.utils.errors import api_error

logger = logging.getLogger(__name__)

migrate = Migrate()


# ── SQLite FK enforcement (global engine event) ─────────────────────────
@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """Enable foreign key enforcement for SQLite connections."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


_HTTP_CODES = {
    400: "BadRequest",
    404: "NotFound",
    405: "MethodNotAllowed",
    413: "PayloadTooLarge",
    415: "UnsupportedMediaType",
}


def _register_error_handlers(app):

    @app.errorhandler(AppError)
    def _app_error(exc):
        db.session.rollback()
        if exc.status >= 500:
            logger.error("%s: %s", exc.code, exc.message)
        return api_error(exc.code, exc.message, status=exc.status, details=exc.details or None)

    @app.errorhandler(HTTPException)
    def _http_error(exc):
        code = _HTTP_CODES.get(exc.code, (exc.name or "Error").replace(" ", ""))
        return api_error(code, exc.description or exc.name, status=exc.code or 500)

    @app.errorhandler(Exception)
    def _unexpected(exc):
        db.session.rollback()
        logger.exception("Unhandled exception: %s", exc)
        message = InternalServerError.default_message
        if app.config.get("EXPOSE_INTERNAL_ERRORS"):
            message = str(exc) or message
        return api_error(InternalServerError.code, message, status=InternalServerError.status)


def _register_cli(app):

    @app.cli.command("register-tenant")
    @click.option("--id", "tenant_id", required=True, help="Tenant code, e.g. ACME")
    @click.option("--name", required=True)
    @click.option("--admin-email", required=True)
    @click.option("--admin-password", required=True, prompt=True, hide_input=True)
    def register_tenant_command(tenant_id, name, admin_email, admin_password):
        """Create a tenant with its first admin user."""
        from qahub.services.tenant_service import register_tenant

        with acting_as(db.session, tenant_id, None):
            tenant, user, confirmation = register_tenant({
                "id": tenant_id,
                "name": name,
                "email": admin_email,
                "admin": {"email": admin_email, "password": admin_password},
            })
            db.session.commit()
        click.echo(f"Tenant {tenant.id} created; admin {user.email} ({user.id})")
        click.echo(f"Email confirmation token: {confirmation.token}")

    @app.cli.command("seed-permissions")
    @click.option("--tenant", "tenant_id", required=True)
    def seed_permissions_command(tenant_id):
        """(Re)seed the permission catalog and default role grants."""
        from qahub.services import role_service
        from qahub.services.tenant_service import get_tenant

        with acting_as(db.session, tenant_id, None):
            get_tenant(tenant_id)
            catalog = role_service.seed_permission_catalog(tenant_id)
            added = role_service.apply_default_grants(tenant_id)
            db.session.commit()
        click.echo(f"{len(catalog)} permissions in catalog; {added} grants added")


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
    # Instantiated so ProductionConfig can refuse to start without its env vars
    app.config.from_object(config[config_name]())

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)
    migrate.init_app(app, db)

    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()],
             supports_credentials=True)
    else:
        CORS(app)

    # ── Session-wide rules: soft-delete filter, stamps, tenant ownership ─
    register_soft_delete_filter()
    register_session_hooks()

    # ── Guard chain: request_id → authenticate → verify_tenant ──────────
    init_guard_chain(app)
    init_request_timing(app)

    @app.teardown_request
    def _clear_session_context(exc):
        clear_request_context(db.session)

    _register_error_handlers(app)

    # ── Import all models so create_all / Alembic see them ──────────────
    from qahub.models import audit as _audit_models             # noqa: F401
    from qahub.models import auth as _auth_models               # noqa: F401
    from qahub.models import project as _project_models         # noqa: F401
    from qahub.models import requirement as _requirement_models  # noqa: F401
    from qahub.models import testing as _testing_models         # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS) ───────────────────────
    if app.config["SQLALCHEMY_DATABASE_URI"].startswith("sqlite:///") and not app.testing:
        os.makedirs(app.instance_path, exist_ok=True)
    with app.app_context():
        try:
            db.create_all()
        except SQLAlchemyError as e:
            app.logger.warning("db.create_all() failed: %s", e)

    # ── Blueprints ───────────────────────────────────────────────────────
    from qahub.blueprints import register_blueprints
    register_blueprints(app)

    _register_cli(app)

    logger.debug("App created with config %s", config_name)
    return app
