"""
DAS — Distribution Automation System
Flask Application Factory.

Usage:
    from das import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

from flask import Flask
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import engine as _sa_engine
from sqlalchemy import event as _sa_event

from das.config import config
from das.datastore import DataStore, RetryPolicy
from das.middleware.jwt_auth import init_jwt_middleware
from das.middleware.logging_config import configure_logging
from das.middleware.rate_limiter import init_rate_limits
from das.middleware.timing import init_request_timing
from das.models import db
from das.utils.errors import register_error_handlers

logger = logging.getLogger(__name__)


# ── SQLite FK enforcement (global engine event) ─────────────────────────
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
    default_limits=[],                     # no global limit; applied per route
    storage_uri=os.getenv("REDIS_URL", "memory://"),
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
    os.makedirs(app.instance_path, exist_ok=True)

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)
    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()])
    else:
        CORS(app)

    datastore = DataStore(db, RetryPolicy.from_config(app.config))
    datastore.init_app(app)

    # ── Request timing middleware ────────────────────────────────────────
    init_request_timing(app)

    # ── JWT auth middleware ──────────────────────────────────────────────
    init_jwt_middleware(app)

    # ── Import all models so Alembic can detect them ─────────────────────
    from das.models import action as _action_models      # noqa: F401
    from das.models import approval as _approval_models  # noqa: F401
    from das.models import audit as _audit_models        # noqa: F401
    from das.models import auth as _auth_models          # noqa: F401
    from das.models import site as _site_models          # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS) ────────────────────────
    with app.app_context():
        if app.config.get("DATASTORE_WAIT_ON_STARTUP") and not datastore.wait_until_ready():
            app.logger.warning("Datastore not reachable; starting without schema check")
        else:
            db.create_all()
            app.logger.info("db.create_all() completed successfully")

    # ── Blueprints ───────────────────────────────────────────────────────
    from das.blueprints.action_bp import action_bp
    from das.blueprints.approval_bp import approval_bp
    from das.blueprints.equipment_sites_bp import equipment_sites_bp
    from das.blueprints.health_bp import health_bp
    from das.blueprints.rtu_tracker_bp import rtu_tracker_approvals_bp, rtu_tracker_sites_bp

    app.register_blueprint(action_bp)
    app.register_blueprint(approval_bp)
    app.register_blueprint(equipment_sites_bp)
    app.register_blueprint(rtu_tracker_sites_bp)
    app.register_blueprint(rtu_tracker_approvals_bp)
    app.register_blueprint(health_bp)

    # ── Rate limits (after blueprints so views exist) ────────────────────
    init_rate_limits(app, limiter)

    # ── Error handlers ───────────────────────────────────────────────────
    register_error_handlers(app)

    logger.info("DAS app created (config=%s)", config_name)
    return app
