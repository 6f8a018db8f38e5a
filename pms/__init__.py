"""
Project Management System
Flask Application Factory.

Usage:
    from pms import create_app
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

# ── SQLite FK enforcement (global engine event) ─────────────────────────
from sqlalchemy import engine as _sa_engine
from sqlalchemy import event as _sa_event

from pms.config import config
from pms.middleware.jwt_auth import init_jwt_middleware
from pms.middleware.logging_config import configure_logging
from pms.middleware.rate_limiter import init_rate_limits
from pms.middleware.timing import init_request_timing
from pms.models import db

logger = logging.getLogger(__name__)


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
    default_limits=[],                     # limits are applied per blueprint
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
    app.config.from_object(config[config_name])

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

    # ── Request timing middleware ────────────────────────────────────────
    init_request_timing(app)

    # ── JWT auth middleware (sets g.jwt_user_id) ─────────────────────────
    init_jwt_middleware(app)

    # ── Import all models so Alembic can detect them ─────────────────────
    from pms.models import approval as _approval_models   # noqa: F401
    from pms.models import audit as _audit_models         # noqa: F401
    from pms.models import auth as _auth_models           # noqa: F401
    from pms.models import lookup as _lookup_models       # noqa: F401
    from pms.models import project as _project_models     # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS) ────────────────────────
    with app.app_context():
        try:
            db.create_all()
            app.logger.info("db.create_all() completed successfully")
        except Exception as e:
            app.logger.warning("db.create_all() failed: %s", e)

    # ── Blueprints ───────────────────────────────────────────────────────
    from pms.blueprints.approval_bp import approval_bp
    from pms.blueprints.health_bp import health_bp
    from pms.blueprints.project_bp import project_bp
    from pms.blueprints.stage_bp import stage_bp

    app.register_blueprint(approval_bp)
    app.register_blueprint(project_bp)
    app.register_blueprint(stage_bp)
    app.register_blueprint(health_bp)

    _register_cli(app)
    _register_http_errors(app)

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    return app


def _register_cli(app):
    """``flask seed-stages`` / ``flask seed-workflow``; both idempotent."""
    from pms.services.seed_service import seed_default_workflow, seed_stages, seed_statuses

    @app.cli.command("seed-stages")
    def seed_stages_cmd():
        """Seed the canonical project stages and default statuses."""
        created_stages = seed_stages()
        created_statuses = seed_statuses()
        db.session.commit()
        logger.info("Seeded %s new stages and %s new statuses", created_stages, created_statuses)

    @app.cli.command("seed-workflow")
    def seed_workflow_cmd():
        """Seed the default sequential approval workflow and its roles."""
        workflow = seed_default_workflow()
        db.session.commit()
        logger.info("Seeded approval workflow %r with %s steps", workflow.name, len(workflow.steps))


def _register_http_errors(app):
    """App-level fallbacks for requests no blueprint handler answered."""
    from flask import request

    from pms.utils.errors import E, api_error

    @app.errorhandler(404)
    def not_found(e):
        return api_error(E.NOT_FOUND, "Not found", details={"path": request.path})

    @app.errorhandler(405)
    def method_not_allowed(e):
        return api_error(E.VALIDATION_INVALID, "Method not allowed", status=405)

    @app.errorhandler(429)
    def rate_limited(e):
        return api_error(E.RATE_LIMITED, "Too many requests", details={"retry_after": e.description})

    @app.errorhandler(500)
    def server_error(e):
        logger.error("Unhandled server error: %s", e, exc_info=True)
        return api_error(E.INTERNAL, "Internal server error")
