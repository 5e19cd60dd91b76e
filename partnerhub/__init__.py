"""
Partner Hub
Flask Application Factory.

Usage:
    from partnerhub import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import json
import logging
import os

import click
from flask import Flask
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import event as _sa_event, engine as _sa_engine
from sqlalchemy.exc import SQLAlchemyError

from partnerhub.config import config
from partnerhub.models import db
from partnerhub.middleware.logging_config import configure_logging
from partnerhub.middleware.rate_limiter import init_rate_limits
from partnerhub.middleware.timing import init_request_timing

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
    default_limits=[],                     # no global limit; applied per blueprint
)


def create_app(config_name=None, overrides=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: Configuration environment name.
                     One of: "development", "testing", "production".
                     Defaults to APP_ENV env var, or "development" if unset.
        overrides: Optional mapping applied on top of the config class.

    Returns:
        Configured Flask application instance.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    config_cls = config[config_name]
    app.config.from_object(config_cls() if config_name == "production" else config_cls)
    if overrides:
        app.config.update(overrides)

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

    init_request_timing(app)

    # ── Import all models so Alembic can detect them ─────────────────────
    from partnerhub.models import auth as _auth_models                    # noqa: F401
    from partnerhub.models import project as _project_models              # noqa: F401
    from partnerhub.models import escalation as _escalation_models        # noqa: F401
    from partnerhub.models import progress_report as _report_models       # noqa: F401
    from partnerhub.models import notification as _notification_models   # noqa: F401
    from partnerhub.models import scheduling as _scheduling_models        # noqa: F401

    # ── Auto-create tables outside production (migrations own prod) ──────
    if config_name != "production":
        if config_name == "development":
            os.makedirs(app.instance_path, exist_ok=True)
        with app.app_context():
            try:
                db.create_all()
            except SQLAlchemyError as e:
                app.logger.warning("db.create_all() failed: %s", e)

    # ── Notification transport ───────────────────────────────────────────
    from partnerhub.services.notification import PlatformTransport
    app.extensions["notification_transport"] = PlatformTransport()

    # ── Blueprints ───────────────────────────────────────────────────────
    from partnerhub.blueprints import ALL_BLUEPRINTS
    for bp in ALL_BLUEPRINTS:
        app.register_blueprint(bp)

    @app.route("/api/v1/health")
    def health():
        try:
            db.session.execute(db.text("SELECT 1"))
            database = "ok"
        except SQLAlchemyError as exc:
            logger.warning("Health check database query failed: %s", exc)
            database = "error"
        status = 200 if database == "ok" else 503
        return {"status": "ok" if status == 200 else "degraded", "database": database,
                "app": "Partner Hub"}, status

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        from flask import request
        return {"error": "Not found", "path": request.path}, 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(429)
    def rate_limited(e):
        return {"error": "Too many requests", "retry_after": e.description}, 429

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    # ── Scheduler initialization (import jobs to register them) ──────────
    import importlib
    importlib.import_module("partnerhub.services.scheduled_jobs")  # registers @register_job handlers
    from partnerhub.services.scheduler_service import SchedulerService
    SchedulerService.init_app(app)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("seed-escalation-rules")
    def seed_escalation_rules_cmd():
        """Install the default escalation rules (no-op if any rule exists)."""
        from partnerhub.services.escalation_rule_service import EscalationRuleService
        created = EscalationRuleService.seed_default_rules()
        click.echo(f"Seeded {len(created)} escalation rules.")

    @app.cli.command("run-escalation-tick")
    def run_escalation_tick_cmd():
        """Run one escalation tick (for cron)."""
        result = SchedulerService.run_job("escalation_check")
        click.echo(json.dumps(result, indent=2, default=str))
        if result["status"] != "success":
            raise SystemExit(1)

    @app.cli.command("cleanup-report-tokens")
    def cleanup_report_tokens_cmd():
        """Delete expired or deactivated unsubmitted progress report links."""
        result = SchedulerService.run_job("expired_report_cleanup")
        click.echo(json.dumps(result, indent=2, default=str))
        if result["status"] != "success":
            raise SystemExit(1)

    @app.cli.command("register-jobs")
    def register_jobs_cmd():
        """Create ScheduledJob rows for every registered job."""
        created = SchedulerService.ensure_jobs_registered()
        click.echo(f"Registered {len(created)} new scheduled jobs.")

    return app
