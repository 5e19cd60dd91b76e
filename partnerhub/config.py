"""
Partner Hub
Configuration classes for Flask App Factory.

Usage:
    config_name = os.getenv("APP_ENV", "development")
    app.config.from_object(config[config_name])

Engine-facing settings (token validity, tick lease, review policy, ...) are
read from ``app.config`` once into frozen dataclasses and passed explicitly
to the services that need them.
"""

import os
import secrets
from dataclasses import dataclass

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))

# Default SQLite path for local dev when PostgreSQL is not running
_SQLITE_DEV = f"sqlite:///{os.path.join(basedir, 'instance', 'partnerhub_dev.db')}"
_SQLITE_TEST = "sqlite:///:memory:"

# Generate a random key for development; production MUST use a stable env var
_DEV_SECRET = secrets.token_hex(32)


def _env_bool(name, default):
    return os.getenv(name, str(default)).lower() in ("1", "true", "yes")


class Config:
    """Base configuration shared across all environments."""

    SECRET_KEY = os.getenv("SECRET_KEY", _DEV_SECRET)
    DEBUG = False
    TESTING = False

    # SQLAlchemy
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_recycle": 300,   # recycle connections every 5 min
        "pool_timeout": 20,    # wait max 20s for a connection from pool
    }

    # CORS
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")

    # Rate limiting (public report endpoints)
    RATELIMIT_STORAGE_URI = os.getenv("RATELIMIT_STORAGE_URI", "memory://")
    PUBLIC_REPORT_RATE_LIMIT = os.getenv("PUBLIC_REPORT_RATE_LIMIT", "30 per minute")

    # Public frontend that hosts the partner report form
    FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000")

    # Progress report tokens
    REPORT_TOKEN_VALIDITY_HOURS = int(os.getenv("REPORT_TOKEN_VALIDITY_HOURS", "24"))
    REPORT_REVIEW_REVISABLE = _env_bool("REPORT_REVIEW_REVISABLE", False)

    # Escalation engine
    PROGRESS_BELOW_REARM = _env_bool("PROGRESS_BELOW_REARM", True)
    # Per-send bound; must stay below the tick lease
    ESCALATION_DISPATCH_TIMEOUT_SECONDS = float(os.getenv("ESCALATION_DISPATCH_TIMEOUT_SECONDS", "30"))
    ESCALATION_TICK_LEASE_SECONDS = int(os.getenv("ESCALATION_TICK_LEASE_SECONDS", "600"))

    # Email / SMTP (optional; without MAIL_SERVER emails are only logged)
    MAIL_SERVER = os.getenv("MAIL_SERVER")
    MAIL_PORT = int(os.getenv("MAIL_PORT", "587"))
    MAIL_USE_TLS = os.getenv("MAIL_USE_TLS", "true").lower() == "true"
    MAIL_USERNAME = os.getenv("MAIL_USERNAME")
    MAIL_PASSWORD = os.getenv("MAIL_PASSWORD")
    MAIL_DEFAULT_SENDER = os.getenv("MAIL_DEFAULT_SENDER", "noreply@partnerhub.local")


class DevelopmentConfig(Config):
    """Development environment configuration."""

    DEBUG = True
    _raw_db_url = os.getenv("DATABASE_URL", "")
    SQLALCHEMY_DATABASE_URI = (
        _raw_db_url.replace("postgres://", "postgresql://", 1) if _raw_db_url else _SQLITE_DEV
    )


class TestingConfig(Config):
    """Testing environment configuration."""

    TESTING = True
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", _SQLITE_TEST)
    # In-memory SQLite runs on a StaticPool, which takes no pool sizing options
    SQLALCHEMY_ENGINE_OPTIONS = {}
    RATELIMIT_ENABLED = False
    FRONTEND_URL = "http://partners.test"
    MAIL_SERVER = None


class ProductionConfig(Config):
    """Production environment configuration."""

    DEBUG = False
    # Railway/Heroku use postgres:// but SQLAlchemy 2.0 requires postgresql://
    _raw_db_url = os.getenv("DATABASE_URL", "")
    SQLALCHEMY_DATABASE_URI = _raw_db_url.replace("postgres://", "postgresql://", 1) if _raw_db_url else None
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")  # Must be set explicitly in production

    # Override engine options with PostgreSQL statement timeout
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_recycle": 300,
        "pool_timeout": 20,
        "connect_args": {
            "options": "-c statement_timeout=30000",  # 30s query timeout
        },
    }

    def __init__(self):
        if not self.SQLALCHEMY_DATABASE_URI:
            raise RuntimeError("DATABASE_URL environment variable is required in production")
        if not os.getenv("SECRET_KEY"):
            raise RuntimeError("SECRET_KEY environment variable must be set in production")


# Configuration mapping: environment name -> config class
config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}


# ═══════════════════════════════════════════════════════════════════════════
#  Engine settings
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class ReportTokenSettings:
    """Settings for the report token lifecycle."""

    validity_hours: int = 24
    frontend_url: str = "http://localhost:3000"
    review_revisable: bool = False

    @classmethod
    def from_app(cls, app) -> "ReportTokenSettings":
        return cls(
            validity_hours=int(app.config.get("REPORT_TOKEN_VALIDITY_HOURS", 24)),
            frontend_url=app.config.get("FRONTEND_URL", cls.frontend_url).rstrip("/"),
            review_revisable=bool(app.config.get("REPORT_REVIEW_REVISABLE", False)),
        )


@dataclass(frozen=True)
class EscalationSettings:
    """Settings for the escalation scheduler.

    ``dispatch_timeout_seconds`` bounds every transport call and must be
    shorter than ``tick_lease_seconds``, since the next tick treats a pending
    log row older than the lease as abandoned. A send that times out keeps
    running on its worker thread and may still deliver after its row has
    been marked failed.
    """

    progress_below_rearm: bool = True
    dispatch_timeout_seconds: float = 30.0
    tick_lease_seconds: int = 600

    def __post_init__(self):
        if not 0 < self.dispatch_timeout_seconds < self.tick_lease_seconds:
            raise ValueError("dispatch_timeout_seconds must be positive and below tick_lease_seconds")

    @classmethod
    def from_app(cls, app) -> "EscalationSettings":
        return cls(
            progress_below_rearm=bool(app.config.get("PROGRESS_BELOW_REARM", True)),
            dispatch_timeout_seconds=float(app.config.get("ESCALATION_DISPATCH_TIMEOUT_SECONDS", 30.0)),
            tick_lease_seconds=int(app.config.get("ESCALATION_TICK_LEASE_SECONDS", 600)),
        )
