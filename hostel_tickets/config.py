"""
Hostel Ticketing Platform
Environment-specific settings for the app factory.

    create_app("testing")            # explicit
    APP_ENV=production flask run     # from the environment
"""

import os
import secrets

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))


def _env_bool(name: str, default: bool) -> bool:
    return os.getenv(name, str(default)).strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def _database_url(fallback: str | None) -> str | None:
    """DATABASE_URL with the legacy ``postgres://`` scheme rewritten for SQLAlchemy 2."""
    url = os.getenv("DATABASE_URL", "")
    if not url:
        return fallback
    return url.replace("postgres://", "postgresql://", 1)


class Config:
    """Settings shared by every environment."""

    # Sessions are unused (identity comes from X-User-Id); Flask still wants a key.
    SECRET_KEY = os.getenv("SECRET_KEY") or secrets.token_hex(32)
    DEBUG = False
    TESTING = False

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {"pool_pre_ping": True, "pool_recycle": 300}

    # Mapping cache and Flask-Limiter storage
    REDIS_URL = os.getenv("REDIS_URL", "memory://")
    RATELIMIT_ENABLED = _env_bool("RATELIMIT_ENABLED", True)
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")

    # ── Assignment ───────────────────────────────────────────────────────
    # Ceiling for staff whose vertical has none of its own.
    DEFAULT_MAX_ACTIVE_TICKETS = _env_int("DEFAULT_MAX_ACTIVE_TICKETS", 5)
    # Seconds a mapping snapshot may be served from cache; 0 disables.
    MAPPING_CACHE_TTL = _env_int("MAPPING_CACHE_TTL", 60)

    # ── Escalation ladder ────────────────────────────────────────────────
    SCHEDULER_ENABLED = _env_bool("SCHEDULER_ENABLED", True)
    ESCALATION_SCAN_INTERVAL_MIN = _env_int("ESCALATION_SCAN_INTERVAL_MIN", 30)
    # Levels 4-5 lift LOW/MEDIUM tickets to HIGH.
    ESCALATION_RAISE_PRIORITY_AT_CRITICAL = _env_bool("ESCALATION_RAISE_PRIORITY_AT_CRITICAL", True)


class DevelopmentConfig(Config):
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = _database_url(
        f"sqlite:///{os.path.join(basedir, 'instance', 'hostel_tickets_dev.db')}"
    )


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", "sqlite:///:memory:")
    SQLALCHEMY_ENGINE_OPTIONS = {}
    RATELIMIT_ENABLED = False
    SCHEDULER_ENABLED = False
    MAPPING_CACHE_TTL = 0


class ProductionConfig(Config):
    SQLALCHEMY_DATABASE_URI = _database_url(None)
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_recycle": 300,
        "pool_timeout": 20,
        # escalation scans must not hold locks for long
        "connect_args": {"options": "-c statement_timeout=30000"},
    }

    def __init__(self):
        if not self.SQLALCHEMY_DATABASE_URI:
            raise RuntimeError("DATABASE_URL environment variable is required in production")
        if not os.getenv("SECRET_KEY"):
            raise RuntimeError("SECRET_KEY environment variable must be set in production")


config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}
