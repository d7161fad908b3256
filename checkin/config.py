"""
Check-in Platform
Configuration classes for the Flask app factory.

Select one with ``APP_ENV`` (development | testing | production):

    app.config.from_object(config[os.getenv("APP_ENV", "development")])

Every tunable below reads an environment variable of the same name.
"""

import os
import secrets

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))

_SQLITE_DEV = f"sqlite:///{os.path.join(basedir, 'instance', 'checkin_dev.db')}"
_SQLITE_TEST = "sqlite:///:memory:"


def _database_url(fallback: str | None) -> str | None:
    """DATABASE_URL with the Heroku-style ``postgres://`` scheme normalised."""
    raw = os.getenv("DATABASE_URL", "")
    if not raw:
        return fallback
    return raw.replace("postgres://", "postgresql://", 1)


def _csv(value: str) -> list[str]:
    return [v.strip().lower() for v in value.split(",") if v.strip()]


class Config:
    """Settings shared by every environment."""

    SECRET_KEY = os.getenv("SECRET_KEY") or secrets.token_hex(32)
    DEBUG = False
    TESTING = False

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {"pool_pre_ping": True, "pool_recycle": 300}

    # Rate-limit storage; in-memory when unset
    REDIS_URL = os.getenv("REDIS_URL", "")
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")

    # ── Collaborators ────────────────────────────────────────────────────
    LLM_DEFAULT_CHAT_MODEL = os.getenv("LLM_DEFAULT_CHAT_MODEL", "gpt-4o-mini")
    PII_SERVICE_URL = os.getenv("PII_SERVICE_URL", "")
    PII_SERVICE_TIMEOUT = float(os.getenv("PII_SERVICE_TIMEOUT", "10"))

    # ── Conversation and insight rules ───────────────────────────────────
    SHORT_ANSWER_MIN_CHARS = int(os.getenv("SHORT_ANSWER_MIN_CHARS", "40"))
    INSIGHT_QUORUM = int(os.getenv("INSIGHT_QUORUM", "4"))
    # Members (by e-mail) who may start conversations outside active months
    ACTIVE_MONTH_BYPASS_EMAILS = _csv(os.getenv("ACTIVE_MONTH_BYPASS_EMAILS", ""))

    # ── Keyed upsert retries ─────────────────────────────────────────────
    RESULT_UPSERT_MAX_ATTEMPTS = int(os.getenv("RESULT_UPSERT_MAX_ATTEMPTS", "3"))
    RESULT_UPSERT_BACKOFF_SECONDS = float(os.getenv("RESULT_UPSERT_BACKOFF_SECONDS", "1.0"))


class DevelopmentConfig(Config):
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = _database_url(_SQLITE_DEV)


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", _SQLITE_TEST)
    SQLALCHEMY_ENGINE_OPTIONS = {}
    RATELIMIT_ENABLED = False
    PII_SERVICE_URL = ""
    ACTIVE_MONTH_BYPASS_EMAILS = []
    RESULT_UPSERT_BACKOFF_SECONDS = 0.0


class ProductionConfig(Config):
    """Instantiated (not just referenced) so missing secrets fail at boot."""

    SQLALCHEMY_DATABASE_URI = _database_url(None)
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_recycle": 300,
        "pool_timeout": 20,
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
