"""
QA Hub — configuration classes for the Flask app factory.

Usage:
    config_name = os.getenv("APP_ENV", "development")
    app.config.from_object(config[config_name])
"""

import os
import secrets

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))

# Default SQLite path for local dev when PostgreSQL is not running
_SQLITE_DEV = f"sqlite:///{os.path.join(basedir, 'instance', 'qahub_dev.db')}"
_SQLITE_TEST = "sqlite:///:memory:"

# Random key for development; production MUST use a stable env var
_DEV_SECRET = secrets.token_hex(32)


def _normalise_db_url(raw):
    # Heroku-style URLs use postgres:// but SQLAlchemy 2.0 requires postgresql://
    return raw.replace("postgres://", "postgresql://", 1) if raw else raw


class Config:
    """Base configuration shared across all environments."""

    SECRET_KEY = os.getenv("SECRET_KEY", _DEV_SECRET)
    DEBUG = False
    TESTING = False

    # SQLAlchemy
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_recycle": 300,
    }

    # CORS
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")

    # Auth tokens
    JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY")
    JWT_ACCESS_EXPIRES = int(os.getenv("JWT_ACCESS_EXPIRES", "3600"))
    ACCESS_TOKEN_COOKIE_NAME = "access_token"
    AUTH_COOKIE_SECURE = os.getenv("AUTH_COOKIE_SECURE", "true").lower() == "true"

    # Tenant verification guard
    TENANT_COOKIE_NAME = "TenantId"
    TENANT_CLAIM_NAME = "TenantId"
    TENANT_GUARD_EXEMPT_PATHS = ("/api/auth/login",)

    # Audit recorder
    AUDIT_ENABLED = os.getenv("AUDIT_ENABLED", "true").lower() == "true"
    AUDITED_ENTITY_TYPES = frozenset({
        "Tenant", "Address", "User", "Role", "Permission", "Project",
        "TestSuite", "TestFolder", "TestCase", "TestRun", "TestRunResult",
        "Defect", "Requirement", "RequirementTestCase", "RequirementTestSuite",
    })

    # Internal errors echo the raw exception message only when enabled.
    EXPOSE_INTERNAL_ERRORS = os.getenv("EXPOSE_INTERNAL_ERRORS", "false").lower() == "true"

    # Logging: LOG_FORMAT is "json" or "text"
    LOG_LEVEL = "INFO"
    LOG_FORMAT = os.getenv("LOG_FORMAT", "json")
    ALERT_LOG_FILE = os.getenv("ALERT_LOG_FILE")
    SLOW_REQUEST_MS = int(os.getenv("SLOW_REQUEST_MS", "1000"))

    EMAIL_CONFIRMATION_TTL_HOURS = int(os.getenv("EMAIL_CONFIRMATION_TTL_HOURS", "24"))
    BCRYPT_LOG_ROUNDS = 12

    MAX_CONTENT_LENGTH = 2 * 1024 * 1024  # 2 MB


class DevelopmentConfig(Config):
    """Development environment configuration."""

    DEBUG = True
    SQLALCHEMY_DATABASE_URI = _normalise_db_url(os.getenv("DATABASE_URL", "")) or _SQLITE_DEV
    AUTH_COOKIE_SECURE = False
    EXPOSE_INTERNAL_ERRORS = os.getenv("EXPOSE_INTERNAL_ERRORS", "true").lower() == "true"
    LOG_LEVEL = "DEBUG"
    LOG_FORMAT = os.getenv("LOG_FORMAT", "text")


class TestingConfig(Config):
    """Testing environment configuration."""

    TESTING = True
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", _SQLITE_TEST)
    # In-memory SQLite runs on a StaticPool which rejects pool sizing options
    SQLALCHEMY_ENGINE_OPTIONS = {}
    JWT_SECRET_KEY = "test-jwt-secret-key-with-32-bytes!!"
    AUTH_COOKIE_SECURE = False
    EXPOSE_INTERNAL_ERRORS = False
    BCRYPT_LOG_ROUNDS = 4
    LOG_LEVEL = "DEBUG"
    LOG_FORMAT = "text"
    ALERT_LOG_FILE = None


class ProductionConfig(Config):
    """Production environment configuration."""

    DEBUG = False
    SQLALCHEMY_DATABASE_URI = _normalise_db_url(os.getenv("DATABASE_URL", "")) or None
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")  # Must be set explicitly in production

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
