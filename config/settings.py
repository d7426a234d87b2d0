"""App settings — loaded from environment."""
from __future__ import annotations

import os
from dotenv import load_dotenv

load_dotenv()


def _csv(name: str, default: str) -> list[str]:
    return [v.strip() for v in os.getenv(name, default).split(",") if v.strip()]


class Settings:
    # API
    API_HOST = os.getenv("API_HOST", "0.0.0.0")
    API_PORT = int(os.getenv("API_PORT", "3000"))
    API_PREFIX = "/v1"

    # Environment ("development" or "production")
    ENVIRONMENT = os.getenv("ENVIRONMENT", "development")

    # Database
    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///aistory.db")

    # Auth
    JWT_SECRET = os.getenv("JWT_SECRET", "aistory-dev-secret-change-in-prod")
    JWT_ACCESS_TTL_SECONDS = int(os.getenv("JWT_ACCESS_TTL_SECONDS", str(15 * 60)))
    JWT_REFRESH_TTL_SECONDS = int(os.getenv("JWT_REFRESH_TTL_SECONDS", str(30 * 24 * 3600)))

    # Email verification codes
    EMAIL_CODE_SECRET = os.getenv("EMAIL_CODE_SECRET", "aistory-dev-code-secret")
    EMAIL_CODE_TTL_SECONDS = int(os.getenv("EMAIL_CODE_TTL_SECONDS", "300"))
    EMAIL_CODE_COOLDOWN_SECONDS = int(os.getenv("EMAIL_CODE_COOLDOWN_SECONDS", "60"))
    EMAIL_CODE_DAILY_LIMIT = int(os.getenv("EMAIL_CODE_DAILY_LIMIT", "10"))
    EMAIL_CODE_MAX_ATTEMPTS = int(os.getenv("EMAIL_CODE_MAX_ATTEMPTS", "5"))

    # SMTP
    SMTP_HOST = os.getenv("SMTP_HOST", "")
    SMTP_PORT = int(os.getenv("SMTP_PORT", "465"))
    SMTP_SECURE = os.getenv("SMTP_SECURE", "true").lower() == "true"
    SMTP_USER = os.getenv("SMTP_USER", "")
    SMTP_PASSWORD = os.getenv("SMTP_PASSWORD", "")
    SMTP_TIMEOUT_SECONDS = float(os.getenv("SMTP_TIMEOUT_SECONDS", "15"))
    MAIL_FROM = os.getenv("MAIL_FROM", "")
    MAIL_SUBJECT = os.getenv("MAIL_SUBJECT", "AIourStory 验证码")

    # CORS origins (comma-separated, or * for dev)
    CORS_ORIGINS = _csv("CORS_ORIGINS", "http://localhost:8081")

    # Rate limits: (requests, window seconds)
    RATE_LIMIT_AUTH_MAX = int(os.getenv("RATE_LIMIT_AUTH_MAX", "20"))
    RATE_LIMIT_AUTH_WINDOW = int(os.getenv("RATE_LIMIT_AUTH_WINDOW", "60"))
    RATE_LIMIT_ADMIN_MAX = int(os.getenv("RATE_LIMIT_ADMIN_MAX", "60"))
    RATE_LIMIT_ADMIN_WINDOW = int(os.getenv("RATE_LIMIT_ADMIN_WINDOW", "60"))
    RATE_LIMIT_DEFAULT_MAX = int(os.getenv("RATE_LIMIT_DEFAULT_MAX", "100"))
    RATE_LIMIT_DEFAULT_WINDOW = int(os.getenv("RATE_LIMIT_DEFAULT_WINDOW", "60"))

    # Housekeeping
    PURGE_INTERVAL_MINUTES = int(os.getenv("PURGE_INTERVAL_MINUTES", "60"))
    SCHEDULER_ENABLED = os.getenv("SCHEDULER_ENABLED", "true").lower() == "true"

    # Observability
    SENTRY_DSN = os.getenv("SENTRY_DSN", "")
    SENTRY_ENVIRONMENT = os.getenv("SENTRY_ENVIRONMENT", "development")
    SENTRY_TRACES_SAMPLE_RATE = float(os.getenv("SENTRY_TRACES_SAMPLE_RATE", "0.1"))

    # Logging
    LOG_FORMAT = os.getenv("LOG_FORMAT", "text")  # "text" or "json"
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")


settings = Settings()
