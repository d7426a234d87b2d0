"""Startup validation — catch misconfigurations before the app serves traffic."""
from __future__ import annotations

import logging
import sys

from config.settings import settings

logger = logging.getLogger(__name__)

_DEFAULT_SECRETS = {
    "JWT_SECRET": "aistory-dev-secret-change-in-prod",
    "EMAIL_CODE_SECRET": "aistory-dev-code-secret",
}


def validate_settings() -> list[str]:
    """Validate configuration. Returns list of warnings (empty = all good).

    Raises SystemExit for critical misconfigurations in production.
    """
    warnings: list[str] = []
    is_prod = settings.ENVIRONMENT == "production" or "sqlite" not in settings.DATABASE_URL

    for name, default in _DEFAULT_SECRETS.items():
        if is_prod and getattr(settings, name) == default:
            logger.critical("%s is still the default! Set a real secret for production.", name)
            sys.exit(1)

    if is_prod and "*" in settings.CORS_ORIGINS:
        warnings.append("CORS_ORIGINS is set to *, restrict it in production")

    if not (settings.SMTP_HOST and settings.SMTP_USER and settings.SMTP_PASSWORD):
        warnings.append("SMTP is not configured, verification emails will fail with 502")

    if settings.JWT_ACCESS_TTL_SECONDS >= settings.JWT_REFRESH_TTL_SECONDS:
        warnings.append("JWT_ACCESS_TTL_SECONDS should be much shorter than JWT_REFRESH_TTL_SECONDS")

    for w in warnings:
        logger.warning("⚠️  %s", w)

    if not warnings:
        logger.info("✅ All startup checks passed")

    return warnings
