"""
Environment validation for the ingestion pipeline.

Checks that the configured providers have what they need before the
application (or a Celery worker) starts accepting syncs. Collaborators
that are built from these settings assume they were validated here.
"""

import logging
from typing import List, Tuple

from app.core.config import Settings, settings

logger = logging.getLogger(__name__)


class EnvironmentValidationError(Exception):
    """Raised when environment validation fails."""
    pass


def _is_placeholder(value: str) -> bool:
    lowered = value.lower()
    return "your-" in lowered or "change" in lowered or "example" in lowered


def validate_database_url(config: Settings = settings) -> List[str]:
    """
    Validate database URL configuration.

    Returns:
        List of validation errors (empty if valid)
    """
    errors = []

    if not config.DATABASE_URL:
        errors.append("DATABASE_URL is not set")
        return errors

    # Check for async driver
    if not config.DATABASE_URL.startswith("postgresql+asyncpg://"):
        errors.append(
            "DATABASE_URL must use asyncpg driver (format: postgresql+asyncpg://...)"
        )

    return errors


def validate_redis_url(config: Settings = settings) -> List[str]:
    """Validate Redis URL configuration."""
    errors = []

    if not config.REDIS_URL:
        errors.append("REDIS_URL is not set")
        return errors

    if not config.REDIS_URL.startswith(("redis://", "rediss://")):
        errors.append(
            "REDIS_URL must start with redis:// (format: redis://host:port/db)"
        )

    return errors


def validate_pipeline_providers(config: Settings = settings) -> List[str]:
    """
    Validate the providers the sync pipeline talks to.

    Missing optional providers only degrade extraction (logged as warnings);
    a missing embedding provider makes every sync fail, so it is an error.

    Returns:
        List of validation errors (empty if valid)
    """
    errors = []
    warnings = []

    if config.EMBEDDING_PROVIDER == "openai":
        if not config.OPENAI_API_KEY:
            errors.append(
                "OPENAI_API_KEY is not set - required when EMBEDDING_PROVIDER=openai"
            )
        elif _is_placeholder(config.OPENAI_API_KEY):
            errors.append(
                "OPENAI_API_KEY appears to be a placeholder - update with real API key"
            )

    if config.EMBEDDING_DIMENSION <= 0:
        errors.append("EMBEDDING_DIMENSION must be positive")

    if config.MIN_CONTENT_LENGTH >= config.MAX_CONTENT_LENGTH:
        errors.append("MIN_CONTENT_LENGTH must be smaller than MAX_CONTENT_LENGTH")

    if config.ARENA_PAGE_SIZE < 1 or config.ARENA_DETAIL_BATCH_SIZE < 1:
        errors.append("ARENA_PAGE_SIZE and ARENA_DETAIL_BATCH_SIZE must be at least 1")

    if not config.ARENA_API_KEY:
        warnings.append("ARENA_API_KEY not set - private channels cannot be synced")

    if not config.JINA_API_KEY:
        warnings.append("JINA_API_KEY not set - document extraction runs unauthenticated")

    if not config.YOUTUBE_API_KEY:
        warnings.append(
            "YOUTUBE_API_KEY not set - video metadata falls back to page scraping"
        )

    if not config.ANTHROPIC_API_KEY:
        warnings.append(
            "ANTHROPIC_API_KEY not set - images are stored without visual analysis"
        )

    for warning in warnings:
        logger.warning(f"Environment validation warning: {warning}")

    return errors


def validate_environment(config: Settings = settings) -> Tuple[bool, List[str]]:
    """
    Validate all environment variables.

    Returns:
        (is_valid, errors)
    """
    errors: List[str] = []
    errors.extend(validate_database_url(config))
    errors.extend(validate_redis_url(config))
    errors.extend(validate_pipeline_providers(config))

    if config.is_production and config.DEBUG:
        errors.append("DEBUG must be false in production")

    return (not errors, errors)


def validate_environment_or_raise(config: Settings = settings) -> None:
    """
    Validate configuration and raise on the first problem set.

    Raises:
        EnvironmentValidationError: If any validation fails
    """
    is_valid, errors = validate_environment(config)
    if not is_valid:
        for error in errors:
            logger.error(f"Environment validation error: {error}")
        raise EnvironmentValidationError(
            "Environment validation failed:\n" + "\n".join(f"- {e}" for e in errors)
        )
    logger.info("Environment validation passed")
