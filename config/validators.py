"""
Configuration Validation for the Engagement Pipeline

This module contains configuration validation logic.
Extracted from settings.py for better separation of concerns.
"""

import logging

from utils.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


def validate_settings(require_database: bool = True):
    """
    Validate that all required settings are properly configured.

    Args:
        require_database: Set to False when running against the in-memory store.

    Raises:
        ConfigurationError: If required settings are missing or invalid.
    """
    # Import settings here to avoid circular imports
    from config import settings

    errors = []

    # Required environment variables
    required_vars = [
        ("GOOGLE_AI_API_KEY", settings.GOOGLE_AI_API_KEY),
        ("AT_PROTOCOL_USERNAME", settings.AT_PROTOCOL_USERNAME),
        ("AT_PROTOCOL_PASSWORD", settings.AT_PROTOCOL_PASSWORD),
    ]
    if require_database:
        required_vars += [
            ("DB_SERVER", settings.DB_SERVER),
            ("DB_NAME", settings.DB_NAME),
            ("DB_USER", settings.DB_USER),
            ("DB_PASSWORD", settings.DB_PASSWORD),
        ]

    for var_name, var_value in required_vars:
        if not var_value:
            errors.append(f"Missing required environment variable: {var_name}")

    if require_database and not settings.DB_CONNECTION_STRING:
        errors.append("Database connection string could not be built. "
                      "Check DB_SERVER, DB_NAME, DB_USER, DB_PASSWORD.")

    if not settings.KNOWLEDGE_ENABLED:
        logger.warning("KNOWLEDGE_ENABLED is false; replies will be drafted without knowledge snippets.")

    # Validate numeric settings are within reasonable bounds
    numeric_validations = [
        ("OPPORTUNITY_SCORE_THRESHOLD", settings.OPPORTUNITY_SCORE_THRESHOLD, 0, 100),
        ("OPPORTUNITY_TTL_HOURS", settings.OPPORTUNITY_TTL_HOURS, 1, 168),
        ("DEFAULT_LOOKBACK_HOURS", settings.DEFAULT_LOOKBACK_HOURS, 1, 168),
        ("REPLIES_FETCH_LIMIT", settings.REPLIES_FETCH_LIMIT, 1, 1000),
        ("SEARCH_FETCH_LIMIT", settings.SEARCH_FETCH_LIMIT, 1, 100),
        ("GENERATION_MAX_ATTEMPTS", settings.GENERATION_MAX_ATTEMPTS, 1, 10),
        ("KNOWLEDGE_MAX_CHUNKS", settings.KNOWLEDGE_MAX_CHUNKS, 0, 20),
        ("BLUESKY_MAX_POST_LENGTH", settings.BLUESKY_MAX_POST_LENGTH, 50, 3000),
        ("RECENCY_WEIGHT", settings.RECENCY_WEIGHT, 0.0, 1.0),
        ("IMPACT_WEIGHT", settings.IMPACT_WEIGHT, 0.0, 1.0),
        ("CHROMA_PORT", settings.CHROMA_PORT, 1, 65535),
    ]

    for name, value, min_val, max_val in numeric_validations:
        if value < min_val or value > max_val:
            errors.append(f"{name} must be between {min_val} and {max_val}, got {value}")

    # Validate score weights sum correctly
    total_weight = settings.RECENCY_WEIGHT + settings.IMPACT_WEIGHT
    if abs(total_weight - 1.0) > 1e-9:
        errors.append(f"Score weights sum to {total_weight}, must be 1.0")

    # Validate timeout and interval values are positive
    positive_settings = [
        ("KNOWLEDGE_TIMEOUT", settings.KNOWLEDGE_TIMEOUT),
        ("GENERATION_BASE_DELAY_SECONDS", settings.GENERATION_BASE_DELAY_SECONDS),
        ("RECENCY_DECAY_MINUTES", settings.RECENCY_DECAY_MINUTES),
        ("EXPIRATION_SWEEP_MINUTES", settings.EXPIRATION_SWEEP_MINUTES),
    ]

    for name, value in positive_settings:
        if value <= 0:
            errors.append(f"{name} must be positive, got {value}")

    # Raise all errors at once
    if errors:
        error_msg = "Configuration validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
        raise ConfigurationError(error_msg)

    return True


def get_config_summary() -> dict:
    """
    Returns a summary of current configuration (without sensitive values).
    Useful for logging startup state.
    """
    # Import settings here to avoid circular imports
    from config import settings

    return {
        "platforms": {
            "bluesky": {
                "configured": bool(settings.AT_PROTOCOL_USERNAME and settings.AT_PROTOCOL_PASSWORD),
                "max_post_length": settings.BLUESKY_MAX_POST_LENGTH,
            },
        },
        "database": {
            "server": settings.DB_SERVER[:20] + "..." if settings.DB_SERVER and len(settings.DB_SERVER) > 20 else settings.DB_SERVER,
            "database": settings.DB_NAME,
        },
        "knowledge_base": {
            "enabled": settings.KNOWLEDGE_ENABLED,
            "host": f"{settings.CHROMA_HOST}:{settings.CHROMA_PORT}",
            "collection": settings.CHROMA_COLLECTION,
        },
        "discovery_settings": {
            "score_threshold": settings.OPPORTUNITY_SCORE_THRESHOLD,
            "ttl_hours": settings.OPPORTUNITY_TTL_HOURS,
            "lookback_hours": settings.DEFAULT_LOOKBACK_HOURS,
            "weights": f"{int(settings.RECENCY_WEIGHT * 100)}/{int(round(settings.IMPACT_WEIGHT * 100))}",
        },
        "generation_settings": {
            "max_attempts": settings.GENERATION_MAX_ATTEMPTS,
            "base_delay_seconds": settings.GENERATION_BASE_DELAY_SECONDS,
            "knowledge_chunks": settings.KNOWLEDGE_MAX_CHUNKS,
        }
    }
