"""
Runtime configuration for the Task Dependency service.

Values are read from environment variables once at import time. Invalid or
out-of-range values fall back to their defaults with a logged warning, so a
typo in the environment never prevents the service from starting.
"""

import logging
import os

logger = logging.getLogger(__name__)


def _int_from_env(name: str, default: int, minimum: int, maximum: int) -> int:
    """
    Read an integer setting from the environment.

    Args:
        name: Environment variable name
        default: Value used when the variable is unset or invalid
        minimum: Smallest accepted value (inclusive)
        maximum: Largest accepted value (inclusive)

    Returns:
        The parsed value, or the default
    """
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default

    try:
        value = int(raw)
    except ValueError:
        logger.warning(f"⚠️  Invalid {name} value in environment. Using default of {default}.")
        return default

    if value < minimum or value > maximum:
        logger.warning(
            f"⚠️  {name}={value} is outside safe range ({minimum}-{maximum}). "
            f"Using default of {default}."
        )
        return default

    return value


def _bool_from_env(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


DATABASE_URL = os.environ.get("DATABASE_URL", "sqlite:///./tasks.db")

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
if LOG_LEVEL not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
    logger.warning(f"⚠️  Unsupported LOG_LEVEL={LOG_LEVEL}. Using INFO.")
    LOG_LEVEL = "INFO"

# Hierarchy limits (root task is depth 0)
MAX_HIERARCHY_DEPTH = _int_from_env("MAX_HIERARCHY_DEPTH", 10, 1, 50)
DEFAULT_TREE_DEPTH = _int_from_env("DEFAULT_TREE_DEPTH", 5, 1, 10)
MAX_TREE_DEPTH = _int_from_env("MAX_TREE_DEPTH", 10, 1, 50)

# Upper bound on hops followed by impact analysis and cycle diagnostics
MAX_IMPACT_DEPTH = _int_from_env("MAX_IMPACT_DEPTH", 50, 1, 1000)

# Limit batch size for bulk dependency operations
MAX_BULK_OPERATIONS = _int_from_env("MAX_BULK_OPERATIONS", 500, 1, 5000)

CORS_ORIGINS = [
    origin.strip()
    for origin in os.environ.get(
        "CORS_ORIGINS",
        "http://localhost:3000,http://127.0.0.1:3000",
    ).split(",")
    if origin.strip()
]

# Create tables on startup (development only, migrations handle this in production)
AUTO_CREATE_TABLES = _bool_from_env("AUTO_CREATE_TABLES", True)
