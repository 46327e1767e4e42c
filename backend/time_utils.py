"""
Time utilities for the Task Dependency service.

This module provides a single source of truth for time operations,
ensuring consistency across stores and services.
"""

from datetime import datetime, timezone


def utc_now() -> datetime:
    """
    Get current UTC time.
    Single source of truth for "now" throughout the application.

    Returns:
        timezone-aware datetime in UTC
    """
    return datetime.now(timezone.utc)
