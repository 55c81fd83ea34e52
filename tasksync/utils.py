"""Utility functions for tasksync."""

import random
import string
import sys
from datetime import datetime, timezone
from typing import Optional

# =============================================================================
# Constants
# =============================================================================

# Retry configuration for transient provider errors
DEFAULT_MAX_RETRIES: int = 3
DEFAULT_RETRY_DELAY: float = 1.0  # seconds

# Request timeout for provider calls
DEFAULT_TIMEOUT: float = 30.0  # seconds

# Auto-sync interval used when none is configured
DEFAULT_SYNC_INTERVAL_MINUTES: int = 30

_BASE36 = string.digits + string.ascii_lowercase


# =============================================================================
# Timestamp utilities
# =============================================================================


def utcnow() -> datetime:
    """Return the current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def format_iso_timestamp(value: datetime) -> str:
    """Format a datetime as an ISO-8601 string.

    Naive datetimes are assumed to be UTC.

    Args:
        value: Datetime to format

    Returns:
        ISO-8601 string including the UTC offset
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def parse_iso_timestamp(timestamp_str: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp into a timezone-aware datetime.

    Args:
        timestamp_str: ISO format timestamp string (e.g., "2025-01-15T10:30:00.000Z")

    Returns:
        Aware datetime (UTC if the string carried no offset) or None if
        the value is empty or cannot be parsed
    """
    if not timestamp_str or not isinstance(timestamp_str, str):
        return None

    # The 'Z' suffix indicates UTC time
    if timestamp_str.endswith("Z"):
        timestamp_str = timestamp_str[:-1] + "+00:00"

    try:
        dt = datetime.fromisoformat(timestamp_str)
    except ValueError:
        return None

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


# =============================================================================
# Identifier utilities
# =============================================================================


def random_suffix(length: int = 9) -> str:
    """Generate a random lowercase base36 string."""
    return "".join(random.choice(_BASE36) for _ in range(length))


def generate_time_based_id(now: Optional[datetime] = None) -> str:
    """Generate an id of the form ``{epoch_ms}-{random}``.

    Examples:
        >>> generate_time_based_id(datetime(2024, 1, 1, tzinfo=timezone.utc))[:14]
        '1704067200000-'
    """
    now = now or utcnow()
    return f"{int(now.timestamp() * 1000)}-{random_suffix()}"


def platform_tag() -> str:
    """Return a short tag for the running platform (e.g. ``linux``, ``darwin``)."""
    if sys.platform.startswith("linux"):
        return "linux"
    if sys.platform.startswith("win"):
        return "windows"
    return sys.platform
