"""
Centralized constants for the service.
Avoids magic strings and repeated numeric limits.

Usage:
    from shared.config.constants import Roles, Limits

    if requested_by in Roles.ALL:
        ...

    party_size = clamp(party_size, 1, Limits.MAX_PARTY_SIZE)
"""

from typing import Final


# =============================================================================
# Staff Roles
# =============================================================================


class Roles:
    """Role tags observers declare when they connect or request a reset."""

    FOH: Final[str] = "FOH"  # Floor staff
    BOH: Final[str] = "BOH"  # Kitchen staff

    ALL: Final[frozenset[str]] = frozenset({FOH, BOH})


# =============================================================================
# Limits
# =============================================================================


class Limits:
    """Range limits applied by clamping, never by rejection."""

    COURSE_COUNT: Final[int] = 6
    DRINK_COUNT: Final[int] = 2
    MAX_SEATS: Final[int] = 6
    MAX_PARTY_SIZE: Final[int] = 6
    MAX_TABLE_CAPACITY: Final[int] = 6


# =============================================================================
# Defaults
# =============================================================================


DEFAULT_GUEST_NAME: Final[str] = "Guest"
DEFAULT_SESSION_ID: Final[str] = "live"


def clamp(value: int, low: int, high: int) -> int:
    """Clamp value into [low, high]."""
    return max(low, min(value, high))
