"""
Configuration module: Settings, logging, constants.
"""

from shared.config.settings import settings, get_settings
from shared.config.logging import get_logger, setup_logging
from shared.config.constants import (
    Roles,
    Limits,
    DEFAULT_GUEST_NAME,
    DEFAULT_SESSION_ID,
    clamp,
)

__all__ = [
    # settings
    "settings",
    "get_settings",
    # logging
    "get_logger",
    "setup_logging",
    # constants
    "Roles",
    "Limits",
    "DEFAULT_GUEST_NAME",
    "DEFAULT_SESSION_ID",
    "clamp",
]
