"""Configuration module for the access backend."""

from equiprofile.config.settings import (
    Settings,
    ConfigurationError,
    DEFAULT_ADMIN_UNLOCK_PASSWORD,
    get_settings,
    reset_settings,
    validate_settings,
)
from equiprofile.config.pricing import PRICING_PLANS, get_public_plans

__all__ = [
    "Settings",
    "ConfigurationError",
    "DEFAULT_ADMIN_UNLOCK_PASSWORD",
    "get_settings",
    "reset_settings",
    "validate_settings",
    "PRICING_PLANS",
    "get_public_plans",
]
