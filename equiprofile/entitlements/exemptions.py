"""
Routes excluded from the gateway entitlement check.

The table is a closed enum so adding an exemption is a reviewed change to
this file. Matching is a literal string prefix, not path-segment aware:
"/api/billing" also covers "/api/billingX". is_exempt_path() is the only
place that matching happens.
"""

from enum import Enum
from typing import Tuple


class ExemptRoute(str, Enum):
    """Path prefixes that bypass the gateway entitlement check."""
    AUTH = "/api/auth"
    BILLING = "/api/billing"
    HEALTH = "/api/health"
    BUILD = "/api/build"
    BILLING_PROCEDURES = "/trpc/billing."
    PROFILE_PROCEDURE = "/trpc/user.getProfile"


EXEMPT_PATH_PREFIXES: Tuple[str, ...] = tuple(route.value for route in ExemptRoute)


def is_exempt_path(path: str) -> bool:
    """True if path starts with any exempt prefix."""
    return any(path.startswith(prefix) for prefix in EXEMPT_PATH_PREFIXES)
