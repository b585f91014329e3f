"""
Structured logging for entitlement enforcement.

Policy denials are expected, user-facing outcomes and are logged at INFO.
Check failures (storage unreachable etc.) are logged at ERROR with the
traceback.
"""

import logging
from typing import Optional

from equiprofile.entitlements.policy import EntitlementDecision

logger = logging.getLogger(__name__)

SURFACE_GATEWAY = "gateway"
SURFACE_PROCEDURE = "procedure"


def log_entitlement_denied(
    surface: str,
    user_id: str,
    decision: EntitlementDecision,
    path: Optional[str] = None,
    correlation_id: Optional[str] = None,
) -> None:
    """Log an entitlement denial as an informational event."""
    logger.info(
        "Entitlement denied",
        extra={
            "surface": surface,
            "user_id": user_id,
            "code": decision.code.value if decision.code else None,
            "http_status": decision.http_status,
            "path": path,
            "correlation_id": correlation_id,
        }
    )


def log_entitlement_check_failed(
    surface: str,
    user_id: Optional[str],
    error: BaseException,
    path: Optional[str] = None,
    fail_open: bool = False,
) -> None:
    """Log an infrastructure failure during an entitlement check."""
    logger.error(
        "Entitlement check failed - %s",
        "allowing request" if fail_open else "denying request",
        exc_info=error,
        extra={
            "surface": surface,
            "user_id": user_id,
            "error_type": type(error).__name__,
            "path": path,
            "fail_open": fail_open,
        }
    )
