"""
Entitlement error hierarchy.

Provides:
- EntitlementError: base for all entitlement failures
- EntitlementDeniedError: policy denial raised by the procedure guard
- EntitlementEvaluationError: the check could not run (fail-closed)
- AdminSessionRequiredError: admin-only procedure without a live unlock

All are AppError subclasses so they render in the standard error
envelope. Denials carry the same policy `code` (and extras such as
trialEndedAt) in `details` that the gateway puts in its response body.
"""

from typing import Dict

from fastapi import status

from equiprofile.entitlements.policy import DenialCode, EntitlementDecision
from equiprofile.platform.errors import AppError

ADMIN_SESSION_EXPIRED_MSG = "Admin session expired. Please unlock admin mode in AI Chat."

# Procedure-layer category for each policy denial
DENIAL_CATEGORIES: Dict[DenialCode, str] = {
    DenialCode.TRIAL_EXPIRED: "PAYMENT_REQUIRED",
    DenialCode.SUBSCRIPTION_EXPIRED: "PAYMENT_REQUIRED",
    DenialCode.SUBSCRIPTION_ENDED: "PAYMENT_REQUIRED",
    DenialCode.ACCOUNT_SUSPENDED: "FORBIDDEN",
    DenialCode.UNKNOWN_STATUS: "FORBIDDEN",
}

_CATEGORY_STATUS = {
    "PAYMENT_REQUIRED": status.HTTP_402_PAYMENT_REQUIRED,
    "FORBIDDEN": status.HTTP_403_FORBIDDEN,
}


class EntitlementError(AppError):
    """Base exception for entitlement-related failures."""


class EntitlementDeniedError(EntitlementError):
    """Raised when the evaluator denies access to a procedure."""

    def __init__(self, decision: EntitlementDecision):
        if decision.is_entitled or decision.code is None:
            raise ValueError("EntitlementDeniedError requires a denied decision")

        self.decision = decision
        category = DENIAL_CATEGORIES.get(decision.code, "FORBIDDEN")

        super().__init__(
            code=category,
            message=decision.message or "",
            status_code=_CATEGORY_STATUS[category],
            details={"code": decision.code.value, **decision.extra},
        )


class EntitlementEvaluationError(EntitlementError):
    """
    Raised when entitlement evaluation fails (fail-closed).

    Carries a machine-readable error code for the UI to display.
    """

    def __init__(self, user_id: str, detail: str = "Unable to verify account status"):
        self.user_id = user_id
        self.detail = detail
        super().__init__(
            code="ENTITLEMENT_EVAL_FAILED",
            message=detail,
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        )


class AdminSessionRequiredError(EntitlementError):
    """Raised when an admin-only procedure is called without a valid unlock."""

    def __init__(self, message: str = ADMIN_SESSION_EXPIRED_MSG):
        super().__init__(
            code="FORBIDDEN",
            message=message,
            status_code=status.HTTP_403_FORBIDDEN,
            details={"code": "ADMIN_SESSION_REQUIRED"},
        )
