"""
Account entitlement enforcement.

This module provides:
- AccountSnapshot / AccountSnapshotReader: read-only account view
- evaluate / EntitlementDecision: the pure decision function
- ExemptRoute / is_exempt_path: gateway exemption table
- TrialLockMiddleware: gateway enforcement for every HTTP request
- AdminSessionStore: short-lived admin unlock grants
- Error types raised by the procedure guard chain

Trial window: 7 days from account creation (TRIAL_PERIOD).
"""

from equiprofile.entitlements.models import AccountRole, AccountSnapshot
from equiprofile.entitlements.policy import (
    ALLOW,
    TRIAL_PERIOD,
    TRIAL_PERIOD_DAYS,
    DenialCode,
    EntitlementDecision,
    evaluate,
    trial_ends_at,
)
from equiprofile.entitlements.snapshot import AccountSnapshotReader, snapshot_from_user
from equiprofile.entitlements.exemptions import ExemptRoute, EXEMPT_PATH_PREFIXES, is_exempt_path
from equiprofile.entitlements.admin_sessions import (
    AdminSession,
    AdminSessionStore,
    DEFAULT_ADMIN_SESSION_TTL,
)
from equiprofile.entitlements.errors import (
    EntitlementError,
    EntitlementDeniedError,
    EntitlementEvaluationError,
    AdminSessionRequiredError,
    DENIAL_CATEGORIES,
)
from equiprofile.entitlements.middleware import TrialLockMiddleware

__all__ = [
    # Snapshot
    "AccountRole",
    "AccountSnapshot",
    "AccountSnapshotReader",
    "snapshot_from_user",
    # Policy
    "ALLOW",
    "TRIAL_PERIOD",
    "TRIAL_PERIOD_DAYS",
    "DenialCode",
    "EntitlementDecision",
    "evaluate",
    "trial_ends_at",
    # Exemptions
    "ExemptRoute",
    "EXEMPT_PATH_PREFIXES",
    "is_exempt_path",
    # Admin sessions
    "AdminSession",
    "AdminSessionStore",
    "DEFAULT_ADMIN_SESSION_TTL",
    # Errors
    "EntitlementError",
    "EntitlementDeniedError",
    "EntitlementEvaluationError",
    "AdminSessionRequiredError",
    "DENIAL_CATEGORIES",
    # Middleware
    "TrialLockMiddleware",
]
