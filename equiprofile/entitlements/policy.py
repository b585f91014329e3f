"""
Entitlement policy evaluation.

evaluate() is the single decision function used by both enforcement
surfaces (the HTTP gateway middleware and the procedure guard chain). It
is pure: no I/O, no clock access, no hidden state. Callers pass `now`.

Rules, first match wins (the order is part of the contract):
1. suspended                          -> ACCOUNT_SUSPENDED    403
2. trial, now > created_at + 7 days   -> TRIAL_EXPIRED        402
   trial otherwise                    -> allow
3. expired / overdue                  -> SUBSCRIPTION_EXPIRED 402
4. cancelled, now > subscription_ends_at
                                      -> SUBSCRIPTION_ENDED   402
   cancelled otherwise (grace, or end not yet known)
                                      -> allow
5. active                             -> allow
6. anything else                      -> UNKNOWN_STATUS       403
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, Optional

from equiprofile.entitlements.models import AccountSnapshot
from equiprofile.models.user import SubscriptionStatus
from equiprofile.utils.clock import ensure_utc

TRIAL_PERIOD_DAYS = 7
TRIAL_PERIOD = timedelta(days=TRIAL_PERIOD_DAYS)

PRODUCT_NAME = "EquiProfile"
SUSPENDED_DEFAULT_MESSAGE = "Please contact support"


class DenialCode(str, Enum):
    """Stable machine-readable denial codes shown to clients."""
    ACCOUNT_SUSPENDED = "ACCOUNT_SUSPENDED"
    TRIAL_EXPIRED = "TRIAL_EXPIRED"
    SUBSCRIPTION_EXPIRED = "SUBSCRIPTION_EXPIRED"
    SUBSCRIPTION_ENDED = "SUBSCRIPTION_ENDED"
    UNKNOWN_STATUS = "UNKNOWN_STATUS"


@dataclass(frozen=True)
class EntitlementDecision:
    """
    Result of evaluate().

    Allowed decisions carry no denial fields. Denied decisions carry the
    code, HTTP status, a short error title and a user-facing message;
    TRIAL_EXPIRED additionally carries trial_ended_at.
    """
    is_entitled: bool
    code: Optional[DenialCode] = None
    http_status: int = 200
    error: Optional[str] = None
    message: Optional[str] = None
    trial_ended_at: Optional[datetime] = None

    @property
    def extra(self) -> Dict[str, Any]:
        """Code-specific fields clients use to render an upgrade prompt."""
        if self.trial_ended_at is not None:
            return {"trialEndedAt": self.trial_ended_at.isoformat()}
        return {}

    def to_response_body(self) -> Dict[str, Any]:
        """Gateway denial body: {error, message, code, ...extra}."""
        body: Dict[str, Any] = {
            "error": self.error,
            "message": self.message,
            "code": self.code.value if self.code else None,
        }
        body.update(self.extra)
        return body


ALLOW = EntitlementDecision(is_entitled=True)


STATUS_UNAVAILABLE = EntitlementDecision(
    is_entitled=False,
    code=DenialCode.UNKNOWN_STATUS,
    http_status=403,
    error="Account status unavailable",
    message=SUSPENDED_DEFAULT_MESSAGE,
)


def trial_ends_at(created_at: datetime) -> datetime:
    """End of the trial window for an account created at created_at."""
    return ensure_utc(created_at) + TRIAL_PERIOD


def _parse_status(value: Any) -> Optional[SubscriptionStatus]:
    try:
        return SubscriptionStatus(value)
    except ValueError:
        return None


def evaluate(snapshot: AccountSnapshot, now: datetime) -> EntitlementDecision:
    """
    Decide whether the account may use gated functionality at `now`.

    Args:
        snapshot: Account fields as read for this request
        now: Evaluation instant (naive values are taken as UTC)

    Returns:
        EntitlementDecision; never raises for any stored status value
    """
    now = ensure_utc(now)

    if snapshot.is_suspended:
        return EntitlementDecision(
            is_entitled=False,
            code=DenialCode.ACCOUNT_SUSPENDED,
            http_status=403,
            error="Account suspended",
            message=snapshot.suspended_reason or SUSPENDED_DEFAULT_MESSAGE,
        )

    status = _parse_status(snapshot.subscription_status)

    if status == SubscriptionStatus.TRIAL:
        # Trial window cannot be computed without a start
        if snapshot.created_at is None:
            return STATUS_UNAVAILABLE
        trial_end = trial_ends_at(snapshot.created_at)
        if now > trial_end:
            return EntitlementDecision(
                is_entitled=False,
                code=DenialCode.TRIAL_EXPIRED,
                http_status=402,
                error="Trial expired",
                message=(
                    f"Your {TRIAL_PERIOD_DAYS}-day trial has ended. "
                    f"Please upgrade to continue using {PRODUCT_NAME}."
                ),
                trial_ended_at=trial_end,
            )
        return ALLOW

    if status in (SubscriptionStatus.EXPIRED, SubscriptionStatus.OVERDUE):
        return EntitlementDecision(
            is_entitled=False,
            code=DenialCode.SUBSCRIPTION_EXPIRED,
            http_status=402,
            error="Subscription expired",
            message=f"Your subscription has expired. Please renew to continue using {PRODUCT_NAME}.",
        )

    if status == SubscriptionStatus.CANCELLED:
        ends_at = ensure_utc(snapshot.subscription_ends_at)
        # No end date yet means the grace period has not been computed
        if ends_at is not None and now > ends_at:
            return EntitlementDecision(
                is_entitled=False,
                code=DenialCode.SUBSCRIPTION_ENDED,
                http_status=402,
                error="Subscription ended",
                message="Your subscription has ended. Please resubscribe to continue.",
            )
        return ALLOW

    if status == SubscriptionStatus.ACTIVE:
        return ALLOW

    return STATUS_UNAVAILABLE
