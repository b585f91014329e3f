"""
AccountService - profile reads/updates and administrative suspension.

Suspension is one of the two writers of the entitlement snapshot (the
other is billing). It takes effect on the caller's very next request
because nothing caches account state.

Usage:
    service = AccountService(session, actor_user_id=ctx.user_id)
    service.suspend_user(target_user_id="...", reason="Chargeback")
"""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from equiprofile.entitlements.policy import TRIAL_PERIOD_DAYS, evaluate, trial_ends_at
from equiprofile.entitlements.snapshot import snapshot_from_user
from equiprofile.models.user import SubscriptionStatus, User
from equiprofile.utils.clock import ensure_utc, utcnow

logger = logging.getLogger(__name__)

PROFILE_FIELDS = ("name", "phone", "location")


# =============================================================================
# Exceptions
# =============================================================================

class AccountServiceError(Exception):
    """Base exception for account service errors."""
    pass


class UserNotFoundError(AccountServiceError):
    """Raised when target user is not found."""

    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__(f"User {user_id} not found")


class SelfOperationError(AccountServiceError):
    """Raised when an admin tries to suspend their own account."""
    pass


# =============================================================================
# Serialization
# =============================================================================

def _iso(value) -> Optional[str]:
    value = ensure_utc(value)
    return value.isoformat() if value else None


def serialize_profile(user: User) -> Dict[str, Any]:
    """Profile payload returned by user.getProfile."""
    return {
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "role": user.role,
        "phone": user.phone,
        "location": user.location,
        "subscription_status": user.subscription_status,
        "subscription_plan": user.subscription_plan,
        "subscription_ends_at": _iso(user.subscription_ends_at),
        "is_suspended": bool(user.is_suspended),
        "created_at": _iso(user.created_at),
    }


def serialize_billing_status(user: User, now) -> Dict[str, Any]:
    """
    Billing summary for billing.getStatus.

    Reports the current evaluator verdict so the client can show the
    matching upgrade prompt without trial-window arithmetic of its own.
    """
    snapshot = snapshot_from_user(user)
    decision = evaluate(snapshot, now)
    payload: Dict[str, Any] = {
        "subscription_status": user.subscription_status,
        "subscription_plan": user.subscription_plan,
        "subscription_ends_at": _iso(user.subscription_ends_at),
        "last_payment_at": _iso(user.last_payment_at),
        "has_stripe_customer": bool(user.stripe_customer_id),
        "is_entitled": decision.is_entitled,
        "denial_code": decision.code.value if decision.code else None,
        "trial_ends_at": None,
        "trial_days_left": None,
    }
    if user.subscription_status == SubscriptionStatus.TRIAL.value and snapshot.created_at is not None:
        trial_end = trial_ends_at(snapshot.created_at)
        remaining = trial_end - ensure_utc(now)
        payload["trial_ends_at"] = trial_end.isoformat()
        payload["trial_days_left"] = max(0, min(TRIAL_PERIOD_DAYS, remaining.days + (1 if remaining.seconds else 0)))
    return payload


def serialize_admin_user(user: User) -> Dict[str, Any]:
    """Row returned by admin.getUsers."""
    return {
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "role": user.role,
        "subscription_status": user.subscription_status,
        "subscription_ends_at": _iso(user.subscription_ends_at),
        "is_suspended": bool(user.is_suspended),
        "suspended_reason": user.suspended_reason,
        "created_at": _iso(user.created_at),
        "last_signed_in": _iso(user.last_signed_in),
    }


# =============================================================================
# Service
# =============================================================================

class AccountService:
    """Reads and mutates account rows on behalf of an authenticated actor."""

    def __init__(self, session: Session, actor_user_id: Optional[str] = None):
        self.session = session
        self.actor_user_id = actor_user_id

    def get_user(self, user_id: str) -> User:
        user = self.session.get(User, user_id)
        if user is None:
            raise UserNotFoundError(user_id)
        return user

    def update_profile(self, user_id: str, changes: Dict[str, Any]) -> User:
        """Apply profile field changes; unknown keys are ignored."""
        user = self.get_user(user_id)
        for field_name in PROFILE_FIELDS:
            if field_name in changes:
                setattr(user, field_name, changes[field_name])
        self.session.commit()
        return user

    def list_users(self, limit: int = 100, offset: int = 0) -> List[User]:
        return (
            self.session.query(User)
            .order_by(User.created_at.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )

    def suspend_user(self, target_user_id: str, reason: Optional[str] = None) -> User:
        """
        Suspend an account. Suspension overrides every subscription status.

        Raises:
            SelfOperationError: actor is suspending themselves
            UserNotFoundError: target does not exist
        """
        if self.actor_user_id and self.actor_user_id == target_user_id:
            raise SelfOperationError("Cannot suspend your own account")

        user = self.get_user(target_user_id)
        user.is_suspended = True
        user.suspended_reason = reason
        self.session.commit()

        logger.info(
            "Account suspended",
            extra={
                "actor_user_id": self.actor_user_id,
                "target_user_id": target_user_id,
                "suspended_at": utcnow().isoformat(),
            },
        )
        return user

    def unsuspend_user(self, target_user_id: str) -> User:
        user = self.get_user(target_user_id)
        user.is_suspended = False
        user.suspended_reason = None
        self.session.commit()

        logger.info(
            "Account unsuspended",
            extra={"actor_user_id": self.actor_user_id, "target_user_id": target_user_id},
        )
        return user
