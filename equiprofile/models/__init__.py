"""
Database models for accounts, admin sessions and Stripe event deliveries.
"""

from equiprofile.models.base import TimestampMixin
from equiprofile.models.user import User, UserRole, SubscriptionStatus, SubscriptionPlan
from equiprofile.models.admin_session import AdminSessionRecord
from equiprofile.models.stripe_event import StripeEventRecord

__all__ = [
    "TimestampMixin",
    "User",
    "UserRole",
    "SubscriptionStatus",
    "SubscriptionPlan",
    "AdminSessionRecord",
    "StripeEventRecord",
]
