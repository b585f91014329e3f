"""
User model - account identity plus the entitlement-relevant billing fields.

The enforcement core only ever READS this row (through
AccountSnapshotReader). It is written by:
- Stripe webhook processing (subscription_status, subscription_ends_at,
  stripe_* ids, last_payment_at)
- Administrative suspension (is_suspended, suspended_reason)

subscription_status is stored as a plain string, not a DB enum, so a value
written by a newer deploy is still readable and is denied explicitly by the
evaluator instead of failing the row load.
"""

import uuid
import enum

from sqlalchemy import Column, String, Text, Boolean, DateTime, Index

from equiprofile.db_base import Base
from equiprofile.models.base import TimestampMixin
from equiprofile.utils.clock import utcnow


class SubscriptionStatus(str, enum.Enum):
    """Subscription lifecycle status."""
    TRIAL = "trial"            # 7-day trial from created_at
    ACTIVE = "active"          # Paid and current
    CANCELLED = "cancelled"    # Cancelled; access until subscription_ends_at
    OVERDUE = "overdue"        # Payment failed
    EXPIRED = "expired"        # Subscription over


class SubscriptionPlan(str, enum.Enum):
    """Billing interval of a paid subscription."""
    MONTHLY = "monthly"
    YEARLY = "yearly"


class UserRole(str, enum.Enum):
    """Stored role values. Only admin is privileged."""
    USER = "user"
    ADMIN = "admin"


class User(Base, TimestampMixin):
    """Account row. One user is one billing account."""

    __tablename__ = "users"

    id = Column(
        String(255),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
        comment="Primary key (UUID)"
    )
    open_id = Column(
        String(64),
        nullable=True,
        unique=True,
        comment="External identity provider subject"
    )
    name = Column(Text, nullable=True)
    email = Column(String(320), nullable=True)
    role = Column(
        String(32),
        nullable=False,
        default=UserRole.USER.value,
        comment="user | admin"
    )

    # Subscription fields
    subscription_status = Column(
        String(32),
        nullable=False,
        default=SubscriptionStatus.TRIAL.value,
        comment="trial | active | cancelled | overdue | expired"
    )
    subscription_plan = Column(String(32), nullable=True, default=SubscriptionPlan.MONTHLY.value)
    stripe_customer_id = Column(String(255), nullable=True)
    stripe_subscription_id = Column(String(255), nullable=True)
    subscription_ends_at = Column(
        DateTime(timezone=True),
        nullable=True,
        comment="End of paid access; only meaningful while cancelled"
    )
    last_payment_at = Column(DateTime(timezone=True), nullable=True)

    # Account status
    is_active = Column(Boolean, nullable=False, default=True)
    is_suspended = Column(Boolean, nullable=False, default=False)
    suspended_reason = Column(Text, nullable=True)

    # Profile
    phone = Column(String(20), nullable=True)
    location = Column(String(255), nullable=True)

    last_signed_in = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_users_stripe_customer_id", "stripe_customer_id"),
        Index("ix_users_email", "email"),
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, status={self.subscription_status}, suspended={self.is_suspended})>"
