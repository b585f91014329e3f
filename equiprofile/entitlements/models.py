"""
Read-only account view consumed by the entitlement evaluator.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional


class AccountRole(str, Enum):
    """Authorization tier, unrelated to billing."""
    ADMIN = "admin"
    MEMBER = "member"


@dataclass(frozen=True)
class AccountSnapshot:
    """
    Entitlement-relevant fields of one account at one read.

    subscription_status is the raw stored value. It is not coerced to
    SubscriptionStatus here so that an unrecognised value reaches the
    evaluator and is denied there, rather than failing the read.
    """
    user_id: str
    created_at: Optional[datetime]
    subscription_status: str
    subscription_ends_at: Optional[datetime] = None
    is_suspended: bool = False
    suspended_reason: Optional[str] = None
    role: AccountRole = AccountRole.MEMBER

    @property
    def is_admin(self) -> bool:
        return self.role == AccountRole.ADMIN
