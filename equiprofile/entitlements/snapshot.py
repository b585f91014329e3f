"""
Account snapshot reader - loads the entitlement fields for one user.

Pure data access: no policy, no caching. Every call is a fresh read so
billing transitions and suspensions apply on the very next request.
Storage errors propagate; each caller decides whether to fail open or
closed.
"""

from typing import Optional

from sqlalchemy.orm import Session

from equiprofile.entitlements.models import AccountRole, AccountSnapshot
from equiprofile.models.user import User, UserRole
from equiprofile.utils.clock import ensure_utc


def snapshot_from_user(user: User) -> AccountSnapshot:
    """Build the read-only view from a loaded User row."""
    role = AccountRole.ADMIN if user.role == UserRole.ADMIN.value else AccountRole.MEMBER
    return AccountSnapshot(
        user_id=user.id,
        created_at=ensure_utc(user.created_at),
        subscription_status=user.subscription_status,
        subscription_ends_at=ensure_utc(user.subscription_ends_at),
        is_suspended=bool(user.is_suspended),
        suspended_reason=user.suspended_reason,
        role=role,
    )


class AccountSnapshotReader:
    """Reads AccountSnapshot rows from the users table."""

    def __init__(self, db_session: Session):
        self.db = db_session

    def load(self, user_id: str) -> Optional[AccountSnapshot]:
        """
        Load the snapshot for user_id.

        Returns:
            AccountSnapshot, or None if the user does not exist
        """
        user = self.db.query(User).filter(User.id == user_id).first()
        if user is None:
            return None
        return snapshot_from_user(user)
