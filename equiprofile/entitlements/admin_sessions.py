"""
Admin session store - short-lived elevated-privilege grants.

An admin session is separate from the login session: holding the admin
role is not enough to run admin-only procedures, the user must also have
unlocked admin mode recently.

- issue() overwrites any previous grant for the user (one active grant
  per admin) and rotates session_id.
- Expiry is absolute. get() never extends it.
- There is no revoke and no sweeper; is_valid() is checked on every read.

Callers of issue() must already have verified role == admin.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from equiprofile.models.admin_session import AdminSessionRecord
from equiprofile.utils.clock import ensure_utc, utcnow

logger = logging.getLogger(__name__)

DEFAULT_ADMIN_SESSION_TTL = timedelta(minutes=30)


@dataclass(frozen=True)
class AdminSession:
    """Immutable view of one admin grant."""
    session_id: str
    user_id: str
    expires_at: datetime


def _to_session(record: AdminSessionRecord) -> AdminSession:
    return AdminSession(
        session_id=record.session_id,
        user_id=record.user_id,
        expires_at=ensure_utc(record.expires_at),
    )


class AdminSessionStore:
    """SQL-backed store of admin grants, keyed by user id."""

    def __init__(self, db_session: Session, ttl: timedelta = DEFAULT_ADMIN_SESSION_TTL):
        self.db = db_session
        self.ttl = ttl

    def issue(self, user_id: str, now: Optional[datetime] = None) -> AdminSession:
        """
        Grant admin mode to user_id until now + ttl.

        Replaces any existing grant for the user.
        """
        issued_at = ensure_utc(now) if now is not None else utcnow()
        expires_at = issued_at + self.ttl

        record = self.db.get(AdminSessionRecord, user_id)
        if record is None:
            record = AdminSessionRecord(user_id=user_id)
            self.db.add(record)

        record.session_id = uuid.uuid4().hex
        record.expires_at = expires_at
        try:
            self.db.commit()
        except IntegrityError:
            # A concurrent issue() inserted the row first; overwrite it.
            self.db.rollback()
            record = self.db.get(AdminSessionRecord, user_id)
            if record is None:
                raise
            record.session_id = uuid.uuid4().hex
            record.expires_at = expires_at
            self.db.commit()

        logger.info(
            "Admin session issued",
            extra={"user_id": user_id, "expires_at": expires_at.isoformat()},
        )
        return AdminSession(session_id=record.session_id, user_id=user_id, expires_at=expires_at)

    def get(self, user_id: str) -> Optional[AdminSession]:
        """Current grant for user_id, expired or not. None if never issued."""
        record = self.db.get(AdminSessionRecord, user_id)
        if record is None:
            return None
        return _to_session(record)

    @staticmethod
    def is_valid(session: Optional[AdminSession], now: datetime) -> bool:
        """True if session exists and expires strictly after now."""
        return session is not None and session.expires_at > ensure_utc(now)
