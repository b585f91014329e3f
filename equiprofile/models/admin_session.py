"""
AdminSessionRecord model - elevated-privilege grant for an admin user.

One row per user (user_id is the primary key). Issuing a new unlock
overwrites expires_at and rotates session_id; rows are never swept,
readers compare expires_at with the clock instead.
"""

import uuid

from sqlalchemy import Column, String, DateTime, ForeignKey

from equiprofile.db_base import Base
from equiprofile.models.base import TimestampMixin


class AdminSessionRecord(Base, TimestampMixin):
    """Stored admin unlock. Expiry is absolute, never extended on read."""

    __tablename__ = "admin_sessions"

    user_id = Column(
        String(255),
        ForeignKey("users.id", ondelete="CASCADE"),
        primary_key=True,
        comment="Admin user this grant belongs to"
    )
    session_id = Column(
        String(64),
        nullable=False,
        default=lambda: uuid.uuid4().hex,
        comment="Rotated on every unlock"
    )
    expires_at = Column(
        DateTime(timezone=True),
        nullable=False,
        comment="Absolute expiry (UTC)"
    )

    def __repr__(self) -> str:
        return f"<AdminSessionRecord(user_id={self.user_id}, expires_at={self.expires_at})>"
