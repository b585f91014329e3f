"""
Shared model mixins.

TimestampMixin adds created_at / updated_at to any model. created_at is
never rewritten after insert; for accounts it is the origin of the trial
window, so application code never reassigns it.
"""

from sqlalchemy import Column, DateTime, func

from equiprofile.utils.clock import utcnow


class TimestampMixin:
    """Adds created_at and updated_at columns (UTC, timezone-aware)."""

    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
        comment="Row creation time (immutable)"
    )
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
        server_default=func.now(),
        comment="Last modification time"
    )
