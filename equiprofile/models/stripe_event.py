"""
StripeEventRecord model - ledger of Stripe webhook deliveries.

Stripe delivers at-least-once and may redeliver an event after later
events have already been applied. event_id is unique; an event that was
processed once is never applied again.
"""

import uuid

from sqlalchemy import Column, String, Text, Boolean, DateTime

from equiprofile.db_base import Base
from equiprofile.models.base import TimestampMixin


class StripeEventRecord(Base, TimestampMixin):
    """One row per Stripe event id."""

    __tablename__ = "stripe_events"

    id = Column(
        String(255),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
    )
    event_id = Column(
        String(255),
        unique=True,
        nullable=False,
        comment="Stripe event id (evt_...)"
    )
    event_type = Column(String(100), nullable=True)
    processed = Column(Boolean, nullable=False, default=False)
    payload = Column(Text, nullable=True)
    error = Column(Text, nullable=True, comment="Last processing failure, if any")
    processed_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<StripeEventRecord(event_id={self.event_id}, processed={self.processed})>"
