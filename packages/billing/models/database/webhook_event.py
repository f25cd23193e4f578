"""
Database entities for webhook bookkeeping.
"""

from sqlalchemy import Column, DateTime, Index, JSON, String
from sqlalchemy.sql import func

from common.db.base import Base, BigIntegerType


class ProcessedWebhookEventEntity(Base):
    """Idempotency ledger: one row per processor event id ever handled."""

    __tablename__ = "processed_webhook_events"

    event_id = Column(String(255), primary_key=True)
    event_kind = Column(String(50), nullable=False)
    outcome = Column(String(20), nullable=False)
    processed_at = Column(DateTime(timezone=True), server_default=func.now())


class PendingWebhookEventEntity(Base):
    """
    Subscription-level event that arrived before its checkout.

    Replayed when the checkout lands, purged once expires_at passes.
    """

    __tablename__ = "pending_webhook_events"

    id = Column(BigIntegerType, primary_key=True, index=True, autoincrement=True)
    event_id = Column(String(255), nullable=False, unique=True)
    stripe_subscription_id = Column(String(255), nullable=False, index=True)
    event_kind = Column(String(50), nullable=False)
    payload = Column(JSON, nullable=False)
    occurred_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (Index("idx_pending_event_expires", "expires_at"),)
