"""
Database entity for subscriptions.
"""

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    text,
)
from sqlalchemy.sql import func

from common.db.base import Base, BigIntegerType


class SubscriptionEntity(Base):
    """
    Account subscription database entity.

    Superseded rows are kept for audit; the partial unique indexes allow a
    single current row per account and per processor customer.
    """

    __tablename__ = "subscriptions"

    id = Column(BigIntegerType, primary_key=True, index=True, autoincrement=True)
    account_id = Column(
        BigIntegerType,
        ForeignKey("accounts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    is_current = Column(Boolean, nullable=False, default=True, server_default="true")

    # Plan and pricing
    plan = Column(String(20), nullable=False, index=True)  # free, starter, pro, enterprise
    status = Column(String(20), nullable=False, index=True)
    billing_cycle = Column(String(10), nullable=False, server_default="monthly")
    currency = Column(String(3), nullable=False, server_default="USD")
    amount_cents = Column(Integer, nullable=False, default=0, server_default="0")
    mrr_cents = Column(Integer, nullable=False, default=0, server_default="0")

    # External processor IDs
    stripe_customer_id = Column(String(255), nullable=True, index=True)
    stripe_subscription_id = Column(String(255), nullable=True, unique=True)

    # Billing window
    started_at = Column(DateTime(timezone=True), nullable=False)
    current_period_start = Column(DateTime(timezone=True), nullable=False)
    current_period_end = Column(DateTime(timezone=True), nullable=False)
    trial_end = Column(DateTime(timezone=True), nullable=True)
    canceled_at = Column(DateTime(timezone=True), nullable=True)
    cancel_at_period_end = Column(
        Boolean, nullable=False, default=False, server_default="false"
    )

    # Entitlement snapshot taken when the plan was provisioned
    entitlements = Column(JSON, nullable=False)

    # Usage counters
    projects_created = Column(Integer, nullable=False, default=0, server_default="0")
    ai_tutor_minutes_used = Column(
        Integer, nullable=False, default=0, server_default="0"
    )
    code_executions_used = Column(Integer, nullable=False, default=0, server_default="0")
    storage_used_mb = Column(Integer, nullable=False, default=0, server_default="0")
    usage_reset_at = Column(DateTime(timezone=True), nullable=False)

    company_info = Column(JSON, nullable=True)
    # "metadata" is reserved on declarative classes
    subscription_metadata = Column("metadata", JSON, nullable=True)

    # Reconciliation bookkeeping
    version = Column(Integer, nullable=False, default=1, server_default="1")
    last_event_at = Column(DateTime(timezone=True), nullable=True)
    superseded_at = Column(DateTime(timezone=True), nullable=True)

    # Standard timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index(
            "uq_subscriptions_current_account",
            "account_id",
            unique=True,
            postgresql_where=text("is_current"),
            sqlite_where=text("is_current = 1"),
        ),
        Index(
            "uq_subscriptions_current_customer",
            "stripe_customer_id",
            unique=True,
            postgresql_where=text("is_current AND stripe_customer_id IS NOT NULL"),
            sqlite_where=text("is_current = 1 AND stripe_customer_id IS NOT NULL"),
        ),
        Index("idx_subscription_period_end", "current_period_end"),
        Index("idx_subscription_status_plan", "status", "plan"),
    )
