from sqlalchemy import Column, String, DateTime, JSON
from sqlalchemy.sql import func

from common.db.base import Base, BigIntegerType


class AccountEntity(Base):
    __tablename__ = "accounts"

    id = Column(BigIntegerType, primary_key=True, index=True, autoincrement=True)
    name = Column(String, nullable=False)
    email = Column(String, nullable=True, index=True)

    # Stripe customer ID - stored on the account since it represents account identity
    stripe_customer_id = Column(String(255), nullable=True, unique=True, index=True)

    # Denormalized entitlement summary, mirrored after each applied billing event
    plan_key = Column(String(20), nullable=False, default="free", server_default="free")
    plan_started_at = Column(DateTime(timezone=True), nullable=True)
    plan_ends_at = Column(DateTime(timezone=True), nullable=True)
    entitlement_keys = Column(JSON, nullable=True)
    entitlements_synced_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
