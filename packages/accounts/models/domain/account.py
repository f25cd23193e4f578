from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field, field_validator

from common.core.dates import ensure_utc


class Account(BaseModel):
    id: int
    name: str
    email: Optional[str] = None
    stripe_customer_id: Optional[str] = None
    plan_key: str = "free"
    plan_started_at: Optional[datetime] = None
    plan_ends_at: Optional[datetime] = None
    entitlement_keys: Optional[list[str]] = None
    entitlements_synced_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True

    @field_validator(
        "plan_started_at",
        "plan_ends_at",
        "entitlements_synced_at",
        "created_at",
        "updated_at",
    )
    @classmethod
    def _as_utc(cls, v):
        return ensure_utc(v)


class AccountCreateModel(BaseModel):
    """Model for creating a new account."""

    name: str
    email: Optional[str] = None
    stripe_customer_id: Optional[str] = None


class AccountUpdateModel(BaseModel):
    """Model for updating an account."""

    name: Optional[str] = None
    email: Optional[str] = None
    stripe_customer_id: Optional[str] = None


class EntitlementSummary(BaseModel):
    """What the account row mirrors from its current subscription."""

    plan_key: str
    plan_started_at: Optional[datetime] = None
    plan_ends_at: Optional[datetime] = None
    entitlement_keys: list[str] = Field(default_factory=list)
    entitlements_synced_at: datetime
