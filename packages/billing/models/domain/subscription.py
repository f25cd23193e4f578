"""
Domain models for subscriptions.
"""

import math
from datetime import datetime
from typing import Any, Optional
from pydantic import BaseModel, ConfigDict, field_validator

from common.core.dates import ensure_utc
from packages.billing.models.domain.enums import (
    BillingCycle,
    Currency,
    PlanKey,
    SubscriptionStatus,
)
from packages.billing.models.domain.plans import Entitlements


class Subscription(BaseModel):
    """
    An account's subscription record.

    Exactly one record per account is current; superseded records stay for
    audit. Derived predicates take `now` explicitly and are never stored.
    """

    id: int
    account_id: int
    is_current: bool = True

    plan: PlanKey
    status: SubscriptionStatus
    billing_cycle: BillingCycle = BillingCycle.MONTHLY
    currency: Currency = Currency.USD
    amount_cents: int = 0
    mrr_cents: int = 0

    # External processor IDs
    stripe_customer_id: Optional[str] = None
    stripe_subscription_id: Optional[str] = None

    # Billing window
    started_at: datetime
    current_period_start: datetime
    current_period_end: datetime
    trial_end: Optional[datetime] = None
    canceled_at: Optional[datetime] = None
    cancel_at_period_end: bool = False

    entitlements: Entitlements

    # Usage counters
    projects_created: int = 0
    ai_tutor_minutes_used: int = 0
    code_executions_used: int = 0
    storage_used_mb: int = 0
    usage_reset_at: datetime

    company_info: Optional[dict[str, Any]] = None
    subscription_metadata: Optional[dict[str, Any]] = None

    # Reconciliation bookkeeping
    version: int = 1
    last_event_at: Optional[datetime] = None
    superseded_at: Optional[datetime] = None

    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True

    @field_validator(
        "started_at",
        "current_period_start",
        "current_period_end",
        "trial_end",
        "canceled_at",
        "usage_reset_at",
        "last_event_at",
        "superseded_at",
        "created_at",
        "updated_at",
    )
    @classmethod
    def _as_utc(cls, v):
        return ensure_utc(v)

    def is_paid(self) -> bool:
        return self.plan != PlanKey.FREE

    def is_active(self, now: datetime) -> bool:
        return (
            self.status == SubscriptionStatus.ACTIVE and self.current_period_end > now
        )

    def in_good_standing(self, now: datetime) -> bool:
        """Active or trialing with the period still running."""
        return self.status.in_good_standing() and self.current_period_end > now

    def days_remaining(self, now: datetime) -> int:
        seconds = (self.current_period_end - now).total_seconds()
        return max(0, math.ceil(seconds / 86400))

    def effective_plan(self, now: datetime) -> PlanKey:
        return self.plan if self.in_good_standing(now) else PlanKey.FREE

    def effective_entitlements(
        self, now: datetime, free_entitlements: Entitlements
    ) -> Entitlements:
        if self.in_good_standing(now):
            return self.entitlements
        return free_entitlements


class SubscriptionCreateModel(BaseModel):
    """Model for creating a new subscription."""

    model_config = ConfigDict(use_enum_values=True)

    account_id: int
    plan: PlanKey
    status: SubscriptionStatus
    billing_cycle: BillingCycle = BillingCycle.MONTHLY
    currency: Currency = Currency.USD
    amount_cents: int = 0
    mrr_cents: int = 0
    stripe_customer_id: Optional[str] = None
    stripe_subscription_id: Optional[str] = None
    started_at: datetime
    current_period_start: datetime
    current_period_end: datetime
    trial_end: Optional[datetime] = None
    entitlements: dict[str, Any]
    projects_created: int = 0
    ai_tutor_minutes_used: int = 0
    code_executions_used: int = 0
    storage_used_mb: int = 0
    usage_reset_at: datetime
    company_info: Optional[dict[str, Any]] = None
    subscription_metadata: Optional[dict[str, Any]] = None
    last_event_at: Optional[datetime] = None

    @field_validator("entitlements", mode="before")
    @classmethod
    def validate_entitlements(cls, v):
        if isinstance(v, Entitlements):
            return v.model_dump()
        return v


class SubscriptionUpdateModel(BaseModel):
    """
    Fields a reconciliation transition may change.

    Only explicitly set fields are written; the diff against the stored
    record decides whether an event changed anything at all.
    """

    plan: Optional[str] = None
    status: Optional[str] = None
    billing_cycle: Optional[str] = None
    currency: Optional[str] = None
    amount_cents: Optional[int] = None
    mrr_cents: Optional[int] = None
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    trial_end: Optional[datetime] = None
    canceled_at: Optional[datetime] = None
    cancel_at_period_end: Optional[bool] = None
    entitlements: Optional[dict[str, Any]] = None
    ai_tutor_minutes_used: Optional[int] = None
    code_executions_used: Optional[int] = None
    usage_reset_at: Optional[datetime] = None

    @field_validator("plan", "status", "billing_cycle", "currency", mode="before")
    @classmethod
    def validate_enum(cls, v):
        if isinstance(v, (PlanKey, SubscriptionStatus, BillingCycle, Currency)):
            return v.value
        return v

    @field_validator("entitlements", mode="before")
    @classmethod
    def validate_entitlements(cls, v):
        if isinstance(v, Entitlements):
            return v.model_dump()
        return v

    def changes_against(self, current: Subscription) -> dict[str, Any]:
        """Set fields whose value differs from the stored record."""
        changes = {}
        for field, value in self.model_dump(exclude_unset=True).items():
            stored = getattr(current, field)
            if field == "entitlements":
                stored = stored.model_dump()
            elif hasattr(stored, "value"):
                stored = stored.value
            elif isinstance(stored, datetime) and isinstance(value, datetime):
                value = ensure_utc(value)
            if stored != value:
                changes[field] = value
        return changes
