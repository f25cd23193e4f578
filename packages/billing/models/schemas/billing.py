"""
API schemas for billing operations.

Request and response models for billing endpoints.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field, HttpUrl

from packages.billing.models.domain.enums import (
    ApplyOutcome,
    BillingCycle,
    Currency,
    PlanKey,
    SubscriptionStatus,
)
from packages.billing.models.domain.plans import Entitlements


# ============================================================================
# Checkout Schemas
# ============================================================================


class CheckoutSessionRequest(BaseModel):
    """Request to create a checkout session."""

    plan: str = Field(..., description="Plan key, e.g. 'starter' or 'pro'")
    billing_cycle: BillingCycle = BillingCycle.MONTHLY
    currency: Currency = Currency.USD
    success_url: Optional[HttpUrl] = None
    cancel_url: Optional[HttpUrl] = None


class CheckoutSessionResponse(BaseModel):
    """Response with checkout URL."""

    session_id: str
    checkout_url: str = Field(..., description="Stripe checkout session URL")


# ============================================================================
# Subscription Schemas
# ============================================================================


class SubscriptionResponse(BaseModel):
    """Current subscription as the product sees it."""

    account_id: int
    plan: PlanKey = Field(..., description="Plan on record")
    effective_plan: PlanKey = Field(..., description="Plan whose entitlements apply now")
    status: SubscriptionStatus
    is_active: bool
    days_remaining: int
    billing_cycle: BillingCycle
    currency: Currency
    amount_cents: int
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    trial_end: Optional[datetime] = None
    canceled_at: Optional[datetime] = None
    cancel_at_period_end: bool = False
    entitlements: Entitlements


class CancelSubscriptionResponse(BaseModel):
    """Response after subscription cancellation."""

    success: bool
    message: str
    cancel_at_period_end: bool
    access_until: datetime = Field(
        ..., description="Date until which the account retains access"
    )


# ============================================================================
# Webhook / internal Schemas
# ============================================================================


class WebhookAckResponse(BaseModel):
    received: bool = True
    event_id: Optional[str] = None
    outcome: Optional[ApplyOutcome] = None


class UsageResetResponse(BaseModel):
    account_id: int
    reset: bool
