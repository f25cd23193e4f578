"""
Reconciliation events.

The closed set of processor notifications the reconciliation engine
understands, already translated out of the processor's wire format. Every
variant carries the processor event id (idempotency key) and the processor's
own timestamp (ordering).
"""

from datetime import datetime
from typing import Annotated, Literal, Optional, Union
from pydantic import BaseModel, Field, TypeAdapter, field_validator

from packages.billing.models.domain.enums import (
    ApplyOutcome,
    BillingCycle,
    Currency,
    EventKind,
)
from common.core.dates import ensure_utc


class _EventBase(BaseModel):
    event_id: str
    occurred_at: datetime

    @field_validator(
        "occurred_at",
        "current_period_start",
        "current_period_end",
        "trial_end",
        "canceled_at",
        check_fields=False,
    )
    @classmethod
    def _as_utc(cls, v):
        return ensure_utc(v)


class CheckoutCompleted(_EventBase):
    """A checkout finished and the processor created a subscription."""

    kind: Literal["checkout_completed"] = "checkout_completed"
    account_id: int
    plan: str  # validated against the catalog when applied
    billing_cycle: BillingCycle = BillingCycle.MONTHLY
    currency: Currency = Currency.USD
    stripe_customer_id: str
    stripe_subscription_id: str
    current_period_start: datetime
    current_period_end: datetime
    trial_end: Optional[datetime] = None


class SubscriptionUpdated(_EventBase):
    kind: Literal["subscription_updated"] = "subscription_updated"
    stripe_subscription_id: str
    status: str  # raw processor status
    current_period_start: datetime
    current_period_end: datetime
    cancel_at_period_end: bool = False
    canceled_at: Optional[datetime] = None
    trial_end: Optional[datetime] = None
    price_id: Optional[str] = None


class SubscriptionDeleted(_EventBase):
    kind: Literal["subscription_deleted"] = "subscription_deleted"
    stripe_subscription_id: str
    current_period_end: Optional[datetime] = None
    canceled_at: Optional[datetime] = None


class InvoicePaid(_EventBase):
    kind: Literal["invoice_paid"] = "invoice_paid"
    stripe_customer_id: str
    stripe_subscription_id: Optional[str] = None
    amount_paid_cents: int = 0


class PaymentFailed(_EventBase):
    kind: Literal["payment_failed"] = "payment_failed"
    stripe_customer_id: str
    stripe_subscription_id: Optional[str] = None


ReconciliationEvent = Annotated[
    Union[
        CheckoutCompleted,
        SubscriptionUpdated,
        SubscriptionDeleted,
        InvoicePaid,
        PaymentFailed,
    ],
    Field(discriminator="kind"),
]

EVENT_VARIANTS: tuple[type[BaseModel], ...] = (
    CheckoutCompleted,
    SubscriptionUpdated,
    SubscriptionDeleted,
    InvoicePaid,
    PaymentFailed,
)

reconciliation_event_adapter = TypeAdapter(ReconciliationEvent)


class ReconciliationResult(BaseModel):
    """Outcome of applying one event."""

    event_id: str
    kind: EventKind
    outcome: ApplyOutcome
    subscription_id: Optional[int] = None
    account_id: Optional[int] = None
    detail: Optional[str] = None
    # Buffered for replay instead of being recorded as processed
    parked: bool = False
