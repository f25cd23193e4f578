"""
Domain models for Stripe webhook payloads.

Strongly-typed Pydantic models for the parts of Stripe events we read.
Unknown fields are ignored so processor API upgrades don't break parsing.
"""

from typing import Optional, Any
from enum import Enum
from pydantic import BaseModel, Field, model_validator


class StripeWebhookType(str, Enum):
    """Stripe webhook event types we reconcile."""

    CHECKOUT_SESSION_COMPLETED = "checkout.session.completed"
    SUBSCRIPTION_UPDATED = "customer.subscription.updated"
    SUBSCRIPTION_DELETED = "customer.subscription.deleted"
    INVOICE_PAID = "invoice.paid"
    INVOICE_PAYMENT_FAILED = "invoice.payment_failed"


class StripeMetadata(BaseModel):
    """Metadata we attach to checkout sessions and subscriptions."""

    account_id: Optional[str] = None
    plan: Optional[str] = None
    billing_cycle: Optional[str] = None
    currency: Optional[str] = None


class StripePrice(BaseModel):
    id: str
    recurring: Optional[dict[str, Any]] = None


class StripeSubscriptionItem(BaseModel):
    price: StripePrice
    current_period_start: Optional[int] = None
    current_period_end: Optional[int] = None


class StripeList(BaseModel):
    data: list[StripeSubscriptionItem] = Field(default_factory=list)


class StripeSubscriptionData(BaseModel):
    """
    Stripe subscription object.

    Newer API versions moved the billing period onto the subscription items;
    the validator lifts it back to the top level.
    """

    id: str
    customer: str
    status: str
    current_period_start: Optional[int] = None
    current_period_end: Optional[int] = None
    cancel_at_period_end: bool = False
    canceled_at: Optional[int] = None
    trial_end: Optional[int] = None
    items: StripeList = Field(default_factory=StripeList)
    metadata: StripeMetadata = Field(default_factory=StripeMetadata)

    @model_validator(mode="after")
    def _period_from_items(self):
        if self.items.data:
            first = self.items.data[0]
            if self.current_period_start is None:
                self.current_period_start = first.current_period_start
            if self.current_period_end is None:
                self.current_period_end = first.current_period_end
        return self

    @property
    def price_id(self) -> Optional[str]:
        return self.items.data[0].price.id if self.items.data else None


class StripeInvoiceData(BaseModel):
    """Stripe invoice object."""

    id: str
    customer: str
    subscription: Optional[str] = None
    amount_paid: int = 0
    currency: Optional[str] = None
    parent: Optional[dict[str, Any]] = None

    @model_validator(mode="after")
    def _subscription_from_parent(self):
        # Newer API versions nest the subscription id under parent
        if self.subscription is None and self.parent:
            details = self.parent.get("subscription_details") or {}
            self.subscription = details.get("subscription")
        return self


class StripeCheckoutSessionData(BaseModel):
    """Stripe checkout session object."""

    id: str
    customer: Optional[str] = None
    subscription: Optional[str] = None
    mode: Optional[str] = None
    metadata: StripeMetadata = Field(default_factory=StripeMetadata)


class StripeEventData(BaseModel):
    """Stripe event data wrapper."""

    object: dict[str, Any]


class StripeWebhookPayload(BaseModel):
    """Complete Stripe webhook payload."""

    id: str
    type: str  # kept raw so unhandled types can be acknowledged
    data: StripeEventData
    created: int
    livemode: bool = False
