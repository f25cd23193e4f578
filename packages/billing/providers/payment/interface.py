"""
Interface for payment providers.

Abstracts payment processing away from specific platforms (Stripe, Paddle, etc.)
"""

from abc import ABC, abstractmethod
from typing import Optional
from pydantic import BaseModel

from packages.billing.models.domain.stripe_webhooks import (
    StripeSubscriptionData,
    StripeWebhookPayload,
)


class CheckoutSession(BaseModel):
    session_id: str
    url: str


class PaymentProviderInterface(ABC):
    """
    Abstract interface for payment providers.

    Every call either succeeds or raises ProcessorUnavailableError; callers
    never see partial results.
    """

    @abstractmethod
    async def create_customer(
        self,
        account_id: int,
        name: str,
        email: Optional[str] = None,
    ) -> str:
        """
        Create a customer in the payment provider.

        Returns:
            customer_id: Payment provider customer ID
        """
        pass

    @abstractmethod
    async def create_checkout_session(
        self,
        account_id: int,
        customer_id: str,
        price_id: str,
        metadata: dict[str, str],
        success_url: str,
        cancel_url: str,
        trial_period_days: int = 0,
    ) -> CheckoutSession:
        """
        Create a hosted checkout session for a subscription purchase.

        Args:
            account_id: Internal account ID
            customer_id: Payment provider customer to bill
            price_id: Processor price for the plan/cycle/currency
            metadata: Copied onto the session and the resulting subscription
            success_url: URL to redirect on success
            cancel_url: URL to redirect on cancel
            trial_period_days: Trial length, 0 for none
        """
        pass

    @abstractmethod
    async def retrieve_subscription(self, subscription_id: str) -> StripeSubscriptionData:
        """Fetch the processor's authoritative view of a subscription."""
        pass

    @abstractmethod
    async def update_subscription(
        self, subscription_id: str, cancel_at_period_end: bool
    ) -> StripeSubscriptionData:
        """Set or clear cancel-at-period-end on a subscription."""
        pass

    @abstractmethod
    def parse_webhook_event(
        self, payload: bytes, signature_header: Optional[str]
    ) -> StripeWebhookPayload:
        """
        Verify a webhook signature and parse the event.

        Raises:
            SignatureVerificationFailedError: signature missing or invalid
            BillingValidationError: signed payload is not a valid event
        """
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """
        Check if the payment backend is available and healthy.

        Returns:
            True if healthy, False otherwise
        """
        pass
