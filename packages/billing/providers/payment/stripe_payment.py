"""
Stripe implementation of payment provider.
"""

import asyncio
from typing import Optional

import stripe
from pydantic import ValidationError

from common.core.config import settings
from common.core.otel_axiom_exporter import trace_span, get_logger
from packages.billing.exceptions import (
    BillingValidationError,
    ProcessorUnavailableError,
    SignatureVerificationFailedError,
)
from packages.billing.models.domain.stripe_webhooks import (
    StripeSubscriptionData,
    StripeWebhookPayload,
)
from packages.billing.providers.payment.interface import (
    CheckoutSession,
    PaymentProviderInterface,
)

logger = get_logger(__name__)


class StripePaymentProvider(PaymentProviderInterface):
    """Stripe-based payment implementation."""

    def __init__(self):
        """Initialize Stripe with API credentials and a bounded client."""
        stripe.api_key = settings.stripe_secret_key
        # Fail fast: callers surface errors instead of waiting on retries
        stripe.max_network_retries = 0
        stripe.default_http_client = stripe.RequestsClient(
            timeout=settings.stripe_api_timeout_seconds
        )

    async def _call(self, operation: str, func, **kwargs):
        """Run a blocking SDK call off the event loop, normalizing failures."""
        try:
            return await asyncio.to_thread(func, **kwargs)
        except stripe.StripeError as e:
            logger.error(
                f"Stripe {operation} failed: {str(e)}",
                extra={"operation": operation, "error": str(e)},
            )
            raise ProcessorUnavailableError(f"Stripe {operation} failed") from e

    @trace_span
    async def create_customer(
        self,
        account_id: int,
        name: str,
        email: Optional[str] = None,
    ) -> str:
        customer = await self._call(
            "create_customer",
            stripe.Customer.create,
            email=email,
            name=name,
            metadata={"account_id": str(account_id)},
        )
        logger.info(
            "Created Stripe customer",
            extra={"account_id": account_id, "customer_id": customer.id},
        )
        return customer.id

    @trace_span
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
        subscription_data = {"metadata": metadata}
        if trial_period_days:
            subscription_data["trial_period_days"] = trial_period_days

        session = await self._call(
            "create_checkout_session",
            stripe.checkout.Session.create,
            customer=customer_id,
            payment_method_types=["card"],
            line_items=[{"price": price_id, "quantity": 1}],
            mode="subscription",
            success_url=success_url,
            cancel_url=cancel_url,
            metadata=metadata,
            subscription_data=subscription_data,
        )

        logger.info(
            "Created Stripe checkout session",
            extra={
                "account_id": account_id,
                "price_id": price_id,
                "session_id": session.id,
            },
        )
        return CheckoutSession(session_id=session.id, url=session.url)

    @trace_span
    async def retrieve_subscription(self, subscription_id: str) -> StripeSubscriptionData:
        subscription = await self._call(
            "retrieve_subscription", stripe.Subscription.retrieve, id=subscription_id
        )
        return StripeSubscriptionData.model_validate(subscription.to_dict())

    @trace_span
    async def update_subscription(
        self, subscription_id: str, cancel_at_period_end: bool
    ) -> StripeSubscriptionData:
        subscription = await self._call(
            "update_subscription",
            stripe.Subscription.modify,
            id=subscription_id,
            cancel_at_period_end=cancel_at_period_end,
        )
        logger.info(
            "Updated Stripe subscription",
            extra={
                "subscription_id": subscription_id,
                "cancel_at_period_end": cancel_at_period_end,
            },
        )
        return StripeSubscriptionData.model_validate(subscription.to_dict())

    def parse_webhook_event(
        self, payload: bytes, signature_header: Optional[str]
    ) -> StripeWebhookPayload:
        if not signature_header:
            raise SignatureVerificationFailedError("Missing stripe-signature header")

        try:
            stripe.Webhook.construct_event(
                payload,
                signature_header,
                settings.stripe_webhook_secret,
                tolerance=settings.stripe_webhook_tolerance_seconds,
            )
        except stripe.SignatureVerificationError as e:
            raise SignatureVerificationFailedError(str(e)) from e
        except ValueError as e:
            raise BillingValidationError("Invalid webhook payload") from e

        # Parse the verified bytes rather than the SDK object
        try:
            return StripeWebhookPayload.model_validate_json(payload)
        except ValidationError as e:
            logger.error(
                "Invalid Stripe webhook payload",
                extra={"validation_errors": e.errors()},
            )
            raise BillingValidationError("Invalid webhook payload") from e

    @trace_span
    async def health_check(self) -> bool:
        """Check Stripe health."""
        try:
            await self._call("health_check", stripe.Account.retrieve)
            return True
        except ProcessorUnavailableError:
            return False
