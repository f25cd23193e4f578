"""
Translation from Stripe webhook payloads to reconciliation events.

Checkout completion is enriched with the processor's authoritative
subscription (period, price, trial) before it reaches the engine. Event
types we don't reconcile translate to None and are acknowledged.
"""

from typing import Optional

from pydantic import ValidationError

from common.core.dates import from_timestamp
from common.core.otel_axiom_exporter import get_logger
from packages.billing import catalog
from packages.billing.models.domain.enums import BillingCycle, Currency
from packages.billing.models.domain.events import (
    CheckoutCompleted,
    InvoicePaid,
    PaymentFailed,
    ReconciliationEvent,
    SubscriptionDeleted,
    SubscriptionUpdated,
)
from packages.billing.models.domain.stripe_webhooks import (
    StripeCheckoutSessionData,
    StripeInvoiceData,
    StripeSubscriptionData,
    StripeWebhookPayload,
    StripeWebhookType,
)
from packages.billing.providers.payment.interface import PaymentProviderInterface

logger = get_logger(__name__)


async def translate_event(
    payload: StripeWebhookPayload, provider: PaymentProviderInterface
) -> Optional[ReconciliationEvent]:
    """
    Build the reconciliation event for a verified Stripe payload.

    Raises:
        ProcessorUnavailableError: subscription lookup for a checkout failed
    """
    translator = _TRANSLATORS.get(payload.type)
    if translator is None:
        logger.info(
            f"Unhandled Stripe webhook type: {payload.type}",
            extra={"event_id": payload.id, "event_type": payload.type},
        )
        return None

    try:
        return await translator(payload, provider)
    except ValidationError as e:
        logger.warning(
            f"Stripe {payload.type} payload missing required fields",
            extra={"event_id": payload.id, "validation_errors": e.errors()},
        )
        return None


async def _checkout_completed(
    payload: StripeWebhookPayload, provider: PaymentProviderInterface
) -> Optional[CheckoutCompleted]:
    session = StripeCheckoutSessionData.model_validate(payload.data.object)
    if session.mode not in (None, "subscription") or not session.subscription:
        logger.info(
            "Checkout session without subscription, skipping",
            extra={"event_id": payload.id, "session_id": session.id},
        )
        return None

    account_id = session.metadata.account_id
    if not account_id or not account_id.isdigit():
        logger.error(
            "Missing account_id in checkout session metadata",
            extra={"event_id": payload.id, "session_id": session.id},
        )
        return None

    subscription = await provider.retrieve_subscription(session.subscription)

    # The price decides plan, cycle and currency; metadata is the fallback
    plan = session.metadata.plan
    cycle = session.metadata.billing_cycle or BillingCycle.MONTHLY.value
    currency = session.metadata.currency or Currency.USD.value
    resolved = None
    if subscription.price_id:
        resolved = catalog.resolve_price(subscription.price_id)
    if resolved is not None:
        resolved_plan, resolved_cycle, resolved_currency = resolved
        plan = resolved_plan.key.value
        cycle = resolved_cycle.value
        currency = resolved_currency.value

    return CheckoutCompleted(
        event_id=payload.id,
        occurred_at=from_timestamp(payload.created),
        account_id=int(account_id),
        plan=plan or "",
        billing_cycle=cycle,
        currency=currency,
        stripe_customer_id=subscription.customer,
        stripe_subscription_id=subscription.id,
        current_period_start=from_timestamp(subscription.current_period_start),
        current_period_end=from_timestamp(subscription.current_period_end),
        trial_end=from_timestamp(subscription.trial_end),
    )


async def _subscription_updated(
    payload: StripeWebhookPayload, provider: PaymentProviderInterface
) -> SubscriptionUpdated:
    subscription = StripeSubscriptionData.model_validate(payload.data.object)
    return SubscriptionUpdated(
        event_id=payload.id,
        occurred_at=from_timestamp(payload.created),
        stripe_subscription_id=subscription.id,
        status=subscription.status,
        current_period_start=from_timestamp(subscription.current_period_start),
        current_period_end=from_timestamp(subscription.current_period_end),
        cancel_at_period_end=subscription.cancel_at_period_end,
        canceled_at=from_timestamp(subscription.canceled_at),
        trial_end=from_timestamp(subscription.trial_end),
        price_id=subscription.price_id,
    )


async def _subscription_deleted(
    payload: StripeWebhookPayload, provider: PaymentProviderInterface
) -> SubscriptionDeleted:
    subscription = StripeSubscriptionData.model_validate(payload.data.object)
    return SubscriptionDeleted(
        event_id=payload.id,
        occurred_at=from_timestamp(payload.created),
        stripe_subscription_id=subscription.id,
        current_period_end=from_timestamp(subscription.current_period_end),
        canceled_at=from_timestamp(subscription.canceled_at),
    )


async def _invoice_paid(
    payload: StripeWebhookPayload, provider: PaymentProviderInterface
) -> InvoicePaid:
    invoice = StripeInvoiceData.model_validate(payload.data.object)
    return InvoicePaid(
        event_id=payload.id,
        occurred_at=from_timestamp(payload.created),
        stripe_customer_id=invoice.customer,
        stripe_subscription_id=invoice.subscription,
        amount_paid_cents=invoice.amount_paid,
    )


async def _payment_failed(
    payload: StripeWebhookPayload, provider: PaymentProviderInterface
) -> PaymentFailed:
    invoice = StripeInvoiceData.model_validate(payload.data.object)
    return PaymentFailed(
        event_id=payload.id,
        occurred_at=from_timestamp(payload.created),
        stripe_customer_id=invoice.customer,
        stripe_subscription_id=invoice.subscription,
    )


_TRANSLATORS = {
    StripeWebhookType.CHECKOUT_SESSION_COMPLETED.value: _checkout_completed,
    StripeWebhookType.SUBSCRIPTION_UPDATED.value: _subscription_updated,
    StripeWebhookType.SUBSCRIPTION_DELETED.value: _subscription_deleted,
    StripeWebhookType.INVOICE_PAID.value: _invoice_paid,
    StripeWebhookType.INVOICE_PAYMENT_FAILED.value: _payment_failed,
}
