"""
Stripe webhook handler.

Verifies the signature, translates the payload into a reconciliation event
and applies it. Unhandled event types are acknowledged so Stripe stops
redelivering them; transient failures surface as 5xx so Stripe retries.
"""

from fastapi import Request, HTTPException, status

from common.core.otel_axiom_exporter import get_logger, log_span_event
from packages.billing.exceptions import (
    BillingValidationError,
    SignatureVerificationFailedError,
)
from packages.billing.models.schemas.billing import WebhookAckResponse
from packages.billing.providers.payment.factory import get_payment_provider
from packages.billing.providers.payment.stripe_events import translate_event
from packages.billing.services.reconciliation_service import ReconciliationService

logger = get_logger(__name__)


async def handle_stripe_webhook(request: Request) -> WebhookAckResponse:
    """
    Handle incoming webhook from Stripe.

    Raises:
        HTTPException: 400 for a bad signature or malformed payload
        ProcessorUnavailableError: enrichment lookup failed (mapped to 503)
        ConcurrentModificationError: conflicts outlasted retries (mapped to 503)
    """
    payload_bytes = await request.body()
    signature = request.headers.get("stripe-signature")
    provider = get_payment_provider()

    try:
        payload = provider.parse_webhook_event(payload_bytes, signature)
    except SignatureVerificationFailedError as e:
        log_span_event(
            "Stripe webhook signature verification failed",
            {
                "security_event": "webhook_signature_invalid",
                "client_host": request.client.host if request.client else "",
                "error": str(e),
            },
        )
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid signature"
        )
    except BillingValidationError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid webhook payload"
        )

    logger.info(
        f"Received Stripe webhook: {payload.type}",
        extra={
            "event_id": payload.id,
            "event_type": payload.type,
            "livemode": payload.livemode,
        },
    )

    event = await translate_event(payload, provider)
    if event is None:
        return WebhookAckResponse(event_id=payload.id)

    result = await ReconciliationService().apply(event)
    return WebhookAckResponse(event_id=payload.id, outcome=result.outcome)
