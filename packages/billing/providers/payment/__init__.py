"""Payment providers - checkout, subscription management and webhook intake."""

from packages.billing.providers.payment.interface import (
    CheckoutSession,
    PaymentProviderInterface,
)
from packages.billing.providers.payment.factory import get_payment_provider

__all__ = [
    "CheckoutSession",
    "PaymentProviderInterface",
    "get_payment_provider",
]
