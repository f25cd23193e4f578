"""
Factory for getting payment provider instance.
"""

from typing import Optional

from packages.billing.providers.payment.interface import PaymentProviderInterface
from packages.billing.providers.payment.stripe_payment import StripePaymentProvider

# Global instance
_payment_provider: Optional[PaymentProviderInterface] = None


def get_payment_provider() -> PaymentProviderInterface:
    """
    Get payment provider instance.

    Only Stripe is supported; the interface keeps services independent of it.
    """
    global _payment_provider

    if _payment_provider is None:
        _payment_provider = StripePaymentProvider()
    return _payment_provider
