"""
Billing enums - strongly typed enumerations for subscription and billing states.
"""

from enum import Enum


class SubscriptionStatus(str, Enum):
    """
    Subscription status lifecycle, mirrored from the payment processor.

    Flow: trialing -> active -> past_due -> canceled / expired
    """

    ACTIVE = "active"  # Paid and within the current period
    TRIALING = "trialing"  # Trial granted at checkout
    PAST_DUE = "past_due"  # Payment failed or period lapsed without renewal
    CANCELED = "canceled"  # Processor deleted the subscription
    EXPIRED = "expired"  # Ran out after cancel_at_period_end
    PAUSED = "paused"

    def in_good_standing(self) -> bool:
        """Statuses that grant the plan's entitlements while the period runs."""
        return self in (SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIALING)

    @classmethod
    def from_processor(cls, raw: str) -> "SubscriptionStatus":
        """
        Map a processor status string onto ours.

        Stripe's incomplete/unpaid states and anything unrecognized restrict
        access rather than grant it.
        """
        aliases = {
            "incomplete_expired": cls.EXPIRED,
            "cancelled": cls.CANCELED,
        }
        if raw in aliases:
            return aliases[raw]
        try:
            return cls(raw)
        except ValueError:
            return cls.PAST_DUE


class PlanKey(str, Enum):
    FREE = "free"
    STARTER = "starter"
    PRO = "pro"
    ENTERPRISE = "enterprise"


class BillingCycle(str, Enum):
    MONTHLY = "monthly"
    YEARLY = "yearly"


class Currency(str, Enum):
    """Stored as a tag only; amounts are never converted."""

    USD = "USD"
    EUR = "EUR"
    GBP = "GBP"
    BRL = "BRL"
    MXN = "MXN"


class Capability(str, Enum):
    """Product capabilities that can be gated."""

    # Metered - compared against a usage counter
    CREATE_PROJECT = "create_project"
    AI_TUTOR = "ai_tutor"
    CODE_EXECUTION = "code_execution"
    STORAGE = "storage"

    # Flags
    PRIORITY_SUPPORT = "priority_support"
    ADVANCED_ANALYTICS = "advanced_analytics"
    SSO = "sso"
    API = "api"
    WHITE_LABELING = "white_labeling"
    DEDICATED_MANAGER = "dedicated_manager"

    def is_metered(self) -> bool:
        return self in METERED_CAPABILITIES


METERED_CAPABILITIES = frozenset(
    {
        Capability.CREATE_PROJECT,
        Capability.AI_TUTOR,
        Capability.CODE_EXECUTION,
        Capability.STORAGE,
    }
)


class EventKind(str, Enum):
    """Reconciliation event variants."""

    CHECKOUT_COMPLETED = "checkout_completed"
    SUBSCRIPTION_UPDATED = "subscription_updated"
    SUBSCRIPTION_DELETED = "subscription_deleted"
    INVOICE_PAID = "invoice_paid"
    PAYMENT_FAILED = "payment_failed"


class ApplyOutcome(str, Enum):
    """What applying a reconciliation event did."""

    APPLIED = "applied"
    DUPLICATE = "duplicate"
    STALE = "stale"
    NOT_FOUND = "not_found"
    IGNORED = "ignored"
