"""Domain models for billing."""

from packages.billing.models.domain.enums import (
    ApplyOutcome,
    BillingCycle,
    Capability,
    Currency,
    EventKind,
    PlanKey,
    SubscriptionStatus,
)
from packages.billing.models.domain.plans import Entitlements, Plan
from packages.billing.models.domain.subscription import (
    Subscription,
    SubscriptionCreateModel,
    SubscriptionUpdateModel,
)

__all__ = [
    # Enums
    "ApplyOutcome",
    "BillingCycle",
    "Capability",
    "Currency",
    "EventKind",
    "PlanKey",
    "SubscriptionStatus",
    # Plans
    "Entitlements",
    "Plan",
    # Subscription
    "Subscription",
    "SubscriptionCreateModel",
    "SubscriptionUpdateModel",
]
