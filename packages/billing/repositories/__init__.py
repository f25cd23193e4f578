"""Billing repositories."""

from packages.billing.repositories.subscription_repository import SubscriptionRepository
from packages.billing.repositories.webhook_event_repository import (
    PendingEventRepository,
    ProcessedEventRepository,
)

__all__ = [
    "SubscriptionRepository",
    "ProcessedEventRepository",
    "PendingEventRepository",
]
