"""Billing services."""

from packages.billing.services.entitlement_service import EntitlementService
from packages.billing.services.reconciliation_service import ReconciliationService
from packages.billing.services.revenue_service import RevenueService
from packages.billing.services.subscription_service import SubscriptionService

__all__ = [
    "EntitlementService",
    "ReconciliationService",
    "RevenueService",
    "SubscriptionService",
]
