"""
Domain models for entitlement checks and usage.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel

from packages.billing.models.domain.enums import PlanKey, SubscriptionStatus

WARNING_THRESHOLD_PERCENT = 80


class EntitlementCheck(BaseModel):
    """
    Result of an entitlement gate check.

    Metered capabilities carry usage figures; flags only `allowed`.
    """

    account_id: int
    capability: str
    allowed: bool
    metered: bool = False
    plan: PlanKey = PlanKey.FREE

    current_usage: Optional[int] = None
    limit: Optional[int] = None
    remaining: Optional[int] = None
    percentage_used: Optional[float] = None
    warning_threshold_reached: bool = False

    period_end: Optional[datetime] = None

    def get_user_message(self) -> Optional[str]:
        """Get user-friendly message about the entitlement."""
        if not self.allowed and self.metered:
            return f"Your {self.capability} limit is reached ({self.limit:,}). Upgrade to continue."

        if not self.allowed:
            return f"{self.capability} is not included in your plan."

        if self.warning_threshold_reached:
            return f"You've used {self.percentage_used:.0f}% of your {self.capability} allowance ({self.current_usage:,}/{self.limit:,})."

        return None


class UsageMetric(BaseModel):
    capability: str
    used: int
    limit: int
    remaining: int
    percentage_used: float


class UsageStats(BaseModel):
    """Usage of every metered capability for an account."""

    account_id: int
    plan: PlanKey
    status: Optional[SubscriptionStatus] = None
    metrics: list[UsageMetric]

    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None
    usage_reset_at: Optional[datetime] = None

    def get_metric(self, capability: str) -> Optional[UsageMetric]:
        for metric in self.metrics:
            if metric.capability == capability:
                return metric
        return None
