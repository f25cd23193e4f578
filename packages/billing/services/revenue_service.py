"""
Service for revenue metrics over current subscription records.
"""

from datetime import datetime
from typing import Optional

from common.core.config import settings
from common.core.dates import months_ago, utcnow
from common.core.otel_axiom_exporter import trace_span, get_logger
from common.db.context import readonly
from common.db.scoped import transaction
from packages.billing.exceptions import BillingValidationError
from packages.billing.models.domain.revenue import (
    ChurnReport,
    MrrSnapshot,
    RevenueMetrics,
)
from packages.billing.repositories.subscription_repository import SubscriptionRepository

logger = get_logger(__name__)


class RevenueService:
    """MRR, ARR and churn."""

    def __init__(self, subscription_repo: Optional[SubscriptionRepository] = None):
        self.subscription_repo = subscription_repo or SubscriptionRepository()

    @trace_span
    async def total_mrr(self) -> MrrSnapshot:
        """Sum of mrr over active paid records."""
        mrr_cents, count = await self.subscription_repo.sum_active_mrr()
        return MrrSnapshot(mrr_cents=mrr_cents, subscriber_count=count)

    @trace_span
    async def total_arr(self) -> int:
        return (await self.total_mrr()).mrr_cents * 12

    @trace_span
    async def churn_rate(
        self, window_months: Optional[int] = None, now: Optional[datetime] = None
    ) -> ChurnReport:
        """
        Share of the paid cohort live at the window start that canceled or
        expired inside the window. 0 for an empty cohort.
        """
        if window_months is None:
            window_months = settings.churn_window_months
        if window_months < 1:
            raise BillingValidationError("window_months must be at least 1")

        now = now or utcnow()
        window_start = months_ago(now, window_months)
        cohort = await self.subscription_repo.count_cohort(window_start)
        churned = await self.subscription_repo.count_churned(window_start, now)
        rate = (churned / cohort * 100) if cohort else 0.0

        return ChurnReport(
            window_months=window_months,
            window_start=window_start,
            cohort_size=cohort,
            churned=churned,
            churn_rate=min(100.0, rate),
        )

    @trace_span
    @readonly
    async def get_metrics(
        self, window_months: Optional[int] = None, now: Optional[datetime] = None
    ) -> RevenueMetrics:
        """All metrics from one read-only snapshot."""
        now = now or utcnow()
        async with transaction(readonly=True):
            mrr = await self.total_mrr()
            churn = await self.churn_rate(window_months, now)

        logger.info(
            "Computed revenue metrics",
            extra={"mrr_cents": mrr.mrr_cents, "churn_rate": churn.churn_rate},
        )
        return RevenueMetrics(
            mrr_cents=mrr.mrr_cents,
            arr_cents=mrr.mrr_cents * 12,
            subscriber_count=mrr.subscriber_count,
            churn=churn,
            computed_at=now,
        )
