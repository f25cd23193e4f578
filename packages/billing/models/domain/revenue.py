"""Domain models for revenue metrics."""

from datetime import datetime
from pydantic import BaseModel


class MrrSnapshot(BaseModel):
    mrr_cents: int
    subscriber_count: int


class ChurnReport(BaseModel):
    window_months: int
    window_start: datetime
    cohort_size: int
    churned: int
    churn_rate: float  # percent, 0-100


class RevenueMetrics(BaseModel):
    mrr_cents: int
    arr_cents: int
    subscriber_count: int
    churn: ChurnReport
    computed_at: datetime
