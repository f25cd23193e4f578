"""Domain models for webhook bookkeeping."""

from datetime import datetime
from typing import Any, Optional
from pydantic import BaseModel, field_validator

from common.core.dates import ensure_utc


class PendingWebhookEvent(BaseModel):
    id: int
    event_id: str
    stripe_subscription_id: str
    event_kind: str
    payload: dict[str, Any]
    occurred_at: datetime
    expires_at: datetime

    class Config:
        from_attributes = True

    @field_validator("occurred_at", "expires_at")
    @classmethod
    def _as_utc(cls, v):
        return ensure_utc(v)


class ProcessedWebhookEvent(BaseModel):
    event_id: str
    event_kind: str
    outcome: str
    processed_at: Optional[datetime] = None

    class Config:
        from_attributes = True

    @field_validator("processed_at")
    @classmethod
    def _as_utc(cls, v):
        return ensure_utc(v)
