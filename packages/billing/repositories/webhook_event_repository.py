"""
Repositories for webhook bookkeeping: the idempotency ledger and the
buffer of events that arrived before their subscription existed.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from common.repositories.base import BaseRepository
from common.core.otel_axiom_exporter import trace_span
from packages.billing.models.database.webhook_event import (
    PendingWebhookEventEntity,
    ProcessedWebhookEventEntity,
)
from packages.billing.models.domain.enums import ApplyOutcome, EventKind
from packages.billing.models.domain.webhook_event import (
    PendingWebhookEvent,
    ProcessedWebhookEvent,
)


class ProcessedEventRepository(
    BaseRepository[ProcessedWebhookEventEntity, ProcessedWebhookEvent]
):
    def __init__(self, db_session: Optional[AsyncSession] = None):
        super().__init__(ProcessedWebhookEventEntity, ProcessedWebhookEvent, db_session)

    @trace_span
    async def get_by_event_id(self, event_id: str) -> Optional[ProcessedWebhookEvent]:
        async with self._get_session(readonly=True) as session:
            result = await session.execute(
                select(ProcessedWebhookEventEntity).where(
                    ProcessedWebhookEventEntity.event_id == event_id
                )
            )
            entity = result.scalar_one_or_none()
            return self._entity_to_domain(entity) if entity else None

    @trace_span
    async def is_processed(self, event_id: str) -> bool:
        async with self._get_session(readonly=True) as session:
            result = await session.execute(
                select(ProcessedWebhookEventEntity.event_id).where(
                    ProcessedWebhookEventEntity.event_id == event_id
                )
            )
            return result.scalar_one_or_none() is not None

    @trace_span
    async def record(
        self, event_id: str, kind: EventKind, outcome: ApplyOutcome
    ) -> None:
        """Insert a ledger row. A concurrent insert of the same id raises IntegrityError."""
        async with self._get_session() as session:
            session.add(
                ProcessedWebhookEventEntity(
                    event_id=event_id,
                    event_kind=EventKind(kind).value,
                    outcome=ApplyOutcome(outcome).value,
                )
            )
            await session.flush()


class PendingEventRepository(
    BaseRepository[PendingWebhookEventEntity, PendingWebhookEvent]
):
    def __init__(self, db_session: Optional[AsyncSession] = None):
        super().__init__(PendingWebhookEventEntity, PendingWebhookEvent, db_session)

    @trace_span
    async def park(
        self,
        event_id: str,
        stripe_subscription_id: str,
        kind: EventKind,
        payload: dict,
        occurred_at: datetime,
        expires_at: datetime,
    ) -> bool:
        """Buffer an event. Returns False if it is already parked."""
        async with self._get_session() as session:
            existing = await session.execute(
                select(PendingWebhookEventEntity.id).where(
                    PendingWebhookEventEntity.event_id == event_id
                )
            )
            if existing.scalar_one_or_none() is not None:
                return False
            session.add(
                PendingWebhookEventEntity(
                    event_id=event_id,
                    stripe_subscription_id=stripe_subscription_id,
                    event_kind=EventKind(kind).value,
                    payload=payload,
                    occurred_at=occurred_at,
                    expires_at=expires_at,
                )
            )
            await session.flush()
            return True

    @trace_span
    async def list_for_subscription(
        self, stripe_subscription_id: str, now: datetime
    ) -> list[PendingWebhookEvent]:
        """Unexpired parked events for a processor subscription, in processor order."""
        async with self._get_session(readonly=True) as session:
            result = await session.execute(
                select(PendingWebhookEventEntity)
                .where(
                    PendingWebhookEventEntity.stripe_subscription_id
                    == stripe_subscription_id,
                    PendingWebhookEventEntity.expires_at > now,
                )
                .order_by(
                    PendingWebhookEventEntity.occurred_at,
                    PendingWebhookEventEntity.id,
                )
            )
            return self._entities_to_domain(result.scalars().all())

    @trace_span
    async def delete_by_ids(self, ids: list[int]) -> int:
        if not ids:
            return 0
        async with self._get_session() as session:
            result = await session.execute(
                delete(PendingWebhookEventEntity).where(
                    PendingWebhookEventEntity.id.in_(ids)
                )
            )
            return result.rowcount

    @trace_span
    async def purge_expired(self, now: datetime) -> int:
        async with self._get_session() as session:
            result = await session.execute(
                delete(PendingWebhookEventEntity).where(
                    PendingWebhookEventEntity.expires_at <= now
                )
            )
            return result.rowcount
