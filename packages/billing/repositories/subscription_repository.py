"""
Repository for subscription records.
"""

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import and_, case, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from common.repositories.base import BaseRepository
from common.core.otel_axiom_exporter import trace_span
from packages.billing.exceptions import ConcurrentModificationError
from packages.billing.models.database.subscription import SubscriptionEntity
from packages.billing.models.domain.enums import PlanKey, SubscriptionStatus
from packages.billing.models.domain.subscription import Subscription

# Counters that usage recording may touch
USAGE_COLUMNS = {
    "projects_created": SubscriptionEntity.projects_created,
    "ai_tutor_minutes_used": SubscriptionEntity.ai_tutor_minutes_used,
    "code_executions_used": SubscriptionEntity.code_executions_used,
    "storage_used_mb": SubscriptionEntity.storage_used_mb,
}

_GOOD_STANDING = (SubscriptionStatus.ACTIVE.value, SubscriptionStatus.TRIALING.value)
_CHURNED = (SubscriptionStatus.CANCELED.value, SubscriptionStatus.EXPIRED.value)


class SubscriptionRepository(BaseRepository[SubscriptionEntity, Subscription]):
    """Repository for account subscriptions."""

    def __init__(self, db_session: Optional[AsyncSession] = None):
        super().__init__(SubscriptionEntity, Subscription, db_session)

    async def _fetch_one(self, session: AsyncSession, *criteria) -> Optional[Subscription]:
        # populate_existing so rows changed by UPDATE statements in this
        # session are not served stale from the identity map
        result = await session.execute(
            select(SubscriptionEntity)
            .where(*criteria)
            .execution_options(populate_existing=True)
        )
        entity = result.scalar_one_or_none()
        return self._entity_to_domain(entity) if entity else None

    @trace_span
    async def get_current_by_account_id(self, account_id: int) -> Optional[Subscription]:
        async with self._get_session(readonly=True) as session:
            return await self._fetch_one(
                session,
                SubscriptionEntity.account_id == account_id,
                SubscriptionEntity.is_current.is_(True),
            )

    @trace_span
    async def get_by_stripe_subscription_id(
        self, stripe_subscription_id: str
    ) -> Optional[Subscription]:
        """Any record (current or superseded) for a processor subscription."""
        async with self._get_session(readonly=True) as session:
            return await self._fetch_one(
                session,
                SubscriptionEntity.stripe_subscription_id == stripe_subscription_id,
            )

    @trace_span
    async def get_current_by_stripe_customer_id(
        self, stripe_customer_id: str
    ) -> Optional[Subscription]:
        async with self._get_session(readonly=True) as session:
            return await self._fetch_one(
                session,
                SubscriptionEntity.stripe_customer_id == stripe_customer_id,
                SubscriptionEntity.is_current.is_(True),
            )

    @trace_span
    async def list_for_account(self, account_id: int) -> list[Subscription]:
        """Full history, newest first."""
        async with self._get_session(readonly=True) as session:
            result = await session.execute(
                select(SubscriptionEntity)
                .where(SubscriptionEntity.account_id == account_id)
                .order_by(SubscriptionEntity.id.desc())
            )
            return self._entities_to_domain(result.scalars().all())

    @trace_span
    async def compare_and_swap(
        self, id: int, expected_version: int, values: dict[str, Any]
    ) -> Subscription:
        """
        Write `values` only if the stored version still matches.

        Raises:
            ConcurrentModificationError: another writer got there first
        """
        async with self._get_session() as session:
            result = await session.execute(
                update(SubscriptionEntity)
                .where(
                    SubscriptionEntity.id == id,
                    SubscriptionEntity.version == expected_version,
                )
                .values(**values, version=SubscriptionEntity.version + 1)
            )
            if result.rowcount == 0:
                raise ConcurrentModificationError(
                    f"Subscription {id} changed since version {expected_version}"
                )
            return await self._fetch_one(session, SubscriptionEntity.id == id)

    @trace_span
    async def supersede(
        self, id: int, expected_version: int, now: datetime
    ) -> Subscription:
        """Retire a current record so a new one can take its place."""
        return await self.compare_and_swap(
            id, expected_version, {"is_current": False, "superseded_at": now}
        )

    @trace_span
    async def increment_usage(
        self, account_id: int, column: str, delta: int
    ) -> Optional[int]:
        """
        Atomically add `delta` to a usage counter, flooring at zero.

        Returns the new value, or None when the account has no current record.
        """
        col = USAGE_COLUMNS[column]
        async with self._get_session() as session:
            result = await session.execute(
                update(SubscriptionEntity)
                .where(
                    SubscriptionEntity.account_id == account_id,
                    SubscriptionEntity.is_current.is_(True),
                )
                .values({col: case((col + delta < 0, 0), else_=col + delta)})
            )
            if result.rowcount == 0:
                return None
            value = await session.execute(
                select(col).where(
                    SubscriptionEntity.account_id == account_id,
                    SubscriptionEntity.is_current.is_(True),
                )
            )
            return value.scalar_one()

    @trace_span
    async def reset_usage(self, account_id: int, now: datetime) -> bool:
        """Zero consumption counters. Standing totals (projects, storage) stay."""
        async with self._get_session() as session:
            result = await session.execute(
                update(SubscriptionEntity)
                .where(
                    SubscriptionEntity.account_id == account_id,
                    SubscriptionEntity.is_current.is_(True),
                )
                .values(
                    ai_tutor_minutes_used=0,
                    code_executions_used=0,
                    usage_reset_at=now,
                )
            )
            return result.rowcount > 0

    @trace_span
    async def list_lapsed_paid(self, cutoff: datetime) -> list[Subscription]:
        """Current paid records still in good standing whose period ended before cutoff."""
        async with self._get_session(readonly=True) as session:
            result = await session.execute(
                select(SubscriptionEntity).where(
                    SubscriptionEntity.is_current.is_(True),
                    SubscriptionEntity.plan != PlanKey.FREE.value,
                    SubscriptionEntity.status.in_(_GOOD_STANDING),
                    SubscriptionEntity.current_period_end < cutoff,
                )
            )
            return self._entities_to_domain(result.scalars().all())

    @trace_span
    async def list_lapsed_free(self, now: datetime) -> list[Subscription]:
        """Free usage records whose metering window has run out."""
        async with self._get_session(readonly=True) as session:
            result = await session.execute(
                select(SubscriptionEntity).where(
                    SubscriptionEntity.is_current.is_(True),
                    SubscriptionEntity.plan == PlanKey.FREE.value,
                    SubscriptionEntity.current_period_end < now,
                )
            )
            return self._entities_to_domain(result.scalars().all())

    @trace_span
    async def sum_active_mrr(self) -> tuple[int, int]:
        """(total mrr cents, subscriber count) over active paid records."""
        async with self._get_session(readonly=True) as session:
            result = await session.execute(
                select(
                    func.coalesce(func.sum(SubscriptionEntity.mrr_cents), 0),
                    func.count(SubscriptionEntity.id),
                ).where(
                    SubscriptionEntity.is_current.is_(True),
                    SubscriptionEntity.status == SubscriptionStatus.ACTIVE.value,
                    SubscriptionEntity.plan != PlanKey.FREE.value,
                )
            )
            total, count = result.one()
            return int(total), int(count)

    def _cohort_criteria(self, window_start: datetime):
        return (
            SubscriptionEntity.is_current.is_(True),
            SubscriptionEntity.plan != PlanKey.FREE.value,
            SubscriptionEntity.started_at < window_start,
            or_(
                SubscriptionEntity.canceled_at.is_(None),
                SubscriptionEntity.canceled_at >= window_start,
            ),
        )

    @trace_span
    async def count_cohort(self, window_start: datetime) -> int:
        """Paid subscribers that started before the window and were live at its start."""
        async with self._get_session(readonly=True) as session:
            result = await session.execute(
                select(func.count(SubscriptionEntity.id)).where(
                    *self._cohort_criteria(window_start)
                )
            )
            return int(result.scalar_one())

    @trace_span
    async def count_churned(self, window_start: datetime, now: datetime) -> int:
        """Cohort members that canceled or expired inside the window."""
        async with self._get_session(readonly=True) as session:
            result = await session.execute(
                select(func.count(SubscriptionEntity.id)).where(
                    *self._cohort_criteria(window_start),
                    SubscriptionEntity.status.in_(_CHURNED),
                    and_(
                        SubscriptionEntity.canceled_at >= window_start,
                        SubscriptionEntity.canceled_at <= now,
                    ),
                )
            )
            return int(result.scalar_one())
