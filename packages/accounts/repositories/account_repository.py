from typing import Optional
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from common.repositories.base import BaseRepository
from packages.accounts.models.database.account import AccountEntity
from packages.accounts.models.domain.account import Account, EntitlementSummary
from common.core.otel_axiom_exporter import trace_span


class AccountRepository(BaseRepository[AccountEntity, Account]):
    def __init__(self, db_session: Optional[AsyncSession] = None):
        super().__init__(AccountEntity, Account, db_session)

    @trace_span
    async def get_by_stripe_customer_id(self, customer_id: str) -> Optional[Account]:
        async with self._get_session(readonly=True) as session:
            result = await session.execute(
                select(AccountEntity).where(
                    AccountEntity.stripe_customer_id == customer_id
                )
            )
            entity = result.scalar_one_or_none()
            return self._entity_to_domain(entity) if entity else None

    @trace_span
    async def set_stripe_customer_id(self, account_id: int, customer_id: str) -> bool:
        async with self._get_session() as session:
            result = await session.execute(
                update(AccountEntity)
                .where(AccountEntity.id == account_id)
                .values(stripe_customer_id=customer_id)
            )
            return result.rowcount > 0

    @trace_span
    async def update_entitlement_summary(
        self, account_id: int, summary: EntitlementSummary
    ) -> bool:
        async with self._get_session() as session:
            result = await session.execute(
                update(AccountEntity)
                .where(AccountEntity.id == account_id)
                .values(summary.model_dump())
            )
            return result.rowcount > 0
