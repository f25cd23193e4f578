from typing import Optional

from common.core.otel_axiom_exporter import trace_span, get_logger
from packages.accounts.models.domain.account import Account, EntitlementSummary
from packages.accounts.repositories.account_repository import AccountRepository

logger = get_logger(__name__)


class AccountService:
    """Account store as seen from billing: identity, customer id, summary."""

    def __init__(self, account_repo: Optional[AccountRepository] = None):
        self.account_repo = account_repo or AccountRepository()

    @trace_span
    async def get_account(self, account_id: int) -> Optional[Account]:
        return await self.account_repo.get(account_id)

    @trace_span
    async def get_account_by_stripe_customer_id(
        self, customer_id: str
    ) -> Optional[Account]:
        return await self.account_repo.get_by_stripe_customer_id(customer_id)

    @trace_span
    async def set_stripe_customer_id(self, account_id: int, customer_id: str) -> None:
        await self.account_repo.set_stripe_customer_id(account_id, customer_id)
        logger.info(
            f"Linked Stripe customer {customer_id} to account {account_id}",
            extra={"account_id": account_id, "stripe_customer_id": customer_id},
        )

    @trace_span
    async def update_entitlement_summary(
        self, account_id: int, summary: EntitlementSummary
    ) -> bool:
        updated = await self.account_repo.update_entitlement_summary(
            account_id, summary
        )
        if not updated:
            logger.warning(
                f"Account {account_id} not found while mirroring entitlements",
                extra={"account_id": account_id},
            )
        return updated
