"""Billing maintenance endpoints.

Called by the in-cluster scheduler. Like the probes, these are mounted at
root level and never routed through ingress.
"""

from fastapi import APIRouter

from common.core.exceptions import NotFoundError
from common.core.otel_axiom_exporter import get_logger
from packages.accounts.models.domain.account import EntitlementSummary
from packages.accounts.services.account_service import AccountService
from packages.billing.models.domain.maintenance import SweepResult
from packages.billing.models.schemas.billing import UsageResetResponse
from packages.billing.services.entitlement_service import EntitlementService
from packages.billing.services.reconciliation_service import ReconciliationService

logger = get_logger(__name__)

router = APIRouter(prefix="/internal/billing", tags=["internal"], include_in_schema=False)


@router.post("/sweep", response_model=SweepResult)
async def run_sweep():
    """Expire lapsed subscriptions and purge parked events past their lifetime."""
    service = ReconciliationService()
    result = await service.expire_lapsed_subscriptions()
    result.pending_events_purged = await service.purge_expired_pending_events()
    return result


@router.post("/accounts/{account_id}/usage/reset", response_model=UsageResetResponse)
async def reset_usage(account_id: int):
    """Zero the account's consumption counters."""
    reset = await EntitlementService().reset_usage(account_id)
    return UsageResetResponse(account_id=account_id, reset=reset)


@router.post(
    "/accounts/{account_id}/entitlements/sync", response_model=EntitlementSummary
)
async def sync_entitlements(account_id: int):
    """Rebuild the account's entitlement summary from its current record."""
    if await AccountService().get_account(account_id) is None:
        raise NotFoundError(f"Account {account_id} not found")
    return await ReconciliationService().sync_entitlement_summary(account_id)
