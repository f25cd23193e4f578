"""
Periodic billing maintenance.

Expires subscriptions whose period ended without a renewal event and purges
parked webhook events past their lifetime. Safe to run on several pods at
once: every write goes through the same locks and compare-and-swap as
webhook application.
"""

from typing import Optional

from common.core.config import settings
from common.core.otel_axiom_exporter import get_logger
from common.workers.base_worker import BasePeriodicWorker
from packages.billing.models.domain.maintenance import SweepResult
from packages.billing.services.reconciliation_service import ReconciliationService

logger = get_logger(__name__)


class BillingSweepWorker(BasePeriodicWorker):
    def __init__(
        self,
        interval_seconds: Optional[float] = None,
        run_once_only: bool = False,
        reconciliation_service: Optional[ReconciliationService] = None,
    ):
        super().__init__(
            name="billing_sweep",
            interval_seconds=interval_seconds or settings.sweep_interval_seconds,
            run_once_only=run_once_only,
        )
        self.reconciliation_service = reconciliation_service or ReconciliationService()

    async def run_once(self) -> SweepResult:
        result = await self.reconciliation_service.expire_lapsed_subscriptions()
        result.pending_events_purged = (
            await self.reconciliation_service.purge_expired_pending_events()
        )
        logger.info(
            f"Worker {self.worker_id} sweep complete",
            extra=result.model_dump(),
        )
        return result

    async def cleanup(self):
        lock_provider = self.reconciliation_service.lock_provider
        if hasattr(lock_provider, "disconnect"):
            await lock_provider.disconnect()
        await super().cleanup()
