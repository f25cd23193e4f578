"""
Service for entitlement checks and usage metering.

Effective entitlements are the record's snapshot while it is in good
standing, otherwise the free bundle. Accounts without a record are on the
free plan with zero usage.
"""

from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.exc import IntegrityError

from common.core.config import settings
from common.core.dates import utcnow
from common.core.otel_axiom_exporter import trace_span, get_logger
from common.db.scoped import transaction
from packages.accounts.services.account_service import AccountService
from packages.billing import catalog
from packages.billing.exceptions import BillingValidationError, RecordNotFoundError
from packages.billing.models.domain.enums import (
    BillingCycle,
    Capability,
    METERED_CAPABILITIES,
    PlanKey,
    SubscriptionStatus,
)
from packages.billing.models.domain.plans import Entitlements
from packages.billing.models.domain.subscription import (
    Subscription,
    SubscriptionCreateModel,
)
from packages.billing.models.domain.usage import (
    EntitlementCheck,
    UsageMetric,
    UsageStats,
    WARNING_THRESHOLD_PERCENT,
)
from packages.billing.repositories.subscription_repository import SubscriptionRepository

logger = get_logger(__name__)

# Metered capability -> usage counter column
USAGE_COUNTERS = {
    Capability.CREATE_PROJECT: "projects_created",
    Capability.AI_TUTOR: "ai_tutor_minutes_used",
    Capability.CODE_EXECUTION: "code_executions_used",
    Capability.STORAGE: "storage_used_mb",
}


def _percentage(used: int, limit: int) -> float:
    return (used / limit * 100) if limit else 0.0


class EntitlementService:
    """Feature gate and usage meter."""

    def __init__(
        self,
        subscription_repo: Optional[SubscriptionRepository] = None,
        account_service: Optional[AccountService] = None,
    ):
        self.subscription_repo = subscription_repo or SubscriptionRepository()
        self.account_service = account_service or AccountService()

    def _effective(
        self, record: Optional[Subscription], now: datetime
    ) -> tuple[PlanKey, Entitlements]:
        free = catalog.free_plan().entitlements
        if record is None:
            return PlanKey.FREE, free
        return record.effective_plan(now), record.effective_entitlements(now, free)

    @staticmethod
    def _used(record: Optional[Subscription], capability: Capability) -> int:
        if record is None:
            return 0
        return getattr(record, USAGE_COUNTERS[capability])

    @trace_span
    async def check(
        self, account_id: int, capability: str, now: Optional[datetime] = None
    ) -> EntitlementCheck:
        """Whether the account may use a capability right now."""
        now = now or utcnow()
        try:
            cap = Capability(capability)
        except ValueError:
            # Unknown capabilities are not gated
            logger.debug(f"Ungated capability {capability!r} checked")
            return EntitlementCheck(
                account_id=account_id, capability=capability, allowed=True
            )

        record = await self.subscription_repo.get_current_by_account_id(account_id)
        plan, entitlements = self._effective(record, now)
        period_end = record.current_period_end if record else None

        if not cap.is_metered():
            return EntitlementCheck(
                account_id=account_id,
                capability=cap.value,
                allowed=entitlements.flag_for(cap),
                plan=plan,
                period_end=period_end,
            )

        used = self._used(record, cap)
        limit = entitlements.limit_for(cap)
        percentage_used = _percentage(used, limit)
        check = EntitlementCheck(
            account_id=account_id,
            capability=cap.value,
            allowed=used < limit,
            metered=True,
            plan=plan,
            current_usage=used,
            limit=limit,
            remaining=max(0, limit - used),
            percentage_used=percentage_used,
            warning_threshold_reached=percentage_used >= WARNING_THRESHOLD_PERCENT,
            period_end=period_end,
        )
        if not check.allowed:
            logger.info(
                f"Account {account_id} reached {cap.value} limit",
                extra={"account_id": account_id, "current": used, "limit": limit},
            )
        return check

    @trace_span
    async def can_use(
        self, account_id: int, capability: str, now: Optional[datetime] = None
    ) -> bool:
        return (await self.check(account_id, capability, now)).allowed

    @trace_span
    async def record_usage(
        self,
        account_id: int,
        capability: str,
        delta: int = 1,
        now: Optional[datetime] = None,
    ) -> int:
        """
        Atomically adjust a usage counter; the counter never goes below zero.

        Returns:
            The counter's new value

        Raises:
            BillingValidationError: capability is not metered
            RecordNotFoundError: account does not exist
        """
        try:
            cap = Capability(capability)
        except ValueError:
            raise BillingValidationError(f"Unknown capability: {capability}")
        if cap not in METERED_CAPABILITIES:
            raise BillingValidationError(f"Capability {cap.value} is not metered")

        column = USAGE_COUNTERS[cap]
        value = await self.subscription_repo.increment_usage(account_id, column, delta)
        if value is not None:
            return value

        await self._ensure_free_record(account_id, now or utcnow())
        value = await self.subscription_repo.increment_usage(account_id, column, delta)
        if value is None:
            raise RecordNotFoundError(f"account:{account_id}")
        return value

    async def _ensure_free_record(self, account_id: int, now: datetime) -> None:
        """Create the free usage record on first metered use."""
        if await self.account_service.get_account(account_id) is None:
            raise RecordNotFoundError(f"account:{account_id}")

        free = catalog.free_plan()
        try:
            async with transaction():
                await self.subscription_repo.create(
                    SubscriptionCreateModel(
                        account_id=account_id,
                        plan=free.key,
                        status=SubscriptionStatus.ACTIVE,
                        billing_cycle=BillingCycle.MONTHLY,
                        started_at=now,
                        current_period_start=now,
                        current_period_end=now
                        + timedelta(days=settings.free_usage_period_days),
                        entitlements=free.entitlements,
                        usage_reset_at=now,
                    )
                )
        except IntegrityError:
            # A concurrent request created it first; the retried increment uses theirs
            logger.debug(f"Free usage record for account {account_id} already exists")
            return
        logger.info(
            f"Created free usage record for account {account_id}",
            extra={"account_id": account_id},
        )

    @trace_span
    async def reset_usage(self, account_id: int, now: Optional[datetime] = None) -> bool:
        """Zero consumption counters; projects and storage are standing totals."""
        reset = await self.subscription_repo.reset_usage(account_id, now or utcnow())
        if reset:
            logger.info(
                f"Reset usage for account {account_id}",
                extra={"account_id": account_id},
            )
        return reset

    @trace_span
    async def get_usage(self, account_id: int, now: Optional[datetime] = None) -> UsageStats:
        now = now or utcnow()
        record = await self.subscription_repo.get_current_by_account_id(account_id)
        plan, entitlements = self._effective(record, now)

        metrics = []
        for cap in USAGE_COUNTERS:
            used = self._used(record, cap)
            limit = entitlements.limit_for(cap)
            metrics.append(
                UsageMetric(
                    capability=cap.value,
                    used=used,
                    limit=limit,
                    remaining=max(0, limit - used),
                    percentage_used=_percentage(used, limit),
                )
            )

        return UsageStats(
            account_id=account_id,
            plan=plan,
            status=record.status if record else None,
            metrics=metrics,
            period_start=record.current_period_start if record else None,
            period_end=record.current_period_end if record else None,
            usage_reset_at=record.usage_reset_at if record else None,
        )
