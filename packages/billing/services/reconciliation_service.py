"""
Reconciliation of processor events into subscription records.

Every processor notification funnels through `apply`. Events may arrive
duplicated, out of order or before the record they refer to exists; the
engine makes each one idempotent (ledger keyed by processor event id),
discards stale ones, parks early ones, and writes with compare-and-swap on
the record version under a per-key lock.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import Iterable, Optional

from sqlalchemy.exc import IntegrityError

from common.core.config import settings
from common.core.dates import utcnow
from common.core.otel_axiom_exporter import trace_span, get_logger
from common.db.scoped import transaction
from common.providers.locking.factory import get_lock_provider
from common.providers.locking.interface import DistributedLockInterface
from packages.accounts.models.domain.account import EntitlementSummary
from packages.accounts.services.account_service import AccountService
from packages.billing import catalog
from packages.billing.exceptions import ConcurrentModificationError, StaleEventError
from packages.billing.models.domain.enums import (
    ApplyOutcome,
    PlanKey,
    SubscriptionStatus,
)
from packages.billing.models.domain.events import (
    CheckoutCompleted,
    InvoicePaid,
    PaymentFailed,
    ReconciliationEvent,
    ReconciliationResult,
    SubscriptionDeleted,
    SubscriptionUpdated,
    reconciliation_event_adapter,
)
from packages.billing.models.domain.maintenance import SweepResult
from packages.billing.models.domain.subscription import (
    Subscription,
    SubscriptionCreateModel,
    SubscriptionUpdateModel,
)
from packages.billing.repositories.subscription_repository import SubscriptionRepository
from packages.billing.repositories.webhook_event_repository import (
    PendingEventRepository,
    ProcessedEventRepository,
)

logger = get_logger(__name__)


class ReconciliationService:
    """Applies processor events and runs billing maintenance."""

    def __init__(
        self,
        subscription_repo: Optional[SubscriptionRepository] = None,
        processed_repo: Optional[ProcessedEventRepository] = None,
        pending_repo: Optional[PendingEventRepository] = None,
        account_service: Optional[AccountService] = None,
        lock_provider: Optional[DistributedLockInterface] = None,
    ):
        self.subscription_repo = subscription_repo or SubscriptionRepository()
        self.processed_repo = processed_repo or ProcessedEventRepository()
        self.pending_repo = pending_repo or PendingEventRepository()
        self.account_service = account_service or AccountService()
        self.lock_provider = lock_provider or get_lock_provider()

        self._handlers = {
            CheckoutCompleted: self._apply_checkout_completed,
            SubscriptionUpdated: self._apply_subscription_updated,
            SubscriptionDeleted: self._apply_subscription_deleted,
            InvoicePaid: self._apply_invoice_paid,
            PaymentFailed: self._apply_payment_failed,
        }

    # ------------------------------------------------------------------
    # Event application
    # ------------------------------------------------------------------

    @trace_span
    async def apply(
        self, event: ReconciliationEvent, now: Optional[datetime] = None
    ) -> ReconciliationResult:
        """
        Apply one event. Never errors on replay.

        Raises:
            ConcurrentModificationError: lock or version conflicts persisted
                past the retry limit; the processor should redeliver
        """
        now = now or utcnow()

        async with self._locked(self._lock_keys(event)):
            result = await self._apply_with_retry(event, now)

        logger.info(
            f"Reconciled {event.kind} {event.event_id}: {result.outcome.value}",
            extra={
                "event_id": event.event_id,
                "event_kind": event.kind,
                "outcome": result.outcome.value,
                "subscription_id": result.subscription_id,
                "account_id": result.account_id,
            },
        )

        if result.outcome == ApplyOutcome.APPLIED and result.account_id is not None:
            await self._mirror_best_effort(result.account_id, now)

        if isinstance(event, CheckoutCompleted) and result.outcome in (
            ApplyOutcome.APPLIED,
            ApplyOutcome.DUPLICATE,
        ):
            await self._replay_parked(event.stripe_subscription_id, now)

        return result

    def _lock_keys(self, event: ReconciliationEvent) -> list[str]:
        if isinstance(event, CheckoutCompleted):
            # Also the subscription key so a parked update can't slip past replay
            return [
                f"billing:account:{event.account_id}",
                f"billing:sub:{event.stripe_subscription_id}",
            ]
        if isinstance(event, (SubscriptionUpdated, SubscriptionDeleted)):
            return [f"billing:sub:{event.stripe_subscription_id}"]
        return [f"billing:customer:{event.stripe_customer_id}"]

    @asynccontextmanager
    async def _locked(self, keys: Iterable[str]):
        held = []
        try:
            # Sorted so two multi-key holders can't deadlock
            for key in sorted(keys):
                token = await self.lock_provider.acquire_lock_with_retry(
                    key,
                    lock_ttl_seconds=settings.reconciliation_lock_ttl_seconds,
                    acquire_timeout_seconds=settings.reconciliation_lock_timeout_seconds,
                )
                if token is None:
                    raise ConcurrentModificationError(
                        f"Timed out waiting for lock {key}"
                    )
                held.append((key, token))
            yield
        finally:
            for key, token in reversed(held):
                await self.lock_provider.release_lock(key, token)

    async def _apply_with_retry(
        self, event: ReconciliationEvent, now: datetime
    ) -> ReconciliationResult:
        last_error: Optional[Exception] = None
        for attempt in range(1, settings.reconciliation_max_attempts + 1):
            try:
                async with transaction():
                    return await self._apply_once(event, now)
            except (ConcurrentModificationError, IntegrityError) as e:
                last_error = e
                logger.warning(
                    f"Conflict applying {event.event_id} (attempt {attempt}): {e}",
                    extra={"event_id": event.event_id, "attempt": attempt},
                )
        raise ConcurrentModificationError(
            f"Gave up applying {event.event_id} after "
            f"{settings.reconciliation_max_attempts} attempts"
        ) from last_error

    async def _apply_once(
        self, event: ReconciliationEvent, now: datetime
    ) -> ReconciliationResult:
        if await self.processed_repo.is_processed(event.event_id):
            return self._result(event, ApplyOutcome.DUPLICATE, detail="already processed")

        handler = self._handlers[type(event)]
        result = await handler(event, now)

        if not result.parked:
            await self.processed_repo.record(event.event_id, event.kind, result.outcome)
        return result

    def _result(
        self,
        event: ReconciliationEvent,
        outcome: ApplyOutcome,
        record: Optional[Subscription] = None,
        detail: Optional[str] = None,
        parked: bool = False,
    ) -> ReconciliationResult:
        return ReconciliationResult(
            event_id=event.event_id,
            kind=event.kind,
            outcome=outcome,
            subscription_id=record.id if record else None,
            account_id=record.account_id if record else None,
            detail=detail,
            parked=parked,
        )

    @staticmethod
    def _check_fresh(
        record: Subscription,
        event: ReconciliationEvent,
        period_end: Optional[datetime] = None,
    ) -> None:
        """
        Raises:
            StaleEventError: the record already reflects newer processor state
        """
        if period_end is not None and period_end < record.current_period_end:
            raise StaleEventError(event.event_id, "billing period older than stored")
        same_period = period_end is None or period_end == record.current_period_end
        last = record.last_event_at
        if same_period and last and event.occurred_at < last:
            raise StaleEventError(event.event_id, "older than last applied event")

    async def _write_changes(
        self,
        event: ReconciliationEvent,
        record: Subscription,
        update: SubscriptionUpdateModel,
    ) -> ReconciliationResult:
        changes = update.changes_against(record)
        if not changes:
            # Same facts under a new event id
            return self._result(
                event, ApplyOutcome.DUPLICATE, record, detail="no changes"
            )
        changes["last_event_at"] = event.occurred_at
        updated = await self.subscription_repo.compare_and_swap(
            record.id, record.version, changes
        )
        return self._result(event, ApplyOutcome.APPLIED, updated)

    async def _park(self, event: ReconciliationEvent, now: datetime) -> ReconciliationResult:
        expires_at = now + timedelta(hours=settings.pending_event_ttl_hours)
        await self.pending_repo.park(
            event_id=event.event_id,
            stripe_subscription_id=event.stripe_subscription_id,
            kind=event.kind,
            payload=event.model_dump(mode="json"),
            occurred_at=event.occurred_at,
            expires_at=expires_at,
        )
        logger.debug(
            f"Parked {event.kind} {event.event_id} until checkout lands",
            extra={
                "event_id": event.event_id,
                "stripe_subscription_id": event.stripe_subscription_id,
            },
        )
        return self._result(
            event, ApplyOutcome.NOT_FOUND, detail="parked", parked=True
        )

    async def _apply_checkout_completed(
        self, event: CheckoutCompleted, now: datetime
    ) -> ReconciliationResult:
        plan = catalog.find_plan(event.plan)
        if plan is None or plan.key == PlanKey.FREE:
            logger.warning(
                f"Checkout {event.event_id} for unknown plan {event.plan!r}",
                extra={"event_id": event.event_id, "account_id": event.account_id},
            )
            return self._result(event, ApplyOutcome.IGNORED, detail="unknown plan")

        account = await self.account_service.get_account(event.account_id)
        if account is None:
            logger.warning(
                f"Checkout {event.event_id} for unknown account {event.account_id}",
                extra={"event_id": event.event_id, "account_id": event.account_id},
            )
            return self._result(event, ApplyOutcome.IGNORED, detail="unknown account")

        owner = await self._customer_owner(event.stripe_customer_id)
        if owner is not None and owner != event.account_id:
            # Retrying would hit the same unique constraint on every attempt
            logger.warning(
                f"Checkout {event.event_id} names customer {event.stripe_customer_id} "
                f"owned by account {owner}",
                extra={
                    "event_id": event.event_id,
                    "account_id": event.account_id,
                    "owner_account_id": owner,
                    "stripe_customer_id": event.stripe_customer_id,
                },
            )
            return self._result(
                event, ApplyOutcome.IGNORED, detail="customer owned by another account"
            )

        current = await self.subscription_repo.get_current_by_account_id(
            event.account_id
        )
        if current and current.stripe_subscription_id == event.stripe_subscription_id:
            return self._result(event, ApplyOutcome.DUPLICATE, current)

        previous = await self.subscription_repo.get_by_stripe_subscription_id(
            event.stripe_subscription_id
        )
        if previous is not None:
            # Already provisioned and since replaced by another checkout
            return self._result(
                event, ApplyOutcome.IGNORED, previous, detail="subscription superseded"
            )

        carried = {}
        started_at = event.current_period_start
        if current is not None:
            carried = {
                "projects_created": current.projects_created,
                "ai_tutor_minutes_used": current.ai_tutor_minutes_used,
                "code_executions_used": current.code_executions_used,
                "storage_used_mb": current.storage_used_mb,
            }
            if current.is_paid():
                started_at = current.started_at
            await self.subscription_repo.supersede(current.id, current.version, now)

        if account.stripe_customer_id != event.stripe_customer_id:
            await self.account_service.set_stripe_customer_id(
                event.account_id, event.stripe_customer_id
            )

        amount_cents = plan.price_cents(event.billing_cycle)
        record = await self.subscription_repo.create(
            SubscriptionCreateModel(
                account_id=event.account_id,
                plan=plan.key,
                status=SubscriptionStatus.ACTIVE,
                billing_cycle=event.billing_cycle,
                currency=event.currency,
                amount_cents=amount_cents,
                mrr_cents=catalog.compute_mrr_cents(amount_cents, event.billing_cycle),
                stripe_customer_id=event.stripe_customer_id,
                stripe_subscription_id=event.stripe_subscription_id,
                started_at=started_at,
                current_period_start=event.current_period_start,
                current_period_end=event.current_period_end,
                trial_end=event.trial_end,
                entitlements=plan.entitlements,
                usage_reset_at=now,
                last_event_at=event.occurred_at,
                **carried,
            )
        )
        return self._result(event, ApplyOutcome.APPLIED, record)

    async def _customer_owner(self, stripe_customer_id: str) -> Optional[int]:
        """Account already holding this processor customer, if any."""
        record = await self.subscription_repo.get_current_by_stripe_customer_id(
            stripe_customer_id
        )
        if record is not None:
            return record.account_id
        account = await self.account_service.get_account_by_stripe_customer_id(
            stripe_customer_id
        )
        return account.id if account else None

    async def _apply_subscription_updated(
        self, event: SubscriptionUpdated, now: datetime
    ) -> ReconciliationResult:
        record = await self.subscription_repo.get_by_stripe_subscription_id(
            event.stripe_subscription_id
        )
        if record is None:
            return await self._park(event, now)
        if not record.is_current:
            return self._result(
                event, ApplyOutcome.IGNORED, record, detail="subscription superseded"
            )

        try:
            self._check_fresh(record, event, event.current_period_end)
        except StaleEventError as e:
            logger.debug(f"Discarding {event.event_id}: {e.reason}")
            return self._result(event, ApplyOutcome.STALE, record, detail=e.reason)

        fields = dict(
            status=SubscriptionStatus.from_processor(event.status),
            current_period_start=event.current_period_start,
            current_period_end=event.current_period_end,
            cancel_at_period_end=event.cancel_at_period_end,
            canceled_at=event.canceled_at,
            trial_end=event.trial_end,
        )

        resolved = catalog.resolve_price(event.price_id) if event.price_id else None
        if resolved is not None:
            plan, cycle, currency = resolved
            amount_cents = plan.price_cents(cycle)
            fields.update(
                plan=plan.key,
                billing_cycle=cycle,
                currency=currency,
                amount_cents=amount_cents,
                mrr_cents=catalog.compute_mrr_cents(amount_cents, cycle),
            )
            if plan.key != record.plan:
                # Explicit plan change: take the new plan's current bundle
                fields["entitlements"] = plan.entitlements

        if event.current_period_start > record.current_period_start:
            # Billing period rolled over
            fields.update(
                ai_tutor_minutes_used=0, code_executions_used=0, usage_reset_at=now
            )

        return await self._write_changes(
            event, record, SubscriptionUpdateModel(**fields)
        )

    async def _apply_subscription_deleted(
        self, event: SubscriptionDeleted, now: datetime
    ) -> ReconciliationResult:
        record = await self.subscription_repo.get_by_stripe_subscription_id(
            event.stripe_subscription_id
        )
        if record is None:
            return await self._park(event, now)
        if not record.is_current:
            return self._result(
                event, ApplyOutcome.IGNORED, record, detail="subscription superseded"
            )

        try:
            self._check_fresh(record, event, event.current_period_end)
        except StaleEventError as e:
            logger.debug(f"Discarding {event.event_id}: {e.reason}")
            return self._result(event, ApplyOutcome.STALE, record, detail=e.reason)

        update = SubscriptionUpdateModel(
            status=SubscriptionStatus.CANCELED,
            canceled_at=record.canceled_at or event.canceled_at or now,
            entitlements=catalog.free_plan().entitlements,
        )
        return await self._write_changes(event, record, update)

    async def _apply_invoice_paid(
        self, event: InvoicePaid, now: datetime
    ) -> ReconciliationResult:
        logger.info(
            f"Invoice paid for customer {event.stripe_customer_id}",
            extra={
                "event_id": event.event_id,
                "stripe_customer_id": event.stripe_customer_id,
                "amount_paid_cents": event.amount_paid_cents,
            },
        )
        return self._result(event, ApplyOutcome.IGNORED, detail="informational")

    async def _apply_payment_failed(
        self, event: PaymentFailed, now: datetime
    ) -> ReconciliationResult:
        record = await self.subscription_repo.get_current_by_stripe_customer_id(
            event.stripe_customer_id
        )
        if record is None:
            return self._result(event, ApplyOutcome.NOT_FOUND)

        try:
            self._check_fresh(record, event)
        except StaleEventError as e:
            logger.debug(f"Discarding {event.event_id}: {e.reason}")
            return self._result(event, ApplyOutcome.STALE, record, detail=e.reason)

        if not record.status.in_good_standing():
            return self._result(
                event, ApplyOutcome.IGNORED, record, detail=f"status {record.status.value}"
            )

        logger.warning(
            f"Payment failed for account {record.account_id}",
            extra={"event_id": event.event_id, "account_id": record.account_id},
        )
        return await self._write_changes(
            event, record, SubscriptionUpdateModel(status=SubscriptionStatus.PAST_DUE)
        )

    async def _replay_parked(self, stripe_subscription_id: str, now: datetime) -> None:
        parked = await self.pending_repo.list_for_subscription(
            stripe_subscription_id, now
        )
        for pending in parked:
            event = reconciliation_event_adapter.validate_python(pending.payload)
            try:
                result = await self.apply(event, now=now)
            except ConcurrentModificationError as e:
                # Stays parked; the next checkout redelivery or expiry handles it
                logger.error(
                    f"Replay of parked event {pending.event_id} failed: {e}",
                    extra={"event_id": pending.event_id},
                )
                continue
            if result.parked:
                # Still no record for the subscription; keep it until expiry
                continue
            await self.pending_repo.delete_by_ids([pending.id])

    # ------------------------------------------------------------------
    # Account mirror
    # ------------------------------------------------------------------

    def _summary_for(
        self, record: Optional[Subscription], now: datetime
    ) -> EntitlementSummary:
        if record is not None and record.in_good_standing(now):
            return EntitlementSummary(
                plan_key=record.plan.value,
                plan_started_at=record.started_at,
                plan_ends_at=record.current_period_end,
                entitlement_keys=record.entitlements.granted_keys(),
                entitlements_synced_at=now,
            )
        return EntitlementSummary(
            plan_key=PlanKey.FREE.value,
            entitlement_keys=catalog.free_plan().entitlements.granted_keys(),
            entitlements_synced_at=now,
        )

    @trace_span
    async def sync_entitlement_summary(
        self, account_id: int, now: Optional[datetime] = None
    ) -> EntitlementSummary:
        """Recompute the account's mirrored summary from its current record."""
        now = now or utcnow()
        record = await self.subscription_repo.get_current_by_account_id(account_id)
        summary = self._summary_for(record, now)
        await self.account_service.update_entitlement_summary(account_id, summary)
        return summary

    async def _mirror_best_effort(self, account_id: int, now: datetime) -> None:
        try:
            await self.sync_entitlement_summary(account_id, now)
        except Exception as e:
            # The record is already committed; the next event or a sync repairs this
            logger.error(
                f"Failed to mirror entitlements for account {account_id}: {e}",
                extra={"account_id": account_id, "error": str(e)},
            )

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    @trace_span
    async def expire_lapsed_subscriptions(
        self, now: Optional[datetime] = None
    ) -> SweepResult:
        """
        Advance records whose period ended without a renewal event.

        Paid records lapse to `expired` when set to cancel at period end and
        to `past_due` otherwise. Free usage records roll their window forward.
        """
        now = now or utcnow()
        result = SweepResult()
        cutoff = now - timedelta(hours=settings.subscription_expiry_grace_hours)

        for record in await self.subscription_repo.list_lapsed_paid(cutoff):
            if record.cancel_at_period_end:
                values = {
                    "status": SubscriptionStatus.EXPIRED.value,
                    "canceled_at": record.canceled_at or now,
                }
            else:
                values = {"status": SubscriptionStatus.PAST_DUE.value}

            if not await self._sweep_write(record, values):
                result.skipped += 1
                continue
            if record.cancel_at_period_end:
                result.expired += 1
            else:
                result.past_due += 1
            await self._mirror_best_effort(record.account_id, now)

        period = timedelta(days=settings.free_usage_period_days)
        for record in await self.subscription_repo.list_lapsed_free(now):
            start = record.current_period_end
            while start + period <= now:
                start += period
            values = {
                "current_period_start": start,
                "current_period_end": start + period,
                "ai_tutor_minutes_used": 0,
                "code_executions_used": 0,
                "usage_reset_at": now,
            }
            if await self._sweep_write(record, values):
                result.free_windows_rolled += 1
            else:
                result.skipped += 1

        logger.info(
            "Subscription sweep finished",
            extra=result.model_dump(),
        )
        return result

    async def _sweep_write(self, record: Subscription, values: dict) -> bool:
        keys = [f"billing:account:{record.account_id}"]
        if record.stripe_subscription_id:
            keys.append(f"billing:sub:{record.stripe_subscription_id}")
        try:
            async with self._locked(keys):
                async with transaction():
                    await self.subscription_repo.compare_and_swap(
                        record.id, record.version, values
                    )
        except ConcurrentModificationError as e:
            # A webhook moved the record first; the next sweep re-evaluates it
            logger.info(
                f"Sweep skipped subscription {record.id}: {e}",
                extra={"subscription_id": record.id},
            )
            return False
        return True

    @trace_span
    async def purge_expired_pending_events(self, now: Optional[datetime] = None) -> int:
        now = now or utcnow()
        purged = await self.pending_repo.purge_expired(now)
        if purged:
            logger.info(f"Purged {purged} expired parked webhook events")
        return purged
