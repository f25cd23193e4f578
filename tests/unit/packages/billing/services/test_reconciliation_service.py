"""
Unit tests for ReconciliationService.

Events are applied against the SQLite test database through the real
repositories, transactions and in-memory locks. Only the account mirror is
mocked where a test needs it to fail.
"""

from datetime import timedelta
from types import MappingProxyType
from unittest.mock import AsyncMock

import pytest

from common.core.config import settings
from packages.accounts.services.account_service import AccountService
from packages.billing import catalog
from packages.billing.exceptions import ConcurrentModificationError
from packages.billing.models.domain.enums import (
    ApplyOutcome,
    BillingCycle,
    PlanKey,
    SubscriptionStatus,
)
from packages.billing.models.domain.events import EVENT_VARIANTS
from packages.billing.repositories.subscription_repository import SubscriptionRepository
from packages.billing.repositories.webhook_event_repository import (
    PendingEventRepository,
    ProcessedEventRepository,
)
from packages.billing.services.entitlement_service import EntitlementService
from packages.billing.services.reconciliation_service import ReconciliationService
from tests.factories.billing_event_factory import BillingEventFactory as events


class FlakySubscriptionRepository(SubscriptionRepository):
    """Loses the compare-and-swap race a fixed number of times."""

    def __init__(self, failures: int):
        super().__init__()
        self.failures = failures

    async def compare_and_swap(self, id, expected_version, values):
        if self.failures:
            self.failures -= 1
            raise ConcurrentModificationError("simulated concurrent writer")
        return await super().compare_and_swap(id, expected_version, values)


@pytest.fixture
def service():
    return ReconciliationService()


@pytest.fixture
def repo():
    return SubscriptionRepository()


class TestHandlerTable:
    def test_every_event_variant_has_a_handler(self, service):
        assert set(service._handlers) == set(EVENT_VARIANTS)


class TestCheckoutCompleted:
    """Provisioning a paid subscription from a completed checkout."""

    @pytest.mark.asyncio
    async def test_checkout_creates_active_subscription(
        self, service, repo, sample_account, now
    ):
        event = events.checkout_completed(sample_account.id, now)

        result = await service.apply(event, now=now)

        assert result.outcome == ApplyOutcome.APPLIED
        record = await repo.get_current_by_account_id(sample_account.id)
        assert record.id == result.subscription_id
        assert record.plan == PlanKey.STARTER
        assert record.status == SubscriptionStatus.ACTIVE
        assert record.mrr_cents == 1900
        assert record.stripe_subscription_id == "sub_checkout"
        assert record.current_period_end == now + timedelta(days=30)
        assert record.entitlements == catalog.get_plan("starter").entitlements

    @pytest.mark.asyncio
    async def test_checkout_updates_account_summary(
        self, service, sample_account, now
    ):
        await service.apply(events.checkout_completed(sample_account.id, now), now=now)

        account = await AccountService().get_account(sample_account.id)
        assert account.plan_key == "starter"
        assert account.stripe_customer_id == "cus_checkout"
        assert account.plan_ends_at == now + timedelta(days=30)
        assert "advanced_analytics" in account.entitlement_keys
        assert account.entitlements_synced_at == now

    @pytest.mark.asyncio
    async def test_yearly_checkout_spreads_mrr(self, service, repo, sample_account, now):
        event = events.checkout_completed(
            sample_account.id, now, billing_cycle=BillingCycle.YEARLY, period_days=365
        )

        await service.apply(event, now=now)

        record = await repo.get_current_by_account_id(sample_account.id)
        assert record.amount_cents == 19000
        assert record.mrr_cents == 1583

    @pytest.mark.asyncio
    async def test_redelivered_checkout_is_duplicate(
        self, service, repo, sample_account, now
    ):
        event = events.checkout_completed(sample_account.id, now)
        await service.apply(event, now=now)
        before = await repo.get_current_by_account_id(sample_account.id)

        result = await service.apply(event, now=now + timedelta(minutes=5))

        assert result.outcome == ApplyOutcome.DUPLICATE
        after = await repo.get_current_by_account_id(sample_account.id)
        assert after.version == before.version
        assert after.updated_at == before.updated_at
        assert len(await repo.list_for_account(sample_account.id)) == 1

    @pytest.mark.asyncio
    async def test_checkout_supersedes_free_record_and_carries_usage(
        self, service, repo, sample_account, subscription_factory, now
    ):
        free = await subscription_factory(
            sample_account.id, plan=PlanKey.FREE, code_executions_used=7
        )

        await service.apply(events.checkout_completed(sample_account.id, now), now=now)

        history = await repo.list_for_account(sample_account.id)
        assert len(history) == 2
        current, previous = history
        assert current.is_current and current.plan == PlanKey.STARTER
        assert current.code_executions_used == 7
        assert previous.id == free.id
        assert not previous.is_current
        assert previous.superseded_at == now

    @pytest.mark.asyncio
    async def test_unknown_plan_is_ignored_and_recorded(
        self, service, repo, sample_account, now
    ):
        event = events.checkout_completed(sample_account.id, now, plan="platinum")

        result = await service.apply(event, now=now)

        assert result.outcome == ApplyOutcome.IGNORED
        assert await repo.get_current_by_account_id(sample_account.id) is None
        assert await ProcessedEventRepository().is_processed(event.event_id)

    @pytest.mark.asyncio
    async def test_unknown_account_is_ignored(self, service, now):
        result = await service.apply(events.checkout_completed(424242, now), now=now)

        assert result.outcome == ApplyOutcome.IGNORED
        assert result.detail == "unknown account"

    @pytest.mark.asyncio
    async def test_customer_held_by_another_accounts_subscription(
        self, service, repo, sample_account, other_account, subscription_factory, now
    ):
        await subscription_factory(other_account.id, stripe_customer_id="cus_shared")
        event = events.checkout_completed(
            sample_account.id, now, stripe_customer_id="cus_shared"
        )

        result = await service.apply(event, now=now)

        assert result.outcome == ApplyOutcome.IGNORED
        assert result.detail == "customer owned by another account"
        assert await repo.get_current_by_account_id(sample_account.id) is None
        assert await ProcessedEventRepository().is_processed(event.event_id)

        # Redelivery is answered from the ledger instead of failing again
        redelivered = await service.apply(event, now=now)
        assert redelivered.outcome == ApplyOutcome.DUPLICATE

    @pytest.mark.asyncio
    async def test_customer_linked_to_another_account(
        self, service, repo, sample_account, other_account, now
    ):
        await AccountService().set_stripe_customer_id(other_account.id, "cus_linked")
        event = events.checkout_completed(
            sample_account.id, now, stripe_customer_id="cus_linked"
        )

        result = await service.apply(event, now=now)

        assert result.outcome == ApplyOutcome.IGNORED
        assert await repo.get_current_by_account_id(sample_account.id) is None
        account = await AccountService().get_account(sample_account.id)
        assert account.stripe_customer_id is None

    @pytest.mark.asyncio
    async def test_customer_already_linked_to_same_account(
        self, service, repo, sample_account, now
    ):
        await AccountService().set_stripe_customer_id(sample_account.id, "cus_checkout")

        result = await service.apply(
            events.checkout_completed(sample_account.id, now), now=now
        )

        assert result.outcome == ApplyOutcome.APPLIED
        record = await repo.get_current_by_account_id(sample_account.id)
        assert record.stripe_customer_id == "cus_checkout"


class TestSubscriptionUpdated:
    """Status, period and plan changes reported by the processor."""

    @pytest.mark.asyncio
    async def test_same_facts_under_new_event_id_change_nothing(
        self, service, repo, sample_subscription, now
    ):
        event = events.subscription_updated(
            sample_subscription.stripe_subscription_id,
            occurred_at=now,
            current_period_start=sample_subscription.current_period_start,
            current_period_end=sample_subscription.current_period_end,
        )

        result = await service.apply(event, now=now)

        assert result.outcome == ApplyOutcome.DUPLICATE
        record = await repo.get(sample_subscription.id)
        assert record.version == sample_subscription.version

    @pytest.mark.asyncio
    async def test_status_change_bumps_version(
        self, service, repo, sample_subscription, now
    ):
        event = events.subscription_updated(
            sample_subscription.stripe_subscription_id,
            occurred_at=now,
            current_period_start=sample_subscription.current_period_start,
            current_period_end=sample_subscription.current_period_end,
            status="unpaid",
        )

        result = await service.apply(event, now=now)

        assert result.outcome == ApplyOutcome.APPLIED
        record = await repo.get(sample_subscription.id)
        assert record.status == SubscriptionStatus.PAST_DUE
        assert record.version == sample_subscription.version + 1
        assert record.last_event_at == now

    @pytest.mark.asyncio
    async def test_older_event_is_stale(self, service, repo, sample_subscription, now):
        event = events.subscription_updated(
            sample_subscription.stripe_subscription_id,
            occurred_at=sample_subscription.last_event_at - timedelta(days=1),
            current_period_start=sample_subscription.current_period_start,
            current_period_end=sample_subscription.current_period_end,
            status="canceled",
        )

        result = await service.apply(event, now=now)

        assert result.outcome == ApplyOutcome.STALE
        record = await repo.get(sample_subscription.id)
        assert record.status == SubscriptionStatus.ACTIVE
        assert record.version == sample_subscription.version

    @pytest.mark.asyncio
    async def test_older_billing_period_is_stale(
        self, service, repo, sample_subscription, now
    ):
        event = events.subscription_updated(
            sample_subscription.stripe_subscription_id,
            occurred_at=now,
            current_period_start=sample_subscription.current_period_start
            - timedelta(days=30),
            current_period_end=sample_subscription.current_period_start,
            status="past_due",
        )

        result = await service.apply(event, now=now)

        assert result.outcome == ApplyOutcome.STALE
        assert (await repo.get(sample_subscription.id)).status == SubscriptionStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_renewal_rolls_period_and_resets_consumption(
        self, service, repo, sample_account, subscription_factory, now
    ):
        record = await subscription_factory(
            sample_account.id,
            code_executions_used=40,
            ai_tutor_minutes_used=12,
            projects_created=2,
        )
        renewed_at = record.current_period_end
        event = events.subscription_updated(
            record.stripe_subscription_id,
            occurred_at=renewed_at,
            current_period_start=renewed_at,
            current_period_end=renewed_at + timedelta(days=30),
        )

        result = await service.apply(event, now=renewed_at)

        assert result.outcome == ApplyOutcome.APPLIED
        renewed = await repo.get(record.id)
        assert renewed.current_period_end == renewed_at + timedelta(days=30)
        assert renewed.code_executions_used == 0
        assert renewed.ai_tutor_minutes_used == 0
        assert renewed.projects_created == 2
        assert renewed.usage_reset_at == renewed_at

    @pytest.mark.asyncio
    async def test_price_change_switches_plan_and_entitlements(
        self, service, repo, sample_subscription, now
    ):
        event = events.subscription_updated(
            sample_subscription.stripe_subscription_id,
            occurred_at=now,
            current_period_start=sample_subscription.current_period_start,
            current_period_end=sample_subscription.current_period_end,
            price_id="price_pro_monthly_usd",
        )

        await service.apply(event, now=now)

        record = await repo.get(sample_subscription.id)
        assert record.plan == PlanKey.PRO
        assert record.mrr_cents == 4900
        assert record.entitlements == catalog.get_plan("pro").entitlements

    @pytest.mark.asyncio
    async def test_catalog_edits_do_not_touch_existing_snapshots(
        self, service, repo, sample_subscription, now, monkeypatch
    ):
        starter = catalog.get_plan("starter")
        shrunk = starter.model_copy(
            update={
                "entitlements": starter.entitlements.model_copy(
                    update={"code_executions": 1}
                )
            }
        )
        monkeypatch.setattr(
            catalog, "PLANS", MappingProxyType({**catalog.PLANS, PlanKey.STARTER: shrunk})
        )
        event = events.subscription_updated(
            sample_subscription.stripe_subscription_id,
            occurred_at=now,
            current_period_start=sample_subscription.current_period_start,
            current_period_end=sample_subscription.current_period_end,
            cancel_at_period_end=True,
            price_id="price_starter_monthly_usd",
        )

        await service.apply(event, now=now)

        record = await repo.get(sample_subscription.id)
        assert record.cancel_at_period_end is True
        assert record.entitlements.code_executions == 500
        check = await EntitlementService().check(
            sample_subscription.account_id, "code_execution", now=now
        )
        assert check.limit == 500

    @pytest.mark.asyncio
    async def test_superseded_record_is_ignored(
        self, service, sample_account, subscription_factory, now
    ):
        old = await subscription_factory(
            sample_account.id,
            is_current=False,
            superseded_at=now - timedelta(days=1),
            stripe_subscription_id="sub_old",
        )
        event = events.subscription_updated(
            "sub_old",
            occurred_at=now,
            current_period_start=old.current_period_start,
            current_period_end=old.current_period_end,
            status="canceled",
        )

        result = await service.apply(event, now=now)

        assert result.outcome == ApplyOutcome.IGNORED
        assert result.detail == "subscription superseded"


class TestParkAndReplay:
    """Subscription events that arrive before their checkout."""

    @pytest.mark.asyncio
    async def test_unknown_subscription_is_parked_not_recorded(self, service, now):
        event = events.subscription_updated(
            "sub_early",
            occurred_at=now,
            current_period_start=now,
            current_period_end=now + timedelta(days=30),
        )

        result = await service.apply(event, now=now)

        assert result.outcome == ApplyOutcome.NOT_FOUND
        assert result.parked is True
        assert not await ProcessedEventRepository().is_processed(event.event_id)
        parked = await PendingEventRepository().list_for_subscription("sub_early", now)
        assert [p.event_id for p in parked] == [event.event_id]
        assert parked[0].expires_at == now + timedelta(
            hours=settings.pending_event_ttl_hours
        )

    @pytest.mark.asyncio
    async def test_event_parked_again_on_replay_is_kept(
        self, service, repo, sample_account, now
    ):
        checkout = events.checkout_completed(
            sample_account.id, now, stripe_subscription_id="sub_early"
        )
        early_update = events.subscription_updated(
            "sub_early",
            occurred_at=now,
            current_period_start=checkout.current_period_start,
            current_period_end=checkout.current_period_end,
        )
        await service.apply(early_update, now=now)
        # The checkout is in the ledger but never produced a record
        await ProcessedEventRepository().record(
            checkout.event_id, checkout.kind, ApplyOutcome.IGNORED
        )

        result = await service.apply(checkout, now=now)

        assert result.outcome == ApplyOutcome.DUPLICATE
        assert await repo.get_by_stripe_subscription_id("sub_early") is None
        parked = await PendingEventRepository().list_for_subscription("sub_early", now)
        assert [p.event_id for p in parked] == [early_update.event_id]

    @pytest.mark.asyncio
    async def test_checkout_replays_parked_events(
        self, service, repo, sample_account, now
    ):
        checkout = events.checkout_completed(
            sample_account.id, now, stripe_subscription_id="sub_early"
        )
        early_update = events.subscription_updated(
            "sub_early",
            occurred_at=now + timedelta(seconds=1),
            current_period_start=checkout.current_period_start,
            current_period_end=checkout.current_period_end,
            cancel_at_period_end=True,
        )
        await service.apply(early_update, now=now)

        result = await service.apply(checkout, now=now)

        assert result.outcome == ApplyOutcome.APPLIED
        record = await repo.get_current_by_account_id(sample_account.id)
        assert record.cancel_at_period_end is True
        assert record.version == 2
        assert await ProcessedEventRepository().is_processed(early_update.event_id)
        assert await PendingEventRepository().list_for_subscription("sub_early", now) == []

    @pytest.mark.asyncio
    async def test_parked_delete_cancels_after_checkout(
        self, service, repo, sample_account, now
    ):
        checkout = events.checkout_completed(
            sample_account.id, now, stripe_subscription_id="sub_early"
        )
        await service.apply(
            events.subscription_deleted(
                "sub_early",
                occurred_at=now + timedelta(minutes=1),
                current_period_end=checkout.current_period_end,
            ),
            now=now,
        )

        await service.apply(checkout, now=now)

        record = await repo.get_current_by_account_id(sample_account.id)
        assert record.status == SubscriptionStatus.CANCELED
        account = await AccountService().get_account(sample_account.id)
        assert account.plan_key == "free"

    @pytest.mark.asyncio
    async def test_purge_drops_expired_parked_events(self, service, now):
        pending = PendingEventRepository()
        event = events.subscription_updated(
            "sub_never",
            occurred_at=now,
            current_period_start=now,
            current_period_end=now + timedelta(days=30),
        )
        await service.apply(event, now=now - timedelta(days=2))

        purged = await service.purge_expired_pending_events(now=now)

        assert purged == 1
        assert await pending.list_for_subscription("sub_never", now - timedelta(days=2)) == []


class TestSubscriptionDeleted:
    @pytest.mark.asyncio
    async def test_delete_cancels_and_falls_back_to_free(
        self, service, repo, sample_subscription, now
    ):
        event = events.subscription_deleted(
            sample_subscription.stripe_subscription_id,
            occurred_at=now,
            current_period_end=sample_subscription.current_period_end,
        )

        result = await service.apply(event, now=now)

        assert result.outcome == ApplyOutcome.APPLIED
        record = await repo.get(sample_subscription.id)
        assert record.status == SubscriptionStatus.CANCELED
        assert record.canceled_at == now
        assert record.effective_plan(now) == PlanKey.FREE
        assert record.entitlements == catalog.free_plan().entitlements

        account = await AccountService().get_account(sample_subscription.account_id)
        assert account.plan_key == "free"
        assert account.plan_ends_at is None

    @pytest.mark.asyncio
    async def test_mirror_failure_does_not_fail_the_event(
        self, repo, sample_subscription, now
    ):
        account_service = AccountService()
        account_service.update_entitlement_summary = AsyncMock(
            side_effect=RuntimeError("accounts unavailable")
        )
        service = ReconciliationService(account_service=account_service)

        result = await service.apply(
            events.subscription_deleted(
                sample_subscription.stripe_subscription_id, occurred_at=now
            ),
            now=now,
        )

        assert result.outcome == ApplyOutcome.APPLIED
        assert (await repo.get(sample_subscription.id)).status == SubscriptionStatus.CANCELED

    @pytest.mark.asyncio
    async def test_stale_summary_is_repaired_by_sync(
        self, repo, sample_subscription, now
    ):
        account_id = sample_subscription.account_id
        working = ReconciliationService()
        await working.sync_entitlement_summary(account_id, now)

        broken_accounts = AccountService()
        broken_accounts.update_entitlement_summary = AsyncMock(
            side_effect=RuntimeError("accounts unavailable")
        )
        await ReconciliationService(account_service=broken_accounts).apply(
            events.subscription_deleted(
                sample_subscription.stripe_subscription_id, occurred_at=now
            ),
            now=now,
        )

        # The mirror still shows the paid plan the record no longer grants
        account = await AccountService().get_account(account_id)
        assert account.plan_key == "starter"
        assert "advanced_analytics" in account.entitlement_keys

        summary = await working.sync_entitlement_summary(account_id, now)

        free_keys = catalog.free_plan().entitlements.granted_keys()
        assert summary.plan_key == "free"
        account = await AccountService().get_account(account_id)
        assert account.plan_key == "free"
        assert account.entitlement_keys == free_keys
        assert "advanced_analytics" not in account.entitlement_keys

    @pytest.mark.asyncio
    async def test_stale_summary_is_repaired_by_next_applied_event(
        self, repo, sample_subscription, now
    ):
        account_id = sample_subscription.account_id
        broken_accounts = AccountService()
        broken_accounts.update_entitlement_summary = AsyncMock(
            side_effect=RuntimeError("accounts unavailable")
        )
        working = ReconciliationService()
        await working.sync_entitlement_summary(account_id, now)

        await ReconciliationService(account_service=broken_accounts).apply(
            events.payment_failed(sample_subscription.stripe_customer_id, now),
            now=now,
        )
        assert (await repo.get(sample_subscription.id)).status == (
            SubscriptionStatus.PAST_DUE
        )
        account = await AccountService().get_account(account_id)
        assert account.plan_key == "starter"

        later = now + timedelta(minutes=5)
        result = await working.apply(
            events.subscription_deleted(
                sample_subscription.stripe_subscription_id, occurred_at=later
            ),
            now=later,
        )

        assert result.outcome == ApplyOutcome.APPLIED
        account = await AccountService().get_account(account_id)
        assert account.plan_key == "free"
        assert account.entitlement_keys == (
            catalog.free_plan().entitlements.granted_keys()
        )


class TestPaymentEvents:
    @pytest.mark.asyncio
    async def test_payment_failure_then_recovery(
        self, service, repo, sample_subscription, now
    ):
        failed = events.payment_failed(sample_subscription.stripe_customer_id, now)

        result = await service.apply(failed, now=now)

        assert result.outcome == ApplyOutcome.APPLIED
        record = await repo.get(sample_subscription.id)
        assert record.status == SubscriptionStatus.PAST_DUE
        account = await AccountService().get_account(sample_subscription.account_id)
        assert account.plan_key == "free"

        recovered = events.subscription_updated(
            sample_subscription.stripe_subscription_id,
            occurred_at=now + timedelta(minutes=10),
            current_period_start=sample_subscription.current_period_start,
            current_period_end=sample_subscription.current_period_end,
            status="active",
        )
        result = await service.apply(recovered, now=now + timedelta(minutes=10))

        assert result.outcome == ApplyOutcome.APPLIED
        record = await repo.get(sample_subscription.id)
        assert record.status == SubscriptionStatus.ACTIVE
        account = await AccountService().get_account(sample_subscription.account_id)
        assert account.plan_key == "starter"

    @pytest.mark.asyncio
    async def test_old_payment_failure_is_stale(
        self, service, repo, sample_subscription, now
    ):
        failed = events.payment_failed(
            sample_subscription.stripe_customer_id, now - timedelta(days=30)
        )

        result = await service.apply(failed, now=now)

        assert result.outcome == ApplyOutcome.STALE
        assert (await repo.get(sample_subscription.id)).status == SubscriptionStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_payment_failure_for_unknown_customer(self, service, now):
        result = await service.apply(events.payment_failed("cus_nobody", now), now=now)

        assert result.outcome == ApplyOutcome.NOT_FOUND
        assert result.parked is False
        assert await ProcessedEventRepository().is_processed(result.event_id)

    @pytest.mark.asyncio
    async def test_payment_failure_on_canceled_record_is_ignored(
        self, service, sample_account, subscription_factory, now
    ):
        record = await subscription_factory(
            sample_account.id, status=SubscriptionStatus.CANCELED
        )

        result = await service.apply(
            events.payment_failed(record.stripe_customer_id, now), now=now
        )

        assert result.outcome == ApplyOutcome.IGNORED

    @pytest.mark.asyncio
    async def test_invoice_paid_is_informational(self, service, sample_subscription, now):
        result = await service.apply(
            events.invoice_paid(sample_subscription.stripe_customer_id, now), now=now
        )

        assert result.outcome == ApplyOutcome.IGNORED
        assert await ProcessedEventRepository().is_processed(result.event_id)


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_conflict_is_retried(self, sample_subscription, now):
        flaky = FlakySubscriptionRepository(failures=1)
        service = ReconciliationService(subscription_repo=flaky)

        result = await service.apply(
            events.payment_failed(sample_subscription.stripe_customer_id, now), now=now
        )

        assert result.outcome == ApplyOutcome.APPLIED
        record = await SubscriptionRepository().get(sample_subscription.id)
        assert record.status == SubscriptionStatus.PAST_DUE
        assert record.version == sample_subscription.version + 1

    @pytest.mark.asyncio
    async def test_persistent_conflict_raises_and_records_nothing(
        self, sample_subscription, now
    ):
        flaky = FlakySubscriptionRepository(failures=settings.reconciliation_max_attempts)
        service = ReconciliationService(subscription_repo=flaky)
        event = events.payment_failed(sample_subscription.stripe_customer_id, now)

        with pytest.raises(ConcurrentModificationError):
            await service.apply(event, now=now)

        assert not await ProcessedEventRepository().is_processed(event.event_id)
        record = await SubscriptionRepository().get(sample_subscription.id)
        assert record.status == SubscriptionStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_held_lock_times_out(
        self, service, sample_subscription, memory_lock_provider, now, monkeypatch
    ):
        monkeypatch.setattr(settings, "reconciliation_lock_timeout_seconds", 0.05)
        key = f"billing:sub:{sample_subscription.stripe_subscription_id}"
        await memory_lock_provider.acquire_lock(key)

        with pytest.raises(ConcurrentModificationError):
            await service.apply(
                events.subscription_deleted(
                    sample_subscription.stripe_subscription_id, occurred_at=now
                ),
                now=now,
            )

    @pytest.mark.asyncio
    async def test_locks_are_released_after_apply(
        self, service, sample_account, memory_lock_provider, now
    ):
        await service.apply(events.checkout_completed(sample_account.id, now), now=now)

        assert not await memory_lock_provider.is_locked(
            f"billing:account:{sample_account.id}"
        )
        assert not await memory_lock_provider.is_locked("billing:sub:sub_checkout")


class TestSweep:
    """Expiry of periods that ended without a renewal event."""

    @pytest.mark.asyncio
    async def test_lapsed_paid_records_move_to_past_due_or_expired(
        self,
        service,
        repo,
        sample_account,
        other_account,
        subscription_factory,
        now,
    ):
        lapsed = now - timedelta(hours=settings.subscription_expiry_grace_hours + 1)
        renewing = await subscription_factory(
            sample_account.id, current_period_end=lapsed
        )
        canceling = await subscription_factory(
            other_account.id, current_period_end=lapsed, cancel_at_period_end=True
        )

        result = await service.expire_lapsed_subscriptions(now=now)

        assert result.past_due == 1
        assert result.expired == 1
        assert (await repo.get(renewing.id)).status == SubscriptionStatus.PAST_DUE
        expired = await repo.get(canceling.id)
        assert expired.status == SubscriptionStatus.EXPIRED
        assert expired.canceled_at == now
        account = await AccountService().get_account(other_account.id)
        assert account.plan_key == "free"

    @pytest.mark.asyncio
    async def test_records_within_grace_are_left_alone(
        self, service, repo, sample_account, subscription_factory, now
    ):
        record = await subscription_factory(
            sample_account.id, current_period_end=now - timedelta(hours=1)
        )

        result = await service.expire_lapsed_subscriptions(now=now)

        assert result.past_due == 0
        assert (await repo.get(record.id)).status == SubscriptionStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_free_windows_roll_forward(
        self, service, repo, sample_account, subscription_factory, now
    ):
        ended = now - timedelta(days=1)
        record = await subscription_factory(
            sample_account.id,
            plan=PlanKey.FREE,
            current_period_start=ended - timedelta(days=30),
            current_period_end=ended,
            code_executions_used=30,
            projects_created=1,
        )

        result = await service.expire_lapsed_subscriptions(now=now)

        assert result.free_windows_rolled == 1
        rolled = await repo.get(record.id)
        assert rolled.current_period_start == ended
        assert rolled.current_period_end == ended + timedelta(
            days=settings.free_usage_period_days
        )
        assert rolled.code_executions_used == 0
        assert rolled.projects_created == 1
        assert rolled.status == SubscriptionStatus.ACTIVE
