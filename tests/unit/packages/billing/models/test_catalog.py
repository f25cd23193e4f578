"""
Unit tests for the plan catalog and billing domain models.
"""

from datetime import timedelta

import pytest
from pydantic import ValidationError as PydanticValidationError

from packages.billing import catalog
from packages.billing.exceptions import BillingValidationError
from packages.billing.models.domain.enums import (
    BillingCycle,
    Capability,
    Currency,
    PlanKey,
    SubscriptionStatus,
)
from packages.billing.models.domain.subscription import SubscriptionUpdateModel


class TestCatalog:
    """Tests for static plan lookups."""

    def test_every_plan_key_has_a_plan(self):
        assert set(catalog.PLANS) == set(PlanKey)

    def test_catalog_is_read_only(self):
        with pytest.raises(TypeError):
            catalog.PLANS[PlanKey.FREE] = catalog.PLANS[PlanKey.PRO]

    def test_plans_are_frozen(self):
        with pytest.raises(PydanticValidationError):
            catalog.free_plan().trial_days = 30

    def test_get_plan_unknown_key(self):
        with pytest.raises(BillingValidationError):
            catalog.get_plan("platinum")

    def test_find_plan_unknown_key(self):
        assert catalog.find_plan("platinum") is None
        assert catalog.find_plan("pro").key == PlanKey.PRO

    def test_price_id_for_purchasable_combination(self):
        price_id = catalog.price_id_for("starter", BillingCycle.YEARLY, Currency.EUR)
        assert price_id == "price_starter_yearly_eur"

    @pytest.mark.parametrize(
        "plan,cycle,currency",
        [
            ("free", BillingCycle.MONTHLY, Currency.USD),
            ("enterprise", BillingCycle.MONTHLY, Currency.USD),
            ("pro", BillingCycle.MONTHLY, Currency.BRL),
        ],
    )
    def test_price_id_for_non_purchasable(self, plan, cycle, currency):
        with pytest.raises(BillingValidationError):
            catalog.price_id_for(plan, cycle, currency)

    def test_resolve_price_round_trips_price_ids(self):
        plan, cycle, currency = catalog.resolve_price("price_pro_monthly_usd")
        assert plan.key == PlanKey.PRO
        assert cycle == BillingCycle.MONTHLY
        assert currency == Currency.USD
        assert catalog.resolve_price("price_unknown") is None

    @pytest.mark.parametrize(
        "amount,cycle,expected",
        [
            (1900, BillingCycle.MONTHLY, 1900),
            (19000, BillingCycle.YEARLY, 1583),  # 1583.33 rounds down
            (49000, BillingCycle.YEARLY, 4083),
            (18, BillingCycle.YEARLY, 2),  # 1.5 rounds half-up
            (0, BillingCycle.YEARLY, 0),
        ],
    )
    def test_compute_mrr_cents(self, amount, cycle, expected):
        assert catalog.compute_mrr_cents(amount, cycle) == expected

    def test_plans_response_lists_every_plan(self):
        response = catalog.plans_response()
        keys = [plan.key for plan in response.plans]
        assert keys == [PlanKey.FREE, PlanKey.STARTER, PlanKey.PRO, PlanKey.ENTERPRISE]

        starter = response.plans[1]
        assert starter.trial_days == catalog.TRIAL_DAYS
        monthly = next(p for p in starter.prices if p.billing_cycle == BillingCycle.MONTHLY)
        assert monthly.price_formatted == "$19/mo"
        assert monthly.currencies == [Currency.EUR, Currency.USD]


class TestEntitlements:
    def test_storage_limit_is_in_megabytes(self):
        entitlements = catalog.get_plan("starter").entitlements
        assert entitlements.limit_for(Capability.STORAGE) == 10 * 1024

    def test_flags(self):
        pro = catalog.get_plan("pro").entitlements
        assert pro.flag_for(Capability.API) is True
        assert pro.flag_for(Capability.SSO) is False

    def test_granted_keys_skip_zero_limits_and_false_flags(self):
        keys = catalog.free_plan().entitlements.granted_keys()
        assert "max_projects" in keys
        assert "max_collaborators" not in keys
        assert "priority_support" not in keys


class TestSubscriptionStatus:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("active", SubscriptionStatus.ACTIVE),
            ("trialing", SubscriptionStatus.TRIALING),
            ("past_due", SubscriptionStatus.PAST_DUE),
            ("canceled", SubscriptionStatus.CANCELED),
            ("cancelled", SubscriptionStatus.CANCELED),
            ("incomplete_expired", SubscriptionStatus.EXPIRED),
            ("unpaid", SubscriptionStatus.PAST_DUE),
            ("incomplete", SubscriptionStatus.PAST_DUE),
        ],
    )
    def test_from_processor(self, raw, expected):
        assert SubscriptionStatus.from_processor(raw) == expected

    def test_good_standing(self):
        assert SubscriptionStatus.ACTIVE.in_good_standing()
        assert SubscriptionStatus.TRIALING.in_good_standing()
        assert not SubscriptionStatus.PAST_DUE.in_good_standing()
        assert not SubscriptionStatus.CANCELED.in_good_standing()


@pytest.mark.asyncio
class TestSubscriptionDerivedFields:
    """Derived predicates are computed from stored fields and `now`."""

    async def test_active_within_period(self, sample_subscription, now):
        assert sample_subscription.is_active(now)
        assert sample_subscription.in_good_standing(now)
        assert sample_subscription.days_remaining(now) == 20
        assert sample_subscription.effective_plan(now) == PlanKey.STARTER

    async def test_lapsed_period_falls_back_to_free(self, sample_subscription, now):
        later = sample_subscription.current_period_end + timedelta(seconds=1)
        free = catalog.free_plan().entitlements

        assert not sample_subscription.is_active(later)
        assert sample_subscription.days_remaining(later) == 0
        assert sample_subscription.effective_plan(later) == PlanKey.FREE
        assert sample_subscription.effective_entitlements(later, free) == free

    async def test_days_remaining_rounds_partial_days_up(self, sample_subscription):
        almost = sample_subscription.current_period_end - timedelta(hours=1)
        assert sample_subscription.days_remaining(almost) == 1

    async def test_past_due_is_not_active(
        self, sample_account, subscription_factory, now
    ):
        record = await subscription_factory(
            sample_account.id, status=SubscriptionStatus.PAST_DUE
        )
        assert not record.is_active(now)
        assert record.effective_plan(now) == PlanKey.FREE

    async def test_update_model_diff_ignores_unchanged_fields(self, sample_subscription):
        update = SubscriptionUpdateModel(
            status=SubscriptionStatus.ACTIVE,
            current_period_end=sample_subscription.current_period_end,
            cancel_at_period_end=True,
        )
        assert update.changes_against(sample_subscription) == {
            "cancel_at_period_end": True
        }
