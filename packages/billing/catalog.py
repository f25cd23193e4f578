"""
Plan catalog.

Static plan definitions loaded once at import. Nothing mutates them at
runtime; subscriptions keep their own entitlement snapshot.
"""

from types import MappingProxyType
from typing import Mapping, Optional

from packages.billing.exceptions import BillingValidationError
from packages.billing.models.domain.enums import BillingCycle, Currency, PlanKey
from packages.billing.models.domain.plans import (
    Entitlements,
    Plan,
    PlanInfo,
    PlanPrice,
    PlansResponse,
)

UNLIMITED = 999999
TRIAL_DAYS = 14


def _price_ids(plan: str) -> dict[BillingCycle, dict[Currency, str]]:
    return {
        cycle: {
            currency: f"price_{plan}_{cycle.value}_{currency.value.lower()}"
            for currency in (Currency.USD, Currency.EUR)
        }
        for cycle in BillingCycle
    }


_PLANS = (
    Plan(
        key=PlanKey.FREE,
        name="Free",
        description="Perfect for getting started",
        prices_cents={BillingCycle.MONTHLY: 0, BillingCycle.YEARLY: 0},
        entitlements=Entitlements(
            max_projects=3,
            max_collaborators=0,
            ai_tutor_minutes=10,
            code_executions=50,
            storage_gb=1,
            custom_domains=0,
        ),
    ),
    Plan(
        key=PlanKey.STARTER,
        name="Starter",
        description="For individual learners and hobbyists",
        prices_cents={BillingCycle.MONTHLY: 1900, BillingCycle.YEARLY: 19000},
        price_ids=_price_ids("starter"),
        trial_days=TRIAL_DAYS,
        entitlements=Entitlements(
            max_projects=10,
            max_collaborators=2,
            ai_tutor_minutes=100,
            code_executions=500,
            storage_gb=10,
            custom_domains=1,
            advanced_analytics=True,
        ),
    ),
    Plan(
        key=PlanKey.PRO,
        name="Pro",
        description="For professionals and small teams",
        prices_cents={BillingCycle.MONTHLY: 4900, BillingCycle.YEARLY: 49000},
        price_ids=_price_ids("pro"),
        trial_days=TRIAL_DAYS,
        entitlements=Entitlements(
            max_projects=50,
            max_collaborators=10,
            ai_tutor_minutes=500,
            code_executions=5000,
            storage_gb=100,
            custom_domains=5,
            priority_support=True,
            advanced_analytics=True,
            api_access=True,
        ),
    ),
    Plan(
        key=PlanKey.ENTERPRISE,
        name="Enterprise",
        description="For organizations that need scale and control",
        prices_cents={BillingCycle.MONTHLY: 49900, BillingCycle.YEARLY: 499000},
        entitlements=Entitlements(
            max_projects=UNLIMITED,
            max_collaborators=UNLIMITED,
            ai_tutor_minutes=UNLIMITED,
            code_executions=UNLIMITED,
            storage_gb=1000,
            custom_domains=UNLIMITED,
            priority_support=True,
            advanced_analytics=True,
            sso_enabled=True,
            api_access=True,
            white_labeling=True,
            dedicated_manager=True,
        ),
    ),
)

PLANS: Mapping[PlanKey, Plan] = MappingProxyType({plan.key: plan for plan in _PLANS})

# price id -> (plan, cycle, currency)
_PRICE_INDEX = MappingProxyType(
    {
        price_id: (plan, cycle, currency)
        for plan in _PLANS
        for cycle, by_currency in plan.price_ids.items()
        for currency, price_id in by_currency.items()
    }
)


def get_plan(key) -> Plan:
    """Look up a plan by key. Unknown keys raise BillingValidationError."""
    try:
        return PLANS[PlanKey(key)]
    except ValueError:
        raise BillingValidationError(f"Unknown plan: {key}")


def find_plan(key) -> Optional[Plan]:
    try:
        return PLANS[PlanKey(key)]
    except ValueError:
        return None


def free_plan() -> Plan:
    return PLANS[PlanKey.FREE]


def list_plans() -> list[Plan]:
    return list(PLANS.values())


def price_id_for(plan_key, cycle: BillingCycle, currency: Currency) -> str:
    """Processor price id for a purchasable combination."""
    plan = get_plan(plan_key)
    price_id = plan.price_id(cycle, currency)
    if price_id is None:
        raise BillingValidationError(
            f"Plan {plan.key.value} is not purchasable for {cycle.value}/{currency.value}"
        )
    return price_id


def resolve_price(price_id: str) -> Optional[tuple[Plan, BillingCycle, Currency]]:
    return _PRICE_INDEX.get(price_id)


def compute_mrr_cents(amount_cents: int, cycle: BillingCycle) -> int:
    """Monthly recurring revenue contribution; yearly amounts spread over 12."""
    if amount_cents <= 0:
        return 0
    if cycle == BillingCycle.YEARLY:
        # Half-up rounding to the nearest cent
        return (amount_cents + 6) // 12
    return amount_cents


def _format_price(cents: int, cycle: BillingCycle) -> str:
    if cents == 0:
        return "$0"
    suffix = "mo" if cycle == BillingCycle.MONTHLY else "yr"
    return f"${cents / 100:,.0f}/{suffix}"


def plan_info(plan: Plan) -> PlanInfo:
    return PlanInfo(
        key=plan.key,
        name=plan.name,
        description=plan.description,
        prices=[
            PlanPrice(
                billing_cycle=cycle,
                price_cents=cents,
                price_formatted=_format_price(cents, cycle),
                currencies=sorted(plan.price_ids.get(cycle, {}).keys()),
            )
            for cycle, cents in plan.prices_cents.items()
        ],
        trial_days=plan.trial_days,
        entitlements=plan.entitlements,
        features=plan.entitlements.granted_keys(),
    )


def plans_response() -> PlansResponse:
    return PlansResponse(plans=[plan_info(plan) for plan in _PLANS])
