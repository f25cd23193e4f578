"""Domain models for billing plans."""

from typing import Optional
from pydantic import BaseModel, ConfigDict

from packages.billing.models.domain.enums import (
    BillingCycle,
    Capability,
    Currency,
    PlanKey,
)

# Capability -> Entitlements field holding its limit or flag
_LIMIT_FIELDS = {
    Capability.CREATE_PROJECT: "max_projects",
    Capability.AI_TUTOR: "ai_tutor_minutes",
    Capability.CODE_EXECUTION: "code_executions",
}
_FLAG_FIELDS = {
    Capability.PRIORITY_SUPPORT: "priority_support",
    Capability.ADVANCED_ANALYTICS: "advanced_analytics",
    Capability.SSO: "sso_enabled",
    Capability.API: "api_access",
    Capability.WHITE_LABELING: "white_labeling",
    Capability.DEDICATED_MANAGER: "dedicated_manager",
}


class Entitlements(BaseModel):
    """
    Entitlement bundle of a plan.

    Copied onto a subscription as a value snapshot when it is provisioned,
    so later catalog edits never change what a subscriber already has.
    """

    model_config = ConfigDict(frozen=True)

    max_projects: int
    max_collaborators: int
    ai_tutor_minutes: int
    code_executions: int
    storage_gb: int
    custom_domains: int
    priority_support: bool = False
    advanced_analytics: bool = False
    sso_enabled: bool = False
    api_access: bool = False
    white_labeling: bool = False
    dedicated_manager: bool = False

    def limit_for(self, capability: Capability) -> int:
        """Limit for a metered capability, in the unit its counter uses."""
        if capability == Capability.STORAGE:
            return self.storage_gb * 1024
        return getattr(self, _LIMIT_FIELDS[capability])

    def flag_for(self, capability: Capability) -> bool:
        return bool(getattr(self, _FLAG_FIELDS[capability]))

    def granted_keys(self) -> list[str]:
        """Names of granted entitlements: true flags and non-zero limits."""
        return [name for name, value in self.model_dump().items() if value]


class Plan(BaseModel):
    """A catalog entry. Immutable at runtime."""

    model_config = ConfigDict(frozen=True)

    key: PlanKey
    name: str
    description: str
    prices_cents: dict[BillingCycle, int]
    # cycle -> currency -> processor price id; a missing entry is not purchasable
    price_ids: dict[BillingCycle, dict[Currency, str]] = {}
    trial_days: int = 0
    entitlements: Entitlements

    def price_cents(self, cycle: BillingCycle) -> int:
        return self.prices_cents[cycle]

    def price_id(self, cycle: BillingCycle, currency: Currency) -> Optional[str]:
        return self.price_ids.get(cycle, {}).get(currency)


class PlanPrice(BaseModel):
    billing_cycle: BillingCycle
    price_cents: int
    price_formatted: str
    currencies: list[Currency]


class PlanInfo(BaseModel):
    """Public view of a plan for the pricing page."""

    key: PlanKey
    name: str
    description: str
    prices: list[PlanPrice]
    trial_days: int
    entitlements: Entitlements
    features: list[str]


class PlansResponse(BaseModel):
    """Response model for plans endpoint."""

    plans: list[PlanInfo]
