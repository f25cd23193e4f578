"""
Service for the product-facing subscription operations.
"""

from datetime import datetime
from typing import Optional

from common.core.config import settings
from common.core.dates import utcnow
from common.core.exceptions import NotFoundError
from common.core.otel_axiom_exporter import trace_span, get_logger
from common.db.scoped import transaction
from packages.accounts.services.account_service import AccountService
from packages.billing import catalog
from packages.billing.exceptions import (
    BillingValidationError,
    ConcurrentModificationError,
    SubscriptionNotFoundError,
)
from packages.billing.models.domain.enums import (
    BillingCycle,
    Currency,
    PlanKey,
    SubscriptionStatus,
)
from packages.billing.models.domain.plans import PlansResponse
from packages.billing.models.domain.subscription import Subscription
from packages.billing.models.schemas.billing import SubscriptionResponse
from packages.billing.providers.payment.factory import get_payment_provider
from packages.billing.providers.payment.interface import CheckoutSession
from packages.billing.repositories.subscription_repository import SubscriptionRepository

logger = get_logger(__name__)


def _default_success_url() -> str:
    # Stripe substitutes the session id placeholder on redirect
    return f"{settings.frontend_url}/billing/success?session_id={{CHECKOUT_SESSION_ID}}"


class SubscriptionService:
    """Service for subscription management."""

    def __init__(
        self,
        subscription_repo: Optional[SubscriptionRepository] = None,
        account_service: Optional[AccountService] = None,
    ):
        self.subscription_repo = subscription_repo or SubscriptionRepository()
        self.account_service = account_service or AccountService()
        self.payment = get_payment_provider()

    def list_plans(self) -> PlansResponse:
        return catalog.plans_response()

    @trace_span
    async def start_checkout(
        self,
        account_id: int,
        plan: str,
        billing_cycle: BillingCycle,
        currency: Currency,
        success_url: Optional[str] = None,
        cancel_url: Optional[str] = None,
    ) -> CheckoutSession:
        """
        Create a processor checkout for a purchasable plan.

        Nothing is written locally for the subscription itself; the record
        is created when the processor reports the completed checkout.

        Raises:
            BillingValidationError: unknown or non-purchasable plan (before any
                processor call)
            ProcessorUnavailableError: processor call failed
        """
        price_id = catalog.price_id_for(plan, billing_cycle, currency)
        selected = catalog.get_plan(plan)

        account = await self.account_service.get_account(account_id)
        if account is None:
            raise NotFoundError(f"Account {account_id} not found")

        current = await self.subscription_repo.get_current_by_account_id(account_id)
        if current and current.is_paid() and current.in_good_standing(utcnow()):
            raise BillingValidationError(
                f"Account already has an active {current.plan.value} subscription"
            )

        customer_id = account.stripe_customer_id
        if not customer_id:
            customer_id = await self.payment.create_customer(
                account_id=account_id, name=account.name, email=account.email
            )
            await self.account_service.set_stripe_customer_id(account_id, customer_id)

        session = await self.payment.create_checkout_session(
            account_id=account_id,
            customer_id=customer_id,
            price_id=price_id,
            metadata={
                "account_id": str(account_id),
                "plan": selected.key.value,
                "billing_cycle": billing_cycle.value,
                "currency": currency.value,
            },
            success_url=success_url or _default_success_url(),
            cancel_url=cancel_url or f"{settings.frontend_url}/pricing",
            trial_period_days=selected.trial_days,
        )

        logger.info(
            f"Created checkout session for account {account_id}",
            extra={
                "account_id": account_id,
                "plan": selected.key.value,
                "billing_cycle": billing_cycle.value,
                "currency": currency.value,
            },
        )
        return session

    @trace_span
    async def get_subscription(
        self, account_id: int, now: Optional[datetime] = None
    ) -> SubscriptionResponse:
        """Current subscription view; the free defaults when there is no record."""
        now = now or utcnow()
        free = catalog.free_plan()
        record = await self.subscription_repo.get_current_by_account_id(account_id)

        if record is None:
            return SubscriptionResponse(
                account_id=account_id,
                plan=PlanKey.FREE,
                effective_plan=PlanKey.FREE,
                status=SubscriptionStatus.ACTIVE,
                is_active=True,
                days_remaining=0,
                billing_cycle=BillingCycle.MONTHLY,
                currency=Currency.USD,
                amount_cents=0,
                entitlements=free.entitlements,
            )

        return SubscriptionResponse(
            account_id=account_id,
            plan=record.plan,
            effective_plan=record.effective_plan(now),
            status=record.status,
            is_active=record.is_active(now),
            days_remaining=record.days_remaining(now),
            billing_cycle=record.billing_cycle,
            currency=record.currency,
            amount_cents=record.amount_cents,
            current_period_start=record.current_period_start,
            current_period_end=record.current_period_end,
            trial_end=record.trial_end,
            canceled_at=record.canceled_at,
            cancel_at_period_end=record.cancel_at_period_end,
            entitlements=record.effective_entitlements(now, free.entitlements),
        )

    @trace_span
    async def cancel_subscription(self, account_id: int) -> Subscription:
        """
        Cancel at period end through the processor, then record it locally.

        Raises:
            SubscriptionNotFoundError: no active paid subscription
            ProcessorUnavailableError: processor call failed; nothing recorded
        """
        record = await self.subscription_repo.get_current_by_account_id(account_id)
        if (
            record is None
            or not record.is_paid()
            or not record.stripe_subscription_id
            or not record.status.in_good_standing()
        ):
            raise SubscriptionNotFoundError(
                f"Account {account_id} has no active paid subscription"
            )

        await self.payment.update_subscription(
            record.stripe_subscription_id, cancel_at_period_end=True
        )

        attempts = 0
        while not record.cancel_at_period_end:
            attempts += 1
            if attempts > settings.reconciliation_max_attempts:
                raise ConcurrentModificationError(
                    f"Could not record cancellation for subscription {record.id}"
                )
            try:
                async with transaction():
                    record = await self.subscription_repo.compare_and_swap(
                        record.id, record.version, {"cancel_at_period_end": True}
                    )
            except ConcurrentModificationError:
                # A webhook updated the record; re-read and try again
                record = await self.subscription_repo.get(record.id)

        logger.info(
            f"Subscription {record.id} set to cancel at period end",
            extra={"subscription_id": record.id, "account_id": account_id},
        )
        return record
