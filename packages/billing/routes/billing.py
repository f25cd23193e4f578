"""
Billing API routes.

Protected endpoints for subscription, usage and entitlement queries. The
caller's account comes from the forwarded identity.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from common.providers.rate_limiter.limiter import limiter
from packages.auth.dependencies import get_current_admin_user, get_current_user
from packages.auth.models.domain.authenticated_user import AuthenticatedUser
from packages.billing.models.domain.revenue import RevenueMetrics
from packages.billing.models.domain.usage import EntitlementCheck, UsageStats
from packages.billing.models.schemas.billing import (
    CancelSubscriptionResponse,
    CheckoutSessionRequest,
    CheckoutSessionResponse,
    SubscriptionResponse,
)
from packages.billing.services.entitlement_service import EntitlementService
from packages.billing.services.revenue_service import RevenueService
from packages.billing.services.subscription_service import SubscriptionService

router = APIRouter()


# ============================================================================
# Subscription
# ============================================================================


@router.get("/subscription", response_model=SubscriptionResponse)
async def get_subscription(
    current_user: AuthenticatedUser = Depends(get_current_user),
):
    """
    Get the account's current subscription.

    Accounts that never subscribed get the free plan view.
    """
    return await SubscriptionService().get_subscription(current_user.account_id)


@router.post("/checkout", response_model=CheckoutSessionResponse)
@limiter.limit("10/minute")
async def create_checkout_session(
    request: Request,
    checkout: CheckoutSessionRequest,
    current_user: AuthenticatedUser = Depends(get_current_user),
):
    """
    Create a Stripe checkout session for a paid plan.

    The subscription itself is recorded when Stripe reports the completed
    checkout through the webhook.
    """
    session = await SubscriptionService().start_checkout(
        account_id=current_user.account_id,
        plan=checkout.plan,
        billing_cycle=checkout.billing_cycle,
        currency=checkout.currency,
        success_url=str(checkout.success_url) if checkout.success_url else None,
        cancel_url=str(checkout.cancel_url) if checkout.cancel_url else None,
    )
    return CheckoutSessionResponse(session_id=session.session_id, checkout_url=session.url)


@router.post("/cancel", response_model=CancelSubscriptionResponse)
async def cancel_subscription(
    current_user: AuthenticatedUser = Depends(get_current_user),
):
    """
    Cancel the paid subscription at the end of the current period.

    Access continues until the period ends.
    """
    record = await SubscriptionService().cancel_subscription(current_user.account_id)
    return CancelSubscriptionResponse(
        success=True,
        message="Subscription will cancel at the end of the billing period.",
        cancel_at_period_end=record.cancel_at_period_end,
        access_until=record.current_period_end,
    )


# ============================================================================
# Usage & Entitlements
# ============================================================================


@router.get("/usage", response_model=UsageStats)
async def get_usage(
    current_user: AuthenticatedUser = Depends(get_current_user),
):
    """Usage, limits and percentages for every metered capability."""
    return await EntitlementService().get_usage(current_user.account_id)


@router.get("/entitlements/{capability}", response_model=EntitlementCheck)
async def check_entitlement(
    capability: str,
    current_user: AuthenticatedUser = Depends(get_current_user),
):
    """Whether the account may use a capability right now."""
    return await EntitlementService().check(current_user.account_id, capability)


# ============================================================================
# Revenue (admin)
# ============================================================================


@router.get("/metrics", response_model=RevenueMetrics)
async def get_revenue_metrics(
    window_months: Optional[int] = Query(None, description="Churn window in months"),
    current_user: AuthenticatedUser = Depends(get_current_admin_user),
):
    """MRR, ARR and churn over the current subscription records."""
    return await RevenueService().get_metrics(window_months)
