"""
Plans API routes.

Public endpoint for retrieving available subscription plans.
"""

from fastapi import APIRouter

from packages.billing.models.domain.plans import PlansResponse
from packages.billing.services.subscription_service import SubscriptionService

router = APIRouter()


@router.get("", response_model=PlansResponse)
async def get_plans():
    """
    Get all available subscription plans.

    Returns prices, limits and features for each plan from the static
    catalog. This endpoint is public (no auth required) for pricing pages.
    """
    return SubscriptionService().list_plans()
