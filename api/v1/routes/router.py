from fastapi import APIRouter, Depends

from packages.auth.dependencies import get_current_user
from packages.billing.routes import billing, webhooks, plans

api_router = APIRouter()

# Webhooks (no auth - signature verified internally)
api_router.include_router(webhooks.router, tags=["webhooks"])

# Plans (no auth - public pricing info)
api_router.include_router(plans.router, prefix="/billing/plans", tags=["billing"])

# Billing routes (require forwarded identity)
api_router.include_router(
    billing.router,
    prefix="/billing",
    tags=["billing"],
    dependencies=[Depends(get_current_user)],
)
