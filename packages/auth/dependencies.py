from typing import Annotated, Optional
from fastapi import Depends, HTTPException, status, Header

from common.core.otel_axiom_exporter import trace_span, get_logger
from packages.auth.models.domain.authenticated_user import AuthenticatedUser

logger = get_logger(__name__)

ADMIN_ROLE = "admin"


@trace_span
async def get_current_user(
    x_account_id: Annotated[Optional[str], Header()] = None,
    x_user_id: Annotated[Optional[str], Header()] = None,
    x_account_role: Annotated[Optional[str], Header()] = None,
) -> AuthenticatedUser:
    """
    Get the caller from identity headers set by the upstream auth layer.

    Tokens are verified before requests reach this service; only the
    resolved identity is forwarded.
    """
    if not x_account_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing account identity",
        )

    try:
        account_id = int(x_account_id)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid account identity",
        )

    return AuthenticatedUser(
        account_id=account_id,
        user_id=x_user_id,
        is_admin=(x_account_role or "").lower() == ADMIN_ROLE,
    )


@trace_span
async def get_current_admin_user(
    current_user: AuthenticatedUser = Depends(get_current_user),
) -> AuthenticatedUser:
    """Get current admin user."""
    if not current_user.is_admin:
        logger.warning(
            f"Non-admin access attempt by account {current_user.account_id}",
            extra={"account_id": current_user.account_id},
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN, detail="Not enough permissions"
        )
    return current_user
