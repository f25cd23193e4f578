from typing import Optional

from pydantic import BaseModel


class AuthenticatedUser(BaseModel):
    """Caller identity forwarded by the upstream auth layer"""

    account_id: int
    user_id: Optional[str] = None
    is_admin: bool = False

    class Config:
        from_attributes = True
