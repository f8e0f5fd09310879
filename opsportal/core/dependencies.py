# opsportal/core/dependencies.py

"""
Request-scoped dependencies shared by the routers.

Authentication happens upstream: the auth middleware places the caller on
``request.state.user`` before any export endpoint runs.
"""

from dataclasses import dataclass
from typing import Any, Optional

from fastapi import HTTPException, Request, status


@dataclass(frozen=True)
class CurrentUser:
    id: str
    # Set for customer-portal users; their exports only see their own records
    customer_id: Optional[str] = None


def _as_current_user(user: Any) -> CurrentUser:
    if isinstance(user, CurrentUser):
        return user
    if isinstance(user, dict):
        user_id, customer_id = user.get("id"), user.get("customer_id")
    else:
        user_id, customer_id = getattr(user, "id", None), getattr(user, "customer_id", None)
    if user_id is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    return CurrentUser(
        id=str(user_id),
        customer_id=str(customer_id) if customer_id is not None else None,
    )


def get_current_user(request: Request) -> CurrentUser:
    """Caller identity set by the auth middleware, or 401."""
    user = getattr(request.state, "user", None)
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    return _as_current_user(user)
