from typing import Optional
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from core.security import verify_access_token
from core.exceptions import credentials_exception, forbidden_exception
from database import db
from models.common import OrderStatus, UserRole, UserType

bearer_scheme = HTTPBearer(auto_error=False)

_USER_TYPES = {t.value for t in UserType}


async def resolve_user_type(user: dict) -> str:
    """
    Customer segment matched against a coupon's `user_types`.
    An explicit segment on the account wins (premium is only ever set by hand);
    otherwise a customer without a delivered order is still "new".
    """
    stored = (user.get("user_type") or "").strip().lower()
    if stored in _USER_TYPES:
        return stored

    delivered = await db.orders.find_one(
        {"user_id": user["user_id"], "status": OrderStatus.DELIVERED.value}, {"_id": 1},
    )
    return UserType.EXISTING.value if delivered else UserType.NEW.value


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> dict:
    if not credentials:
        raise credentials_exception()
    payload = verify_access_token(credentials.credentials)
    if not payload or not payload.get("sub"):
        raise credentials_exception()

    user = await db.users.find_one({"user_id": payload["sub"]}, {"_id": 0})
    if not user:
        raise credentials_exception()
    if not user.get("is_active", True):
        raise forbidden_exception("Account disabled")

    user["user_type"] = await resolve_user_type(user)
    return user


def require_role(*roles: UserRole):
    """Depends(require_role(UserRole.ADMIN, ...)): current user must hold one of the roles."""
    allowed = {r.value for r in roles}

    async def _check(current_user: dict = Depends(get_current_user)) -> dict:
        if current_user.get("role") not in allowed:
            raise forbidden_exception()
        return current_user
    return _check


require_admin = require_role(UserRole.ADMIN, UserRole.SUPERADMIN)
