from fastapi import Request, HTTPException, status
from typing import Optional
import logging
from auth import decode_access_token, claims_actor
from models.user import UserRole

logger = logging.getLogger(__name__)

ROLE_RANK = {
    UserRole.ROLE_CLIENT.value: 1,
    UserRole.ROLE_CLIENT_ADMIN.value: 2,
    UserRole.ROLE_ADMIN.value: 3,
}


def _bearer_token(request: Request) -> Optional[str]:
    auth_header = request.headers.get("Authorization") or ""
    scheme, _, token = auth_header.partition(" ")
    if scheme != "Bearer" or not token:
        return None
    return token.strip()


async def get_current_user(request: Request) -> Optional[dict]:
    """Claims of the bearer token, or None when absent or invalid."""
    token = _bearer_token(request)
    return decode_access_token(token) if token else None


async def require_auth(request: Request) -> dict:
    user = await get_current_user(request)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated"
        )
    return user


async def require_role(request: Request, required_role: UserRole) -> dict:
    """Require at least `required_role` (admin outranks client admin outranks client)."""
    user = await require_auth(request)
    user_role = user.get("role")

    if ROLE_RANK.get(user_role, 0) < ROLE_RANK[required_role.value]:
        logger.warning(f"Insufficient role {user_role} for {request.url.path}")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Insufficient permissions"
        )
    return user


async def admin_route_guard(request: Request) -> dict:
    """Guard for the form builder endpoints."""
    return await require_role(request, UserRole.ROLE_ADMIN)


def actor_id(user: dict) -> Optional[str]:
    return claims_actor(user)
