"""FastAPI dependencies for authentication."""
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from gymledger.accounting.errors import AuthenticationError, AuthorizationError
from gymledger.database import get_db
from gymledger.models import Profile
from gymledger.auth.utils import decode_access_token

# HTTP Bearer token security scheme
security = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: AsyncSession = Depends(get_db)
) -> Profile:
    """
    Resolve the bearer token to a profile.

    A token scoped to a gym (gym_id claim) is only accepted for a profile of
    that gym.
    """
    if not credentials:
        raise AuthenticationError("Not authenticated")

    payload = decode_access_token(credentials.credentials)
    if not payload:
        raise AuthenticationError("Invalid or expired token")

    result = await db.execute(select(Profile).where(Profile.id == payload["sub"]))
    profile = result.scalar_one_or_none()
    if not profile:
        raise AuthenticationError("User not found")

    token_gym = payload.get("gym_id")
    if token_gym and token_gym != profile.gym_id:
        raise AuthenticationError("Token does not belong to this gym")

    return profile


def require_admin(
    current_user: Profile = Depends(get_current_user)
) -> Profile:
    """Admins of a gym only; 403 for other roles or a profile with no gym."""
    if not current_user.is_admin or not current_user.gym_id:
        raise AuthorizationError("Admin access required")
    return current_user
