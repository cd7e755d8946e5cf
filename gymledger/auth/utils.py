"""JWT handling for admin bearer tokens.

Tokens are issued by the membership service with the shared SECRET_KEY; this
backend only needs to verify them. create_access_token exists for local
tooling and tests.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional
from jose import JWTError, ExpiredSignatureError, jwt
import logging

from gymledger.config import settings

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_HOURS = 12


def create_access_token(profile_id: str, email: str, gym_id: Optional[str] = None) -> str:
    now = datetime.now(timezone.utc)
    claims = {
        "sub": profile_id,
        "email": email,
        "iat": now,
        "exp": now + timedelta(hours=ACCESS_TOKEN_EXPIRE_HOURS),
    }
    if gym_id:
        claims["gym_id"] = gym_id
    return jwt.encode(claims, settings.SECRET_KEY, algorithm=ALGORITHM)


def decode_access_token(token: str) -> Optional[dict]:
    """Verified claims, or None for an expired, forged or subject-less token."""
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[ALGORITHM])
    except ExpiredSignatureError:
        logger.info("Rejected expired access token")
        return None
    except JWTError:
        return None

    if not payload.get("sub"):
        return None
    return payload
