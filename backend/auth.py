from jose import JWTError, jwt
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict
import os

JWT_SECRET = os.getenv("JWT_SECRET", "your-secret-key-change-in-production")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRATION_HOURS = int(os.getenv("JWT_EXPIRATION_HOURS", "24"))

# Claims that may carry the caller's identity, most specific first
ACTOR_CLAIMS = ("portal_user_id", "sub")


def create_access_token(data: Dict, expires_delta: Optional[timedelta] = None) -> str:
    """Issue a token for an admin or service caller (used by tests and ops tooling).

    Tokens are normally issued by the identity service; this service only
    needs to verify them.
    """
    expires_delta = expires_delta or timedelta(hours=JWT_EXPIRATION_HOURS)
    claims = {**data, "exp": datetime.now(timezone.utc) + expires_delta}
    return jwt.encode(claims, JWT_SECRET, algorithm=JWT_ALGORITHM)


def decode_access_token(token: str) -> Optional[Dict]:
    """Verified claims, or None for a bad, expired or identity-less token."""
    try:
        claims = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except JWTError:
        return None
    if not claims_actor(claims):
        return None
    return claims


def claims_actor(claims: Dict) -> Optional[str]:
    """Opaque identity reference recorded as createdBy/updatedBy."""
    for claim in ACTOR_CLAIMS:
        if claims.get(claim):
            return str(claims[claim])
    return None
