from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import jwt, JWTError
import structlog

from liquidation_api.config import settings

logger = structlog.get_logger()


# ---------- token generation ----------

def create_access_token(
    user_id: str,
    role: str,
    name: str,
    email: Optional[str] = None,
    hei_id: Optional[str] = None,
    region_id: Optional[str] = None,
    expires_minutes: Optional[int] = None,
) -> str:
    """Issue a bearer token. Login lives elsewhere; this is for scripts and tests."""
    now = datetime.now(timezone.utc)
    claims = {
        "sub": str(user_id),
        "role": role,
        "name": name,
        "iat": now,
        "exp": now + timedelta(
            minutes=expires_minutes or settings.ACCESS_TOKEN_EXPIRE_MINUTES
        ),
        "type": "access",
    }
    if email:
        claims["email"] = email
    if hei_id:
        claims["hei_id"] = str(hei_id)
    if region_id:
        claims["region_id"] = str(region_id)
    return jwt.encode(claims, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


# ---------- token verification ----------

def decode_token(token: str) -> dict:
    """Decode and verify a JWT token. Raises JWTError on failure."""
    return jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])


def verify_access_token(token: str) -> dict:
    """Verify an access token and return its claims."""
    payload = decode_token(token)
    if payload.get("type") != "access":
        raise JWTError("Not an access token")
    return payload
