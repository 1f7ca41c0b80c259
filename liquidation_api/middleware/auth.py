import uuid
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError
import structlog

from liquidation_api.services.auth_service import verify_access_token
from liquidation_api.services.permissions import Actor

logger = structlog.get_logger()

security = HTTPBearer()


def _optional_uuid(value) -> Optional[uuid.UUID]:
    return uuid.UUID(str(value)) if value else None


def actor_from_claims(payload: dict) -> Actor:
    return Actor(
        user_id=uuid.UUID(payload["sub"]),
        role=payload["role"],
        name=payload.get("name") or payload.get("email") or payload["sub"],
        email=payload.get("email"),
        hei_id=_optional_uuid(payload.get("hei_id")),
        region_id=_optional_uuid(payload.get("region_id")),
    )


async def get_current_actor(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> Actor:
    """FastAPI dependency: extract and verify JWT, return the acting user."""
    token = credentials.credentials
    try:
        payload = verify_access_token(token)
        actor = actor_from_claims(payload)
    except (JWTError, KeyError, ValueError) as e:
        logger.warning("auth_token_invalid", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={
                "error": {
                    "code": "AUTH_TOKEN_INVALID",
                    "message": "Invalid or expired token",
                }
            },
            headers={"WWW-Authenticate": "Bearer"},
        )
    structlog.contextvars.bind_contextvars(actor_id=str(actor.user_id))
    return actor
