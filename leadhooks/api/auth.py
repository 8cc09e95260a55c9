"""
Operator authentication for the webhook listing.

Tokens are issued by the dashboard auth subsystem; this module only verifies
them. A token carries `user_id` (the operator whose integrations are visible)
and optionally `is_admin` (sees every integration).
"""
import logging
import uuid
from datetime import datetime, timedelta, timezone
from fastapi import Depends, HTTPException
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
import jwt as pyjwt
from pydantic import BaseModel

logger = logging.getLogger(__name__)
bearer_scheme = HTTPBearer()

JWT_ALGORITHM = "HS256"


class Operator(BaseModel):
    user_id: uuid.UUID
    is_admin: bool = False


def _jwt_secret() -> str:
    from leadhooks.config import get_settings
    settings = get_settings()
    return settings.dashboard_jwt_secret or settings.app_secret_key


def create_operator_token(user_id: uuid.UUID, is_admin: bool = False, expires_hours: int = 24) -> str:
    """Mint a token the way the dashboard does. Used by scripts and tests."""
    return pyjwt.encode(
        {
            "user_id": str(user_id),
            "is_admin": is_admin,
            "exp": datetime.now(timezone.utc) + timedelta(hours=expires_hours),
        },
        _jwt_secret(),
        algorithm=JWT_ALGORITHM,
    )


async def get_current_operator(
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
) -> Operator:
    """Dependency to extract and verify the operator from a JWT Bearer token."""
    try:
        payload = pyjwt.decode(
            credentials.credentials,
            _jwt_secret(),
            algorithms=[JWT_ALGORITHM],
        )
    except pyjwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except pyjwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")

    try:
        user_id = uuid.UUID(str(payload.get("user_id")))
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid token payload")

    return Operator(user_id=user_id, is_admin=bool(payload.get("is_admin", False)))
