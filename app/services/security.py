"""
FraudGuard — Security & Authentication Layer

Provides:
- JWT token generation and validation
- API key validation
- Scope checks for admin and operator (admin or investigator) routes
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any, List

from jose import JWTError, jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials, APIKeyHeader

from app.config import settings
from app.services.observability import set_user_id

logger = logging.getLogger("fraudguard.security")

ADMIN_SCOPE = "admin"
INVESTIGATOR_SCOPE = "investigator"
WILDCARD_SCOPE = "*"

# ---------------------------------------------------------------------------
# Security schemes
# ---------------------------------------------------------------------------
http_bearer = HTTPBearer(
    scheme_name="Bearer",
    description="JWT Bearer token",
    auto_error=False,
)

api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


# ---------------------------------------------------------------------------
# JWT Operations
# ---------------------------------------------------------------------------
def create_access_token(
    data: Dict[str, Any],
    expires_delta: Optional[timedelta] = None,
) -> str:
    """
    Create a JWT access token.

    Parameters
    ----------
    data          : dict of claims to encode (``sub``, ``scopes``)
    expires_delta : custom expiration delta (defaults to config)

    Returns
    -------
    token : str
    """
    to_encode = data.copy()
    now = datetime.now(timezone.utc)
    to_encode.update({
        "exp": now + (expires_delta or settings.jwt_expiration),
        "iat": now,
    })
    return jwt.encode(
        to_encode,
        settings.JWT_SECRET_KEY,
        algorithm=settings.JWT_ALGORITHM,
    )


def verify_token(token: str) -> Dict[str, Any]:
    """
    Verify and decode a JWT token.

    Raises
    ------
    HTTPException
        401 if the token is invalid or expired
    """
    try:
        return jwt.decode(
            token,
            settings.JWT_SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM],
        )
    except JWTError as exc:
        logger.warning("JWT verification failed: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication credentials",
            headers={"WWW-Authenticate": "Bearer"},
        ) from exc


def actor_of(claims: Dict[str, Any]) -> str:
    """Audit-trail identity for the authenticated caller."""
    return str(claims.get("sub") or "anonymous")


def _has_any_scope(claims: Dict[str, Any], wanted: List[str]) -> bool:
    scopes = claims.get("scopes") or []
    return WILDCARD_SCOPE in scopes or any(s in scopes for s in wanted)


# ---------------------------------------------------------------------------
# Dependencies for FastAPI route protection
# ---------------------------------------------------------------------------
async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer),
    api_key: Optional[str] = Depends(api_key_header),
) -> Dict[str, Any]:
    """
    Validate and extract claims from a JWT bearer token or an API key.

    Supports:
    1. JWT Bearer token (Authorization: Bearer <token>)
    2. API Key (X-API-Key: <key>), read-only scopes
    """
    if not settings.AUTH_ENABLED:
        # Development mode: allow unauthenticated access
        return {"sub": "system", "scopes": [WILDCARD_SCOPE]}

    if credentials:
        claims = verify_token(credentials.credentials)
        set_user_id(actor_of(claims))
        return claims

    if settings.API_KEY_ENABLED and api_key:
        if api_key == settings.SECRET_KEY:
            set_user_id("api_key_user")
            return {"sub": "api_key_user", "scopes": ["transactions:read", "transactions:write"]}
        logger.warning("Invalid API key attempt")

    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Not authenticated",
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_admin(
    current_user: Dict[str, Any] = Depends(get_current_user),
) -> Dict[str, Any]:
    """Require the admin scope (rule store and threshold writes)."""
    if not _has_any_scope(current_user, [ADMIN_SCOPE]):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Insufficient permissions for this operation",
        )
    return current_user


async def get_current_operator(
    current_user: Dict[str, Any] = Depends(get_current_user),
) -> Dict[str, Any]:
    """Require an admin or investigator scope (blacklist writes, promotion)."""
    if not _has_any_scope(current_user, [ADMIN_SCOPE, INVESTIGATOR_SCOPE]):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Insufficient permissions for this operation",
        )
    return current_user
