"""Bearer token verification for protected endpoints.

Tokens are issued by the login service; this module only verifies them.
"""

import logging
from typing import Any

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from pebbledrive.core.config import settings

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def verify_token(token: str, secret: str, algorithm: str = "HS256") -> dict[str, Any]:
    """Decode and verify a signed token.

    Expiry (``exp``) is checked by the decoder when present.

    Raises:
        JWTError: If the signature is invalid or the token has expired
    """
    return jwt.decode(token, secret, algorithms=[algorithm])


async def require_auth(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> dict[str, Any]:
    """FastAPI dependency rejecting requests without a valid bearer token."""
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"code": "unauthorized", "message": "Missing authentication token"},
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not settings.AUTH_TOKEN_SECRET:
        logger.error("AUTH_TOKEN_SECRET not configured")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"code": "auth_misconfigured", "message": "Server authentication is not configured"},
        )

    try:
        return verify_token(
            credentials.credentials, settings.AUTH_TOKEN_SECRET, settings.AUTH_ALGORITHM
        )
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"code": "unauthorized", "message": "Authentication token is invalid or expired"},
            headers={"WWW-Authenticate": "Bearer"},
        )
