from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.core.logger import get_logger
from pkg.auth_token_client.client import TokenClient, TokenPayload

# HTTP Bearer token security scheme
security = HTTPBearer(auto_error=False)
logger = get_logger("Auth")


def get_token_client(request: Request) -> Optional[TokenClient]:
    """Token client from app.state; None when auth is disabled."""
    return getattr(request.app.state, "token_client", None)


async def require_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Optional[TokenPayload]:
    """
    Bearer JWT check for the chat endpoints.

    Returns the caller identity, or None when no token client is wired
    (AUTH_ENABLED is off).
    """
    token_client = get_token_client(request)
    if token_client is None:
        return None

    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        return token_client.decode_payload(credentials.credentials)
    except ValueError as e:
        logger.warning(f"Rejected token: {e}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )
