"""FastAPI dependencies: services, Bearer access tokens, admin sessions."""

import logging
from typing import Annotated, Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.auth.jwt import is_admin_token
from app.container import Services
from app.limiter import client_key

security = HTTPBearer(auto_error=False)
log = logging.getLogger(__name__)


def get_services(request: Request) -> Services:
    return request.app.state.services


async def get_bearer_token(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
) -> str:
    """Raw access token from the Authorization header; 401 if missing."""
    if not credentials or not credentials.credentials:
        log.debug("Request missing Bearer token")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return credentials.credentials


async def get_current_admin(
    token: Annotated[str, Depends(get_bearer_token)],
    services: Annotated[Services, Depends(get_services)],
) -> str:
    """Require an admin session JWT (or the master token)."""
    if services.metadata.is_master(token):
        return "master"
    if not is_admin_token(services.settings, token):
        log.warning("Rejected admin request with invalid session")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired admin session",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return "admin"


def client_ip(request: Request) -> str:
    """Client address as used for rate limiting and upload records."""
    return client_key(request)
