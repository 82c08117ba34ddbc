"""Token routes: public one-time tokens and admin custom tokens."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Request, status

from app.auth.dependencies import client_ip, get_current_admin, get_services
from app.config import get_settings
from app.container import Services
from app.limiter import limiter
from app.tokens.models import CustomTokenCreate, TokenIssued, TokenRequest
from app.tokens.service import create_custom_token, issue_public_token

router = APIRouter(prefix="/api", tags=["tokens"])
log = logging.getLogger(__name__)


def _token_rate_limit() -> str:
    return get_settings().token_rate_limit


@router.post("/tokens", response_model=TokenIssued, status_code=status.HTTP_201_CREATED)
@limiter.limit(_token_rate_limit)
async def request_token(
    request: Request,
    body: TokenRequest,
    services: Annotated[Services, Depends(get_services)],
) -> TokenIssued:
    """Issue a six-digit single-use token. Limited per client IP."""
    raw, record = await issue_public_token(
        services.metadata, services.settings, body.name, body.purpose, client_ip(request)
    )
    return TokenIssued(
        token=raw,
        id=record.id,
        expires_at=record.expires_at,
        permission=record.permission,
        allowed_folders=record.allowed_folders,
        max_uses=record.max_uses,
    )


@router.post("/admin/tokens", response_model=TokenIssued, status_code=status.HTTP_201_CREATED)
async def create_token(
    body: CustomTokenCreate,
    services: Annotated[Services, Depends(get_services)],
    _admin: Annotated[str, Depends(get_current_admin)],
) -> TokenIssued:
    """Admin: create a token scoped to permission, folders, uses and expiry."""
    raw, record = await create_custom_token(services.metadata, body)
    return TokenIssued(
        token=raw,
        id=record.id,
        expires_at=record.expires_at,
        permission=record.permission,
        allowed_folders=record.allowed_folders,
        max_uses=record.max_uses,
    )
