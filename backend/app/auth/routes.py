"""Admin login: PIN -> session JWT."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Request, status

from app.auth.dependencies import client_ip, get_services
from app.auth.jwt import create_admin_token, verify_pin
from app.auth.models import AdminLogin, AdminSession
from app.container import Services
from app.limiter import limiter

router = APIRouter(prefix="/api/admin", tags=["admin"])
log = logging.getLogger(__name__)


@router.post("/login", response_model=AdminSession)
@limiter.limit("10/minute")
async def admin_login(
    request: Request,
    body: AdminLogin,
    services: Annotated[Services, Depends(get_services)],
) -> AdminSession:
    """Exchange the admin PIN for a session token."""
    settings = services.settings
    if not verify_pin(body.pin, settings.admin_pin_hash):
        log.warning("Admin login failed from ip=%s", client_ip(request))
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid PIN",
        )
    log.info("Admin login from ip=%s", client_ip(request))
    return AdminSession(
        access_token=create_admin_token(settings),
        expires_in=settings.admin_session_minutes * 60,
    )
