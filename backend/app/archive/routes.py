"""Folder archive routes."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import Response

from app.auth.dependencies import get_bearer_token, get_services
from app.container import Services
from app.limiter import limiter
from app.storage.paths import attachment_disposition

router = APIRouter(prefix="/api", tags=["archive"])
log = logging.getLogger(__name__)


@router.get("/folders/{folder_id}/archive")
@limiter.limit("30/minute")
async def folder_archive(
    request: Request,
    folder_id: str,
    token: Annotated[str, Depends(get_bearer_token)],
    services: Annotated[Services, Depends(get_services)],
) -> dict:
    """
    Download URL for the whole folder as one archive. Served from cache when present,
    otherwise built from the folder's files and cached.
    """
    link = await services.archives.get_or_build_archive(folder_id, token)
    out = {"url": link.url, "cached": link.cached, "expires_in": link.expires_in}
    if link.entries is not None:
        out["entries"] = link.entries
    if link.skipped:
        out["skipped"] = link.skipped
    return out


@router.get("/archives/local/{key}")
async def local_archive(
    key: str,
    services: Annotated[Services, Depends(get_services)],
) -> Response:
    """Serve an archive that could not be cached in the object store, until it expires."""
    item = services.stash.get(key)
    if item is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Archive expired or not found")
    log.info("serving local archive folder=%s size=%d", item.folder_id, len(item.content))
    return Response(
        content=item.content,
        media_type="application/zip",
        headers={"Content-Disposition": attachment_disposition(item.filename)},
    )
