"""Admin folder routes."""

import logging
from typing import Annotated, List

from fastapi import APIRouter, Depends, status

from app.auth.dependencies import get_current_admin, get_services
from app.container import Services
from app.folders import service
from app.folders.models import FolderCreate, FolderPause, FolderResponse
from app.metadata.base import FolderRecord

router = APIRouter(prefix="/api/admin/folders", tags=["folders"])
log = logging.getLogger(__name__)


def _to_response(record: FolderRecord) -> FolderResponse:
    return FolderResponse(
        id=record.id,
        name=record.name,
        is_auto_generated=record.is_auto_generated,
        upload_paused=record.upload_paused,
        download_paused=record.download_paused,
        has_password=bool(record.archive_password),
        created_at=record.created_at,
    )


@router.post("", response_model=FolderResponse, status_code=status.HTTP_201_CREATED)
async def create_folder(
    body: FolderCreate,
    services: Annotated[Services, Depends(get_services)],
    _admin: Annotated[str, Depends(get_current_admin)],
) -> FolderResponse:
    return _to_response(await service.create_folder(services, body))


@router.get("", response_model=List[FolderResponse])
async def list_folders(
    services: Annotated[Services, Depends(get_services)],
    _admin: Annotated[str, Depends(get_current_admin)],
) -> List[FolderResponse]:
    """All folders, newest first."""
    return [_to_response(f) for f in await service.list_folders(services)]


@router.post("/{folder_id}/pause", response_model=FolderResponse)
async def pause_folder(
    folder_id: str,
    body: FolderPause,
    services: Annotated[Services, Depends(get_services)],
    _admin: Annotated[str, Depends(get_current_admin)],
) -> FolderResponse:
    """Pause or resume uploads or downloads for a folder."""
    return _to_response(await service.set_pause(services, folder_id, body.kind, body.paused))


@router.delete("/{folder_id}")
async def delete_folder(
    folder_id: str,
    services: Annotated[Services, Depends(get_services)],
    _admin: Annotated[str, Depends(get_current_admin)],
) -> dict:
    """Delete a folder with its files, stored objects and cached archive."""
    return await service.delete_folder(services, folder_id)
