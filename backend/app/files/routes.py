"""File API routes: upload (raw body or presigned), download link, delete."""

import logging
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Query, Request

from app.auth.dependencies import client_ip, get_bearer_token, get_current_admin, get_services
from app.container import Services
from app.files import service
from app.files.models import DownloadLink, FileInfo, UploadComplete, UploadUrlRequest, UploadUrlResponse
from app.limiter import limiter
from app.metadata.base import FileRecord

router = APIRouter(prefix="/api/files", tags=["files"])
log = logging.getLogger(__name__)


def _to_info(record: FileRecord) -> FileInfo:
    return FileInfo(
        file_id=record.file_id,
        folder_id=record.folder_id,
        name=record.original_name,
        size=record.size,
        content_class=record.content_class,
        download_limit=record.download_limit,
        downloads_done=record.downloads_done,
        uploaded_at=record.uploaded_at,
    )


@router.post("/upload", response_model=FileInfo)
@limiter.limit("600/minute")
async def upload_file(
    request: Request,
    token: Annotated[str, Depends(get_bearer_token)],
    services: Annotated[Services, Depends(get_services)],
    folder_id: Annotated[str, Query(min_length=1)],
    name: Annotated[str, Query(min_length=1, max_length=1024)],
    download_limit: Annotated[Optional[int], Query(ge=1)] = None,
) -> FileInfo:
    """
    Upload a file into a folder. Query params: folder_id, name. Body: raw file bytes.
    The folder's cached archive is invalidated before this returns.
    """
    body = await request.body()
    record = await service.upload_file(
        services,
        token,
        folder_id,
        name,
        body,
        content_type=request.headers.get("content-type"),
        ip_address=client_ip(request),
        download_limit=download_limit,
    )
    return _to_info(record)


@router.post("/upload-url", response_model=UploadUrlResponse)
@limiter.limit("600/minute")
async def upload_url(
    request: Request,
    body: UploadUrlRequest,
    token: Annotated[str, Depends(get_bearer_token)],
    services: Annotated[Services, Depends(get_services)],
) -> UploadUrlResponse:
    """Signed PUT URL for uploading straight to the object store; finish with /complete."""
    url, storage_path, expires_in = await service.create_upload_url(
        services, token, body.folder_id, body.name, body.size, body.content_type
    )
    return UploadUrlResponse(upload_url=url, storage_path=storage_path, expires_in=expires_in)


@router.post("/complete", response_model=FileInfo)
@limiter.limit("600/minute")
async def complete_upload(
    request: Request,
    body: UploadComplete,
    token: Annotated[str, Depends(get_bearer_token)],
    services: Annotated[Services, Depends(get_services)],
) -> FileInfo:
    record = await service.complete_upload(
        services,
        token,
        body.folder_id,
        body.name,
        body.size,
        content_type=body.content_type,
        ip_address=client_ip(request),
        download_limit=body.download_limit,
    )
    return _to_info(record)


@router.get("/{file_id}/download", response_model=DownloadLink)
@limiter.limit("600/minute")
async def download_file(
    request: Request,
    file_id: str,
    token: Annotated[str, Depends(get_bearer_token)],
    services: Annotated[Services, Depends(get_services)],
) -> DownloadLink:
    """Count one download and return a short-lived signed URL for the file."""
    url, record = await service.download_link(services, token, file_id)
    return DownloadLink(
        url=url,
        expires_in=services.settings.member_url_expiry_seconds,
        name=record.original_name,
    )


@router.delete("/{file_id}")
async def delete_file(
    file_id: str,
    services: Annotated[Services, Depends(get_services)],
    _admin: Annotated[str, Depends(get_current_admin)],
) -> dict:
    record = await service.delete_file(services, file_id)
    return {"file_id": record.file_id, "deleted": True}
