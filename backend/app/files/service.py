"""File operations: upload (direct or presigned), download links, delete.

Every mutation of a folder invalidates its archive cache before returning.
"""

import logging
import os
import uuid
from typing import Optional, Tuple

from app.container import Services
from app.errors import (
    AccessDenied,
    DownloadPaused,
    FileNotFound,
    ForbiddenFileType,
    InvalidPath,
    UploadPaused,
    UploadTooLarge,
)
from app.metadata.base import FileRecord, TokenRecord, content_class
from app.storage.paths import attachment_disposition, member_path

log = logging.getLogger(__name__)


def _extension(name: str) -> str:
    return os.path.splitext(name)[1].lower()


def _storage_path(services: Services, folder_id: str, name: str) -> str:
    try:
        return member_path(folder_id, name, services.settings)
    except ValueError as e:
        log.warning("upload rejected folder=%r name=%r: %s", folder_id, name, e)
        raise InvalidPath(str(e)) from e


async def authorize_upload(
    services: Services,
    token: str,
    folder_id: str,
    name: str,
    size: int,
) -> TokenRecord:
    """
    Checks in order: file type, token, size (server then token limit), permission and
    folder scope, folder existence, upload pause. Master skips token and pause checks.
    """
    settings = services.settings
    ext = _extension(name)
    if ext and ext in settings.forbidden_extensions_set:
        log.warning("upload rejected forbidden extension name=%r", name)
        raise ForbiddenFileType()
    record = await services.metadata.validate_token(token)
    if size > settings.max_file_size:
        raise UploadTooLarge(f"File exceeds the server limit of {settings.max_file_size} bytes")
    if not record.is_master:
        if record.max_upload_size and size > record.max_upload_size:
            raise UploadTooLarge(f"File exceeds the token's upload limit of {record.max_upload_size} bytes")
        if not record.can_upload() or not record.allows_folder(folder_id):
            log.warning("upload access denied folder=%s token_id=%s", folder_id, record.id)
            raise AccessDenied()
    await services.metadata.require_folder(folder_id)
    if not record.is_master:
        config = await services.metadata.get_folder_config(folder_id)
        if config.upload_paused:
            raise UploadPaused()
    return record


async def _record_upload(
    services: Services,
    record: TokenRecord,
    folder_id: str,
    name: str,
    storage_path: str,
    size: int,
    content_type: str,
    ip_address: str,
    download_limit: Optional[int],
) -> FileRecord:
    # Same name in the same folder overwrites the object, so drop the stale row
    for existing in await services.metadata.list_folder_files(folder_id):
        if existing.storage_path == storage_path:
            await services.metadata.delete_file(existing.file_id)
    file_record = FileRecord(
        file_id=uuid.uuid4().hex[:8],
        folder_id=folder_id,
        storage_path=storage_path,
        original_name=name,
        size=size,
        content_type=content_type,
        content_class=content_class(content_type, name),
        download_limit=download_limit,
        token_hash=record.token_hash,
        uploader_name="Admin" if record.is_master else record.name,
        ip_address=ip_address,
    )
    await services.metadata.add_file(file_record)
    await services.archives.on_folder_mutated(folder_id)
    log.info(
        "upload recorded file_id=%s folder=%s path=%s size=%d",
        file_record.file_id, folder_id, storage_path, size,
    )
    return file_record


async def upload_file(
    services: Services,
    token: str,
    folder_id: str,
    name: str,
    body: bytes,
    content_type: Optional[str] = None,
    ip_address: str = "",
    download_limit: Optional[int] = None,
) -> FileRecord:
    """Store body as <uploads>/<folder_id>/<name>. Consumes one token use (not for master)."""
    content_type = content_type or "application/octet-stream"
    record = await authorize_upload(services, token, folder_id, name, len(body))
    storage_path = _storage_path(services, folder_id, name)
    if not record.is_master:
        await services.metadata.consume_token_use(record.id)
    await services.gateway.put_object(storage_path, body, content_type)
    return await _record_upload(
        services, record, folder_id, name, storage_path, len(body),
        content_type, ip_address, download_limit,
    )


async def create_upload_url(
    services: Services,
    token: str,
    folder_id: str,
    name: str,
    size: int,
    content_type: Optional[str] = None,
) -> Tuple[str, str, int]:
    """Signed PUT URL for a direct-to-store upload. Returns (url, storage_path, expires_in)."""
    await authorize_upload(services, token, folder_id, name, size)
    storage_path = _storage_path(services, folder_id, name)
    expires_in = services.settings.upload_url_expiry_seconds
    url = await services.gateway.signed_put_url(
        storage_path, expires_in, content_type=content_type or "application/octet-stream"
    )
    log.info("upload url issued folder=%s path=%s", folder_id, storage_path)
    return url, storage_path, expires_in


async def complete_upload(
    services: Services,
    token: str,
    folder_id: str,
    name: str,
    size: int,
    content_type: Optional[str] = None,
    ip_address: str = "",
    download_limit: Optional[int] = None,
) -> FileRecord:
    """Record a presigned upload once its object exists. Raises FileNotFound if it was never PUT."""
    content_type = content_type or "application/octet-stream"
    record = await authorize_upload(services, token, folder_id, name, size)
    storage_path = _storage_path(services, folder_id, name)
    if not await services.gateway.exists(storage_path):
        log.warning("complete_upload object missing path=%s", storage_path)
        raise FileNotFound("Uploaded object not found")
    if not record.is_master:
        await services.metadata.consume_token_use(record.id)
    return await _record_upload(
        services, record, folder_id, name, storage_path, size,
        content_type, ip_address, download_limit,
    )


async def download_link(services: Services, token: str, file_id: str) -> Tuple[str, FileRecord]:
    """
    Count a download of one file and return (signed URL, updated record).
    Raises FileNotFound, AccessDenied, DownloadPaused or DownloadLimitExceeded.
    """
    record = await services.metadata.validate_token(token)
    file_record = await services.metadata.get_file(file_id)
    if file_record is None:
        raise FileNotFound()
    if not record.is_master:
        if not record.can_download():
            raise AccessDenied()
        if file_record.folder_id:
            if not record.allows_folder(file_record.folder_id):
                log.warning("download access denied file=%s token_id=%s", file_id, record.id)
                raise AccessDenied()
            config = await services.metadata.get_folder_config(file_record.folder_id)
            if config.download_paused:
                raise DownloadPaused()
    file_record = await services.metadata.register_download(file_id, is_master=record.is_master)
    url = await services.gateway.signed_get_url(
        file_record.storage_path,
        services.settings.member_url_expiry_seconds,
        disposition=attachment_disposition(file_record.original_name),
    )
    log.info(
        "download file_id=%s downloads=%d limit=%s",
        file_id, file_record.downloads_done, file_record.download_limit,
    )
    return url, file_record


async def delete_file(services: Services, file_id: str) -> FileRecord:
    """Delete the object, then its metadata, then the folder's cached archive."""
    file_record = await services.metadata.get_file(file_id)
    if file_record is None:
        raise FileNotFound()
    await services.gateway.delete_object(file_record.storage_path)
    await services.metadata.delete_file(file_id)
    if file_record.folder_id:
        await services.archives.on_folder_mutated(file_record.folder_id)
    log.info("deleted file_id=%s path=%s", file_id, file_record.storage_path)
    return file_record
