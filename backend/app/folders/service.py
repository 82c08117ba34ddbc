"""Folder administration: create, list, pause, delete (with object and cache cleanup)."""

import logging
import secrets
import string
from typing import List

from app.container import Services
from app.errors import FolderExists, InvalidPath
from app.folders.models import FolderCreate
from app.metadata.base import FolderRecord
from app.storage.paths import folder_prefix, sanitize_segment

log = logging.getLogger(__name__)

_AUTO_ID_ALPHABET = string.ascii_uppercase + string.digits
_AUTO_ID_LENGTH = 6
_AUTO_ID_ATTEMPTS = 5


def generate_folder_id() -> str:
    """Six uppercase alphanumerics, e.g. 'K3Q9ZA'."""
    return "".join(secrets.choice(_AUTO_ID_ALPHABET) for _ in range(_AUTO_ID_LENGTH))


async def create_folder(services: Services, payload: FolderCreate) -> FolderRecord:
    """
    Manual folders use the name as id; auto folders get a generated id (retried on collision).
    Raises FolderExists or InvalidPath.
    """
    password = payload.archive_password or None
    if not payload.auto:
        folder_id = sanitize_segment(payload.name)
        if not folder_id:
            raise InvalidPath(f"Invalid folder name: {payload.name!r}")
        record = await services.metadata.create_folder(
            FolderRecord(id=folder_id, name=payload.name.strip(), archive_password=password)
        )
        log.info("created folder id=%s encrypted=%s", record.id, bool(password))
        return record

    for _ in range(_AUTO_ID_ATTEMPTS):
        folder_id = generate_folder_id()
        try:
            record = await services.metadata.create_folder(
                FolderRecord(
                    id=folder_id,
                    name=payload.name.strip(),
                    is_auto_generated=True,
                    archive_password=password,
                )
            )
        except FolderExists:
            log.debug("auto folder id collision id=%s", folder_id)
            continue
        log.info("created auto folder id=%s encrypted=%s", record.id, bool(password))
        return record
    raise FolderExists("Could not allocate a folder id, try again")


async def list_folders(services: Services) -> List[FolderRecord]:
    return await services.metadata.list_folders()


async def set_pause(services: Services, folder_id: str, kind: str, paused: bool) -> FolderRecord:
    record = await services.metadata.set_folder_pause(folder_id, kind, paused)
    log.info("folder %s %s paused=%s", folder_id, kind, paused)
    return record


async def delete_folder(services: Services, folder_id: str) -> dict:
    """
    Delete the folder record and its file records, every object under uploads/<id>/,
    and the cached archive. Raises FolderNotFound.
    """
    removed_rows = await services.metadata.delete_folder(folder_id)
    try:
        removed_objects = await services.gateway.delete_prefix(folder_prefix(folder_id, services.settings))
    finally:
        await services.archives.on_folder_mutated(folder_id)
    log.info(
        "deleted folder id=%s file_rows=%d objects=%d",
        folder_id, removed_rows, removed_objects,
    )
    return {"id": folder_id, "files_deleted": removed_rows, "objects_deleted": removed_objects}
