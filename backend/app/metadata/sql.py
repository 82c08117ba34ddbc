"""SQLAlchemy metadata store (aiosqlite)."""

import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import async_sessionmaker

from app.db.session import session_scope
from app.errors import DownloadLimitExceeded, FileNotFound, FolderExists, FolderNotFound
from app.files.models import StoredFile
from app.folders.models import Folder
from app.metadata.base import FileRecord, FolderRecord, MetadataStore, TokenRecord, as_utc
from app.tokens.models import AccessToken

log = logging.getLogger(__name__)


def _token_record(row: AccessToken) -> TokenRecord:
    return TokenRecord(
        id=row.id,
        token_hash=row.token_hash,
        name=row.name,
        purpose=row.purpose,
        permission=row.permission,
        allowed_folders=list(row.allowed_folders or []),
        expires_at=as_utc(row.expires_at),
        max_uses=row.max_uses,
        uses=row.uses,
        ip_address=row.ip_address,
        max_upload_size=row.max_upload_size,
        created_at=as_utc(row.created_at),
    )


def _folder_record(row: Folder) -> FolderRecord:
    return FolderRecord(
        id=row.id,
        name=row.name,
        is_auto_generated=row.is_auto_generated,
        archive_password=row.archive_password,
        upload_paused=row.upload_paused,
        download_paused=row.download_paused,
        created_at=as_utc(row.created_at),
    )


def _file_record(row: StoredFile) -> FileRecord:
    return FileRecord(
        file_id=row.file_id,
        folder_id=row.folder_id,
        storage_path=row.storage_path,
        original_name=row.original_name,
        size=row.size,
        content_type=row.content_type,
        content_class=row.content_class,
        download_limit=row.download_limit,
        downloads_done=row.downloads_done,
        token_hash=row.token_hash,
        uploader_name=row.uploader_name,
        ip_address=row.ip_address,
        uploaded_at=as_utc(row.uploaded_at),
    )


class SqlMetadataStore(MetadataStore):
    """Each call runs in its own session (commit on success, rollback on error)."""

    def __init__(self, session_factory: async_sessionmaker, master_token_hash: str = "") -> None:
        super().__init__(master_token_hash)
        self._sessions = session_factory

    # --- tokens ---

    async def find_token(self, token_hash: str) -> Optional[TokenRecord]:
        async with session_scope(self._sessions) as session:
            result = await session.execute(select(AccessToken).where(AccessToken.token_hash == token_hash))
            row = result.scalar_one_or_none()
            return _token_record(row) if row else None

    async def create_token(self, record: TokenRecord) -> TokenRecord:
        async with session_scope(self._sessions) as session:
            session.add(
                AccessToken(
                    id=record.id,
                    token_hash=record.token_hash,
                    name=record.name,
                    purpose=record.purpose,
                    permission=record.permission,
                    allowed_folders=list(record.allowed_folders),
                    expires_at=record.expires_at,
                    max_uses=record.max_uses,
                    uses=record.uses,
                    ip_address=record.ip_address,
                    max_upload_size=record.max_upload_size,
                    created_at=record.created_at,
                )
            )
        return record

    async def consume_token_use(self, token_id: str) -> None:
        async with session_scope(self._sessions) as session:
            await session.execute(
                update(AccessToken).where(AccessToken.id == token_id).values(uses=AccessToken.uses + 1)
            )

    async def count_recent_tokens(self, ip_address: str, since: datetime) -> int:
        async with session_scope(self._sessions) as session:
            result = await session.execute(
                select(func.count()).select_from(AccessToken).where(
                    AccessToken.ip_address == ip_address,
                    AccessToken.created_at > since,
                )
            )
            return int(result.scalar_one())

    # --- folders ---

    async def get_folder(self, folder_id: str) -> Optional[FolderRecord]:
        async with session_scope(self._sessions) as session:
            row = await session.get(Folder, folder_id)
            return _folder_record(row) if row else None

    async def create_folder(self, record: FolderRecord) -> FolderRecord:
        try:
            async with session_scope(self._sessions) as session:
                if await session.get(Folder, record.id):
                    raise FolderExists()
                session.add(
                    Folder(
                        id=record.id,
                        name=record.name,
                        is_auto_generated=record.is_auto_generated,
                        archive_password=record.archive_password,
                        upload_paused=record.upload_paused,
                        download_paused=record.download_paused,
                        created_at=record.created_at,
                    )
                )
        except IntegrityError as e:
            raise FolderExists() from e
        return record

    async def list_folders(self) -> List[FolderRecord]:
        async with session_scope(self._sessions) as session:
            result = await session.execute(select(Folder).order_by(Folder.created_at.desc()))
            return [_folder_record(r) for r in result.scalars().all()]

    async def set_folder_pause(self, folder_id: str, kind: str, paused: bool) -> FolderRecord:
        if kind not in ("upload", "download"):
            raise ValueError(f"Unknown pause kind: {kind!r}")
        async with session_scope(self._sessions) as session:
            row = await session.get(Folder, folder_id)
            if row is None:
                raise FolderNotFound()
            if kind == "upload":
                row.upload_paused = paused
            else:
                row.download_paused = paused
            return _folder_record(row)

    async def delete_folder(self, folder_id: str) -> int:
        async with session_scope(self._sessions) as session:
            row = await session.get(Folder, folder_id)
            if row is None:
                raise FolderNotFound()
            await session.delete(row)
            result = await session.execute(delete(StoredFile).where(StoredFile.folder_id == folder_id))
            removed = result.rowcount or 0
        log.info("delete_folder folder=%s file_rows=%d", folder_id, removed)
        return removed

    # --- files ---

    async def add_file(self, record: FileRecord) -> FileRecord:
        async with session_scope(self._sessions) as session:
            session.add(
                StoredFile(
                    file_id=record.file_id,
                    folder_id=record.folder_id,
                    storage_path=record.storage_path,
                    original_name=record.original_name,
                    size=record.size,
                    content_type=record.content_type,
                    content_class=record.content_class,
                    download_limit=record.download_limit,
                    downloads_done=record.downloads_done,
                    token_hash=record.token_hash,
                    uploader_name=record.uploader_name,
                    ip_address=record.ip_address,
                    uploaded_at=record.uploaded_at,
                )
            )
        return record

    async def get_file(self, file_id: str) -> Optional[FileRecord]:
        async with session_scope(self._sessions) as session:
            row = await session.get(StoredFile, file_id)
            return _file_record(row) if row else None

    async def delete_file(self, file_id: str) -> Optional[FileRecord]:
        async with session_scope(self._sessions) as session:
            row = await session.get(StoredFile, file_id)
            if row is None:
                return None
            record = _file_record(row)
            await session.delete(row)
            return record

    async def list_folder_files(self, folder_id: str) -> List[FileRecord]:
        async with session_scope(self._sessions) as session:
            result = await session.execute(
                select(StoredFile)
                .where(StoredFile.folder_id == folder_id)
                .order_by(StoredFile.uploaded_at, StoredFile.file_id)
            )
            return [_file_record(r) for r in result.scalars().all()]

    async def register_download(self, file_id: str, is_master: bool = False) -> FileRecord:
        async with session_scope(self._sessions) as session:
            if not is_master:
                # Check and increment in one statement so concurrent downloads cannot overshoot
                result = await session.execute(
                    update(StoredFile)
                    .where(
                        StoredFile.file_id == file_id,
                        or_(
                            StoredFile.download_limit.is_(None),
                            StoredFile.downloads_done < StoredFile.download_limit,
                        ),
                    )
                    .values(downloads_done=StoredFile.downloads_done + 1)
                    .execution_options(synchronize_session=False)
                )
                if not result.rowcount:
                    exists = await session.get(StoredFile, file_id)
                    if exists is None:
                        raise FileNotFound()
                    raise DownloadLimitExceeded()
            row = await session.get(StoredFile, file_id, populate_existing=True)
            if row is None:
                raise FileNotFound()
            return _file_record(row)
