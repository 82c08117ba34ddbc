"""Metadata store contract: tokens, folders and file records.

Token rules and member enumeration order live here so the SQL and in-memory stores
cannot disagree on them.
"""

import hashlib
import hmac
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from app.errors import FolderNotFound, InvalidToken, TokenExhausted, TokenExpired

PERMISSIONS = ("upload", "download", "both")
MASTER_TOKEN_ID = "master"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def hash_token(token: str) -> str:
    """SHA-256 hex digest of a raw token string."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def content_class(content_type: Optional[str], filename: str = "") -> str:
    """Classify a file as image, video or other from its MIME type (or extension)."""
    ct = (content_type or "").lower()
    if ct.startswith("image/"):
        return "image"
    if ct.startswith("video/"):
        return "video"
    name = filename.lower()
    if name.endswith((".jpg", ".jpeg", ".png", ".gif", ".webp")):
        return "image"
    if name.endswith((".mp4", ".mov", ".webm")):
        return "video"
    return "other"


@dataclass
class TokenRecord:
    """A redeemable access token (stored by hash only)."""

    id: str
    token_hash: str
    name: str
    purpose: str = ""
    permission: str = "both"
    allowed_folders: List[str] = field(default_factory=list)
    expires_at: datetime = field(default_factory=lambda: utcnow() + timedelta(minutes=10))
    max_uses: int = 1
    uses: int = 0
    ip_address: str = ""
    max_upload_size: Optional[int] = None
    created_at: datetime = field(default_factory=utcnow)
    is_master: bool = False

    def can_download(self) -> bool:
        return self.is_master or self.permission in ("download", "both")

    def can_upload(self) -> bool:
        return self.is_master or self.permission in ("upload", "both")

    def allows_folder(self, folder_id: str) -> bool:
        return self.is_master or folder_id in (self.allowed_folders or [])


@dataclass
class FolderRecord:
    id: str
    name: str
    is_auto_generated: bool = False
    archive_password: Optional[str] = None
    upload_paused: bool = False
    download_paused: bool = False
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class FolderConfig:
    """What the archive engine and upload flow need to know about a folder."""

    download_paused: bool = False
    upload_paused: bool = False
    archive_password: Optional[str] = None


@dataclass
class FileRecord:
    file_id: str
    storage_path: str
    original_name: str
    size: int
    folder_id: Optional[str] = None
    content_type: str = "application/octet-stream"
    content_class: str = "other"
    download_limit: Optional[int] = None
    downloads_done: int = 0
    token_hash: str = ""
    uploader_name: str = ""
    ip_address: str = ""
    uploaded_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class MemberRef:
    """One member object of a folder as seen by the archive engine."""

    storage_path: str
    display_name: str
    size: int = 0
    file_id: Optional[str] = None


class MetadataStore(ABC):
    """Async metadata collaborator. Implementations: SqlMetadataStore, MemoryMetadataStore."""

    def __init__(self, master_token_hash: str = "") -> None:
        self._master_token_hash = (master_token_hash or "").lower()

    # --- tokens ---

    def is_master(self, token: str) -> bool:
        if not self._master_token_hash or not token:
            return False
        return hmac.compare_digest(hash_token(token), self._master_token_hash)

    async def validate_token(self, token: str) -> TokenRecord:
        """Resolve a raw token. Raises InvalidToken, TokenExpired or TokenExhausted."""
        if not token:
            raise InvalidToken()
        token_hash = hash_token(token)
        if self.is_master(token):
            return TokenRecord(
                id=MASTER_TOKEN_ID,
                token_hash=token_hash,
                name="Admin",
                purpose="Master Override",
                permission="both",
                expires_at=utcnow() + timedelta(days=365),
                max_uses=1_000_000,
                ip_address="Admin",
                is_master=True,
            )
        record = await self.find_token(token_hash)
        if record is None:
            raise InvalidToken()
        if as_utc(record.expires_at) < utcnow():
            raise TokenExpired()
        if record.uses >= record.max_uses:
            raise TokenExhausted()
        return record

    @abstractmethod
    async def find_token(self, token_hash: str) -> Optional[TokenRecord]:
        """Token by hash, or None."""

    @abstractmethod
    async def create_token(self, record: TokenRecord) -> TokenRecord:
        """Persist a new token."""

    @abstractmethod
    async def consume_token_use(self, token_id: str) -> None:
        """Increment a token's use counter."""

    @abstractmethod
    async def count_recent_tokens(self, ip_address: str, since: datetime) -> int:
        """Tokens issued to ip_address after since."""

    # --- folders ---

    @abstractmethod
    async def get_folder(self, folder_id: str) -> Optional[FolderRecord]:
        """Folder by id, or None."""

    @abstractmethod
    async def create_folder(self, record: FolderRecord) -> FolderRecord:
        """Persist a folder; raise FolderExists on duplicate id."""

    @abstractmethod
    async def list_folders(self) -> List[FolderRecord]:
        """All folders, newest first."""

    @abstractmethod
    async def set_folder_pause(self, folder_id: str, kind: str, paused: bool) -> FolderRecord:
        """Toggle the upload or download pause flag; raise FolderNotFound."""

    @abstractmethod
    async def delete_folder(self, folder_id: str) -> int:
        """Delete a folder and its file records. Returns file records removed; raise FolderNotFound."""

    async def get_folder_config(self, folder_id: str) -> FolderConfig:
        """Pause flags and archive password. A folder without a record has no restrictions."""
        folder = await self.get_folder(folder_id)
        if folder is None:
            return FolderConfig()
        return FolderConfig(
            download_paused=folder.download_paused,
            upload_paused=folder.upload_paused,
            archive_password=folder.archive_password or None,
        )

    async def require_folder(self, folder_id: str) -> FolderRecord:
        folder = await self.get_folder(folder_id)
        if folder is None:
            raise FolderNotFound()
        return folder

    # --- files ---

    @abstractmethod
    async def add_file(self, record: FileRecord) -> FileRecord:
        """Persist a file record."""

    @abstractmethod
    async def get_file(self, file_id: str) -> Optional[FileRecord]:
        """File record by id, or None."""

    @abstractmethod
    async def delete_file(self, file_id: str) -> Optional[FileRecord]:
        """Remove a file record; returns it, or None if it did not exist."""

    @abstractmethod
    async def list_folder_files(self, folder_id: str) -> List[FileRecord]:
        """File records of a folder ordered by upload time, then file id."""

    @abstractmethod
    async def register_download(self, file_id: str, is_master: bool = False) -> FileRecord:
        """
        Count one download. Raises FileNotFound, or DownloadLimitExceeded when
        download_limit is set and already reached. Master downloads are not counted.
        """

    async def enumerate_folder_members(self, folder_id: str) -> List[MemberRef]:
        """Archive members of a folder in a stable order."""
        files = await self.list_folder_files(folder_id)
        return [
            MemberRef(
                storage_path=f.storage_path,
                display_name=f.original_name,
                size=f.size,
                file_id=f.file_id,
            )
            for f in files
        ]
