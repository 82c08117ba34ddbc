"""Dict-backed metadata store for development and tests."""

import dataclasses
from datetime import datetime
from typing import Dict, List, Optional

from app.errors import DownloadLimitExceeded, FileNotFound, FolderExists, FolderNotFound
from app.metadata.base import FileRecord, FolderRecord, MetadataStore, TokenRecord, as_utc


class MemoryMetadataStore(MetadataStore):
    """Every method returns copies so callers cannot mutate stored records."""

    def __init__(self, master_token_hash: str = "") -> None:
        super().__init__(master_token_hash)
        self.tokens: Dict[str, TokenRecord] = {}
        self.folders: Dict[str, FolderRecord] = {}
        self.files: Dict[str, FileRecord] = {}

    async def find_token(self, token_hash: str) -> Optional[TokenRecord]:
        for t in self.tokens.values():
            if t.token_hash == token_hash:
                return dataclasses.replace(t)
        return None

    async def create_token(self, record: TokenRecord) -> TokenRecord:
        self.tokens[record.id] = dataclasses.replace(record)
        return record

    async def consume_token_use(self, token_id: str) -> None:
        t = self.tokens.get(token_id)
        if t:
            t.uses += 1

    async def count_recent_tokens(self, ip_address: str, since: datetime) -> int:
        return sum(
            1 for t in self.tokens.values()
            if t.ip_address == ip_address and as_utc(t.created_at) > since
        )

    async def get_folder(self, folder_id: str) -> Optional[FolderRecord]:
        folder = self.folders.get(folder_id)
        return dataclasses.replace(folder) if folder else None

    async def create_folder(self, record: FolderRecord) -> FolderRecord:
        if record.id in self.folders:
            raise FolderExists()
        self.folders[record.id] = dataclasses.replace(record)
        return record

    async def list_folders(self) -> List[FolderRecord]:
        return sorted(
            (dataclasses.replace(f) for f in self.folders.values()),
            key=lambda f: f.created_at,
            reverse=True,
        )

    async def set_folder_pause(self, folder_id: str, kind: str, paused: bool) -> FolderRecord:
        folder = self.folders.get(folder_id)
        if folder is None:
            raise FolderNotFound()
        if kind == "upload":
            folder.upload_paused = paused
        elif kind == "download":
            folder.download_paused = paused
        else:
            raise ValueError(f"Unknown pause kind: {kind!r}")
        return dataclasses.replace(folder)

    async def delete_folder(self, folder_id: str) -> int:
        if folder_id not in self.folders:
            raise FolderNotFound()
        del self.folders[folder_id]
        doomed = [fid for fid, f in self.files.items() if f.folder_id == folder_id]
        for fid in doomed:
            del self.files[fid]
        return len(doomed)

    async def add_file(self, record: FileRecord) -> FileRecord:
        self.files[record.file_id] = dataclasses.replace(record)
        return record

    async def get_file(self, file_id: str) -> Optional[FileRecord]:
        f = self.files.get(file_id)
        return dataclasses.replace(f) if f else None

    async def delete_file(self, file_id: str) -> Optional[FileRecord]:
        return self.files.pop(file_id, None)

    async def list_folder_files(self, folder_id: str) -> List[FileRecord]:
        files = [dataclasses.replace(f) for f in self.files.values() if f.folder_id == folder_id]
        return sorted(files, key=lambda f: (as_utc(f.uploaded_at), f.file_id))

    async def register_download(self, file_id: str, is_master: bool = False) -> FileRecord:
        f = self.files.get(file_id)
        if f is None:
            raise FileNotFound()
        if not is_master:
            if f.download_limit is not None and f.downloads_done >= f.download_limit:
                raise DownloadLimitExceeded()
            f.downloads_done += 1
        return dataclasses.replace(f)
