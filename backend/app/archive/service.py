"""Folder archive orchestration: cache check, member fetch, zip build, cache store, signed URL.

Per call: Checking -> HitServing, or Enumerating -> Fetching -> Writing -> Caching -> Serving,
with EmptyFolder / DownloadLimitExceeded / ArchiveBuildFailed as the failure exits.
There are no retries here; a failed call is retried by the caller.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from app.archive.cache import ArchiveCache
from app.archive.fetcher import FetchOutcome, ParallelFetchScheduler, ProgressCallback
from app.archive.local import LocalArchiveStash
from app.archive.writer import ArchiveWriter
from app.config import Settings
from app.errors import (
    AccessDenied,
    ArchiveBuildFailed,
    CacheStoreFailed,
    DownloadLimitExceeded,
    DownloadPaused,
    EmptyFolder,
    GorzError,
    InfrastructureError,
    InvalidPath,
)
from app.metadata.base import MetadataStore, TokenRecord
from app.storage.paths import archive_filename

log = logging.getLogger(__name__)


@dataclass
class ArchiveLink:
    """Where to download a folder archive."""

    url: str
    cached: bool
    expires_in: int
    entries: Optional[int] = None
    skipped: List[str] = field(default_factory=list)


class FolderArchiveService:
    def __init__(
        self,
        metadata: MetadataStore,
        cache: ArchiveCache,
        fetcher: ParallelFetchScheduler,
        stash: LocalArchiveStash,
        settings: Settings,
    ) -> None:
        self._metadata = metadata
        self._cache = cache
        self._fetcher = fetcher
        self._stash = stash
        self._settings = settings

    async def authorize(self, folder_id: str, token: str) -> TokenRecord:
        """Token must allow download on folder_id and the folder must not be paused. Master bypasses both."""
        record = await self._metadata.validate_token(token)
        if record.is_master:
            return record
        if not record.allows_folder(folder_id) or not record.can_download():
            log.warning("archive access denied folder=%s token_id=%s", folder_id, record.id)
            raise AccessDenied()
        config = await self._metadata.get_folder_config(folder_id)
        if config.download_paused:
            raise DownloadPaused()
        return record

    async def get_or_build_archive(
        self,
        folder_id: str,
        token: str,
        progress: Optional[ProgressCallback] = None,
    ) -> ArchiveLink:
        try:
            self._cache.path_for(folder_id)
        except ValueError as e:
            log.warning("archive rejected folder=%r: %s", folder_id, e)
            raise InvalidPath(str(e)) from e
        record = await self.authorize(folder_id, token)

        if await self._cache.probe(folder_id):
            log.info("archive cache hit folder=%s", folder_id)
            return ArchiveLink(
                url=await self._signed_cache_url(folder_id),
                cached=True,
                expires_in=self._settings.archive_url_expiry_seconds,
            )

        members = await self._metadata.enumerate_folder_members(folder_id)
        if not members:
            raise EmptyFolder()
        log.info("archive build folder=%s members=%d", folder_id, len(members))

        outcomes = await self._fetcher.fetch_all(members, record, progress=progress)
        succeeded = [o for o in outcomes if o.ok]
        if not succeeded:
            raise self._all_failed_error(folder_id, outcomes)

        config = await self._metadata.get_folder_config(folder_id)
        archive = self._write_archive(folder_id, succeeded, config.archive_password)
        skipped = [o.member.display_name for o in outcomes if not o.ok]

        try:
            await self._cache.store(folder_id, archive)
        except CacheStoreFailed as e:
            log.warning("%s (non-fatal): %s", e.detail, e.__cause__)
            key = self._stash.put(folder_id, archive_filename(folder_id, self._settings), archive)
            return ArchiveLink(
                url=f"{self._settings.public_base_url.rstrip('/')}/api/archives/local/{key}",
                cached=False,
                expires_in=self._stash.ttl_seconds,
                entries=len(succeeded),
                skipped=skipped,
            )

        return ArchiveLink(
            url=await self._signed_cache_url(folder_id),
            cached=False,
            expires_in=self._settings.archive_url_expiry_seconds,
            entries=len(succeeded),
            skipped=skipped,
        )

    async def on_folder_mutated(self, folder_id: str) -> None:
        """Drop the folder's cached archive. Called by every upload/delete before it returns."""
        await self._cache.invalidate(folder_id)

    def _all_failed_error(self, folder_id: str, outcomes: List[FetchOutcome]) -> GorzError:
        if any(o.limit_exceeded for o in outcomes):
            log.warning("archive build failed folder=%s: download limit reached", folder_id)
            return DownloadLimitExceeded()
        last = next((o.error for o in reversed(outcomes) if o.error is not None), None)
        log.warning("archive build failed folder=%s: no member could be fetched (last error: %s)", folder_id, last)
        return ArchiveBuildFailed(
            f"Failed to add any files to the archive: {last}" if last else None,
            cause=last,
        )

    def _write_archive(self, folder_id: str, succeeded: List[FetchOutcome], password: Optional[str]) -> bytes:
        # Member order, not completion order
        try:
            writer = ArchiveWriter.open(password)
            for outcome in sorted(succeeded, key=lambda o: o.index):
                writer.append(outcome.member.display_name, outcome.content)
            archive = writer.finalize()
        except Exception as e:
            log.exception("archive writer failed folder=%s", folder_id)
            raise ArchiveBuildFailed(cause=e) from e
        log.info(
            "archive built folder=%s entries=%d size=%d encrypted=%s",
            folder_id, writer.entries, len(archive), writer.encrypted,
        )
        return archive

    async def _signed_cache_url(self, folder_id: str) -> str:
        try:
            return await self._cache.fetch_signed(folder_id)
        except InfrastructureError:
            raise
        except Exception as e:
            log.error("signing archive URL failed folder=%s: %s", folder_id, e)
            raise InfrastructureError() from e
