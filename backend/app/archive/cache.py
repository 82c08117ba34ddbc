"""Archive cache: one materialized archive per folder at derive_archive_cache_path(folder_id).

Presence of the object is the hit signal; there is no membership fingerprint. Every
upload/delete into a folder must call invalidate() before it reports success. A build
racing a mutation can still store an archive of the old membership; the next mutation's
invalidation clears it.
"""

import logging

from app.config import Settings
from app.errors import CacheStoreFailed
from app.storage.gateway import ObjectStoreGateway
from app.storage.paths import archive_filename, attachment_disposition, derive_archive_cache_path

log = logging.getLogger(__name__)

ARCHIVE_CONTENT_TYPE = "application/zip"


class ArchiveCache:
    def __init__(self, gateway: ObjectStoreGateway, settings: Settings) -> None:
        self._gateway = gateway
        self._settings = settings

    def path_for(self, folder_id: str) -> str:
        return derive_archive_cache_path(folder_id, self._settings)

    async def probe(self, folder_id: str) -> bool:
        """True if a cached archive exists. Transport errors propagate as InfrastructureError."""
        path = self.path_for(folder_id)
        present = await self._gateway.exists(path)
        log.debug("archive cache %s folder=%s", "hit" if present else "miss", folder_id)
        return present

    async def fetch_signed(self, folder_id: str) -> str:
        """Time-bounded download URL for the cached archive, served as an attachment."""
        return await self._gateway.signed_get_url(
            self.path_for(folder_id),
            self._settings.archive_url_expiry_seconds,
            disposition=attachment_disposition(archive_filename(folder_id, self._settings)),
        )

    async def store(self, folder_id: str, archive: bytes) -> None:
        """Write the archive. Raises CacheStoreFailed; callers treat that as non-fatal."""
        path = self.path_for(folder_id)
        try:
            await self._gateway.put_object(path, archive, ARCHIVE_CONTENT_TYPE)
        except Exception as e:
            raise CacheStoreFailed(f"Could not cache archive for folder {folder_id}") from e
        log.info("archive cached folder=%s path=%s size=%d", folder_id, path, len(archive))

    async def invalidate(self, folder_id: str) -> bool:
        """Delete the cached archive. Missing entry counts as success. Never raises; returns False on failure."""
        try:
            path = self.path_for(folder_id)
        except ValueError as e:
            log.warning("archive cache invalidation skipped folder=%r: %s", folder_id, e)
            return False
        try:
            await self._gateway.delete_object(path)
        except Exception as e:
            log.warning("archive cache invalidation failed folder=%s: %s", folder_id, e)
            return False
        log.info("archive cache invalidated folder=%s", folder_id)
        return True
