"""Object Store Gateway: primitive operations on objects keyed by opaque string paths.

Two implementations exist: S3ObjectStore (S3 / Cloudflare R2 via boto3) and
MemoryObjectStore (in-process, for development and tests). Everything above this
layer is written once against ObjectStoreGateway.
"""

from abc import ABC, abstractmethod
from typing import List, Optional

import httpx


class ObjectNotFound(Exception):
    """The requested object does not exist."""

    def __init__(self, path: str) -> None:
        super().__init__(f"Object not found: {path}")
        self.path = path


class ObjectStoreGateway(ABC):
    """
    Async contract for the durable object store.

    - exists() returns False for missing objects and raises InfrastructureError on
      transport failures; it never transfers the body.
    - delete_object() is idempotent: deleting a missing object succeeds.
    - Signed URLs are time-bounded capabilities; transport() returns the httpx
      transport able to dereference them (the real network for S3).
    """

    @abstractmethod
    async def exists(self, path: str) -> bool:
        """HEAD-style existence check."""

    @abstractmethod
    async def signed_get_url(
        self,
        path: str,
        expires_in: int,
        disposition: Optional[str] = None,
    ) -> str:
        """Time-limited GET URL; disposition is returned as Content-Disposition."""

    @abstractmethod
    async def signed_put_url(
        self,
        path: str,
        expires_in: int,
        content_type: Optional[str] = None,
    ) -> str:
        """Time-limited PUT URL."""

    @abstractmethod
    async def get_object(self, path: str) -> bytes:
        """Return object bytes; raise ObjectNotFound if missing."""

    @abstractmethod
    async def put_object(
        self,
        path: str,
        body: bytes,
        content_type: str = "application/octet-stream",
    ) -> None:
        """Create or overwrite an object."""

    @abstractmethod
    async def delete_object(self, path: str) -> None:
        """Delete an object; missing objects are not an error."""

    @abstractmethod
    async def list_objects(self, prefix: str) -> List[str]:
        """All object paths starting with prefix, in key order."""

    async def delete_prefix(self, prefix: str) -> int:
        """Delete every object under prefix. Returns the number of objects deleted."""
        paths = await self.list_objects(prefix)
        for path in paths:
            await self.delete_object(path)
        return len(paths)

    def transport(self) -> Optional[httpx.AsyncBaseTransport]:
        """httpx transport for signed URLs; None means the default network transport."""
        return None
