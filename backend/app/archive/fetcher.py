"""Parallel fetch of folder members with bounded concurrency.

Members are split into batches of batch_size; batches run one after another and the
members of a batch are fetched concurrently, so at most batch_size transfers are in
flight. Outcomes come back in member order regardless of completion order.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

import httpx

from app.config import Settings
from app.errors import DownloadLimitExceeded
from app.metadata.base import MemberRef, MetadataStore, TokenRecord
from app.storage.gateway import ObjectStoreGateway

log = logging.getLogger(__name__)

# (batch_number, batch_count), batch_number starting at 1
ProgressCallback = Callable[[int, int], None]


@dataclass
class FetchOutcome:
    """Result of fetching one member: content on success, error otherwise."""

    index: int
    member: MemberRef
    content: Optional[bytes] = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.content is not None

    @property
    def limit_exceeded(self) -> bool:
        return isinstance(self.error, DownloadLimitExceeded)


class ParallelFetchScheduler:
    def __init__(
        self,
        gateway: ObjectStoreGateway,
        metadata: MetadataStore,
        settings: Settings,
        batch_size: Optional[int] = None,
    ) -> None:
        self._gateway = gateway
        self._metadata = metadata
        self._settings = settings
        self.batch_size = max(1, batch_size or settings.archive_batch_size)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            transport=self._gateway.transport(),
            timeout=self._settings.fetch_timeout_seconds,
            follow_redirects=True,
        )

    async def fetch_all(
        self,
        members: Sequence[MemberRef],
        token: TokenRecord,
        progress: Optional[ProgressCallback] = None,
    ) -> List[FetchOutcome]:
        """Fetch every member. Never raises for a single member's failure."""
        outcomes: List[FetchOutcome] = []
        total = len(members)
        batch_count = (total + self.batch_size - 1) // self.batch_size
        async with self._client() as client:
            for n, start in enumerate(range(0, total, self.batch_size), start=1):
                batch = members[start : start + self.batch_size]
                log.info("fetch batch %d/%d (%d members)", n, batch_count, len(batch))
                if progress:
                    progress(n, batch_count)
                results = await asyncio.gather(
                    *(self._fetch_one(client, start + i, m, token) for i, m in enumerate(batch))
                )
                outcomes.extend(results)
        failed = sum(1 for o in outcomes if not o.ok)
        log.info("fetched %d/%d members (%d failed)", total - failed, total, failed)
        return outcomes

    async def _fetch_one(
        self,
        client: httpx.AsyncClient,
        index: int,
        member: MemberRef,
        token: TokenRecord,
    ) -> FetchOutcome:
        try:
            if member.file_id:
                await self._metadata.register_download(member.file_id, is_master=token.is_master)
            url = await self._gateway.signed_get_url(
                member.storage_path, self._settings.member_url_expiry_seconds
            )
            response = await client.get(url)
            response.raise_for_status()
            return FetchOutcome(index=index, member=member, content=response.content)
        except Exception as e:
            log.warning("fetch failed name=%s path=%s: %s", member.display_name, member.storage_path, e)
            return FetchOutcome(index=index, member=member, error=e)
