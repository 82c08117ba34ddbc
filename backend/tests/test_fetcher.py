"""Tests for the batched parallel member fetch."""

import asyncio

import httpx
import pytest

from app.archive.fetcher import ParallelFetchScheduler
from app.errors import DownloadLimitExceeded
from app.metadata.base import FileRecord, MemberRef, TokenRecord
from app.metadata.memory import MemoryMetadataStore
from app.storage.memory import MemoryObjectStore


class InstrumentedStore(MemoryObjectStore):
    """Records how many signed-URL GETs are in flight at once."""

    def __init__(self, delays=None, **kw) -> None:
        super().__init__(**kw)
        self.delays = delays or {}
        self.in_flight = 0
        self.max_in_flight = 0
        self.events = []

    def transport(self) -> httpx.AsyncBaseTransport:
        async def handler(request: httpx.Request) -> httpx.Response:
            path = request.url.path.lstrip("/")
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
            self.events.append(("start", path))
            try:
                await asyncio.sleep(self.delays.get(path, 0.005))
                return self.handle_request(request)
            finally:
                self.in_flight -= 1
                self.events.append(("end", path))

        return httpx.MockTransport(handler)


def _token(**kw) -> TokenRecord:
    return TokenRecord(id="t", token_hash="h", name="T", **kw)


async def _seed(store, metadata, names, folder="F", limit=None):
    members = []
    for name in names:
        path = f"uploads/{folder}/{name}"
        if store is not None:
            await store.put_object(path, name.encode())
        await metadata.add_file(
            FileRecord(file_id=name, folder_id=folder, storage_path=path, original_name=name, size=1,
                       download_limit=limit)
        )
        members.append(MemberRef(storage_path=path, display_name=name, size=1, file_id=name))
    return members


@pytest.mark.asyncio
async def test_at_most_batch_size_in_flight(settings) -> None:
    store = InstrumentedStore()
    metadata = MemoryMetadataStore()
    members = await _seed(store, metadata, [f"{i:02d}.txt" for i in range(25)])
    fetcher = ParallelFetchScheduler(store, metadata, settings)
    outcomes = await fetcher.fetch_all(members, _token())
    assert fetcher.batch_size == 10
    assert len(outcomes) == 25
    assert all(o.ok for o in outcomes)
    assert store.max_in_flight <= 10
    assert store.max_in_flight == 10


@pytest.mark.asyncio
async def test_batches_run_sequentially(settings) -> None:
    """No member of batch k+1 starts before every member of batch k has finished."""
    store = InstrumentedStore()
    metadata = MemoryMetadataStore()
    names = [f"{i:02d}.txt" for i in range(6)]
    members = await _seed(store, metadata, names)
    fetcher = ParallelFetchScheduler(store, metadata, settings, batch_size=3)
    progress = []
    await fetcher.fetch_all(members, _token(), progress=lambda n, total: progress.append((n, total)))
    first_batch = {f"uploads/F/{n}" for n in names[:3]}
    last_end_of_first = max(i for i, (kind, p) in enumerate(store.events) if kind == "end" and p in first_batch)
    first_start_of_second = min(
        i for i, (kind, p) in enumerate(store.events) if kind == "start" and p not in first_batch
    )
    assert last_end_of_first < first_start_of_second
    assert progress == [(1, 2), (2, 2)]


@pytest.mark.asyncio
async def test_outcomes_in_member_order_regardless_of_completion(settings) -> None:
    names = ["slow.txt", "fast.txt", "medium.txt"]
    store = InstrumentedStore(delays={"uploads/F/slow.txt": 0.05, "uploads/F/fast.txt": 0.0, "uploads/F/medium.txt": 0.02})
    metadata = MemoryMetadataStore()
    members = await _seed(store, metadata, names)
    outcomes = await ParallelFetchScheduler(store, metadata, settings).fetch_all(members, _token())
    assert [o.member.display_name for o in outcomes] == names
    assert [o.index for o in outcomes] == [0, 1, 2]
    assert [o.content for o in outcomes] == [b"slow.txt", b"fast.txt", b"medium.txt"]


@pytest.mark.asyncio
async def test_partial_failure_does_not_abort(settings) -> None:
    store = MemoryObjectStore()
    metadata = MemoryMetadataStore()
    members = await _seed(store, metadata, ["a.txt", "b.txt", "c.txt"])
    await store.delete_object("uploads/F/b.txt")
    outcomes = await ParallelFetchScheduler(store, metadata, settings).fetch_all(members, _token())
    assert [o.ok for o in outcomes] == [True, False, True]
    assert isinstance(outcomes[1].error, httpx.HTTPStatusError)


@pytest.mark.asyncio
async def test_download_limit_marks_outcome(settings) -> None:
    store = MemoryObjectStore()
    metadata = MemoryMetadataStore()
    members = await _seed(store, metadata, ["a.txt"], limit=1)
    fetcher = ParallelFetchScheduler(store, metadata, settings)
    first = await fetcher.fetch_all(members, _token())
    second = await fetcher.fetch_all(members, _token())
    assert first[0].ok
    assert second[0].limit_exceeded
    assert isinstance(second[0].error, DownloadLimitExceeded)
    assert metadata.files["a.txt"].downloads_done == 1


@pytest.mark.asyncio
async def test_master_fetch_not_counted(settings) -> None:
    store = MemoryObjectStore()
    metadata = MemoryMetadataStore()
    members = await _seed(store, metadata, ["a.txt"], limit=1)
    fetcher = ParallelFetchScheduler(store, metadata, settings)
    for _ in range(3):
        outcomes = await fetcher.fetch_all(members, _token(is_master=True))
        assert outcomes[0].ok
    assert metadata.files["a.txt"].downloads_done == 0


@pytest.mark.asyncio
async def test_empty_member_list(settings) -> None:
    fetcher = ParallelFetchScheduler(MemoryObjectStore(), MemoryMetadataStore(), settings)
    assert await fetcher.fetch_all([], _token()) == []
