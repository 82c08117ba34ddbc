"""Folder archive service: cache hits, builds, invalidation, partial failure, access checks."""

import io
from unittest.mock import AsyncMock, patch

import httpx
import pytest
import pyzipper

from app.errors import (
    AccessDenied,
    ArchiveBuildFailed,
    DownloadLimitExceeded,
    DownloadPaused,
    EmptyFolder,
    InfrastructureError,
    InvalidPath,
)
from app.files import service as files_service
from app.metadata.base import FolderRecord

from conftest import MASTER_TOKEN


async def _download(gateway, url: str) -> bytes:
    async with httpx.AsyncClient(transport=gateway.transport()) as client:
        r = await client.get(url)
    r.raise_for_status()
    return r.content


def _names(archive: bytes, password=None) -> list:
    with pyzipper.AESZipFile(io.BytesIO(archive)) as zf:
        if password:
            zf.setpassword(password.encode("utf-8"))
        return zf.namelist()


def _contents(archive: bytes, password=None) -> dict:
    with pyzipper.AESZipFile(io.BytesIO(archive)) as zf:
        if password:
            zf.setpassword(password.encode("utf-8"))
        return {n: zf.read(n) for n in zf.namelist()}


async def _folder(services, folder_id="F", names=(), password=None, download_limit=None):
    await services.metadata.create_folder(FolderRecord(id=folder_id, name=folder_id, archive_password=password))
    for name in names:
        await files_service.upload_file(
            services, MASTER_TOKEN, folder_id, name, f"content of {name}".encode(),
            download_limit=download_limit,
        )


@pytest.mark.asyncio
async def test_miss_builds_and_caches(services, make_token) -> None:
    await _folder(services, names=["a.txt", "b.txt"])
    token = await make_token(permission="download", allowed_folders=["F"])
    link = await services.archives.get_or_build_archive("F", token)
    assert link.cached is False
    assert link.entries == 2
    assert link.expires_in == 3600
    assert await services.gateway.exists("zips/F.zip")
    archive = await _download(services.gateway, link.url)
    assert _contents(archive) == {"a.txt": b"content of a.txt", "b.txt": b"content of b.txt"}


@pytest.mark.asyncio
async def test_cache_hit_short_circuits(services, make_token) -> None:
    """Second request is served from cache without enumerating or fetching members."""
    await _folder(services, names=["a.txt"])
    token = await make_token(permission="both", allowed_folders=["F"])
    first = await services.archives.get_or_build_archive("F", token)
    fetcher = services.archives._fetcher
    with patch.object(services.metadata, "enumerate_folder_members", wraps=services.metadata.enumerate_folder_members) as enum_spy, \
            patch.object(fetcher, "fetch_all", wraps=fetcher.fetch_all) as fetch_spy:
        second = await services.archives.get_or_build_archive("F", token)
    assert first.cached is False
    assert second.cached is True
    assert enum_spy.call_count == 0
    assert fetch_spy.call_count == 0
    assert await _download(services.gateway, second.url) == await services.gateway.get_object("zips/F.zip")


@pytest.mark.asyncio
async def test_cached_archive_served_even_if_members_changed_out_of_band(services, make_token) -> None:
    """Only presence is checked; a cached entry is served as-is."""
    await _folder(services, names=["a.txt"])
    token = await make_token(allowed_folders=["F"])
    await services.gateway.put_object("zips/F.zip", b"stale-but-present", "application/zip")
    link = await services.archives.get_or_build_archive("F", token)
    assert link.cached is True
    assert await _download(services.gateway, link.url) == b"stale-but-present"


@pytest.mark.asyncio
async def test_upload_invalidates_then_rebuild_includes_new_file(services, make_token) -> None:
    await _folder(services, names=["a.txt"])
    token = await make_token(allowed_folders=["F"], max_uses=10)
    await services.archives.get_or_build_archive("F", token)
    assert await services.gateway.exists("zips/F.zip")

    await files_service.upload_file(services, MASTER_TOKEN, "F", "b.txt", b"new")
    assert not await services.gateway.exists("zips/F.zip")

    link = await services.archives.get_or_build_archive("F", token)
    assert link.cached is False
    assert sorted(_names(await _download(services.gateway, link.url))) == ["a.txt", "b.txt"]


@pytest.mark.asyncio
async def test_delete_invalidates_cache(services, make_token) -> None:
    await _folder(services, names=["a.txt", "b.txt"])
    token = await make_token(allowed_folders=["F"])
    await services.archives.get_or_build_archive("F", token)
    file_id = next(f.file_id for f in await services.metadata.list_folder_files("F") if f.original_name == "a.txt")
    await files_service.delete_file(services, file_id)
    assert not await services.gateway.exists("zips/F.zip")
    link = await services.archives.get_or_build_archive("F", token)
    assert _names(await _download(services.gateway, link.url)) == ["b.txt"]


@pytest.mark.asyncio
async def test_partial_failure_builds_from_survivors(services, make_token) -> None:
    names = ["1.txt", "2.txt", "3.txt", "4.txt", "5.txt"]
    await _folder(services, names=names)
    await services.gateway.delete_object("uploads/F/2.txt")
    await services.gateway.delete_object("uploads/F/4.txt")
    token = await make_token(allowed_folders=["F"])
    order = [m.display_name for m in await services.metadata.enumerate_folder_members("F")]
    link = await services.archives.get_or_build_archive("F", token)
    assert link.entries == 3
    assert link.skipped == [n for n in order if n in ("2.txt", "4.txt")]
    assert _names(await _download(services.gateway, link.url)) == [
        n for n in order if n in ("1.txt", "3.txt", "5.txt")
    ]


@pytest.mark.asyncio
async def test_all_members_fail_no_cache_entry(services, make_token) -> None:
    await _folder(services, names=["a.txt", "b.txt"])
    await services.gateway.delete_prefix("uploads/F/")
    token = await make_token(allowed_folders=["F"])
    with pytest.raises(ArchiveBuildFailed) as exc:
        await services.archives.get_or_build_archive("F", token)
    assert isinstance(exc.value.cause, httpx.HTTPStatusError)
    assert not await services.gateway.exists("zips/F.zip")


@pytest.mark.asyncio
async def test_all_members_over_limit_is_download_limit_exceeded(services, make_token) -> None:
    await _folder(services, names=["a.txt", "b.txt"], download_limit=1)
    token = await make_token(allowed_folders=["F"], max_uses=5)
    await services.archives.get_or_build_archive("F", token)
    await services.archives.on_folder_mutated("F")
    with pytest.raises(DownloadLimitExceeded):
        await services.archives.get_or_build_archive("F", token)
    assert not await services.gateway.exists("zips/F.zip")


@pytest.mark.asyncio
async def test_empty_folder(services, make_token) -> None:
    await _folder(services)
    token = await make_token(allowed_folders=["F"])
    fetcher = services.archives._fetcher
    with patch.object(fetcher, "fetch_all", wraps=fetcher.fetch_all) as fetch_spy:
        with pytest.raises(EmptyFolder):
            await services.archives.get_or_build_archive("F", token)
    assert fetch_spy.call_count == 0
    assert not await services.gateway.exists("zips/F.zip")


@pytest.mark.asyncio
async def test_member_order_is_deterministic(services, make_token) -> None:
    names = ["z.txt", "a.txt", "m.txt", "b.txt"]
    await _folder(services, names=names)
    token = await make_token(allowed_folders=["F"], max_uses=5)
    first = _names(await _download(services.gateway, (await services.archives.get_or_build_archive("F", token)).url))
    await services.archives.on_folder_mutated("F")
    second = _names(await _download(services.gateway, (await services.archives.get_or_build_archive("F", token)).url))
    expected = [m.display_name for m in await services.metadata.enumerate_folder_members("F")]
    assert first == second == expected


@pytest.mark.asyncio
async def test_password_protected_folder_end_to_end(services, make_token) -> None:
    """ABC123 with two files and a password: first call builds, second is a hit, entries are encrypted."""
    await _folder(services, "ABC123", names=["photo.jpg", "notes.txt"], password="s3cret")
    token = await make_token(permission="download", allowed_folders=["ABC123"], max_uses=5)

    first = await services.archives.get_or_build_archive("ABC123", token)
    assert first.cached is False
    assert await services.gateway.exists("zips/ABC123.zip")
    archive = await _download(services.gateway, first.url)
    with pyzipper.AESZipFile(io.BytesIO(archive)) as zf:
        assert all(info.flag_bits & 0x1 for info in zf.infolist())
    assert _contents(archive, "s3cret") == {
        "photo.jpg": b"content of photo.jpg",
        "notes.txt": b"content of notes.txt",
    }

    second = await services.archives.get_or_build_archive("ABC123", token)
    assert second.cached is True
    assert await _download(services.gateway, second.url) == archive


@pytest.mark.asyncio
async def test_cache_store_failure_falls_back_to_local_stash(services, make_token) -> None:
    await _folder(services, names=["a.txt"])
    token = await make_token(allowed_folders=["F"])
    with patch.object(services.gateway, "put_object", AsyncMock(side_effect=InfrastructureError())):
        link = await services.archives.get_or_build_archive("F", token)
    assert link.cached is False
    assert link.url.startswith("http://testserver/api/archives/local/")
    key = link.url.rsplit("/", 1)[1]
    item = services.stash.get(key)
    assert item is not None
    assert item.filename == "F.zip"
    assert _names(item.content) == ["a.txt"]
    assert not await services.gateway.exists("zips/F.zip")


@pytest.mark.asyncio
async def test_probe_failure_propagates(services, make_token) -> None:
    await _folder(services, names=["a.txt"])
    token = await make_token(allowed_folders=["F"])
    with patch.object(services.gateway, "exists", AsyncMock(side_effect=InfrastructureError())):
        with pytest.raises(InfrastructureError):
            await services.archives.get_or_build_archive("F", token)


@pytest.mark.asyncio
async def test_token_without_folder_scope_denied(services, make_token) -> None:
    await _folder(services, names=["a.txt"])
    token = await make_token(allowed_folders=["OTHER"])
    with pytest.raises(AccessDenied):
        await services.archives.get_or_build_archive("F", token)


@pytest.mark.asyncio
async def test_upload_only_token_denied(services, make_token) -> None:
    await _folder(services, names=["a.txt"])
    token = await make_token(permission="upload", allowed_folders=["F"])
    with pytest.raises(AccessDenied):
        await services.archives.get_or_build_archive("F", token)


@pytest.mark.asyncio
async def test_paused_folder_denied_before_cache_probe(services, make_token) -> None:
    await _folder(services, names=["a.txt"])
    token = await make_token(allowed_folders=["F"])
    await services.archives.get_or_build_archive("F", token)
    await services.metadata.set_folder_pause("F", "download", True)
    with pytest.raises(DownloadPaused):
        await services.archives.get_or_build_archive("F", token)


@pytest.mark.asyncio
async def test_master_bypasses_scope_and_pause(services) -> None:
    await _folder(services, names=["a.txt"], download_limit=1)
    await services.metadata.set_folder_pause("F", "download", True)
    for _ in range(2):
        link = await services.archives.get_or_build_archive("F", MASTER_TOKEN)
        await services.archives.on_folder_mutated("F")
    assert link.entries == 1
    assert (await services.metadata.list_folder_files("F"))[0].downloads_done == 0


@pytest.mark.asyncio
async def test_network_error_on_one_member_skips_it(services, make_token) -> None:
    """A member whose transfer fails at the connection level is left out; the rest are archived."""
    await _folder(services, names=["a.txt", "b.txt", "c.png"])
    token = await make_token(allowed_folders=["F"])
    gateway = services.gateway

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/c.png"):
            raise httpx.ConnectError("connection reset", request=request)
        return gateway.handle_request(request)

    with patch.object(gateway, "transport", lambda: httpx.MockTransport(handler)):
        link = await services.archives.get_or_build_archive("F", token)
    assert link.cached is False
    assert link.entries == 2
    assert link.skipped == ["c.png"]
    assert await gateway.exists("zips/F.zip")
    assert sorted(_names(await _download(gateway, link.url))) == ["a.txt", "b.txt"]


@pytest.mark.asyncio
async def test_unsafe_folder_id_is_invalid_path(services) -> None:
    with patch.object(services.gateway, "exists", wraps=services.gateway.exists) as exists_spy:
        with pytest.raises(InvalidPath):
            await services.archives.get_or_build_archive("a%b", MASTER_TOKEN)
    assert exists_spy.call_count == 0
