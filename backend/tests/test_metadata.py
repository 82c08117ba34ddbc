"""Metadata store tests, run against both the in-memory and the SQLite implementation."""

from datetime import timedelta

import pytest
import pytest_asyncio

from app.errors import (
    DownloadLimitExceeded,
    FileNotFound,
    FolderExists,
    FolderNotFound,
    InvalidToken,
    TokenExhausted,
    TokenExpired,
)
from app.metadata.base import FileRecord, FolderRecord, TokenRecord, hash_token, utcnow
from app.metadata.memory import MemoryMetadataStore

from conftest import MASTER_TOKEN


@pytest_asyncio.fixture(params=["memory", "sql"])
async def store(request, tmp_path):
    if request.param == "memory":
        yield MemoryMetadataStore(hash_token(MASTER_TOKEN))
        return
    from app.db.session import create_engine_for_path, create_session_factory, init_db
    from app.metadata.sql import SqlMetadataStore

    engine = create_engine_for_path(tmp_path / "meta.db")
    await init_db(engine)
    yield SqlMetadataStore(create_session_factory(engine), hash_token(MASTER_TOKEN))
    await engine.dispose()


def _token(raw: str, **kw) -> TokenRecord:
    defaults = dict(id=f"id-{raw}", token_hash=hash_token(raw), name="T", max_uses=1)
    defaults.update(kw)
    return TokenRecord(**defaults)


def _file(file_id: str, folder_id: str = "F", **kw) -> FileRecord:
    defaults = dict(
        file_id=file_id,
        folder_id=folder_id,
        storage_path=f"uploads/{folder_id}/{file_id}.txt",
        original_name=f"{file_id}.txt",
        size=3,
    )
    defaults.update(kw)
    return FileRecord(**defaults)


# --- tokens ---

@pytest.mark.asyncio
async def test_validate_token_ok(store) -> None:
    await store.create_token(_token("123456", allowed_folders=["F"]))
    record = await store.validate_token("123456")
    assert record.id == "id-123456"
    assert record.allowed_folders == ["F"]
    assert record.is_master is False


@pytest.mark.asyncio
async def test_validate_token_unknown(store) -> None:
    with pytest.raises(InvalidToken):
        await store.validate_token("nope")
    with pytest.raises(InvalidToken):
        await store.validate_token("")


@pytest.mark.asyncio
async def test_validate_token_expired(store) -> None:
    await store.create_token(_token("old", expires_at=utcnow() - timedelta(seconds=1)))
    with pytest.raises(TokenExpired):
        await store.validate_token("old")


@pytest.mark.asyncio
async def test_validate_token_exhausted_after_consume(store) -> None:
    await store.create_token(_token("once", max_uses=1))
    await store.validate_token("once")
    await store.consume_token_use("id-once")
    with pytest.raises(TokenExhausted):
        await store.validate_token("once")


@pytest.mark.asyncio
async def test_master_token(store) -> None:
    record = await store.validate_token(MASTER_TOKEN)
    assert record.is_master is True
    assert record.can_download() and record.can_upload()
    assert record.allows_folder("anything")


@pytest.mark.asyncio
async def test_count_recent_tokens(store) -> None:
    now = utcnow()
    await store.create_token(_token("a", ip_address="1.2.3.4", created_at=now))
    await store.create_token(_token("b", ip_address="1.2.3.4", created_at=now - timedelta(minutes=30)))
    await store.create_token(_token("c", ip_address="5.6.7.8", created_at=now))
    assert await store.count_recent_tokens("1.2.3.4", now - timedelta(minutes=20)) == 1


# --- folders ---

@pytest.mark.asyncio
async def test_folder_crud(store) -> None:
    await store.create_folder(FolderRecord(id="F", name="F", archive_password="pw"))
    with pytest.raises(FolderExists):
        await store.create_folder(FolderRecord(id="F", name="F"))
    folder = await store.get_folder("F")
    assert folder.archive_password == "pw"
    paused = await store.set_folder_pause("F", "download", True)
    assert paused.download_paused is True
    config = await store.get_folder_config("F")
    assert config.download_paused is True
    assert config.upload_paused is False
    assert config.archive_password == "pw"


@pytest.mark.asyncio
async def test_folder_config_defaults_for_unknown_folder(store) -> None:
    config = await store.get_folder_config("unknown")
    assert config.download_paused is False
    assert config.archive_password is None


@pytest.mark.asyncio
async def test_list_folders_newest_first(store) -> None:
    now = utcnow()
    await store.create_folder(FolderRecord(id="OLD", name="old", created_at=now - timedelta(days=1)))
    await store.create_folder(FolderRecord(id="NEW", name="new", created_at=now))
    assert [f.id for f in await store.list_folders()] == ["NEW", "OLD"]


@pytest.mark.asyncio
async def test_pause_unknown_folder(store) -> None:
    with pytest.raises(FolderNotFound):
        await store.set_folder_pause("missing", "upload", True)


@pytest.mark.asyncio
async def test_delete_folder_cascades_file_rows(store) -> None:
    await store.create_folder(FolderRecord(id="F", name="F"))
    await store.add_file(_file("a"))
    await store.add_file(_file("b"))
    await store.add_file(_file("c", folder_id="G"))
    assert await store.delete_folder("F") == 2
    assert await store.get_folder("F") is None
    assert await store.list_folder_files("F") == []
    assert len(await store.list_folder_files("G")) == 1
    with pytest.raises(FolderNotFound):
        await store.delete_folder("F")


# --- files ---

@pytest.mark.asyncio
async def test_enumerate_members_ordered_by_upload_time(store) -> None:
    base = utcnow()
    await store.add_file(_file("z", uploaded_at=base))
    await store.add_file(_file("a", uploaded_at=base + timedelta(seconds=5)))
    await store.add_file(_file("m", uploaded_at=base))
    members = await store.enumerate_folder_members("F")
    assert [m.file_id for m in members] == ["m", "z", "a"]
    assert members[0].display_name == "m.txt"
    assert members[0].storage_path == "uploads/F/m.txt"


@pytest.mark.asyncio
async def test_register_download_counts_until_limit(store) -> None:
    await store.add_file(_file("a", download_limit=2))
    assert (await store.register_download("a")).downloads_done == 1
    assert (await store.register_download("a")).downloads_done == 2
    with pytest.raises(DownloadLimitExceeded):
        await store.register_download("a")
    assert (await store.get_file("a")).downloads_done == 2


@pytest.mark.asyncio
async def test_register_download_unlimited(store) -> None:
    await store.add_file(_file("a"))
    for _ in range(3):
        record = await store.register_download("a")
    assert record.downloads_done == 3


@pytest.mark.asyncio
async def test_register_download_master_not_counted(store) -> None:
    await store.add_file(_file("a", download_limit=1, downloads_done=1))
    record = await store.register_download("a", is_master=True)
    assert record.downloads_done == 1


@pytest.mark.asyncio
async def test_register_download_missing_file(store) -> None:
    with pytest.raises(FileNotFound):
        await store.register_download("missing")


@pytest.mark.asyncio
async def test_delete_file(store) -> None:
    await store.add_file(_file("a"))
    deleted = await store.delete_file("a")
    assert deleted.file_id == "a"
    assert await store.get_file("a") is None
    assert await store.delete_file("a") is None
