"""Pytest configuration: set test env before any app imports so settings use test values."""

import os
import tempfile

import pytest
import pytest_asyncio

# Set before app.config / app.main are used so the module-level app gets test paths
_tmp = tempfile.mkdtemp(prefix="gorz_test_")
os.environ.setdefault("GORZ_DB_PATH", os.path.join(_tmp, "test.db"))
os.environ.setdefault("GORZ_JWT_SECRET", "test-jwt-secret-at-least-32-characters-long")
os.environ.setdefault("GORZ_STORAGE_BACKEND", "memory")

MASTER_TOKEN = "master-test-token"


@pytest.fixture
def settings(tmp_path):
    """Fresh settings per test: in-memory stores, master token, DB under tmp_path."""
    from app.config import Settings
    from app.metadata.base import hash_token

    return Settings(
        storage_backend="memory",
        metadata_backend="memory",
        db_path=tmp_path / "gorz.db",
        master_token_hash=hash_token(MASTER_TOKEN),
        jwt_secret="test-jwt-secret-at-least-32-characters-long",
        public_base_url="http://testserver",
    )


@pytest.fixture
def services(settings):
    """Services with a MemoryObjectStore and MemoryMetadataStore."""
    from app.container import build_services

    return build_services(settings)


@pytest.fixture
def gateway(services):
    return services.gateway


@pytest.fixture
def metadata(services):
    return services.metadata


@pytest_asyncio.fixture
async def sql_metadata(tmp_path):
    """SqlMetadataStore on a fresh SQLite file per test."""
    from app.db.session import create_engine_for_path, create_session_factory, init_db
    from app.metadata.base import hash_token
    from app.metadata.sql import SqlMetadataStore

    engine = create_engine_for_path(tmp_path / "meta.db")
    await init_db(engine)
    yield SqlMetadataStore(create_session_factory(engine), hash_token(MASTER_TOKEN))
    await engine.dispose()


@pytest.fixture
def make_token(metadata):
    """Create a token in the metadata store; returns the raw token string."""
    from datetime import timedelta

    from app.metadata.base import TokenRecord, hash_token, utcnow

    counter = {"n": 0}

    async def _make(
        permission="both",
        allowed_folders=(),
        max_uses=5,
        expires_in=timedelta(minutes=10),
        max_upload_size=None,
        store=None,
    ):
        counter["n"] += 1
        raw = f"token-{counter['n']}"
        await (store or metadata).create_token(
            TokenRecord(
                id=f"tok-{counter['n']}",
                token_hash=hash_token(raw),
                name=f"Tester {counter['n']}",
                permission=permission,
                allowed_folders=list(allowed_folders),
                max_uses=max_uses,
                expires_at=utcnow() + expires_in,
                max_upload_size=max_upload_size,
            )
        )
        return raw

    return _make
