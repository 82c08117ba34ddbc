"""Service wiring: one Services instance per app, built from Settings and kept on app.state."""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine

from app.archive.cache import ArchiveCache
from app.archive.fetcher import ParallelFetchScheduler
from app.archive.local import LocalArchiveStash
from app.archive.service import FolderArchiveService
from app.config import Settings
from app.db.session import create_engine_for_path, create_session_factory
from app.metadata.base import MetadataStore
from app.metadata.memory import MemoryMetadataStore
from app.metadata.sql import SqlMetadataStore
from app.storage.gateway import ObjectStoreGateway
from app.storage.memory import MemoryObjectStore
from app.storage.s3 import S3ObjectStore

log = logging.getLogger(__name__)


@dataclass
class Services:
    settings: Settings
    gateway: ObjectStoreGateway
    metadata: MetadataStore
    archives: FolderArchiveService
    stash: LocalArchiveStash
    engine: Optional[AsyncEngine] = None


def build_gateway(settings: Settings) -> ObjectStoreGateway:
    backend = settings.storage_backend.lower()
    if backend == "s3":
        return S3ObjectStore.from_settings(settings)
    if backend == "memory":
        return MemoryObjectStore(settings.memory_store_base_url, settings.url_signing_secret)
    raise ValueError(f"Unknown storage backend: {settings.storage_backend!r}")


def build_services(
    settings: Settings,
    gateway: Optional[ObjectStoreGateway] = None,
    metadata: Optional[MetadataStore] = None,
) -> Services:
    """Assemble gateway, metadata store and archive engine. Explicit gateway/metadata win over settings."""
    engine: Optional[AsyncEngine] = None
    if gateway is None:
        gateway = build_gateway(settings)
    if metadata is None:
        backend = settings.metadata_backend.lower()
        if backend == "sql":
            engine = create_engine_for_path(settings.db_path)
            metadata = SqlMetadataStore(create_session_factory(engine), settings.master_token_hash)
        elif backend == "memory":
            metadata = MemoryMetadataStore(settings.master_token_hash)
        else:
            raise ValueError(f"Unknown metadata backend: {settings.metadata_backend!r}")
    stash = LocalArchiveStash(settings.local_archive_ttl_seconds)
    archives = FolderArchiveService(
        metadata=metadata,
        cache=ArchiveCache(gateway, settings),
        fetcher=ParallelFetchScheduler(gateway, metadata, settings),
        stash=stash,
        settings=settings,
    )
    log.info(
        "services built storage=%s metadata=%s",
        type(gateway).__name__, type(metadata).__name__,
    )
    return Services(
        settings=settings,
        gateway=gateway,
        metadata=metadata,
        archives=archives,
        stash=stash,
        engine=engine,
    )
