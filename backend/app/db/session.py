"""SQLite engine and session factory. Built per app (no module-level engine) so tests get their own DB."""

from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator, Union

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def create_engine_for_path(db_path: Union[str, Path]) -> AsyncEngine:
    """Async engine for a SQLite file. SQLAlchemy async needs sqlite+aiosqlite and path as URL."""
    return create_async_engine(f"sqlite+aiosqlite:///{db_path}", echo=False)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


def _add_archive_password_column_if_missing(conn) -> None:
    """Add folders.archive_password if the column does not exist (migration)."""
    cursor = conn.execute(text("PRAGMA table_info(folders)"))
    rows = cursor.fetchall()
    # SQLite returns (cid, name, type, notnull, dflt_value, pk)
    if any(row[1] == "archive_password" for row in rows):
        return
    conn.execute(text("ALTER TABLE folders ADD COLUMN archive_password TEXT"))


async def init_db(engine: AsyncEngine) -> None:
    """Create tables if they do not exist, then run migrations."""
    # Register tables with Base
    from app.files.models import StoredFile  # noqa: F401
    from app.folders.models import Folder  # noqa: F401
    from app.tokens.models import AccessToken  # noqa: F401

    db_dir = Path(str(engine.url.database or "")).parent
    if str(db_dir) not in ("", "."):
        db_dir.mkdir(parents=True, exist_ok=True)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
        await conn.run_sync(_add_archive_password_column_if_missing)


@asynccontextmanager
async def session_scope(factory: async_sessionmaker) -> AsyncGenerator[AsyncSession, None]:
    """Yield an async session that commits on success and rolls back on error."""
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()
