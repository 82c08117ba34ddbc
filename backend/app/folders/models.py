"""Folder SQLAlchemy model and Pydantic schemas."""

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import Boolean, DateTime, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from app.db.session import Base


class Folder(Base):
    """Folder table: id is the manual name or an auto-generated six-char code."""

    __tablename__ = "folders"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    is_auto_generated: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    archive_password: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    upload_paused: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    download_paused: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )


class FolderCreate(BaseModel):
    """Admin request to create a folder. auto=True generates the id."""

    name: str = Field(min_length=1, max_length=255)
    auto: bool = False
    archive_password: Optional[str] = None


class FolderPause(BaseModel):
    kind: Literal["upload", "download"]
    paused: bool


class FolderResponse(BaseModel):
    """Folder as returned by API (password presence only)."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    is_auto_generated: bool
    upload_paused: bool
    download_paused: bool
    has_password: bool = False
    created_at: datetime
