"""Stored file SQLAlchemy model and Pydantic schemas."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field
from sqlalchemy import BigInteger, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from app.db.session import Base


class StoredFile(Base):
    """File metadata; bytes live in the object store at storage_path."""

    __tablename__ = "files"

    file_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    folder_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, index=True)
    storage_path: Mapped[str] = mapped_column(String(2048), nullable=False)
    original_name: Mapped[str] = mapped_column(String(1024), nullable=False)
    size: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    content_type: Mapped[str] = mapped_column(String(255), nullable=False, default="application/octet-stream")
    content_class: Mapped[str] = mapped_column(String(16), nullable=False, default="other")
    # None = unlimited downloads
    download_limit: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    downloads_done: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    token_hash: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    uploader_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    ip_address: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    uploaded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class UploadUrlRequest(BaseModel):
    """Start a presigned upload."""

    folder_id: str
    name: str = Field(min_length=1, max_length=1024)
    size: int = Field(ge=0)
    content_type: str = "application/octet-stream"
    download_limit: Optional[int] = Field(default=None, ge=1)


class UploadUrlResponse(BaseModel):
    upload_url: str
    storage_path: str
    expires_in: int


class UploadComplete(BaseModel):
    """Finish a presigned upload once the bytes are in the object store."""

    folder_id: str
    name: str = Field(min_length=1, max_length=1024)
    size: int = Field(ge=0)
    content_type: str = "application/octet-stream"
    download_limit: Optional[int] = Field(default=None, ge=1)


class FileInfo(BaseModel):
    file_id: str
    folder_id: Optional[str] = None
    name: str
    size: int
    content_class: str
    download_limit: Optional[int] = None
    downloads_done: int = 0
    uploaded_at: datetime


class DownloadLink(BaseModel):
    url: str
    expires_in: int
    name: str
