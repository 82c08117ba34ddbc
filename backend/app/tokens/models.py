"""Access token SQLAlchemy model and Pydantic schemas."""

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field
from sqlalchemy import JSON, BigInteger, DateTime, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from app.db.session import Base


class AccessToken(Base):
    """Token table: only the SHA-256 of the raw token is stored."""

    __tablename__ = "tokens"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    token_hash: Mapped[str] = mapped_column(String(64), unique=True, index=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    purpose: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    permission: Mapped[str] = mapped_column(String(16), nullable=False, default="both")
    allowed_folders: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    max_uses: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    uses: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    ip_address: Mapped[str] = mapped_column(String(64), nullable=False, default="", index=True)
    # Optional per-token upload size limit (bytes). None = server limit only.
    max_upload_size: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )


# Pydantic schemas for API
class TokenRequest(BaseModel):
    """Public request for a one-time token."""

    name: str = Field(min_length=1, max_length=255)
    purpose: str = Field(default="", max_length=255)


class CustomTokenCreate(BaseModel):
    """Admin request for a scoped token. token=None generates one."""

    token: Optional[str] = Field(default=None, min_length=4, max_length=128)
    name: str = Field(min_length=1, max_length=255)
    purpose: str = ""
    permission: Literal["upload", "download", "both"] = "both"
    allowed_folders: List[str] = []
    max_uses: int = Field(default=1, ge=1)
    expires_in_minutes: int = Field(default=60, ge=1)
    max_upload_size: Optional[int] = Field(default=None, ge=1)


class TokenIssued(BaseModel):
    """Raw token as returned once at issuance."""

    token: str
    id: str
    expires_at: datetime
    permission: str
    allowed_folders: List[str] = []
    max_uses: int
