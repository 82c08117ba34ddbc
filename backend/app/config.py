"""Configuration from environment (no hardcoded secrets)."""

from pathlib import Path
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_FORBIDDEN_EXTENSIONS = ".exe,.js,.html,.php,.dll,.bat,.lnk,.url,.sh,.py,.vbs,.msi,.bin"


class Settings(BaseSettings):
    """Backend settings from env."""

    model_config = SettingsConfigDict(env_prefix="GORZ_", extra="ignore")

    # Backends: "memory" keeps everything in-process (dev/tests)
    storage_backend: str = "memory"
    metadata_backend: str = "sql"

    # S3 / Cloudflare R2
    s3_endpoint_url: str = ""
    s3_region: str = "auto"
    s3_bucket: str = ""
    s3_access_key_id: str = ""
    s3_secret_access_key: str = ""

    # In-memory object store (signed URLs are dereferenced through its own transport)
    memory_store_base_url: str = "http://objects.local"
    url_signing_secret: str = "dev-url-signing-secret"

    # Object layout
    uploads_prefix: str = "uploads"
    archive_prefix: str = "zips"
    archive_extension: str = "zip"

    # Archive engine tuning
    archive_batch_size: int = 10
    archive_url_expiry_seconds: int = 3600
    member_url_expiry_seconds: int = 300
    upload_url_expiry_seconds: int = 60
    local_archive_ttl_seconds: int = 300
    fetch_timeout_seconds: float = 60.0
    public_base_url: str = "http://localhost:8080"

    # Metadata DB
    db_path: Path = Path("/data/gorz.db")

    # Master token (SHA-256 hex) and admin PIN (bcrypt hash)
    master_token_hash: str = ""
    admin_pin_hash: str = ""

    # Admin session JWT
    jwt_secret: str = ""
    jwt_algorithm: str = "HS256"
    admin_session_minutes: int = 60

    # Uploads
    max_file_size: int = 500 * 1024 * 1024
    forbidden_extensions: str = DEFAULT_FORBIDDEN_EXTENSIONS

    # Public token issuance
    token_ttl_minutes: int = 10
    token_rate_limit: str = "3/20minutes"
    token_rate_limit_count: int = 3
    token_rate_limit_window_minutes: int = 20

    # CORS: comma-separated string so pydantic-settings does not try to JSON-decode it
    cors_origins: str = "http://localhost:5173"

    @property
    def cors_origins_list(self) -> List[str]:
        """CORS origins as a list (split on comma)."""
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()] or [
            "http://localhost:5173"
        ]

    @property
    def forbidden_extensions_set(self) -> frozenset:
        """Lower-cased extensions (with leading dot) rejected on upload."""
        out = set()
        for ext in self.forbidden_extensions.split(","):
            ext = ext.strip().lower()
            if not ext:
                continue
            out.add(ext if ext.startswith(".") else f".{ext}")
        return frozenset(out)

    # Server
    port: int = 8080

    # Logging (empty log_file = stderr only; level DEBUG|INFO|WARNING|ERROR)
    log_level: str = "INFO"
    log_file: str = ""


def get_settings() -> Settings:
    """Return application settings."""
    return Settings()
