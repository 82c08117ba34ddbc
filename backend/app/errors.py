"""Domain errors. Each carries the HTTP status and the message shown to callers."""

from typing import Optional


class GorzError(Exception):
    """Base for errors surfaced to API callers."""

    status_code = 500
    code = "error"
    default_detail = "Request failed"

    def __init__(self, detail: Optional[str] = None) -> None:
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


# --- Token validation ---

class InvalidToken(GorzError):
    status_code = 401
    code = "invalid_token"
    default_detail = "Invalid token"


class TokenExpired(GorzError):
    status_code = 401
    code = "token_expired"
    default_detail = "Token expired"


class TokenExhausted(GorzError):
    status_code = 401
    code = "token_exhausted"
    default_detail = "Token already used"


class TokenRateLimited(GorzError):
    status_code = 429
    code = "token_rate_limited"
    default_detail = "Rate limit exceeded. Try again in 20 minutes."


# --- Access ---

class AccessDenied(GorzError):
    """Caller lacks permission or folder scope. Detail never says which check failed."""

    status_code = 403
    code = "access_denied"
    default_detail = "Access denied"


class DownloadPaused(GorzError):
    status_code = 423
    code = "download_paused"
    default_detail = "Downloads are currently paused for this folder."


class UploadPaused(GorzError):
    status_code = 423
    code = "upload_paused"
    default_detail = "Uploads are currently paused for this folder."


class DownloadLimitExceeded(GorzError):
    status_code = 410
    code = "download_limit_exceeded"
    default_detail = "Download limit reached. You cannot download these files again."


# --- Folders and files ---

class FolderNotFound(GorzError):
    status_code = 404
    code = "folder_not_found"
    default_detail = "Folder not found"


class FolderExists(GorzError):
    status_code = 409
    code = "folder_exists"
    default_detail = "Folder with this name already exists."


class FileNotFound(GorzError):
    status_code = 404
    code = "file_not_found"
    default_detail = "File not found"


class ForbiddenFileType(GorzError):
    status_code = 415
    code = "forbidden_file_type"
    default_detail = "File type prohibited."


class UploadTooLarge(GorzError):
    status_code = 413
    code = "upload_too_large"
    default_detail = "File exceeds the upload size limit"


class InvalidPath(GorzError):
    status_code = 400
    code = "invalid_path"
    default_detail = "Invalid path"


# --- Archive engine ---

class EmptyFolder(GorzError):
    status_code = 404
    code = "empty_folder"
    default_detail = "No files found in this folder."


class ArchiveBuildFailed(GorzError):
    """Every member fetch failed (for reasons other than quota) or the writer failed."""

    status_code = 502
    code = "archive_build_failed"
    default_detail = "Could not build the folder archive."

    def __init__(self, detail: Optional[str] = None, cause: Optional[BaseException] = None) -> None:
        super().__init__(detail)
        self.cause = cause


class CacheStoreFailed(GorzError):
    """Internal only: writing the archive cache entry failed. Logged, never surfaced."""

    code = "cache_store_failed"
    default_detail = "Could not store archive cache entry"


class InfrastructureError(GorzError):
    """Object store transport failure on an operation that must succeed."""

    status_code = 503
    code = "infrastructure_error"
    default_detail = "Storage temporarily unavailable"


class TokenExists(GorzError):
    status_code = 409
    code = "token_exists"
    default_detail = "Token identifier already exists."
