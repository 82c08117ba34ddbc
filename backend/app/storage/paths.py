"""Object key layout: member objects under uploads/<folder>/, archives under zips/<folder>.zip.

derive_archive_cache_path is the only place the archive cache key is built; cache
lookup, store and invalidation all go through it.
"""

import re
import unicodedata
from typing import Optional

from app.config import Settings, get_settings

# Safe path segment: letters, numbers, common punctuation. No / \ (traversal).
# Allow: . _ - space ( ) + ~ # ! & ' , ; = [ ] @ for "File (1).txt", "user@host.txt", etc.
_SAFE_SEGMENT_ASCII = re.compile(r"^[a-zA-Z0-9_. \-()+~#!&',;=\[\]@]+$")


def _is_safe_path_char(c: str) -> bool:
    """True if char is allowed in a path segment (no traversal, no control chars)."""
    if len(c) != 1:
        return False
    if c in "/\\%":
        return False  # % can be used in encoding/URLs; keep path segments safe
    if ord(c) < 32:
        return False
    if ("a" <= c <= "z") or ("A" <= c <= "Z") or ("0" <= c <= "9") or c in "_. -()+~#!&',;=[]@":
        return True
    cat = unicodedata.category(c)
    # Letter, Number, or Punctuation (e.g. fullwidth parentheses （） in "Manual（CN）.pdf")
    return cat.startswith("L") or cat.startswith("N") or cat.startswith("P")


def sanitize_segment(segment: str) -> Optional[str]:
    """Return segment if safe, else None. Rejects empty, '..', '.', and invalid chars.
    Allows Unicode letters and numbers (e.g. ä, ö, ü, é) for international filenames.
    """
    segment = segment.strip()
    if not segment or segment in (".", ".."):
        return None
    if _SAFE_SEGMENT_ASCII.match(segment):
        return segment
    if not all(_is_safe_path_char(c) for c in segment):
        return None
    return segment


def _require_segment(value: str, what: str) -> str:
    safe = sanitize_segment(value or "")
    if not safe:
        raise ValueError(f"Unsafe {what}: {value!r}")
    return safe


def folder_prefix(folder_id: str, settings: Optional[Settings] = None) -> str:
    """Prefix holding every member object of a folder, with trailing slash."""
    settings = settings or get_settings()
    safe_id = _require_segment(folder_id, "folder id")
    return f"{settings.uploads_prefix}/{safe_id}/"


def member_path(folder_id: str, object_name: str, settings: Optional[Settings] = None) -> str:
    """Storage path of one member object: <uploads>/<folder-id>/<object-name>."""
    safe_name = _require_segment(object_name, "object name")
    return folder_prefix(folder_id, settings) + safe_name


def derive_archive_cache_path(folder_id: str, settings: Optional[Settings] = None) -> str:
    """Archive cache key for a folder: <archive-prefix>/<folder-id>.<ext>. Depends on folder id only."""
    settings = settings or get_settings()
    safe_id = _require_segment(folder_id, "folder id")
    return f"{settings.archive_prefix}/{safe_id}.{settings.archive_extension}"


def archive_filename(folder_id: str, settings: Optional[Settings] = None) -> str:
    """Download filename for a folder archive (used in Content-Disposition)."""
    settings = settings or get_settings()
    return f"{folder_id}.{settings.archive_extension}"


def attachment_disposition(filename: str) -> str:
    """Content-Disposition value forcing a download under filename."""
    escaped = filename.replace("\\", "\\\\").replace('"', '\\"')
    return f'attachment; filename="{escaped}"'
