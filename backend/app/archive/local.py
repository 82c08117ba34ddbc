"""Short-lived in-process copies of archives that could not be cached in the object store."""

import logging
import secrets
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

log = logging.getLogger(__name__)


@dataclass
class LocalArchive:
    folder_id: str
    filename: str
    content: bytes
    expires_at: float


class LocalArchiveStash:
    """Key -> archive bytes with a TTL. Keys are unguessable; expired entries are purged on access."""

    def __init__(self, ttl_seconds: int = 300, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._items: Dict[str, LocalArchive] = {}
        self._lock = threading.Lock()

    def _purge(self, now: float) -> None:
        for key in [k for k, v in self._items.items() if v.expires_at <= now]:
            del self._items[key]

    def put(self, folder_id: str, filename: str, content: bytes) -> str:
        key = secrets.token_urlsafe(24)
        now = self._clock()
        with self._lock:
            self._purge(now)
            self._items[key] = LocalArchive(folder_id, filename, content, now + self.ttl_seconds)
        log.info("stashed local archive folder=%s size=%d ttl=%ds", folder_id, len(content), self.ttl_seconds)
        return key

    def get(self, key: str) -> Optional[LocalArchive]:
        with self._lock:
            self._purge(self._clock())
            return self._items.get(key)

    def __len__(self) -> int:
        with self._lock:
            self._purge(self._clock())
            return len(self._items)
