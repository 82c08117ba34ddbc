"""In-process object store with HMAC-signed, expiring URLs (development and tests)."""

import hashlib
import hmac
import logging
import threading
import time
from typing import Callable, Dict, List, Optional, Tuple
from urllib.parse import quote, urlencode

import httpx

from app.storage.gateway import ObjectNotFound, ObjectStoreGateway

log = logging.getLogger(__name__)


class MemoryObjectStore(ObjectStoreGateway):
    """
    Objects live in a dict keyed by path. Signed URLs point at base_url and are served
    by transport(), an httpx.MockTransport that checks signature and expiry before
    answering GET or PUT against the same dict.
    """

    def __init__(
        self,
        base_url: str = "http://objects.local",
        secret: str = "dev-url-signing-secret",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._base_path = httpx.URL(self._base_url).path.rstrip("/")
        self._secret = secret.encode("utf-8")
        self._clock = clock
        self._objects: Dict[str, Tuple[bytes, str]] = {}
        self._lock = threading.Lock()

    # --- primitives ---

    async def exists(self, path: str) -> bool:
        with self._lock:
            return path in self._objects

    async def get_object(self, path: str) -> bytes:
        with self._lock:
            item = self._objects.get(path)
        if item is None:
            raise ObjectNotFound(path)
        return item[0]

    async def put_object(
        self,
        path: str,
        body: bytes,
        content_type: str = "application/octet-stream",
    ) -> None:
        with self._lock:
            self._objects[path] = (bytes(body), content_type)
        log.debug("memory put path=%s size=%d", path, len(body))

    async def delete_object(self, path: str) -> None:
        with self._lock:
            self._objects.pop(path, None)

    async def list_objects(self, prefix: str) -> List[str]:
        with self._lock:
            return sorted(p for p in self._objects if p.startswith(prefix))

    def content_type(self, path: str) -> Optional[str]:
        """Stored content type, or None if the object is missing."""
        with self._lock:
            item = self._objects.get(path)
        return item[1] if item else None

    # --- signed URLs ---

    def _sign(self, method: str, path: str, expires: int, extra: str) -> str:
        msg = f"{method}\n{path}\n{expires}\n{extra}".encode("utf-8")
        return hmac.new(self._secret, msg, hashlib.sha256).hexdigest()

    def _signed_url(self, method: str, path: str, expires_in: int, extra_name: str, extra: Optional[str]) -> str:
        expires = int(self._clock()) + int(expires_in)
        params = {"method": method, "expires": str(expires)}
        if extra:
            params[extra_name] = extra
        params["signature"] = self._sign(method, path, expires, extra or "")
        return f"{self._base_url}/{quote(path, safe='/')}?{urlencode(params)}"

    async def signed_get_url(
        self,
        path: str,
        expires_in: int,
        disposition: Optional[str] = None,
    ) -> str:
        return self._signed_url("GET", path, expires_in, "disposition", disposition)

    async def signed_put_url(
        self,
        path: str,
        expires_in: int,
        content_type: Optional[str] = None,
    ) -> str:
        return self._signed_url("PUT", path, expires_in, "content_type", content_type)

    # --- URL dereferencing ---

    def _path_from_url(self, url: httpx.URL) -> str:
        path = url.path
        if self._base_path and path.startswith(self._base_path):
            path = path[len(self._base_path):]
        return path.lstrip("/")

    def handle_request(self, request: httpx.Request) -> httpx.Response:
        """Serve a signed GET/PUT request. 403 on bad signature or expiry, 404 on missing object."""
        params = request.url.params
        path = self._path_from_url(request.url)
        method = params.get("method", "")
        if method != request.method:
            return httpx.Response(403, text="Method does not match signature")
        try:
            expires = int(params.get("expires", ""))
        except ValueError:
            return httpx.Response(403, text="Missing expiry")
        extra_name = "disposition" if method == "GET" else "content_type"
        extra = params.get(extra_name, "")
        expected = self._sign(method, path, expires, extra)
        if not hmac.compare_digest(expected, params.get("signature", "")):
            return httpx.Response(403, text="Signature mismatch")
        if self._clock() > expires:
            return httpx.Response(403, text="Request has expired")
        if method == "PUT":
            content_type = request.headers.get("content-type") or extra or "application/octet-stream"
            with self._lock:
                self._objects[path] = (request.content, content_type)
            return httpx.Response(200)
        with self._lock:
            item = self._objects.get(path)
        if item is None:
            return httpx.Response(404, text="NoSuchKey")
        headers = {"Content-Type": item[1]}
        if extra:
            headers["Content-Disposition"] = extra
        return httpx.Response(200, content=item[0], headers=headers)

    def transport(self) -> httpx.AsyncBaseTransport:
        return httpx.MockTransport(self.handle_request)
