"""Zip archive accumulator: append named blobs one at a time, then finalize to bytes.

With a password every entry is AES-256 encrypted (WinZip AES via pyzipper). Appends on
one writer must be sequential; the zip stream has a single write position.
"""

import io
import logging
from typing import Optional

import pyzipper

log = logging.getLogger(__name__)


class ArchiveWriter:
    def __init__(self, password: Optional[str] = None) -> None:
        self._buffer = io.BytesIO()
        if password:
            self._zip = pyzipper.AESZipFile(
                self._buffer,
                "w",
                compression=pyzipper.ZIP_DEFLATED,
                encryption=pyzipper.WZ_AES,
            )
            self._zip.setpassword(password.encode("utf-8"))
        else:
            self._zip = pyzipper.AESZipFile(self._buffer, "w", compression=pyzipper.ZIP_DEFLATED)
        self.encrypted = bool(password)
        self.entries = 0
        self._finalized = False

    @classmethod
    def open(cls, password: Optional[str] = None) -> "ArchiveWriter":
        return cls(password)

    def append(self, name: str, data: bytes) -> None:
        """Add one entry. A repeated name adds another entry; readers resolve to the last one."""
        if self._finalized:
            raise RuntimeError("Archive already finalized")
        self._zip.writestr(name, data)
        self.entries += 1
        log.debug("archive append name=%s size=%d", name, len(data))

    def finalize(self) -> bytes:
        """Close the archive and return its bytes. Only once per writer."""
        if self._finalized:
            raise RuntimeError("Archive already finalized")
        self._finalized = True
        self._zip.close()
        return self._buffer.getvalue()
