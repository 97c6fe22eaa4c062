"""
Blob Backends

Raw key → bytes storage underneath the attachment store.

The backend knows nothing about hashing. It only promises:
- write(key, data) is atomic: readers see all of the bytes or none
- read(key) returns None for a missing key
- exists(key) never raises for a missing key

Two implementations:
- InMemoryBlobBackend: For development and testing
- FileBlobBackend: Blobs as files under a root directory
"""

import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from threading import Lock
from typing import Optional, Union

from ..observability import get_logger

logger = get_logger(__name__)


class BlobBackendError(Exception):
    """Raised when a blob cannot be written or a key is malformed."""
    pass


class BlobBackend(ABC):
    """Abstract key/value byte storage."""

    @abstractmethod
    def write(self, key: str, data: bytes) -> None:
        """Store data under key, replacing nothing partially."""
        pass

    @abstractmethod
    def read(self, key: str) -> Optional[bytes]:
        """Bytes stored under key, or None if absent."""
        pass

    @abstractmethod
    def exists(self, key: str) -> bool:
        """Whether a blob is stored under key."""
        pass


# ============================================================
# IN-MEMORY IMPLEMENTATION
# ============================================================

class InMemoryBlobBackend(BlobBackend):
    """
    In-memory implementation of BlobBackend.

    Suitable for development and testing. No durability.
    """

    def __init__(self):
        self._blobs: dict[str, bytes] = {}
        self._lock = Lock()

    def write(self, key: str, data: bytes) -> None:
        with self._lock:
            self._blobs[key] = bytes(data)

    def read(self, key: str) -> Optional[bytes]:
        with self._lock:
            return self._blobs.get(key)

    def exists(self, key: str) -> bool:
        with self._lock:
            return key in self._blobs

    def corrupt(self, key: str, data: bytes) -> None:
        """Overwrite a blob in place, bypassing any checks (for testing only)."""
        with self._lock:
            self._blobs[key] = data

    def __len__(self) -> int:
        with self._lock:
            return len(self._blobs)


# ============================================================
# FILE IMPLEMENTATION
# ============================================================

class FileBlobBackend(BlobBackend):
    """
    Blobs stored as files under a root directory.

    Layout: <root>/<key[0:2]>/<key[2:4]>/<key>

    Writes go to a temporary file in the target directory and are moved
    into place with os.replace, so a concurrent reader never sees a
    half-written blob and two writers of the same key leave one intact file.
    """

    def __init__(self, root: Union[str, Path]):
        self._root = Path(root)
        self._root.mkdir(parents=True, exist_ok=True)

    @property
    def root(self) -> Path:
        return self._root

    def path_for(self, key: str) -> Path:
        if len(key) < 4 or not key.isalnum():
            raise BlobBackendError(f"Malformed blob key: {key!r}")
        return self._root / key[0:2] / key[2:4] / key

    def write(self, key: str, data: bytes) -> None:
        target = self.path_for(key)
        target.parent.mkdir(parents=True, exist_ok=True)

        fd, tmp_name = tempfile.mkstemp(prefix=".tmp-", dir=target.parent)
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_name, target)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            raise

        logger.debug("Blob written", key=key, size_bytes=len(data))

    def read(self, key: str) -> Optional[bytes]:
        try:
            return self.path_for(key).read_bytes()
        except FileNotFoundError:
            return None

    def exists(self, key: str) -> bool:
        try:
            return self.path_for(key).is_file()
        except BlobBackendError:
            return False
