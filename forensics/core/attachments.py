"""
Attachment Store

Content-addressed storage for event attachments.

Every blob is stored under the SHA-256 of its own bytes, so:
- Identical bytes are stored once, however many references point at them
- A reference can always be re-verified by hashing what is stored
- Corruption or loss of a blob is detectable, never silent

The size limit is checked BEFORE anything is written.
"""

import mimetypes
from pathlib import Path
from threading import Lock
from typing import Optional, Union

from ..db.blobs import BlobBackend
from ..observability import MetricsCollector, get_logger
from ..schemas import AttachmentReference
from .hasher import Hasher

logger = get_logger(__name__)


DEFAULT_MAX_ATTACHMENT_BYTES = 10 * 1024 * 1024  # 10 MiB
DEFAULT_MIME_TYPE = "application/octet-stream"


class AttachmentError(Exception):
    """Base exception for attachment errors."""
    pass


class AttachmentTooLargeError(AttachmentError):
    """Raised when content exceeds the configured size limit."""

    def __init__(self, size_bytes: int, max_size_bytes: int):
        self.size_bytes = size_bytes
        self.max_size_bytes = max_size_bytes
        super().__init__(
            f"Attachment is {size_bytes} bytes; the limit is {max_size_bytes} bytes"
        )


class AttachmentStore:
    """
    Hash bytes, dedupe by hash, verify on read.

    Safe to share between threads. put() of identical bytes from several
    threads writes the blob at most once: the existence check and the
    write happen under a lock for that key. Keys share a fixed pool of
    locks striped by the first byte of the hash.
    """

    LOCK_STRIPES = 256

    def __init__(
        self,
        backend: BlobBackend,
        max_size_bytes: int = DEFAULT_MAX_ATTACHMENT_BYTES,
        metrics: Optional[MetricsCollector] = None,
    ):
        if max_size_bytes <= 0:
            raise ValueError(f"max_size_bytes must be positive, got {max_size_bytes}")

        self._backend = backend
        self._max_size_bytes = max_size_bytes
        self._metrics = metrics or MetricsCollector()

        self._key_locks: list[Lock] = [Lock() for _ in range(self.LOCK_STRIPES)]

    @property
    def backend(self) -> BlobBackend:
        return self._backend

    @property
    def max_size_bytes(self) -> int:
        return self._max_size_bytes

    def _lock_for(self, key: str) -> Lock:
        return self._key_locks[int(key[:2], 16) % self.LOCK_STRIPES]

    def _check_size(self, size_bytes: int) -> None:
        if size_bytes > self._max_size_bytes:
            raise AttachmentTooLargeError(size_bytes, self._max_size_bytes)

    # ================================================================
    # CONTENT-ADDRESSED OPERATIONS
    # ================================================================

    def _put(self, data: bytes) -> tuple[str, bool]:
        """Store data; return (content_hash, was_already_present)."""
        self._check_size(len(data))

        content_hash = Hasher.hash_bytes(data)

        with self._lock_for(content_hash):
            if self._backend.exists(content_hash):
                logger.debug("Attachment already stored", content_hash=content_hash)
                return content_hash, True

            self._backend.write(content_hash, data)

        logger.info(
            "Attachment stored",
            content_hash=content_hash,
            size_bytes=len(data),
        )
        return content_hash, False

    def put(self, data: bytes) -> str:
        """
        Store bytes under their SHA-256.

        Re-adding identical bytes is a no-op beyond confirming the key.

        Raises:
            AttachmentTooLargeError: If data exceeds the size limit
                (nothing is written)
        """
        content_hash, _ = self._put(data)
        return content_hash

    def get(self, content_hash: str) -> Optional[bytes]:
        """Bytes stored under content_hash, or None if not found."""
        if not Hasher.is_valid_hash(content_hash):
            return None
        return self._backend.read(content_hash)

    def contains(self, content_hash: str) -> bool:
        return Hasher.is_valid_hash(content_hash) and self._backend.exists(content_hash)

    def verify(self, ref: AttachmentReference) -> bool:
        """
        Re-hash the stored blob and compare with the reference.

        Returns False (never raises) if the blob is missing,
        unreadable, or its bytes no longer match.
        """
        try:
            data = self._backend.read(ref.storage_key)
        except Exception as e:
            logger.warning(
                "Attachment unreadable",
                attachment_id=str(ref.id),
                storage_key=ref.storage_key,
                error=str(e),
            )
            return False

        if data is None:
            logger.warning(
                "Attachment missing",
                attachment_id=str(ref.id),
                storage_key=ref.storage_key,
            )
            return False

        computed = Hasher.hash_bytes(data)
        if not Hasher.constant_time_compare(computed, ref.content_hash):
            logger.warning(
                "Attachment hash mismatch",
                attachment_id=str(ref.id),
                expected=ref.content_hash,
                computed=computed,
            )
            return False

        return True

    # ================================================================
    # REFERENCE BUILDERS
    # ================================================================

    @staticmethod
    def guess_mime_type(filename: str) -> str:
        mime_type, _ = mimetypes.guess_type(filename)
        return mime_type or DEFAULT_MIME_TYPE

    def store_attachment(
        self,
        data: bytes,
        filename: str,
        mime_type: Optional[str] = None,
    ) -> AttachmentReference:
        """
        Store bytes and build a reference to them.

        Two calls with identical bytes return references with the same
        content_hash and storage_key but distinct ids.
        """
        content_hash, deduplicated = self._put(data)
        self._metrics.record_attachment(deduplicated)

        return AttachmentReference(
            filename=filename,
            mime_type=mime_type or self.guess_mime_type(filename),
            size_bytes=len(data),
            content_hash=content_hash,
            storage_key=content_hash,
        )

    def store_file(
        self,
        path: Union[str, Path],
        filename: Optional[str] = None,
        mime_type: Optional[str] = None,
    ) -> AttachmentReference:
        """
        Store a file from disk.

        The size limit is checked from the file's metadata before the
        file is read.
        """
        path = Path(path)
        self._check_size(path.stat().st_size)
        return self.store_attachment(
            path.read_bytes(),
            filename=filename or path.name,
            mime_type=mime_type,
        )
