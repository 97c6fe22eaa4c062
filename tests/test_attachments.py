"""
Tests for the content-addressed attachment store.

Identical bytes are stored once. Stored bytes are re-verifiable.
Missing or altered bytes are reported, never raised.
"""

import threading
import pytest

from forensics.core import (
    AttachmentStore,
    AttachmentTooLargeError,
    DEFAULT_MAX_ATTACHMENT_BYTES,
    Hasher,
)
from forensics.db import BlobBackendError, FileBlobBackend, InMemoryBlobBackend
from forensics.observability import MetricsCollector


class CountingBackend(InMemoryBlobBackend):
    """Counts physical writes."""

    def __init__(self):
        super().__init__()
        self.writes = 0

    def write(self, key, data):
        self.writes += 1
        super().write(key, data)


class ExplodingBackend(InMemoryBlobBackend):

    def read(self, key):
        raise OSError("disk on fire")


class TestAttachmentStore:

    @pytest.fixture
    def backend(self):
        return CountingBackend()

    @pytest.fixture
    def store(self, backend):
        return AttachmentStore(backend)

    def test_put_returns_sha256(self, store):
        assert store.put(b"") == "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"

    def test_get_round_trip(self, store):
        digest = store.put(b"photo bytes")
        assert store.get(digest) == b"photo bytes"

    def test_get_missing(self, store):
        assert store.get(Hasher.hash_bytes(b"never stored")) is None

    def test_get_invalid_hash(self, store):
        assert store.get("../../etc/passwd") is None

    def test_duplicate_content_shares_one_blob(self, store, backend):
        first = store.store_attachment(b"Duplicate test content", "first.txt")
        second = store.store_attachment(b"Duplicate test content", "second.txt")

        assert first.content_hash == second.content_hash
        assert first.storage_key == second.storage_key
        assert first.id != second.id
        assert first.filename != second.filename
        assert len(backend) == 1
        assert backend.writes == 1

    def test_re_put_is_noop(self, store, backend):
        store.put(b"same")
        store.put(b"same")
        assert backend.writes == 1

    def test_size_limit_rejects_before_write(self, backend):
        store = AttachmentStore(backend, max_size_bytes=10)

        with pytest.raises(AttachmentTooLargeError) as exc:
            store.put(b"x" * 11)

        assert exc.value.size_bytes == 11
        assert exc.value.max_size_bytes == 10
        assert backend.writes == 0
        assert len(backend) == 0

    def test_size_limit_is_inclusive(self, backend):
        store = AttachmentStore(backend, max_size_bytes=10)
        store.put(b"x" * 10)
        assert backend.writes == 1

    def test_default_limit_is_10_mib(self, store):
        assert store.max_size_bytes == DEFAULT_MAX_ATTACHMENT_BYTES == 10 * 1024 * 1024

    def test_nonpositive_limit_rejected(self, backend):
        with pytest.raises(ValueError, match="must be positive"):
            AttachmentStore(backend, max_size_bytes=0)

    def test_reference_metadata(self, store):
        ref = store.store_attachment(b"\x89PNG...", "evidence.png")
        assert ref.mime_type == "image/png"
        assert ref.is_image
        assert ref.size_bytes == 7
        assert ref.content_hash == Hasher.hash_bytes(b"\x89PNG...")

    def test_unknown_mime_type(self, store):
        ref = store.store_attachment(b"?", "blob.unknownext")
        assert ref.mime_type == "application/octet-stream"

    def test_verify_intact(self, store):
        ref = store.store_attachment(b"intact", "a.txt")
        assert store.verify(ref) is True

    def test_verify_corrupted(self, store, backend):
        ref = store.store_attachment(b"original", "a.txt")
        backend.corrupt(ref.storage_key, b"altered")
        assert store.verify(ref) is False

    def test_verify_missing(self, store):
        ref = store.store_attachment(b"here", "a.txt")
        orphan = AttachmentStore(InMemoryBlobBackend())
        assert orphan.verify(ref) is False

    def test_verify_unreadable(self):
        writer = AttachmentStore(InMemoryBlobBackend())
        ref = writer.store_attachment(b"data", "a.txt")
        assert AttachmentStore(ExplodingBackend()).verify(ref) is False

    def test_store_file(self, store, tmp_path):
        path = tmp_path / "recording.m4a"
        path.write_bytes(b"audio" * 100)

        ref = store.store_file(path)

        assert ref.filename == "recording.m4a"
        assert ref.size_bytes == 500
        assert store.verify(ref)

    def test_store_file_too_large(self, backend, tmp_path):
        store = AttachmentStore(backend, max_size_bytes=4)
        path = tmp_path / "big.bin"
        path.write_bytes(b"12345")

        with pytest.raises(AttachmentTooLargeError):
            store.store_file(path)
        assert backend.writes == 0

    def test_dedup_metrics(self, backend):
        metrics = MetricsCollector()
        store = AttachmentStore(backend, metrics=metrics)
        store.store_attachment(b"a", "1.txt")
        store.store_attachment(b"a", "2.txt")
        store.store_attachment(b"b", "3.txt")

        summary = metrics.get_summary()
        assert summary["attachments_stored"] == 3
        assert summary["attachment_dedup_hits"] == 1

    def test_concurrent_identical_puts_write_once(self, store, backend):
        barrier = threading.Barrier(16)
        results = []

        def worker():
            barrier.wait()
            results.append(store.put(b"contended bytes"))

        threads = [threading.Thread(target=worker) for _ in range(16)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(set(results)) == 1
        assert backend.writes == 1
        assert store.get(results[0]) == b"contended bytes"

    def test_lock_pool_does_not_grow_with_distinct_blobs(self, store):
        for i in range(1000):
            store.put(f"blob {i}".encode())

        assert len(store._key_locks) == AttachmentStore.LOCK_STRIPES

    def test_same_key_always_gets_same_lock(self, store):
        key = store.put(b"evidence")
        assert store._lock_for(key) is store._lock_for(key)
        assert store._lock_for("00" + key[2:]) is store._key_locks[0]
        assert store._lock_for("ff" + key[2:]) is store._key_locks[255]


class TestFileBlobBackend:

    @pytest.fixture
    def backend(self, tmp_path):
        return FileBlobBackend(tmp_path / "attachments")

    def test_fan_out_layout(self, backend):
        digest = Hasher.hash_bytes(b"layout")
        backend.write(digest, b"layout")
        assert backend.path_for(digest) == backend.root / digest[:2] / digest[2:4] / digest
        assert backend.path_for(digest).read_bytes() == b"layout"

    def test_read_missing(self, backend):
        assert backend.read(Hasher.hash_bytes(b"nope")) is None
        assert not backend.exists(Hasher.hash_bytes(b"nope"))

    def test_malformed_key(self, backend):
        with pytest.raises(BlobBackendError, match="Malformed"):
            backend.write("../escape", b"x")
        assert backend.exists("../escape") is False

    def test_no_temp_files_left(self, backend):
        digest = Hasher.hash_bytes(b"clean")
        backend.write(digest, b"clean")
        leftovers = [p for p in backend.root.rglob(".tmp-*")]
        assert leftovers == []

    def test_store_over_files_detects_corruption(self, backend):
        store = AttachmentStore(backend)
        ref = store.store_attachment(b"on disk", "disk.txt")
        assert store.verify(ref)

        backend.path_for(ref.storage_key).write_bytes(b"flipped")
        assert not store.verify(ref)

    def test_store_over_files_detects_deletion(self, backend):
        store = AttachmentStore(backend)
        ref = store.store_attachment(b"on disk", "disk.txt")
        backend.path_for(ref.storage_key).unlink()
        assert not store.verify(ref)

    def test_concurrent_puts_on_disk(self, backend):
        store = AttachmentStore(backend)
        barrier = threading.Barrier(8)

        def worker():
            barrier.wait()
            store.put(b"same on disk")

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        digest = Hasher.hash_bytes(b"same on disk")
        files = [p for p in backend.root.rglob("*") if p.is_file()]
        assert files == [backend.path_for(digest)]
        assert backend.read(digest) == b"same on disk"
