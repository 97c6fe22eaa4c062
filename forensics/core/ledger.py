"""
Ledger Service - The Heart of the System

This is an append-only, hash-chained event log.
Nothing is "edited". Things happen.

The ledger:
- Accepts event drafts
- Checks their preconditions
- Links them onto the chain
- Hashes (and optionally signs) them
- Appends them through the repository

SINGLE WRITER:
Linking reads the tail; two creators reading the same tail would fork
the chain. So every append runs on one dedicated writer thread that
alone owns the tail:

    read tail → link → hash → sign → persist → advance tail

Callers submit drafts and get Futures back. Reads (verification,
search, export) work on an immutable snapshot tuple and never wait
for the writer.
"""

import time
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime
from pathlib import Path
from threading import Lock
from typing import Iterable, Optional, Sequence, Union
from uuid import UUID, uuid4

from ..db.blobs import FileBlobBackend, InMemoryBlobBackend
from ..db.config import ForensicsConfig, StorageDriver
from ..db.store import EventRepository, InMemoryEventRepository, JsonFileEventRepository
from ..observability import MetricsCollector, get_logger, ledger_id_var
from ..schemas import (
    AttachmentReference,
    EventCategory,
    EventDraft,
    EventLocation,
    ForensicEvent,
)
from .attachments import AttachmentStore
from .chain import ChainLinker, ChainVerifier, LedgerError, VerificationResult
from .export import ExportBundle, build_export_bundle
from .signer import EventSigner

logger = get_logger(__name__)


class LedgerClosedError(LedgerError):
    """Raised when submitting to a ledger that has been closed."""
    pass


class EventLedger:
    """
    The core ledger service.

    Repository, attachment store and signer are constructor-injected,
    so isolated ledgers can run side by side in one process.

    CHAIN INTEGRITY GUARANTEES:
    - Exactly one thread ever reads and advances the tail
    - The chain link is assigned before the content hash is computed
    - An event enters the snapshot only after the repository accepted it

    LOAD BEHAVIOUR:
    - Existing events are read from the repository and verified
    - A broken chain is logged and reported via load_result,
      never repaired
    """

    def __init__(
        self,
        repository: Optional[EventRepository] = None,
        attachments: Optional[AttachmentStore] = None,
        signer: Optional[EventSigner] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self._ledger_id = uuid4().hex
        self._metrics = metrics or MetricsCollector()
        self._repository = repository or InMemoryEventRepository()
        self._attachments = attachments or AttachmentStore(
            InMemoryBlobBackend(), metrics=self._metrics
        )
        self._signer = signer

        self._writer = ThreadPoolExecutor(
            max_workers=1,
            thread_name_prefix="forensics-writer-",
        )
        self._closed = False
        self._close_lock = Lock()

        # Chain state: written only by the writer thread (and __init__)
        self._snapshot: tuple[ForensicEvent, ...] = ()
        self._tail: Optional[ForensicEvent] = None
        self._load_result = VerificationResult.ok()

        self._load()

    # ================================================================
    # CONSTRUCTION
    # ================================================================

    @classmethod
    def from_config(cls, config: ForensicsConfig) -> "EventLedger":
        """Wire repository, blob backend, attachment store and signer."""
        metrics = MetricsCollector()

        if config.driver == StorageDriver.FILE:
            repository: EventRepository = JsonFileEventRepository(config.events_dir)
            backend = FileBlobBackend(config.attachments_dir)
        else:
            repository = InMemoryEventRepository()
            backend = InMemoryBlobBackend()

        signer = None
        if config.signing_private_key:
            signer = EventSigner.from_private_key(config.signing_private_key)

        return cls(
            repository=repository,
            attachments=AttachmentStore(
                backend,
                max_size_bytes=config.max_attachment_bytes,
                metrics=metrics,
            ),
            signer=signer,
            metrics=metrics,
        )

    def _load(self) -> None:
        """Rebuild the snapshot and tail from the repository."""
        token = ledger_id_var.set(self._ledger_id)
        try:
            events = self._repository.list_all()
            ordered = ChainVerifier.chain_order(events)
            result = ChainVerifier.verify(ordered)
            self._metrics.record_verification(result.is_valid)

            if not result.is_valid:
                logger.warning(
                    "Event chain verification failed on load",
                    error=result.error,
                    position=result.position,
                    event_count=len(ordered),
                )

            self._snapshot = tuple(ordered)
            self._tail = ordered[-1] if ordered else None
            self._load_result = result

            logger.info("Ledger loaded", event_count=len(ordered), chain_valid=result.is_valid)
        finally:
            ledger_id_var.reset(token)

    # ================================================================
    # PROPERTIES
    # ================================================================

    @property
    def ledger_id(self) -> str:
        return self._ledger_id

    @property
    def repository(self) -> EventRepository:
        return self._repository

    @property
    def attachments(self) -> AttachmentStore:
        return self._attachments

    @property
    def metrics(self) -> MetricsCollector:
        return self._metrics

    @property
    def signer(self) -> Optional[EventSigner]:
        return self._signer

    @property
    def tail(self) -> Optional[ForensicEvent]:
        """Most recently finalized event (chain head)."""
        return self._tail

    @property
    def events(self) -> tuple[ForensicEvent, ...]:
        """Immutable snapshot of all events, in chain order."""
        return self._snapshot

    @property
    def event_count(self) -> int:
        return len(self._snapshot)

    @property
    def load_result(self) -> VerificationResult:
        """Verification of what was in the repository at startup."""
        return self._load_result

    @property
    def closed(self) -> bool:
        return self._closed

    # ================================================================
    # APPEND PATH (single writer)
    # ================================================================

    def submit(self, draft: EventDraft) -> "Future[ForensicEvent]":
        """
        Queue a draft for the writer.

        Preconditions are checked here, on the caller's thread, so a bad
        draft raises DraftValidationError immediately and never reaches
        the writer.

        Raises:
            DraftValidationError: If the draft fails its preconditions
            LedgerClosedError: If the ledger has been closed
        """
        draft = draft.validated()

        with self._close_lock:
            if self._closed:
                raise LedgerClosedError("Ledger is closed; no further events can be appended")
            return self._writer.submit(self._append, draft)

    def create_event(self, draft: EventDraft) -> ForensicEvent:
        """Append a draft and wait for the finalized event."""
        return self.submit(draft).result()

    def record(
        self,
        title: str,
        notes: str = "",
        category: EventCategory = EventCategory.GENERAL,
        attachments: Sequence[AttachmentReference] = (),
        location: Optional[EventLocation] = None,
    ) -> ForensicEvent:
        """Convenience wrapper: build a draft and append it."""
        return self.create_event(
            EventDraft(
                category=category,
                title=title,
                notes=notes,
                attachments=list(attachments),
                location=location,
            )
        )

    def _append(self, draft: EventDraft) -> ForensicEvent:
        """
        The critical section. Runs on the writer thread only.

        Flow:
        1. Read the tail
        2. Link, hash and sign against it
        3. Persist through the repository
        4. Advance the tail and publish a new snapshot
        """
        token = ledger_id_var.set(self._ledger_id)
        start = time.perf_counter()
        try:
            event = ChainLinker.create_linked_event(draft, self._tail, signer=self._signer)

            try:
                self._repository.append(event)
            except Exception:
                self._metrics.record_append_failure()
                logger.exception("Event append failed", event_id=str(event.id))
                raise

            self._snapshot = self._snapshot + (event,)
            self._tail = event

            latency_ms = (time.perf_counter() - start) * 1000
            self._metrics.record_append(latency_ms)
            logger.info(
                "Event appended",
                event_id=str(event.id),
                category=event.category.value,
                sequence_number=event.sequence_number,
                content_hash=event.integrity.content_hash,
                duration_ms=round(latency_ms, 2),
            )
            return event
        finally:
            ledger_id_var.reset(token)

    # ================================================================
    # VERIFICATION (read-only)
    # ================================================================

    def verify_chain(
        self,
        events: Optional[Iterable[ForensicEvent]] = None,
    ) -> VerificationResult:
        """
        Verify the ledger's snapshot, or any given set of events.

        Findings are returned, never raised, and never auto-fixed.
        """
        result = ChainVerifier.verify(self._snapshot if events is None else events)
        self._metrics.record_verification(result.is_valid)
        if not result.is_valid:
            logger.warning(
                "Chain verification failed",
                error=result.error,
                failure=result.failure.value if result.failure else None,
                position=result.position,
            )
        return result

    def verify_stored_chain(self) -> VerificationResult:
        """Verify what the repository holds right now, not the snapshot."""
        return self.verify_chain(self._repository.list_all())

    def verify_signatures(
        self,
        public_key: Optional[str] = None,
        require: bool = True,
    ) -> VerificationResult:
        """Check signatures against public_key (default: this ledger's signer)."""
        if public_key is None:
            if self._signer is None:
                raise LedgerError("No public key given and this ledger has no signer")
            public_key = self._signer.public_key
        return ChainVerifier.verify_signatures(self._snapshot, public_key, require=require)

    # ================================================================
    # ATTACHMENTS
    # ================================================================

    def store_attachment(
        self,
        data: bytes,
        filename: str,
        mime_type: Optional[str] = None,
    ) -> AttachmentReference:
        return self._attachments.store_attachment(data, filename, mime_type)

    def store_file(
        self,
        path: Union[str, Path],
        filename: Optional[str] = None,
        mime_type: Optional[str] = None,
    ) -> AttachmentReference:
        return self._attachments.store_file(path, filename, mime_type)

    def verify_attachment(self, ref: AttachmentReference) -> bool:
        return self._attachments.verify(ref)

    def failed_attachments(self) -> list[tuple[ForensicEvent, AttachmentReference]]:
        """Every (event, attachment) whose stored bytes are missing or altered."""
        return [
            (event, ref)
            for event in self._snapshot
            for ref in event.attachments
            if not self._attachments.verify(ref)
        ]

    # ================================================================
    # QUERIES (read-only)
    # ================================================================

    def get(self, event_id: UUID) -> Optional[ForensicEvent]:
        for event in self._snapshot:
            if event.id == event_id:
                return event
        return None

    def search(self, query: str) -> list[ForensicEvent]:
        """Events whose title, notes or category name contain query."""
        return [e for e in self._snapshot if e.matches(query)]

    def events_of_category(self, category: EventCategory) -> list[ForensicEvent]:
        return [e for e in self._snapshot if e.category == category]

    def events_between(self, start: datetime, end: datetime) -> list[ForensicEvent]:
        """Events created within [start, end], inclusive."""
        return [e for e in self._snapshot if start <= e.created_at <= end]

    def export_bundle(self, device_id: Optional[UUID] = None) -> ExportBundle:
        return build_export_bundle(self._snapshot, device_id=device_id)

    # ================================================================
    # LIFECYCLE
    # ================================================================

    def close(self, wait: bool = True) -> None:
        """Stop accepting drafts; by default, finish queued ones first."""
        with self._close_lock:
            if self._closed:
                return
            self._closed = True
        self._writer.shutdown(wait=wait)

    def __enter__(self) -> "EventLedger":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
