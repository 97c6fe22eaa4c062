"""
Event Repository Abstraction

This module defines the EventRepository interface and provides two
implementations:
- InMemoryEventRepository: For development and testing
- JsonFileEventRepository: One JSON document per event on disk

The repository is responsible for:
- Durable append of finalized events
- Listing everything it holds

The ledger retains responsibility for:
- Chain linking and hashing
- Serializing appends (single writer)
- Verifying what the repository returns

The repository NEVER recomputes or repairs hashes. It stores exactly
what it was given and returns exactly what it finds. A record it
cannot parse is skipped and logged, so one corrupt file does not block
loading the rest. The chain verifier will then report the gap.
"""

import json
import os
import tempfile
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import Optional, Union
from uuid import UUID

from pydantic import ValidationError

from ..observability import get_logger
from ..schemas import ForensicEvent

logger = get_logger(__name__)


# ============================================================
# EXCEPTIONS
# ============================================================

class EventRepositoryError(Exception):
    """Base exception for event repository errors."""
    pass


class DuplicateEventError(EventRepositoryError):
    """Raised when an event id is appended twice."""
    pass


# ============================================================
# ABSTRACT BASE CLASS
# ============================================================

class EventRepository(ABC):
    """
    Abstract base class for event storage.

    Implementations must ensure:
    1. append() is durable once it returns
    2. An event id is never stored twice
    3. list_all() returns every readable event (order unspecified)
    """

    @abstractmethod
    def append(self, event: ForensicEvent) -> None:
        """
        Persist a finalized event.

        Raises:
            DuplicateEventError: If an event with this id already exists
            EventRepositoryError: If the event cannot be persisted
        """
        pass

    @abstractmethod
    def list_all(self) -> list[ForensicEvent]:
        """All readable events, in no guaranteed order."""
        pass

    @abstractmethod
    def get(self, event_id: UUID) -> Optional[ForensicEvent]:
        """A single event by id, or None."""
        pass

    def count(self) -> int:
        """Total number of readable events."""
        return len(self.list_all())


# ============================================================
# IN-MEMORY IMPLEMENTATION
# ============================================================

class InMemoryEventRepository(EventRepository):
    """
    In-memory implementation of EventRepository.

    Suitable for:
    - Development
    - Testing

    NOT suitable for:
    - Anything that must survive a restart
    """

    def __init__(self):
        self._events: dict[UUID, ForensicEvent] = {}
        self._lock = Lock()

    def append(self, event: ForensicEvent) -> None:
        with self._lock:
            if event.id in self._events:
                raise DuplicateEventError(f"Event {event.id} already exists")
            self._events[event.id] = event

    def list_all(self) -> list[ForensicEvent]:
        with self._lock:
            return list(self._events.values())

    def get(self, event_id: UUID) -> Optional[ForensicEvent]:
        with self._lock:
            return self._events.get(event_id)

    def count(self) -> int:
        with self._lock:
            return len(self._events)

    def replace_raw(self, event: ForensicEvent) -> None:
        """Overwrite a stored event without any checks (for testing only)."""
        with self._lock:
            self._events[event.id] = event

    def remove_raw(self, event_id: UUID) -> None:
        """Drop a stored event without any checks (for testing only)."""
        with self._lock:
            self._events.pop(event_id, None)


# ============================================================
# JSON FILE IMPLEMENTATION
# ============================================================

class JsonFileEventRepository(EventRepository):
    """
    Events as JSON documents under a root directory.

    Layout:
        <root>/events/YYYY/MM/DD/<event-id>.json
        <root>/metadata/chain.json     (tail record, informational)

    The chain metadata file records the last appended id/hash and a
    per-event index. It is a convenience for external tooling; the ledger
    never trusts it over the events themselves.

    Event ids are indexed in memory on open, so append and get never walk
    the directory tree. Records added by another process after open are
    seen by list_all but not by get.
    """

    EVENTS_DIR = "events"
    METADATA_DIR = "metadata"
    CHAIN_FILE = "chain.json"

    def __init__(self, root: Union[str, Path]):
        self._root = Path(root)
        self._events_dir = self._root / self.EVENTS_DIR
        self._metadata_dir = self._root / self.METADATA_DIR
        self._events_dir.mkdir(parents=True, exist_ok=True)
        self._metadata_dir.mkdir(parents=True, exist_ok=True)
        self._lock = Lock()
        self._paths: dict[UUID, Path] = self._scan()

    @property
    def root(self) -> Path:
        return self._root

    def path_for(self, event: ForensicEvent) -> Path:
        created = event.created_at.astimezone(timezone.utc)
        return (
            self._events_dir
            / f"{created.year:04d}"
            / f"{created.month:02d}"
            / f"{created.day:02d}"
            / f"{event.id}.json"
        )

    @staticmethod
    def _write_atomic(target: Path, text: str) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=".tmp-", dir=target.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(text)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_name, target)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            raise

    def _record_paths(self) -> list[Path]:
        return [
            path for path in sorted(self._events_dir.rglob("*.json"))
            if not path.name.startswith(".tmp-")
        ]

    def _scan(self) -> dict[UUID, Path]:
        paths = {}
        for path in self._record_paths():
            try:
                paths[UUID(path.stem)] = path
            except ValueError:
                logger.warning("Ignoring record with non-UUID name", path=str(path))
        return paths

    def append(self, event: ForensicEvent) -> None:
        with self._lock:
            if event.id in self._paths:
                raise DuplicateEventError(f"Event {event.id} already exists")

            target = self.path_for(event)
            try:
                self._write_atomic(target, event.model_dump_json(indent=2))
                self._paths[event.id] = target
                self._update_chain_metadata(event)
            except OSError as e:
                raise EventRepositoryError(
                    f"Failed to persist event {event.id}: {e}"
                ) from e

        logger.debug("Event persisted", event_id=str(event.id), path=str(target))

    def _update_chain_metadata(self, event: ForensicEvent) -> None:
        path = self._metadata_dir / self.CHAIN_FILE
        if path.exists():
            try:
                chain = json.loads(path.read_text(encoding="utf-8"))
            except (OSError, ValueError) as e:
                logger.warning("Chain metadata unreadable, rebuilding", error=str(e))
                chain = {"events": []}
        else:
            chain = {"events": []}

        chain.setdefault("events", []).append({
            "event_id": str(event.id),
            "event_hash": event.integrity.content_hash,
            "sequence_number": event.sequence_number,
            "created_at": event.created_at.isoformat(),
        })
        chain["last_event_id"] = str(event.id)
        chain["last_event_hash"] = event.integrity.content_hash
        chain["updated_at"] = datetime.now(timezone.utc).isoformat()

        self._write_atomic(path, json.dumps(chain, indent=2, sort_keys=True))

    def _load(self, path: Path) -> Optional[ForensicEvent]:
        try:
            return ForensicEvent.model_validate_json(path.read_bytes())
        except (OSError, ValidationError, ValueError) as e:
            logger.warning(
                "Skipping unreadable event record",
                path=str(path),
                error=str(e),
            )
            return None

    def list_all(self) -> list[ForensicEvent]:
        events = []
        for path in self._record_paths():
            event = self._load(path)
            if event is not None:
                events.append(event)
        return events

    def get(self, event_id: UUID) -> Optional[ForensicEvent]:
        with self._lock:
            path = self._paths.get(event_id)
        if path is None:
            return None
        return self._load(path)

    def read_chain_metadata(self) -> Optional[dict]:
        """The informational tail record, if present and readable."""
        path = self._metadata_dir / self.CHAIN_FILE
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            logger.warning("Chain metadata unreadable", error=str(e))
            return None
