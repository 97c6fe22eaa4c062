"""
Canonical Event Schema

This is an append-only log, not CRUD.
Nothing is "edited". Things happen.

Each event:
- Produces a new immutable record
- Is hashed
- Is chained to its predecessor

Corrections are new events. There is no update and no delete.
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Annotated, Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from .attachment import AttachmentReference


TITLE_MAX_LENGTH = 200
NOTES_MAX_LENGTH = 10_000

CURRENT_SCHEMA_VERSION = "1.0"


class DraftValidationError(ValueError):
    """Raised when a draft does not satisfy the event preconditions."""
    pass


class EventCategory(str, Enum):
    """
    All possible event categories.
    You can add more later, never remove.
    """
    MEETING = "meeting"
    INCIDENT = "incident"
    MEDICAL = "medical"
    LEGAL = "legal"
    FINANCIAL = "financial"
    OBSERVATION = "observation"
    COMMUNICATION = "communication"
    GENERAL = "general"

    @property
    def display_name(self) -> str:
        if self is EventCategory.GENERAL:
            return "General Note"
        return self.value.title()


# ============================================================
# Location
# ============================================================

class LocationSource(str, Enum):
    """Where a coordinate came from."""
    GPS = "gps"
    NETWORK = "network"
    MANUAL = "manual"


class Address(BaseModel):
    """Postal address resolved for a location. Display only, not hashed."""
    model_config = ConfigDict(frozen=True)

    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None


class EventLocation(BaseModel):
    """
    Where an event was documented.

    Coordinates are Decimals: floats are banned from canonical payloads,
    so the exact value supplied is the value hashed.
    """
    model_config = ConfigDict(frozen=True)

    latitude: Decimal = Field(..., ge=Decimal("-90"), le=Decimal("90"))
    longitude: Decimal = Field(..., ge=Decimal("-180"), le=Decimal("180"))
    accuracy_meters: Decimal = Field(..., ge=Decimal("0"))

    altitude_meters: Optional[Decimal] = None
    altitude_accuracy_meters: Optional[Decimal] = None
    heading_degrees: Optional[Decimal] = None
    speed_mps: Optional[Decimal] = None

    captured_at: datetime
    source: LocationSource = LocationSource.GPS
    address: Optional[Address] = None


# ============================================================
# Chain Link
# Tagged variant: an event is either the genesis of its log,
# or linked to exactly one predecessor.
# ============================================================

class Genesis(BaseModel):
    """The first event of a log. Has no predecessor."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["genesis"] = "genesis"


class Linked(BaseModel):
    """
    Binding of an event to its predecessor.

    previous_event_hash is the literal content hash recorded on the
    predecessor at the moment of linking.
    """
    model_config = ConfigDict(frozen=True)

    kind: Literal["linked"] = "linked"

    previous_event_id: UUID
    previous_event_hash: str = Field(
        ...,
        min_length=64,
        max_length=64,
        description="Content hash of the predecessor (64 hex chars)"
    )
    sequence_number: int = Field(
        ...,
        ge=1,
        description="Position of this event in the log (genesis is 0)"
    )


ChainLink = Annotated[Union[Genesis, Linked], Field(discriminator="kind")]


# ============================================================
# Integrity
# ============================================================

class EventIntegrity(BaseModel):
    """
    Output of hashing (and optionally signing) an event.

    Never part of the canonical form: it is computed from it.
    """
    model_config = ConfigDict(frozen=True)

    content_hash: str = Field(
        ...,
        min_length=64,
        max_length=64,
        description="SHA-256 of the canonical event form"
    )
    signature: Optional[str] = Field(
        default=None,
        description="Ed25519 signature of content_hash (base64), if signed"
    )


# ============================================================
# Draft
# What a caller gathers before the ledger finalizes an event
# ============================================================

class EventDraft(BaseModel):
    """
    Event content gathered by a caller, before linking and hashing.

    The draft carries no identity, timestamp or chain link.
    Those are assigned when the ledger finalizes it.
    """
    model_config = ConfigDict(frozen=True)

    category: EventCategory = EventCategory.GENERAL
    title: str
    notes: str = ""
    attachments: list[AttachmentReference] = Field(default_factory=list)
    location: Optional[EventLocation] = None

    def validated(self) -> "EventDraft":
        """
        Check the event preconditions and return a trimmed copy.

        Raises DraftValidationError if the title is empty after trimming,
        longer than 200 characters, or the notes exceed 10000 characters.
        """
        title = self.title.strip()
        notes = self.notes.strip()

        if not title:
            raise DraftValidationError("Please enter a title for your event")
        if len(title) > TITLE_MAX_LENGTH:
            raise DraftValidationError(
                f"Title must be at most {TITLE_MAX_LENGTH} characters, "
                f"got {len(title)}"
            )
        if len(notes) > NOTES_MAX_LENGTH:
            raise DraftValidationError(
                f"Notes must be at most {NOTES_MAX_LENGTH} characters, "
                f"got {len(notes)}"
            )

        return self.model_copy(update={"title": title, "notes": notes})


# ============================================================
# The Core Event Object
# ============================================================

class ForensicEvent(BaseModel):
    """
    The immutable event record.

    Rules:
    - No UPDATE
    - No DELETE
    - Ever

    Chain Integrity Rules:
    - chain is Genesis only for the first event of a log
    - Linked.previous_event_hash is the predecessor's stored content hash
    - Linked.sequence_number is the event's position (genesis is 0)
    - integrity.content_hash is computed after the chain link is assigned
    """
    model_config = ConfigDict(frozen=True)

    id: UUID = Field(
        ...,
        description="Unique identifier for this event"
    )

    category: EventCategory

    title: str
    notes: str = ""

    created_at: datetime = Field(
        ...,
        description="UTC instant the event was recorded (hashed)"
    )
    created_at_local: Optional[datetime] = Field(
        default=None,
        description="Local-time mirror of created_at, display only"
    )

    attachments: list[AttachmentReference] = Field(default_factory=list)
    location: Optional[EventLocation] = None

    chain: ChainLink = Field(default_factory=Genesis)

    integrity: EventIntegrity

    schema_version: str = CURRENT_SCHEMA_VERSION

    @property
    def is_genesis(self) -> bool:
        """Check if this is the genesis (first) event."""
        return isinstance(self.chain, Genesis)

    @property
    def sequence_number(self) -> int:
        """Position of this event in its log (0 for genesis)."""
        if isinstance(self.chain, Linked):
            return self.chain.sequence_number
        return 0

    @property
    def content_hash(self) -> str:
        return self.integrity.content_hash

    def matches(self, query: str) -> bool:
        """Case-insensitive match against title, notes and category name."""
        if not query:
            return True
        needle = query.lower()
        return (
            needle in self.title.lower()
            or needle in self.notes.lower()
            or needle in self.category.display_name.lower()
        )

    @staticmethod
    def local_mirror(created_at: datetime) -> datetime:
        """Local-time view of a UTC instant, for display."""
        return created_at.astimezone()

    @staticmethod
    def utc_now() -> datetime:
        return datetime.now(timezone.utc)
