# Canonical schemas for the forensic event ledger.
# These define the contract that every stored event must obey.

from .attachment import AttachmentReference
from .events import (
    Address,
    ChainLink,
    DraftValidationError,
    EventCategory,
    EventDraft,
    EventIntegrity,
    EventLocation,
    ForensicEvent,
    Genesis,
    Linked,
    LocationSource,
    CURRENT_SCHEMA_VERSION,
    NOTES_MAX_LENGTH,
    TITLE_MAX_LENGTH,
)

__all__ = [
    # Attachments
    "AttachmentReference",
    # Events
    "ForensicEvent",
    "EventDraft",
    "EventCategory",
    "EventIntegrity",
    "DraftValidationError",
    # Chain
    "ChainLink",
    "Genesis",
    "Linked",
    # Location
    "EventLocation",
    "LocationSource",
    "Address",
    # Limits
    "CURRENT_SCHEMA_VERSION",
    "NOTES_MAX_LENGTH",
    "TITLE_MAX_LENGTH",
]
