"""
Storage Layer for the Forensic Event Ledger

Provides:
- EventRepository abstraction (InMemory for dev, JSON files for durability)
- BlobBackend abstraction underneath the attachment store
- Environment-based configuration
"""

from .blobs import (
    BlobBackend,
    BlobBackendError,
    FileBlobBackend,
    InMemoryBlobBackend,
)
from .config import ForensicsConfig, StorageDriver, get_storage_driver
from .store import (
    DuplicateEventError,
    EventRepository,
    EventRepositoryError,
    InMemoryEventRepository,
    JsonFileEventRepository,
)

__all__ = [
    "BlobBackend",
    "BlobBackendError",
    "FileBlobBackend",
    "InMemoryBlobBackend",
    "ForensicsConfig",
    "StorageDriver",
    "get_storage_driver",
    "EventRepository",
    "EventRepositoryError",
    "DuplicateEventError",
    "InMemoryEventRepository",
    "JsonFileEventRepository",
]
