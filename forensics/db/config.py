"""
Storage Configuration

Handles storage settings and environment-based configuration.

Environment Variables:
    FORENSICS_DATA_DIR: Root directory for file storage (default ./forensics-data)
    FORENSICS_STORAGE_DRIVER: Which driver to use
        - "memory" (default if no data dir configured)
        - "file" (JSON events + content-addressed blob files)
    FORENSICS_MAX_ATTACHMENT_BYTES: Attachment size limit (default 10 MiB)
    FORENSICS_SIGNING_PRIVATE_KEY: Base64 Ed25519 key; events are signed if set
"""

import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional


DEFAULT_DATA_DIR = "forensics-data"
DEFAULT_MAX_ATTACHMENT_BYTES = 10 * 1024 * 1024


class StorageDriver(str, Enum):
    """Supported storage drivers."""
    MEMORY = "memory"
    FILE = "file"


@dataclass
class ForensicsConfig:
    """Ledger storage configuration."""
    driver: StorageDriver = StorageDriver.MEMORY
    data_dir: Path = Path(DEFAULT_DATA_DIR)
    max_attachment_bytes: int = DEFAULT_MAX_ATTACHMENT_BYTES
    signing_private_key: Optional[str] = None

    @property
    def events_dir(self) -> Path:
        return self.data_dir

    @property
    def attachments_dir(self) -> Path:
        return self.data_dir / "attachments"

    @classmethod
    def from_env(cls) -> "ForensicsConfig":
        """
        Load configuration from environment variables.

        Environment variables:
        - FORENSICS_DATA_DIR
        - FORENSICS_STORAGE_DRIVER
        - FORENSICS_MAX_ATTACHMENT_BYTES
        - FORENSICS_SIGNING_PRIVATE_KEY
        """
        max_bytes = int(
            os.getenv("FORENSICS_MAX_ATTACHMENT_BYTES", str(DEFAULT_MAX_ATTACHMENT_BYTES))
        )
        if max_bytes <= 0:
            raise ValueError(
                f"FORENSICS_MAX_ATTACHMENT_BYTES must be positive, got {max_bytes}"
            )

        return cls(
            driver=get_storage_driver(),
            data_dir=Path(os.getenv("FORENSICS_DATA_DIR", DEFAULT_DATA_DIR)),
            max_attachment_bytes=max_bytes,
            signing_private_key=os.getenv("FORENSICS_SIGNING_PRIVATE_KEY") or None,
        )


def get_storage_driver() -> StorageDriver:
    """
    Get the storage driver to use.

    Checks FORENSICS_STORAGE_DRIVER, then falls back to:
    - file if FORENSICS_DATA_DIR is set
    - memory otherwise

    Returns:
        StorageDriver enum value
    """
    explicit = os.getenv("FORENSICS_STORAGE_DRIVER", "").lower()

    if explicit:
        try:
            return StorageDriver(explicit)
        except ValueError:
            raise ValueError(
                f"Unknown FORENSICS_STORAGE_DRIVER: {explicit}. "
                f"Valid values: memory, file"
            ) from None

    if os.getenv("FORENSICS_DATA_DIR"):
        return StorageDriver.FILE

    return StorageDriver.MEMORY
