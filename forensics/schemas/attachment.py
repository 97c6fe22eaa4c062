"""
Attachment Reference Schema

An attachment reference points at bytes held in the content-addressed
attachment store. The reference is metadata; the bytes are shared.

Rules:
- content_hash is the SHA-256 of the referenced bytes
- Identical bytes give identical content_hash, whatever the filename
- References are immutable once hashed
"""

from datetime import datetime, timezone
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field


class AttachmentReference(BaseModel):
    """
    A file attached to an event.

    Two references built from the same bytes share one stored blob.
    They may still differ in id, filename, mime_type and created_at.
    """
    model_config = ConfigDict(frozen=True)

    id: UUID = Field(
        default_factory=uuid4,
        description="Unique identifier for this reference"
    )

    filename: str = Field(
        ...,
        description="Original filename as provided by the user"
    )

    mime_type: str = Field(
        default="application/octet-stream",
        description="MIME type of the content"
    )

    size_bytes: int = Field(
        ...,
        ge=0,
        description="Size of the referenced content in bytes"
    )

    content_hash: str = Field(
        ...,
        min_length=64,
        max_length=64,
        pattern=r"^[0-9a-f]{64}$",
        description="SHA-256 of the referenced bytes (64 lowercase hex chars)"
    )

    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the attachment was added"
    )

    storage_key: str = Field(
        ...,
        description="Key of the blob in the attachment store"
    )

    @property
    def is_image(self) -> bool:
        return self.mime_type.startswith("image/")
