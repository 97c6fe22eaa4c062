"""
Cryptographic Hashing Service

Handles deterministic serialization and SHA-256 hashing.
Same input → same hash. Always. Forever.

This is SACRED GROUND.

If this breaks, every stored event becomes unverifiable.
Every change here must be backward-compatible or versioned.

CANONICAL SERIALIZATION RULES:
1. Version: "__canon_v" injected into every canonical output (first key when sorted)
2. Dictionary keys: sorted recursively (Unicode codepoint order)
3. Nulls: omitted entirely (not serialized as null)
4. Empty strings: preserved (they are valid data)
5. Empty lists/dicts: preserved (they are valid data)
6. Datetimes: ISO 8601 with microseconds, forced to UTC, Z suffix
7. Dates: ISO 8601 (YYYY-MM-DD)
8. UUIDs: lowercase string representation
9. Enums: string value (not name)
10. Floats: BANNED - use Decimal or string instead
11. Decimals: fixed-point, no exponent, no trailing zeros ("37.7749", "10", "0")
12. Booleans: JSON true/false
13. Whitespace in strings: preserved (data integrity)
14. JSON output: no extra whitespace, sorted keys, ASCII only
15. Top-level: must be dict/object (not list/primitive)

EVENT CANONICAL FORM:
    {
      "__canon_v": 1,
      "attachments": [{"hash": ..., "id": ...}, ...],   # order preserved
      "category": ...,
      "chain": {"previous_event_hash", "previous_event_id",
                "sequence_number"},                      # omitted for genesis
      "created_at": ...,
      "id": ...,
      "location": {"accuracy", "captured_at",
                   "latitude", "longitude"},             # omitted if absent
      "notes": ...,
      "title": ...
    }

integrity is never part of the canonical form.
"""

import hashlib
import json
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Any, Union
from uuid import UUID

from ..schemas import ForensicEvent, Linked


HASH_HEX_LENGTH = 64

EMPTY_SHA256 = "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"


class CanonicalSerializationError(Exception):
    """Raised when data cannot be canonically serialized."""
    pass


class Hasher:
    """
    Canonical serialization and hashing.

    IMMUTABLE CONTRACT:
    - Same logical input → same hash
    - Forever
    - Across platforms
    - Across Python versions

    If you need to change serialization rules, you MUST version them.
    """

    # Version of the canonical serialization format
    # Increment this if serialization rules change in breaking ways
    SERIALIZATION_VERSION = 1

    # Chunk size for streaming file hashes
    FILE_CHUNK_SIZE = 64 * 1024

    @classmethod
    def _serialize_value(cls, value: Any, path: str = "") -> Any:
        """
        Convert Python objects to JSON-serializable canonical format.

        Args:
            value: The value to serialize
            path: Current path in object tree (for error messages)

        Returns:
            JSON-serializable value

        Raises:
            CanonicalSerializationError: If value cannot be serialized deterministically
        """
        if value is None:
            return None  # Will be filtered out by _to_canonical_dict

        # UUID - lowercase string
        if isinstance(value, UUID):
            return str(value).lower()

        # Datetime - ISO 8601 with microseconds, forced to UTC
        if isinstance(value, datetime):
            return cls._serialize_datetime(value, path)

        # Date - ISO 8601
        if isinstance(value, date):
            return value.strftime("%Y-%m-%d")

        # Enum - use value, not name
        if isinstance(value, Enum):
            return value.value

        # Boolean - pass through (json handles correctly)
        if isinstance(value, bool):
            return value

        # Integer - pass through
        if isinstance(value, int):
            return value

        # Float - BANNED for determinism
        # Coordinates travel as Decimal for exactly this reason
        if isinstance(value, float):
            raise CanonicalSerializationError(
                f"Cannot serialize float at {path}. "
                "Floats are banned in canonical payloads due to platform-dependent "
                "serialization. Use Decimal for precise numbers or string."
            )

        # Decimal - fixed-point string, trailing zeros stripped
        if isinstance(value, Decimal):
            return cls._serialize_decimal(value, path)

        # String - pass through (preserve whitespace)
        if isinstance(value, str):
            return value

        # List/Tuple - serialize each element recursively
        if isinstance(value, (list, tuple)):
            return [
                cls._serialize_value(v, f"{path}[{i}]")
                for i, v in enumerate(value)
            ]

        # Dict - recursive canonical dict
        if isinstance(value, dict):
            return cls._to_canonical_dict(value, path)

        # Pydantic model - dump to dict first
        if hasattr(value, "model_dump"):
            dumped = value.model_dump(mode="python")
            return cls._to_canonical_dict(dumped, path)

        # Bytes - not allowed (not deterministically JSON-serializable)
        if isinstance(value, bytes):
            raise CanonicalSerializationError(
                f"Cannot serialize bytes at {path}. "
                "Hash the bytes and reference the digest instead."
            )

        # Set - not allowed (no stable ordering)
        if isinstance(value, set):
            raise CanonicalSerializationError(
                f"Cannot serialize set at {path}. "
                "Sets have no stable ordering. Convert to sorted list first."
            )

        # Unknown type - fail loudly
        raise CanonicalSerializationError(
            f"Cannot serialize {type(value).__name__} at {path}. "
            "Only JSON-compatible types are allowed."
        )

    @classmethod
    def _serialize_decimal(cls, value: Decimal, path: str) -> str:
        """
        Serialize a Decimal to its canonical fixed-point form.

        Equal Decimals give equal strings, whatever their exponent:
        Decimal("37.77490") and Decimal("37.7749") both give "37.7749",
        Decimal("1E+1") and Decimal("10") both give "10". Zero is "0".
        """
        if not value.is_finite():
            raise CanonicalSerializationError(
                f"Cannot serialize non-finite Decimal at {path}."
            )

        if value.is_zero():
            return "0"

        text = format(value, "f")
        if "." in text:
            text = text.rstrip("0").rstrip(".")
        return text

    @classmethod
    def _serialize_datetime(cls, dt: datetime, path: str) -> str:
        """
        Serialize datetime to canonical ISO 8601 format.

        RULES:
        - Must be timezone-aware (we need to know the absolute moment)
        - Converted to UTC for consistency
        - Includes microseconds (6 digits, zero-padded)
        - Uses Z suffix for UTC

        Format: YYYY-MM-DDTHH:MM:SS.ffffffZ
        """
        if dt.tzinfo is None:
            raise CanonicalSerializationError(
                f"Datetime at {path} is timezone-naive. "
                "All datetimes must be timezone-aware for deterministic serialization. "
                "Use datetime.now(timezone.utc) or attach a timezone."
            )

        utc_dt = dt.astimezone(timezone.utc)

        return utc_dt.strftime("%Y-%m-%dT%H:%M:%S.") + \
               f"{utc_dt.microsecond:06d}Z"

    @classmethod
    def _to_canonical_dict(
        cls,
        data: dict[str, Any],
        path: str = ""
    ) -> dict[str, Any]:
        """
        Convert a dict to canonical form.

        RULES:
        - Keys sorted alphabetically (Unicode code point order)
        - None values omitted entirely
        - Empty strings, lists, dicts PRESERVED (they are valid data)
        - All values recursively serialized
        """
        result = {}

        for key in data.keys():
            if not isinstance(key, str):
                raise CanonicalSerializationError(
                    f"Dictionary key at {path} must be string, "
                    f"got {type(key).__name__}"
                )

        for key in sorted(data.keys()):
            value = data[key]
            key_path = f"{path}.{key}" if path else key

            serialized = cls._serialize_value(value, key_path)

            # Omit None values (they're non-data)
            if serialized is not None:
                result[key] = serialized

        return result

    @classmethod
    def canonicalize(cls, data: Union[dict[str, Any], Any]) -> str:
        """
        Convert data to canonical JSON string.

        This is THE critical function.
        Same input → same output. Forever.

        Args:
            data: Dict or Pydantic model to serialize

        Returns:
            Canonical JSON string with version marker

        Raises:
            CanonicalSerializationError: If data cannot be deterministically serialized
        """
        if hasattr(data, "model_dump"):
            data = data.model_dump(mode="python")

        if not isinstance(data, dict):
            raise CanonicalSerializationError(
                f"Top-level canonicalization requires a dict/object, "
                f"got {type(data).__name__}. Events and payloads must be objects."
            )

        canonical_dict = cls._to_canonical_dict(data)

        # "__canon_v" sorts first alphabetically due to underscore
        canonical_dict = {"__canon_v": cls.SERIALIZATION_VERSION, **canonical_dict}

        return json.dumps(
            canonical_dict,
            sort_keys=True,
            separators=(",", ":"),
            ensure_ascii=True,
            allow_nan=False,
        )

    # ================================================================
    # CONTENT HASHER
    # ================================================================

    @staticmethod
    def hash_bytes(data: bytes) -> str:
        """
        SHA-256 over raw bytes.

        Returns:
            Hex-encoded SHA-256 hash (64 characters, lowercase)
        """
        return hashlib.sha256(data).hexdigest()

    @classmethod
    def hash_file(cls, path: Union[str, Path]) -> str:
        """SHA-256 of a file's contents, streamed in chunks."""
        digest = hashlib.sha256()
        with open(path, "rb") as fh:
            for chunk in iter(lambda: fh.read(cls.FILE_CHUNK_SIZE), b""):
                digest.update(chunk)
        return digest.hexdigest()

    @classmethod
    def hash_data(cls, data: Union[dict[str, Any], Any]) -> str:
        """
        Hash data using SHA-256 over its canonical form.

        Args:
            data: Dict or Pydantic model to hash

        Returns:
            Hex-encoded SHA-256 hash (64 characters, lowercase)
        """
        canonical = cls.canonicalize(data)
        return cls.hash_bytes(canonical.encode("utf-8"))

    @staticmethod
    def is_valid_hash(value: Any) -> bool:
        """True if value is a 64-character lowercase hex digest."""
        return (
            isinstance(value, str)
            and len(value) == HASH_HEX_LENGTH
            and all(c in "0123456789abcdef" for c in value)
        )

    # ================================================================
    # EVENT CANONICAL FORM
    # ================================================================

    @classmethod
    def canonical_event(cls, event: ForensicEvent) -> dict[str, Any]:
        """
        Build the hashable summary of an event.

        Covers exactly: id, category, title, notes, created_at,
        ordered attachment (id, hash) pairs, location summary and
        chain summary. Display-only fields and integrity are excluded.
        """
        summary: dict[str, Any] = {
            "id": event.id,
            "category": event.category,
            "title": event.title,
            "notes": event.notes,
            "created_at": event.created_at,
            "attachments": [
                {"id": attachment.id, "hash": attachment.content_hash}
                for attachment in event.attachments
            ],
        }

        if event.location is not None:
            summary["location"] = {
                "latitude": event.location.latitude,
                "longitude": event.location.longitude,
                "accuracy": event.location.accuracy_meters,
                "captured_at": event.location.captured_at,
            }

        if isinstance(event.chain, Linked):
            summary["chain"] = {
                "previous_event_id": event.chain.previous_event_id,
                "previous_event_hash": event.chain.previous_event_hash,
                "sequence_number": event.chain.sequence_number,
            }

        return summary

    @classmethod
    def encode_event(cls, event: ForensicEvent) -> bytes:
        """Canonical bytes of an event."""
        return cls.canonicalize(cls.canonical_event(event)).encode("utf-8")

    @classmethod
    def calculate_event_hash(cls, event: ForensicEvent) -> str:
        """
        Content hash of an event.

        calculate_event_hash(event) == hash_bytes(encode_event(event))
        """
        return cls.hash_bytes(cls.encode_event(event))

    @staticmethod
    def constant_time_compare(a: str, b: str) -> bool:
        """
        Compare two strings in constant time.

        Prevents timing attacks where an attacker could learn
        about the hash by measuring comparison time.
        """
        if len(a) != len(b):
            return False

        result = 0
        for x, y in zip(a, b):
            result |= ord(x) ^ ord(y)

        return result == 0
