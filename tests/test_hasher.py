"""
Tests for canonical encoding and content hashing.

The canonical form is the contract every stored hash depends on.
If one of these tests changes, every existing log breaks.
"""

import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import UUID

from forensics.core import (
    CanonicalSerializationError,
    ChainLinker,
    EMPTY_SHA256,
    Hasher,
)
from forensics.schemas import (
    AttachmentReference,
    EventCategory,
    EventDraft,
    EventLocation,
)


FIXED_ID = UUID("12345678-1234-5678-1234-567812345678")
FIXED_TIME = datetime(2024, 1, 15, 12, 30, 45, 123456, tzinfo=timezone.utc)


def make_event(tail=None, **draft_fields):
    draft_fields.setdefault("title", "First")
    draft_fields.setdefault("notes", "x")
    return ChainLinker.create_linked_event(
        EventDraft(**draft_fields),
        tail,
        created_at=FIXED_TIME,
        event_id=FIXED_ID,
    )


class TestContentHasher:
    """SHA-256 over raw bytes."""

    def test_empty_input_vector(self):
        assert Hasher.hash_bytes(b"") == EMPTY_SHA256
        assert EMPTY_SHA256 == "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"

    def test_repeatable(self):
        assert Hasher.hash_bytes(b"evidence") == Hasher.hash_bytes(b"evidence")

    def test_distinct_inputs_distinct_hashes(self):
        assert Hasher.hash_bytes(b"evidence") != Hasher.hash_bytes(b"evidencf")

    def test_lowercase_hex_64(self):
        digest = Hasher.hash_bytes(b"anything")
        assert len(digest) == 64
        assert Hasher.is_valid_hash(digest)

    def test_is_valid_hash_rejects_uppercase_and_wrong_length(self):
        assert not Hasher.is_valid_hash("E3B0C44298FC1C149AFBF4C8996FB92427AE41E4649B934CA495991B7852B855")
        assert not Hasher.is_valid_hash("abc")
        assert not Hasher.is_valid_hash(None)

    def test_hash_file_matches_hash_bytes(self, tmp_path):
        path = tmp_path / "photo.jpg"
        path.write_bytes(b"\xff\xd8" * 100_000)
        assert Hasher.hash_file(path) == Hasher.hash_bytes(path.read_bytes())


class TestCanonicalForm:
    """Generic canonicalization rules."""

    def test_sorted_keys(self):
        assert Hasher.hash_data({"b": 2, "a": 1}) == Hasher.hash_data({"a": 1, "b": 2})

    def test_null_omitted(self):
        assert Hasher.canonicalize({"a": 1, "b": None}) == Hasher.canonicalize({"a": 1})

    def test_empty_string_preserved(self):
        assert Hasher.canonicalize({"a": ""}) != Hasher.canonicalize({"a": None})

    def test_no_whitespace_in_output(self):
        canonical = Hasher.canonicalize({"a": [1, 2], "b": {"c": "d"}})
        assert " " not in canonical
        assert "\n" not in canonical

    def test_non_ascii_escaped(self):
        canonical = Hasher.canonicalize({"title": "Café"})
        assert canonical.isascii()
        assert "\\u00e9" in canonical

    def test_floats_banned(self):
        with pytest.raises(CanonicalSerializationError, match="Floats are banned"):
            Hasher.canonicalize({"latitude": 37.7749})

    def test_decimal_serialized_as_string(self):
        canonical = Hasher.canonicalize({"latitude": Decimal("37.7749")})
        assert '"latitude":"37.7749"' in canonical

    @pytest.mark.parametrize("left,right,expected", [
        ("37.7749", "37.77490", "37.7749"),
        ("10", "1E+1", "10"),
        ("-122.4194000", "-122.4194", "-122.4194"),
        ("0", "-0.000", "0"),
        ("5.0", "5", "5"),
        ("0.00001", "1E-5", "0.00001"),
    ])
    def test_equal_decimals_serialize_identically(self, left, right, expected):
        """Exponent and trailing zeros never reach the canonical form."""
        assert Decimal(left) == Decimal(right)
        assert Hasher.canonicalize({"v": Decimal(left)}) == Hasher.canonicalize({"v": Decimal(right)})
        assert f'"v":"{expected}"' in Hasher.canonicalize({"v": Decimal(left)})

    def test_non_finite_decimal_rejected(self):
        with pytest.raises(CanonicalSerializationError, match="non-finite"):
            Hasher.canonicalize({"v": Decimal("NaN")})

    def test_datetime_requires_timezone(self):
        with pytest.raises(CanonicalSerializationError, match="timezone-naive"):
            Hasher.canonicalize({"at": datetime(2024, 1, 1, 12, 0)})

    def test_datetime_normalized_to_utc(self):
        plus_two = timezone(timedelta(hours=2))
        local = datetime(2024, 1, 15, 14, 30, 45, 123456, tzinfo=plus_two)
        assert Hasher.canonicalize({"at": local}) == Hasher.canonicalize({"at": FIXED_TIME})
        assert "2024-01-15T12:30:45.123456Z" in Hasher.canonicalize({"at": local})

    def test_sets_not_allowed(self):
        with pytest.raises(CanonicalSerializationError, match="set"):
            Hasher.canonicalize({"tags": {"a", "b"}})

    def test_top_level_must_be_dict(self):
        with pytest.raises(CanonicalSerializationError, match="requires a dict"):
            Hasher.canonicalize([1, 2, 3])

    def test_version_marker_first(self):
        assert Hasher.canonicalize({"a": 1}).startswith('{"__canon_v":1,')


class TestEventEncoding:
    """What an event's content hash covers, and what it does not."""

    def test_genesis_golden_canonical_form(self):
        """Exact bytes for a fixed genesis event. Changing this breaks every log."""
        event = make_event()
        expected = (
            '{"__canon_v":1,'
            '"attachments":[],'
            '"category":"general",'
            '"created_at":"2024-01-15T12:30:45.123456Z",'
            '"id":"12345678-1234-5678-1234-567812345678",'
            '"notes":"x",'
            '"title":"First"}'
        )
        assert Hasher.encode_event(event) == expected.encode("utf-8")
        assert event.integrity.content_hash == Hasher.hash_bytes(expected.encode("utf-8"))

    def test_genesis_has_no_chain_summary(self):
        assert "chain" not in Hasher.canonical_event(make_event())

    def test_location_absent_is_omitted(self):
        assert "location" not in Hasher.canonical_event(make_event())

    def test_linked_event_includes_chain_summary(self):
        genesis = make_event()
        second = ChainLinker.create_linked_event(EventDraft(title="Second"), genesis)
        chain = Hasher.canonical_event(second)["chain"]
        assert chain == {
            "previous_event_id": genesis.id,
            "previous_event_hash": genesis.integrity.content_hash,
            "sequence_number": 1,
        }

    def test_location_summary_only(self):
        location = EventLocation(
            latitude=Decimal("37.7749"),
            longitude=Decimal("-122.4194"),
            accuracy_meters=Decimal("5"),
            altitude_meters=Decimal("12.5"),
            captured_at=FIXED_TIME,
        )
        summary = Hasher.canonical_event(make_event(location=location))["location"]
        assert set(summary) == {"latitude", "longitude", "accuracy", "captured_at"}

    def test_equal_coordinates_hash_identically(self):
        """Logically identical locations give byte-identical events."""
        def located(latitude, accuracy):
            return make_event(location=EventLocation(
                latitude=Decimal(latitude),
                longitude=Decimal("-122.4194"),
                accuracy_meters=Decimal(accuracy),
                captured_at=FIXED_TIME,
            ))

        short = located("37.7749", "10")
        padded = located("37.77490", "1E+1")

        assert short.location == padded.location
        assert Hasher.encode_event(short) == Hasher.encode_event(padded)
        assert short.integrity.content_hash == padded.integrity.content_hash

    def test_attachment_order_is_hashed(self):
        first = AttachmentReference(
            filename="a.txt", size_bytes=1,
            content_hash=Hasher.hash_bytes(b"a"), storage_key=Hasher.hash_bytes(b"a"),
        )
        second = AttachmentReference(
            filename="b.txt", size_bytes=1,
            content_hash=Hasher.hash_bytes(b"b"), storage_key=Hasher.hash_bytes(b"b"),
        )
        forward = make_event(attachments=[first, second])
        backward = make_event(attachments=[second, first])
        assert forward.integrity.content_hash != backward.integrity.content_hash

    def test_attachment_metadata_not_hashed(self):
        """Only (id, hash) pairs are covered; filename is display metadata."""
        digest = Hasher.hash_bytes(b"a")
        ref = AttachmentReference(
            filename="a.txt", size_bytes=1, content_hash=digest, storage_key=digest,
        )
        renamed = ref.model_copy(update={"filename": "renamed.txt"})
        assert (
            make_event(attachments=[ref]).integrity.content_hash
            == make_event(attachments=[renamed]).integrity.content_hash
        )

    def test_display_fields_not_hashed(self):
        event = make_event()
        shifted = event.model_copy(
            update={"created_at_local": event.created_at.astimezone(timezone(timedelta(hours=-5)))}
        )
        assert Hasher.calculate_event_hash(shifted) == event.integrity.content_hash

    @pytest.mark.parametrize("field,value", [
        ("title", "Firsu"),
        ("notes", "y"),
        ("category", EventCategory.LEGAL),
        ("created_at", FIXED_TIME + timedelta(microseconds=1)),
    ])
    def test_every_covered_field_changes_hash(self, field, value):
        event = make_event()
        mutated = event.model_copy(update={field: value})
        assert Hasher.calculate_event_hash(mutated) != event.integrity.content_hash

    def test_identical_events_identical_bytes(self):
        assert Hasher.encode_event(make_event()) == Hasher.encode_event(make_event())
