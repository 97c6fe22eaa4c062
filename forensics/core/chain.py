"""
Hash Chain - Linking and Verification

Every event after the first carries a link to its predecessor:
the predecessor's id, its stored content hash, and a sequence number.
The link is part of the hashed content, so changing any past event
breaks the link recorded by its successor.

SEQUENCE NUMBERS:
- The genesis event sits at position 0 and carries no link
- The n-th chained event carries sequence_number == n
- So sequence_number is always the event's position in the log

VERIFICATION DETECTS:
- Content tampering: recomputed hash != stored hash
- Link tampering: previous hash / id do not match the predecessor
- Insertion: the forged event's hash is not what its successor recorded
- Deletion: the successor's previous hash matches no present event
- Forks: two events claiming the same predecessor
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Iterable, Optional, Sequence
from uuid import UUID, uuid4

from ..schemas import (
    ChainLink,
    EventDraft,
    EventIntegrity,
    ForensicEvent,
    Genesis,
    Linked,
)
from .hasher import Hasher
from .signer import EventSigner, Signer


class LedgerError(Exception):
    """Base exception for ledger errors."""
    pass


class ChainError(LedgerError):
    """Raised when an event cannot be linked onto the chain."""
    pass


# ============================================================
# LINKER
# ============================================================

class ChainLinker:
    """
    Produces chain links and finalized events.

    Pure: reads only the tail it is given. The caller is responsible for
    making sure no other event is linked against the same tail.
    """

    @staticmethod
    def next_sequence(chain: ChainLink) -> int:
        """Sequence number of the event following one with this link."""
        if isinstance(chain, Linked):
            return chain.sequence_number + 1
        return 1

    @classmethod
    def link(cls, tail: Optional[ForensicEvent]) -> ChainLink:
        """
        Chain link for a new event whose predecessor is tail.

        Raises:
            ChainError: If the tail has no usable content hash
        """
        if tail is None:
            return Genesis()

        if not Hasher.is_valid_hash(tail.integrity.content_hash):
            raise ChainError(
                f"Cannot link onto event {tail.id}: its content hash "
                f"'{tail.integrity.content_hash[:16]}' is not a SHA-256 digest"
            )

        return Linked(
            previous_event_id=tail.id,
            previous_event_hash=tail.integrity.content_hash,
            sequence_number=cls.next_sequence(tail.chain),
        )

    @classmethod
    def create_linked_event(
        cls,
        draft: EventDraft,
        tail: Optional[ForensicEvent],
        signer: Optional[EventSigner] = None,
        created_at: Optional[datetime] = None,
        event_id: Optional[UUID] = None,
    ) -> ForensicEvent:
        """
        Finalize a draft into an immutable event.

        Flow:
        1. Assign identity and timestamps
        2. Assign the chain link (from tail)
        3. Compute content hash over the event WITH its link
        4. Sign the content hash, if a signer is given

        The draft is assumed to satisfy its preconditions already
        (see EventDraft.validated).
        """
        created_at = created_at or ForensicEvent.utc_now()

        unsealed = ForensicEvent(
            id=event_id or uuid4(),
            category=draft.category,
            title=draft.title,
            notes=draft.notes,
            created_at=created_at,
            created_at_local=ForensicEvent.local_mirror(created_at),
            attachments=list(draft.attachments),
            location=draft.location,
            chain=cls.link(tail),
            integrity=EventIntegrity(content_hash="0" * 64),
        )

        content_hash = Hasher.calculate_event_hash(unsealed)
        signature = signer.sign(content_hash) if signer is not None else None

        return unsealed.model_copy(
            update={
                "integrity": EventIntegrity(
                    content_hash=content_hash,
                    signature=signature,
                )
            }
        )


# ============================================================
# VERIFIER
# ============================================================

class VerificationFailure(str, Enum):
    """Why a verification failed."""
    HASH_MISMATCH = "hash_mismatch"
    CHAIN_BROKEN = "chain_broken"
    FORK = "fork"
    MULTIPLE_GENESIS = "multiple_genesis"
    SIGNATURE_MISSING = "signature_missing"
    SIGNATURE_INVALID = "signature_invalid"


@dataclass(frozen=True)
class VerificationResult:
    """
    Outcome of a verification.

    A failed verification is an expected, actionable finding,
    not a program fault: it is returned, never raised.
    """
    is_valid: bool
    error: Optional[str] = None
    failure: Optional[VerificationFailure] = None
    position: Optional[int] = None
    event_id: Optional[UUID] = None
    event_count: int = 0

    @classmethod
    def ok(cls, event_count: int = 0) -> "VerificationResult":
        return cls(is_valid=True, event_count=event_count)

    @classmethod
    def failed(
        cls,
        failure: VerificationFailure,
        error: str,
        position: Optional[int] = None,
        event_id: Optional[UUID] = None,
        event_count: int = 0,
    ) -> "VerificationResult":
        return cls(
            is_valid=False,
            error=error,
            failure=failure,
            position=position,
            event_id=event_id,
            event_count=event_count,
        )

    def __bool__(self) -> bool:
        return self.is_valid

    def to_dict(self) -> dict:
        return {
            "is_valid": self.is_valid,
            "error": self.error,
            "failure": self.failure.value if self.failure else None,
            "position": self.position,
            "event_id": str(self.event_id) if self.event_id else None,
            "event_count": self.event_count,
        }


class ChainVerifier:
    """
    Validates every hash and every link of an unordered set of events.

    Read-only and side-effect free. Order independent: the input is
    re-sorted into chain order before checking.
    """

    @staticmethod
    def chain_order(events: Iterable[ForensicEvent]) -> list[ForensicEvent]:
        """
        Logical order of a set of events.

        Genesis first, then by sequence number. Ties (which only a
        tampered or forked log can contain) are broken by creation time
        and id so the order never depends on input order.
        """
        return sorted(
            events,
            key=lambda e: (
                0 if e.is_genesis else 1,
                e.sequence_number,
                e.created_at,
                str(e.id),
            ),
        )

    @classmethod
    def _check_structure(
        cls,
        ordered: Sequence[ForensicEvent],
    ) -> Optional[VerificationResult]:
        """Single genesis, and no two events claiming the same predecessor."""
        count = len(ordered)

        genesis = [e for e in ordered if e.is_genesis]
        if len(genesis) > 1:
            return VerificationResult.failed(
                VerificationFailure.MULTIPLE_GENESIS,
                f"Found {len(genesis)} genesis events; a log has exactly one",
                position=1,
                event_id=genesis[1].id,
                event_count=count,
            )

        claimed: dict[UUID, UUID] = {}
        for idx, event in enumerate(ordered):
            if not isinstance(event.chain, Linked):
                continue
            previous_id = event.chain.previous_event_id
            if previous_id in claimed:
                return VerificationResult.failed(
                    VerificationFailure.FORK,
                    f"Fork at position {idx}: events {claimed[previous_id]} and "
                    f"{event.id} both claim predecessor {previous_id}",
                    position=idx,
                    event_id=event.id,
                    event_count=count,
                )
            claimed[previous_id] = event.id

        return None

    @classmethod
    def _check_hashes(
        cls,
        ordered: Sequence[ForensicEvent],
    ) -> Optional[VerificationResult]:
        """Each event's stored content hash against its recomputed hash."""
        count = len(ordered)

        for idx, event in enumerate(ordered):
            computed = Hasher.calculate_event_hash(event)
            if not Hasher.constant_time_compare(computed, event.integrity.content_hash):
                return VerificationResult.failed(
                    VerificationFailure.HASH_MISMATCH,
                    f"Event at position {idx}: content hash mismatch. "
                    f"Stored: {event.integrity.content_hash[:16]}..., "
                    f"computed: {computed[:16]}...",
                    position=idx,
                    event_id=event.id,
                    event_count=count,
                )

        return None

    @classmethod
    def verify(cls, events: Iterable[ForensicEvent]) -> VerificationResult:
        """
        Verify a complete event chain.

        Checks, in chain order:
        1. Each event's stored content hash matches its recomputed hash
        2. Structure: one genesis, no forks
        3. Position 0 is the genesis event
        4. Each later event links to the stored hash and id of the event
           before it, with sequence_number equal to its position

        The chain link is hashed content, so an altered link is reported
        as a hash mismatch on the altered event before any structural check.
        """
        ordered = cls.chain_order(events)
        count = len(ordered)

        if not ordered:
            return VerificationResult.ok()

        tampered = cls._check_hashes(ordered)
        if tampered is not None:
            return tampered

        structural = cls._check_structure(ordered)
        if structural is not None:
            return structural

        for idx, event in enumerate(ordered):
            if idx == 0:
                if not event.is_genesis:
                    return VerificationResult.failed(
                        VerificationFailure.CHAIN_BROKEN,
                        "Chain broken at position 0: missing genesis event "
                        f"(first event links to {event.chain.previous_event_id})",
                        position=0,
                        event_id=event.id,
                        event_count=count,
                    )
                continue

            previous = ordered[idx - 1]
            chain = event.chain

            if not isinstance(chain, Linked):
                return VerificationResult.failed(
                    VerificationFailure.CHAIN_BROKEN,
                    f"Chain broken at position {idx}: event has no chain link",
                    position=idx,
                    event_id=event.id,
                    event_count=count,
                )

            if chain.previous_event_hash != previous.integrity.content_hash:
                return VerificationResult.failed(
                    VerificationFailure.CHAIN_BROKEN,
                    f"Chain broken at position {idx}: previous hash mismatch",
                    position=idx,
                    event_id=event.id,
                    event_count=count,
                )

            if chain.previous_event_id != previous.id:
                return VerificationResult.failed(
                    VerificationFailure.CHAIN_BROKEN,
                    f"Chain broken at position {idx}: previous id mismatch",
                    position=idx,
                    event_id=event.id,
                    event_count=count,
                )

            if chain.sequence_number != idx:
                return VerificationResult.failed(
                    VerificationFailure.CHAIN_BROKEN,
                    f"Chain broken at position {idx}: sequence number "
                    f"{chain.sequence_number} out of place",
                    position=idx,
                    event_id=event.id,
                    event_count=count,
                )

        return VerificationResult.ok(event_count=count)

    @classmethod
    def verify_signatures(
        cls,
        events: Iterable[ForensicEvent],
        public_key: str,
        require: bool = True,
    ) -> VerificationResult:
        """
        Check each event's signature over its content hash.

        Args:
            events: Events to check (any order)
            public_key: Base64 Ed25519 public key of the expected signer
            require: If True, an unsigned event is a failure
        """
        ordered = cls.chain_order(events)
        count = len(ordered)

        for idx, event in enumerate(ordered):
            signature = event.integrity.signature
            if signature is None:
                if require:
                    return VerificationResult.failed(
                        VerificationFailure.SIGNATURE_MISSING,
                        f"Event at position {idx}: not signed",
                        position=idx,
                        event_id=event.id,
                        event_count=count,
                    )
                continue

            if not Signer.verify_event(event.integrity.content_hash, signature, public_key):
                return VerificationResult.failed(
                    VerificationFailure.SIGNATURE_INVALID,
                    f"Event at position {idx}: signature does not match public key",
                    position=idx,
                    event_id=event.id,
                    event_count=count,
                )

        return VerificationResult.ok(event_count=count)

    @classmethod
    def tail_of(cls, events: Iterable[ForensicEvent]) -> Optional[ForensicEvent]:
        """Last event in chain order, or None for an empty log."""
        ordered = cls.chain_order(events)
        return ordered[-1] if ordered else None


def verify_chain(events: Iterable[ForensicEvent]) -> VerificationResult:
    """Module-level shorthand for ChainVerifier.verify."""
    return ChainVerifier.verify(events)
