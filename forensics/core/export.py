"""
Export Bundles

A bundle is a self-contained JSON document holding every event of a log
plus a verification summary computed at export time. Anyone holding the
bundle can recompute every hash and link without access to the ledger.

The recorded summary is informational: verify_bundle() always
recomputes, and reports a bundle whose recorded summary disagrees with
the recomputed one as tampered.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, Optional, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..schemas import ForensicEvent
from .chain import ChainVerifier, VerificationResult


BUNDLE_VERSION = "1.0"


class BundleFormatError(Exception):
    """Raised when a bundle cannot be parsed."""
    pass


class DateRange(BaseModel):
    model_config = ConfigDict(frozen=True)

    start: datetime
    end: datetime


class VerificationInfo(BaseModel):
    """Verification summary recorded at export time."""
    model_config = ConfigDict(frozen=True)

    chain_valid: bool
    event_count: int = Field(..., ge=0)
    date_range: Optional[DateRange] = None
    error: Optional[str] = None


class ExportBundle(BaseModel):
    """Every event of a log, in chain order, plus its verification summary."""
    model_config = ConfigDict(frozen=True)

    version: str = BUNDLE_VERSION
    export_date: datetime
    device_id: Optional[UUID] = None
    events: list[ForensicEvent] = Field(default_factory=list)
    verification_info: VerificationInfo


def build_export_bundle(
    events: Iterable[ForensicEvent],
    device_id: Optional[UUID] = None,
    export_date: Optional[datetime] = None,
) -> ExportBundle:
    """Snapshot events into a bundle, verifying them on the way out."""
    ordered = ChainVerifier.chain_order(events)
    result = ChainVerifier.verify(ordered)

    date_range = None
    if ordered:
        created = [e.created_at for e in ordered]
        date_range = DateRange(start=min(created), end=max(created))

    return ExportBundle(
        export_date=export_date or datetime.now(timezone.utc),
        device_id=device_id,
        events=ordered,
        verification_info=VerificationInfo(
            chain_valid=result.is_valid,
            event_count=len(ordered),
            date_range=date_range,
            error=result.error,
        ),
    )


def export_event(event: ForensicEvent) -> str:
    """A single event as pretty-printed JSON."""
    return event.model_dump_json(indent=2)


def bundle_to_json(bundle: ExportBundle) -> str:
    return bundle.model_dump_json(indent=2)


def load_bundle(data: Union[str, bytes]) -> ExportBundle:
    """
    Parse a bundle.

    Raises:
        BundleFormatError: If the document is not a valid bundle
    """
    try:
        return ExportBundle.model_validate_json(data)
    except ValidationError as e:
        raise BundleFormatError(
            f"Invalid bundle: {e.error_count()} validation error(s); "
            f"first: {e.errors()[0]['msg']}"
        ) from e
    except ValueError as e:
        raise BundleFormatError(f"Invalid bundle: {e}") from e


@dataclass(frozen=True)
class BundleVerification:
    """Recomputed verification of a bundle against its recorded summary."""
    result: VerificationResult
    recorded_chain_valid: bool
    recorded_event_count: int
    event_count: int

    @property
    def record_matches(self) -> bool:
        return (
            self.recorded_chain_valid == self.result.is_valid
            and self.recorded_event_count == self.event_count
        )

    @property
    def is_verified(self) -> bool:
        return self.result.is_valid and self.record_matches

    @property
    def is_empty(self) -> bool:
        return self.event_count == 0


def verify_bundle(bundle: ExportBundle) -> BundleVerification:
    """Recompute every hash and link of a bundle."""
    result = ChainVerifier.verify(bundle.events)
    return BundleVerification(
        result=result,
        recorded_chain_valid=bundle.verification_info.chain_valid,
        recorded_event_count=bundle.verification_info.event_count,
        event_count=len(bundle.events),
    )
