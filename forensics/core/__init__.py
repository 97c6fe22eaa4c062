# Core ledger services
from .hasher import Hasher, CanonicalSerializationError, EMPTY_SHA256, HASH_HEX_LENGTH
from .chain import (
    ChainLinker,
    ChainVerifier,
    ChainError,
    LedgerError,
    VerificationFailure,
    VerificationResult,
    verify_chain,
)
from .signer import Signer, EventSigner
from .attachments import (
    AttachmentStore,
    AttachmentError,
    AttachmentTooLargeError,
    DEFAULT_MAX_ATTACHMENT_BYTES,
)
from .export import (
    BundleFormatError,
    BundleVerification,
    DateRange,
    ExportBundle,
    VerificationInfo,
    build_export_bundle,
    bundle_to_json,
    export_event,
    load_bundle,
    verify_bundle,
)
from .ledger import EventLedger, LedgerClosedError

__all__ = [
    "Hasher",
    "CanonicalSerializationError",
    "EMPTY_SHA256",
    "HASH_HEX_LENGTH",
    "ChainLinker",
    "ChainVerifier",
    "ChainError",
    "LedgerError",
    "VerificationFailure",
    "VerificationResult",
    "verify_chain",
    "Signer",
    "EventSigner",
    "AttachmentStore",
    "AttachmentError",
    "AttachmentTooLargeError",
    "DEFAULT_MAX_ATTACHMENT_BYTES",
    "BundleFormatError",
    "BundleVerification",
    "DateRange",
    "ExportBundle",
    "VerificationInfo",
    "build_export_bundle",
    "bundle_to_json",
    "export_event",
    "load_bundle",
    "verify_bundle",
    "EventLedger",
    "LedgerClosedError",
]
