"""
Forensic Ledger Bundle Verifier

Verifies an export bundle independently of any ledger.
No access to the original storage is required: every hash and every
link is recomputed from the bundle itself.

Usage:
    forensics-verify bundle.json
    forensics-verify bundle.json --verbose
    forensics-verify bundle.json --json
    forensics-verify bundle.json --public-key <base64>

Exit codes:
    0 - VERIFIED: All checks passed
    1 - TAMPERED: Hash, link or signature mismatch
    2 - INCOMPLETE: Bundle holds no events
    3 - INVALID_FORMAT: Bundle structure invalid
"""

import argparse
import json
import sys
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from .core.chain import ChainVerifier
from .core.export import BundleFormatError, ExportBundle, load_bundle, verify_bundle
from .observability import get_logger, setup_logging

logger = get_logger(__name__)


class VerificationOutcome(Enum):
    VERIFIED = "VERIFIED"
    TAMPERED = "TAMPERED"
    INCOMPLETE = "INCOMPLETE"
    INVALID_FORMAT = "INVALID_FORMAT"


EXIT_CODES = {
    VerificationOutcome.VERIFIED: 0,
    VerificationOutcome.TAMPERED: 1,
    VerificationOutcome.INCOMPLETE: 2,
    VerificationOutcome.INVALID_FORMAT: 3,
}


@dataclass
class VerificationReport:
    outcome: VerificationOutcome
    event_count: int = 0
    checks_passed: list[str] = field(default_factory=list)
    checks_failed: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def exit_code(self) -> int:
        return EXIT_CODES[self.outcome]

    def to_dict(self) -> dict[str, Any]:
        return {
            "result": self.outcome.value,
            "event_count": self.event_count,
            "checks_passed": self.checks_passed,
            "checks_failed": self.checks_failed,
            "warnings": self.warnings,
            "details": self.details,
        }


def verify_bundle_report(
    bundle: ExportBundle,
    public_key: Optional[str] = None,
) -> VerificationReport:
    """Run every check against a parsed bundle."""
    report = VerificationReport(
        outcome=VerificationOutcome.VERIFIED,
        event_count=len(bundle.events),
        details={
            "bundle_version": bundle.version,
            "export_date": bundle.export_date.isoformat(),
            "device_id": str(bundle.device_id) if bundle.device_id else None,
            "chain_valid_at_export": bundle.verification_info.chain_valid,
        },
    )

    if not bundle.events:
        report.checks_failed.append("Bundle has no events")
        report.outcome = VerificationOutcome.INCOMPLETE
        return report

    verification = verify_bundle(bundle)
    result = verification.result

    if result.is_valid:
        report.checks_passed.append(
            f"All {verification.event_count} event hashes and links verified"
        )
    else:
        report.checks_failed.append(result.error or "Chain verification failed")
        report.details["failure"] = result.to_dict()
        report.outcome = VerificationOutcome.TAMPERED

    if verification.record_matches:
        report.checks_passed.append("Recorded verification summary matches")
    else:
        report.checks_failed.append(
            "Recorded verification summary does not match recomputed result "
            f"(recorded valid={verification.recorded_chain_valid}, "
            f"count={verification.recorded_event_count}; "
            f"recomputed valid={result.is_valid}, count={verification.event_count})"
        )
        report.outcome = VerificationOutcome.TAMPERED

    if public_key is not None:
        signatures = ChainVerifier.verify_signatures(bundle.events, public_key)
        if signatures.is_valid:
            report.checks_passed.append(f"All {verification.event_count} signatures verified")
        else:
            report.checks_failed.append(signatures.error or "Signature verification failed")
            report.outcome = VerificationOutcome.TAMPERED
    elif any(e.integrity.signature for e in bundle.events):
        report.warnings.append("Events are signed but no --public-key was given")

    return report


def load_report(path: Path, public_key: Optional[str] = None) -> VerificationReport:
    """Read, parse and verify a bundle file."""
    try:
        data = path.read_bytes()
    except OSError as e:
        return VerificationReport(
            outcome=VerificationOutcome.INVALID_FORMAT,
            checks_failed=[f"Failed to read file: {e}"],
        )

    try:
        bundle = load_bundle(data)
    except BundleFormatError as e:
        return VerificationReport(
            outcome=VerificationOutcome.INVALID_FORMAT,
            checks_failed=[str(e)],
        )

    return verify_bundle_report(bundle, public_key=public_key)


BANNERS = {
    VerificationOutcome.VERIFIED: "[VERIFIED] - All checks passed",
    VerificationOutcome.TAMPERED: "[TAMPERED] - Hash, link or signature mismatch detected",
    VerificationOutcome.INCOMPLETE: "[INCOMPLETE] - Bundle holds no events",
    VerificationOutcome.INVALID_FORMAT: "[INVALID_FORMAT] - Bundle structure invalid",
}


def print_report(report: VerificationReport, json_output: bool = False, verbose: bool = False):
    """Print verification report."""
    if json_output:
        print(json.dumps(report.to_dict(), indent=2))
        return

    print("\n" + "=" * 60)
    print(f"  {BANNERS[report.outcome]}")
    print("=" * 60)

    print(f"\nEvents:   {report.event_count}")

    if verbose:
        for key, value in report.details.items():
            if key != "failure":
                print(f"{key}: {value}")

    if report.checks_passed:
        print("\nPassed:")
        for check in report.checks_passed:
            print(f"  + {check}")

    if report.checks_failed:
        print("\nFailed:")
        for check in report.checks_failed:
            print(f"  - {check}")

    if report.warnings:
        print("\nWarnings:")
        for warning in report.warnings:
            print(f"  ! {warning}")

    print()


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="forensics-verify",
        description="Verify a forensic ledger export bundle",
        epilog="Exit codes: 0=VERIFIED, 1=TAMPERED, 2=INCOMPLETE, 3=INVALID_FORMAT",
    )
    parser.add_argument("bundle", type=str, help="Path to the bundle JSON file")
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Show bundle details",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Output result as JSON",
    )
    parser.add_argument(
        "--public-key",
        default=None,
        help="Base64 Ed25519 public key; every event must carry a valid signature",
    )

    args = parser.parse_args(argv)
    setup_logging()

    report = load_report(Path(args.bundle), public_key=args.public_key)
    logger.info(
        "Bundle verified",
        bundle=args.bundle,
        result=report.outcome.value,
        event_count=report.event_count,
    )

    print_report(report, json_output=args.json, verbose=args.verbose)
    return report.exit_code


if __name__ == "__main__":
    sys.exit(main())
