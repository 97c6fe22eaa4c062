"""
Event Signing

Uses Ed25519 to sign event content hashes.

The signature is optional. When present it lives in
integrity.signature and covers integrity.content_hash, so it binds
the signer to the whole canonical event, chain link included.
"""

import base64
from dataclasses import dataclass
from typing import Tuple

from nacl.exceptions import BadSignatureError, CryptoError
from nacl.signing import SigningKey, VerifyKey


class Signer:
    """
    Ed25519 primitives over base64-encoded keys and signatures.
    """

    @staticmethod
    def generate_keypair() -> Tuple[str, str]:
        """
        Generate a new Ed25519 keypair.

        Returns:
            Tuple of (private_key_b64, public_key_b64)
        """
        signing_key = SigningKey.generate()
        verify_key = signing_key.verify_key

        private_b64 = base64.b64encode(bytes(signing_key)).decode("utf-8")
        public_b64 = base64.b64encode(bytes(verify_key)).decode("utf-8")

        return private_b64, public_b64

    @staticmethod
    def public_key_for(private_key_b64: str) -> str:
        """Derive the base64 public key of a base64 private key."""
        signing_key = SigningKey(base64.b64decode(private_key_b64))
        return base64.b64encode(bytes(signing_key.verify_key)).decode("utf-8")

    @staticmethod
    def sign(message: str, private_key_b64: str) -> str:
        """
        Sign a message with Ed25519.

        Returns:
            Base64-encoded signature
        """
        signing_key = SigningKey(base64.b64decode(private_key_b64))
        signed = signing_key.sign(message.encode("utf-8"))
        return base64.b64encode(signed.signature).decode("utf-8")

    @staticmethod
    def verify(message: str, signature_b64: str, public_key_b64: str) -> bool:
        """
        Verify an Ed25519 signature.

        Returns:
            True if signature is valid, False otherwise
        """
        try:
            verify_key = VerifyKey(base64.b64decode(public_key_b64))
            verify_key.verify(
                message.encode("utf-8"),
                base64.b64decode(signature_b64),
            )
            return True
        except (BadSignatureError, CryptoError, ValueError, TypeError):
            return False

    @staticmethod
    def sign_event(content_hash: str, private_key_b64: str) -> str:
        """Sign an event content hash."""
        return Signer.sign(content_hash, private_key_b64)

    @staticmethod
    def verify_event(
        content_hash: str,
        signature_b64: str,
        public_key_b64: str
    ) -> bool:
        """True if the holder of public_key_b64 signed this content hash."""
        return Signer.verify(content_hash, signature_b64, public_key_b64)


@dataclass(frozen=True)
class EventSigner:
    """
    A signing identity handed to the ledger.

    Constructor-injected rather than looked up globally, so two ledgers
    in one process can sign with different keys.
    """
    private_key: str  # Base64-encoded
    public_key: str   # Base64-encoded

    @classmethod
    def generate(cls) -> "EventSigner":
        private_key, public_key = Signer.generate_keypair()
        return cls(private_key=private_key, public_key=public_key)

    @classmethod
    def from_private_key(cls, private_key: str) -> "EventSigner":
        return cls(private_key=private_key, public_key=Signer.public_key_for(private_key))

    def sign(self, content_hash: str) -> str:
        return Signer.sign_event(content_hash, self.private_key)

    def verify(self, content_hash: str, signature: str) -> bool:
        return Signer.verify_event(content_hash, signature, self.public_key)
