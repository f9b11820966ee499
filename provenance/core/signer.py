"""
Claimant signing capability.

Signing is an injected async capability: the manifest builder only ever sees
canonical bytes and the returned signature, never key material. A signature
embeds the signer's Ed25519 public key so any third party can recover the
claimant identity from (canonical bytes, signature) alone:

    signature = "0x" + hex(public_key[32] || ed25519_signature[64])
    identity  = "0x" + hex(sha256(public_key)[-20:])
"""

import hashlib
import re
import structlog
from pathlib import Path
from typing import Awaitable, Callable, Optional, Union

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey, Ed25519PublicKey
)

from provenance.core.errors import MalformedInput, SignatureInvalid, SigningDeclined

logger = structlog.get_logger()

PUBLIC_KEY_SIZE = 32
SIGNATURE_SIZE = 64
IDENTITY_PATTERN = re.compile(r"^0x[0-9a-f]{40}$")


def identity_from_public_key(public_key: bytes) -> str:
    """Derive the address-style claimant identity for a raw Ed25519 public key."""
    return "0x" + hashlib.sha256(public_key).digest()[-20:].hex()


def normalize_identity(value: str) -> str:
    """Lowercase and validate a claimant identity."""
    candidate = (value or "").strip().lower()
    if not IDENTITY_PATTERN.match(candidate):
        raise MalformedInput(f"Not a claimant identity: {value!r}", value=value)
    return candidate


def same_identity(a: Optional[str], b: Optional[str]) -> bool:
    return bool(a) and bool(b) and a.lower() == b.lower()


def recover_signer(payload: bytes, signature: str) -> str:
    """
    Recover the claimant identity that produced `signature` over `payload`.

    Raises:
        SignatureInvalid: if the signature is malformed or does not verify
    """
    if not isinstance(signature, str) or not signature.startswith("0x"):
        raise SignatureInvalid("Signature must be a 0x-prefixed hex string")
    try:
        raw = bytes.fromhex(signature[2:])
    except ValueError:
        raise SignatureInvalid("Signature is not valid hex")
    if len(raw) != PUBLIC_KEY_SIZE + SIGNATURE_SIZE:
        raise SignatureInvalid(
            "Signature has wrong length", length=len(raw),
            expected=PUBLIC_KEY_SIZE + SIGNATURE_SIZE
        )

    public_bytes, sig_bytes = raw[:PUBLIC_KEY_SIZE], raw[PUBLIC_KEY_SIZE:]
    try:
        Ed25519PublicKey.from_public_bytes(public_bytes).verify(sig_bytes, payload)
    except (InvalidSignature, ValueError):
        raise SignatureInvalid("Signature does not verify against payload")
    return identity_from_public_key(public_bytes)


class Ed25519Signer:
    """Signer backed by a local Ed25519 private key."""

    def __init__(self, private_key: Ed25519PrivateKey):
        self._private_key = private_key
        self._public_bytes = private_key.public_key().public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        )
        self.identity = identity_from_public_key(self._public_bytes)

    @classmethod
    def generate(cls) -> "Ed25519Signer":
        return cls(Ed25519PrivateKey.generate())

    @classmethod
    def from_seed(cls, seed: bytes) -> "Ed25519Signer":
        """Build a deterministic signer from a 32-byte seed."""
        return cls(Ed25519PrivateKey.from_private_bytes(seed))

    @classmethod
    def from_pem_file(cls, path: Union[str, Path]) -> "Ed25519Signer":
        key = serialization.load_pem_private_key(Path(path).read_bytes(), password=None)
        if not isinstance(key, Ed25519PrivateKey):
            raise MalformedInput(f"Key at {path} is not an Ed25519 private key", path=str(path))
        signer = cls(key)
        logger.info("Loaded signing key", path=str(path), identity=signer.identity)
        return signer

    def to_pem(self) -> bytes:
        return self._private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )

    async def sign(self, payload: bytes) -> str:
        signature = self._private_key.sign(payload)
        return "0x" + (self._public_bytes + signature).hex()

    def recover_signer(self, payload: bytes, signature: str) -> str:
        return recover_signer(payload, signature)


ApprovalCallback = Callable[[bytes], Awaitable[bool]]


class InteractiveSigner:
    """
    Wallet-style signer that asks for confirmation before every signature.

    The approval callback receives the exact bytes to be signed and returns
    False (or raises SigningDeclined) to refuse.
    """

    def __init__(self, signer: Ed25519Signer, approve: ApprovalCallback):
        self._signer = signer
        self._approve = approve
        self.identity = signer.identity

    async def sign(self, payload: bytes) -> str:
        approved = await self._approve(payload)
        if not approved:
            logger.info("Signing request declined", identity=self.identity)
            raise SigningDeclined("Signer declined the request", identity=self.identity)
        return await self._signer.sign(payload)

    def recover_signer(self, payload: bytes, signature: str) -> str:
        return recover_signer(payload, signature)
