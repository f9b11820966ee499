import hashlib
import re
import structlog
from typing import BinaryIO, Union
from pathlib import Path

from provenance.core.errors import MalformedInput

logger = structlog.get_logger()

# Fingerprints are 0x-prefixed lowercase SHA-256 hex digests
FINGERPRINT_ALGORITHM = "sha256"
FINGERPRINT_PATTERN = re.compile(r"^0x[0-9a-f]{64}$")
CHUNK_SIZE = 8192

Fingerprint = str


def fingerprint(data: bytes) -> Fingerprint:
    """Compute the fingerprint of an exact byte sequence (empty input allowed)."""
    return "0x" + hashlib.sha256(bytes(data)).hexdigest()


def fingerprint_stream(fileobj: BinaryIO) -> Fingerprint:
    """Fingerprint a binary stream read in chunks; equal to fingerprint() of its full content."""
    hash_obj = hashlib.new(FINGERPRINT_ALGORITHM)
    for chunk in iter(lambda: fileobj.read(CHUNK_SIZE), b""):
        hash_obj.update(chunk)
    return "0x" + hash_obj.hexdigest()


def fingerprint_file(file_path: Union[str, Path]) -> Fingerprint:
    """Calculate the fingerprint of a file on disk. I/O errors are left to the caller."""
    with open(file_path, "rb") as f:
        digest = fingerprint_stream(f)
    logger.debug("Calculated file fingerprint", file_path=str(file_path), fingerprint=digest)
    return digest


def parse_fingerprint(value: str) -> Fingerprint:
    """
    Normalize a caller-supplied fingerprint string.

    Accepts the digest with or without the 0x prefix and in any hex case.

    Raises:
        MalformedInput: if the value is not a 256-bit hex digest
    """
    if not isinstance(value, str):
        raise MalformedInput("Fingerprint must be a string", value=repr(value))
    candidate = value.strip().lower()
    if not candidate.startswith("0x"):
        candidate = "0x" + candidate
    if not FINGERPRINT_PATTERN.match(candidate):
        raise MalformedInput(f"Not a sha256 fingerprint: {value!r}", value=value)
    return candidate


def is_fingerprint(value: str) -> bool:
    return isinstance(value, str) and bool(FINGERPRINT_PATTERN.match(value))
