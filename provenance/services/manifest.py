"""
Manifest builder and signer.

The signed byte sequence is the canonical JSON of every manifest field
except `signature`: sorted keys, compact separators, UTF-8, unset optional
fields omitted. Re-serializing a signed manifest without its signature
reproduces exactly the bytes that were signed, which is what lets any third
party re-derive them for verification.
"""

import json
import structlog
from datetime import datetime
from typing import Any, Dict, Optional, Union

from pydantic import ValidationError

from provenance.core.errors import ManifestError, SigningDeclined
from provenance.core.fingerprint import is_fingerprint, parse_fingerprint
from provenance.core.signer import IDENTITY_PATTERN, normalize_identity, same_identity
from provenance.core.utils import utc_timestamp
from provenance.models.manifest import SignedManifest, UnsignedManifest

logger = structlog.get_logger()


def _canonical_json(document: Dict[str, Any]) -> bytes:
    try:
        return json.dumps(
            document,
            sort_keys=True,
            separators=(",", ":"),
            ensure_ascii=False,
            allow_nan=False,
        ).encode("utf-8")
    except (TypeError, ValueError) as e:
        raise ManifestError(f"Manifest is not canonically serializable: {e}")


def build_manifest(
    fingerprint: str,
    claimant: str,
    content_locator: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
    created_at: Optional[datetime] = None,
) -> UnsignedManifest:
    """Assemble an unsigned manifest. created_at is fixed here and never changes."""
    try:
        return UnsignedManifest(
            content_hash=parse_fingerprint(fingerprint),
            content_uri=content_locator,
            creator=normalize_identity(claimant),
            created_at=utc_timestamp(created_at),
            metadata=dict(metadata or {}),
        )
    except ValidationError as e:
        raise ManifestError(f"Invalid manifest fields: {e.errors()[0]['msg']}")


def canonical_bytes(manifest: Union[UnsignedManifest, SignedManifest]) -> bytes:
    """The exact bytes a claimant signs (signature excluded)."""
    return _canonical_json(manifest.claim_fields())


async def sign_manifest(manifest: UnsignedManifest, signer) -> SignedManifest:
    """
    Have the injected signer sign the manifest's canonical bytes.

    Raises:
        SigningDeclined: the signer refused; propagated untouched
        ManifestError: the signer's identity is not the manifest creator
    """
    if not same_identity(signer.identity, manifest.creator):
        raise ManifestError(
            "Signer identity does not match manifest creator",
            signer=signer.identity, creator=manifest.creator,
        )

    payload = canonical_bytes(manifest)
    try:
        signature = await signer.sign(payload)
    except SigningDeclined:
        logger.info("Manifest signing declined", fingerprint=manifest.content_hash,
                    claimant=manifest.creator)
        raise

    logger.debug("Manifest signed", fingerprint=manifest.content_hash, claimant=manifest.creator)
    return SignedManifest(**manifest.claim_fields(), signature=signature)


def serialize_manifest(manifest: SignedManifest) -> bytes:
    """Boundary document stored in the blob store: canonical JSON including the signature."""
    document = manifest.claim_fields()
    document["signature"] = manifest.signature
    return _canonical_json(document)


def parse_manifest(data: bytes) -> SignedManifest:
    """
    Parse a stored manifest document.

    Raises:
        ManifestError: for non-JSON or non-object documents, schema violations,
            and a content_hash or creator not in canonical lowercase form
    """
    try:
        document = json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as e:
        raise ManifestError(f"Manifest is not valid JSON: {e}")
    if not isinstance(document, dict):
        raise ManifestError("Manifest must be a JSON object")
    try:
        manifest = SignedManifest(**document)
    except (ValidationError, TypeError) as e:
        raise ManifestError(f"Manifest does not match schema: {e}")

    # The signed bytes fix these fields, so a non-canonical spelling is
    # rejected rather than normalized
    if not is_fingerprint(manifest.content_hash):
        raise ManifestError(f"Manifest content_hash is not a canonical fingerprint: {manifest.content_hash!r}")
    if not IDENTITY_PATTERN.match(manifest.creator):
        raise ManifestError(f"Manifest creator is not a canonical identity: {manifest.creator!r}")
    return manifest
