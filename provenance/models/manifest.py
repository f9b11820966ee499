"""
Pydantic models for signed claim manifests.
"""

from typing import Any, Dict, Optional
from pydantic import BaseModel, Field, validator

MANIFEST_VERSION = "1.0"
MANIFEST_ALGORITHM = "sha256"


def _check_canonical_value(value: Any, path: str) -> None:
    """Metadata must serialize without ambiguous numbers: no floats anywhere."""
    if value is None or isinstance(value, (str, bool, int)):
        return
    if isinstance(value, float):
        raise ValueError(f"{path}: floating point values are not allowed")
    if isinstance(value, (list, tuple)):
        for idx, item in enumerate(value):
            _check_canonical_value(item, f"{path}[{idx}]")
        return
    if isinstance(value, dict):
        for key, item in value.items():
            if not isinstance(key, str):
                raise ValueError(f"{path}: metadata keys must be strings")
            _check_canonical_value(item, f"{path}.{key}")
        return
    raise ValueError(f"{path}: unsupported metadata type {type(value).__name__}")


class UnsignedManifest(BaseModel):
    """Claim document before the claimant signature is attached."""
    version: str = Field(default=MANIFEST_VERSION, description="Manifest format version")
    algorithm: str = Field(default=MANIFEST_ALGORITHM, description="Fingerprint algorithm")
    content_hash: str = Field(..., description="Fingerprint of the claimed content")
    content_uri: Optional[str] = Field(None, description="Blob locator of the content; absent in privacy mode")
    creator: str = Field(..., description="Claimant identity")
    created_at: str = Field(..., description="Build time, ISO-8601 UTC; informational only")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Title, description, tags, license, custom fields")

    class Config:
        frozen = True
        extra = "forbid"

    @validator("metadata")
    def validate_metadata(cls, v):
        _check_canonical_value(v, "metadata")
        return v

    def claim_fields(self) -> Dict[str, Any]:
        """Every field covered by the signature; unset optional fields are omitted."""
        fields = {
            "version": self.version,
            "algorithm": self.algorithm,
            "content_hash": self.content_hash,
            "creator": self.creator,
            "created_at": self.created_at,
            "metadata": self.metadata,
        }
        if self.content_uri is not None:
            fields["content_uri"] = self.content_uri
        return fields


class SignedManifest(UnsignedManifest):
    """Claim document with the claimant signature over its canonical bytes."""
    signature: str = Field(..., description="Signature over the canonical bytes")

    def unsigned(self) -> UnsignedManifest:
        return UnsignedManifest(**self.claim_fields())
