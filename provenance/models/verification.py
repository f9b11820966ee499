"""
Pydantic models for verification verdicts, binding outcomes and registration results.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field
from enum import Enum

from .registry import Binding, Receipt, RegistryEntry


class VerificationStatus(str, Enum):
    """Verdict states."""
    VERIFIED = "verified"
    PLATFORM_VERIFIED = "platform_verified"
    NOT_VERIFIED = "not_verified"
    PENDING = "pending"
    INVALID = "invalid"


class VerificationReason(str, Enum):
    """Evidence code explaining a verdict."""
    MATCH = "match"
    NOT_REGISTERED = "not_registered"
    NO_BINDING = "no_binding"
    PENDING_CONFIRMATION = "pending_confirmation"
    MALFORMED_INPUT = "malformed_input"
    DUPLICATE_ENTRIES = "duplicate_entries"
    MANIFEST_UNAVAILABLE = "manifest_unavailable"
    MALFORMED_MANIFEST = "malformed_manifest"
    FINGERPRINT_MISMATCH = "fingerprint_mismatch"
    BAD_SIGNATURE = "bad_signature"
    SIGNER_MISMATCH = "signer_mismatch"
    REGISTRY_CLAIMANT_MISMATCH = "registry_claimant_mismatch"
    MANIFEST_SWAPPED = "manifest_swapped"


class VerificationResult(BaseModel):
    """Ephemeral verdict with the evidence it was derived from."""
    status: VerificationStatus = Field(..., description="Verdict")
    reason: VerificationReason = Field(..., description="Evidence code")
    network: str = Field(..., description="Network the verdict applies to")
    fingerprint: Optional[str] = Field(None, description="Matched fingerprint")
    recovered_claimant: Optional[str] = Field(None, description="Identity recovered from the signature")
    manifest_claimant: Optional[str] = Field(None, description="Creator declared in the manifest")
    registry_claimant: Optional[str] = Field(None, description="Claimant recorded in the registry")
    conflicting_claimants: List[str] = Field(default_factory=list, description="Claimants of duplicate entries")
    manifest_locator: Optional[str] = Field(None, description="Locator of the manifest checked")
    metadata: Optional[Dict[str, Any]] = Field(None, description="Manifest metadata, if resolvable")
    anchored_at: Optional[datetime] = Field(None, description="Authoritative anchoring time")
    binding: Optional[Binding] = Field(None, description="Platform binding that led to the fingerprint")
    hint: Optional[str] = Field(None, description="Guidance for the caller")
    from_cache: bool = Field(default=False, description="Registry lookup served from cache")
    cache_ttl_seconds: Optional[float] = Field(None, description="TTL applied to the cached lookup")

    class Config:
        use_enum_values = True

    @property
    def is_verified(self) -> bool:
        return self.status in (VerificationStatus.VERIFIED, VerificationStatus.PLATFORM_VERIFIED)


class BindResult(BaseModel):
    """Result of a single bind operation."""
    binding: Binding
    created: bool = Field(..., description="False when the binding already existed")
    receipt: Optional[Receipt] = Field(None, description="Ledger receipt for a new binding")


class BindOutcome(BaseModel):
    """Per-item outcome inside a batch bind."""
    platform: str
    raw_locator: str
    ok: bool
    result: Optional[BindResult] = None
    error: Optional[str] = Field(None, description="Error code when ok is False")
    message: Optional[str] = None


class RegistrationResult(BaseModel):
    """Outcome of registering content on one network."""
    fingerprint: str
    network: str
    claimant: str
    manifest_locator: str
    content_locator: Optional[str] = None
    already_registered: bool = Field(default=False, description="Same claimant had already anchored this content")
    receipt: Optional[Receipt] = None
    entry: Optional[RegistryEntry] = None
    bindings: List[BindOutcome] = Field(default_factory=list)


class Proof(BaseModel):
    """Portable proof document regenerated from a verification."""
    version: str = Field(default="1.0")
    generated_at: datetime
    network: Dict[str, Any]
    content: Dict[str, Any]
    manifest: Dict[str, Any]
    registry: Dict[str, Any]
    verification: Dict[str, Any]
