"""
Exception hierarchy for the provenance engine.

Expected lookup misses (an absent or pending registry record) are returned as
values and never raised. Everything here is either a caller error, a
security-relevant inconsistency, or a collaborator failure.
"""

from typing import Any, Dict, List, Optional


class ProvenanceError(Exception):
    """Base exception for all provenance engine errors."""

    code = "provenance_error"

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = {k: v for k, v in details.items() if v is not None}

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.code, "message": self.message, "details": self.details or None}


class MalformedInput(ProvenanceError):
    """Raised when caller input (fingerprint, claimant, network) is malformed."""

    code = "malformed_input"


class UnrecognizedFormat(ProvenanceError):
    """Raised when a platform locator cannot be normalized."""

    code = "unrecognized_format"

    def __init__(self, platform: str, raw_locator: str, reason: str = ""):
        message = f"Unrecognized {platform or 'platform'} locator: {raw_locator!r}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message, platform=platform, raw_locator=raw_locator)
        self.platform = platform
        self.raw_locator = raw_locator


class UnknownNetwork(ProvenanceError):
    """Raised when a network name is not configured."""

    code = "unknown_network"


class NotRegistered(ProvenanceError):
    """Raised when an operation needs an anchored registry entry that does not exist."""

    code = "not_registered"


class NotOwner(ProvenanceError):
    """Raised when a claimant other than the registry claimant modifies bindings."""

    code = "not_owner"

    def __init__(self, fingerprint: str, claimant: str, owner: Optional[str]):
        super().__init__(
            f"Claimant {claimant} does not own {fingerprint}",
            fingerprint=fingerprint,
            claimant=claimant,
            owner=owner,
        )
        self.fingerprint = fingerprint
        self.claimant = claimant
        self.owner = owner


class RegistryConflict(ProvenanceError):
    """
    Raised when a write collides with an existing ledger record.

    Carries both sides of the conflict so a human or downstream policy can
    decide; the engine never resolves a conflict on its own.
    """

    code = "conflict"

    def __init__(
        self,
        message: str,
        network: str,
        fingerprint: str,
        existing_claimant: Optional[str] = None,
        attempted_claimant: Optional[str] = None,
        existing: Optional[List[Dict[str, Any]]] = None,
    ):
        super().__init__(
            message,
            network=network,
            fingerprint=fingerprint,
            existing_claimant=existing_claimant,
            attempted_claimant=attempted_claimant,
            existing=existing,
        )
        self.network = network
        self.fingerprint = fingerprint
        self.existing_claimant = existing_claimant
        self.attempted_claimant = attempted_claimant
        self.existing = existing or []


class SigningDeclined(ProvenanceError):
    """Raised when the signer (wallet) refuses or cancels a signing request."""

    code = "declined"


class SignatureInvalid(ProvenanceError):
    """Raised when a signature cannot be recovered to an identity."""

    code = "invalid_signature"


class ManifestError(ProvenanceError):
    """Raised for manifests that cannot be built, serialized or parsed."""

    code = "malformed_manifest"


class StorageError(ProvenanceError):
    """Raised for blob store failures."""

    code = "storage_error"


class BlobNotFound(StorageError):
    """Raised when a locator does not resolve to a stored blob."""

    code = "not_found"

    def __init__(self, locator: str):
        super().__init__(f"Blob not found: {locator}", locator=locator)
        self.locator = locator
