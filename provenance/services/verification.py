"""
Verification engine.

Three modes, all scoped to one explicit network:

1. by content: fingerprint the bytes (or take a fingerprint) and look it up
2. by platform: normalize a locator, resolve its binding, then run mode 1
3. by manifest: fetch a manifest, check its signature, then confirm the
   registry points back at exactly that manifest

A verdict is `verified` only when the signature recovers to the manifest
creator, the manifest hashes to the looked-up fingerprint, and the registry
claimant is that same identity. Every other outcome carries the evidence
that led to it.
"""

import structlog
from typing import Any, Callable, Dict, Optional, Tuple

from provenance.config import get_network
from provenance.core.errors import (
    BlobNotFound, ManifestError, MalformedInput, SignatureInvalid, StorageError, UnrecognizedFormat
)
from provenance.core.fingerprint import fingerprint as fingerprint_bytes
from provenance.core.fingerprint import parse_fingerprint
from provenance.core.registry import Registry
from provenance.core.signer import recover_signer, same_identity
from provenance.core.storage import BlobStore
from provenance.models.manifest import SignedManifest
from provenance.models.registry import LookupStatus, RegistryEntry, RegistryLookup, utcnow
from provenance.models.verification import (
    Proof, VerificationReason, VerificationResult, VerificationStatus
)
from provenance.services.cache import LookupCache
from provenance.services.manifest import canonical_bytes, parse_manifest
from provenance.services.platforms import normalize, parse_platform_reference

logger = structlog.get_logger()

Recover = Callable[[bytes, str], str]


class VerificationEngine:
    def __init__(self, registry: Registry, blob_store: BlobStore,
                 cache: Optional[LookupCache] = None, recover: Recover = recover_signer):
        self.registry = registry
        self.blob_store = blob_store
        self.cache = cache
        self.recover = recover

    async def _lookup(self, fingerprint: str, network: str) -> Tuple[RegistryLookup, bool, Optional[float]]:
        """Registry read through the cache; returns (lookup, from_cache, ttl)."""
        if self.cache is not None:
            hit = self.cache.get(fingerprint, network)
            if hit is not None:
                lookup, ttl = hit
                return lookup, True, ttl
        lookup = await self.registry.read(fingerprint, network)
        ttl = self.cache.put(lookup) if self.cache is not None else None
        return lookup, False, ttl

    async def _fetch_manifest(self, locator: str) -> Tuple[Optional[SignedManifest], Optional[VerificationReason]]:
        try:
            data = await self.blob_store.get(locator)
        except BlobNotFound:
            logger.warning("Manifest not found", manifest_locator=locator)
            return None, VerificationReason.MANIFEST_UNAVAILABLE
        except StorageError as e:
            logger.warning("Manifest locator unusable", manifest_locator=locator, error=e.message)
            return None, VerificationReason.MANIFEST_UNAVAILABLE
        try:
            return parse_manifest(data), None
        except ManifestError as e:
            logger.warning("Malformed manifest", manifest_locator=locator, error=e.message)
            return None, VerificationReason.MALFORMED_MANIFEST

    def _recover(self, manifest: SignedManifest) -> Optional[str]:
        try:
            return self.recover(canonical_bytes(manifest), manifest.signature)
        except (SignatureInvalid, ManifestError) as e:
            logger.warning("Manifest signature rejected", fingerprint=manifest.content_hash,
                           error=e.message)
            return None

    def _check_claims(self, manifest: SignedManifest, entry: RegistryEntry,
                      evidence: Dict[str, Any]) -> VerificationResult:
        """Signature, creator and registry-claimant checks shared by modes 1 and 3."""
        evidence.update(manifest_claimant=manifest.creator, registry_claimant=entry.claimant,
                        anchored_at=entry.anchored_at)

        recovered = self._recover(manifest)
        if recovered is None:
            return VerificationResult(status=VerificationStatus.INVALID,
                                      reason=VerificationReason.BAD_SIGNATURE, **evidence)
        evidence["recovered_claimant"] = recovered

        if not same_identity(recovered, manifest.creator):
            return VerificationResult(status=VerificationStatus.INVALID,
                                      reason=VerificationReason.SIGNER_MISMATCH, **evidence)
        if not same_identity(recovered, entry.claimant):
            return VerificationResult(status=VerificationStatus.INVALID,
                                      reason=VerificationReason.REGISTRY_CLAIMANT_MISMATCH, **evidence)

        return VerificationResult(status=VerificationStatus.VERIFIED, reason=VerificationReason.MATCH,
                                  metadata=dict(manifest.metadata), **evidence)

    def _lookup_verdict(self, lookup: RegistryLookup,
                        evidence: Dict[str, Any]) -> Optional[VerificationResult]:
        """Verdict for lookups that never reach the manifest, else None."""
        network = lookup.network
        if lookup.status == LookupStatus.ABSENT:
            return VerificationResult(
                status=VerificationStatus.NOT_VERIFIED, reason=VerificationReason.NOT_REGISTERED,
                hint=f"No registration found on {network}; the content may be registered on another network",
                **evidence,
            )
        if lookup.is_duplicated:
            logger.error("Duplicate registry entries", network=network,
                         fingerprint=lookup.fingerprint, count=len(lookup.entries))
            return VerificationResult(
                status=VerificationStatus.INVALID, reason=VerificationReason.DUPLICATE_ENTRIES,
                conflicting_claimants=[e.claimant for e in lookup.entries],
                hint="The ledger holds more than one entry for this fingerprint",
                **evidence,
            )
        if lookup.status == LookupStatus.PENDING:
            entry = lookup.entries[0]
            return VerificationResult(
                status=VerificationStatus.PENDING, reason=VerificationReason.PENDING_CONFIRMATION,
                registry_claimant=entry.claimant,
                hint="The registry write has not been confirmed yet; retry shortly",
                **{"manifest_locator": entry.manifest_locator, **evidence},
            )
        return None

    async def verify_fingerprint(self, fingerprint: str, network: str) -> VerificationResult:
        """Verify a claim by fingerprint on one network."""
        get_network(network)
        try:
            fingerprint = parse_fingerprint(fingerprint)
        except MalformedInput as e:
            return VerificationResult(status=VerificationStatus.INVALID,
                                      reason=VerificationReason.MALFORMED_INPUT,
                                      network=network, hint=e.message)

        lookup, from_cache, ttl = await self._lookup(fingerprint, network)
        evidence: Dict[str, Any] = dict(network=network, fingerprint=fingerprint,
                                        from_cache=from_cache, cache_ttl_seconds=ttl)
        verdict = self._lookup_verdict(lookup, evidence)
        if verdict is not None:
            return verdict

        entry = lookup.entries[0]
        evidence.update(manifest_locator=entry.manifest_locator, registry_claimant=entry.claimant,
                        anchored_at=entry.anchored_at)
        manifest, failure = await self._fetch_manifest(entry.manifest_locator)
        if failure is not None:
            return VerificationResult(status=VerificationStatus.INVALID, reason=failure, **evidence)

        if manifest.content_hash != fingerprint:
            logger.warning("Manifest fingerprint mismatch", network=network, fingerprint=fingerprint,
                           manifest_fingerprint=manifest.content_hash)
            return VerificationResult(status=VerificationStatus.INVALID,
                                      reason=VerificationReason.FINGERPRINT_MISMATCH,
                                      manifest_claimant=manifest.creator, **evidence)

        result = self._check_claims(manifest, entry, evidence)
        logger.info("Content verification completed", network=network, fingerprint=fingerprint,
                    status=result.status, reason=result.reason, from_cache=from_cache)
        return result

    async def verify_file(self, data: bytes, network: str) -> VerificationResult:
        """Verify content bytes by fingerprinting them locally."""
        get_network(network)
        return await self.verify_fingerprint(fingerprint_bytes(data), network)

    async def verify_platform(self, reference: str, network: str,
                              raw_locator: Optional[str] = None) -> VerificationResult:
        """
        Verify by platform locator.

        Pass either a free-form reference (`youtube:abc123` or a URL), or a
        platform name as `reference` together with `raw_locator`.
        """
        get_network(network)
        try:
            if raw_locator is None:
                canonical = parse_platform_reference(reference)
            else:
                canonical = normalize(reference, raw_locator)
        except UnrecognizedFormat as e:
            return VerificationResult(status=VerificationStatus.INVALID,
                                      reason=VerificationReason.MALFORMED_INPUT,
                                      network=network, hint=e.message)

        binding = await self.registry.resolve_binding(canonical.platform, canonical.locator, network)
        if binding is None:
            return VerificationResult(
                status=VerificationStatus.NOT_VERIFIED, reason=VerificationReason.NO_BINDING,
                network=network, hint=f"{canonical} is not bound to any registered content on {network}",
            )

        result = await self.verify_fingerprint(binding.fingerprint, network)
        update: Dict[str, Any] = {"binding": binding}
        if result.status == VerificationStatus.VERIFIED:
            update["status"] = VerificationStatus.PLATFORM_VERIFIED.value
        return result.model_copy(update=update)

    async def verify_manifest(self, locator: str, network: str) -> VerificationResult:
        """Verify starting from a manifest locator."""
        get_network(network)
        evidence: Dict[str, Any] = dict(network=network, manifest_locator=locator)
        manifest, failure = await self._fetch_manifest(locator)
        if failure is not None:
            return VerificationResult(status=VerificationStatus.INVALID, reason=failure, **evidence)

        lookup, from_cache, ttl = await self._lookup(manifest.content_hash, network)
        evidence.update(fingerprint=manifest.content_hash, manifest_claimant=manifest.creator,
                        from_cache=from_cache, cache_ttl_seconds=ttl)

        recovered = self._recover(manifest)
        if recovered is None:
            return VerificationResult(status=VerificationStatus.INVALID,
                                      reason=VerificationReason.BAD_SIGNATURE, **evidence)
        if not same_identity(recovered, manifest.creator):
            return VerificationResult(status=VerificationStatus.INVALID,
                                      reason=VerificationReason.SIGNER_MISMATCH,
                                      recovered_claimant=recovered, **evidence)

        verdict = self._lookup_verdict(lookup, evidence)
        if verdict is not None:
            return verdict.model_copy(update={"recovered_claimant": recovered})

        entry = lookup.entries[0]
        if entry.manifest_locator != locator:
            logger.warning("Registry points at a different manifest", network=network,
                           fingerprint=entry.fingerprint, manifest_locator=locator,
                           registry_manifest_locator=entry.manifest_locator)
            return VerificationResult(
                status=VerificationStatus.INVALID, reason=VerificationReason.MANIFEST_SWAPPED,
                recovered_claimant=recovered, registry_claimant=entry.claimant,
                anchored_at=entry.anchored_at,
                hint=f"Registry entry references {entry.manifest_locator}",
                **evidence,
            )

        result = self._check_claims(manifest, entry, evidence)
        logger.info("Manifest verification completed", network=network,
                    fingerprint=entry.fingerprint, status=result.status, reason=result.reason)
        return result

    async def prove_manifest(self, locator: str, network: str) -> Proof:
        """Verify a manifest and render the outcome as a portable proof document."""
        result = await self.verify_manifest(locator, network)
        manifest, _ = await self._fetch_manifest(locator)
        return generate_proof(result, manifest)


def generate_proof(result: VerificationResult, manifest: Optional[SignedManifest] = None) -> Proof:
    """Render a verification result (and the manifest it checked) as a Proof."""
    network = get_network(result.network)
    manifest_document = None
    if manifest is not None:
        manifest_document = manifest.claim_fields()
        manifest_document["signature"] = manifest.signature

    return Proof(
        generated_at=utcnow(),
        network=network.model_dump(),
        content={
            "fingerprint": result.fingerprint,
            "content_uri": manifest.content_uri if manifest is not None else None,
        },
        manifest={
            "locator": result.manifest_locator,
            "creator": result.manifest_claimant,
            "document": manifest_document,
        },
        registry={
            "claimant": result.registry_claimant,
            "anchored_at": result.anchored_at.isoformat() if result.anchored_at else None,
        },
        verification={
            "status": result.status,
            "reason": result.reason,
            "recovered_claimant": result.recovered_claimant,
            "hint": result.hint,
        },
    )
