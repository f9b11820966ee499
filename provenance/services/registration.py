"""
Registration service: fingerprint, sign, persist and anchor content claims.

Registration is two-phase. The signed manifest is persisted and its locator
awaited before the registry write is submitted, so an anchored entry always
points at a manifest that exists. Work on the same (network, fingerprint) is
serialized in-process; the registry enforces uniqueness across processes.
"""

import structlog
from typing import Any, Dict, Iterable, Optional, Tuple

from provenance.config import get_network
from provenance.core.errors import RegistryConflict
from provenance.core.fingerprint import fingerprint as fingerprint_bytes
from provenance.core.guard import KeyedLock, existing_claim
from provenance.core.registry import Registry
from provenance.core.signer import normalize_identity, same_identity
from provenance.core.storage import BlobStore
from provenance.models.registry import RegistryLookup
from provenance.models.verification import RegistrationResult
from provenance.services.bindings import BindingService
from provenance.services.cache import LookupCache
from provenance.services.manifest import build_manifest, serialize_manifest, sign_manifest

logger = structlog.get_logger()


class RegistrationService:
    def __init__(
        self,
        registry: Registry,
        blob_store: BlobStore,
        cache: Optional[LookupCache] = None,
        bindings: Optional[BindingService] = None,
        guard: Optional[KeyedLock] = None,
    ):
        self.registry = registry
        self.blob_store = blob_store
        self.cache = cache
        self.bindings = bindings or BindingService(registry, cache)
        self.guard = guard or KeyedLock()

    async def register(
        self,
        content: bytes,
        signer,
        network: str,
        metadata: Optional[Dict[str, Any]] = None,
        upload_content: bool = False,
    ) -> RegistrationResult:
        """
        Register content on one network under the signer's identity.

        By default only the fingerprint is anchored and the raw bytes never
        leave the caller (privacy mode). With upload_content=True the bytes
        are stored too and their locator recorded in the manifest.

        Raises:
            RegistryConflict: another claimant already holds the fingerprint
            SigningDeclined: the signer refused; nothing is anchored
        """
        get_network(network)
        claimant = normalize_identity(signer.identity)
        fingerprint = fingerprint_bytes(content)

        async with self.guard.hold((network, fingerprint)):
            lookup = await self.registry.read(fingerprint, network)
            existing = existing_claim(lookup, claimant)
            if existing is not None:
                logger.info("Content already registered by claimant", network=network,
                            fingerprint=fingerprint, claimant=claimant)
                return RegistrationResult(
                    fingerprint=fingerprint, network=network, claimant=claimant,
                    manifest_locator=existing.manifest_locator, already_registered=True,
                    entry=existing,
                )

            content_locator = None
            if upload_content:
                content_locator = await self.blob_store.put(content)
                logger.info("Content persisted", locator=content_locator, fingerprint=fingerprint)

            manifest = build_manifest(fingerprint, claimant, content_locator, metadata)
            signed = await sign_manifest(manifest, signer)
            manifest_locator = await self.blob_store.put(serialize_manifest(signed))
            logger.info("Manifest persisted", locator=manifest_locator, fingerprint=fingerprint)

            try:
                receipt = await self.registry.write(fingerprint, manifest_locator, claimant, network)
            except RegistryConflict as e:
                lookup = await self.registry.read(fingerprint, network)
                winner = lookup.entry
                if winner is not None and same_identity(winner.claimant, claimant):
                    logger.info("Same claimant anchored this content concurrently", network=network,
                                fingerprint=fingerprint, claimant=claimant)
                    return RegistrationResult(
                        fingerprint=fingerprint, network=network, claimant=claimant,
                        manifest_locator=winner.manifest_locator, content_locator=content_locator,
                        already_registered=True, entry=winner,
                    )
                raise self._conflict_after_race(lookup, claimant, e)
            finally:
                self._invalidate(fingerprint, network)

            entry = (await self.registry.read(fingerprint, network)).entry

        logger.info("Content registered", network=network, fingerprint=fingerprint,
                    claimant=claimant, tx_id=receipt.tx_id)
        return RegistrationResult(
            fingerprint=fingerprint, network=network, claimant=claimant,
            manifest_locator=manifest_locator, content_locator=content_locator,
            receipt=receipt, entry=entry,
        )

    @staticmethod
    def _conflict_after_race(lookup: RegistryLookup, claimant: str,
                             error: RegistryConflict) -> RegistryConflict:
        """Rebuild a ledger conflict from a fresh read so both claimants are reported."""
        if not lookup.entries:
            return error
        logger.warning("Registration lost a ledger race", network=lookup.network,
                       fingerprint=lookup.fingerprint, claimant=claimant,
                       existing_claimant=lookup.entries[0].claimant)
        return RegistryConflict(
            f"Fingerprint {lookup.fingerprint} was registered concurrently on {lookup.network}",
            network=lookup.network,
            fingerprint=lookup.fingerprint,
            existing_claimant=lookup.entries[0].claimant,
            attempted_claimant=claimant,
            existing=[e.model_dump(mode="json") for e in lookup.entries],
        )

    async def register_and_bind(
        self,
        content: bytes,
        signer,
        network: str,
        bindings: Iterable[Tuple[str, str]] = (),
        metadata: Optional[Dict[str, Any]] = None,
        upload_content: bool = False,
    ) -> RegistrationResult:
        """One-shot flow: register, then bind each (platform, raw_locator) pair."""
        result = await self.register(content, signer, network, metadata, upload_content)
        items = list(bindings)
        if not items:
            return result
        outcomes = await self.bindings.bind_many(result.fingerprint, items, result.claimant, network)
        return result.model_copy(update={"bindings": outcomes})

    def _invalidate(self, fingerprint: str, network: str) -> None:
        if self.cache is not None:
            self.cache.invalidate(fingerprint, network)
