"""
Binding service: associate a registered fingerprint with platform locators.

Bindings are secondary to registry entries. Only the registry claimant may
bind, and a (platform, locator) pair resolves to at most one fingerprint per
network. Binding the same triple again is a no-op success.
"""

import asyncio
import structlog
from typing import Iterable, List, Optional, Tuple

from provenance.config import get_network
from provenance.core.errors import NotOwner, NotRegistered, ProvenanceError, RegistryConflict
from provenance.core.fingerprint import parse_fingerprint
from provenance.core.registry import Registry
from provenance.core.signer import normalize_identity, same_identity
from provenance.models.registry import Binding, LookupStatus, Receipt
from provenance.models.verification import BindOutcome, BindResult
from provenance.services.cache import LookupCache
from provenance.services.platforms import normalize

logger = structlog.get_logger()


class BindingService:
    def __init__(self, registry: Registry, cache: Optional[LookupCache] = None):
        self.registry = registry
        self.cache = cache

    async def _require_owner(self, fingerprint: str, claimant: str, network: str) -> None:
        lookup = await self.registry.read(fingerprint, network)
        if lookup.status != LookupStatus.PRESENT:
            raise NotRegistered(
                f"No anchored entry for {fingerprint} on {network}",
                fingerprint=fingerprint, network=network, status=lookup.status.value,
            )
        if lookup.is_duplicated:
            raise RegistryConflict(
                f"Fingerprint {fingerprint} has multiple entries on {network}",
                network=network,
                fingerprint=fingerprint,
                existing_claimant=lookup.entries[0].claimant,
                attempted_claimant=claimant,
                existing=[e.model_dump(mode="json") for e in lookup.entries],
            )
        owner = lookup.entries[0].claimant
        if not same_identity(owner, claimant):
            raise NotOwner(fingerprint, claimant, owner)

    def _already_bound(self, existing: Binding, fingerprint: str, claimant: str,
                       network: str) -> BindResult:
        if existing.fingerprint != fingerprint:
            raise RegistryConflict(
                f"{existing.platform}:{existing.locator} is already bound to another fingerprint",
                network=network,
                fingerprint=existing.fingerprint,
                existing_claimant=existing.claimant,
                attempted_claimant=claimant,
                existing=[existing.model_dump(mode="json")],
            )
        logger.debug("Binding already exists", network=network, fingerprint=fingerprint,
                     platform=existing.platform, locator=existing.locator)
        return BindResult(binding=existing, created=False)

    async def bind(self, fingerprint: str, platform: str, raw_locator: str,
                   claimant: str, network: str) -> BindResult:
        """
        Bind a platform locator to a registered fingerprint.

        Raises:
            UnrecognizedFormat: locator cannot be normalized
            NotRegistered: no confirmed entry for the fingerprint on the network
            NotOwner: claimant is not the registry claimant
            RegistryConflict: the locator is bound to a different fingerprint
        """
        get_network(network)
        fingerprint = parse_fingerprint(fingerprint)
        claimant = normalize_identity(claimant)
        canonical = normalize(platform, raw_locator)

        await self._require_owner(fingerprint, claimant, network)

        existing = await self.registry.resolve_binding(canonical.platform, canonical.locator, network)
        if existing is not None:
            return self._already_bound(existing, fingerprint, claimant, network)

        try:
            receipt = await self.registry.write_binding(
                fingerprint, canonical.platform, canonical.locator, claimant, network
            )
        except RegistryConflict:
            # Lost a race; the same triple written concurrently is still a success
            existing = await self.registry.resolve_binding(
                canonical.platform, canonical.locator, network
            )
            if existing is None:
                raise
            return self._already_bound(existing, fingerprint, claimant, network)

        self._invalidate(fingerprint, network)
        binding = await self.registry.resolve_binding(canonical.platform, canonical.locator, network)
        if binding is None:
            binding = Binding(fingerprint=fingerprint, platform=canonical.platform,
                              locator=canonical.locator, claimant=claimant, network=network,
                              bound_at=receipt.recorded_at)
        return BindResult(binding=binding, created=True, receipt=receipt)

    async def list_bindings(self, fingerprint: str, network: str) -> List[Binding]:
        """Platform locators bound to a fingerprint on one network, ordered by platform."""
        get_network(network)
        fingerprint = parse_fingerprint(fingerprint)
        bindings = await self.registry.read_bindings(fingerprint, network)
        return sorted(bindings, key=lambda b: (b.platform, b.locator))

    async def unbind(self, fingerprint: str, platform: str, raw_locator: str,
                     claimant: str, network: str) -> Receipt:
        """Remove a binding. Owner-only; raises NotRegistered if it does not exist."""
        get_network(network)
        fingerprint = parse_fingerprint(fingerprint)
        claimant = normalize_identity(claimant)
        canonical = normalize(platform, raw_locator)

        await self._require_owner(fingerprint, claimant, network)
        receipt = await self.registry.remove_binding(
            fingerprint, canonical.platform, canonical.locator, claimant, network
        )
        self._invalidate(fingerprint, network)
        return receipt

    async def rebind(self, fingerprint: str, platform: str, old_locator: str,
                     new_locator: str, claimant: str, network: str) -> BindResult:
        """Move a binding to a new locator: unbind the old one, then bind the new one."""
        old = normalize(platform, old_locator)
        new = normalize(platform, new_locator)
        if old == new:
            return await self.bind(fingerprint, platform, new_locator, claimant, network)
        await self.unbind(fingerprint, platform, old_locator, claimant, network)
        return await self.bind(fingerprint, platform, new_locator, claimant, network)

    async def _bind_one(self, fingerprint: str, platform: str, raw_locator: str,
                        claimant: str, network: str) -> BindOutcome:
        try:
            result = await self.bind(fingerprint, platform, raw_locator, claimant, network)
        except ProvenanceError as e:
            logger.warning("Batch binding item failed", network=network, fingerprint=fingerprint,
                           platform=platform, raw_locator=raw_locator, error=e.code)
            return BindOutcome(platform=platform, raw_locator=raw_locator, ok=False,
                               error=e.code, message=e.message)
        return BindOutcome(platform=platform, raw_locator=raw_locator, ok=True, result=result)

    async def bind_many(self, fingerprint: str, items: Iterable[Tuple[str, str]],
                        claimant: str, network: str) -> List[BindOutcome]:
        """
        Bind several (platform, raw_locator) pairs concurrently.

        Each item gets its own outcome in input order; a failing item never
        prevents the others from being bound.
        """
        get_network(network)
        outcomes = await asyncio.gather(*[
            self._bind_one(fingerprint, platform, raw_locator, claimant, network)
            for platform, raw_locator in items
        ])
        logger.info("Batch binding completed", network=network, fingerprint=fingerprint,
                    total=len(outcomes), succeeded=sum(1 for o in outcomes if o.ok))
        return list(outcomes)

    def _invalidate(self, fingerprint: str, network: str) -> None:
        if self.cache is not None:
            self.cache.invalidate(fingerprint, network)
