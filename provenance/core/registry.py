"""
Registry (ledger) client contract and an in-process ledger implementation.

The registry is append-only per network: at most one entry per fingerprint,
and every (platform, locator) pair resolves to at most one fingerprint.
Conflict detection is scoped to a network; the same fingerprint on two
networks is two independent claims.
"""

import asyncio
import structlog
from typing import Dict, List, Optional, Tuple

from provenance.core.errors import NotOwner, NotRegistered, RegistryConflict
from provenance.core.signer import same_identity
from provenance.core.utils import new_tx_id
from provenance.models.registry import (
    Binding, LookupStatus, Receipt, RegistryEntry, RegistryLookup, utcnow
)

logger = structlog.get_logger()


def lookup_from_entries(fingerprint: str, network: str,
                        entries: List[RegistryEntry]) -> RegistryLookup:
    """Classify the entries found for a fingerprint into a lookup result."""
    if not entries:
        status = LookupStatus.ABSENT
    elif len(entries) == 1 and not entries[0].confirmed:
        status = LookupStatus.PENDING
    else:
        status = LookupStatus.PRESENT
    return RegistryLookup(fingerprint=fingerprint, network=network,
                          status=status, entries=list(entries))


class Registry:
    """Ledger collaborator contract. All operations are scoped to an explicit network."""

    backend = "abstract"

    async def read(self, fingerprint: str, network: str) -> RegistryLookup:
        raise NotImplementedError

    async def write(self, fingerprint: str, manifest_locator: str, claimant: str,
                    network: str) -> Receipt:
        """Anchor an entry. Raises RegistryConflict if one already exists."""
        raise NotImplementedError

    async def read_bindings(self, fingerprint: str, network: str) -> List[Binding]:
        raise NotImplementedError

    async def resolve_binding(self, platform: str, locator: str,
                              network: str) -> Optional[Binding]:
        raise NotImplementedError

    async def write_binding(self, fingerprint: str, platform: str, locator: str,
                            claimant: str, network: str) -> Receipt:
        """Record a binding. Raises NotRegistered, NotOwner or RegistryConflict."""
        raise NotImplementedError

    async def remove_binding(self, fingerprint: str, platform: str, locator: str,
                             claimant: str, network: str) -> Receipt:
        raise NotImplementedError

    def health_check(self) -> Dict[str, object]:
        return {"backend": self.backend, "available": True, "error": None}


class InMemoryRegistry(Registry):
    """
    Ledger kept in process memory.

    With auto_confirm=False new entries stay pending until confirm() is
    called, which models a submitted but not yet mined transaction.
    """

    backend = "memory"

    def __init__(self, auto_confirm: bool = True):
        self.auto_confirm = auto_confirm
        self._lock = asyncio.Lock()
        self._entries: Dict[Tuple[str, str], List[RegistryEntry]] = {}
        self._bindings: Dict[Tuple[str, str, str], Binding] = {}

    async def read(self, fingerprint: str, network: str) -> RegistryLookup:
        entries = self._entries.get((network, fingerprint), [])
        return lookup_from_entries(fingerprint, network, entries)

    async def write(self, fingerprint: str, manifest_locator: str, claimant: str,
                    network: str) -> Receipt:
        async with self._lock:
            existing = self._entries.get((network, fingerprint))
            if existing:
                logger.warning("Registry write conflict", network=network,
                               fingerprint=fingerprint, claimant=claimant,
                               existing_claimant=existing[0].claimant)
                raise RegistryConflict(
                    f"Fingerprint {fingerprint} is already registered on {network}",
                    network=network,
                    fingerprint=fingerprint,
                    existing_claimant=existing[0].claimant,
                    attempted_claimant=claimant,
                    existing=[e.model_dump(mode="json") for e in existing],
                )
            receipt = Receipt(tx_id=new_tx_id(), network=network)
            entry = RegistryEntry(
                fingerprint=fingerprint,
                claimant=claimant,
                manifest_locator=manifest_locator,
                network=network,
                anchored_at=receipt.recorded_at,
                confirmed=self.auto_confirm,
                tx_id=receipt.tx_id,
            )
            self._entries[(network, fingerprint)] = [entry]

        logger.info("Registry entry anchored", network=network, fingerprint=fingerprint,
                    claimant=claimant, tx_id=receipt.tx_id, confirmed=entry.confirmed)
        return receipt

    def confirm(self, fingerprint: str, network: str) -> None:
        """Mark pending entries for a fingerprint as confirmed."""
        entries = self._entries.get((network, fingerprint), [])
        self._entries[(network, fingerprint)] = [
            e.model_copy(update={"confirmed": True, "anchored_at": utcnow()}) for e in entries
        ]

    def inject_entry(self, entry: RegistryEntry) -> None:
        """Append an entry bypassing uniqueness checks, for simulating a faulty ledger."""
        self._entries.setdefault((entry.network, entry.fingerprint), []).append(entry)

    async def read_bindings(self, fingerprint: str, network: str) -> List[Binding]:
        return [
            b for (net, _, _), b in self._bindings.items()
            if net == network and b.fingerprint == fingerprint
        ]

    async def resolve_binding(self, platform: str, locator: str,
                              network: str) -> Optional[Binding]:
        return self._bindings.get((network, platform, locator))

    def _owned_entry(self, fingerprint: str, claimant: str, network: str) -> RegistryEntry:
        entries = self._entries.get((network, fingerprint), [])
        confirmed = [e for e in entries if e.confirmed]
        if not confirmed:
            raise NotRegistered(
                f"No anchored entry for {fingerprint} on {network}",
                fingerprint=fingerprint, network=network,
            )
        entry = confirmed[0]
        if not same_identity(entry.claimant, claimant):
            raise NotOwner(fingerprint, claimant, entry.claimant)
        return entry

    async def write_binding(self, fingerprint: str, platform: str, locator: str,
                            claimant: str, network: str) -> Receipt:
        async with self._lock:
            self._owned_entry(fingerprint, claimant, network)
            key = (network, platform, locator)
            existing = self._bindings.get(key)
            if existing is not None:
                raise RegistryConflict(
                    f"{platform}:{locator} is already bound on {network}",
                    network=network,
                    fingerprint=existing.fingerprint,
                    existing_claimant=existing.claimant,
                    attempted_claimant=claimant,
                    existing=[existing.model_dump(mode="json")],
                )
            receipt = Receipt(tx_id=new_tx_id(), network=network)
            self._bindings[key] = Binding(
                fingerprint=fingerprint, platform=platform, locator=locator,
                claimant=claimant, network=network, bound_at=receipt.recorded_at,
            )

        logger.info("Platform binding recorded", network=network, fingerprint=fingerprint,
                    platform=platform, locator=locator, tx_id=receipt.tx_id)
        return receipt

    async def remove_binding(self, fingerprint: str, platform: str, locator: str,
                             claimant: str, network: str) -> Receipt:
        async with self._lock:
            self._owned_entry(fingerprint, claimant, network)
            key = (network, platform, locator)
            existing = self._bindings.get(key)
            if existing is None or existing.fingerprint != fingerprint:
                raise NotRegistered(
                    f"No binding {platform}:{locator} for {fingerprint} on {network}",
                    fingerprint=fingerprint, platform=platform, locator=locator,
                    network=network,
                )
            del self._bindings[key]
            receipt = Receipt(tx_id=new_tx_id(), network=network)

        logger.info("Platform binding removed", network=network, fingerprint=fingerprint,
                    platform=platform, locator=locator, tx_id=receipt.tx_id)
        return receipt
