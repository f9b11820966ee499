"""
Consistency and idempotency guards.

KeyedLock serializes in-process work on the same key (for example a
(network, fingerprint) registration) while letting distinct keys proceed in
parallel. It complements, and never replaces, the ledger's own uniqueness
checks: a second process still gets a RegistryConflict from the ledger.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Dict, Hashable, Optional

from provenance.core.errors import RegistryConflict
from provenance.core.signer import same_identity
from provenance.models.registry import RegistryEntry, RegistryLookup


class KeyedLock:
    """A family of asyncio locks created on demand and dropped when idle."""

    def __init__(self):
        self._locks: Dict[Hashable, asyncio.Lock] = {}
        self._waiters: Dict[Hashable, int] = {}

    @asynccontextmanager
    async def hold(self, key: Hashable):
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._waiters[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


def existing_claim(lookup: RegistryLookup, claimant: str) -> Optional[RegistryEntry]:
    """
    Check a registry lookup before registering.

    Returns the caller's own existing entry (re-registration is a no-op),
    None when the fingerprint is free, and raises RegistryConflict when any
    entry on the network belongs to someone else.
    """
    if not lookup.entries:
        return None
    foreign = [e for e in lookup.entries if not same_identity(e.claimant, claimant)]
    if foreign or lookup.is_duplicated:
        raise RegistryConflict(
            f"Fingerprint {lookup.fingerprint} is already registered on {lookup.network}",
            network=lookup.network,
            fingerprint=lookup.fingerprint,
            existing_claimant=(foreign or lookup.entries)[0].claimant,
            attempted_claimant=claimant,
            existing=[e.model_dump(mode="json") for e in lookup.entries],
        )
    return lookup.entries[0]
