"""
TTL cache for registry lookups made during verification.

Keyed by (fingerprint, network). Absent lookups are never cached, so a
registration is visible on the very next verification. Pending lookups get
a shorter TTL because they are expected to change soon. An entry is never
served after its TTL has elapsed, and expired entries are dropped on every put.
"""

import time
import structlog
from typing import Callable, Dict, Optional, Tuple

from provenance import config
from provenance.models.registry import LookupStatus, RegistryLookup

logger = structlog.get_logger()


class LookupCache:
    def __init__(
        self,
        ttl: Optional[float] = None,
        pending_ttl: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl = config.CACHE_TTL_SECONDS if ttl is None else ttl
        self.pending_ttl = config.PENDING_CACHE_TTL_SECONDS if pending_ttl is None else pending_ttl
        self._clock = clock
        self._entries: Dict[Tuple[str, str], Tuple[float, float, RegistryLookup]] = {}

    def ttl_for(self, lookup: RegistryLookup) -> Optional[float]:
        if lookup.status == LookupStatus.ABSENT:
            return None
        if lookup.status == LookupStatus.PENDING:
            return self.pending_ttl
        return self.ttl

    def get(self, fingerprint: str, network: str) -> Optional[Tuple[RegistryLookup, float]]:
        """Return (lookup, ttl) while fresh, else None."""
        key = (fingerprint, network)
        cached = self._entries.get(key)
        if cached is None:
            return None
        expires_at, ttl, lookup = cached
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return lookup, ttl

    def put(self, lookup: RegistryLookup) -> Optional[float]:
        """Cache a lookup; returns the TTL applied, or None when not cacheable."""
        ttl = self.ttl_for(lookup)
        if not ttl or ttl <= 0:
            return None
        now = self._clock()
        self._prune(now)
        self._entries[(lookup.fingerprint, lookup.network)] = (now + ttl, ttl, lookup)
        return ttl

    def _prune(self, now: float) -> None:
        expired = [key for key, (expires_at, _, _) in self._entries.items() if now >= expires_at]
        for key in expired:
            del self._entries[key]

    def invalidate(self, fingerprint: str, network: str) -> None:
        if self._entries.pop((fingerprint, network), None) is not None:
            logger.debug("Lookup cache invalidated", fingerprint=fingerprint, network=network)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
