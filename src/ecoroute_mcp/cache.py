"""TTL-based cache for the ecosystem catalog.

Holds one immutable ``CatalogSnapshot`` (active ecosystems in priority
order plus the ecosystem -> doc source map). ``get`` serves the cached
snapshot while it is younger than the TTL and refreshes it otherwise.

A refresh builds a complete new snapshot before publishing it with a single
assignment, so concurrent readers see either the old or the new catalog,
never a mix. Stale readers share one refresh through an asyncio lock.
Fetch failures keep the previous snapshot.
"""

import asyncio
import time
from collections.abc import Callable

from loguru import logger

from ecoroute_mcp.catalog import CatalogSource
from ecoroute_mcp.models import CatalogSnapshot

# Default TTL (seconds)
_DEFAULT_TTL = 300.0  # 5 minutes


class CatalogCache:
    """Time-to-live cache over a catalog backend."""

    def __init__(
        self,
        source: CatalogSource,
        ttl: float = _DEFAULT_TTL,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._source = source
        self._ttl = ttl
        self._clock = clock
        self._snapshot = CatalogSnapshot()
        self._refreshed_at: float | None = None
        self._refresh_count = 0
        self._lock = asyncio.Lock()

    @property
    def snapshot(self) -> CatalogSnapshot:
        """Currently published snapshot (may be stale or empty)."""
        return self._snapshot

    @property
    def ttl(self) -> float:
        return self._ttl

    @ttl.setter
    def ttl(self, value: float) -> None:
        if value < 0:
            raise ValueError(f"TTL must be >= 0, got {value}")
        self._ttl = value

    def is_fresh(self) -> bool:
        """True if the last successful refresh is younger than the TTL."""
        if self._refreshed_at is None:
            return False
        return self._clock() - self._refreshed_at < self._ttl

    async def get(self) -> CatalogSnapshot:
        """Return the cached snapshot, refreshing it first if stale."""
        if self.is_fresh():
            return self._snapshot

        async with self._lock:
            # Another caller may have refreshed while we waited
            if self.is_fresh():
                logger.debug("Catalog refreshed by concurrent caller")
                return self._snapshot
            return await self._refresh_locked()

    async def refresh(self) -> CatalogSnapshot:
        """Fetch the catalog now and publish it.

        Returns the new snapshot, or the previous one if the fetch failed.
        """
        async with self._lock:
            return await self._refresh_locked()

    async def _refresh_locked(self) -> CatalogSnapshot:
        try:
            ecosystems = await self._source.fetch_ecosystems()
            doc_sources = await self._source.fetch_sources()
        except Exception as e:
            if self._snapshot.is_empty:
                logger.error(f"Catalog fetch failed, no catalog loaded yet: {e}")
            else:
                logger.error(f"Catalog fetch failed, keeping previous snapshot: {e}")
            return self._snapshot

        now = self._clock()
        snapshot = CatalogSnapshot.build(ecosystems, doc_sources, fetched_at=now)

        # Publish: one reference swap
        self._snapshot = snapshot
        self._refreshed_at = now
        self._refresh_count += 1

        logger.info(
            f"Catalog refreshed: {len(snapshot.ecosystems)} ecosystems, "
            f"{sum(len(v) for v in snapshot.sources.values())} mapped sources"
        )
        return snapshot

    def invalidate(self) -> None:
        """Mark the snapshot stale so the next ``get`` refreshes."""
        self._refreshed_at = None

    def sources_for(self, ecosystem_id: str) -> list[str]:
        """Doc source ids for an ecosystem from the current snapshot."""
        return self._snapshot.sources_for(ecosystem_id)

    def stats(self) -> dict:
        """Get cache statistics."""
        age = None
        if self._refreshed_at is not None:
            age = round(self._clock() - self._refreshed_at, 3)
        return {
            "ecosystems": len(self._snapshot.ecosystems),
            "mapped_sources": sum(len(v) for v in self._snapshot.sources.values()),
            "ttl": self._ttl,
            "age": age,
            "fresh": self.is_fresh(),
            "refreshes": self._refresh_count,
        }
