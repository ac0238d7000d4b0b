"""Catalog backends: where ecosystem and doc-source rows come from.

Backends:
- **file**: JSON document ``{"ecosystems": [...], "doc_sources": [...]}``.
  The package bundles a default catalog so the router works out of the box.
- **supabase**: ``doc_ecosystems`` / ``doc_sources`` tables over PostgREST.

Every backend raises ``CatalogFetchError`` on failure; the cache decides
what to do about it.
"""

from __future__ import annotations

from typing import Protocol

from ecoroute_mcp.config import Settings
from ecoroute_mcp.models import DocSource, Ecosystem


class CatalogSource(Protocol):
    """Protocol for catalog backends."""

    async def fetch_ecosystems(self) -> list[Ecosystem]:
        """Active ecosystems, highest priority first."""
        ...

    async def fetch_sources(self) -> list[DocSource]:
        """Doc sources that have an ecosystem assignment."""
        ...


def create_catalog_source(config: Settings) -> CatalogSource:
    """Build the catalog backend selected by CATALOG_BACKEND."""
    backend = config.catalog_backend.lower().strip()

    if backend == "file":
        from ecoroute_mcp.catalog.file import FileCatalogSource

        return FileCatalogSource(config.get_catalog_path())

    if backend == "supabase":
        from ecoroute_mcp.catalog.supabase import SupabaseCatalogSource

        if not config.supabase_url or not config.supabase_key:
            raise ValueError(
                "SUPABASE_URL and SUPABASE_KEY are required for the supabase backend"
            )
        return SupabaseCatalogSource(
            config.supabase_url,
            config.supabase_key.get_secret_value(),
            timeout=config.catalog_timeout,
        )

    raise ValueError(f"Unknown catalog backend: {config.catalog_backend}")


__all__ = ["CatalogSource", "create_catalog_source"]
