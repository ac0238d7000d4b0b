"""Supabase catalog backend (PostgREST over httpx)."""

import httpx
from loguru import logger
from pydantic import ValidationError

from ecoroute_mcp.errors import CatalogFetchError
from ecoroute_mcp.models import DocSource, Ecosystem

_ECOSYSTEMS_TABLE = "doc_ecosystems"
_SOURCES_TABLE = "doc_sources"


class SupabaseCatalogSource:
    """Reads ``doc_ecosystems`` and ``doc_sources`` via the REST API."""

    def __init__(self, url: str, key: str, timeout: float = 15.0):
        self._base_url = url.rstrip("/")
        self._key = key
        self._timeout = timeout

    def _headers(self) -> dict[str, str]:
        return {
            "apikey": self._key,
            "Authorization": f"Bearer {self._key}",
            "Accept": "application/json",
        }

    async def _select(self, table: str, params: dict[str, str]) -> list[dict]:
        """Run one PostgREST select and return the decoded rows."""
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.get(
                    f"{self._base_url}/rest/v1/{table}",
                    params=params,
                    headers=self._headers(),
                )
                response.raise_for_status()
                rows = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise CatalogFetchError(f"Failed to fetch {table}: {e}") from e

        if not isinstance(rows, list):
            raise CatalogFetchError(
                f"Unexpected {table} payload: {type(rows).__name__}"
            )
        return rows

    async def fetch_ecosystems(self) -> list[Ecosystem]:
        rows = await self._select(
            _ECOSYSTEMS_TABLE,
            {
                "select": "*",
                "is_active": "eq.true",
                "order": "priority.desc",
            },
        )
        try:
            ecosystems = [Ecosystem.model_validate(r) for r in rows]
        except ValidationError as e:
            raise CatalogFetchError(f"Invalid ecosystem row: {e}") from e

        # Keep backend order for equal priorities
        ecosystems.sort(key=lambda e: e.priority, reverse=True)
        logger.debug(f"Fetched {len(ecosystems)} ecosystems from Supabase")
        return ecosystems

    async def fetch_sources(self) -> list[DocSource]:
        rows = await self._select(
            _SOURCES_TABLE,
            {
                "select": "id,ecosystem_id",
                "ecosystem_id": "not.is.null",
            },
        )
        try:
            sources = [DocSource.model_validate(r) for r in rows]
        except ValidationError as e:
            raise CatalogFetchError(f"Invalid doc source row: {e}") from e
        return [s for s in sources if s.ecosystem_id is not None]
