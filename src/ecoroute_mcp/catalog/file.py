"""JSON file catalog backend."""

import asyncio
import json
from importlib.resources import files
from pathlib import Path

from loguru import logger
from pydantic import ValidationError

from ecoroute_mcp.errors import CatalogFetchError
from ecoroute_mcp.models import DocSource, Ecosystem


def _read_bundled() -> str:
    return files("ecoroute_mcp").joinpath("data/catalog.json").read_text("utf-8")


class FileCatalogSource:
    """Reads the catalog from a JSON file (bundled catalog if path is None)."""

    def __init__(self, path: Path | None = None):
        self._path = path

    @property
    def path(self) -> Path | None:
        return self._path

    def _load(self) -> dict:
        if self._path is None:
            raw = _read_bundled()
        else:
            raw = self._path.read_text(encoding="utf-8")
        data = json.loads(raw)
        if not isinstance(data, dict):
            raise ValueError("catalog root must be a JSON object")
        return data

    async def _load_async(self) -> dict:
        try:
            return await asyncio.to_thread(self._load)
        except (OSError, ValueError) as e:
            where = self._path or "bundled catalog"
            raise CatalogFetchError(f"Cannot read catalog {where}: {e}") from e

    async def fetch_ecosystems(self) -> list[Ecosystem]:
        data = await self._load_async()
        try:
            rows = [Ecosystem.model_validate(r) for r in data.get("ecosystems", [])]
        except ValidationError as e:
            raise CatalogFetchError(f"Invalid ecosystem row: {e}") from e

        active = [e for e in rows if e.is_active]
        active.sort(key=lambda e: e.priority, reverse=True)
        logger.debug(f"Loaded {len(active)} active ecosystems from file")
        return active

    async def fetch_sources(self) -> list[DocSource]:
        data = await self._load_async()
        try:
            rows = [DocSource.model_validate(r) for r in data.get("doc_sources", [])]
        except ValidationError as e:
            raise CatalogFetchError(f"Invalid doc source row: {e}") from e
        return [s for s in rows if s.ecosystem_id is not None]
