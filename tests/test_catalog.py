"""Tests for src/ecoroute_mcp/catalog/ - file and Supabase backends."""

import json
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest
from pydantic import SecretStr

from ecoroute_mcp.catalog import create_catalog_source
from ecoroute_mcp.catalog.file import FileCatalogSource
from ecoroute_mcp.catalog.supabase import SupabaseCatalogSource
from ecoroute_mcp.config import Settings
from ecoroute_mcp.errors import CatalogFetchError

# -----------------------------------------------------------------------
# Factory
# -----------------------------------------------------------------------


class TestFactory:
    def test_file_default(self):
        source = create_catalog_source(Settings(catalog_backend="file"))
        assert isinstance(source, FileCatalogSource)
        assert source.path is None

    def test_file_with_path(self, tmp_path):
        path = tmp_path / "catalog.json"
        source = create_catalog_source(Settings(catalog_path=str(path)))
        assert source.path == path

    def test_supabase(self):
        config = Settings(
            catalog_backend="Supabase",
            supabase_url="https://abc.supabase.co",
            supabase_key=SecretStr("anon-key"),
        )
        assert isinstance(create_catalog_source(config), SupabaseCatalogSource)

    def test_supabase_requires_credentials(self):
        with pytest.raises(ValueError, match="SUPABASE_URL"):
            create_catalog_source(Settings(catalog_backend="supabase"))

    def test_unknown_backend(self):
        with pytest.raises(ValueError, match="Unknown catalog backend"):
            create_catalog_source(Settings(catalog_backend="redis"))


# -----------------------------------------------------------------------
# File backend
# -----------------------------------------------------------------------


class TestFileCatalog:
    @pytest.mark.asyncio
    async def test_bundled_catalog(self):
        source = FileCatalogSource()
        ecosystems = await source.fetch_ecosystems()
        sources = await source.fetch_sources()

        ids = [e.id for e in ecosystems]
        assert ids[0] == "frontend_web"
        assert ids[-1] == "general"
        assert {"python", "systems", "cloud_infra", "styling"} <= set(ids)
        priorities = [e.priority for e in ecosystems]
        assert priorities == sorted(priorities, reverse=True)

        assert all(s.ecosystem_id for s in sources)
        assert "general" not in {s.id for s in sources}

    @pytest.mark.asyncio
    async def test_custom_file(self, tmp_path):
        path = tmp_path / "catalog.json"
        path.write_text(
            json.dumps(
                {
                    "ecosystems": [
                        {"id": "low", "priority": 1},
                        {"id": "high", "priority": 5, "aliases": ["hi"]},
                        {"id": "off", "priority": 9, "is_active": False},
                    ],
                    "doc_sources": [
                        {"id": "a", "ecosystem_id": "high"},
                        {"id": "b", "ecosystem_id": None},
                        {"id": "c"},
                    ],
                }
            )
        )
        source = FileCatalogSource(path)

        ecosystems = await source.fetch_ecosystems()
        assert [e.id for e in ecosystems] == ["high", "low"]
        assert ecosystems[0].aliases == ("hi",)

        sources = await source.fetch_sources()
        assert [(s.id, s.ecosystem_id) for s in sources] == [("a", "high")]

    @pytest.mark.asyncio
    async def test_missing_sections(self, tmp_path):
        path = tmp_path / "catalog.json"
        path.write_text("{}")
        source = FileCatalogSource(path)
        assert await source.fetch_ecosystems() == []
        assert await source.fetch_sources() == []

    @pytest.mark.asyncio
    async def test_missing_file(self, tmp_path):
        source = FileCatalogSource(tmp_path / "nope.json")
        with pytest.raises(CatalogFetchError, match="Cannot read catalog"):
            await source.fetch_ecosystems()

    @pytest.mark.asyncio
    async def test_invalid_json(self, tmp_path):
        path = tmp_path / "catalog.json"
        path.write_text("{not json")
        with pytest.raises(CatalogFetchError):
            await FileCatalogSource(path).fetch_ecosystems()

    @pytest.mark.asyncio
    async def test_root_must_be_object(self, tmp_path):
        path = tmp_path / "catalog.json"
        path.write_text("[]")
        with pytest.raises(CatalogFetchError):
            await FileCatalogSource(path).fetch_sources()

    @pytest.mark.asyncio
    async def test_invalid_row(self, tmp_path):
        path = tmp_path / "catalog.json"
        path.write_text(json.dumps({"ecosystems": [{"name": "no id"}]}))
        with pytest.raises(CatalogFetchError, match="Invalid ecosystem row"):
            await FileCatalogSource(path).fetch_ecosystems()


# -----------------------------------------------------------------------
# Supabase backend
# -----------------------------------------------------------------------


def _mock_client(payload=None, exc=None):
    """Patchable httpx.AsyncClient whose get() returns ``payload``."""
    mock_response = MagicMock()
    mock_response.json.return_value = payload
    mock_response.raise_for_status = MagicMock()

    mock_client = AsyncMock()
    if exc is not None:
        mock_client.get.side_effect = exc
    else:
        mock_client.get.return_value = mock_response
    mock_client.__aenter__ = AsyncMock(return_value=mock_client)
    mock_client.__aexit__ = AsyncMock(return_value=None)
    return mock_client, mock_response


class TestSupabaseCatalog:
    @pytest.mark.asyncio
    async def test_fetch_ecosystems(self):
        rows = [
            {
                "id": "python",
                "name": "Python",
                "priority": 9,
                "aliases": ["pip install"],
                "keyword_groups": {"web": ["flask"]},
                "description_embedding": "[0.1,0.2]",
                "created_at": "2024-01-01T00:00:00Z",
            },
            {"id": "frontend_web", "name": "Frontend", "priority": 10},
        ]
        mock_client, _ = _mock_client(rows)

        with patch(
            "ecoroute_mcp.catalog.supabase.httpx.AsyncClient",
            return_value=mock_client,
        ):
            source = SupabaseCatalogSource("https://abc.supabase.co/", "anon-key")
            ecosystems = await source.fetch_ecosystems()

        assert [e.id for e in ecosystems] == ["frontend_web", "python"]
        assert ecosystems[1].description_embedding == (0.1, 0.2)

        args, kwargs = mock_client.get.call_args
        assert args[0] == "https://abc.supabase.co/rest/v1/doc_ecosystems"
        assert kwargs["params"]["is_active"] == "eq.true"
        assert kwargs["params"]["order"] == "priority.desc"
        assert kwargs["headers"]["apikey"] == "anon-key"
        assert kwargs["headers"]["Authorization"] == "Bearer anon-key"

    @pytest.mark.asyncio
    async def test_fetch_sources(self):
        rows = [
            {"id": "react", "ecosystem_id": "frontend_web"},
            {"id": "general", "ecosystem_id": None},
        ]
        mock_client, _ = _mock_client(rows)

        with patch(
            "ecoroute_mcp.catalog.supabase.httpx.AsyncClient",
            return_value=mock_client,
        ):
            sources = await SupabaseCatalogSource("https://x", "k").fetch_sources()

        assert [s.id for s in sources] == ["react"]
        args, kwargs = mock_client.get.call_args
        assert args[0] == "https://x/rest/v1/doc_sources"
        assert kwargs["params"]["ecosystem_id"] == "not.is.null"

    @pytest.mark.asyncio
    async def test_http_error(self):
        mock_client, mock_response = _mock_client([])
        mock_response.raise_for_status.side_effect = httpx.HTTPStatusError(
            "503", request=MagicMock(), response=MagicMock()
        )

        with patch(
            "ecoroute_mcp.catalog.supabase.httpx.AsyncClient",
            return_value=mock_client,
        ):
            with pytest.raises(CatalogFetchError, match="doc_ecosystems"):
                await SupabaseCatalogSource("https://x", "k").fetch_ecosystems()

    @pytest.mark.asyncio
    async def test_network_error(self):
        mock_client, _ = _mock_client(exc=httpx.ConnectError("refused"))

        with patch(
            "ecoroute_mcp.catalog.supabase.httpx.AsyncClient",
            return_value=mock_client,
        ):
            with pytest.raises(CatalogFetchError):
                await SupabaseCatalogSource("https://x", "k").fetch_sources()

    @pytest.mark.asyncio
    async def test_unexpected_payload(self):
        mock_client, _ = _mock_client({"message": "permission denied"})

        with patch(
            "ecoroute_mcp.catalog.supabase.httpx.AsyncClient",
            return_value=mock_client,
        ):
            with pytest.raises(CatalogFetchError, match="Unexpected"):
                await SupabaseCatalogSource("https://x", "k").fetch_ecosystems()

    @pytest.mark.asyncio
    async def test_invalid_row(self):
        mock_client, _ = _mock_client([{"name": "missing id"}])

        with patch(
            "ecoroute_mcp.catalog.supabase.httpx.AsyncClient",
            return_value=mock_client,
        ):
            with pytest.raises(CatalogFetchError, match="Invalid ecosystem row"):
                await SupabaseCatalogSource("https://x", "k").fetch_ecosystems()
