"""ecoroute MCP Server - Main server definition."""

import asyncio
import contextlib
import json
import sys
from contextlib import asynccontextmanager
from importlib.resources import files

from loguru import logger
from mcp.server.fastmcp import FastMCP
from mcp.types import ToolAnnotations

from ecoroute_mcp.config import settings
from ecoroute_mcp.errors import NoEcosystemsConfiguredError
from ecoroute_mcp.router import EcosystemRouter, create_router

# Configure logging
logger.remove()
logger.add(sys.stderr, level=settings.log_level)

# Module-level state (set during lifespan)
_router: EcosystemRouter | None = None


@asynccontextmanager
async def _lifespan(_server: FastMCP):
    """Server lifespan: build the router, warm the catalog, close on shutdown."""
    global _router

    logger.info("Starting ecoroute MCP Server...")

    _router = create_router(settings)

    # Warm the catalog so the first detect call does not pay for the fetch.
    # A failed fetch is logged by the cache and retried on the next call.
    snapshot = await _router.cache.refresh()
    if snapshot.is_empty:
        logger.warning("Catalog is empty: detect will fail until it is populated")

    yield

    logger.info("Shutting down ecoroute MCP Server...")
    if _router:
        _router.close()
        _router = None


mcp = FastMCP(
    name="ecoroute",
    instructions=(
        "Ecosystem router MCP Server. "
        "Use `detect` to route a developer question to a technology "
        "ecosystem and its documentation sources. "
        "Use `catalog` to inspect or refresh the ecosystem catalog. "
        "Use `config` for server status and runtime settings."
    ),
    lifespan=_lifespan,
)

# Seconds a timed-out tool task gets to unwind after cancel()
_CANCEL_GRACE = 5.0


async def _with_timeout(coro, action: str) -> str:
    """Run a tool body under TOOL_TIMEOUT and answer with JSON on expiry.

    ``asyncio.wait`` keeps the deadline even when a provider call in a
    worker thread ignores cancellation.
    """
    limit = settings.tool_timeout
    if limit <= 0:
        return await coro

    task = asyncio.create_task(coro)
    await asyncio.wait({task}, timeout=limit)
    if task.done():
        return task.result()

    logger.warning(f"'{action}' exceeded {limit}s, cancelling")
    task.cancel()
    with contextlib.suppress(asyncio.CancelledError, Exception):
        await asyncio.wait_for(asyncio.shield(task), timeout=_CANCEL_GRACE)

    return json.dumps(
        {
            "error": f"'{action}' timed out after {limit}s",
            "hint": "Raise TOOL_TIMEOUT or check catalog and provider latency",
        }
    )


def _not_ready() -> str:
    return json.dumps({"error": "Router not initialized"})


# ---------------------------------------------------------------------------
# detect tool
# ---------------------------------------------------------------------------


async def _do_detect(router: EcosystemRouter, query: str) -> str:
    try:
        result = await router.detect(query)
    except NoEcosystemsConfiguredError as e:
        logger.error(f"Detection failed: {e}")
        return json.dumps({"error": str(e)})
    return json.dumps(result.to_dict(), ensure_ascii=False, indent=2)


@mcp.tool(
    annotations=ToolAnnotations(
        readOnlyHint=True,
        openWorldHint=True,
        idempotentHint=False,
    ),
)
async def detect(query: str) -> str:
    """Route a query to one ecosystem and its suggested doc sources.
    Returns ecosystem, confidence (0-100), reasoning, suggested_doc_sources
    and the stage that decided (alias|keyword|semantic|ai|fallback).
    Use `help` tool for full documentation.
    """
    if not query or not query.strip():
        return json.dumps({"error": "query is required"})
    if _router is None:
        return _not_ready()
    return await _with_timeout(_do_detect(_router, query), "detect")


# ---------------------------------------------------------------------------
# catalog tool: list, sources, refresh
# ---------------------------------------------------------------------------


@mcp.tool(
    description=(
        "Ecosystem catalog. Actions: list|sources|refresh. "
        "Use help tool with tool_name='catalog' for full docs."
    ),
    annotations=ToolAnnotations(
        title="Catalog",
        readOnlyHint=False,
        destructiveHint=False,
        idempotentHint=True,
        openWorldHint=True,
    ),
)
async def catalog(action: str, ecosystem_id: str | None = None) -> str:
    """Inspect the ecosystem catalog.
    - list: Active ecosystems in priority order with their source counts
    - sources: Doc source ids mapped to an ecosystem (ecosystem_id required)
    - refresh: Refetch the catalog now, ignoring the TTL
    """
    if _router is None:
        return _not_ready()

    match action:
        case "list":
            snapshot = await _router.cache.get()
            return json.dumps(
                {
                    "ecosystems": [
                        {
                            **e.summary(),
                            "sources": len(snapshot.sources_for(e.id)),
                        }
                        for e in snapshot.ecosystems
                    ],
                    "total": len(snapshot.ecosystems),
                },
                ensure_ascii=False,
                indent=2,
            )

        case "sources":
            if not ecosystem_id:
                return json.dumps({"error": "ecosystem_id is required for sources"})
            snapshot = await _router.cache.get()
            if snapshot.find(ecosystem_id) is None:
                return json.dumps({"error": f"Unknown ecosystem: {ecosystem_id}"})
            return json.dumps(
                {
                    "ecosystem_id": ecosystem_id,
                    "sources": snapshot.sources_for(ecosystem_id),
                }
            )

        case "refresh":
            await _router.cache.refresh()
            return json.dumps(
                {"status": "refreshed", **_router.cache.stats()}, default=str
            )

        case _:
            return json.dumps(
                {
                    "error": f"Unknown action: {action}",
                    "valid_actions": ["list", "sources", "refresh"],
                }
            )


# ---------------------------------------------------------------------------
# help / config tools
# ---------------------------------------------------------------------------

_DOC_TOOLS = ("detect", "catalog", "config")

# Routing decisions shown by config status
_RECENT_DECISIONS = 5


@mcp.tool(
    annotations=ToolAnnotations(
        readOnlyHint=True,
        openWorldHint=False,
        idempotentHint=True,
    ),
)
async def help(tool_name: str = "detect") -> str:
    """Get full documentation for a tool.
    Valid tool names: detect, catalog, config.
    """
    if tool_name not in _DOC_TOOLS:
        return f"Error: No documentation found for tool '{tool_name}'"
    try:
        doc_file = files("ecoroute_mcp").joinpath(f"docs/{tool_name}.md")
        return doc_file.read_text()
    except FileNotFoundError:
        return f"Error: No documentation found for tool '{tool_name}'"
    except Exception as e:
        return f"Error loading documentation: {e}"


@mcp.tool(
    description=(
        "Server config and management. Actions: status|set. "
        "Use help tool with tool_name='config' for full docs."
    ),
    annotations=ToolAnnotations(
        title="Config",
        readOnlyHint=False,
        destructiveHint=False,
        idempotentHint=True,
        openWorldHint=False,
    ),
)
async def config(
    action: str,
    key: str | None = None,
    value: str | None = None,
) -> str:
    """Server configuration and status.
    - status: Show catalog, cache, provider and routing log state
    - set: Update runtime setting (key + value required)
    """
    match action:
        case "status":
            routing_log = _router.routing_log if _router else None
            status = {
                "catalog": {
                    "backend": settings.catalog_backend,
                    "path": str(settings.get_catalog_path() or "bundled"),
                    "cache": _router.cache.stats() if _router else None,
                },
                "detection": {
                    "stages": _router.stages if _router else [],
                    "fallback_ecosystem": settings.fallback_ecosystem,
                    "semantic_threshold": settings.semantic_threshold,
                },
                "providers": {
                    "embedding_backend": settings.resolve_embedding_backend(),
                    "embedding_model": settings.resolve_embedding_model(),
                    "llm_models": settings.llm_models,
                },
                "routing_log": {
                    "enabled": routing_log is not None,
                    "path": (
                        str(settings.get_routing_log_path()) if routing_log else None
                    ),
                    "stages": routing_log.stats() if routing_log else {},
                    "recent": (
                        routing_log.recent(limit=_RECENT_DECISIONS)
                        if routing_log
                        else []
                    ),
                },
                "settings": {
                    "log_level": settings.log_level,
                    "tool_timeout": settings.tool_timeout,
                    "catalog_ttl": settings.catalog_ttl,
                },
            }
            return json.dumps(status, indent=2, default=str)

        case "set":
            if not key or value is None:
                return json.dumps({"error": "key and value are required for set"})
            valid_keys = {"log_level", "tool_timeout", "catalog_ttl"}
            if key not in valid_keys:
                return json.dumps(
                    {
                        "error": f"Invalid key: {key}",
                        "valid_keys": sorted(valid_keys),
                    }
                )
            try:
                if key == "log_level":
                    settings.log_level = value.upper()
                    logger.remove()
                    logger.add(sys.stderr, level=settings.log_level)
                elif key == "tool_timeout":
                    settings.tool_timeout = float(value)
                elif key == "catalog_ttl":
                    ttl = float(value)
                    if _router:
                        _router.cache.ttl = ttl
                    settings.catalog_ttl = ttl
            except ValueError as e:
                return json.dumps({"error": f"Invalid value for {key}: {e}"})
            return json.dumps(
                {
                    "status": "updated",
                    "key": key,
                    "value": getattr(settings, key),
                },
                default=str,
            )

        case _:
            return json.dumps(
                {
                    "error": f"Unknown action: {action}",
                    "valid_actions": ["status", "set"],
                }
            )


# ---------------------------------------------------------------------------
# Prompts
# ---------------------------------------------------------------------------


@mcp.prompt()
def scoped_docs(question: str) -> str:
    """Generate a prompt to answer a question from ecosystem-scoped docs."""
    return (
        f"Answer the following developer question: {question}\n\n"
        "1. Use the detect tool with this question to find its ecosystem.\n"
        "2. If confidence is above 80, search only the suggested_doc_sources, "
        "starting with the first one.\n"
        "3. Otherwise search broadly and mention that the ecosystem was unclear."
    )


def main() -> None:
    """Entry point for the MCP server."""
    mcp.run()


if __name__ == "__main__":
    main()
