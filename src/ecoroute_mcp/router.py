"""Ecosystem router: runs the detection cascade against the cached catalog.

Stages always run in the same order (alias, keyword, semantic, ai) and the
first stage that answers wins. Which stage fires depends only on the query
and the catalog, never on skipping stages. The last stage is the AI
classifier, which always answers for a non-empty catalog.
"""

from __future__ import annotations

import time
from collections.abc import Sequence
from typing import TYPE_CHECKING

from loguru import logger

from ecoroute_mcp.cache import CatalogCache
from ecoroute_mcp.config import Settings, settings
from ecoroute_mcp.detectors import (
    DEFAULT_SEMANTIC_THRESHOLD,
    AIDetector,
    AliasDetector,
    Detector,
    KeywordDetector,
    SemanticDetector,
)
from ecoroute_mcp.embedder import EmbeddingProvider
from ecoroute_mcp.errors import NoEcosystemsConfiguredError
from ecoroute_mcp.models import DetectionResult
from ecoroute_mcp.routing_log import RoutingLog

if TYPE_CHECKING:
    from ecoroute_mcp.llm import TextGenerator


def default_detectors(
    embedding_provider: EmbeddingProvider | None = None,
    generator: TextGenerator | None = None,
    fallback_id: str = "general",
    semantic_threshold: float = DEFAULT_SEMANTIC_THRESHOLD,
) -> list[Detector]:
    """The standard cascade: alias -> keyword -> semantic -> ai."""
    return [
        AliasDetector(),
        KeywordDetector(),
        SemanticDetector(embedding_provider, threshold=semantic_threshold),
        AIDetector(generator, fallback_id=fallback_id),
    ]


class EcosystemRouter:
    """Routes a query to one ecosystem and its suggested doc sources."""

    def __init__(
        self,
        cache: CatalogCache,
        detectors: Sequence[Detector] | None = None,
        routing_log: RoutingLog | None = None,
    ):
        if detectors is None:
            detectors = default_detectors()
        if not detectors or not isinstance(detectors[-1], AIDetector):
            raise ValueError("The last detector must be an AIDetector")

        self._cache = cache
        self._detectors = tuple(detectors)
        self._routing_log = routing_log

    @property
    def cache(self) -> CatalogCache:
        return self._cache

    @property
    def stages(self) -> list[str]:
        return [d.stage for d in self._detectors]

    @property
    def routing_log(self) -> RoutingLog | None:
        return self._routing_log

    async def detect(self, query: str) -> DetectionResult:
        """Detect the ecosystem for a query.

        Raises:
            NoEcosystemsConfiguredError: the catalog has no active ecosystems.
        """
        start = time.perf_counter()
        catalog = await self._cache.get()
        if catalog.is_empty:
            raise NoEcosystemsConfiguredError()

        result: DetectionResult | None = None
        for detector in self._detectors[:-1]:
            result = await detector.detect(query, catalog)
            if result is not None:
                break
        if result is None:
            result = await self._detectors[-1].detect(query, catalog)

        latency_ms = int((time.perf_counter() - start) * 1000)
        logger.info(
            f"Routed to {result.ecosystem.id} via {result.stage} "
            f"({result.confidence}%, {latency_ms}ms)"
        )
        self._record(query, result, latency_ms)
        return result

    def _record(self, query: str, result: DetectionResult, latency_ms: int) -> None:
        if self._routing_log is None:
            return
        try:
            self._routing_log.record(query, result, latency_ms)
        except Exception as e:
            logger.warning(f"Failed to record routing decision: {e}")

    def sources_for(self, ecosystem_id: str) -> list[str]:
        """Doc source ids mapped to an ecosystem."""
        return self._cache.sources_for(ecosystem_id)

    def close(self) -> None:
        if self._routing_log is not None:
            self._routing_log.close()
            self._routing_log = None


def create_router(config: Settings = settings) -> EcosystemRouter:
    """Wire catalog backend, cache, providers and routing log from settings."""
    from ecoroute_mcp.catalog import create_catalog_source
    from ecoroute_mcp.embedder import create_embedding_provider
    from ecoroute_mcp.llm import LiteLLMGenerator

    keys = config.setup_api_keys()
    if keys:
        logger.info(f"API keys configured: {', '.join(keys.keys())}")

    cache = CatalogCache(create_catalog_source(config), ttl=config.catalog_ttl)
    detectors = default_detectors(
        embedding_provider=create_embedding_provider(config),
        generator=LiteLLMGenerator.from_settings(config),
        fallback_id=config.fallback_ecosystem,
        semantic_threshold=config.semantic_threshold,
    )

    routing_log = None
    if config.routing_log:
        routing_log = RoutingLog(config.get_routing_log_path())
        logger.info(f"Routing log enabled at {config.get_routing_log_path()}")

    return EcosystemRouter(cache, detectors, routing_log=routing_log)
