"""Detection stages of the ecosystem cascade.

Stages, in the order the router runs them:

1. **alias**: curated alias phrase found in the query (confidence 95).
2. **keyword**: +10 per keyword / keyword-group hit, best total wins.
3. **semantic**: cosine similarity between the query embedding and the
   ecosystems' description embeddings (one embedding call).
4. **ai**: LLM picks an ecosystem id from the catalog (one completion
   call). Always answers: unknown ids and provider failures fall back to
   the canonical fallback ecosystem with confidence 0.

Each stage is ``detect(query, catalog) -> DetectionResult | None``. Alias
and keyword stages work on the normalized query; semantic and AI stages
see the raw query text.
"""

from __future__ import annotations

import json
import math
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any, Protocol

from loguru import logger

from ecoroute_mcp.errors import NoEcosystemsConfiguredError
from ecoroute_mcp.models import (
    STAGE_AI,
    STAGE_ALIAS,
    STAGE_FALLBACK,
    STAGE_KEYWORD,
    STAGE_SEMANTIC,
    CatalogSnapshot,
    DetectionResult,
    Ecosystem,
)

if TYPE_CHECKING:
    from ecoroute_mcp.embedder import EmbeddingProvider
    from ecoroute_mcp.llm import TextGenerator

ALIAS_CONFIDENCE = 95

KEYWORD_WEIGHT = 10  # primary keywords and group keywords alike
KEYWORD_MIN_SCORE = 10
KEYWORD_BASE_CONFIDENCE = 70
KEYWORD_LABEL_BONUS = 5
KEYWORD_MAX_CONFIDENCE = 95

DEFAULT_SEMANTIC_THRESHOLD = 0.75

AI_DEFAULT_CONFIDENCE = 50
AI_DEFAULT_REASONING = "AI detection"
FALLBACK_REASONING = "Fallback to general"


def normalize_query(query: str) -> str:
    """Lowercase and trim a query for substring matching."""
    return query.lower().strip()


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two equal-length vectors, in [-1, 1].

    Returns 0.0 when either vector has zero norm.
    """
    if len(a) != len(b):
        raise ValueError(f"Vector length mismatch: {len(a)} != {len(b)}")

    dot = 0.0
    norm_a = 0.0
    norm_b = 0.0
    for x, y in zip(a, b):
        dot += x * y
        norm_a += x * x
        norm_b += y * y

    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    return dot / (math.sqrt(norm_a) * math.sqrt(norm_b))


# ---------------------------------------------------------------------------
# Pure matching helpers
# ---------------------------------------------------------------------------


def match_alias(
    normalized_query: str, ecosystems: Sequence[Ecosystem]
) -> tuple[Ecosystem, str] | None:
    """First ecosystem (catalog order) with an alias inside the query."""
    for ecosystem in ecosystems:
        for alias in ecosystem.aliases:
            needle = alias.lower()
            if needle and needle in normalized_query:
                return ecosystem, alias
    return None


def score_keywords(
    normalized_query: str, ecosystem: Ecosystem
) -> tuple[int, list[str]]:
    """Keyword score and matched labels for one ecosystem.

    Group hits are labelled ``group:keyword`` and weigh the same as
    primary keywords.
    """
    score = 0
    matched: list[str] = []

    for kw in ecosystem.keywords:
        needle = kw.lower()
        if needle and needle in normalized_query:
            score += KEYWORD_WEIGHT
            matched.append(kw)

    for group, keywords in ecosystem.keyword_groups.items():
        for kw in keywords:
            needle = kw.lower()
            if needle and needle in normalized_query:
                score += KEYWORD_WEIGHT
                matched.append(f"{group}:{kw}")

    return score, matched


def best_keyword_match(
    normalized_query: str, ecosystems: Sequence[Ecosystem]
) -> tuple[Ecosystem, int, list[str]] | None:
    """Highest-scoring ecosystem, or None if nothing reaches the minimum.

    Ties keep the ecosystem seen first in catalog (priority) order.
    """
    best: Ecosystem | None = None
    best_score = 0
    best_labels: list[str] = []

    for ecosystem in ecosystems:
        score, labels = score_keywords(normalized_query, ecosystem)
        if score > best_score:
            best, best_score, best_labels = ecosystem, score, labels

    if best is None or best_score < KEYWORD_MIN_SCORE:
        return None
    return best, best_score, best_labels


def keyword_confidence(label_count: int) -> int:
    return min(
        KEYWORD_MAX_CONFIDENCE,
        KEYWORD_BASE_CONFIDENCE + KEYWORD_LABEL_BONUS * label_count,
    )


# ---------------------------------------------------------------------------
# Stages
# ---------------------------------------------------------------------------


class Detector(Protocol):
    """One stage of the cascade."""

    stage: str

    async def detect(
        self, query: str, catalog: CatalogSnapshot
    ) -> DetectionResult | None: ...


def _result(
    catalog: CatalogSnapshot,
    ecosystem: Ecosystem,
    confidence: int | float,
    reasoning: str,
    stage: str,
) -> DetectionResult:
    return DetectionResult(
        ecosystem=ecosystem,
        confidence=confidence,
        reasoning=reasoning,
        suggested_doc_sources=catalog.sources_for(ecosystem.id),
        stage=stage,
    )


class AliasDetector:
    stage = STAGE_ALIAS

    async def detect(
        self, query: str, catalog: CatalogSnapshot
    ) -> DetectionResult | None:
        hit = match_alias(normalize_query(query), catalog.ecosystems)
        if hit is None:
            return None
        ecosystem, alias = hit
        return _result(
            catalog,
            ecosystem,
            ALIAS_CONFIDENCE,
            f"Matched alias in query ('{alias}')",
            self.stage,
        )


class KeywordDetector:
    stage = STAGE_KEYWORD

    async def detect(
        self, query: str, catalog: CatalogSnapshot
    ) -> DetectionResult | None:
        hit = best_keyword_match(normalize_query(query), catalog.ecosystems)
        if hit is None:
            return None
        ecosystem, _score, labels = hit
        return _result(
            catalog,
            ecosystem,
            keyword_confidence(len(labels)),
            f"Matched keywords: [{', '.join(labels)}]",
            self.stage,
        )


class SemanticDetector:
    """Embedding similarity against ecosystem descriptions.

    Ecosystems without a ``description_embedding`` are not candidates. The
    stage never raises: a missing provider, a provider error or an empty
    vector all mean "no result".
    """

    stage = STAGE_SEMANTIC

    def __init__(
        self,
        provider: EmbeddingProvider | None,
        threshold: float = DEFAULT_SEMANTIC_THRESHOLD,
    ):
        self._provider = provider
        self._threshold = threshold

    async def detect(
        self, query: str, catalog: CatalogSnapshot
    ) -> DetectionResult | None:
        if self._provider is None:
            return None

        candidates = [e for e in catalog.ecosystems if e.description_embedding]
        if not candidates:
            return None

        try:
            vector = await self._provider.embed(query)
        except Exception as e:
            logger.warning(f"Semantic detection failed: {e}")
            return None

        if not vector:
            logger.debug("Embedding provider returned no vector")
            return None

        best: Ecosystem | None = None
        best_similarity = -1.0
        for ecosystem in candidates:
            embedding = ecosystem.description_embedding or ()
            if len(embedding) != len(vector):
                logger.warning(
                    f"Skipping {ecosystem.id}: embedding dims {len(embedding)} "
                    f"!= query dims {len(vector)}"
                )
                continue
            similarity = cosine_similarity(vector, embedding)
            if similarity > best_similarity:
                best, best_similarity = ecosystem, similarity

        if best is None or best_similarity <= self._threshold:
            return None

        return _result(
            catalog,
            best,
            round(best_similarity * 100),
            f"Semantic similarity match ({best_similarity * 100:.1f}%)",
            self.stage,
        )


def build_prompt(query: str, ecosystems: Sequence[Ecosystem]) -> str:
    """Classification prompt listing every active ecosystem."""
    listing = "\n".join(f"- {e.id}: {e.description}" for e in ecosystems)
    return (
        "Analyze this query and select the best matching ecosystem.\n\n"
        f'Query: "{query}"\n\n'
        "Available Ecosystems:\n"
        f"{listing}\n\n"
        'Respond with JSON: { "ecosystemId": "string", '
        '"confidence": number, "reasoning": "string" }'
    )


def parse_ai_response(text: str | None) -> dict:
    """Decode the model's JSON answer; anything unusable becomes {}."""
    if not text:
        return {}
    try:
        data = json.loads(text)
    except ValueError:
        logger.debug(f"AI response is not JSON: {text[:200]}")
        return {}
    return data if isinstance(data, dict) else {}


def _ai_confidence(value: Any) -> int | float:
    """Confidence from the model, defaulting when absent or non-numeric."""
    if isinstance(value, bool) or value is None:
        return AI_DEFAULT_CONFIDENCE
    if isinstance(value, str):
        try:
            value = float(value)
        except ValueError:
            return AI_DEFAULT_CONFIDENCE
    if not isinstance(value, (int, float)) or math.isnan(value):
        return AI_DEFAULT_CONFIDENCE
    value = max(0, min(100, value))
    return int(value) if float(value).is_integer() else value


class AIDetector:
    """Terminal stage: LLM classification with a guaranteed fallback."""

    stage = STAGE_AI

    def __init__(
        self,
        generator: TextGenerator | None,
        fallback_id: str = "general",
    ):
        self._generator = generator
        self._fallback_id = fallback_id

    def fallback(self, catalog: CatalogSnapshot) -> DetectionResult:
        """Result for the canonical fallback ecosystem (or first entry)."""
        if catalog.is_empty:
            raise NoEcosystemsConfiguredError()
        ecosystem = catalog.find(self._fallback_id) or catalog.ecosystems[0]
        return _result(catalog, ecosystem, 0, FALLBACK_REASONING, STAGE_FALLBACK)

    async def detect(self, query: str, catalog: CatalogSnapshot) -> DetectionResult:
        if catalog.is_empty:
            raise NoEcosystemsConfiguredError()

        if self._generator is None:
            return self.fallback(catalog)

        response: dict = {}
        try:
            raw = await self._generator.generate(
                build_prompt(query, catalog.ecosystems)
            )
            response = parse_ai_response(raw)
        except Exception as e:
            logger.warning(f"AI detection failed: {e}")

        ecosystem_id = response.get("ecosystemId")
        ecosystem = (
            catalog.find(ecosystem_id) if isinstance(ecosystem_id, str) else None
        )
        if ecosystem is None:
            if response:
                logger.debug(f"AI picked unknown ecosystem: {ecosystem_id!r}")
            return self.fallback(catalog)

        reasoning = response.get("reasoning")
        if not isinstance(reasoning, str) or not reasoning.strip():
            reasoning = AI_DEFAULT_REASONING

        return _result(
            catalog,
            ecosystem,
            _ai_confidence(response.get("confidence")),
            reasoning,
            self.stage,
        )
