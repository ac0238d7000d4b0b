"""Catalog and detection data types.

Ecosystem and DocSource rows are parsed with pydantic so the same model
accepts rows from the bundled JSON catalog and from PostgREST, where array
and JSONB columns sometimes arrive JSON-encoded and pgvector values arrive
as ``"[0.1,0.2,...]"`` text.
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# Stage labels, in cascade order
STAGE_ALIAS = "alias"
STAGE_KEYWORD = "keyword"
STAGE_SEMANTIC = "semantic"
STAGE_AI = "ai"
STAGE_FALLBACK = "fallback"


def _decode_json(value: Any) -> Any:
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
        return json.loads(value)
    return value


class Ecosystem(BaseModel):
    """A curated topical bucket used to scope documentation retrieval."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str
    name: str = ""
    description: str = ""
    aliases: tuple[str, ...] = ()
    keywords: tuple[str, ...] = ()
    keyword_groups: dict[str, tuple[str, ...]] = Field(default_factory=dict)
    priority: int = 0
    is_active: bool = True
    description_embedding: tuple[float, ...] | None = None

    @model_validator(mode="before")
    @classmethod
    def _default_name(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("name") and data.get("id"):
            data = {**data, "name": data["id"]}
        return data

    @field_validator("aliases", "keywords", mode="before")
    @classmethod
    def _coerce_terms(cls, value: Any) -> Any:
        value = _decode_json(value)
        return () if value is None else value

    @field_validator("keyword_groups", mode="before")
    @classmethod
    def _coerce_groups(cls, value: Any) -> Any:
        value = _decode_json(value)
        return {} if value is None else value

    @field_validator("description_embedding", mode="before")
    @classmethod
    def _coerce_embedding(cls, value: Any) -> Any:
        value = _decode_json(value)
        if not value:
            return None
        return value

    def summary(self) -> dict:
        """Short JSON-ready view (no embedding)."""
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "priority": self.priority,
        }


class DocSource(BaseModel):
    """A documentation source, optionally assigned to an ecosystem."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str
    ecosystem_id: str | None = None


@dataclass(frozen=True)
class CatalogSnapshot:
    """One published catalog state: ordered ecosystems plus their sources.

    Snapshots are never mutated. The cache swaps whole snapshots, so the
    ecosystem list and the source map always come from the same fetch.
    """

    ecosystems: tuple[Ecosystem, ...] = ()
    sources: Mapping[str, tuple[str, ...]] = field(
        default_factory=lambda: MappingProxyType({})
    )
    fetched_at: float | None = None

    @classmethod
    def build(
        cls,
        ecosystems: Iterable[Ecosystem],
        doc_sources: Iterable[DocSource],
        fetched_at: float | None = None,
    ) -> CatalogSnapshot:
        """Build a snapshot from raw fetch results.

        Inactive ecosystems are dropped and the rest are ordered by
        descending priority (stable, so backend order breaks ties).
        """
        active = [e for e in ecosystems if e.is_active]
        active.sort(key=lambda e: e.priority, reverse=True)

        mapping: dict[str, list[str]] = {}
        for src in doc_sources:
            if src.ecosystem_id is None:
                continue
            mapping.setdefault(src.ecosystem_id, []).append(src.id)

        return cls(
            ecosystems=tuple(active),
            sources=MappingProxyType({k: tuple(v) for k, v in mapping.items()}),
            fetched_at=fetched_at,
        )

    @property
    def is_empty(self) -> bool:
        return not self.ecosystems

    def sources_for(self, ecosystem_id: str) -> list[str]:
        """Doc source ids for an ecosystem, or [] if unmapped."""
        return list(self.sources.get(ecosystem_id, ()))

    def find(self, ecosystem_id: str | None) -> Ecosystem | None:
        """Look up an active ecosystem by id."""
        if not ecosystem_id:
            return None
        for ecosystem in self.ecosystems:
            if ecosystem.id == ecosystem_id:
                return ecosystem
        return None


@dataclass(frozen=True)
class DetectionResult:
    """The outcome of routing one query."""

    ecosystem: Ecosystem
    confidence: int | float
    reasoning: str
    suggested_doc_sources: list[str] = field(default_factory=list)
    stage: str = STAGE_FALLBACK

    def scope(self, min_confidence: float = 80) -> tuple[str, list[str]] | None:
        """Split suggested sources into (primary, additional) for retrieval.

        Returns None unless the result is confident enough and maps to at
        least one doc source; callers then fall back to their own source
        selection.
        """
        if self.confidence <= min_confidence or not self.suggested_doc_sources:
            return None
        primary, *additional = self.suggested_doc_sources
        return primary, additional

    def to_dict(self) -> dict:
        return {
            "ecosystem": self.ecosystem.summary(),
            "confidence": self.confidence,
            "reasoning": self.reasoning,
            "suggested_doc_sources": list(self.suggested_doc_sources),
            "stage": self.stage,
        }
