"""Query embedding for the semantic stage.

Two synchronous backends produce the query vector:

- ``litellm``: hosted embedding models through LiteLLM (needs API keys).
- ``local``: Qwen3-Embedding via qwen3-embed ONNX, downloaded on first use.

``BackendEmbeddingProvider`` wraps either one as the async
``EmbeddingProvider`` the semantic stage awaits. It runs the backend in a
worker thread, bounds the call with ``embed_timeout`` and reports every
failure as ``EmbeddingProviderError``.

The query must be embedded with the model (and dims) that produced the
catalog's ``description_embedding`` values, otherwise similarities are
meaningless.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import os
import time
from collections.abc import Callable
from typing import Protocol

from loguru import logger

from ecoroute_mcp.config import Settings
from ecoroute_mcp.errors import EmbeddingProviderError

# Model used for ecosystem description embeddings in the hosted catalog
DEFAULT_LITELLM_MODEL = "gemini/text-embedding-004"
DEFAULT_LOCAL_MODEL = "Qwen/Qwen3-Embedding-0.6B"

# One query per detection: retry briefly, the semantic stage has a deadline
EMBED_ATTEMPTS = 3
BACKOFF_SECONDS = 1.0  # doubles per attempt

_TRANSIENT_MARKERS = (
    "rate limit",
    "rate_limit",
    "429",
    "quota",
    "500",
    "502",
    "503",
    "504",
    "timeout",
    "timed out",
    "connection",
    "overloaded",
    "resource_exhausted",
    "temporarily unavailable",
)


def is_transient_error(exc: Exception) -> bool:
    """True for rate limits, 5xx and network errors."""
    msg = str(exc).lower()
    return any(marker in msg for marker in _TRANSIENT_MARKERS)


def _retry_transient(call: Callable[[], list[float]], label: str) -> list[float]:
    attempt = 1
    while True:
        try:
            return call()
        except Exception as e:
            if attempt >= EMBED_ATTEMPTS or not is_transient_error(e):
                logger.error(f"Query embedding failed ({label}): {e}")
                raise
            delay = BACKOFF_SECONDS * 2 ** (attempt - 1)
            logger.warning(
                f"Query embedding attempt {attempt}/{EMBED_ATTEMPTS} failed, "
                f"retrying in {delay}s: {e}"
            )
            time.sleep(delay)
            attempt += 1


class EmbeddingBackend(Protocol):
    """Synchronous query embedder."""

    def embed_query(self, text: str, dimensions: int | None = None) -> list[float]:
        ...


class EmbeddingProvider(Protocol):
    """Async text -> vector capability consumed by the semantic stage."""

    async def embed(self, text: str) -> list[float] | None:
        """Embed a query. Returns None when no vector was produced.

        Raises:
            EmbeddingProviderError: the provider failed or timed out.
        """
        ...


# ---------------------------------------------------------------------------
# Backends
# ---------------------------------------------------------------------------


def _quiet_litellm() -> None:
    os.environ.setdefault("LITELLM_LOG", "ERROR")
    import litellm

    litellm.suppress_debug_info = True  # type: ignore[assignment]
    logging.getLogger("LiteLLM").setLevel(logging.ERROR)


class LiteLLMBackend:
    """Hosted embedding model through LiteLLM."""

    def __init__(self, model: str = DEFAULT_LITELLM_MODEL):
        self.model = model
        _quiet_litellm()

    def embed_query(self, text: str, dimensions: int | None = None) -> list[float]:
        from litellm import embedding

        kwargs: dict = {"model": self.model, "input": [text]}
        if dimensions:
            kwargs["dimensions"] = dimensions

        def call() -> list[float]:
            response = embedding(**kwargs)
            if not response.data:
                return []
            return list(response.data[0]["embedding"])

        return _retry_transient(call, self.model)


class Qwen3EmbedBackend:
    """Local ONNX model via qwen3-embed.

    Uses ``query_embed`` so the query gets the retrieval instruction
    prefix. The model loads on the first query.
    """

    def __init__(self, model_name: str | None = None):
        self.model_name = model_name or DEFAULT_LOCAL_MODEL
        self._model = None

    def _load(self):
        if self._model is None:
            from qwen3_embed import TextEmbedding

            logger.info(f"Loading local embedding model {self.model_name}")
            self._model = TextEmbedding(model_name=self.model_name)
        return self._model

    def embed_query(self, text: str, dimensions: int | None = None) -> list[float]:
        model = self._load()
        # dim makes the model truncate before normalizing
        kwargs = {"dim": dimensions} if dimensions else {}
        vectors = list(model.query_embed(text, **kwargs))
        return vectors[0].tolist() if vectors else []


# ---------------------------------------------------------------------------
# Async provider
# ---------------------------------------------------------------------------


class BackendEmbeddingProvider:
    """Runs a sync backend in a worker thread with a hard timeout."""

    def __init__(
        self,
        backend: EmbeddingBackend,
        dimensions: int | None = None,
        timeout: float = 0,
    ):
        self.backend = backend
        self._dimensions = dimensions
        self._timeout = timeout

    async def embed(self, text: str) -> list[float] | None:
        call = functools.partial(self.backend.embed_query, text, self._dimensions)
        try:
            if self._timeout > 0:
                vector = await asyncio.wait_for(
                    asyncio.to_thread(call), timeout=self._timeout
                )
            else:
                vector = await asyncio.to_thread(call)
        except TimeoutError as e:
            raise EmbeddingProviderError(
                f"Embedding timed out after {self._timeout}s"
            ) from e
        except Exception as e:
            raise EmbeddingProviderError(f"Embedding failed: {e}") from e

        return list(vector) if vector else None


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


def init_backend(backend_type: str, model: str | None = None) -> EmbeddingBackend:
    """Create an embedding backend.

    Args:
        backend_type: 'litellm' or 'local'
        model: Model name (defaults per backend)

    Returns:
        Initialized backend instance.
    """
    if backend_type == "litellm":
        return LiteLLMBackend(model or DEFAULT_LITELLM_MODEL)
    if backend_type == "local":
        return Qwen3EmbedBackend(model)
    raise ValueError(f"Unknown backend type: {backend_type}")


def create_embedding_provider(config: Settings) -> EmbeddingProvider | None:
    """Build the embedding provider from settings, or None if disabled."""
    backend_type = config.resolve_embedding_backend()
    if backend_type == "none":
        logger.info("Semantic matching disabled (EMBEDDING_BACKEND=none)")
        return None

    backend = init_backend(backend_type, config.resolve_embedding_model())
    logger.info(f"Embedding backend: {type(backend).__name__}")
    return BackendEmbeddingProvider(
        backend,
        dimensions=config.resolve_embedding_dims(),
        timeout=config.embed_timeout,
    )
