"""Pytest configuration and fixtures."""

import pytest

from ecoroute_mcp.cache import CatalogCache
from ecoroute_mcp.detectors import AIDetector
from ecoroute_mcp.errors import CatalogFetchError
from ecoroute_mcp.models import CatalogSnapshot, DocSource, Ecosystem
from ecoroute_mcp.router import EcosystemRouter, default_detectors

# -----------------------------------------------------------------------
# Fakes
# -----------------------------------------------------------------------


class FakeCatalogSource:
    """In-memory catalog backend that counts fetches and can be made to fail."""

    def __init__(self, ecosystems=None, sources=None):
        self.ecosystems = list(ecosystems or [])
        self.sources = list(sources or [])
        self.fail = False
        self.fail_sources = False
        self.ecosystem_calls = 0
        self.source_calls = 0

    async def fetch_ecosystems(self):
        self.ecosystem_calls += 1
        if self.fail:
            raise CatalogFetchError("backend unavailable")
        return list(self.ecosystems)

    async def fetch_sources(self):
        self.source_calls += 1
        if self.fail or self.fail_sources:
            raise CatalogFetchError("backend unavailable")
        return list(self.sources)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeEmbeddingProvider:
    """Returns a fixed vector, or raises ``exc`` when set."""

    def __init__(self, vector=None, exc: Exception | None = None):
        self.vector = vector
        self.exc = exc
        self.calls: list[str] = []

    async def embed(self, text: str):
        self.calls.append(text)
        if self.exc is not None:
            raise self.exc
        return self.vector


class FakeGenerator:
    """Returns a fixed completion, or raises ``exc`` when set."""

    def __init__(self, response: str = "", exc: Exception | None = None):
        self.response = response
        self.exc = exc
        self.prompts: list[str] = []

    async def generate(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if self.exc is not None:
            raise self.exc
        return self.response


# -----------------------------------------------------------------------
# Catalog fixtures
# -----------------------------------------------------------------------


def make_ecosystems() -> list[Ecosystem]:
    """Small catalog with one ecosystem per cascade stage scenario."""
    return [
        Ecosystem(
            id="frontend_web",
            name="Frontend Web",
            description="React, Next.js and browser UI development",
            aliases=("react", "next.js"),
            keywords=("component", "jsx", "hooks", "frontend"),
            keyword_groups={"rendering": ("ssr", "hydration")},
            priority=10,
            description_embedding=(1.0, 0.0, 0.0),
        ),
        Ecosystem(
            id="python",
            name="Python",
            description="Python language, web frameworks and data science",
            aliases=("pip install",),
            keywords=("python", "django", "pandas"),
            keyword_groups={"data_science": ("numpy", "pandas")},
            priority=9,
            description_embedding=(0.0, 1.0, 0.0),
        ),
        Ecosystem(
            id="cloud_infra",
            name="Cloud & Infrastructure",
            description="Cloud providers, containers and deployment",
            keywords=("kubernetes", "k8s", "serverless", "devops", "container"),
            keyword_groups={
                "vendors": ("aws", "gcp", "azure"),
                "containers": ("docker", "kubernetes", "pod"),
                "deployment": ("ci", "cd", "pipeline", "deploy"),
            },
            priority=7,
            description_embedding=(0.0, 0.0, 1.0),
        ),
        Ecosystem(
            id="systems",
            name="Systems Programming",
            description="Rust, Go and low-level programming",
            aliases=("borrow checker",),
            keywords=("rust", "golang", "ownership"),
            keyword_groups={"memory": ("pointer", "heap")},
            priority=6,
        ),
        Ecosystem(
            id="styling",
            name="Styling",
            description="CSS frameworks and design systems",
            keywords=("css", "tailwind", "styling"),
            keyword_groups={"concepts": ("utility", "responsive")},
            priority=5,
            description_embedding=(0.6, 0.0, 0.8),
        ),
        Ecosystem(
            id="general",
            name="General",
            description="Anything else",
            priority=0,
        ),
    ]


def make_sources() -> list[DocSource]:
    return [
        DocSource(id="react", ecosystem_id="frontend_web"),
        DocSource(id="nextjs", ecosystem_id="frontend_web"),
        DocSource(id="python", ecosystem_id="python"),
        DocSource(id="aws", ecosystem_id="cloud_infra"),
        DocSource(id="kubernetes", ecosystem_id="cloud_infra"),
        DocSource(id="rust", ecosystem_id="systems"),
        DocSource(id="tailwind", ecosystem_id="styling"),
    ]


@pytest.fixture
def ecosystems():
    return make_ecosystems()


@pytest.fixture
def doc_sources():
    return make_sources()


@pytest.fixture
def snapshot(ecosystems, doc_sources):
    """Published catalog built from the fixture rows."""
    return CatalogSnapshot.build(ecosystems, doc_sources, fetched_at=0.0)


@pytest.fixture
def catalog_source(ecosystems, doc_sources):
    return FakeCatalogSource(ecosystems, doc_sources)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(catalog_source, clock):
    return CatalogCache(catalog_source, ttl=300.0, clock=clock)


@pytest.fixture
def make_router(cache):
    """Factory: router over the fixture cache with the given providers."""

    def _make(embedding_provider=None, generator=None, routing_log=None):
        detectors = default_detectors(
            embedding_provider=embedding_provider,
            generator=generator,
        )
        assert isinstance(detectors[-1], AIDetector)
        return EcosystemRouter(cache, detectors, routing_log=routing_log)

    return _make
