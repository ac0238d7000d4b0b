"""Exceptions raised by the ecosystem router."""


class EcoRouteError(Exception):
    """Base class for router errors."""


class CatalogFetchError(EcoRouteError):
    """Reading ecosystems or doc sources from the catalog backend failed."""


class EmbeddingProviderError(EcoRouteError):
    """The embedding provider failed to produce a vector."""


class GenerationProviderError(EcoRouteError):
    """The generation provider failed to produce a completion."""


class NoEcosystemsConfiguredError(EcoRouteError):
    """The catalog holds no active ecosystems, so nothing can be returned."""

    def __init__(self, message: str = "No ecosystems configured"):
        super().__init__(message)
