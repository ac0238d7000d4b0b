"""Configuration settings for the ecoroute MCP server."""

import os
from pathlib import Path

from pydantic import SecretStr
from pydantic_settings import BaseSettings


def _default_data_dir() -> Path:
    """Get default data directory (~/.ecoroute-mcp/)."""
    return Path.home() / ".ecoroute-mcp"


# gemini/ models read GEMINI_API_KEY, other Google clients GOOGLE_API_KEY
_KEY_MIRRORS = {"GOOGLE_API_KEY": "GEMINI_API_KEY"}


def _parse_api_keys(raw: str) -> dict[str, list[str]]:
    parsed: dict[str, list[str]] = {}
    for entry in raw.split(","):
        env_var, sep, key = entry.partition(":")
        env_var, key = env_var.strip(), key.strip()
        if sep and env_var and key:
            parsed.setdefault(env_var, []).append(key)
    return parsed


class Settings(BaseSettings):
    """Ecosystem router configuration.

    Environment variables:
    - CATALOG_BACKEND: "file" | "supabase" (default: file)
    - CATALOG_PATH: JSON catalog file (default: bundled catalog)
    - SUPABASE_URL / SUPABASE_KEY: PostgREST endpoint for the supabase backend
    - CATALOG_TTL: Seconds a fetched catalog stays fresh (default: 300)
    - FALLBACK_ECOSYSTEM: Canonical fallback ecosystem id (default: general)
    - SEMANTIC_THRESHOLD: Minimum cosine similarity for stage 3 (default: 0.75)
    - API_KEYS: Provider API keys, supports multiple providers
        Format: "ENV_VAR:key,ENV_VAR:key,..."
        Example: "GOOGLE_API_KEY:AIza...,OPENAI_API_KEY:sk-..."
    - EMBEDDING_BACKEND: "litellm" | "local" | "none"
        (auto: API_KEYS -> litellm, else local)
    - EMBEDDING_MODEL: LiteLLM embedding model
    - LLM_MODELS: provider/model fallback chain for the AI stage
    - EMBED_TIMEOUT / LLM_TIMEOUT / TOOL_TIMEOUT: seconds, 0 = no timeout
    - ROUTING_LOG: Record every decision to SQLite (default: false)
    """

    # Catalog
    catalog_backend: str = "file"
    catalog_path: str = ""  # Default: bundled data/catalog.json
    supabase_url: str = ""
    supabase_key: SecretStr | None = None
    catalog_ttl: float = 300.0  # 5 minutes
    catalog_timeout: float = 15.0

    # Detection
    fallback_ecosystem: str = "general"
    semantic_threshold: float = 0.75

    # Providers (LiteLLM)
    api_keys: SecretStr | None = None  # ENV_VAR:key,ENV_VAR:key
    llm_models: str = "gemini/gemini-2.5-flash"  # provider/model (fallback chain)
    llm_temperature: float | None = 0.1

    # Embedding
    embedding_model: str = ""  # LiteLLM format
    embedding_dims: int = 0  # 0 = model default
    embedding_backend: str = ""  # "litellm" | "local" | "none" | "" (auto)

    # Timeouts (seconds, 0 = no timeout)
    embed_timeout: float = 15.0
    llm_timeout: float = 30.0
    tool_timeout: float = 60.0

    # Routing log
    routing_log: bool = False
    data_dir: str = ""  # Default: ~/.ecoroute-mcp

    # Logging
    log_level: str = "INFO"

    model_config = {"env_prefix": "", "case_sensitive": False}

    # --- Path helpers ---

    def get_data_dir(self) -> Path:
        """Get data directory.

        Uses DATA_DIR if set, otherwise ~/.ecoroute-mcp/.
        """
        if self.data_dir:
            return Path(self.data_dir).expanduser()
        return _default_data_dir()

    def get_routing_log_path(self) -> Path:
        """Get resolved routing log database path."""
        return self.get_data_dir() / "routing.db"

    def get_catalog_path(self) -> Path | None:
        """Explicit catalog file, or None for the bundled catalog."""
        if self.catalog_path:
            return Path(self.catalog_path).expanduser()
        return None

    # --- API key management ---

    def setup_api_keys(self) -> dict[str, list[str]]:
        """Export API_KEYS ("ENV_VAR:key,...") to the environment for LiteLLM.

        The first key per variable wins. gemini/ models read GEMINI_API_KEY,
        so a GOOGLE_API_KEY is mirrored there unless it is already set.

        Returns:
            Dict mapping env var name to list of API keys.
        """
        if not self.api_keys:
            return {}

        parsed = _parse_api_keys(self.api_keys.get_secret_value())
        for env_var, keys in parsed.items():
            os.environ[env_var] = keys[0]
            mirror = _KEY_MIRRORS.get(env_var)
            if mirror:
                os.environ.setdefault(mirror, keys[0])
        return parsed

    # --- Embedding resolution ---

    def resolve_embedding_backend(self) -> str:
        """Resolve embedding backend: 'litellm', 'local' or 'none'.

        Auto-detect order:
        1. Explicit EMBEDDING_BACKEND setting
        2. 'litellm' if API keys are configured
        3. 'local' (qwen3-embed built-in)
        """
        if self.embedding_backend:
            return self.embedding_backend
        if self.api_keys:
            return "litellm"
        return "local"

    def resolve_embedding_model(self) -> str | None:
        """Return explicit EMBEDDING_MODEL or None for the backend default."""
        if self.embedding_model:
            return self.embedding_model
        return None

    def resolve_embedding_dims(self) -> int | None:
        """Return explicit EMBEDDING_DIMS or None to keep native dims."""
        return self.embedding_dims or None


settings = Settings()
