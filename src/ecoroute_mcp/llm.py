"""LLM utilities for the AI classification stage using LiteLLM"""

import asyncio
import logging
import os
from typing import Protocol

# Silence LiteLLM completely - must be done BEFORE import
os.environ["LITELLM_LOG"] = "ERROR"

import litellm

litellm.suppress_debug_info = True  # type: ignore[assignment]
litellm.set_verbose = False

# Force redirect LiteLLM's logger to null
logging.getLogger("LiteLLM").setLevel(logging.ERROR)
logging.getLogger("LiteLLM").handlers = [logging.NullHandler()]

from litellm import acompletion  # noqa: E402
from loguru import logger  # noqa: E402

from ecoroute_mcp.config import Settings, settings  # noqa: E402
from ecoroute_mcp.errors import GenerationProviderError  # noqa: E402

_DEFAULT_MODEL = "gemini/gemini-2.5-flash"


class TextGenerator(Protocol):
    """Async prompt -> JSON completion capability used by the AI stage."""

    async def generate(self, prompt: str) -> str:
        """Return the raw completion text (expected to be a JSON object).

        Raises:
            GenerationProviderError: the provider failed or timed out.
        """
        ...


def get_llm_config(config: Settings = settings) -> dict:
    """Build LLM configuration with fallback."""
    models = [m.strip() for m in config.llm_models.split(",") if m.strip()]
    if not models:
        models = [_DEFAULT_MODEL]

    primary = models[0]
    fallbacks = models[1:] if len(models) > 1 else None

    return {
        "model": primary,
        "fallbacks": fallbacks,
        "temperature": config.llm_temperature,
    }


class LiteLLMGenerator:
    """JSON-mode completions via LiteLLM acompletion()."""

    def __init__(
        self,
        model: str = _DEFAULT_MODEL,
        fallbacks: list[str] | None = None,
        temperature: float | None = None,
        timeout: float = 0,
    ):
        self.model = model
        self.fallbacks = fallbacks
        self.temperature = temperature
        self._timeout = timeout

    @classmethod
    def from_settings(cls, config: Settings = settings) -> "LiteLLMGenerator":
        llm_config = get_llm_config(config)
        return cls(
            model=llm_config["model"],
            fallbacks=llm_config["fallbacks"],
            temperature=llm_config["temperature"],
            timeout=config.llm_timeout,
        )

    async def generate(self, prompt: str) -> str:
        messages = [{"role": "user", "content": prompt}]
        try:
            request = acompletion(
                model=self.model,
                messages=messages,
                fallbacks=self.fallbacks,
                temperature=self.temperature,
                response_format={"type": "json_object"},
            )
            if self._timeout > 0:
                response = await asyncio.wait_for(request, timeout=self._timeout)
            else:
                response = await request
        except TimeoutError as e:
            raise GenerationProviderError(
                f"Completion timed out after {self._timeout}s ({self.model})"
            ) from e
        except Exception as e:
            logger.debug(f"Completion failed ({self.model}): {e}")
            raise GenerationProviderError(f"Completion failed: {e}") from e

        try:
            content = response.choices[0].message.content
        except (AttributeError, IndexError) as e:
            raise GenerationProviderError(f"Empty completion from {self.model}") from e
        return str(content or "")
