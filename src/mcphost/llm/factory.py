"""
Provider selection for mcphost.

The ``--model`` flag has the form ``provider:model``. It is split on the
first colon only, so ``ollama:qwen2.5:3b`` selects the ``ollama`` backend
with model ``qwen2.5:3b``.
"""

from __future__ import annotations

import logging
import os

from mcphost.config import ConfigError, Settings
from mcphost.llm.anthropic import AnthropicProvider
from mcphost.llm.base import LLMProvider
from mcphost.llm.openai import GEMINI_BASE_URL, OpenAICompatibleProvider

logger = logging.getLogger(__name__)

SUPPORTED_PROVIDERS = ("anthropic", "openai", "ollama", "google")


def parse_model_string(model_string: str) -> tuple[str, str]:
    """Split ``provider:model`` into its two parts.

    Raises:
        ConfigError: If the string has no separator or an empty part.
    """
    provider, sep, model = model_string.partition(":")
    if not sep or not provider or not model:
        raise ConfigError(
            f"Invalid model format {model_string!r}; expected provider:model "
            "(e.g. openai:gpt-4 or ollama:qwen2.5:3b)"
        )
    return provider, model


def _first_set(*values: str | None) -> str | None:
    for value in values:
        if value:
            return value
    return None


def create_provider(
    model_string: str,
    settings: Settings,
    system_prompt: str = "",
) -> LLMProvider:
    """Build the provider selected by *model_string*.

    API keys come from settings first, then from the backend's conventional
    environment variable.

    Raises:
        ConfigError: For malformed model strings, unknown providers or
            missing API keys.
    """
    provider, model = parse_model_string(model_string)

    if provider == "anthropic":
        api_key = _first_set(settings.anthropic_api_key, os.environ.get("ANTHROPIC_API_KEY"))
        if not api_key:
            raise ConfigError(
                "Anthropic API key not provided. Use --anthropic-api-key or set "
                "ANTHROPIC_API_KEY"
            )
        return AnthropicProvider(
            model=model,
            api_key=api_key,
            base_url=settings.anthropic_base_url,
            system_prompt=system_prompt,
        )

    if provider == "openai":
        api_key = _first_set(settings.openai_api_key, os.environ.get("OPENAI_API_KEY"))
        if not api_key:
            raise ConfigError(
                "OpenAI API key not provided. Use --openai-api-key or set OPENAI_API_KEY"
            )
        return OpenAICompatibleProvider(
            model=model,
            api_key=api_key,
            base_url=settings.openai_base_url,
            system_prompt=system_prompt,
            name="openai",
        )

    if provider == "ollama":
        # Ollama ignores the key but the SDK requires one.
        return OpenAICompatibleProvider(
            model=model,
            api_key="ollama",
            base_url=settings.ollama_base_url,
            system_prompt=system_prompt,
            name="ollama",
        )

    if provider == "google":
        api_key = _first_set(
            settings.google_api_key,
            os.environ.get("GOOGLE_API_KEY"),
            os.environ.get("GEMINI_API_KEY"),
        )
        if not api_key:
            raise ConfigError(
                "Google API key not provided. Use --google-api-key or set "
                "GOOGLE_API_KEY / GEMINI_API_KEY"
            )
        return OpenAICompatibleProvider(
            model=model,
            api_key=api_key,
            base_url=GEMINI_BASE_URL,
            system_prompt=system_prompt,
            name="google",
        )

    raise ConfigError(
        f"Unsupported provider {provider!r}; choose one of {', '.join(SUPPORTED_PROVIDERS)}"
    )
