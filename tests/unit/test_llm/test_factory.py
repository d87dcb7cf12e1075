"""Unit tests for mcphost.llm.factory (provider selection)."""

from __future__ import annotations

import pytest

from mcphost.config import ConfigError, Settings
from mcphost.llm.anthropic import AnthropicProvider
from mcphost.llm.factory import create_provider, parse_model_string
from mcphost.llm.openai import GEMINI_BASE_URL, OpenAICompatibleProvider


class TestParseModelString:
    def test_splits_on_first_colon(self) -> None:
        assert parse_model_string("ollama:qwen2.5:3b") == ("ollama", "qwen2.5:3b")

    def test_simple(self) -> None:
        assert parse_model_string("openai:gpt-4o") == ("openai", "gpt-4o")

    @pytest.mark.parametrize("value", ["gpt-4o", ":gpt-4o", "openai:", ""])
    def test_malformed(self, value: str) -> None:
        with pytest.raises(ConfigError, match="Invalid model format"):
            parse_model_string(value)


class TestCreateProvider:
    def test_anthropic_with_settings_key(self) -> None:
        provider = create_provider(
            "anthropic:claude-3-5-sonnet-latest",
            Settings(anthropic_api_key="sk-ant"),
            system_prompt="Be helpful.",
        )
        assert isinstance(provider, AnthropicProvider)
        assert provider.model == "claude-3-5-sonnet-latest"
        assert provider.system_prompt == "Be helpful."

    def test_anthropic_key_from_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-env")
        provider = create_provider("anthropic:claude-3-5-haiku-latest", Settings())
        assert provider.name == "anthropic"

    def test_anthropic_missing_key(self) -> None:
        with pytest.raises(ConfigError, match="Anthropic API key not provided"):
            create_provider("anthropic:claude-3-5-sonnet-latest", Settings())

    def test_openai(self) -> None:
        provider = create_provider(
            "openai:gpt-4o",
            Settings(openai_api_key="sk-test", openai_base_url="https://proxy.example/v1"),
        )
        assert isinstance(provider, OpenAICompatibleProvider)
        assert provider.name == "openai"
        assert provider.base_url == "https://proxy.example/v1"

    def test_openai_missing_key(self) -> None:
        with pytest.raises(ConfigError, match="OpenAI API key not provided"):
            create_provider("openai:gpt-4o", Settings())

    def test_ollama_needs_no_key(self) -> None:
        provider = create_provider("ollama:qwen2.5:3b", Settings())
        assert provider.name == "ollama"
        assert provider.model == "qwen2.5:3b"
        assert provider.base_url == "http://localhost:11434/v1"

    def test_google_key_fallback_to_gemini_variable(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("GEMINI_API_KEY", "g-key")
        provider = create_provider("google:gemini-2.0-flash", Settings())
        assert provider.name == "google"
        assert provider.base_url == GEMINI_BASE_URL

    def test_google_missing_key(self) -> None:
        with pytest.raises(ConfigError, match="Google API key not provided"):
            create_provider("google:gemini-2.0-flash", Settings())

    def test_unknown_provider(self) -> None:
        with pytest.raises(ConfigError, match="Unsupported provider 'mistral'"):
            create_provider("mistral:large", Settings())
