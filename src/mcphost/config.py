"""
Configuration management for mcphost.

This module provides:

- ``Settings``: operator knobs loaded from ``MCPHOST_*`` environment
  variables (and an optional ``.env`` file), later overridden by CLI flags.
- ``McpConfig``: the persisted tool-server document
  ``{"mcpServers": {<name>: <server config>}}`` whose entries are a closed
  union of ``StdioServerConfig`` and ``SseServerConfig``.
- Loaders for the server document and the system prompt file.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Discriminator, Field, Tag, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

TRANSPORT_STDIO = "stdio"
TRANSPORT_SSE = "sse"

DEFAULT_CONFIG_FILENAME = ".mcp.json"


class ConfigError(Exception):
    """Raised when configuration is missing, unreadable or malformed."""


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Model selection, "provider:model"
    model: str = "anthropic:claude-3-5-sonnet-latest"

    # Files
    config_file: Path | None = None
    system_prompt_file: Path | None = None

    # Conversation
    message_window: int = 10
    max_tool_rounds: int = 25

    # Retry policy for transient provider errors
    initial_backoff: float = 1.0
    max_backoff: float = 30.0
    max_retries: int = 5

    # Timeouts (seconds)
    model_timeout: float = 300.0
    tool_timeout: float = 120.0
    connect_timeout: float = 30.0
    list_tools_timeout: float = 10.0

    # Provider endpoints and credentials
    openai_base_url: str | None = None
    anthropic_base_url: str | None = None
    ollama_base_url: str = "http://localhost:11434/v1"
    openai_api_key: str | None = None
    anthropic_api_key: str | None = None
    google_api_key: str | None = None

    # Logging
    debug: bool = False
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_prefix="MCPHOST_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


def get_settings() -> Settings:
    """Get the application settings instance."""
    return Settings()


# ---------------------------------------------------------------------------
# Tool-server configuration
# ---------------------------------------------------------------------------


class StdioServerConfig(BaseModel):
    """A tool server launched as a local subprocess speaking over stdio."""

    model_config = ConfigDict(extra="ignore")

    transport: Literal["stdio"] = TRANSPORT_STDIO
    command: str = Field(..., min_length=1)
    args: list[str] = Field(default_factory=list)
    env: dict[str, str] = Field(default_factory=dict)


class SseServerConfig(BaseModel):
    """A remote tool server reached over HTTP server-sent events."""

    model_config = ConfigDict(extra="ignore")

    transport: Literal["sse"] = TRANSPORT_SSE
    url: str = Field(..., min_length=1)
    headers: list[str] = Field(default_factory=list)

    def header_map(self) -> dict[str, str]:
        """Parse ``"Name: value"`` header strings into a dict.

        Entries without a colon are ignored.
        """
        parsed: dict[str, str] = {}
        for header in self.headers:
            key, sep, value = header.partition(":")
            if sep:
                parsed[key.strip()] = value.strip()
        return parsed

    def header_names(self) -> list[str]:
        return list(self.header_map())


def _server_transport(value: Any) -> str:
    if isinstance(value, dict):
        transport = value.get("transport")
        if transport:
            return str(transport)
        return TRANSPORT_SSE if value.get("url") else TRANSPORT_STDIO
    return getattr(value, "transport", TRANSPORT_STDIO)


ServerConfig = Annotated[
    Union[
        Annotated[StdioServerConfig, Tag(TRANSPORT_STDIO)],
        Annotated[SseServerConfig, Tag(TRANSPORT_SSE)],
    ],
    Discriminator(_server_transport),
]


class McpConfig(BaseModel):
    """The persisted ``{"mcpServers": {...}}`` document."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    servers: dict[str, ServerConfig] = Field(default_factory=dict, alias="mcpServers")

    def to_json(self) -> str:
        return json.dumps(
            self.model_dump(by_alias=True, exclude_defaults=False), indent=2
        )


def default_config_path() -> Path:
    """Return ``~/.mcp.json``."""
    return Path.home() / DEFAULT_CONFIG_FILENAME


def load_mcp_config(path: Path | None = None) -> McpConfig:
    """Load the tool-server document, creating an empty one if absent.

    Args:
        path: Location of the document. Defaults to ``~/.mcp.json``.

    Returns:
        The validated ``McpConfig``.

    Raises:
        ConfigError: If the file cannot be read, written or validated.
    """
    config_path = path or default_config_path()

    if not config_path.exists():
        config = McpConfig()
        try:
            config_path.write_text(config.to_json(), encoding="utf-8")
        except OSError as exc:
            raise ConfigError(f"Could not create default config {config_path}: {exc}") from exc
        logger.info("Created default config file at %s", config_path)
        return config

    try:
        raw = config_path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"Could not read config file {config_path}: {exc}") from exc

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Config file {config_path} is not valid JSON: {exc}") from exc

    if not isinstance(data, dict):
        raise ConfigError(f"Config file {config_path} must contain a JSON object")

    try:
        return McpConfig.model_validate(data)
    except ValidationError as exc:
        raise ConfigError(f"Invalid server configuration in {config_path}: {exc}") from exc


def load_system_prompt(path: Path | None) -> str:
    """Read ``systemPrompt`` from a JSON file; no path means no prompt.

    Raises:
        ConfigError: If the file cannot be read or parsed.
    """
    if path is None:
        return ""
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise ConfigError(f"Could not read system prompt file {path}: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigError(f"System prompt file {path} is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"System prompt file {path} must contain a JSON object")
    prompt = data.get("systemPrompt", "")
    if not isinstance(prompt, str):
        raise ConfigError(f"'systemPrompt' in {path} must be a string")
    return prompt
