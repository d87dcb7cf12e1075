"""
LLM provider abstractions for mcphost.

Defines the ``LLMProvider`` Protocol so the ``ConversationEngine`` can drive
any backend (Anthropic, OpenAI, Ollama, Gemini) without branching on which
one is active. Concrete providers live in sibling modules and are chosen
once at startup by ``mcphost.llm.factory.create_provider``.

Also provides:
- The provider exception hierarchy (transient vs. fatal).
- ``UsageStats`` for token accounting.
- The data types exchanged with the engine: ``ToolDescriptor``,
  ``ToolCall`` and ``AssistantTurn``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from mcphost.history import Message

# HTTP statuses that indicate a recoverable overload or rate limit.
TRANSIENT_STATUS_CODES = frozenset({429, 503, 529})


# ---------------------------------------------------------------------------
# Custom exception hierarchy
# ---------------------------------------------------------------------------


class ProviderError(Exception):
    """Base exception for all LLM provider errors."""


class TransientProviderError(ProviderError):
    """Raised when the backend reports a recoverable overload or rate limit.

    The engine retries these with exponential backoff.
    """


class FatalProviderError(ProviderError):
    """Raised for every other model-call failure.

    Attributes:
        status_code: HTTP status code from the API, or ``None`` if unavailable.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def is_transient_status(status_code: int | None, message: str = "") -> bool:
    """Return True if an API failure should be retried."""
    if status_code in TRANSIENT_STATUS_CODES:
        return True
    return "overloaded_error" in message


# ---------------------------------------------------------------------------
# Core data types
# ---------------------------------------------------------------------------


@dataclass
class UsageStats:
    """Token usage recorded for a single model call."""

    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass(frozen=True)
class ToolDescriptor:
    """Describes a tool offered to the model.

    Attributes:
        name: The namespaced name (``server__tool``) the model calls.
        description: Human-readable description shown in the model's prompt.
        input_schema: JSON Schema dict describing the tool's arguments.
    """

    name: str
    description: str = ""
    input_schema: dict[str, Any] = field(default_factory=dict)

    def to_openai_format(self) -> dict[str, Any]:
        """Serialise to OpenAI tool definition format."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.input_schema or {"type": "object", "properties": {}},
            },
        }

    def to_anthropic_format(self) -> dict[str, Any]:
        """Serialise to Anthropic tool definition format."""
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.input_schema or {"type": "object", "properties": {}},
        }


@dataclass
class ToolCall:
    """A tool invocation requested by the model.

    Attributes:
        id: Unique call ID returned by the model (used to correlate the result).
        name: Namespaced name of the tool to invoke.
        arguments: Parsed JSON arguments dict.
    """

    id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)


@dataclass
class AssistantTurn:
    """One assistant response produced by a provider.

    Attributes:
        text: Text content of the response (may be empty).
        tool_calls: Requested tool invocations, in the order the model
            emitted them.
        usage: Token counters for the call.
    """

    text: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    usage: UsageStats = field(default_factory=UsageStats)


# ---------------------------------------------------------------------------
# LLMProvider Protocol
# ---------------------------------------------------------------------------


@runtime_checkable
class LLMProvider(Protocol):
    """Protocol for LLM backends used by ConversationEngine.

    A provider is bound to one backend, model and system prompt at
    construction and is never swapped during a session.
    """

    name: str
    model: str

    async def create_message(
        self,
        history: list[Message],
        tools: list[ToolDescriptor],
    ) -> AssistantTurn:
        """Send the conversation to the model and return its next turn.

        Args:
            history: The full (pruned) conversation history.
            tools: The tool catalogue offered to the model.

        Returns:
            The model's ``AssistantTurn``.

        Raises:
            TransientProviderError: On a recoverable overload / rate limit.
            FatalProviderError: For every other failure.
        """
        ...
