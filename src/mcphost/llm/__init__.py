"""
mcphost LLM package.

Provider contract (``base``), concrete backends (``anthropic``, ``openai``)
and the startup-time selector (``factory``).
"""

from mcphost.llm.base import (
    AssistantTurn,
    FatalProviderError,
    LLMProvider,
    ProviderError,
    ToolCall,
    ToolDescriptor,
    TransientProviderError,
    UsageStats,
)
from mcphost.llm.factory import create_provider, parse_model_string

__all__ = [
    "AssistantTurn",
    "FatalProviderError",
    "LLMProvider",
    "ProviderError",
    "ToolCall",
    "ToolDescriptor",
    "TransientProviderError",
    "UsageStats",
    "create_provider",
    "parse_model_string",
]
