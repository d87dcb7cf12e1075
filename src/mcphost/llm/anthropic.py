"""Anthropic Claude provider for mcphost."""

from __future__ import annotations

import json
import logging
from typing import Any

from anthropic import APIConnectionError, APIStatusError, AsyncAnthropic, RateLimitError

from mcphost.history import (
    ROLE_ASSISTANT,
    ROLE_SYSTEM,
    ROLE_TOOL,
    Message,
    TextBlock,
    ToolResultBlock,
    ToolUseBlock,
    answered_tool_use_ids,
)
from mcphost.llm.base import (
    AssistantTurn,
    FatalProviderError,
    ToolCall,
    ToolDescriptor,
    TransientProviderError,
    UsageStats,
    is_transient_status,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_TOKENS = 4096


def _result_content(block: ToolResultBlock) -> list[dict[str, Any]]:
    items: list[dict[str, Any]] = []
    for item in block.content:
        kind = item.get("type")
        if kind == "text":
            if item.get("text"):
                items.append({"type": "text", "text": item["text"]})
        elif kind == "image" and item.get("data"):
            items.append(
                {
                    "type": "image",
                    "source": {
                        "type": "base64",
                        "media_type": item.get("mimeType", "image/png"),
                        "data": item["data"],
                    },
                }
            )
        else:
            items.append({"type": "text", "text": json.dumps(item)})
    if not items and block.text:
        items.append({"type": "text", "text": block.text})
    return items


def _block_to_anthropic(block: Any, answered: set[str]) -> dict[str, Any] | None:
    if isinstance(block, TextBlock):
        return {"type": "text", "text": block.text} if block.text else None
    if isinstance(block, ToolUseBlock):
        if block.id not in answered:
            return None
        return {"type": "tool_use", "id": block.id, "name": block.name, "input": block.input}
    if isinstance(block, ToolResultBlock):
        out: dict[str, Any] = {"type": "tool_result", "tool_use_id": block.tool_use_id}
        content = _result_content(block)
        if content:
            out["content"] = content
        if block.is_error:
            out["is_error"] = True
        return out
    return None


def history_to_anthropic(history: list[Message]) -> tuple[str, list[dict[str, Any]]]:
    """Convert mcphost history into Anthropic ``(system, messages)``.

    Tool messages become user turns carrying ``tool_result`` blocks, and
    consecutive turns with the same role are merged. Tool calls that never
    received a result are left out.
    """
    system_parts: list[str] = []
    messages: list[dict[str, Any]] = []
    answered = answered_tool_use_ids(history)

    for message in history:
        if message.role == ROLE_SYSTEM:
            if message.text:
                system_parts.append(message.text)
            continue

        role = "assistant" if message.role == ROLE_ASSISTANT else "user"
        blocks = [b for b in (_block_to_anthropic(b, answered) for b in message.content) if b]
        if message.role == ROLE_TOOL:
            blocks = [b for b in blocks if b["type"] == "tool_result"]
        if not blocks:
            continue

        if messages and messages[-1]["role"] == role:
            messages[-1]["content"].extend(blocks)
        else:
            messages.append({"role": role, "content": blocks})

    _drop_leading_assistant(messages)
    return "\n\n".join(system_parts), messages


def _drop_leading_assistant(messages: list[dict[str, Any]]) -> None:
    """Strip assistant turns from the front so the first message is a user turn.

    Results answering a dropped ``tool_use`` are removed with it.
    """
    while messages and messages[0]["role"] == "assistant":
        dropped = {b["id"] for b in messages.pop(0)["content"] if b["type"] == "tool_use"}
        if not dropped or not messages:
            continue
        first = messages[0]
        first["content"] = [
            b
            for b in first["content"]
            if not (b["type"] == "tool_result" and b["tool_use_id"] in dropped)
        ]
        if not first["content"]:
            messages.pop(0)


class AnthropicProvider:
    """LLM provider backed by the Anthropic Messages API.

    Attributes:
        name: Always ``"anthropic"``.
        model: The model identifier.
        system_prompt: Instruction text sent with every call.
    """

    name = "anthropic"

    def __init__(
        self,
        model: str,
        api_key: str,
        base_url: str | None = None,
        system_prompt: str = "",
        max_tokens: int = DEFAULT_MAX_TOKENS,
    ) -> None:
        self.model = model
        self.base_url = base_url
        self.system_prompt = system_prompt
        self.max_tokens = max_tokens
        self._client = AsyncAnthropic(api_key=api_key, base_url=base_url)

    async def create_message(
        self,
        history: list[Message],
        tools: list[ToolDescriptor],
    ) -> AssistantTurn:
        """Call Claude and return a structured ``AssistantTurn``.

        Raises:
            TransientProviderError: On 429 / ``overloaded_error`` responses.
            FatalProviderError: For connection failures and other API errors.
        """
        history_system, messages = history_to_anthropic(history)
        system = "\n\n".join(p for p in (self.system_prompt, history_system) if p)

        kwargs: dict[str, Any] = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "messages": messages,
        }
        if system:
            kwargs["system"] = system
        if tools:
            kwargs["tools"] = [t.to_anthropic_format() for t in tools]

        logger.debug(
            "anthropic request: model=%s, messages=%d, tools=%d",
            self.model,
            len(messages),
            len(tools),
        )

        try:
            response = await self._client.messages.create(**kwargs)
        except RateLimitError as exc:
            raise TransientProviderError(f"Rate limit exceeded: {exc}") from exc
        except APIConnectionError as exc:
            raise FatalProviderError(f"Could not connect to anthropic: {exc}") from exc
        except APIStatusError as exc:
            if is_transient_status(exc.status_code, str(exc)):
                raise TransientProviderError(
                    f"Claude is overloaded (status {exc.status_code}): {exc}"
                ) from exc
            raise FatalProviderError(
                f"anthropic API returned status {exc.status_code}: {exc}",
                status_code=exc.status_code,
            ) from exc

        text_parts: list[str] = []
        tool_calls: list[ToolCall] = []
        for block in response.content:
            if block.type == "text":
                text_parts.append(block.text)
            elif block.type == "tool_use":
                args = block.input if isinstance(block.input, dict) else {}
                tool_calls.append(ToolCall(id=block.id, name=block.name, arguments=args))

        usage = UsageStats()
        if response.usage is not None:
            usage = UsageStats(
                input_tokens=response.usage.input_tokens or 0,
                output_tokens=response.usage.output_tokens or 0,
            )

        return AssistantTurn(text="".join(text_parts), tool_calls=tool_calls, usage=usage)
