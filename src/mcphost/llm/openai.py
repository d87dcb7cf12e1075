"""
OpenAI-compatible provider for mcphost.

``OpenAICompatibleProvider`` uses ``openai.AsyncOpenAI`` which supports any
OpenAI-compatible base URL, so the same class serves three backends:

- OpenAI (``https://api.openai.com/v1``)
- Ollama (``http://localhost:11434/v1``)
- Google Gemini (``https://generativelanguage.googleapis.com/v1beta/openai/``)
"""

from __future__ import annotations

import json
import logging
from typing import Any

from openai import APIConnectionError, APIStatusError, AsyncOpenAI, RateLimitError

from mcphost.history import (
    ROLE_ASSISTANT,
    ROLE_SYSTEM,
    ROLE_TOOL,
    Message,
    ToolResultBlock,
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

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/openai/"


def _tool_result_text(block: ToolResultBlock) -> str:
    if block.text:
        return block.text
    return json.dumps(block.content)


def history_to_openai(
    history: list[Message], system_prompt: str = ""
) -> list[dict[str, Any]]:
    """Convert mcphost history into OpenAI chat-completion messages.

    Messages that carry no content for the backend are skipped, as are
    tool calls that never received a result.
    """
    messages: list[dict[str, Any]] = []
    if system_prompt:
        messages.append({"role": "system", "content": system_prompt})

    answered = answered_tool_use_ids(history)

    for message in history:
        if message.role == ROLE_TOOL:
            for block in message.tool_results:
                messages.append(
                    {
                        "role": "tool",
                        "tool_call_id": block.tool_use_id,
                        "content": _tool_result_text(block),
                    }
                )
            continue

        if message.role == ROLE_ASSISTANT:
            raw: dict[str, Any] = {"role": "assistant", "content": message.text or None}
            tool_uses = [tu for tu in message.tool_uses if tu.id in answered]
            if tool_uses:
                raw["tool_calls"] = [
                    {
                        "id": tu.id,
                        "type": "function",
                        "function": {"name": tu.name, "arguments": json.dumps(tu.input)},
                    }
                    for tu in tool_uses
                ]
            if raw["content"] is None and not tool_uses:
                continue
            messages.append(raw)
            continue

        text = message.text
        if not text:
            continue
        role = "system" if message.role == ROLE_SYSTEM else "user"
        messages.append({"role": role, "content": text})

    return messages


class OpenAICompatibleProvider:
    """LLM provider backed by any OpenAI-compatible endpoint.

    Attributes:
        name: Backend label (``"openai"``, ``"ollama"`` or ``"google"``).
        model: The model identifier.
        base_url: The API base URL, or ``None`` for the SDK default.
        system_prompt: Instruction text sent with every call.
    """

    def __init__(
        self,
        model: str,
        api_key: str,
        base_url: str | None = None,
        system_prompt: str = "",
        name: str = "openai",
        max_tokens: int | None = None,
    ) -> None:
        self.name = name
        self.model = model
        self.base_url = base_url
        self.system_prompt = system_prompt
        self.max_tokens = max_tokens
        self._client = AsyncOpenAI(base_url=base_url, api_key=api_key)

    async def create_message(
        self,
        history: list[Message],
        tools: list[ToolDescriptor],
    ) -> AssistantTurn:
        """Call the model and return a structured ``AssistantTurn``.

        Raises:
            TransientProviderError: On 429 / overload responses.
            FatalProviderError: For connection failures and other API errors.
        """
        kwargs: dict[str, Any] = {
            "model": self.model,
            "messages": history_to_openai(history, self.system_prompt),
        }
        if tools:
            kwargs["tools"] = [t.to_openai_format() for t in tools]
        if self.max_tokens:
            kwargs["max_tokens"] = self.max_tokens

        logger.debug(
            "%s request: model=%s, messages=%d, tools=%d",
            self.name,
            self.model,
            len(kwargs["messages"]),
            len(tools),
        )

        try:
            response = await self._client.chat.completions.create(**kwargs)
        except RateLimitError as exc:
            raise TransientProviderError(f"Rate limit exceeded: {exc}") from exc
        except APIConnectionError as exc:
            raise FatalProviderError(f"Could not connect to {self.name}: {exc}") from exc
        except APIStatusError as exc:
            if is_transient_status(exc.status_code, str(exc)):
                raise TransientProviderError(
                    f"{self.name} is overloaded (status {exc.status_code}): {exc}"
                ) from exc
            raise FatalProviderError(
                f"{self.name} API returned status {exc.status_code}: {exc}",
                status_code=exc.status_code,
            ) from exc

        if not response.choices:
            raise FatalProviderError(f"{self.name} returned no choices")
        message = response.choices[0].message

        tool_calls: list[ToolCall] = []
        for tc in message.tool_calls or []:
            try:
                args = json.loads(tc.function.arguments or "{}")
            except json.JSONDecodeError:
                logger.warning("Discarding unparsable arguments for tool %r", tc.function.name)
                args = {}
            if not isinstance(args, dict):
                args = {}
            tool_calls.append(ToolCall(id=tc.id, name=tc.function.name, arguments=args))

        usage = UsageStats()
        if response.usage is not None:
            usage = UsageStats(
                input_tokens=response.usage.prompt_tokens or 0,
                output_tokens=response.usage.completion_tokens or 0,
            )

        return AssistantTurn(
            text=message.content or "",
            tool_calls=tool_calls,
            usage=usage,
        )
