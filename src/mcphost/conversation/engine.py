"""
ConversationEngine - the tool-calling turn engine for mcphost.

This module implements the core behaviour of a user turn: calling the model,
dispatching the tool calls it requests through the ``ToolRegistry``, feeding
the results back, and repeating until the model answers without requesting
tools.

``max_tool_rounds`` bounds how many tool rounds a single user turn may
trigger.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from mcphost.conversation.events import (
    MODEL_CALL_FINISHED,
    MODEL_CALL_RETRY,
    MODEL_CALL_STARTED,
    TOOL_CALL_FINISHED,
    TOOL_CALL_STARTED,
    ConversationOutput,
    EngineEvent,
    NullOutput,
)
from mcphost.history import (
    ROLE_ASSISTANT,
    ROLE_TOOL,
    ROLE_USER,
    ContentBlock,
    Message,
    TextBlock,
    ToolResultBlock,
    ToolUseBlock,
    prune_history,
    text_message,
)
from mcphost.llm.base import (
    AssistantTurn,
    FatalProviderError,
    LLMProvider,
    ProviderError,
    ToolCall,
    ToolDescriptor,
    TransientProviderError,
)
from mcphost.tools.registry import (
    MalformedToolNameError,
    ToolExecutionError,
    ToolRegistry,
    UnknownToolError,
)

logger = logging.getLogger(__name__)

Sleeper = Callable[[float], Awaitable[Any]]


class ToolRoundLimitError(Exception):
    """Raised when one user turn requests more tool rounds than allowed."""


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff for transient provider errors.

    Attributes:
        initial_backoff: Delay before the first retry, in seconds.
        max_backoff: Upper bound for any single delay.
        max_retries: Retries allowed after the first attempt.
    """

    initial_backoff: float = 1.0
    max_backoff: float = 30.0
    max_retries: int = 5

    def delay_for(self, retry: int) -> float:
        """Return the delay before retry number *retry* (0-based)."""
        return min(self.initial_backoff * (2 ** retry), self.max_backoff)


class ConversationEngine:
    """Runs user turns against a provider and a tool registry.

    The engine exclusively owns the conversation history. History is pruned
    to ``message_window`` messages before each new user turn and only grows
    by appending during a turn.

    Typical usage::

        engine = ConversationEngine(provider, registry, output=renderer)
        await engine.handle_user_turn("What's the weather in Oslo?")
        ...
        await engine.shutdown()

    Attributes:
        provider: The model backend.
        registry: Connected tool servers.
        output: Presentation collaborator; failures there never abort a turn.
        message_window: Messages kept when pruning before a new turn.
        retry_policy: Backoff policy for transient provider errors.
        max_tool_rounds: Tool rounds allowed per user turn (``None`` for no
            cap).
        model_timeout: Seconds allowed per model call (``None`` for no
            timeout).
    """

    def __init__(
        self,
        provider: LLMProvider,
        registry: ToolRegistry,
        output: ConversationOutput | None = None,
        message_window: int = 10,
        retry_policy: RetryPolicy | None = None,
        max_tool_rounds: int | None = 25,
        model_timeout: float | None = 300.0,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        self.provider = provider
        self.registry = registry
        self.output = output or NullOutput()
        self.message_window = message_window
        self.retry_policy = retry_policy or RetryPolicy()
        self.max_tool_rounds = max_tool_rounds
        self.model_timeout = model_timeout
        self._sleep = sleep
        self._history: list[Message] = []
        self._tools: list[ToolDescriptor] = registry.get_tools()

    # ------------------------------------------------------------------
    # Read accessors
    # ------------------------------------------------------------------

    @property
    def history(self) -> list[Message]:
        """A snapshot of the conversation history."""
        return list(self._history)

    @property
    def tools(self) -> list[ToolDescriptor]:
        """The tool catalogue offered to the model."""
        return list(self._tools)

    # ------------------------------------------------------------------
    # Turn handling
    # ------------------------------------------------------------------

    async def handle_user_turn(self, prompt: str) -> None:
        """Run one user turn to completion.

        Args:
            prompt: The user's text. An empty prompt continues the
                conversation without adding a user message.

        Raises:
            FatalProviderError: If the model call fails, times out, or stays
                overloaded past the retry budget. The session may continue.
            ToolRoundLimitError: If the model keeps requesting tools beyond
                ``max_tool_rounds``.
        """
        if self._history:
            self._history = prune_history(self._history, self.message_window)

        if prompt:
            self._render(self.output.show_user_prompt, prompt)
            self._history.append(text_message(ROLE_USER, prompt))

        turn_start = time.monotonic()
        tool_rounds = 0

        while True:
            turn = await self._create_message()

            if turn.tool_calls and self.max_tool_rounds is not None:
                if tool_rounds >= self.max_tool_rounds:
                    if turn.text:
                        self._render(self.output.show_assistant_text, turn.text)
                    raise ToolRoundLimitError(
                        f"Stopped after {tool_rounds} tool round(s) without a final "
                        f"answer (max_tool_rounds={self.max_tool_rounds})"
                    )

            assistant, results = await self._process_turn(turn)
            self._history.append(assistant)

            if not results:
                logger.info(
                    "Turn complete after %d tool round(s) in %.3fs",
                    tool_rounds,
                    time.monotonic() - turn_start,
                )
                return

            for result in results:
                self._history.append(Message(role=ROLE_TOOL, content=[result]))
            tool_rounds += 1

    async def _create_message(self) -> AssistantTurn:
        """Call the provider, retrying transient failures with backoff."""
        policy = self.retry_policy
        retries = 0

        while True:
            self._emit(MODEL_CALL_STARTED, provider=self.provider.name, model=self.provider.model)
            llm_t0 = time.monotonic()
            try:
                coro = self.provider.create_message(list(self._history), self.tools)
                if self.model_timeout is not None:
                    turn = await asyncio.wait_for(coro, timeout=self.model_timeout)
                else:
                    turn = await coro
            except TransientProviderError as exc:
                self._emit(MODEL_CALL_FINISHED, ok=False, error=str(exc))
                if retries >= policy.max_retries:
                    raise FatalProviderError(
                        f"{self.provider.name} is still overloaded after {retries} "
                        "retries; please try again later"
                    ) from exc
                delay = policy.delay_for(retries)
                logger.warning(
                    "%s overloaded, backing off: attempt=%d backoff=%.1fs",
                    self.provider.name,
                    retries + 1,
                    delay,
                )
                self._emit(MODEL_CALL_RETRY, attempt=retries + 1, delay=delay, error=str(exc))
                await self._sleep(delay)
                retries += 1
                continue
            except asyncio.TimeoutError as exc:
                self._emit(MODEL_CALL_FINISHED, ok=False, error="timeout")
                raise FatalProviderError(
                    f"Model call timed out after {self.model_timeout}s"
                ) from exc
            except ProviderError:
                self._emit(MODEL_CALL_FINISHED, ok=False)
                raise
            except Exception as exc:
                self._emit(MODEL_CALL_FINISHED, ok=False, error=str(exc))
                logger.error("Unexpected provider failure: %s", exc, exc_info=True)
                raise FatalProviderError(f"Model call failed: {exc}") from exc

            usage = turn.usage
            logger.debug(
                "Model call took %.3fs (tool_calls=%d)",
                time.monotonic() - llm_t0,
                len(turn.tool_calls),
            )
            if usage.input_tokens or usage.output_tokens:
                logger.info(
                    "Token usage: input=%d output=%d total=%d",
                    usage.input_tokens,
                    usage.output_tokens,
                    usage.total_tokens,
                )
            self._emit(
                MODEL_CALL_FINISHED,
                ok=True,
                input_tokens=usage.input_tokens,
                output_tokens=usage.output_tokens,
            )
            return turn

    async def _process_turn(
        self, turn: AssistantTurn
    ) -> tuple[Message, list[ToolResultBlock]]:
        """Render the turn's text and dispatch its tool calls in order.

        Returns:
            The assistant message (text, then one ``tool_use`` per call) and
            the tool results produced for it.
        """
        content: list[ContentBlock] = []
        if turn.text:
            self._render(self.output.show_assistant_text, turn.text)
            content.append(TextBlock(turn.text))

        results: list[ToolResultBlock] = []
        for call in turn.tool_calls:
            content.append(ToolUseBlock(id=call.id, name=call.name, input=dict(call.arguments)))
            result = await self._dispatch(call)
            if result is not None:
                results.append(result)

        return Message(role=ROLE_ASSISTANT, content=content), results

    async def _dispatch(self, call: ToolCall) -> ToolResultBlock | None:
        """Execute one tool call and turn its outcome into a tool result.

        Malformed names produce no result. Unknown servers and execution
        failures produce an error result so the model learns about them.
        """
        logger.info("Calling tool %s", call.name)
        self._emit(TOOL_CALL_STARTED, name=call.name, arguments=call.arguments)

        try:
            output = await self.registry.invoke(call.name, dict(call.arguments))
        except MalformedToolNameError as exc:
            self._emit(TOOL_CALL_FINISHED, name=call.name, ok=False, error=str(exc))
            self._render(self.output.show_error, f"Error: {exc}")
            return None
        except (UnknownToolError, ToolExecutionError) as exc:
            message = f"Error calling tool {call.name}: {exc}"
            self._emit(TOOL_CALL_FINISHED, name=call.name, ok=False, error=str(exc))
            self._render(self.output.show_error, message)
            return ToolResultBlock(
                tool_use_id=call.id,
                content=[{"type": "text", "text": message}],
                text=message,
                is_error=True,
            )

        self._emit(TOOL_CALL_FINISHED, name=call.name, ok=not output.is_error)
        result = ToolResultBlock(
            tool_use_id=call.id,
            content=list(output.content),
            text=output.text,
            is_error=output.is_error,
        )
        logger.debug("Tool result block: %s", result)
        return result

    # ------------------------------------------------------------------
    # Output helpers
    # ------------------------------------------------------------------

    def _emit(self, kind: str, **data: Any) -> None:
        self._render(self.output.on_event, EngineEvent(kind=kind, data=data))

    def _render(self, fn: Callable[..., None], *args: Any) -> None:
        try:
            fn(*args)
        except Exception as exc:
            logger.warning("Output collaborator failed: %s", exc, exc_info=True)

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    async def shutdown(self) -> None:
        """Close every tool-server connection. Safe to call repeatedly."""
        await self.registry.close()
