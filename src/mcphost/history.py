"""
Conversation history model for mcphost.

A conversation is an ordered list of ``Message`` objects. Each message holds
an ordered list of content blocks: plain text, a tool-use request emitted by
the model, or the result of a tool-use request fed back to the model.

``prune_history`` bounds the history to a window of recent messages while
keeping tool-use / tool-result pairs consistent: a request whose result fell
out of the window (or vice versa) is dropped together with its partner so no
backend ever sees a dangling tool reference.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Union

logger = logging.getLogger(__name__)

ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"
ROLE_TOOL = "tool"
ROLE_SYSTEM = "system"


@dataclass(frozen=True)
class TextBlock:
    """Plain text content."""

    text: str
    type: str = field(default="text", init=False)


@dataclass(frozen=True)
class ToolUseBlock:
    """A request from the model to invoke a namespaced tool.

    Attributes:
        id: Caller-assigned ID used to correlate the matching result.
        name: Namespaced tool name (``server__tool``).
        input: Parsed tool arguments.
    """

    id: str
    name: str
    input: dict[str, Any] = field(default_factory=dict)
    type: str = field(default="tool_use", init=False)


@dataclass(frozen=True)
class ToolResultBlock:
    """The outcome of a prior ``ToolUseBlock``.

    Attributes:
        tool_use_id: ID of the ``ToolUseBlock`` this result answers.
        content: The tool's structured output, one JSON-compatible dict per
            content item (``{"type": "text", "text": ...}`` and friends).
        text: Convenience summary: the trimmed text items joined by spaces.
        is_error: ``True`` when the content describes a failed invocation.
    """

    tool_use_id: str
    content: list[dict[str, Any]] = field(default_factory=list)
    text: str = ""
    is_error: bool = False
    type: str = field(default="tool_result", init=False)


ContentBlock = Union[TextBlock, ToolUseBlock, ToolResultBlock]


@dataclass
class Message:
    """One turn in the conversation."""

    role: str
    content: list[ContentBlock] = field(default_factory=list)

    @property
    def text(self) -> str:
        """Concatenated text of all ``TextBlock`` items."""
        return "".join(b.text for b in self.content if isinstance(b, TextBlock))

    @property
    def tool_uses(self) -> list[ToolUseBlock]:
        return [b for b in self.content if isinstance(b, ToolUseBlock)]

    @property
    def tool_results(self) -> list[ToolResultBlock]:
        return [b for b in self.content if isinstance(b, ToolResultBlock)]


def text_message(role: str, text: str) -> Message:
    """Build a message holding a single text block."""
    return Message(role=role, content=[TextBlock(text)])


def answered_tool_use_ids(history: list[Message]) -> set[str]:
    """Return the ids of every tool_use that has a tool_result in *history*."""
    return {b.tool_use_id for message in history for b in message.tool_results}


def summarize_tool_content(content: list[dict[str, Any]]) -> str:
    """Join the trimmed text items of a tool output into one string."""
    parts = [
        str(item.get("text", "")).strip()
        for item in content
        if item.get("type") == "text"
    ]
    return " ".join(p for p in parts if p).strip()


def prune_history(history: list[Message], window: int) -> list[Message]:
    """Return at most the last *window* messages with tool pairs intact.

    The function is pure: *history* is never mutated, and messages whose
    content changes are returned as new ``Message`` objects.

    Steps:
        1. If ``len(history) <= window`` the history is returned unchanged.
        2. Only the last *window* messages are considered.
        3. ``tool_use`` ids and ``tool_result`` references are collected from
           that slice.
        4. ``tool_use`` blocks without a kept result, and ``tool_result``
           blocks without a kept request, are dropped.
        5. Assistant messages left without blocks are dropped. Other messages
           are kept when they retain a block or originally contained text.

    Args:
        history: The full conversation history.
        window: Maximum number of messages to retain.

    Returns:
        The pruned history.
    """
    if len(history) <= window:
        return history

    kept = history[-window:] if window > 0 else []

    tool_use_ids: set[str] = set()
    tool_result_ids: set[str] = set()
    for message in kept:
        for block in message.content:
            if isinstance(block, ToolUseBlock):
                tool_use_ids.add(block.id)
            elif isinstance(block, ToolResultBlock):
                tool_result_ids.add(block.tool_use_id)

    pruned: list[Message] = []
    for message in kept:
        blocks: list[ContentBlock] = []
        for block in message.content:
            if isinstance(block, ToolUseBlock):
                if block.id not in tool_result_ids:
                    continue
            elif isinstance(block, ToolResultBlock):
                if block.tool_use_id not in tool_use_ids:
                    continue
            blocks.append(block)

        if message.role == ROLE_ASSISTANT:
            keep = bool(blocks)
        else:
            had_text = any(isinstance(b, TextBlock) for b in message.content)
            keep = bool(blocks) or had_text

        if keep:
            pruned.append(replace(message, content=blocks))

    logger.debug(
        "Pruned history from %d to %d message(s) (window=%d)",
        len(history),
        len(pruned),
        window,
    )
    return pruned
