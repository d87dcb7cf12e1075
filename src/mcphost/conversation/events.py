"""
Observability events and the output contract used by ConversationEngine.

The engine never formats anything itself. It hands text and structured
``EngineEvent`` objects to a ``ConversationOutput`` (the terminal renderer in
production, ``NullOutput`` or a mock in tests).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

MODEL_CALL_STARTED = "model_call_started"
MODEL_CALL_FINISHED = "model_call_finished"
MODEL_CALL_RETRY = "model_call_retry"
TOOL_CALL_STARTED = "tool_call_started"
TOOL_CALL_FINISHED = "tool_call_finished"


@dataclass(frozen=True)
class EngineEvent:
    """A structured notification emitted by the engine.

    Attributes:
        kind: One of the ``*_STARTED`` / ``*_FINISHED`` / ``*_RETRY`` constants.
        data: Event-specific details (tool name, usage counters, delay...).
    """

    kind: str
    data: dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class ConversationOutput(Protocol):
    """Presentation collaborator for the conversation engine."""

    def show_user_prompt(self, text: str) -> None: ...

    def show_assistant_text(self, text: str) -> None: ...

    def show_error(self, text: str) -> None: ...

    def on_event(self, event: EngineEvent) -> None: ...


class NullOutput:
    """A ``ConversationOutput`` that discards everything."""

    def show_user_prompt(self, text: str) -> None:
        pass

    def show_assistant_text(self, text: str) -> None:
        pass

    def show_error(self, text: str) -> None:
        pass

    def on_event(self, event: EngineEvent) -> None:
        pass
