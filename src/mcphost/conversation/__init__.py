"""Conversation engine and interactive session loop."""

from mcphost.conversation.engine import ConversationEngine, RetryPolicy, ToolRoundLimitError
from mcphost.conversation.events import ConversationOutput, EngineEvent, NullOutput
from mcphost.conversation.session import SessionLoop

__all__ = [
    "ConversationEngine",
    "ConversationOutput",
    "EngineEvent",
    "NullOutput",
    "RetryPolicy",
    "SessionLoop",
    "ToolRoundLimitError",
]
