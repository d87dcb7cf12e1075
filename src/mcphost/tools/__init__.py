"""
Tool-server access for mcphost.

``ToolRegistry`` owns the connections and resolves namespaced tool names;
``McpToolClient`` is the MCP implementation of the ``ToolClient`` protocol.
"""

from mcphost.tools.registry import (
    MalformedToolNameError,
    ToolClient,
    ToolDispatchError,
    ToolExecutionError,
    ToolOutput,
    ToolRegistry,
    ToolServerConnectionError,
    UnknownToolError,
    namespaced_name,
    parse_tool_name,
)

__all__ = [
    "MalformedToolNameError",
    "ToolClient",
    "ToolDispatchError",
    "ToolExecutionError",
    "ToolOutput",
    "ToolRegistry",
    "ToolServerConnectionError",
    "UnknownToolError",
    "namespaced_name",
    "parse_tool_name",
]
