"""
Tool registry for mcphost.

Provides ``ToolRegistry``, which owns the live connection to every tool
server and maps namespaced tool names (``<server>__<tool>``) back to the
client that can execute them.

Typical usage::

    from mcphost.tools.mcp_client import McpToolClient
    from mcphost.tools.registry import ToolRegistry

    registry = ToolRegistry(call_timeout=120.0)
    await registry.connect_all(
        {name: McpToolClient(name, cfg) for name, cfg in config.servers.items()}
    )
    await registry.load_tools()
    try:
        output = await registry.invoke("weather__get_forecast", {"city": "Oslo"})
    finally:
        await registry.close()

Connection setup is all-or-nothing: if any server fails to connect, every
connection opened so far is closed before the error propagates.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Mapping, Protocol, runtime_checkable

from mcphost.history import summarize_tool_content
from mcphost.llm.base import ToolDescriptor

logger = logging.getLogger(__name__)

TOOL_NAME_SEPARATOR = "__"


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ToolServerConnectionError(Exception):
    """Raised when a tool server fails to connect or complete its handshake.

    Attributes:
        server_name: The configured name of the failing server.
    """

    def __init__(self, server_name: str, message: str) -> None:
        super().__init__(f"Failed to connect to tool server {server_name!r}: {message}")
        self.server_name = server_name


class ToolDispatchError(Exception):
    """Base exception for failures while dispatching a single tool call."""


class MalformedToolNameError(ToolDispatchError):
    """Raised when a tool name is not of the form ``server__tool``."""


class UnknownToolError(ToolDispatchError):
    """Raised when a tool name refers to a server that is not registered."""


class ToolExecutionError(ToolDispatchError):
    """Raised when a registered tool server fails to execute a call."""


# ---------------------------------------------------------------------------
# Data types
# ---------------------------------------------------------------------------


@dataclass
class ToolOutput:
    """The structured result returned by a tool server.

    Attributes:
        content: One JSON-compatible dict per content item.
        is_error: ``True`` when the server flagged the result as an error.
    """

    content: list[dict[str, Any]] = field(default_factory=list)
    is_error: bool = False

    @property
    def text(self) -> str:
        """The trimmed text items joined into one summary string."""
        return summarize_tool_content(self.content)


@runtime_checkable
class ToolClient(Protocol):
    """A connection to one tool server."""

    async def connect(self) -> None:
        """Open the connection and complete the protocol handshake."""
        ...

    async def list_tools(self) -> list[ToolDescriptor]:
        """Return the server's tools with their un-namespaced names."""
        ...

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> ToolOutput:
        """Invoke a tool by its un-namespaced name."""
        ...

    async def close(self) -> None:
        """Close the connection. Must be safe to call more than once."""
        ...


def namespaced_name(server_name: str, tool_name: str) -> str:
    """Return ``<server>__<tool>``."""
    return f"{server_name}{TOOL_NAME_SEPARATOR}{tool_name}"


def parse_tool_name(name: str) -> tuple[str, str]:
    """Split a namespaced tool name on the first ``__``.

    Raises:
        MalformedToolNameError: If there is no separator or either part is
            empty.
    """
    server_name, sep, tool_name = name.partition(TOOL_NAME_SEPARATOR)
    if not sep or not server_name or not tool_name:
        raise MalformedToolNameError(f"Invalid tool name: {name!r}")
    return server_name, tool_name


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class ToolRegistry:
    """Registry mapping server names to connected clients and their tools.

    The connection map is written only during startup (``register`` /
    ``connect_all``) and teardown (``close``); in between it is read-only.

    Attributes:
        connect_timeout: Seconds allowed for each connection handshake.
        list_timeout: Seconds allowed for each server's tool listing.
        call_timeout: Seconds allowed per tool invocation. ``None`` disables
            the timeout.
    """

    def __init__(
        self,
        connect_timeout: float | None = 30.0,
        list_timeout: float | None = 10.0,
        call_timeout: float | None = 120.0,
    ) -> None:
        self.connect_timeout = connect_timeout
        self.list_timeout = list_timeout
        self.call_timeout = call_timeout
        self._clients: dict[str, ToolClient] = {}
        self._tools: dict[str, list[ToolDescriptor]] = {}

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    async def register(self, server_name: str, client: ToolClient) -> None:
        """Connect *client* and register it under *server_name*.

        Raises:
            ValueError: If the name is already registered or contains ``__``.
            ToolServerConnectionError: If the connection or handshake fails.
        """
        if server_name in self._clients:
            raise ValueError(f"Tool server {server_name!r} is already registered.")
        if TOOL_NAME_SEPARATOR in server_name or not server_name:
            raise ValueError(
                f"Invalid tool server name {server_name!r}; names must be non-empty "
                f"and must not contain {TOOL_NAME_SEPARATOR!r}"
            )

        logger.info("Initializing tool server %r...", server_name)
        try:
            await asyncio.wait_for(client.connect(), timeout=self.connect_timeout)
        except asyncio.TimeoutError as exc:
            raise ToolServerConnectionError(
                server_name, f"handshake timed out after {self.connect_timeout}s"
            ) from exc
        except Exception as exc:
            raise ToolServerConnectionError(server_name, str(exc) or type(exc).__name__) from exc

        self._clients[server_name] = client
        logger.info("Tool server connected: %r", server_name)

    async def connect_all(self, clients: Mapping[str, ToolClient]) -> None:
        """Connect every client concurrently; all succeed or none stay open.

        Raises:
            ToolServerConnectionError: For the first server (in configuration
                order) that failed. Every connection that did succeed has been
                closed by then.
        """
        items = list(clients.items())
        try:
            results = await asyncio.gather(
                *(self.register(name, client) for name, client in items),
                return_exceptions=True,
            )
        except BaseException:
            await self.close()
            raise

        failures = [
            (name, result)
            for (name, _client), result in zip(items, results)
            if isinstance(result, BaseException)
        ]
        if not failures:
            return

        for name, exc in failures:
            logger.error("Tool server %r failed to start: %s", name, exc)
        await self.close()

        first = failures[0][1]
        if isinstance(first, ToolServerConnectionError):
            raise first
        raise ToolServerConnectionError(failures[0][0], str(first)) from first

    async def load_tools(self) -> list[ToolDescriptor]:
        """Query every connected server for its tools and namespace them.

        A server whose listing fails is logged and contributes no tools.

        Returns:
            The full catalogue, grouped by server in registration order.
        """
        self._tools = {}
        for server_name, client in self._clients.items():
            try:
                remote_tools = await asyncio.wait_for(
                    client.list_tools(), timeout=self.list_timeout
                )
            except Exception as exc:
                logger.error(
                    "Failed to list tools for server %r: %s",
                    server_name,
                    exc or type(exc).__name__,
                )
                continue

            self._tools[server_name] = [
                ToolDescriptor(
                    name=namespaced_name(server_name, tool.name),
                    description=tool.description,
                    input_schema=dict(tool.input_schema),
                )
                for tool in remote_tools
            ]
            logger.info(
                "Loaded %d tool(s) from server %r", len(remote_tools), server_name
            )
        return self.get_tools()

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def get_tools(self) -> list[ToolDescriptor]:
        """Return the namespaced catalogue offered to the model."""
        return [tool for tools in self._tools.values() for tool in tools]

    def tools_by_server(self) -> dict[str, list[ToolDescriptor]]:
        """Return the catalogue grouped by server name."""
        return {name: list(self._tools.get(name, [])) for name in self._clients}

    @property
    def server_names(self) -> list[str]:
        return list(self._clients)

    def __len__(self) -> int:
        """Return the number of connected servers."""
        return len(self._clients)

    def __contains__(self, server_name: str) -> bool:
        """Return True if *server_name* is a connected server."""
        return server_name in self._clients

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def resolve(self, name: str) -> tuple[str, str, ToolClient]:
        """Resolve a namespaced tool name to ``(server, tool, client)``.

        Raises:
            MalformedToolNameError: If *name* is not ``server__tool``.
            UnknownToolError: If the server is not registered.
        """
        server_name, tool_name = parse_tool_name(name)
        client = self._clients.get(server_name)
        if client is None:
            raise UnknownToolError(f"Server not found: {server_name!r}")
        return server_name, tool_name, client

    async def invoke(self, name: str, arguments: dict[str, Any]) -> ToolOutput:
        """Invoke a namespaced tool with the configured timeout.

        Raises:
            MalformedToolNameError: If *name* is not ``server__tool``.
            UnknownToolError: If the server is not registered.
            ToolExecutionError: If the server fails or the call times out.
        """
        server_name, tool_name, client = self.resolve(name)
        logger.debug("Dispatching tool %r on server %r: %s", tool_name, server_name, arguments)

        try:
            if self.call_timeout is not None:
                return await asyncio.wait_for(
                    client.call_tool(tool_name, arguments), timeout=self.call_timeout
                )
            return await client.call_tool(tool_name, arguments)
        except asyncio.TimeoutError as exc:
            raise ToolExecutionError(
                f"Tool {tool_name!r} timed out after {self.call_timeout}s"
            ) from exc
        except Exception as exc:
            raise ToolExecutionError(str(exc) or type(exc).__name__) from exc

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    async def close(self) -> None:
        """Close every open connection exactly once. Safe to call repeatedly."""
        while self._clients:
            server_name, client = self._clients.popitem()
            try:
                await client.close()
            except Exception as exc:
                logger.error("Failed to close tool server %r: %s", server_name, exc)
            else:
                logger.info("Tool server closed: %r", server_name)
        self._tools = {}
