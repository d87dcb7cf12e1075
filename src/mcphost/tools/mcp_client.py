"""
MCP tool-server client for mcphost.

``McpToolClient`` implements the ``ToolClient`` protocol on top of the
official ``mcp`` SDK, for both transports:

- stdio: the server is launched as a subprocess (``command`` + ``args`` +
  ``env``) and spoken to over its stdin/stdout.
- sse: the server is reached over HTTP server-sent events (``url`` +
  ``headers``).

The SDK's transport and session contexts are bound to the task that enters
them, so each connection runs inside its own task: ``connect()`` starts that
task and waits for the handshake, ``close()`` signals it and waits for the
contexts to unwind.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import AsyncExitStack
from typing import Any, AsyncContextManager

from mcp import ClientSession, StdioServerParameters
from mcp.client.sse import sse_client
from mcp.client.stdio import stdio_client
from mcp.types import Implementation, PaginatedRequestParams
from pydantic import BaseModel

from mcphost import __version__
from mcphost.config import SseServerConfig, StdioServerConfig
from mcphost.llm.base import ToolDescriptor
from mcphost.tools.registry import ToolOutput

logger = logging.getLogger(__name__)

CLIENT_NAME = "mcphost"


def _wire(model: BaseModel) -> dict[str, Any]:
    return model.model_dump(mode="json", by_alias=True, exclude_none=True)


class McpToolClient:
    """A connection to one MCP server.

    Attributes:
        name: The server's configured name.
        config: The server's transport configuration.
    """

    def __init__(self, name: str, config: StdioServerConfig | SseServerConfig) -> None:
        self.name = name
        self.config = config
        self._session: ClientSession | None = None
        self._task: asyncio.Task[None] | None = None
        self._ready: asyncio.Future[None] | None = None
        self._closing = asyncio.Event()
        self._closed = False

    def _transport(self) -> AsyncContextManager[Any]:
        if isinstance(self.config, SseServerConfig):
            return sse_client(self.config.url, headers=self.config.header_map() or None)
        params = StdioServerParameters(
            command=self.config.command,
            args=list(self.config.args),
            env=dict(self.config.env) or None,
        )
        return stdio_client(params)

    async def _run(self) -> None:
        assert self._ready is not None
        try:
            async with AsyncExitStack() as stack:
                read, write = await stack.enter_async_context(self._transport())
                session = await stack.enter_async_context(
                    ClientSession(
                        read,
                        write,
                        client_info=Implementation(name=CLIENT_NAME, version=__version__),
                    )
                )
                await session.initialize()
                self._session = session
                self._ready.set_result(None)
                await self._closing.wait()
        except Exception as exc:
            if not self._ready.done():
                self._ready.set_exception(exc)
            else:
                logger.warning("Connection to server %r ended with error: %s", self.name, exc)
        finally:
            self._session = None
            if not self._ready.done():
                self._ready.cancel()

    async def connect(self) -> None:
        """Start the transport and complete the MCP ``initialize`` handshake.

        On failure (or cancellation) the partially opened transport is torn
        down before the exception propagates.
        """
        if self._task is not None:
            raise RuntimeError(f"Server {self.name!r} is already connected")

        self._ready = asyncio.get_running_loop().create_future()
        self._task = asyncio.create_task(self._run(), name=f"mcp-server-{self.name}")
        try:
            await asyncio.shield(self._ready)
        except BaseException:
            await self.close()
            raise

    def _require_session(self) -> ClientSession:
        if self._session is None:
            raise RuntimeError(f"Server {self.name!r} is not connected")
        return self._session

    async def list_tools(self) -> list[ToolDescriptor]:
        """Return every tool the server advertises, following pagination.

        Results are read in their wire form (camelCase keys).
        """
        session = self._require_session()
        tools: list[ToolDescriptor] = []
        params: PaginatedRequestParams | None = None
        while True:
            page = _wire(await session.list_tools(params=params))
            for tool in page.get("tools", []):
                tools.append(
                    ToolDescriptor(
                        name=tool["name"],
                        description=tool.get("description") or "",
                        input_schema=dict(tool.get("inputSchema") or {}),
                    )
                )
            cursor = page.get("nextCursor")
            if not cursor:
                return tools
            params = PaginatedRequestParams(cursor=cursor)

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> ToolOutput:
        """Invoke *name* and mirror its content items as wire-format dicts."""
        session = self._require_session()
        result = _wire(await session.call_tool(name, arguments=arguments))
        content = list(result.get("content", []))
        logger.debug("Tool %r on server %r returned %s", name, self.name, content)
        return ToolOutput(content=content, is_error=bool(result.get("isError")))

    async def close(self) -> None:
        """Shut the connection down. Subsequent calls are no-ops."""
        if self._task is None or self._closed:
            return
        self._closed = True
        self._closing.set()
        if self._ready is not None and not self._ready.done():
            self._task.cancel()
        await asyncio.wait({self._task})
        if not self._task.cancelled() and self._task.exception() is not None:
            logger.warning(
                "Server %r raised while closing: %s", self.name, self._task.exception()
            )
