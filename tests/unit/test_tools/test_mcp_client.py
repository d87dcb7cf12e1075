"""Unit tests for mcphost.tools.mcp_client.McpToolClient.

The MCP SDK's transports and ``ClientSession`` are replaced with in-memory
fakes so the connection task lifecycle can be exercised without spawning a
server.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any
from unittest.mock import AsyncMock

import pytest
from mcp.types import CallToolResult, ImageContent, ListToolsResult, TextContent, Tool

from mcphost import __version__
from mcphost.config import SseServerConfig, StdioServerConfig
from mcphost.tools import mcp_client
from mcphost.tools.mcp_client import McpToolClient
from mcphost.tools.registry import ToolRegistry

# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class _FakeSession:
    instances: list["_FakeSession"] = []
    initialize_error: BaseException | None = None

    def __init__(self, read: Any, write: Any, client_info: Any = None) -> None:
        self.streams = (read, write)
        self.client_info = client_info
        self.exited = False
        self.initialize = AsyncMock(side_effect=_FakeSession.initialize_error)
        self.list_tools = AsyncMock(
            side_effect=[
                ListToolsResult(
                    tools=[
                        Tool(
                            name="add",
                            description="Add numbers",
                            inputSchema={"type": "object", "properties": {"a": {"type": "number"}}},
                        )
                    ],
                    nextCursor="page-2",
                ),
                ListToolsResult(
                    tools=[Tool(name="noop", inputSchema={"type": "object"})],
                ),
            ]
        )
        self.call_tool = AsyncMock(
            return_value=CallToolResult(
                content=[
                    TextContent(type="text", text="3"),
                    ImageContent(type="image", data="AAAA", mimeType="image/jpeg"),
                ],
                isError=False,
            )
        )
        _FakeSession.instances.append(self)

    async def __aenter__(self) -> "_FakeSession":
        return self

    async def __aexit__(self, *exc_info: Any) -> bool:
        self.exited = True
        return False


@pytest.fixture
def transport_calls(monkeypatch: pytest.MonkeyPatch) -> dict[str, Any]:
    calls: dict[str, Any] = {"entered": 0, "exited": 0, "stdio": [], "sse": []}

    @asynccontextmanager
    async def _stdio(params: Any):
        calls["stdio"].append(params)
        calls["entered"] += 1
        try:
            yield ("read-stream", "write-stream")
        finally:
            calls["exited"] += 1

    @asynccontextmanager
    async def _sse(url: str, headers: Any = None):
        calls["sse"].append((url, headers))
        calls["entered"] += 1
        try:
            yield ("read-stream", "write-stream")
        finally:
            calls["exited"] += 1

    _FakeSession.instances = []
    _FakeSession.initialize_error = None
    monkeypatch.setattr(mcp_client, "stdio_client", _stdio)
    monkeypatch.setattr(mcp_client, "sse_client", _sse)
    monkeypatch.setattr(mcp_client, "ClientSession", _FakeSession)
    return calls


_STDIO = StdioServerConfig(command="uvx", args=["mcp-server-calc"], env={"TOKEN": "x"})


# ---------------------------------------------------------------------------
# Connection lifecycle
# ---------------------------------------------------------------------------


@pytest.mark.anyio
async def test_connect_runs_handshake(transport_calls: dict[str, Any]) -> None:
    client = McpToolClient("calc", _STDIO)

    await client.connect()

    session = _FakeSession.instances[0]
    session.initialize.assert_awaited_once()
    assert session.client_info.name == "mcphost"
    assert session.client_info.version == __version__
    params = transport_calls["stdio"][0]
    assert params.command == "uvx"
    assert params.args == ["mcp-server-calc"]
    assert params.env == {"TOKEN": "x"}

    await client.close()


@pytest.mark.anyio
async def test_sse_transport_gets_parsed_headers(transport_calls: dict[str, Any]) -> None:
    config = SseServerConfig(url="https://tools.example/sse", headers=["Authorization: Bearer t"])
    client = McpToolClient("remote", config)

    await client.connect()
    await client.close()

    assert transport_calls["sse"] == [
        ("https://tools.example/sse", {"Authorization": "Bearer t"})
    ]


@pytest.mark.anyio
async def test_close_unwinds_contexts_once(transport_calls: dict[str, Any]) -> None:
    client = McpToolClient("calc", _STDIO)
    await client.connect()

    await client.close()
    await client.close()

    assert transport_calls["entered"] == 1
    assert transport_calls["exited"] == 1
    assert _FakeSession.instances[0].exited is True


@pytest.mark.anyio
async def test_close_without_connect_is_noop(transport_calls: dict[str, Any]) -> None:
    await McpToolClient("calc", _STDIO).close()
    assert transport_calls["entered"] == 0


@pytest.mark.anyio
async def test_handshake_failure_propagates_and_cleans_up(
    transport_calls: dict[str, Any],
) -> None:
    _FakeSession.initialize_error = RuntimeError("protocol mismatch")
    client = McpToolClient("calc", _STDIO)

    with pytest.raises(RuntimeError, match="protocol mismatch"):
        await client.connect()

    assert transport_calls["exited"] == 1


@pytest.mark.anyio
async def test_connect_twice_rejected(transport_calls: dict[str, Any]) -> None:
    client = McpToolClient("calc", _STDIO)
    await client.connect()

    with pytest.raises(RuntimeError, match="already connected"):
        await client.connect()

    await client.close()


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------


@pytest.mark.anyio
async def test_list_tools_follows_pagination(transport_calls: dict[str, Any]) -> None:
    client = McpToolClient("calc", _STDIO)
    await client.connect()

    tools = await client.list_tools()
    await client.close()

    assert [t.name for t in tools] == ["add", "noop"]
    assert tools[0].input_schema["type"] == "object"
    assert tools[0].input_schema["properties"] == {"a": {"type": "number"}}
    assert tools[0].description == "Add numbers"
    assert tools[1].description == ""
    calls = _FakeSession.instances[0].list_tools.await_args_list
    assert calls[0].kwargs["params"] is None
    assert calls[1].kwargs["params"].cursor == "page-2"


@pytest.mark.anyio
async def test_registry_catalogue_built_from_sdk_results(
    transport_calls: dict[str, Any],
) -> None:
    registry = ToolRegistry()
    await registry.connect_all({"calc": McpToolClient("calc", _STDIO)})

    tools = await registry.load_tools()
    await registry.close()

    assert [t.name for t in tools] == ["calc__add", "calc__noop"]


@pytest.mark.anyio
async def test_call_tool_mirrors_content(transport_calls: dict[str, Any]) -> None:
    client = McpToolClient("calc", _STDIO)
    await client.connect()

    output = await client.call_tool("add", {"a": 1, "b": 2})
    await client.close()

    _FakeSession.instances[0].call_tool.assert_awaited_once_with(
        "add", arguments={"a": 1, "b": 2}
    )
    assert output.content[0] == {"type": "text", "text": "3"}
    assert output.content[1] == {"type": "image", "data": "AAAA", "mimeType": "image/jpeg"}
    assert output.text == "3"
    assert output.is_error is False


@pytest.mark.anyio
async def test_call_tool_reports_tool_error(transport_calls: dict[str, Any]) -> None:
    client = McpToolClient("calc", _STDIO)
    await client.connect()
    _FakeSession.instances[0].call_tool.return_value = CallToolResult(
        content=[TextContent(type="text", text="division by zero")],
        isError=True,
    )

    output = await client.call_tool("div", {"a": 1, "b": 0})
    await client.close()

    assert output.is_error is True
    assert output.text == "division by zero"


@pytest.mark.anyio
async def test_calls_require_connection(transport_calls: dict[str, Any]) -> None:
    client = McpToolClient("calc", _STDIO)
    with pytest.raises(RuntimeError, match="not connected"):
        await client.list_tools()
