"""Unit tests for mcphost.conversation.session.SessionLoop."""

from __future__ import annotations

from typing import Callable
from unittest.mock import AsyncMock, MagicMock

import pytest

from mcphost.config import McpConfig
from mcphost.conversation.engine import ToolRoundLimitError
from mcphost.conversation.session import SessionLoop, read_line
from mcphost.llm.base import FatalProviderError

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _reader(*lines: str) -> Callable[[], str]:
    """Return a blocking reader that yields *lines* then signals EOF."""
    it = iter(lines)

    def read() -> str:
        try:
            return next(it)
        except StopIteration:
            raise EOFError from None

    return read


def _make_engine() -> MagicMock:
    engine = MagicMock()
    engine.handle_user_turn = AsyncMock()
    engine.registry.tools_by_server.return_value = {"calc": []}
    engine.history = ["sentinel-history"]
    return engine


def _make_session(*lines: str, engine: MagicMock | None = None) -> SessionLoop:
    return SessionLoop(
        engine or _make_engine(),
        MagicMock(),
        McpConfig(),
        reader=_reader(*lines),
    )


# ---------------------------------------------------------------------------
# read_line
# ---------------------------------------------------------------------------


@pytest.mark.anyio
async def test_read_line_returns_reader_value() -> None:
    assert await read_line(lambda: "typed text") == "typed text"


@pytest.mark.anyio
async def test_read_line_propagates_eof() -> None:
    with pytest.raises(EOFError):
        await read_line(_reader())


# ---------------------------------------------------------------------------
# Loop behaviour
# ---------------------------------------------------------------------------


@pytest.mark.anyio
async def test_prompts_forwarded_and_blank_lines_ignored() -> None:
    session = _make_session("hello", "   ", "", "  world  ", "/quit")

    await session.run()

    calls = [c.args[0] for c in session.engine.handle_user_turn.await_args_list]
    assert calls == ["hello", "world"]
    session.renderer.show_info.assert_called_with("Goodbye!")


@pytest.mark.anyio
async def test_eof_ends_session() -> None:
    session = _make_session("hello")

    await session.run()

    session.engine.handle_user_turn.assert_awaited_once_with("hello")
    session.renderer.show_info.assert_called_once_with("\nGoodbye!")


@pytest.mark.anyio
async def test_ctrl_c_at_prompt_ends_session() -> None:
    def interrupted() -> str:
        raise KeyboardInterrupt

    session = SessionLoop(_make_engine(), MagicMock(), McpConfig(), reader=interrupted)

    await session.run()

    session.engine.handle_user_turn.assert_not_awaited()


@pytest.mark.anyio
async def test_provider_error_reported_and_loop_continues() -> None:
    engine = _make_engine()
    engine.handle_user_turn.side_effect = [FatalProviderError("backend down"), None]
    session = _make_session("first", "second", engine=engine)

    await session.run()

    assert engine.handle_user_turn.await_count == 2
    session.renderer.show_error.assert_called_once_with("Error: backend down")


@pytest.mark.anyio
async def test_round_limit_reported_and_loop_continues() -> None:
    engine = _make_engine()
    engine.handle_user_turn.side_effect = [ToolRoundLimitError("too many rounds"), None]
    session = _make_session("first", "second", engine=engine)

    await session.run()

    assert engine.handle_user_turn.await_count == 2
    session.renderer.show_error.assert_called_once_with("Error: too many rounds")


@pytest.mark.anyio
async def test_commands_bypass_engine() -> None:
    session = _make_session("/help", "/tools", "/history")

    await session.run()

    session.engine.handle_user_turn.assert_not_awaited()
    session.renderer.show_help.assert_called_once()


# ---------------------------------------------------------------------------
# handle_command
# ---------------------------------------------------------------------------


class TestHandleCommand:
    def test_help(self) -> None:
        session = _make_session()
        assert session.handle_command("/help") is True
        session.renderer.show_help.assert_called_once()

    def test_tools_shows_catalogue_by_server(self) -> None:
        session = _make_session()
        session.handle_command("/tools")
        session.renderer.show_tools.assert_called_once_with({"calc": []})

    def test_servers_shows_raw_config(self) -> None:
        session = _make_session()
        session.handle_command("/servers")
        session.renderer.show_servers.assert_called_once_with(session.server_config)

    def test_history(self) -> None:
        session = _make_session()
        session.handle_command("/history")
        session.renderer.show_history.assert_called_once_with(["sentinel-history"])

    def test_quit_ends_session(self) -> None:
        session = _make_session()
        assert session.handle_command("/quit") is False

    def test_case_and_whitespace_insensitive(self) -> None:
        session = _make_session()
        assert session.handle_command("  /HeLp  ") is True
        session.renderer.show_help.assert_called_once()
        assert session.handle_command("/QUIT") is False

    def test_unknown_command(self) -> None:
        session = _make_session()
        assert session.handle_command("/bogus") is True
        session.renderer.show_error.assert_called_once_with("Unknown command: /bogus")
        session.renderer.show_info.assert_called_once_with(
            "Type /help to see available commands"
        )
