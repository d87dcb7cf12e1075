"""
Interactive session loop for mcphost.

``SessionLoop`` reads one line at a time from the terminal, routes slash
commands to the renderer, and hands everything else to the
``ConversationEngine``. A failed turn is reported and the loop keeps going;
``/quit``, Ctrl+C or end-of-input end the session.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import TYPE_CHECKING, Any, Callable

from rich.prompt import Prompt

from mcphost.config import McpConfig
from mcphost.conversation.engine import ConversationEngine, ToolRoundLimitError
from mcphost.llm.base import ProviderError

if TYPE_CHECKING:
    from mcphost.ui.console import TerminalRenderer

logger = logging.getLogger(__name__)

COMMAND_HELP = "/help"
COMMAND_TOOLS = "/tools"
COMMAND_SERVERS = "/servers"
COMMAND_HISTORY = "/history"
COMMAND_QUIT = "/quit"


def prompt_user() -> str:
    """Blocking prompt used by the session loop."""
    return Prompt.ask("[bold cyan]Enter your prompt[/bold cyan] [dim](/help for commands)[/dim]")


async def read_line(reader: Callable[[], str]) -> str:
    """Run a blocking *reader* in a daemon thread and await its line.

    A daemon thread is used so a prompt left blocked on stdin never delays
    interpreter shutdown after Ctrl+C.
    """
    loop = asyncio.get_running_loop()
    future: asyncio.Future[str] = loop.create_future()

    def _deliver(result: Any, exc: BaseException | None) -> None:
        if future.done():
            return
        if exc is not None:
            future.set_exception(exc)
        else:
            future.set_result(result)

    def _worker() -> None:
        try:
            line = reader()
        except BaseException as exc:
            loop.call_soon_threadsafe(_deliver, None, exc)
        else:
            loop.call_soon_threadsafe(_deliver, line, None)

    threading.Thread(target=_worker, name="mcphost-prompt", daemon=True).start()
    return await future


class SessionLoop:
    """Drives the read / dispatch / render cycle until the user quits.

    Attributes:
        engine: The conversation engine that runs user turns.
        renderer: Terminal presentation used for command output and errors.
        server_config: The loaded tool-server document, shown by
            ``/servers``.
    """

    def __init__(
        self,
        engine: ConversationEngine,
        renderer: TerminalRenderer,
        server_config: McpConfig,
        reader: Callable[[], str] = prompt_user,
    ) -> None:
        self.engine = engine
        self.renderer = renderer
        self.server_config = server_config
        self._reader = reader

    async def run(self) -> None:
        """Run until ``/quit``, Ctrl+C or end-of-input."""
        while True:
            try:
                line = await read_line(self._reader)
            except (EOFError, KeyboardInterrupt):
                self.renderer.show_info("\nGoodbye!")
                return

            prompt = line.strip()
            if not prompt:
                continue

            if prompt.startswith("/"):
                if not self.handle_command(prompt):
                    return
                continue

            await self.run_turn(prompt)

    async def run_turn(self, prompt: str) -> None:
        """Run one user turn, reporting failures without ending the session."""
        try:
            await self.engine.handle_user_turn(prompt)
        except ProviderError as exc:
            logger.error("Model call failed: %s", exc)
            self.renderer.show_error(f"Error: {exc}")
        except ToolRoundLimitError as exc:
            logger.error("Turn aborted: %s", exc)
            self.renderer.show_error(f"Error: {exc}")

    def handle_command(self, command: str) -> bool:
        """Execute a slash command.

        Returns:
            ``False`` when the session should end, ``True`` otherwise.
        """
        command = command.strip().lower()

        if command == COMMAND_HELP:
            self.renderer.show_help()
        elif command == COMMAND_TOOLS:
            self.renderer.show_tools(self.engine.registry.tools_by_server())
        elif command == COMMAND_SERVERS:
            self.renderer.show_servers(self.server_config)
        elif command == COMMAND_HISTORY:
            self.renderer.show_history(self.engine.history)
        elif command == COMMAND_QUIT:
            self.renderer.show_info("Goodbye!")
            return False
        else:
            self.renderer.show_error(f"Unknown command: {command}")
            self.renderer.show_info("Type /help to see available commands")
        return True
