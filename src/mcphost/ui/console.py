"""
Terminal presentation for mcphost, built on ``rich``.

``TerminalRenderer`` is the production ``ConversationOutput``: it echoes
prompts, renders assistant text as markdown, shows a spinner while a model
or tool call is in flight, and draws the tables behind the session
commands (``/tools``, ``/servers``, ``/history``, ``/help``).
"""

from __future__ import annotations

import json
import logging

from rich import box
from rich.console import Console
from rich.markdown import Markdown
from rich.markup import escape
from rich.status import Status
from rich.table import Table
from rich.tree import Tree

from mcphost.config import McpConfig, SseServerConfig
from mcphost.conversation.events import (
    MODEL_CALL_FINISHED,
    MODEL_CALL_RETRY,
    MODEL_CALL_STARTED,
    TOOL_CALL_FINISHED,
    TOOL_CALL_STARTED,
    EngineEvent,
)
from mcphost.history import Message, TextBlock, ToolResultBlock, ToolUseBlock
from mcphost.llm.base import ToolDescriptor
from mcphost.tools.registry import TOOL_NAME_SEPARATOR

logger = logging.getLogger(__name__)

REDACTED = "[REDACTED]"

HELP_TEXT = """\
# Available Commands

- **/help**: Show this help message
- **/tools**: List all available tools
- **/servers**: List configured MCP servers
- **/history**: Display conversation history
- **/quit**: Exit the application

You can also press Ctrl+C at any time to quit.

## Available Models

Specify models using the `--model` or `-m` flag:

- **Anthropic Claude**: `anthropic:claude-3-5-sonnet-latest`
- **OpenAI**: `openai:gpt-4o`
- **Ollama models**: `ollama:qwen2.5:3b`
- **Google Gemini**: `google:gemini-2.0-flash`
"""


class RenderError(Exception):
    """Raised when rich fails to render a piece of markdown."""


class TerminalRenderer:
    """Renders conversation output to a rich ``Console``.

    Attributes:
        console: The target console. Tests pass one that records output.
    """

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()
        self._status: Status | None = None

    # ------------------------------------------------------------------
    # Spinner
    # ------------------------------------------------------------------

    def _start_status(self, message: str) -> None:
        self._stop_status()
        self._status = self.console.status(message, spinner="dots")
        self._status.start()

    def _stop_status(self) -> None:
        if self._status is not None:
            self._status.stop()
            self._status = None

    # ------------------------------------------------------------------
    # ConversationOutput
    # ------------------------------------------------------------------

    def render_markdown(self, text: str) -> None:
        """Print *text* as markdown.

        Raises:
            RenderError: If rich cannot parse or render the markdown.
        """
        try:
            self.console.print(Markdown(text))
        except Exception as exc:
            raise RenderError(str(exc)) from exc

    def show_user_prompt(self, text: str) -> None:
        self.console.print(f"[bold cyan]You:[/bold cyan] {escape(text)}")

    def show_assistant_text(self, text: str) -> None:
        """Render the assistant's reply, falling back to plain text."""
        self._stop_status()
        self.console.print("[bold green]Assistant:[/bold green]")
        try:
            self.render_markdown(text)
        except RenderError as exc:
            logger.warning("Markdown rendering failed, printing plain text: %s", exc)
            self.console.print(text, markup=False, highlight=False)
        self.console.print()

    def show_error(self, text: str) -> None:
        self._stop_status()
        self.console.print(f"[bold red]{escape(text)}[/bold red]")

    def show_info(self, text: str) -> None:
        self.console.print(f"[yellow]{escape(text)}[/yellow]")

    def on_event(self, event: EngineEvent) -> None:
        if event.kind == MODEL_CALL_STARTED:
            self._start_status("[cyan]Thinking...[/cyan]")
        elif event.kind == TOOL_CALL_STARTED:
            name = escape(str(event.data.get("name", "")))
            self._start_status(f"[cyan]Running tool {name}...[/cyan]")
        elif event.kind in (MODEL_CALL_FINISHED, TOOL_CALL_FINISHED):
            self._stop_status()
        elif event.kind == MODEL_CALL_RETRY:
            self._stop_status()
            self.show_info(
                f"Model is overloaded, retrying in {event.data.get('delay', 0):.0f}s "
                f"(attempt {event.data.get('attempt', '?')})"
            )

    def close(self) -> None:
        self._stop_status()

    # ------------------------------------------------------------------
    # Session command views
    # ------------------------------------------------------------------

    def show_help(self) -> None:
        self.render_markdown(HELP_TEXT)

    def show_tools(self, tools_by_server: dict[str, list[ToolDescriptor]]) -> None:
        """Show the tool catalogue as a tree, one branch per server."""
        if not tools_by_server:
            self.show_info("No MCP servers connected")
            return

        tree = Tree("[bold]Available Tools[/bold]")
        for server_name, tools in tools_by_server.items():
            branch = tree.add(f"[bold magenta]{escape(server_name)}[/bold magenta]")
            if not tools:
                branch.add("[dim]no tools[/dim]")
            for tool in tools:
                _, _, short_name = tool.name.partition(TOOL_NAME_SEPARATOR)
                label = f"[cyan]{escape(short_name or tool.name)}[/cyan]"
                if tool.description:
                    label += f"\n[dim]{escape(tool.description)}[/dim]"
                branch.add(label)
        self.console.print(tree)

    def show_servers(self, config: McpConfig) -> None:
        """Show configured servers. Header values are never displayed."""
        if not config.servers:
            self.show_info("No servers configured")
            return

        table = Table(title="Configured MCP Servers", box=box.ROUNDED)
        table.add_column("Server", style="magenta")
        table.add_column("Transport")
        table.add_column("Details")

        for name, server in config.servers.items():
            if isinstance(server, SseServerConfig):
                lines = [f"Url: {server.url}"]
                headers = server.header_names()
                if headers:
                    lines.append("Headers:")
                    lines.extend(f"  {header}: {REDACTED}" for header in headers)
            else:
                lines = [f"Command: {server.command}"]
                if server.args:
                    lines.append(f"Arguments: {' '.join(server.args)}")
            table.add_row(escape(name), server.transport, escape("\n".join(lines)))

        self.console.print(table)

    def show_history(self, history: list[Message]) -> None:
        """Render the conversation history as markdown."""
        if not history:
            self.show_info("Conversation history is empty")
            return

        parts: list[str] = []
        for message in history:
            parts.append(f"## {message.role.capitalize()}")
            for block in message.content:
                if isinstance(block, TextBlock):
                    parts.append(block.text)
                elif isinstance(block, ToolUseBlock):
                    parts.append(f"**Tool Use:** `{block.name}`")
                    parts.append(
                        "```json\n" + json.dumps(block.input, indent=2) + "\n```"
                    )
                elif isinstance(block, ToolResultBlock):
                    label = "Tool Error" if block.is_error else "Tool Result"
                    parts.append(f"**{label}** (`{block.tool_use_id}`)")
                    parts.append(block.text or json.dumps(block.content))
            parts.append("---")

        text = "\n\n".join(parts)
        try:
            self.render_markdown(text)
        except RenderError as exc:
            logger.warning("Markdown rendering failed, printing plain text: %s", exc)
            self.console.print(text, markup=False, highlight=False)
