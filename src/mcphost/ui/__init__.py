"""Terminal presentation (rich) for mcphost."""

from mcphost.ui.console import RenderError, TerminalRenderer

__all__ = ["RenderError", "TerminalRenderer"]
