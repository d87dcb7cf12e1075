"""
mcphost - Main Entry Point.

Parses command-line flags on top of ``Settings``, configures logging, then
runs the startup sequence:

    1. Load the system prompt and select the model provider
    2. Load the tool-server document (creating it if missing)
    3. Connect every tool server concurrently and build the tool catalogue
    4. Run the interactive session until the user quits

Every tool-server connection is closed on the way out, whether the session
ended normally, failed during startup or was interrupted by a signal.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from mcphost.config import ConfigError, Settings, get_settings, load_mcp_config, load_system_prompt
from mcphost.conversation.engine import ConversationEngine, RetryPolicy
from mcphost.conversation.session import SessionLoop
from mcphost.llm.factory import create_provider
from mcphost.tools.mcp_client import McpToolClient
from mcphost.tools.registry import ToolRegistry, ToolServerConnectionError
from mcphost.ui.console import TerminalRenderer

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DEBUG_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(filename)s:%(lineno)d - %(message)s"

NOISY_LOGGERS = ("httpx", "httpcore", "mcp", "openai", "anthropic")


def configure_logging(settings: Settings) -> None:
    """Configure the root logger once for the whole process."""
    if settings.debug:
        logging.basicConfig(level=logging.DEBUG, format=DEBUG_LOG_FORMAT, force=True)
        return

    logging.basicConfig(level=settings.log_level.upper(), format=LOG_FORMAT, force=True)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def build_parser(settings: Settings) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mcphost",
        description="Chat with an LLM that can call tools exposed by MCP servers",
    )
    parser.add_argument("--config", type=Path, help="Config file location (default: ~/.mcp.json)")
    parser.add_argument(
        "--system-prompt",
        type=Path,
        help='JSON file holding {"systemPrompt": "..."}',
    )
    parser.add_argument(
        "--message-window",
        type=int,
        help=f"Number of messages to keep in context (default: {settings.message_window})",
    )
    parser.add_argument(
        "-m",
        "--model",
        help=f"Model to use, as provider:model (default: {settings.model})",
    )
    parser.add_argument(
        "--max-tool-rounds",
        type=int,
        help=f"Tool rounds allowed per prompt (default: {settings.max_tool_rounds})",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    parser.add_argument("--openai-url", help="Base URL for the OpenAI API")
    parser.add_argument("--anthropic-url", help="Base URL for the Anthropic API")
    parser.add_argument("--openai-api-key", help="OpenAI API key")
    parser.add_argument("--anthropic-api-key", help="Anthropic API key")
    parser.add_argument("--google-api-key", help="Google (Gemini) API key")
    return parser


_FLAG_TO_SETTING = {
    "config": "config_file",
    "system_prompt": "system_prompt_file",
    "message_window": "message_window",
    "model": "model",
    "max_tool_rounds": "max_tool_rounds",
    "openai_url": "openai_base_url",
    "anthropic_url": "anthropic_base_url",
    "openai_api_key": "openai_api_key",
    "anthropic_api_key": "anthropic_api_key",
    "google_api_key": "google_api_key",
}


def apply_cli_overrides(settings: Settings, args: argparse.Namespace) -> Settings:
    """Override settings with the flags that were actually given."""
    for flag, setting in _FLAG_TO_SETTING.items():
        value = getattr(args, flag, None)
        if value is not None:
            setattr(settings, setting, value)
    if args.debug:
        settings.debug = True
    return settings


async def run(settings: Settings, renderer: TerminalRenderer | None = None) -> int:
    """Run startup, the interactive session and shutdown.

    Returns:
        The process exit status: 0 after a normal session, 1 when startup
        fails.
    """
    renderer = renderer or TerminalRenderer()
    registry = ToolRegistry(
        connect_timeout=settings.connect_timeout,
        list_timeout=settings.list_tools_timeout,
        call_timeout=settings.tool_timeout,
    )
    engine: ConversationEngine | None = None

    try:
        try:
            system_prompt = load_system_prompt(settings.system_prompt_file)
            provider = create_provider(settings.model, settings, system_prompt)
            logger.info("Model loaded: provider=%s model=%s", provider.name, provider.model)

            server_config = load_mcp_config(settings.config_file)
            clients = {
                name: McpToolClient(name, config)
                for name, config in server_config.servers.items()
            }
            await registry.connect_all(clients)
            tools = await registry.load_tools()
            logger.info("Tools loaded: count=%d servers=%d", len(tools), len(registry))
        except (ConfigError, ToolServerConnectionError) as exc:
            logger.error("Startup failed: %s", exc)
            renderer.show_error(f"Error: {exc}")
            return 1

        engine = ConversationEngine(
            provider,
            registry,
            output=renderer,
            message_window=settings.message_window,
            retry_policy=RetryPolicy(
                initial_backoff=settings.initial_backoff,
                max_backoff=settings.max_backoff,
                max_retries=settings.max_retries,
            ),
            max_tool_rounds=settings.max_tool_rounds,
            model_timeout=settings.model_timeout,
        )
        await SessionLoop(engine, renderer, server_config).run()
        return 0
    finally:
        renderer.close()
        if engine is not None:
            await engine.shutdown()
        else:
            await registry.close()


async def main(settings: Settings) -> int:
    """Run the session as a task that SIGINT / SIGTERM can cancel."""
    loop = asyncio.get_running_loop()
    session_task = asyncio.create_task(run(settings), name="mcphost-session")

    def signal_handler(sig: int, frame: Any) -> None:
        logger.info("Received signal %s, initiating graceful shutdown...", sig)
        loop.call_soon_threadsafe(session_task.cancel)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        return await session_task
    except asyncio.CancelledError:
        logger.info("Shutdown complete")
        return 0


def cli_main() -> None:
    """Entry point for the mcphost console script."""
    try:
        settings = get_settings()
    except ValidationError as exc:
        print(f"Error: invalid MCPHOST_* settings: {exc}", file=sys.stderr)
        sys.exit(1)

    args = build_parser(settings).parse_args()
    apply_cli_overrides(settings, args)
    configure_logging(settings)

    sys.exit(asyncio.run(main(settings)))


if __name__ == "__main__":
    cli_main()
