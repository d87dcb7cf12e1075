"""
mcphost - chat with LLMs that can call tools served over MCP.

The package is organised as:

- ``history``: conversation messages and the context-window pruner
- ``llm``: provider contract and backends (Anthropic, OpenAI, Ollama, Gemini)
- ``tools``: tool-server connections and namespaced dispatch
- ``conversation``: the turn engine and the interactive session loop
- ``ui``: terminal rendering
- ``config`` / ``main``: settings, config files and the CLI entry point
"""

__version__ = "0.1.0"
