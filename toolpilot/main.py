"""
toolpilot entry point.
Wires the catalog, model providers and selector together, and runs a small
interactive console loop for trying requests against registered connectors.
"""

import asyncio
import logging
import os
import sys

from .ai.aggregator import CalendarAggregator
from .ai.claude_client import ClaudeClient
from .ai.ollama_client import OllamaClient
from .ai.parsers import EventParserRegistry
from .ai.router import ModelRouter
from .ai.selector import ToolSelector
from .catalog.registry import ToolCatalog
from .config import settings
from .hooks.lifecycle import HookManager
from .logging_config import setup_logging
from .models import ConversationTurn, SelectionContext

logger = logging.getLogger(__name__)


def build_selector(
    catalog: ToolCatalog | None = None,
    model=None,
    hooks: HookManager | None = None,
    parsers: EventParserRegistry | None = None,
) -> ToolSelector:
    """
    Construct a ToolSelector with its collaborators.

    Anything not passed in is built from settings: a fresh ToolCatalog, a
    Claude → Ollama ModelRouter, the default calendar parsers.
    """
    catalog = catalog or ToolCatalog()
    if model is None:
        model = ModelRouter(ClaudeClient(), OllamaClient())
    parsers = parsers or EventParserRegistry()
    aggregator = CalendarAggregator(model, parsers, timezone=settings.user_timezone)
    return ToolSelector(
        catalog,
        model,
        hooks=hooks or HookManager(),
        aggregator=aggregator,
        parsers=parsers,
        timezone=settings.user_timezone,
    )


async def run_console(selector: ToolSelector, user_id: str) -> None:
    """Read requests from stdin until EOF, keeping the conversation history."""
    history: list[ConversationTurn] = []
    loop = asyncio.get_running_loop()
    while True:
        line = await loop.run_in_executor(None, sys.stdin.readline)
        if not line:
            break
        message = line.strip()
        if not message:
            continue
        context = SelectionContext(user_id=user_id, conversation_history=list(history))
        result = await selector.select_and_execute(message, context)
        print(result.response, flush=True)
        history.append(ConversationTurn(role="user", content=message))
        history.append(ConversationTurn(role="assistant", content=result.response))


def main() -> None:
    os.makedirs(settings.data_dir, exist_ok=True)
    os.makedirs(settings.logs_dir, exist_ok=True)

    setup_logging(settings.log_level, settings.logs_dir, settings.json_logs)
    logger.info("Starting toolpilot (data_dir=%s, tz=%s)", settings.data_dir, settings.user_timezone)

    selector = build_selector()
    user_id = os.environ.get("TOOLPILOT_USER_ID", "local")
    try:
        asyncio.run(run_console(selector, user_id))
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")


if __name__ == "__main__":
    main()
