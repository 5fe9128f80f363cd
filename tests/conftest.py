"""Shared fixtures for toolpilot tests."""

from datetime import datetime
from unittest.mock import AsyncMock, MagicMock

import pytest

from toolpilot import config
from toolpilot.catalog.connectors import FunctionConnector
from toolpilot.catalog.registry import ToolCatalog
from toolpilot.models import ModelReply, ToolCall

# Wednesday; the 25th falls later in the same month
FIXED_NOW = datetime(2025, 8, 20, 9, 30, 0)


@pytest.fixture(autouse=True)
def isolate_env(monkeypatch, tmp_path):
    """Prevent tests from reading real .env or touching real data."""
    monkeypatch.setenv("ANTHROPIC_API_KEY", "test_key")
    monkeypatch.setenv("DATA_DIR", str(tmp_path))
    monkeypatch.setenv("USER_TIMEZONE", "UTC")
    monkeypatch.setenv("OLLAMA_FALLBACK_ENABLED", "true")
    monkeypatch.setattr(config, "_settings", None)


@pytest.fixture
def catalog():
    return ToolCatalog(tool_timeout=2.0, failure_threshold=3, recovery_timeout=60.0)


@pytest.fixture
def calendar_connector():
    """A connector exposing Google Calendar list/create/delete tools."""
    conn = FunctionConnector("paragon")

    @conn.tool(
        description="List Google Calendar events",
        input_schema={"type": "object", "properties": {"user_id": {"type": "string"}}},
    )
    async def google_calendar_list_events(args):
        return {"events": [{"summary": "A", "start": {"dateTime": "2025-08-25T20:00:00"}}]}

    @conn.tool(
        description="Create a Google Calendar event",
        input_schema={
            "type": "object",
            "properties": {"summary": {"type": "string"}, "start": {"type": "string"}},
        },
    )
    async def google_calendar_create_event(args):
        return {
            "id": "evt_new",
            "summary": args.get("summary", "New event"),
            "start": {"dateTime": args.get("start")},
        }

    @conn.tool(
        description="Delete a Google Calendar event",
        input_schema={
            "type": "object",
            "properties": {"event_id": {"type": "string"}, "user_id": {"type": "string"}},
        },
    )
    async def google_calendar_delete_event(args):
        return {"success": True, "message": f"Deleted {args.get('event_id')}"}

    return conn


def make_model(*replies):
    """Mock model provider returning ``replies`` in order from chat_with_tools."""
    model = MagicMock()
    model.chat_with_tools = AsyncMock(side_effect=list(replies))
    return model


def tool_reply(*calls):
    """ModelReply carrying tool calls given as ``(name, arguments)`` pairs."""
    return ModelReply(tool_calls=[
        ToolCall(id=f"call_{i}", name=name, arguments=args)
        for i, (name, args) in enumerate(calls)
    ])


def text_reply(text):
    return ModelReply(content=text)
