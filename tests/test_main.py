"""Tests for main.py wiring and logging setup."""

import io
import json
import logging
from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import text_reply
from toolpilot.ai.router import ModelRouter
from toolpilot.ai.selector import ToolSelector
from toolpilot.logging_config import (
    InvocationTextFormatter,
    JsonFormatter,
    invocation_fields,
    setup_logging,
)
from toolpilot.main import build_selector, run_console


class TestBuildSelector:
    def test_builds_default_router(self):
        selector = build_selector()
        assert isinstance(selector, ToolSelector)
        assert isinstance(selector._model, ModelRouter)

    def test_uses_injected_collaborators(self, catalog):
        model = MagicMock()
        selector = build_selector(catalog=catalog, model=model)
        assert selector._catalog is catalog
        assert selector._model is model


@pytest.mark.asyncio
async def test_console_keeps_history(monkeypatch, catalog, calendar_connector, capsys):
    catalog.connector_started(calendar_connector)
    model = MagicMock()
    model.chat_with_tools = AsyncMock(side_effect=[text_reply("first"), text_reply("second")])
    selector = build_selector(catalog=catalog, model=model)

    monkeypatch.setattr("sys.stdin", io.StringIO("hello\n\nthanks\n"))
    await run_console(selector, "u1")

    assert capsys.readouterr().out.splitlines() == ["first", "second"]
    second_messages = model.chat_with_tools.call_args_list[1][0][0]
    assert [m["content"] for m in second_messages[1:]] == ["hello", "first", "thanks"]


class TestLogging:
    def test_setup_creates_log_file(self, tmp_path):
        logs_dir = tmp_path / "logs"
        setup_logging("DEBUG", str(logs_dir))
        logging.getLogger("toolpilot.test").info("hello")
        assert (logs_dir / "toolpilot.log").exists()
        assert logging.getLogger("httpx").level == logging.WARNING

    def test_json_formatter(self):
        record = logging.LogRecord("toolpilot.x", logging.INFO, __file__, 1, "ran %s", ("tool",), None)
        payload = json.loads(JsonFormatter().format(record))
        assert payload["level"] == "INFO"
        assert payload["logger"] == "toolpilot.x"
        assert payload["message"] == "ran tool"

    def test_json_formatter_emits_invocation_fields(self):
        record = logging.LogRecord("toolpilot.x", logging.INFO, __file__, 1, "Invoking tool", (), None)
        record.__dict__.update(invocation_fields(
            tool="paragon.google_calendar_list_events", connector_id="paragon", outcome=None,
        ))
        payload = json.loads(JsonFormatter().format(record))
        assert payload["tool"] == "paragon.google_calendar_list_events"
        assert payload["connector_id"] == "paragon"
        assert "outcome" not in payload

    def test_text_formatter_appends_fields(self):
        formatter = InvocationTextFormatter("%(levelname)s %(message)s")
        record = logging.LogRecord("toolpilot.x", logging.INFO, __file__, 1, "done", (), None)
        assert formatter.format(record) == "INFO done"
        record.tool = "paragon.gmail_send_email"
        record.connector_id = "paragon"
        assert formatter.format(record) == (
            "INFO done | tool=paragon.gmail_send_email connector_id=paragon"
        )

    @pytest.mark.asyncio
    async def test_catalog_invocation_logs_carry_tool_fields(
        self, catalog, calendar_connector, caplog
    ):
        catalog.connector_started(calendar_connector)
        with caplog.at_level(logging.INFO, logger="toolpilot.catalog.registry"):
            await catalog.invoke("paragon.google_calendar_list_events", {})

        records = [r for r in caplog.records if getattr(r, "tool", None)]
        assert records
        assert {r.tool for r in records} == {"paragon.google_calendar_list_events"}
        assert {r.connector_id for r in records} == {"paragon"}
        assert records[-1].outcome == "success"
