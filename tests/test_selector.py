"""
Tests for toolpilot/ai/selector.py: selection rounds end to end with a
mocked model provider and in-process connectors.
"""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import FIXED_NOW, make_model, text_reply, tool_reply
from toolpilot.ai.selector import ToolSelector, format_tool_result
from toolpilot.catalog.connectors import FunctionConnector
from toolpilot.config import settings
from toolpilot.constants import ERROR_MESSAGES
from toolpilot.hooks.lifecycle import HookEvents, HookManager
from toolpilot.models import ConversationTurn, SelectionContext


def _selector(catalog, model, hooks=None):
    return ToolSelector(catalog, model, hooks=hooks, timezone="UTC", clock=lambda: FIXED_NOW)


def _context(*turns, user_id="u1"):
    return SelectionContext(
        user_id=user_id,
        conversation_history=[ConversationTurn(role=r, content=c) for r, c in turns],
    )


@pytest.fixture
def calendly_connector():
    conn = FunctionConnector("calendly-mcp")

    @conn.tool(description="List Calendly scheduled events")
    async def calendly_list_events(args):
        return {"collection": [{"name": "B", "start_time": "2025-08-25T15:00:00Z"}]}

    return conn


@pytest.fixture
def email_connector():
    conn = FunctionConnector("mail")
    conn.sent = []

    @conn.tool(description="Send an email")
    async def gmail_send_email(args):
        conn.sent.append(args)
        return {"success": True, "message": f"Sent to {args.get('to')}"}

    return conn


class TestOutcomes:
    @pytest.mark.asyncio
    async def test_empty_catalog(self, catalog):
        model = make_model()
        result = await _selector(catalog, model).select_and_execute("hi", _context())

        assert result.outcome == "failure"
        assert result.error == "CatalogEmpty"
        assert result.response == ERROR_MESSAGES["catalog_empty"]
        model.chat_with_tools.assert_not_called()

    @pytest.mark.asyncio
    async def test_direct_answer(self, catalog, calendar_connector):
        catalog.connector_started(calendar_connector)
        model = make_model(text_reply("Hello! How can I help?"))
        result = await _selector(catalog, model).select_and_execute("hello", _context())

        assert result.outcome == "direct"
        assert result.response == "Hello! How can I help?"
        assert result.tool_called is None
        assert result.to_payload() == {"response": "Hello! How can I help?", "toolCalled": None}

    @pytest.mark.asyncio
    async def test_direct_without_text_uses_default(self, catalog, calendar_connector):
        catalog.connector_started(calendar_connector)
        model = make_model(text_reply(None))
        result = await _selector(catalog, model).select_and_execute("hmm", _context())
        assert result.response == ERROR_MESSAGES["no_tool_needed"]

    @pytest.mark.asyncio
    async def test_model_failure_during_selection(self, catalog, calendar_connector):
        catalog.connector_started(calendar_connector)
        model = MagicMock()
        model.chat_with_tools = AsyncMock(side_effect=RuntimeError("rate limited"))
        result = await _selector(catalog, model).select_and_execute("what's on today", _context())

        assert result.outcome == "failure"
        assert result.response == (
            "I encountered an error while processing your request: rate limited"
        )


class TestSelectionPrompt:
    @pytest.mark.asyncio
    async def test_prompt_carries_tools_user_and_history(self, catalog, calendar_connector):
        catalog.connector_started(calendar_connector)
        model = make_model(text_reply("ok"))
        context = _context(("user", "hi"), ("assistant", "hello"), user_id="user-7")
        await _selector(catalog, model).select_and_execute("thanks", context)

        messages, tools = model.chat_with_tools.call_args[0]
        assert messages[0]["role"] == "system"
        assert "user-7" in messages[0]["content"]
        assert [m["role"] for m in messages[1:]] == ["user", "assistant", "user"]
        assert messages[-1]["content"] == "thanks"
        assert {t["name"] for t in tools} == {
            "google_calendar_list_events",
            "google_calendar_create_event",
            "google_calendar_delete_event",
        }

    @pytest.mark.asyncio
    async def test_create_at_8pm_uses_24_hour_time(self, catalog, calendar_connector):
        catalog.connector_started(calendar_connector)
        model = make_model(
            tool_reply(("google_calendar_create_event", {
                "summary": "Dinner", "start": "2025-08-25T20:00:00",
            })),
            text_reply("Created Dinner on the 25th at 8pm."),
        )
        result = await _selector(catalog, model).select_and_execute(
            "create an event for 25th at 8pm", _context(),
        )

        system_prompt = model.chat_with_tools.call_args_list[0][0][0][0]["content"]
        assert "start 2025-08-25T20:00:00" in system_prompt
        assert "Detected intent for this request: CREATE" in system_prompt

        invocation = result.all_results[0]
        assert invocation.tool_name == "paragon.google_calendar_create_event"
        assert invocation.arguments["start"].endswith("T20:00:00")
        assert invocation.result["start"]["dateTime"] == "2025-08-25T20:00:00"
        assert result.outcome == "calendar"
        assert result.events_found == 1

    @pytest.mark.asyncio
    async def test_back_reference_is_clarified(self, catalog, calendar_connector):
        catalog.connector_started(calendar_connector)
        model = make_model(text_reply("Which one?"))
        context = _context(
            ("user", "what's on the 25th?"),
            ("assistant", "You have 3 events on August 25th."),
        )
        await _selector(catalog, model).select_and_execute("delete them", context)

        messages = model.chat_with_tools.call_args[0][0]
        assert "calendar events on August 25th" in messages[-1]["content"]


class TestExecution:
    @pytest.mark.asyncio
    async def test_two_calendars_are_aggregated(self, catalog, calendar_connector, calendly_connector):
        catalog.connector_started(calendar_connector)
        catalog.connector_started(calendly_connector)
        model = make_model(
            tool_reply(
                ("google_calendar_list_events", {"user_id": "u1"}),
                ("calendly_list_events", "{}"),
            ),
            text_reply("On the 25th you have A (Google) and B (Calendly)."),
        )
        result = await _selector(catalog, model).select_and_execute(
            "what's on my calendar on the 25th?", _context(),
        )

        assert result.outcome == "calendar"
        assert result.events_found == 2
        assert result.services_checked == 2
        payload = result.to_payload()
        assert payload["eventsFound"] == 2
        assert payload["servicesChecked"] == 2
        assert [r["success"] for r in payload["allResults"]] == [True, True]

    @pytest.mark.asyncio
    async def test_aggregation_fallback_lists_both_events(
        self, catalog, calendar_connector, calendly_connector
    ):
        catalog.connector_started(calendar_connector)
        catalog.connector_started(calendly_connector)
        model = MagicMock()
        model.chat_with_tools = AsyncMock(side_effect=[
            tool_reply(("google_calendar_list_events", {}), ("calendly_list_events", {})),
            RuntimeError("summary model down"),
        ])
        result = await _selector(catalog, model).select_and_execute("anything on the 25th?", _context())

        assert "A" in result.response and "B" in result.response
        assert result.events_found == 2

    @pytest.mark.asyncio
    async def test_calls_run_concurrently(self, catalog):
        conn = FunctionConnector("sync")
        ready = asyncio.Event()

        @conn.tool()
        async def wait_for_peer(args):
            await asyncio.wait_for(ready.wait(), timeout=1.0)
            return "waited"

        @conn.tool()
        async def release_peer(args):
            ready.set()
            return "released"

        catalog.connector_started(conn)
        model = make_model(
            tool_reply(("wait_for_peer", {}), ("release_peer", {})),
            text_reply("done"),
        )
        result = await _selector(catalog, model).select_and_execute("go", _context())
        assert [inv.result for inv in result.all_results] == ["waited", "released"]

    @pytest.mark.asyncio
    async def test_per_call_failures_are_recorded(self, catalog, email_connector):
        catalog.connector_started(email_connector)
        model = make_model(
            tool_reply(
                ("gmail_send_email", '{"to": "sam@example.com"}'),
                ("gmail_send_email", "{not json"),
                ("no_such_tool", {}),
            ),
            text_reply("Sent one email; two calls failed."),
        )
        result = await _selector(catalog, model).select_and_execute("send it", _context())

        assert result.outcome == "tool"
        assert result.error is None
        first, bad_json, unknown = result.all_results
        assert first.success
        assert email_connector.sent == [{"to": "sam@example.com"}]
        assert "Invalid JSON arguments" in bad_json.error
        assert "Tool not found: no_such_tool" in unknown.error

    @pytest.mark.asyncio
    async def test_all_calls_fail_still_answers(self, catalog):
        conn = FunctionConnector("broken")

        @conn.tool()
        async def notes_create(args):
            raise RuntimeError("upstream 500")

        catalog.connector_started(conn)
        model = MagicMock()
        model.chat_with_tools = AsyncMock(side_effect=[
            tool_reply(("notes_create", {}), ("notes_create", {})),
            RuntimeError("summary down"),
        ])
        result = await _selector(catalog, model).select_and_execute("save a note", _context())

        assert result.response.strip()
        assert "upstream 500" in result.response
        assert result.error
        assert all(not inv.success for inv in result.all_results)

    @pytest.mark.asyncio
    async def test_summary_prompt_contains_formatted_results(self, catalog, email_connector):
        catalog.connector_started(email_connector)
        model = make_model(
            tool_reply(("gmail_send_email", {"to": "sam@example.com"})),
            text_reply("Email sent to Sam."),
        )
        result = await _selector(catalog, model).select_and_execute("email sam", _context())

        assert result.response == "Email sent to Sam."
        assert result.tool_called == "mail.gmail_send_email"
        summary_messages = model.chat_with_tools.call_args_list[1][0][0]
        assert "=== Tool 1: mail.gmail_send_email ===" in summary_messages[1]["content"]
        assert "Success: Sent to sam@example.com" in summary_messages[1]["content"]

        selection_call, summary_call = model.chat_with_tools.call_args_list
        assert "model" not in selection_call.kwargs
        assert summary_call.kwargs["model"] == settings.model_summary

    @pytest.mark.asyncio
    async def test_collision_routes_to_correct_connector(self, catalog):
        first, second = FunctionConnector("alpha"), FunctionConnector("beta")

        @first.tool(name="send_email")
        async def alpha_send(args):
            return "alpha"

        @second.tool(name="send_email")
        async def beta_send(args):
            return "beta"

        catalog.connector_started(first)
        catalog.connector_started(second)
        model = make_model(tool_reply(("send_email_beta", {})), text_reply("ok"))
        result = await _selector(catalog, model).select_and_execute("send", _context())

        assert result.all_results[0].tool_name == "beta.send_email"
        assert result.all_results[0].result == "beta"


class TestDeleteGuard:
    HISTORY = (
        ("user", "create dinner on the 25th at 8pm"),
        ("assistant", "Created Dinner on August 25th at 8pm (event_id: evt_98765)."),
    )

    @pytest.mark.asyncio
    async def test_list_call_is_replaced_by_delete(self, catalog, calendar_connector):
        catalog.connector_started(calendar_connector)
        model = make_model(
            tool_reply(("google_calendar_list_events", {"user_id": "u1"})),
            text_reply("Deleted Dinner."),
        )
        result = await _selector(catalog, model).select_and_execute(
            "delete it", _context(*self.HISTORY),
        )

        assert len(result.all_results) == 1
        invocation = result.all_results[0]
        assert invocation.tool_name == "paragon.google_calendar_delete_event"
        assert invocation.arguments == {"event_id": "evt_98765", "user_id": "u1"}
        assert invocation.result == {"success": True, "message": "Deleted evt_98765"}
        assert result.outcome == "calendar"

    @pytest.mark.asyncio
    async def test_guard_needs_a_known_event_id(self, catalog, calendar_connector):
        catalog.connector_started(calendar_connector)
        model = make_model(
            tool_reply(("google_calendar_list_events", {})),
            text_reply("Here are your events."),
        )
        context = _context(("assistant", "You have 1 event today."))
        result = await _selector(catalog, model).select_and_execute("delete it", context)
        assert result.all_results[0].tool_name == "paragon.google_calendar_list_events"

    @pytest.mark.asyncio
    async def test_guard_ignores_non_delete_intent(self, catalog, calendar_connector):
        catalog.connector_started(calendar_connector)
        model = make_model(
            tool_reply(("google_calendar_list_events", {})),
            text_reply("Here are your events."),
        )
        result = await _selector(catalog, model).select_and_execute(
            "what's on today?", _context(*self.HISTORY),
        )
        assert result.all_results[0].tool_name == "paragon.google_calendar_list_events"

    @pytest.mark.asyncio
    async def test_question_about_past_cancellations_keeps_list_call(
        self, catalog, calendar_connector
    ):
        catalog.connector_started(calendar_connector)
        invoked = []
        catalog.subscribe(lambda e: invoked.append(e.full_name) if e.kind == "invoked" else None)
        model = make_model(
            tool_reply(("google_calendar_list_events", {"user_id": "u1"})),
            text_reply("You cancelled nothing last week."),
        )
        context = _context(
            ("user", "what's on friday?"),
            ("assistant", "You have Standup (event_id: evt_12345)."),
        )
        result = await _selector(catalog, model).select_and_execute(
            "Which meetings did I cancel last week?", context,
        )

        assert result.tool_called == "paragon.google_calendar_list_events"
        assert [inv.tool_name for inv in result.all_results] == [
            "paragon.google_calendar_list_events"
        ]
        assert invoked == ["paragon.google_calendar_list_events"]

    @pytest.mark.asyncio
    async def test_cancel_my_3pm_meeting_calls_delete_tool(self, catalog, calendar_connector):
        catalog.connector_started(calendar_connector)
        model = make_model(
            tool_reply(("google_calendar_list_events", {"user_id": "u1"})),
            text_reply("Cancelled your 3pm meeting."),
        )
        context = _context(
            ("user", "what's on today?"),
            ("assistant", "You have Design review at 3pm today (event_id: evt_3pm01)."),
        )
        result = await _selector(catalog, model).select_and_execute(
            "cancel my 3pm meeting today", context,
        )

        system_prompt = model.chat_with_tools.call_args_list[0][0][0][0]["content"]
        assert "Detected intent for this request: DELETE" in system_prompt
        invocation = result.all_results[0]
        assert invocation.tool_name == "paragon.google_calendar_delete_event"
        assert invocation.arguments["event_id"] == "evt_3pm01"
        assert invocation.result == {"success": True, "message": "Deleted evt_3pm01"}


class TestHooks:
    @pytest.mark.asyncio
    async def test_hook_can_cancel_a_tool_call(self, catalog, email_connector):
        catalog.connector_started(email_connector)
        hooks = HookManager()

        @hooks.on(HookEvents.BEFORE_TOOL_CALL)
        async def block_email(ctx):
            if ctx.data["tool_name"].endswith("send_email"):
                ctx.cancel()
            return ctx

        model = make_model(tool_reply(("gmail_send_email", {"to": "x@y.z"})), text_reply("Not sent."))
        result = await _selector(catalog, model, hooks).select_and_execute("send it", _context())

        assert email_connector.sent == []
        assert result.all_results[0].error == "Cancelled by hook"

    @pytest.mark.asyncio
    async def test_hook_can_rewrite_arguments(self, catalog, email_connector):
        catalog.connector_started(email_connector)
        hooks = HookManager()

        @hooks.on(HookEvents.BEFORE_TOOL_CALL)
        async def redirect(ctx):
            ctx.modify("arguments", {**ctx.data["arguments"], "to": "safe@example.com"})
            return ctx

        model = make_model(tool_reply(("gmail_send_email", {"to": "x@y.z"})), text_reply("ok"))
        await _selector(catalog, model, hooks).select_and_execute("send it", _context())
        assert email_connector.sent == [{"to": "safe@example.com"}]

    @pytest.mark.asyncio
    async def test_lifecycle_events_are_emitted(self, catalog, email_connector):
        catalog.connector_started(email_connector)
        hooks = HookManager()
        seen = []

        async def record(ctx):
            seen.append(ctx.event)
            return ctx

        for event in HookEvents:
            hooks.register(event, record)

        model = make_model(tool_reply(("gmail_send_email", {})), text_reply("ok"))
        await _selector(catalog, model, hooks).select_and_execute("send it", _context())

        assert seen == [
            HookEvents.BEFORE_PROMPT_BUILD,
            HookEvents.LLM_INPUT,
            HookEvents.LLM_OUTPUT,
            HookEvents.BEFORE_TOOL_CALL,
            HookEvents.AFTER_TOOL_CALL,
            HookEvents.RESPONSE_READY,
        ]


class TestFormatToolResult:
    def test_mcp_text_content(self):
        result = {"content": [{"type": "text", "text": json.dumps({"error": "quota"})}]}
        assert format_tool_result(result) == "Error: quota"

    def test_long_list_is_previewed(self):
        text = format_tool_result(list(range(8)))
        assert text.startswith("Found 8 items:")
        assert "... and 5 more items" in text

    def test_short_list_is_shown_in_full(self):
        assert "Found 2 items" in format_tool_result([{"a": 1}, {"b": 2}])

    def test_success_shape(self):
        text = format_tool_result({"success": True, "message": "Posted", "data": {"id": 7}})
        assert text.startswith("Success: Posted")
        assert '"id": 7' in text

    def test_truncation(self):
        text = format_tool_result("x" * 2000, max_chars=100)
        assert text == "x" * 100 + "... (truncated)"

    def test_none(self):
        assert format_tool_result(None) == "No result returned"

    def test_plain_text(self):
        assert format_tool_result("all good") == "all good"
