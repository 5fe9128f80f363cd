"""
Tool selection and execution.

One call to ``ToolSelector.select_and_execute`` is one round:

    enhance request → sanitize catalog snapshot → selection prompt → model
        → no tool calls:     answer directly
        → tool calls:        run them concurrently on their connectors
            → calendar tools:  CalendarAggregator
            → anything else:   re-prompt the model with formatted results

Per-call failures (bad arguments, unknown tool, connector errors) are
recorded on their ToolInvocation and never abort the other calls. Only an
empty catalog or an unexpected failure during selection short-circuits to a
single user-facing error string.
"""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime
from typing import Any, Callable, Sequence
from zoneinfo import ZoneInfo

from ..catalog.registry import ToolCatalog
from ..config import settings
from ..constants import ERROR_MESSAGES, RESULT_LIST_FULL_MAX, RESULT_LIST_PREVIEW
from ..exceptions import CatalogEmptyError, ParseFailedError
from ..hooks.lifecycle import HookEvents, HookManager
from ..logging_config import invocation_fields
from ..models import (
    ConversationTurn,
    SanitizedTools,
    SelectionContext,
    SelectionResult,
    ToolCall,
    ToolDescriptor,
    ToolInvocation,
)
from .aggregator import CalendarAggregator
from .context import enhance, resolve_reference_id
from .intents import ToolClass, classify_intent, classify_tool, is_delete_request
from .parsers import EventParserRegistry
from .prompts import TOOL_RESULTS_SYSTEM_PROMPT, build_selection_prompt, build_tool_results_message
from .sanitizer import sanitize
from .timeparse import extract_time_hints

logger = logging.getLogger(__name__)

# Argument names a delete tool may use for the event identifier, in preference order
_EVENT_ID_KEYS = ("event_id", "eventId", "id", "uuid")


def _truncate(text: str, max_chars: int) -> str:
    if len(text) <= max_chars:
        return text
    return text[:max_chars] + "... (truncated)"


def _dumps(value: Any) -> str:
    return json.dumps(value, indent=2, default=str)


def format_tool_result(result: Any, max_chars: int = 1000) -> str:
    """
    Render a raw tool result as prompt text.

    Unwraps MCP ``content[]`` text, decodes JSON, previews long lists, and
    recognises ``{success, message, data}`` and ``{error}`` shapes.
    """
    if result is None:
        return "No result returned"

    data = result
    if isinstance(data, dict) and isinstance(data.get("content"), list):
        data = "\n".join(
            item.get("text", "")
            for item in data["content"]
            if isinstance(item, dict) and item.get("type") == "text"
        )
    if isinstance(data, bytes):
        data = data.decode("utf-8", errors="replace")
    if isinstance(data, str):
        try:
            data = json.loads(data)
        except ValueError:
            return _truncate(data, max_chars)

    if isinstance(data, list):
        if not data:
            text = "No items found"
        elif len(data) > RESULT_LIST_FULL_MAX:
            text = (
                f"Found {len(data)} items:\n{_dumps(data[:RESULT_LIST_PREVIEW])}\n"
                f"... and {len(data) - RESULT_LIST_PREVIEW} more items"
            )
        else:
            text = f"Found {len(data)} items:\n{_dumps(data)}"
    elif isinstance(data, dict):
        if "success" in data and ("message" in data or "data" in data):
            status = "Success" if data["success"] else "Failed"
            text = f"{status}: {data.get('message', '')}".rstrip(": ")
            if data.get("data") is not None:
                text += f"\nData: {_dumps(data['data'])}"
        elif data.get("error"):
            text = f"Error: {data['error']}"
        else:
            text = _dumps(data)
    else:
        text = str(data)

    return _truncate(text, max_chars)


def _parse_arguments(arguments: dict | str | None) -> dict:
    if isinstance(arguments, dict):
        return arguments
    if not arguments or not arguments.strip():
        return {}
    try:
        parsed = json.loads(arguments)
    except ValueError as e:
        raise ParseFailedError(f"Invalid JSON arguments: {e}") from e
    if not isinstance(parsed, dict):
        raise ParseFailedError("Tool arguments must be a JSON object")
    return parsed


class ToolSelector:
    """Runs selection rounds against a catalog and a model provider."""

    def __init__(
        self,
        catalog: ToolCatalog,
        model,
        *,
        hooks: HookManager | None = None,
        aggregator: CalendarAggregator | None = None,
        parsers: EventParserRegistry | None = None,
        timezone: str | None = None,
        clock: Callable[[], datetime] | None = None,
        max_result_chars: int | None = None,
        summary_model: str | None = None,
    ) -> None:
        self._catalog = catalog
        self._model = model
        self._hooks = hooks or HookManager()
        self._timezone = timezone or settings.user_timezone
        tz = ZoneInfo(self._timezone)
        self._clock = clock or (lambda: datetime.now(tz))
        self._aggregator = aggregator or CalendarAggregator(
            model, parsers,
            timezone=self._timezone, clock=self._clock, summary_model=summary_model,
        )
        self._max_result_chars = max_result_chars or settings.max_result_chars
        self._summary_model = summary_model or settings.model_summary

    @property
    def hooks(self) -> HookManager:
        return self._hooks

    async def select_and_execute(
        self, user_message: str, context: SelectionContext
    ) -> SelectionResult:
        """Run one selection round. Always returns a result with non-empty text."""
        try:
            result = await self._run(user_message, context)
        except CatalogEmptyError:
            logger.warning("Selection requested with an empty tool catalog")
            result = SelectionResult(
                response=ERROR_MESSAGES["catalog_empty"],
                outcome="failure",
                error="CatalogEmpty",
            )
        except Exception as e:
            logger.error("Selection round failed: %s", e, exc_info=True)
            result = SelectionResult(
                response=ERROR_MESSAGES["processing_failed"].format(error=e),
                outcome="failure",
                error=str(e),
            )

        await self._hooks.emit(HookEvents.RESPONSE_READY, {"result": result})
        return result

    async def _run(self, user_message: str, context: SelectionContext) -> SelectionResult:
        history = context.conversation_history
        enhanced = enhance(user_message, history)

        descriptors = self._catalog.list()
        if not descriptors:
            raise CatalogEmptyError("No tools registered")
        sanitized = sanitize(descriptors)

        now = self._clock()
        intent = classify_intent(user_message)
        hints = extract_time_hints(user_message, now)

        ctx = await self._hooks.emit(HookEvents.BEFORE_PROMPT_BUILD, {
            "user_message": enhanced,
            "tools": sanitized.tools,
            "time_hints": hints,
        })
        enhanced = ctx.data.get("user_message", enhanced)

        system = build_selection_prompt(
            sanitized.tools, context.user_id, now, hints, intent, self._timezone,
        )
        messages = self._build_messages(system, history, enhanced)

        ctx = await self._hooks.emit(HookEvents.LLM_INPUT, {
            "messages": messages, "tools": sanitized.tools,
        })
        messages = ctx.data.get("messages", messages)

        logger.info(
            "Selecting tools for user %s (%d available, intent=%s)",
            context.user_id, len(sanitized.tools), intent.value if intent else "none",
            extra=invocation_fields(user_id=context.user_id),
        )
        reply = await self._model.chat_with_tools(messages, sanitized.tools)
        ctx = await self._hooks.emit(HookEvents.LLM_OUTPUT, {"reply": reply})
        reply = ctx.data.get("reply", reply)

        if not reply.tool_calls:
            logger.info("No tool calls requested; answering directly")
            return SelectionResult(
                response=reply.content or ERROR_MESSAGES["no_tool_needed"],
                outcome="direct",
            )

        calls = self._apply_intent_guard(
            reply.tool_calls, user_message, sanitized, descriptors, history, context.user_id,
        )
        invocations = await self._execute(calls, sanitized)

        calendar = [inv for inv in invocations if self._aggregator.is_calendar_tool(inv.tool_name)]
        if calendar:
            return await self._aggregator.aggregate(user_message, calendar, invocations)
        return await self._summarize(user_message, invocations)

    @staticmethod
    def _build_messages(
        system: str, history: Sequence[ConversationTurn], user_message: str
    ) -> list[dict]:
        messages = [{"role": "system", "content": system}]
        messages.extend({"role": turn.role, "content": turn.content} for turn in history)
        messages.append({"role": "user", "content": user_message})
        return messages

    # ------------------------------------------------------------------ #
    # Execution                                                           #
    # ------------------------------------------------------------------ #

    async def _execute(
        self, calls: Sequence[ToolCall], sanitized: SanitizedTools
    ) -> list[ToolInvocation]:
        logger.info(
            "Executing %d tool call(s)", len(calls),
            extra=invocation_fields(calls=", ".join(call.name for call in calls)),
        )
        gathered = asyncio.gather(*(self._execute_one(call, sanitized) for call in calls))
        # Calls that already reached a connector finish even if the round is cancelled
        return list(await asyncio.shield(gathered))

    async def _execute_one(self, call: ToolCall, sanitized: SanitizedTools) -> ToolInvocation:
        full_name = sanitized.reverse_map.get(call.name, call.name)
        invocation = ToolInvocation(tool_name=full_name, sanitized_name=call.name)

        try:
            args = _parse_arguments(call.arguments)
        except ParseFailedError as e:
            logger.warning(
                "Bad arguments for %s: %s", full_name, e,
                extra=invocation_fields(tool=full_name, outcome="failure"),
            )
            invocation.error = str(e)
            return invocation

        ctx = await self._hooks.emit(HookEvents.BEFORE_TOOL_CALL, {
            "tool_name": full_name, "arguments": args,
        })
        invocation.arguments = ctx.data.get("arguments", args)
        if ctx.cancelled:
            logger.info("Tool call %s cancelled by hook", full_name)
            invocation.error = "Cancelled by hook"
            return invocation

        try:
            invocation.result = await self._catalog.invoke(full_name, invocation.arguments)
        except Exception as e:
            invocation.error = str(e) or type(e).__name__

        await self._hooks.emit(HookEvents.AFTER_TOOL_CALL, {"invocation": invocation})
        return invocation

    # ------------------------------------------------------------------ #
    # Delete-intent guard                                                 #
    # ------------------------------------------------------------------ #

    def _provider_key(self, tool: ToolDescriptor) -> tuple[str, str | None]:
        return tool.connector_id, self._aggregator.parsers.service_for(tool.local_name)

    def _delete_tool_for(
        self, tool: ToolDescriptor, descriptors: Sequence[ToolDescriptor]
    ) -> ToolDescriptor | None:
        key = self._provider_key(tool)
        for candidate in descriptors:
            if (
                classify_tool(candidate.local_name) is ToolClass.DELETE
                and self._provider_key(candidate) == key
            ):
                return candidate
        return None

    def _apply_intent_guard(
        self,
        calls: list[ToolCall],
        user_message: str,
        sanitized: SanitizedTools,
        descriptors: Sequence[ToolDescriptor],
        history: Sequence[ConversationTurn],
        user_id: str,
    ) -> list[ToolCall]:
        """
        Swap list calls for the matching delete call when the user asked for a
        deletion of something whose id is already in the conversation.
        """
        if not is_delete_request(user_message):
            return calls
        if any(classify_tool(call.name) is not ToolClass.READ for call in calls):
            return calls
        event_id = resolve_reference_id(history)
        if not event_id:
            return calls

        by_full_name = {tool.full_name: tool for tool in descriptors}
        sanitized_name = {full: name for name, full in sanitized.reverse_map.items()}
        guarded: list[ToolCall] = []
        seen: set[str] = set()
        for call in calls:
            tool = by_full_name.get(sanitized.reverse_map.get(call.name, ""))
            replacement = self._delete_tool_for(tool, descriptors) if tool else None
            if replacement is None:
                guarded.append(call)
                continue
            if replacement.full_name in seen:
                continue
            seen.add(replacement.full_name)

            properties = replacement.input_schema.get("properties", {})
            id_key = next((k for k in _EVENT_ID_KEYS if k in properties), "event_id")
            args: dict[str, Any] = {id_key: event_id}
            if "user_id" in properties:
                args["user_id"] = user_id
            logger.warning(
                "Delete requested but model chose %s; calling %s for %s instead",
                tool.full_name, replacement.full_name, event_id,
                extra=invocation_fields(
                    user_id=user_id, tool=replacement.full_name, connector_id=replacement.connector_id,
                ),
            )
            guarded.append(ToolCall(
                id=call.id, name=sanitized_name[replacement.full_name], arguments=args,
            ))
        return guarded

    # ------------------------------------------------------------------ #
    # Responding                                                          #
    # ------------------------------------------------------------------ #

    def _format_invocation(self, index: int, invocation: ToolInvocation) -> str:
        if invocation.error:
            body = f"Error: {invocation.error}"
        else:
            body = format_tool_result(invocation.result, self._max_result_chars)
        return (
            f"=== Tool {index}: {invocation.tool_name} ===\n"
            f"Arguments: {json.dumps(invocation.arguments, default=str)}\n"
            f"Result: {body}"
        )

    def _fallback_summary(self, invocations: Sequence[ToolInvocation]) -> str:
        lines = [ERROR_MESSAGES["tool_completed"]]
        for inv in invocations:
            if inv.success:
                lines.append(f"{inv.tool_name}: {format_tool_result(inv.result, 200)}")
            else:
                lines.append(f"{inv.tool_name} failed: {inv.error}")
        return "\n".join(lines)

    async def _summarize(
        self, user_message: str, invocations: list[ToolInvocation]
    ) -> SelectionResult:
        formatted = [self._format_invocation(i, inv) for i, inv in enumerate(invocations, 1)]
        messages = [
            {"role": "system", "content": TOOL_RESULTS_SYSTEM_PROMPT},
            {"role": "user", "content": build_tool_results_message(user_message, formatted)},
        ]

        response = ""
        try:
            reply = await self._model.chat_with_tools(messages, [], model=self._summary_model)
            response = (reply.content or "").strip()
        except Exception as e:
            logger.error("Result summary round failed: %s", e)
        if not response:
            response = self._fallback_summary(invocations)

        failures = [f"{inv.tool_name}: {inv.error}" for inv in invocations if not inv.success]
        return SelectionResult(
            response=response,
            tool_called=", ".join(inv.tool_name for inv in invocations),
            all_results=invocations,
            error="; ".join(failures) if failures and len(failures) == len(invocations) else None,
            outcome="tool",
        )
