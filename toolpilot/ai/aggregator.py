"""
Multi-provider calendar aggregation.

When a selection round invoked calendar tools, their results are parsed per
provider into NormalizedEvents, summarised, and handed back to the model
together with the original request so it can answer in prose. If the model
is unavailable the answer is a deterministic sentence built from the summary.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Sequence
from zoneinfo import ZoneInfo

from ..config import settings
from ..exceptions import ParseFailedError
from ..models import CalendarSummary, SelectionResult, ToolInvocation
from .parsers import EventParserRegistry
from .prompts import CALENDAR_SYSTEM_PROMPT, build_calendar_message

logger = logging.getLogger(__name__)


class CalendarAggregator:
    def __init__(
        self,
        model,
        parsers: EventParserRegistry | None = None,
        *,
        timezone: str = "UTC",
        clock: Callable[[], datetime] | None = None,
        summary_model: str | None = None,
    ) -> None:
        self._model = model
        self.parsers = parsers or EventParserRegistry()
        self._tz = ZoneInfo(timezone)
        self._clock = clock or (lambda: datetime.now(self._tz))
        self._summary_model = summary_model or settings.model_summary

    def is_calendar_tool(self, tool_name: str) -> bool:
        return self.parsers.is_calendar_tool(tool_name)

    def summarize(self, invocations: Sequence[ToolInvocation]) -> CalendarSummary:
        """Parse every calendar invocation; failures become textual errors."""
        summary = CalendarSummary()
        for inv in invocations:
            summary.tools_called.append(inv.tool_name)
            if inv.error:
                summary.errors.append(f"{inv.tool_name}: {inv.error}")
                continue
            try:
                service, events = self.parsers.parse(inv.tool_name, inv.result)
            except ParseFailedError as e:
                logger.warning("Could not parse %s result: %s", inv.tool_name, e)
                summary.errors.append(f"{inv.tool_name}: Parse error - {e}")
                continue
            if service not in summary.services:
                summary.services.append(service)
            summary.events.extend(events)

        summary.services_checked = len(invocations)
        summary.event_count = len(summary.events)
        return summary

    @staticmethod
    def fallback_response(summary: CalendarSummary) -> str:
        services = " and ".join(summary.services) or "your calendars"
        if summary.events:
            listed = "; ".join(
                f"{e.title} ({e.start_time}, {e.source_service})" for e in summary.events
            )
            text = f"Checked {services} and found {summary.event_count} event(s): {listed}."
        else:
            text = f"Checked {services} but no events were found."
        if summary.errors:
            text += f" Some issues occurred: {'; '.join(summary.errors)}"
        return text

    async def aggregate(
        self,
        user_message: str,
        calendar_invocations: Sequence[ToolInvocation],
        all_invocations: Sequence[ToolInvocation] | None = None,
    ) -> SelectionResult:
        """
        Build the calendar answer for one round.

        ``all_invocations`` is what goes into ``all_results``; it defaults to
        the calendar invocations when the round called nothing else.
        """
        summary = self.summarize(calendar_invocations)
        logger.info(
            "Calendar summary: %d event(s) from %s, %d error(s)",
            summary.event_count, summary.services or "no services", len(summary.errors),
        )

        system = CALENDAR_SYSTEM_PROMPT.format(
            today=self._clock().date().isoformat(),
            tools=", ".join(summary.tools_called),
        )
        messages = [
            {"role": "system", "content": system},
            {"role": "user", "content": build_calendar_message(user_message, summary)},
        ]

        response = ""
        try:
            reply = await self._model.chat_with_tools(messages, [], model=self._summary_model)
            response = (reply.content or "").strip()
        except Exception as e:
            logger.error("Calendar summary round failed: %s", e)
        if not response:
            response = self.fallback_response(summary)

        return SelectionResult(
            response=response,
            tool_called=", ".join(summary.tools_called),
            all_results=list(all_invocations if all_invocations is not None else calendar_invocations),
            outcome="calendar",
            events_found=summary.event_count,
            services_checked=summary.services_checked,
        )
