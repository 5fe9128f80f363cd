"""
Prompt text for tool selection and result summarisation.

The instructional text is static. Anything that depends on the clock or the
request (today's date, resolved times) is computed in Python and substituted
into the template, so the model copies values instead of deriving them.
"""

from __future__ import annotations

import json
from datetime import datetime, timedelta

from .intents import ToolClass, render_intent_guidance
from .timeparse import TimeHint, resolve_expression

TIME_CONVERSION_TABLE = """\
TIME CONVERSION (12-hour → 24-hour). Timestamps are ALWAYS 24-hour:
- 8pm → T20:00:00 (NOT T08:00:00)
- 3pm → T15:00:00 (NOT T03:00:00)
- 1pm → T13:00:00 (NOT T01:00:00)
- 3:30pm → T15:30:00
- 12pm / noon → T12:00:00
- 12am / midnight → T00:00:00
- 8am → T08:00:00
PM hours add 12 (except 12pm). AM hours stay as they are (except 12am → 00)."""

ATTENDEE_RULES = """\
ATTENDEES:
- Only add attendees when the user names them AND gives an email address.
- Never invent or guess email addresses. If a name has no email, put the name in the description instead."""

DELETE_RULES = """\
DELETE / CANCEL REQUESTS:
- Call the delete/cancel tool. Do NOT call a list tool instead.
- Use the event_id from the conversation when it is there.
- Only list events first when no event_id is available anywhere in the conversation."""

SELECTION_TEMPLATE = """\
You are a tool-calling assistant for a productivity app. Pick the tool(s) that
fulfil the user's request and call them with correct arguments.

Today is {weekday}, {today}. Tomorrow is {tomorrow}. Timezone: {timezone}.
Authenticated user_id: {user_id}. ALWAYS include user_id in tool arguments
that accept it.

AVAILABLE TOOLS:
{tool_list}

INTENT → TOOL CLASS (first matching rule wins):
{intent_guidance}
- For READ requests about the schedule, call EVERY calendar list tool so all
  connected calendars are checked.
{detected_intent}
{time_table}

DATE EXAMPLES (computed for today):
{date_examples}
{resolved_times}
{delete_rules}

{attendee_rules}

EVENT DEFAULTS:
- If no end time is given, the event lasts 1 hour.
- Use ISO 8601 timestamps: YYYY-MM-DDTHH:MM:SS.

If no tool is needed, answer the user directly in plain text."""

TOOL_RESULTS_SYSTEM_PROMPT = """\
You are a helpful assistant. Tools were just executed on the user's behalf.
Explain the outcome in natural language.

RESPONSE GUIDELINES:
- Be direct and concise; lead with what happened.
- For created or updated items, confirm the key details (title, time, recipient).
- For searches or lists, summarise what was found; do not dump raw data.
- If a tool failed, say so plainly and suggest what the user can try next.
- Never invent results that are not in the tool output."""

CALENDAR_SYSTEM_PROMPT = """\
You are an intelligent calendar assistant. Today is {today}.
Calendar tools used in this round: {tools}.

CRITICAL, analyse the user's intent before answering:
- If they asked to CREATE an event, confirm the event that was created
  (title, date, time). Do not list unrelated events.
- If they asked to DELETE or CANCEL, confirm what was removed.
- If they asked what is on their schedule, list the events grouped by day,
  in chronological order, with times in 12-hour format and the calendar each
  one came from.
- If nothing was found, say the checked calendars are clear.
- Mention errors briefly, only when they affect the answer.

Write natural, friendly prose. No JSON, no raw field names, no event ids."""


def _date_examples(now: datetime) -> str:
    examples = ("today at 8pm", "tomorrow at 3pm", "tomorrow at 12am", "the 25th at 3:30pm")
    lines = []
    for expression in examples:
        resolved = resolve_expression(expression, now)
        if resolved:
            lines.append(f'- "{expression}" → {resolved}')
    return "\n".join(lines)


def _resolved_times(hints: list[TimeHint]) -> str:
    if not hints:
        return ""
    lines = ["", "RESOLVED TIMES FROM THIS REQUEST (use these values exactly):"]
    for hint in hints:
        if hint.default_end:
            lines.append(
                f'- "{hint.expression}" → start {hint.start}, default end {hint.default_end}'
            )
        else:
            lines.append(f'- "{hint.expression}" → {hint.start}')
    return "\n".join(lines)


def _tool_list(tools: list[dict]) -> str:
    if not tools:
        return "(none)"
    return "\n".join(f"- {t['name']}: {t.get('description') or 'No description'}" for t in tools)


def build_selection_prompt(
    tools: list[dict],
    user_id: str,
    now: datetime,
    time_hints: list[TimeHint] | None = None,
    intent: ToolClass | None = None,
    timezone: str = "UTC",
) -> str:
    """System prompt for the tool-selection round."""
    detected = f"- Detected intent for this request: {intent.value.upper()}." if intent else ""
    return SELECTION_TEMPLATE.format(
        weekday=now.strftime("%A"),
        today=now.date().isoformat(),
        tomorrow=(now.date() + timedelta(days=1)).isoformat(),
        timezone=timezone,
        user_id=user_id,
        tool_list=_tool_list(tools),
        intent_guidance=render_intent_guidance(),
        detected_intent=detected,
        time_table=TIME_CONVERSION_TABLE,
        date_examples=_date_examples(now),
        resolved_times=_resolved_times(time_hints or []),
        delete_rules=DELETE_RULES,
        attendee_rules=ATTENDEE_RULES,
    )


def build_tool_results_message(user_message: str, formatted_results: list[str]) -> str:
    """User turn for the non-calendar summary round."""
    return (
        f'User asked: "{user_message}"\n\n'
        "Tool execution results:\n"
        + "\n\n".join(formatted_results)
        + "\n\nPlease provide a helpful response based on these results."
    )


def build_calendar_message(user_message: str, summary) -> str:
    """User turn for the calendar summary round."""
    services = ", ".join(summary.services) or "none"
    errors = "; ".join(summary.errors) or "none"
    details = json.dumps(
        [event.model_dump(exclude_none=True) for event in summary.events],
        indent=2,
        default=str,
    )
    return (
        f'Original request: "{user_message}"\n\n'
        f"Tools called: {', '.join(summary.tools_called)}\n"
        f"Services checked: {services}\n"
        f"Events found: {summary.event_count}\n"
        f"Errors: {errors}\n\n"
        f"Event details:\n{details}"
    )
