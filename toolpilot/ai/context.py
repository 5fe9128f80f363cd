"""
Conversation back-reference handling.

``enhance`` appends a short clarifying clause to requests like "delete it"
or "remove them" that point at something the assistant just showed. It is a
keyword heuristic, not coreference resolution: unrecognised references pass
through unchanged, and a wrong clause is possible when the previous reply
mentions several kinds of item.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Iterable

from .intents import has_anaphora

logger = logging.getLogger(__name__)

_DATE_TOKENS = (
    re.compile(
        r"\b(?:jan(?:uary)?|feb(?:ruary)?|mar(?:ch)?|apr(?:il)?|may|june?|july?|aug(?:ust)?"
        r"|sep(?:t(?:ember)?)?|oct(?:ober)?|nov(?:ember)?|dec(?:ember)?)\.?\s+\d{1,2}(?:st|nd|rd|th)?\b",
        re.IGNORECASE,
    ),
    re.compile(r"\b\d{4}-\d{2}-\d{2}\b"),
    re.compile(r"\b\d{1,2}/\d{1,2}(?:/\d{2,4})?\b"),
    re.compile(r"\b(?:the\s+)?\d{1,2}(?:st|nd|rd|th)\b", re.IGNORECASE),
    re.compile(r"\b(?:today|tomorrow)\b", re.IGNORECASE),
)
_CALENDAR_WORDS = ("event", "scheduled", "calendar", "meeting", "appointment")
_EVENT_COUNT = re.compile(r"\b\d+\s+(?:events?|meetings?)\b|\bevent\(s\)", re.IGNORECASE)
_REFERENCE_ID = re.compile(
    r"\b(?:event[_ ]?id|id)\b\s*[:=]\s*[\"'`]?([A-Za-z0-9_@.\-]{4,})",
    re.IGNORECASE,
)


def _role_content(turn: Any) -> tuple[str, str]:
    if isinstance(turn, dict):
        content = turn.get("content", "")
        return turn.get("role", ""), content if isinstance(content, str) else str(content)
    return getattr(turn, "role", ""), getattr(turn, "content", "") or ""


def _latest_assistant_reply(history: Iterable[Any]) -> str | None:
    for turn in reversed(list(history)):
        role, content = _role_content(turn)
        if role == "assistant" and content:
            return content
    return None


def _date_token(content: str) -> str | None:
    for pattern in _DATE_TOKENS:
        match = pattern.search(content)
        if match:
            return match.group(0)
    return None


def _clarifying_clause(reply: str) -> str:
    lowered = reply.lower()

    if any(word in lowered for word in _CALENDAR_WORDS):
        token = _date_token(reply)
        if token and token.lower() == "today":
            return " (referring to today's calendar events that were just shown in the previous response)"
        if token:
            return (
                f" (referring to the calendar events on {token} "
                "that were just shown in the previous response)"
            )
        if _EVENT_COUNT.search(reply):
            return " (referring to the specific calendar events that were just listed in the previous response)"
        if "you have" in lowered:
            return " (referring to the calendar events that were just listed in the previous response)"

    if "post" in lowered or "linkedin" in lowered:
        return " (referring to the LinkedIn posts mentioned in the previous response)"
    if "email" in lowered or "message" in lowered:
        return " (referring to the emails/messages mentioned in the previous response)"
    return " (referring to the items mentioned in the previous response)"


def enhance(user_message: str, history: Iterable[Any] | None) -> str:
    """
    Return ``user_message`` with a clarifying clause when it refers back to
    the previous assistant reply; otherwise return it unchanged.
    Never raises.
    """
    try:
        history = list(history or [])
        if not history or not has_anaphora(user_message):
            return user_message

        reply = _latest_assistant_reply(history)
        if reply is None:
            logger.debug("Back-reference found but no assistant reply in history")
            return user_message

        clause = _clarifying_clause(reply)
        logger.debug("Context hint added: %r", clause)
        return user_message + clause
    except Exception as e:
        logger.warning("Context enhancement skipped: %s", e)
        return user_message


def resolve_reference_id(history: Iterable[Any] | None) -> str | None:
    """Most recent ``event_id: ...`` / ``id: ...`` literal in an assistant reply."""
    for turn in reversed(list(history or [])):
        role, content = _role_content(turn)
        if role != "assistant":
            continue
        matches = _REFERENCE_ID.findall(content)
        if matches:
            return matches[-1]
    return None
