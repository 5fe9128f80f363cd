"""
Calendar response parsers.

Each calendar provider answers list/create calls in its own shape. A parser
is registered per provider together with the tool-name markers that
identify that provider's tools; the aggregator looks the parser up by
service instead of sniffing shapes inline.

Known shapes:
    Google Calendar    {"events": [...]}  or  {"output": {"items": [...]}}
    Calendly           {"collection": [...]}
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Callable

from ..constants import CALENDLY_MARKERS, GENERIC_CALENDAR_MARKER, GOOGLE_CALENDAR_MARKERS
from ..exceptions import ParseFailedError
from ..models import NormalizedEvent

logger = logging.getLogger(__name__)

EventParser = Callable[[Any], list[dict]]

GENERIC_SERVICE = "Calendar"

_TITLE_KEYS = ("summary", "title", "name")
_START_KEYS = ("start", "start_time", "startTime")


def _loads(text: str | bytes) -> Any:
    try:
        return json.loads(text)
    except (json.JSONDecodeError, TypeError, ValueError) as e:
        raise ParseFailedError(f"response is not valid JSON ({e})") from e


def unwrap_payload(result: Any) -> Any:
    """
    Decode a raw tool result into plain JSON data.

    Handles MCP envelopes (``{"content": [{"type": "text", "text": "..."}]}``),
    JSON strings, and already-decoded dicts/lists.
    """
    if result is None:
        raise ParseFailedError("No data returned")
    if isinstance(result, dict) and isinstance(result.get("content"), list):
        text = "\n".join(
            item.get("text", "")
            for item in result["content"]
            if isinstance(item, dict) and item.get("type") == "text"
        )
        if not text.strip():
            raise ParseFailedError("No data returned")
        return _loads(text)
    if isinstance(result, (str, bytes)):
        return _loads(result)
    return result


def _is_acknowledgement(payload: Any) -> bool:
    """``{"success": true, "message": ...}`` replies from delete/update calls carry no events."""
    return (
        isinstance(payload, dict)
        and payload.get("success") is True
        and not _looks_like_event(payload)
        and not any(isinstance(payload.get(k), list) for k in ("events", "items", "collection"))
    )


def _looks_like_event(payload: Any) -> bool:
    return (
        isinstance(payload, dict)
        and any(payload.get(k) for k in _TITLE_KEYS)
        and any(payload.get(k) for k in _START_KEYS)
    )


def parse_google_calendar(payload: Any) -> list[dict]:
    if isinstance(payload, dict):
        if isinstance(payload.get("events"), list):
            return payload["events"]
        output = payload.get("output")
        if isinstance(output, dict) and isinstance(output.get("items"), list):
            return output["items"]
        if isinstance(payload.get("items"), list):
            return payload["items"]
        if _looks_like_event(payload):
            return [payload]
    raise ParseFailedError("unrecognized Google Calendar response shape")


def parse_calendly(payload: Any) -> list[dict]:
    if isinstance(payload, dict):
        if isinstance(payload.get("collection"), list):
            return payload["collection"]
        resource = payload.get("resource")
        if _looks_like_event(resource):
            return [resource]
        if _looks_like_event(payload):
            return [payload]
    raise ParseFailedError("unrecognized Calendly response shape")


def parse_generic(payload: Any) -> list[dict]:
    """Accepts any of the known shapes, a bare list, or a single event."""
    if isinstance(payload, list):
        return [item for item in payload if isinstance(item, dict)]
    for parser in (parse_google_calendar, parse_calendly):
        try:
            return parser(payload)
        except ParseFailedError:
            continue
    raise ParseFailedError("unrecognized calendar response shape")


def _time_value(value: Any) -> str | None:
    if isinstance(value, dict):
        return value.get("dateTime") or value.get("date")
    if isinstance(value, str) and value:
        return value
    return None


def normalize_event(raw: dict, source_service: str, tool: str = "") -> NormalizedEvent:
    """Map one provider event onto NormalizedEvent, filling fallback literals."""
    event_type = raw.get("event_type")
    title = (
        next((raw[k] for k in _TITLE_KEYS if raw.get(k)), None)
        or (event_type.get("name") if isinstance(event_type, dict) else None)
        or "Untitled Event"
    )
    start = _time_value(raw.get("start")) or raw.get("start_time") or raw.get("startTime")
    end = _time_value(raw.get("end")) or raw.get("end_time") or raw.get("endTime")

    location = raw.get("location")
    if isinstance(location, dict):
        location = location.get("location") or location.get("join_url")
    if not isinstance(location, str) or not location:
        location = "No location specified"

    return NormalizedEvent(
        title=str(title),
        start_time=str(start) if start else "Time not specified",
        end_time=str(end) if end else None,
        location=location,
        id=raw.get("id") or raw.get("uri"),
        source_service=source_service,
        tool=tool,
        attendees=raw.get("attendees") or raw.get("invitees") or [],
        description=raw.get("description") or "",
        status=raw.get("status"),
    )


@dataclass(frozen=True)
class _ParserEntry:
    source_service: str
    parser: EventParser
    markers: tuple[str, ...]


class EventParserRegistry:
    """
    Parser lookup keyed by source service.

    Tool names are matched against each service's markers (case-insensitive
    substring). Any other tool whose name contains "calendar" is still
    treated as calendar-class and parsed with ``parse_generic``.
    """

    def __init__(self, *, include_defaults: bool = True) -> None:
        self._entries: list[_ParserEntry] = []
        if include_defaults:
            self.register("Google Calendar", parse_google_calendar, GOOGLE_CALENDAR_MARKERS)
            self.register("Calendly", parse_calendly, CALENDLY_MARKERS)

    def register(
        self,
        source_service: str,
        parser: EventParser,
        markers: tuple[str, ...] | list[str] = (),
    ) -> None:
        """Register (or replace) the parser for ``source_service``."""
        self.unregister(source_service)
        entry = _ParserEntry(
            source_service=source_service,
            parser=parser,
            markers=tuple(m.lower() for m in markers),
        )
        # Newer registrations are consulted first
        self._entries.insert(0, entry)
        logger.debug("Event parser registered for %s (markers=%s)", source_service, entry.markers)

    def unregister(self, source_service: str) -> bool:
        before = len(self._entries)
        self._entries = [e for e in self._entries if e.source_service != source_service]
        return len(self._entries) != before

    @property
    def services(self) -> list[str]:
        return [e.source_service for e in self._entries]

    def _entry_for(self, tool_name: str) -> _ParserEntry | None:
        lowered = tool_name.lower()
        for entry in self._entries:
            if any(marker in lowered for marker in entry.markers):
                return entry
        return None

    def service_for(self, tool_name: str) -> str | None:
        entry = self._entry_for(tool_name)
        if entry is not None:
            return entry.source_service
        if GENERIC_CALENDAR_MARKER in tool_name.lower():
            return GENERIC_SERVICE
        return None

    def is_calendar_tool(self, tool_name: str) -> bool:
        return self.service_for(tool_name) is not None

    def parse(self, tool_name: str, result: Any) -> tuple[str, list[NormalizedEvent]]:
        """
        Decode and normalize one tool result.

        Raises ParseFailedError when the payload cannot be decoded or has an
        unrecognized shape.
        """
        entry = self._entry_for(tool_name)
        service = entry.source_service if entry else GENERIC_SERVICE
        parser = entry.parser if entry else parse_generic

        payload = unwrap_payload(result)
        raw_events = [] if _is_acknowledgement(payload) else parser(payload)
        events = [
            normalize_event(raw, service, tool_name)
            for raw in raw_events
            if isinstance(raw, dict)
        ]
        logger.info("%s: found %d events", service, len(events))
        return service, events
