"""
Connector protocol and an in-process connector implementation.

A connector is a running integration with one account-linked service. The
catalog only needs three things from it: an id, whether it is running, and
a way to call one of its tools by local name.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Protocol, runtime_checkable

logger = logging.getLogger(__name__)

ToolHandler = Callable[[dict], Awaitable[Any]]


@runtime_checkable
class Connector(Protocol):
    connector_id: str

    @property
    def is_running(self) -> bool: ...

    async def call_tool(self, name: str, arguments: dict) -> Any: ...


class FunctionConnector:
    """
    Connector backed by plain async functions.

    Each handler receives the tool arguments as a dict and returns whatever
    the service returned (dict, list, string, or an MCP-style
    ``{"content": [{"type": "text", "text": ...}]}`` envelope).

    Usage:
        calendar = FunctionConnector("paragon")

        @calendar.tool(description="List events in a time range")
        async def google_calendar_list_events(args: dict) -> dict:
            ...
    """

    def __init__(self, connector_id: str, *, running: bool = True) -> None:
        self.connector_id = connector_id
        self._running = running
        self._handlers: dict[str, ToolHandler] = {}
        self._metadata: dict[str, dict] = {}

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self) -> None:
        self._running = True

    def stop(self) -> None:
        self._running = False

    def add_tool(
        self,
        name: str,
        handler: ToolHandler,
        *,
        description: str = "",
        input_schema: dict | None = None,
        title: str = "",
        supports_ui: bool = False,
        ui_capabilities: tuple[str, ...] | list[str] = (),
    ) -> None:
        self._handlers[name] = handler
        self._metadata[name] = {
            "name": name,
            "title": title or name,
            "description": description or (handler.__doc__ or "").strip(),
            "input_schema": input_schema or {"type": "object", "properties": {}},
            "supports_ui": supports_ui,
            "ui_capabilities": list(ui_capabilities),
        }

    def tool(
        self,
        name: str | None = None,
        **metadata: Any,
    ) -> Callable[[ToolHandler], ToolHandler]:
        """Decorator form of add_tool(); the function name is the default tool name."""

        def decorator(handler: ToolHandler) -> ToolHandler:
            self.add_tool(name or handler.__name__, handler, **metadata)
            return handler

        return decorator

    def list_tools(self) -> list[dict]:
        """Tool metadata in the shape ToolCatalog.connector_started() expects."""
        return [dict(meta) for meta in self._metadata.values()]

    async def call_tool(self, name: str, arguments: dict) -> Any:
        handler = self._handlers.get(name)
        if handler is None:
            raise LookupError(f"{self.connector_id} has no tool named {name}")
        logger.debug("%s running %s", self.connector_id, name)
        return await handler(arguments)
