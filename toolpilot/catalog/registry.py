"""
Tool catalog.

Holds a descriptor for every tool exposed by the currently running
connectors, keyed by full name (``connector_id.local_name``), and routes
invocations to the owning connector.

Writes are copy-on-write: a new dict is built and swapped in under a lock,
so a reader holding ``list()`` (or an in-flight ``invoke``) sees either the
old or the new tool set of a connector, never half of one.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable

from ..config import settings
from ..exceptions import (
    ConnectorUnavailableError,
    InvocationFailedError,
    ToolNotFoundError,
)
from ..logging_config import invocation_fields
from ..models import ToolDescriptor
from ..utils.circuit_breaker import CircuitBreaker, CircuitOpenError
from .connectors import Connector

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CatalogEvent:
    """Notification delivered to catalog subscribers."""

    kind: str  # registered | removed | connector_removed | invoked | invocation_failed | ui_capability_added | cleared
    full_name: str | None = None
    connector_id: str | None = None
    data: dict[str, Any] = field(default_factory=dict)


CatalogListener = Callable[[CatalogEvent], None]


class ToolCatalog:
    def __init__(
        self,
        *,
        tool_timeout: float | None = None,
        failure_threshold: int | None = None,
        recovery_timeout: float | None = None,
    ) -> None:
        self._tools: dict[str, ToolDescriptor] = {}
        self._connectors: dict[str, Connector] = {}
        self._breakers: dict[str, CircuitBreaker] = {}
        self._listeners: list[CatalogListener] = []
        self._write_lock = threading.Lock()
        self._tool_timeout = tool_timeout if tool_timeout is not None else settings.tool_timeout
        self._failure_threshold = (
            failure_threshold if failure_threshold is not None else settings.cb_failure_threshold
        )
        self._recovery_timeout = (
            recovery_timeout if recovery_timeout is not None else settings.cb_recovery_timeout
        )

    # ------------------------------------------------------------------ #
    # Subscribers                                                          #
    # ------------------------------------------------------------------ #

    def subscribe(self, listener: CatalogListener) -> None:
        self._listeners.append(listener)

    def unsubscribe(self, listener: CatalogListener) -> bool:
        try:
            self._listeners.remove(listener)
            return True
        except ValueError:
            return False

    def _notify(self, event: CatalogEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Catalog listener failed for %s", event.kind)

    # ------------------------------------------------------------------ #
    # Registration                                                         #
    # ------------------------------------------------------------------ #

    @staticmethod
    def _coerce(
        connector_id: str, local_name: str, descriptor: ToolDescriptor | dict
    ) -> ToolDescriptor:
        if isinstance(descriptor, ToolDescriptor):
            return descriptor.model_copy(
                update={"connector_id": connector_id, "local_name": local_name}
            )
        meta = descriptor or {}
        schema = meta.get("input_schema") or meta.get("inputSchema")
        capabilities = meta.get("ui_capabilities") or meta.get("uiCapabilities") or ()
        return ToolDescriptor(
            connector_id=connector_id,
            local_name=local_name,
            title=meta.get("title") or local_name,
            description=meta.get("description") or "",
            input_schema=schema or {"type": "object", "properties": {}},
            supports_ui=bool(meta.get("supports_ui", meta.get("supportsUI", False))),
            ui_capabilities=set(capabilities),
        )

    def register(
        self, connector_id: str, local_name: str, descriptor: ToolDescriptor | dict
    ) -> ToolDescriptor:
        """Insert or replace one tool. Emits a ``registered`` event either way."""
        tool = self._coerce(connector_id, local_name, descriptor)
        with self._write_lock:
            tools = dict(self._tools)
            replaced = tool.full_name in tools
            tools[tool.full_name] = tool
            self._tools = tools

        logger.info(
            "Tool registered: %s (supports_ui=%s%s)",
            tool.full_name, tool.supports_ui, ", replaced" if replaced else "",
        )
        self._notify(CatalogEvent(
            "registered", tool.full_name, connector_id, {"replaced": replaced},
        ))
        return tool

    def remove_all(self, connector_id: str) -> int:
        """Drop every tool owned by ``connector_id``. Returns the number removed."""
        with self._write_lock:
            removed = [t for t in self._tools.values() if t.connector_id == connector_id]
            if not removed:
                return 0
            self._tools = {
                name: t for name, t in self._tools.items() if t.connector_id != connector_id
            }

        for tool in removed:
            logger.info("Tool removed: %s", tool.full_name)
            self._notify(CatalogEvent("removed", tool.full_name, connector_id))
        logger.info("All tools removed for connector %s (%d)", connector_id, len(removed))
        self._notify(CatalogEvent(
            "connector_removed", None, connector_id, {"count": len(removed)},
        ))
        return len(removed)

    def connector_started(
        self, connector: Connector, tools: Iterable[ToolDescriptor | dict] | None = None
    ) -> list[ToolDescriptor]:
        """
        Attach a running connector and atomically replace its tool set.

        ``tools`` defaults to ``connector.list_tools()`` when the connector
        offers one.
        """
        connector_id = connector.connector_id
        if tools is None:
            lister = getattr(connector, "list_tools", None)
            tools = lister() if callable(lister) else []

        fresh = []
        for item in tools:
            local_name = item.local_name if isinstance(item, ToolDescriptor) else item["name"]
            fresh.append(self._coerce(connector_id, local_name, item))

        with self._write_lock:
            stale = [
                name for name, t in self._tools.items()
                if t.connector_id == connector_id
            ]
            tools_map = {
                name: t for name, t in self._tools.items() if t.connector_id != connector_id
            }
            for tool in fresh:
                tools_map[tool.full_name] = tool
            self._tools = tools_map
            self._connectors[connector_id] = connector
            self._breakers.pop(connector_id, None)

        fresh_names = {t.full_name for t in fresh}
        for name in stale:
            if name not in fresh_names:
                self._notify(CatalogEvent("removed", name, connector_id))
        for tool in fresh:
            self._notify(CatalogEvent(
                "registered", tool.full_name, connector_id,
                {"replaced": tool.full_name in stale},
            ))
        logger.info("Connector %s started with %d tools", connector_id, len(fresh))
        return fresh

    def connector_stopped(self, connector_id: str) -> int:
        with self._write_lock:
            self._connectors.pop(connector_id, None)
            self._breakers.pop(connector_id, None)
        return self.remove_all(connector_id)

    # ------------------------------------------------------------------ #
    # Lookup                                                               #
    # ------------------------------------------------------------------ #

    def list(self) -> list[ToolDescriptor]:
        """Snapshot of every registered tool."""
        return list(self._tools.values())

    def get(self, full_name: str) -> ToolDescriptor | None:
        return self._tools.get(full_name)

    def list_connector_tools(self, connector_id: str) -> list[ToolDescriptor]:
        return [t for t in self._tools.values() if t.connector_id == connector_id]

    def search(self, query: str) -> list[ToolDescriptor]:
        """Case-insensitive match on local name, full name, or description."""
        needle = query.lower()
        return [
            t for t in self._tools.values()
            if needle in t.local_name.lower()
            or needle in t.full_name.lower()
            or needle in t.description.lower()
        ]

    def ui_capable_tools(self) -> list[ToolDescriptor]:
        return [t for t in self._tools.values() if t.supports_ui]

    def tools_with_ui_capability(self, capability: str) -> list[ToolDescriptor]:
        return [t for t in self._tools.values() if capability in t.ui_capabilities]

    def add_ui_capability(self, full_name: str, capability: str) -> bool:
        """Mark a tool as able to render ``capability``. False if the tool is unknown."""
        with self._write_lock:
            tool = self._tools.get(full_name)
            if tool is None:
                return False
            if capability in tool.ui_capabilities:
                return True
            updated = tool.model_copy(update={
                "ui_capabilities": tool.ui_capabilities | {capability},
                "supports_ui": True,
            })
            tools = dict(self._tools)
            tools[full_name] = updated
            self._tools = tools

        self._notify(CatalogEvent(
            "ui_capability_added", full_name, updated.connector_id, {"capability": capability},
        ))
        return True

    @staticmethod
    def parse_full_name(full_name: str) -> tuple[str, str]:
        """Split ``connector.local`` into its parts; the local part may contain dots."""
        connector_id, sep, local_name = full_name.partition(".")
        if not sep or not connector_id or not local_name:
            raise ValueError(f"Invalid tool name format: {full_name}")
        return connector_id, local_name

    def statistics(self) -> dict[str, Any]:
        by_connector: dict[str, int] = {}
        for tool in self._tools.values():
            by_connector[tool.connector_id] = by_connector.get(tool.connector_id, 0) + 1
        return {
            "total_tools": len(self._tools),
            "total_connectors": len(by_connector),
            "tools_by_connector": by_connector,
        }

    def clear(self) -> None:
        with self._write_lock:
            self._tools = {}
            self._connectors = {}
            self._breakers = {}
        logger.info("Tool catalog cleared")
        self._notify(CatalogEvent("cleared"))

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, full_name: object) -> bool:
        return full_name in self._tools

    # ------------------------------------------------------------------ #
    # Invocation                                                           #
    # ------------------------------------------------------------------ #

    def _breaker_for(self, connector_id: str) -> CircuitBreaker:
        breaker = self._breakers.get(connector_id)
        if breaker is None:
            breaker = CircuitBreaker(
                name=f"connector_{connector_id}",
                failure_threshold=self._failure_threshold,
                recovery_timeout=self._recovery_timeout,
            )
            self._breakers[connector_id] = breaker
        return breaker

    async def _call_with_timeout(
        self, connector: Connector, local_name: str, args: dict
    ) -> Any:
        try:
            return await asyncio.wait_for(
                connector.call_tool(local_name, args), timeout=self._tool_timeout,
            )
        except asyncio.TimeoutError:
            raise TimeoutError(f"timed out after {self._tool_timeout:.0f}s") from None

    async def invoke(self, full_name: str, args: dict | None = None) -> Any:
        """
        Run a tool on its owning connector.

        Raises:
            ToolNotFoundError: no tool with that full name.
            ConnectorUnavailableError: connector not running, or its circuit is open.
            InvocationFailedError: the connector raised (or timed out); the
                original exception is chained as ``__cause__``.
        """
        args = args or {}
        tool = self._tools.get(full_name)
        if tool is None:
            self._notify(CatalogEvent(
                "invocation_failed", full_name, None, {"error": "not found"},
            ))
            raise ToolNotFoundError(full_name)

        connector = self._connectors.get(tool.connector_id)
        if connector is None or not connector.is_running:
            self._notify(CatalogEvent(
                "invocation_failed", full_name, tool.connector_id, {"error": "not running"},
            ))
            raise ConnectorUnavailableError(tool.connector_id)

        fields = invocation_fields(tool=full_name, connector_id=tool.connector_id)
        logger.info("Invoking tool %s", full_name, extra=fields)
        breaker = self._breaker_for(tool.connector_id)
        try:
            result = await breaker.call(
                self._call_with_timeout, connector, tool.local_name, args,
            )
        except CircuitOpenError as exc:
            self._notify(CatalogEvent(
                "invocation_failed", full_name, tool.connector_id, {"error": str(exc)},
            ))
            raise ConnectorUnavailableError(
                tool.connector_id, f"circuit open, retry in {exc.retry_after:.0f}s",
            ) from exc
        except Exception as exc:
            message = str(exc) or type(exc).__name__
            logger.error(
                "Tool invocation failed: %s: %s", full_name, message,
                extra={**fields, "outcome": "failure"},
            )
            self._notify(CatalogEvent(
                "invocation_failed", full_name, tool.connector_id,
                {"error": message, "args": args},
            ))
            raise InvocationFailedError(full_name, message) from exc

        logger.info(
            "Tool invocation successful: %s", full_name,
            extra={**fields, "outcome": "success"},
        )
        self._notify(CatalogEvent(
            "invoked", full_name, tool.connector_id, {"args": args},
        ))
        return result
