"""Lifecycle hooks for a tool-selection round.

Handlers observe (and may transform) the data flowing through
``ToolSelector.select_and_execute``: the prompt being built, what goes to
and comes back from the model, each tool call before and after it runs, and
the final response.
"""

from __future__ import annotations

import logging
import time
from collections import defaultdict
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Coroutine

logger = logging.getLogger(__name__)


class HookEvents(str, Enum):
    """Points in a selection round that can trigger hooks."""

    BEFORE_PROMPT_BUILD = "before_prompt_build"
    LLM_INPUT = "llm_input"
    LLM_OUTPUT = "llm_output"
    BEFORE_TOOL_CALL = "before_tool_call"
    AFTER_TOOL_CALL = "after_tool_call"
    RESPONSE_READY = "response_ready"


@dataclass
class HookContext:
    """Context passed along the handler chain.

    Handlers may rewrite entries in ``data``; on BEFORE_TOOL_CALL a handler
    can set ``cancelled`` to skip that single call.
    """

    event: HookEvents
    data: dict[str, Any] = field(default_factory=dict)
    cancelled: bool = False
    modifications: list[str] = field(default_factory=list)

    def modify(self, key: str, value: Any) -> None:
        self.data[key] = value
        self.modifications.append(key)

    def cancel(self) -> None:
        self.cancelled = True


HookHandler = Callable[[HookContext], Coroutine[Any, Any, HookContext]]


class HookManager:
    """Registry of hook handlers, one chain per event."""

    def __init__(self) -> None:
        self._hooks: dict[HookEvents, list[HookHandler]] = defaultdict(list)
        self._emissions: dict[str, int] = defaultdict(int)
        self._total_duration_ms = 0.0

    def register(self, event: HookEvents, handler: HookHandler) -> None:
        self._hooks[event].append(handler)
        logger.debug("Registered hook handler for %s", event.value)

    def unregister(self, event: HookEvents, handler: HookHandler) -> bool:
        try:
            self._hooks[event].remove(handler)
            return True
        except ValueError:
            return False

    def on(self, event: HookEvents) -> Callable[[HookHandler], HookHandler]:
        """Decorator form of register().

        Usage:
            @hooks.on(HookEvents.AFTER_TOOL_CALL)
            async def audit(context: HookContext) -> HookContext:
                logger.info("ran %s", context.data["tool_name"])
                return context
        """

        def decorator(handler: HookHandler) -> HookHandler:
            self.register(event, handler)
            return handler

        return decorator

    async def emit(
        self,
        event: HookEvents,
        data: dict[str, Any] | None = None,
    ) -> HookContext:
        """Run every handler for ``event`` in registration order.

        Each handler receives the context returned by the previous one. A
        failing handler is logged and skipped; it never breaks the round.
        """
        context = HookContext(event=event, data=data or {})
        handlers = self._hooks.get(event, [])
        self._emissions[event.value] += 1
        if not handlers:
            return context

        start_time = time.perf_counter()
        for handler in handlers:
            if context.cancelled:
                logger.debug("Hook chain cancelled at %s", event.value)
                break
            try:
                context = await handler(context)
            except Exception:
                logger.exception("Hook handler failed for %s", event.value)

        duration_ms = (time.perf_counter() - start_time) * 1000
        self._total_duration_ms += duration_ms
        logger.debug(
            "Emitted %s to %d handlers in %.2fms", event.value, len(handlers), duration_ms,
        )
        return context

    def get_registered_count(self) -> int:
        return sum(len(handlers) for handlers in self._hooks.values())

    def get_stats(self) -> dict[str, Any]:
        return {
            "registered_handlers": self.get_registered_count(),
            "emissions_by_event": dict(self._emissions),
            "total_duration_ms": round(self._total_duration_ms, 2),
        }

    def clear(self) -> None:
        self._hooks.clear()
