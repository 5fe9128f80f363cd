"""
Circuit breaker guarding calls to connectors and model providers.

After a run of consecutive failures the circuit "opens" and calls fail fast
for a recovery period; then a limited number of probe calls are let through.

States:
- CLOSED: calls pass through
- OPEN: calls are rejected with CircuitOpenError
- HALF_OPEN: probing, up to half_open_max_calls calls allowed
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitOpenError(Exception):
    """Raised when circuit is open and the call is rejected."""

    def __init__(self, name: str, retry_after: float):
        self.name = name
        self.retry_after = retry_after
        super().__init__(f"Circuit '{name}' is open. Retry after {retry_after:.1f}s")


@dataclass
class CircuitBreaker:
    """
    Usage:
        breaker = CircuitBreaker(name="calendar-connector", failure_threshold=5)
        result = await breaker.call(connector.call_tool, "list_events", args)

    The callable is only invoked when the circuit admits the call, so a
    rejected call never leaves an un-awaited coroutine behind.
    """

    name: str
    failure_threshold: int = 5
    recovery_timeout: float = 60.0
    half_open_max_calls: int = 1

    _state: CircuitState = field(default=CircuitState.CLOSED, init=False)
    _failure_count: int = field(default=0, init=False)
    _last_failure_time: float = field(default=0.0, init=False)
    _half_open_calls: int = field(default=0, init=False)
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, init=False)

    _total_calls: int = field(default=0, init=False)
    _total_failures: int = field(default=0, init=False)
    _total_rejected: int = field(default=0, init=False)

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state == CircuitState.OPEN

    def _time_since_last_failure(self) -> float:
        if self._last_failure_time == 0:
            return float("inf")
        return time.monotonic() - self._last_failure_time

    async def _admit(self) -> None:
        async with self._lock:
            self._total_calls += 1
            if (
                self._state == CircuitState.OPEN
                and self._time_since_last_failure() >= self.recovery_timeout
            ):
                logger.info("Circuit '%s' OPEN -> HALF_OPEN", self.name)
                self._state = CircuitState.HALF_OPEN
                self._half_open_calls = 0

            if self._state == CircuitState.OPEN:
                self._total_rejected += 1
                retry_after = self.recovery_timeout - self._time_since_last_failure()
                raise CircuitOpenError(self.name, max(0.0, retry_after))

            if self._state == CircuitState.HALF_OPEN:
                if self._half_open_calls >= self.half_open_max_calls:
                    self._total_rejected += 1
                    raise CircuitOpenError(self.name, self.recovery_timeout / 2)
                self._half_open_calls += 1

    async def call(
        self, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any
    ) -> T:
        """
        Run ``func(*args, **kwargs)`` through the breaker.

        Raises CircuitOpenError without calling ``func`` if the circuit is open.
        Any exception raised by ``func`` counts as a failure and is re-raised.
        """
        await self._admit()
        try:
            result = await func(*args, **kwargs)
        except Exception as e:
            await self._record_failure(e)
            raise
        await self._record_success()
        return result

    async def _record_success(self) -> None:
        async with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                logger.info("Circuit '%s' HALF_OPEN -> CLOSED", self.name)
            self._state = CircuitState.CLOSED
            self._failure_count = 0

    async def _record_failure(self, error: Exception) -> None:
        async with self._lock:
            self._failure_count += 1
            self._total_failures += 1
            self._last_failure_time = time.monotonic()

            logger.warning(
                "Circuit '%s' recorded failure %d/%d: %s",
                self.name, self._failure_count, self.failure_threshold, error,
            )

            if self._state == CircuitState.HALF_OPEN:
                logger.warning("Circuit '%s' HALF_OPEN -> OPEN", self.name)
                self._state = CircuitState.OPEN
            elif self._failure_count >= self.failure_threshold:
                logger.warning("Circuit '%s' CLOSED -> OPEN", self.name)
                self._state = CircuitState.OPEN

    def reset(self) -> None:
        """Manually reset the circuit to closed state."""
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time = 0
        self._half_open_calls = 0

    def get_stats(self) -> dict:
        return {
            "state": self._state.value,
            "failure_count": self._failure_count,
            "failure_threshold": self.failure_threshold,
            "total_calls": self._total_calls,
            "total_failures": self._total_failures,
            "total_rejected": self._total_rejected,
        }
