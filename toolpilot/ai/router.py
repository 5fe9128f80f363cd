"""
Model router with fallback chain: Claude → Ollama.
Claude calls go through a circuit breaker so a sustained outage stops
costing a retry cycle per request; failures fall back to the local model.
"""

import logging

from ..config import settings
from ..exceptions import ModelUnavailableError
from ..models import ModelReply
from ..utils.circuit_breaker import CircuitBreaker, CircuitOpenError

logger = logging.getLogger(__name__)


class ModelRouter:
    """Model provider that tries ``primary`` first, then ``fallback``."""

    def __init__(
        self,
        primary,
        fallback=None,
        *,
        breaker: CircuitBreaker | None = None,
        fallback_enabled: bool | None = None,
    ) -> None:
        self._primary = primary
        self._fallback = fallback
        self._breaker = breaker or CircuitBreaker(
            name="claude",
            failure_threshold=settings.cb_failure_threshold,
            recovery_timeout=settings.cb_recovery_timeout,
        )
        self._fallback_enabled = (
            settings.ollama_fallback_enabled if fallback_enabled is None else fallback_enabled
        )
        self._last_model = "unknown"

    @property
    def last_model(self) -> str:
        """Provider that answered the most recent call."""
        return self._last_model

    async def chat_with_tools(
        self, messages: list[dict], tools: list[dict], model: str | None = None
    ) -> ModelReply:
        """``model`` overrides the Claude model; Ollama always uses its own."""
        overrides = {"model": model} if model else {}
        try:
            reply = await self._breaker.call(
                self._primary.chat_with_tools, messages, tools, **overrides,
            )
            self._last_model = "claude"
            return reply
        except CircuitOpenError as e:
            logger.warning("Claude circuit open (retry in %.0fs). Falling back to Ollama.", e.retry_after)
            primary_error: Exception = e
        except Exception as e:
            logger.warning("Claude unavailable (%s). Falling back to Ollama.", e)
            primary_error = e

        if self._fallback is None or not self._fallback_enabled:
            raise ModelUnavailableError(f"Claude is unavailable: {primary_error}") from primary_error

        if not await self._fallback.is_available():
            raise ModelUnavailableError(
                "Both Claude and Ollama are unavailable. Please try again later."
            ) from primary_error

        try:
            reply = await self._fallback.chat_with_tools(messages, tools)
        except Exception as e:
            raise ModelUnavailableError(f"Ollama fallback failed: {e}") from e
        self._last_model = "ollama"
        return reply
