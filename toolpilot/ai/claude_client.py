"""
Anthropic Claude API client for tool selection.
Includes exponential backoff on rate-limit and overload errors.
"""

from __future__ import annotations

import asyncio
import logging

import anthropic

from ..config import settings
from ..models import ModelReply, ToolCall

logger = logging.getLogger(__name__)


def _split_system(messages: list[dict]) -> tuple[str, list[dict]]:
    """
    Pull system messages out into Anthropic's ``system`` parameter and
    merge consecutive same-role turns (the Messages API requires
    alternating roles starting with user).
    """
    system_parts: list[str] = []
    turns: list[dict] = []
    for message in messages:
        role = message.get("role")
        content = message.get("content") or ""
        if role == "system":
            system_parts.append(content)
            continue
        if turns and turns[-1]["role"] == role:
            turns[-1]["content"] += "\n\n" + content
        else:
            turns.append({"role": role, "content": content})
    if turns and turns[0]["role"] != "user":
        turns.insert(0, {"role": "user", "content": "(conversation continues)"})
    return "\n\n".join(system_parts), turns


class ClaudeClient:
    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        max_retries: int | None = None,
        retry_base_delay: float | None = None,
    ) -> None:
        self._client = anthropic.AsyncAnthropic(api_key=api_key or settings.anthropic_api_key)
        self.model = model or settings.model_selection
        self._max_retries = max_retries or settings.claude_max_retries
        self._retry_base_delay = (
            retry_base_delay if retry_base_delay is not None else settings.claude_retry_base_delay
        )

    async def chat_with_tools(
        self,
        messages: list[dict],
        tools: list[dict],
        model: str | None = None,
        max_tokens: int | None = None,
    ) -> ModelReply:
        """
        Non-streaming completion with function calling.
        Returns the text content plus any tool_use blocks as ToolCalls.
        """
        model = model or self.model
        system, turns = _split_system(messages)
        kwargs = {
            "model": model,
            "max_tokens": max_tokens or settings.anthropic_max_tokens,
            "messages": turns,
        }
        if system:
            kwargs["system"] = system
        if tools:
            kwargs["tools"] = tools

        for attempt in range(self._max_retries):
            try:
                response = await self._client.messages.create(**kwargs)
                break
            except anthropic.RateLimitError:
                delay = self._retry_base_delay * (2**attempt)
                logger.warning(
                    "Rate limited (attempt %d/%d). Retrying in %.1fs",
                    attempt + 1, self._max_retries, delay,
                )
                if attempt < self._max_retries - 1:
                    await asyncio.sleep(delay)
                else:
                    raise
            except anthropic.APIStatusError as e:
                if e.status_code < 500:
                    raise
                delay = self._retry_base_delay * (2**attempt)
                logger.warning(
                    "Anthropic overload %d (attempt %d/%d). Retrying in %.1fs",
                    e.status_code, attempt + 1, self._max_retries, delay,
                )
                if attempt < self._max_retries - 1:
                    await asyncio.sleep(delay)
                else:
                    raise

        text_parts: list[str] = []
        tool_calls: list[ToolCall] = []
        for block in response.content or []:
            block_type = getattr(block, "type", None)
            if block_type == "text":
                text_parts.append(block.text)
            elif block_type == "tool_use":
                tool_calls.append(ToolCall(id=block.id, name=block.name, arguments=block.input or {}))

        logger.debug(
            "Claude replied with %d tool call(s), stop_reason=%s",
            len(tool_calls), getattr(response, "stop_reason", None),
        )
        return ModelReply(content="".join(text_parts) or None, tool_calls=tool_calls)

    async def ping(self) -> bool:
        """Lightweight availability check using the models list endpoint."""
        try:
            await self._client.models.list()
            return True
        except Exception:
            return False
