"""
Ollama local LLM client: fallback when Anthropic is unavailable.
Uses the non-streaming /api/chat endpoint with function tools.
"""

import json
import logging

import httpx

from ..config import settings
from ..models import ModelReply, ToolCall

logger = logging.getLogger(__name__)


def _to_ollama_tools(tools: list[dict]) -> list[dict]:
    return [
        {
            "type": "function",
            "function": {
                "name": tool["name"],
                "description": tool.get("description", ""),
                "parameters": tool.get("input_schema") or {"type": "object", "properties": {}},
            },
        }
        for tool in tools
    ]


class OllamaClient:
    def __init__(
        self,
        model: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
    ) -> None:
        self.model = model or settings.ollama_model
        self.base_url = (base_url or settings.ollama_base_url).rstrip("/")
        self.timeout = timeout or settings.ollama_timeout

    async def is_available(self) -> bool:
        """Check if Ollama is reachable (2s timeout)."""
        try:
            async with httpx.AsyncClient(timeout=2.0) as client:
                resp = await client.get(f"{self.base_url}/api/tags")
                return resp.status_code == 200
        except Exception:
            return False

    async def chat_with_tools(self, messages: list[dict], tools: list[dict]) -> ModelReply:
        """Single chat round; raises httpx errors to the caller."""
        payload = {
            "model": self.model,
            "messages": messages,
            "stream": False,
        }
        if tools:
            payload["tools"] = _to_ollama_tools(tools)

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(f"{self.base_url}/api/chat", json=payload)
            response.raise_for_status()
            data = response.json()

        message = data.get("message") or {}
        tool_calls = []
        for index, call in enumerate(message.get("tool_calls") or []):
            function = call.get("function") or {}
            arguments = function.get("arguments") or {}
            if not isinstance(arguments, (dict, str)):
                arguments = json.dumps(arguments)
            tool_calls.append(ToolCall(
                id=call.get("id") or f"ollama_{index}",
                name=function.get("name", ""),
                arguments=arguments,
            ))

        logger.debug("Ollama replied with %d tool call(s)", len(tool_calls))
        return ModelReply(content=message.get("content") or None, tool_calls=tool_calls)
