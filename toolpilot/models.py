"""
Pydantic v2 data models for toolpilot.
"""

from datetime import datetime, timezone
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, Field


class ConversationTurn(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class SelectionContext(BaseModel):
    user_id: str
    conversation_history: list[ConversationTurn] = Field(default_factory=list)


class ToolDescriptor(BaseModel):
    connector_id: str
    local_name: str
    title: str = ""
    description: str = ""
    input_schema: dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )
    supports_ui: bool = False
    ui_capabilities: set[str] = Field(default_factory=set)
    registered_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def full_name(self) -> str:
        return f"{self.connector_id}.{self.local_name}"

    @property
    def display_title(self) -> str:
        return self.title or self.local_name


class ToolCall(BaseModel):
    """One function call requested by the model."""
    id: str = ""
    name: str
    # Anthropic hands back a dict; OpenAI-style providers hand back a JSON string
    arguments: Union[dict[str, Any], str] = Field(default_factory=dict)


class ModelReply(BaseModel):
    content: Optional[str] = None
    tool_calls: list[ToolCall] = Field(default_factory=list)


class SanitizedTools(BaseModel):
    tools: list[dict[str, Any]] = Field(default_factory=list)
    reverse_map: dict[str, str] = Field(default_factory=dict)
    collisions: dict[str, list[str]] = Field(default_factory=dict)

    @property
    def has_collisions(self) -> bool:
        return bool(self.collisions)


class ToolInvocation(BaseModel):
    tool_name: str
    sanitized_name: str = ""
    arguments: dict[str, Any] = Field(default_factory=dict)
    result: Any = None
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.error is None


class NormalizedEvent(BaseModel):
    title: str = "Untitled Event"
    start_time: str = "Time not specified"
    end_time: Optional[str] = None
    location: str = "No location specified"
    id: Optional[str] = None
    source_service: str
    tool: str = ""
    attendees: list[Any] = Field(default_factory=list)
    description: str = ""
    status: Optional[str] = None


class CalendarSummary(BaseModel):
    tools_called: list[str] = Field(default_factory=list)
    services: list[str] = Field(default_factory=list)
    services_checked: int = 0
    event_count: int = 0
    errors: list[str] = Field(default_factory=list)
    events: list[NormalizedEvent] = Field(default_factory=list)


class SelectionResult(BaseModel):
    response: str
    tool_called: Optional[str] = None
    all_results: Optional[list[ToolInvocation]] = None
    error: Optional[str] = None
    outcome: Literal["direct", "tool", "calendar", "failure"] = "direct"
    events_found: Optional[int] = None
    services_checked: Optional[int] = None

    def to_payload(self) -> dict[str, Any]:
        """External camelCase shape handed to the UI layer."""
        payload: dict[str, Any] = {
            "response": self.response,
            "toolCalled": self.tool_called,
        }
        if self.all_results is not None:
            payload["allResults"] = [
                {
                    "toolName": inv.tool_name,
                    "toolArgs": inv.arguments,
                    "result": inv.result,
                    "error": inv.error,
                    "success": inv.success,
                }
                for inv in self.all_results
            ]
        if self.error:
            payload["error"] = self.error
        if self.events_found is not None:
            payload["eventsFound"] = self.events_found
        if self.services_checked is not None:
            payload["servicesChecked"] = self.services_checked
        return payload
