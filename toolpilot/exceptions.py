"""Custom exception hierarchy for toolpilot."""


class ToolPilotError(Exception):
    """Base exception for toolpilot."""
    pass


class CatalogEmptyError(ToolPilotError):
    """Raised when a selection round starts with no tools registered."""
    pass


class ConnectorUnavailableError(ToolPilotError):
    """Raised when the connector owning a tool is not running (or its circuit is open)."""

    def __init__(self, connector_id: str, reason: str = "not running"):
        self.connector_id = connector_id
        super().__init__(f"Connector '{connector_id}' is unavailable: {reason}")


class ToolNotFoundError(ToolPilotError):
    """Raised when a tool name is absent from the catalog."""

    def __init__(self, full_name: str):
        self.full_name = full_name
        super().__init__(f"Tool not found: {full_name}")


class InvocationFailedError(ToolPilotError):
    """Raised when a connector reports an error while running a tool."""

    def __init__(self, full_name: str, message: str):
        self.full_name = full_name
        super().__init__(f"{full_name} failed: {message}")


class ParseFailedError(ToolPilotError):
    """Raised when a tool response or model argument payload cannot be decoded."""
    pass


class ModelUnavailableError(ToolPilotError):
    """Raised when no model provider could answer a prompt."""
    pass
