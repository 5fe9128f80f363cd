"""
Shared constants for toolpilot.

Centralises values that are used across multiple modules to avoid duplication
and ensure consistency.
"""

# ── Standardised user-facing messages ───────────────────────────────────────────
ERROR_MESSAGES = {
    "catalog_empty": (
        "I don't have access to any external tools right now. "
        "Please check your service connections."
    ),
    "processing_failed": "I encountered an error while processing your request: {error}",
    "no_tool_needed": "I understand, but I don't need to use any tools for this request.",
    "tool_completed": "Tool execution completed.",
}


# ── Function-calling identifier rules ───────────────────────────────────────────
TOOL_NAME_MAX_LENGTH = 64
CONNECTOR_TAG_LENGTH = 8


# ── Calendar providers (tool-name marker → service label) ──────────────────────
GOOGLE_CALENDAR_MARKERS = ("google_calendar", "googlecalendar")
CALENDLY_MARKERS = ("calendly",)
GENERIC_CALENDAR_MARKER = "calendar"


# ── Result formatting ───────────────────────────────────────────────────────────
RESULT_LIST_PREVIEW = 3
RESULT_LIST_FULL_MAX = 5
