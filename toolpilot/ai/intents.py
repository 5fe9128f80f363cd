"""
Intent rule table.

One table maps request wording to a tool class (create / read / update /
delete). The context enhancer, the selection prompt text and the
delete-intent guard in the selector all read from here, so the keyword
lists cannot drift apart.

Rules are evaluated in order; the first match wins. Delete comes first so
"cancel the meeting I just created" is a delete, not a create.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum


class ToolClass(str, Enum):
    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True)
class IntentRule:
    tool_class: ToolClass
    pattern: re.Pattern
    examples: tuple[str, ...]


def _words(*words: str) -> re.Pattern:
    alternation = "|".join(w.replace(" ", r"\s+") for w in words)
    return re.compile(rf"\b(?:{alternation})\b", re.IGNORECASE)


INTENT_RULES: tuple[IntentRule, ...] = (
    IntentRule(
        ToolClass.DELETE,
        _words("delete", "cancel", "remove", "get rid of", "clear out", "unschedule"),
        ("delete it", "cancel it", "remove it", "cancel my meeting with Sarah"),
    ),
    IntentRule(
        ToolClass.UPDATE,
        _words("change", "update", "modify", "move", "reschedule", "rename", "edit", "push back"),
        ("change the time of tomorrow's meeting to 3pm", "reschedule my call", "update event"),
    ),
    IntentRule(
        ToolClass.CREATE,
        _words("create", "schedule", "book", "set up", "add", "make", "send", "draft", "write", "post"),
        ("create an event for 25th at 8pm", "schedule a meeting", "book an appointment"),
    ),
    IntentRule(
        ToolClass.READ,
        _words("what", "show", "list", "check", "any", "anything", "do i have", "find", "search", "read", "get", "when"),
        ("what do I have tomorrow", "check my schedule", "any events on the 25th"),
    ),
)

# Tool names arrive as snake_case or camelCase (google_calendar_delete_event,
# createEvent) and are classified by their verb tokens.
_TOOL_NAME_VERBS: tuple[tuple[ToolClass, frozenset[str]], ...] = (
    (ToolClass.DELETE, frozenset({"delete", "cancel", "remove", "trash"})),
    (ToolClass.UPDATE, frozenset({"update", "patch", "modify", "edit", "reschedule", "move"})),
    (ToolClass.CREATE, frozenset({"create", "insert", "add", "send", "draft", "post", "book"})),
    (ToolClass.READ, frozenset({"list", "get", "search", "read", "find", "fetch", "query"})),
)
_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")
_NAME_SEPARATORS = re.compile(r"[^a-z0-9]+")

ANAPHORIC_MARKERS: tuple[str, ...] = (
    "delete them", "remove them", "them", "those", "these", "they", "it",
)
_ANAPHORA = _words(*ANAPHORIC_MARKERS)


def classify_intent(text: str) -> ToolClass | None:
    """Tool class the request asks for, or None when nothing matches."""
    for rule in INTENT_RULES:
        if rule.pattern.search(text):
            return rule.tool_class
    return None


def classify_tool(name: str) -> ToolClass | None:
    """Tool class implied by a tool's name."""
    tokens = set(_NAME_SEPARATORS.split(_CAMEL_BOUNDARY.sub("_", name).lower()))
    for tool_class, verbs in _TOOL_NAME_VERBS:
        if tokens & verbs:
            return tool_class
    return None


def has_anaphora(text: str) -> bool:
    return bool(_ANAPHORA.search(text))


_POLITE_LEAD = re.compile(
    r"^\s*(?:(?:can|could|would|will)\s+you\s+)?(?:please\s+)?", re.IGNORECASE,
)
_QUESTION_LEAD = _words(
    "which", "what", "when", "where", "who", "why", "how", "did", "do", "does",
    "have", "has", "had", "was", "were", "is", "are",
)
_DELETE_COMMAND = re.compile(
    r"(?:^|[.!;,]\s*|\b(?:and|then|please|just)\s+"
    r"|\b(?:i\s+(?:need|want|would\s+like)\s+to|let'?s)\s+)"
    r"(?:delete|cancel|remove|get\s+rid\s+of|clear\s+out|unschedule)\b",
    re.IGNORECASE,
)


def is_delete_request(text: str) -> bool:
    """
    True when the text asks for a deletion to happen now.

    "cancel my 3pm meeting" and "could you delete it?" qualify. Questions
    about past deletions such as "which meetings did I cancel?" do not.
    """
    if classify_intent(text) is not ToolClass.DELETE:
        return False
    polite = _POLITE_LEAD.match(text)
    body = text[polite.end():].strip()
    if not polite.group(0).strip() and body.endswith("?"):
        return False
    if _QUESTION_LEAD.match(body):
        return False
    return bool(_DELETE_COMMAND.search(body))


def render_intent_guidance() -> str:
    """Prompt lines describing which tool class each kind of request needs."""
    labels = {
        ToolClass.CREATE: "CREATE intent → call the create tool",
        ToolClass.READ: "READ intent → call the list/read tools",
        ToolClass.UPDATE: "UPDATE intent → call the update tool with the event_id and changed fields",
        ToolClass.DELETE: "DELETE intent → call the delete/cancel tool with the event_id",
    }
    lines = []
    for rule in INTENT_RULES:
        examples = ", ".join(f'"{e}"' for e in rule.examples)
        lines.append(f"- {labels[rule.tool_class]} (e.g. {examples})")
    return "\n".join(lines)
