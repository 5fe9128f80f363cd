"""
Tool name sanitizer for function calling.

Catalog names look like ``paragon.gmail_send_email``; function-calling APIs
only accept ``[A-Za-z0-9_-]{1,64}``. The connector prefix is dropped to keep
names short for the model, which means two connectors exposing the same
operation would collide. Collisions are detected per round and each
colliding name gets a short connector tag appended.
"""

from __future__ import annotations

import logging
import re
from collections import defaultdict
from typing import Iterable

from ..constants import CONNECTOR_TAG_LENGTH, TOOL_NAME_MAX_LENGTH
from ..models import SanitizedTools, ToolDescriptor

logger = logging.getLogger(__name__)

_INVALID_CHARS = re.compile(r"[^A-Za-z0-9_-]")


def sanitize_name(full_name: str) -> str:
    """Strip everything through the first dot and replace illegal characters."""
    _, sep, rest = full_name.partition(".")
    base = rest if sep else full_name
    cleaned = _INVALID_CHARS.sub("_", base) or "tool"
    return cleaned[:TOOL_NAME_MAX_LENGTH]


def _with_suffix(base: str, suffix: str) -> str:
    return base[: TOOL_NAME_MAX_LENGTH - len(suffix)] + suffix


def sanitize(descriptors: Iterable[ToolDescriptor]) -> SanitizedTools:
    """
    Build model-ready tool schemas plus the ``sanitized -> full_name`` map.

    The returned ``collisions`` dict lists every base name that more than one
    full name reduced to; those tools are renamed ``<base>_<connector tag>``.
    Names that still clash after tagging are listed too and get ``_2``, ``_3``.
    """
    descriptors = list(descriptors)
    groups: dict[str, list[ToolDescriptor]] = defaultdict(list)
    for tool in descriptors:
        groups[sanitize_name(tool.full_name)].append(tool)

    collisions = {
        base: [t.full_name for t in group]
        for base, group in groups.items()
        if len(group) > 1
    }
    if collisions:
        logger.warning("Sanitized tool name collisions: %s", collisions)

    reverse_map: dict[str, str] = {}
    tools: list[dict] = []
    for tool in descriptors:
        name = sanitize_name(tool.full_name)
        if name in collisions:
            tag = _INVALID_CHARS.sub("_", tool.connector_id)[:CONNECTOR_TAG_LENGTH]
            name = _with_suffix(name, f"_{tag}")
        # A base name from one connector can equal a tagged name from another
        counter = 2
        candidate = name
        while candidate in reverse_map:
            candidate = _with_suffix(name, f"_{counter}")
            counter += 1
        if candidate != name:
            clash = collisions.setdefault(name, [reverse_map[name]])
            clash.append(tool.full_name)
            logger.warning("Sanitized name %s still clashed; using %s", name, candidate)
        reverse_map[candidate] = tool.full_name
        tools.append({
            "name": candidate,
            "description": tool.description or tool.display_title,
            "input_schema": tool.input_schema,
        })

    return SanitizedTools(tools=tools, reverse_map=reverse_map, collisions=collisions)
