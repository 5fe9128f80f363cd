"""Lifecycle hooks for tool-selection rounds."""

from toolpilot.hooks.lifecycle import (
    HookContext,
    HookEvents,
    HookHandler,
    HookManager,
)

__all__ = [
    "HookContext",
    "HookEvents",
    "HookHandler",
    "HookManager",
]
