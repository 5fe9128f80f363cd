"""
Tool catalog package.

- registry.py: ToolCatalog (descriptor map, connector lifecycle, invocation)
- connectors.py: Connector protocol and FunctionConnector
"""

from .connectors import Connector, FunctionConnector
from .registry import CatalogEvent, CatalogListener, ToolCatalog

__all__ = [
    "CatalogEvent",
    "CatalogListener",
    "Connector",
    "FunctionConnector",
    "ToolCatalog",
]
