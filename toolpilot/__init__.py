"""toolpilot: natural-language tool selection and invocation for connected services."""

__version__ = "0.1.0"
