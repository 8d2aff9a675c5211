"""AI tool contracts, variants and implementations."""

from .base import ToolContext, ToolResult
from .errors import ErrorCode, InvalidContentError, ResolutionError, ToolError, ValidationError
from .registry import TOOL_SPECS, friendly_name, parse_tool_call, tool_schemas

__all__ = [
    "ErrorCode",
    "InvalidContentError",
    "ResolutionError",
    "TOOL_SPECS",
    "ToolContext",
    "ToolError",
    "ToolResult",
    "ValidationError",
    "friendly_name",
    "parse_tool_call",
    "tool_schemas",
]
