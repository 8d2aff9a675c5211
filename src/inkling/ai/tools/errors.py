"""Standardized error types for AI tools.

Every tool failure is a :class:`ToolError`; the dispatcher turns it into a
failed tool result the model can read, so none of these ever reach the
transport layer.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar


# -----------------------------------------------------------------------------
# Error Code Constants
# -----------------------------------------------------------------------------

class ErrorCode:
    """Constants for error codes used in tool responses."""

    # Argument errors
    UNKNOWN_TOOL = "unknown_tool"
    INVALID_ARGUMENTS = "invalid_arguments"
    INVALID_SELECTOR = "invalid_selector"

    # Resolution errors
    NO_MATCH = "no_match"
    UNKNOWN_WIDGET = "unknown_widget"

    # Content errors
    INVALID_CONTENT = "invalid_content"
    CONVERSION_FAILED = "conversion_failed"

    # General errors
    DOCUMENTATION_UNAVAILABLE = "documentation_unavailable"
    INTERNAL_ERROR = "internal_error"


# -----------------------------------------------------------------------------
# Base Error Class
# -----------------------------------------------------------------------------

@dataclass
class ToolError(Exception):
    """Base exception class for all tool errors.

    Attributes:
        error_code: Machine-readable error identifier.
        message: Human-readable error description.
        details: Additional structured error information.
        suggestion: Actionable guidance for recovery.
    """

    error_code: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = ""

    severity: ClassVar[str] = "error"

    def __post_init__(self) -> None:
        Exception.__init__(self, self.message)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a dictionary for JSON tool responses."""
        result: dict[str, Any] = {
            "error": self.error_code,
            "message": self.message,
        }
        if self.details:
            result["details"] = dict(self.details)
        if self.suggestion:
            result["suggestion"] = self.suggestion
        return result

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"


# -----------------------------------------------------------------------------
# Argument Errors
# -----------------------------------------------------------------------------

@dataclass
class ValidationError(ToolError):
    """Raised when a tool name or its arguments fail validation."""

    error_code: str = field(default=ErrorCode.INVALID_ARGUMENTS)
    message: str = field(default="Tool arguments are invalid")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="Check the tool schema and retry with valid arguments")

    tool_name: str | None = field(default=None)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.tool_name:
            result["tool_name"] = self.tool_name
        return result


# -----------------------------------------------------------------------------
# Resolution Errors
# -----------------------------------------------------------------------------

@dataclass
class ResolutionError(ToolError):
    """Raised when a structural query or name resolves to nothing."""

    error_code: str = field(default=ErrorCode.NO_MATCH)
    message: str = field(default="Nothing in the document matches the query")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="Call get_document and retry with a selector that matches an element")

    query: str | None = field(default=None)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.query is not None:
            result["query"] = self.query
        return result


# -----------------------------------------------------------------------------
# Content Errors
# -----------------------------------------------------------------------------

@dataclass
class InvalidContentError(ToolError):
    """Raised when provided markup or math source cannot be used."""

    error_code: str = field(default=ErrorCode.INVALID_CONTENT)
    message: str = field(default="The provided content could not be parsed")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="Provide a non-empty, well-formed fragment")


__all__ = [
    "ErrorCode",
    "ToolError",
    "ValidationError",
    "ResolutionError",
    "InvalidContentError",
]
