"""Shared types for AI tools.

Tools receive a :class:`ToolContext` with everything they may touch and return
plain data; the dispatcher wraps that data (or the raised :class:`ToolError`)
into a :class:`ToolResult`.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Mapping, Protocol

from .errors import ToolError

if TYPE_CHECKING:  # pragma: no cover
    from ...editor.document_model import HtmlDocument
    from ...review.overlay_manager import SuggestionOverlay
    from ...services.widgets import WidgetCatalog, WidgetDocsFetcher

LOGGER = logging.getLogger(__name__)


class TelemetryEmitter(Protocol):
    """Protocol for emitting telemetry events."""

    def emit(self, event_name: str, payload: Mapping[str, Any]) -> None:
        """Emit a telemetry event with the given payload."""
        ...


@dataclass(slots=True)
class ToolResult:
    """Outcome of one tool call as seen by the model.

    Attributes:
        tool_call_id: Id of the call this result answers.
        success: Whether the tool completed successfully.
        message: Short human-readable status, always set on failure.
        content: Tool output (text or JSON-serializable data).
        error: The tool error behind a failed result.
        duration_ms: Execution time in milliseconds.
        metadata: Additional metadata about the execution.
    """

    tool_call_id: str
    success: bool
    message: str | None = None
    content: Any = None
    error: ToolError | None = None
    duration_ms: float = 0.0
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_success(cls, tool_call_id: str, content: Any = None, *, message: str | None = None) -> ToolResult:
        return cls(tool_call_id=tool_call_id, success=True, message=message, content=content)

    @classmethod
    def from_error(cls, tool_call_id: str, error: ToolError) -> ToolResult:
        return cls(tool_call_id=tool_call_id, success=False, message=error.message, error=error)

    def to_dict(self) -> dict[str, Any]:
        """Serialize the result for the tool message sent back to the model."""
        payload: dict[str, Any] = {"success": self.success}
        if self.message:
            payload["message"] = self.message
        if self.content is not None:
            payload["content"] = self.content
        if self.error is not None:
            payload["error"] = self.error.to_dict()
        return payload

    def to_message_content(self) -> str:
        try:
            return json.dumps(self.to_dict(), ensure_ascii=False)
        except (TypeError, ValueError):
            LOGGER.debug("Tool result for %s is not JSON serializable", self.tool_call_id, exc_info=True)
            return json.dumps({"success": self.success, "message": self.message, "content": str(self.content)})


@dataclass(slots=True)
class ToolContext:
    """Runtime context provided to tool execution.

    Attributes:
        document: The live document tools read from.
        overlay: Suggestion overlay; the only path for document mutation.
        catalog: Installed widget packages.
        docs_fetcher: Fetches widget documentation.
        telemetry: Optional telemetry emitter.
        request_id: Identifier of the agent cycle issuing the calls.
    """

    document: HtmlDocument
    overlay: SuggestionOverlay
    catalog: WidgetCatalog | None = None
    docs_fetcher: WidgetDocsFetcher | None = None
    telemetry: TelemetryEmitter | None = None
    request_id: str | None = None

    def emit(self, event_name: str, payload: Mapping[str, Any]) -> None:
        if self.telemetry is None:
            return
        try:
            self.telemetry.emit(event_name, payload)
        except Exception:
            LOGGER.debug("Telemetry emit failed for %s", event_name, exc_info=True)


__all__ = ["TelemetryEmitter", "ToolContext", "ToolResult"]
