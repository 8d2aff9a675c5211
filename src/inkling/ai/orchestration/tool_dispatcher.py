"""Tool dispatcher for the agent loop.

Routes parsed tool variants to their implementations. Dispatch never raises:
unknown tools, invalid arguments and failing implementations all come back as
a failed :class:`ToolResult` so a hallucinated call cannot end the loop.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Mapping, Protocol, Sequence

from ...events import EventBus, ToolExecuted
from ..tools import document_tools, math_tools, widget_tools
from ..tools.base import ToolContext, ToolResult
from ..tools.errors import ErrorCode, ToolError
from ..tools.registry import (
    GetDocument,
    GetWidgetDocumentation,
    InsertAtBottom,
    InsertIntoElement,
    LatexToMathml,
    ListWidgets,
    ReplaceElement,
    ToolCallVariant,
    parse_tool_call,
)
from .types import ToolCall

LOGGER = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# Dispatch Listener
# -----------------------------------------------------------------------------


class DispatchListener(Protocol):
    """Callback protocol for dispatch events."""

    def on_tool_start(self, tool_name: str, arguments: str) -> None:
        """Called when a tool starts execution."""
        ...

    def on_tool_complete(self, tool_name: str, result: ToolResult) -> None:
        """Called when a tool completes, successfully or not."""
        ...


# -----------------------------------------------------------------------------
# Tool Dispatcher
# -----------------------------------------------------------------------------


class ToolDispatcher:
    """Dispatches model tool calls to the tool implementations.

    Example:
        dispatcher = ToolDispatcher(event_bus=bus)
        result = await dispatcher.dispatch(call, context)
    """

    def __init__(
        self,
        *,
        listener: DispatchListener | None = None,
        event_bus: EventBus | None = None,
    ) -> None:
        self._listener = listener
        self._event_bus = event_bus

    def set_listener(self, listener: DispatchListener | None) -> None:
        self._listener = listener

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def dispatch(self, call: ToolCall, context: ToolContext) -> ToolResult:
        """Execute one tool call and wrap its outcome.

        Args:
            call: Tool call as requested by the model.
            context: Session context the tool runs against.

        Returns:
            ToolResult correlated to ``call.id``.
        """
        started = time.perf_counter()
        self._notify_start(call)

        try:
            variant = parse_tool_call(call.function_name, call.arguments)
            content = await self._execute(variant, context)
            result = ToolResult.from_success(call.id, content)
        except ToolError as exc:
            LOGGER.debug("Tool %s failed: %s", call.function_name, exc)
            result = ToolResult.from_error(call.id, exc)
        except Exception as exc:
            LOGGER.exception("Tool %s failed unexpectedly", call.function_name)
            error = ToolError(error_code=ErrorCode.INTERNAL_ERROR, message=str(exc) or type(exc).__name__)
            result = ToolResult.from_error(call.id, error)

        result.duration_ms = (time.perf_counter() - started) * 1000.0
        result.metadata.setdefault("tool_name", call.function_name)
        if context.request_id:
            result.metadata.setdefault("request_id", context.request_id)
        self._notify_complete(call, result)
        context.emit(
            "tool_executed",
            {"tool": call.function_name, "success": result.success, "duration_ms": result.duration_ms},
        )
        return result

    async def dispatch_all(self, calls: Sequence[ToolCall], context: ToolContext) -> list[ToolResult]:
        """Run every call of one turn concurrently; results keep request order."""

        if not calls:
            return []
        return list(await asyncio.gather(*(self.dispatch(call, context) for call in calls)))

    async def _execute(self, variant: ToolCallVariant, context: ToolContext) -> Any:
        if isinstance(variant, GetDocument):
            return document_tools.get_document(context, variant)
        if isinstance(variant, ReplaceElement):
            return document_tools.replace_element(context, variant)
        if isinstance(variant, InsertAtBottom):
            return document_tools.insert_at_bottom(context, variant)
        if isinstance(variant, InsertIntoElement):
            return document_tools.insert_into_element(context, variant)
        if isinstance(variant, GetWidgetDocumentation):
            return await widget_tools.get_widget_documentation(context, variant)
        if isinstance(variant, ListWidgets):
            return widget_tools.list_widgets(context, variant)
        if isinstance(variant, LatexToMathml):
            return math_tools.latex_to_mathml(context, variant)
        raise TypeError(f"Unhandled tool variant {type(variant).__name__}")

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    def _notify_start(self, call: ToolCall) -> None:
        if self._listener is None:
            return
        try:
            self._listener.on_tool_start(call.function_name, call.arguments)
        except Exception:
            LOGGER.debug("Listener on_tool_start failed", exc_info=True)

    def _notify_complete(self, call: ToolCall, result: ToolResult) -> None:
        if self._listener is not None:
            try:
                self._listener.on_tool_complete(call.function_name, result)
            except Exception:
                LOGGER.debug("Listener on_tool_complete failed", exc_info=True)
        if self._event_bus is not None:
            metadata: Mapping[str, Any] = {}
            if result.error is not None:
                metadata = {"error_code": result.error.error_code}
            self._event_bus.publish(
                ToolExecuted(
                    tool_name=call.function_name,
                    tool_call_id=call.id,
                    success=result.success,
                    duration_ms=result.duration_ms,
                    metadata=dict(metadata),
                )
            )


__all__ = ["DispatchListener", "ToolDispatcher"]
