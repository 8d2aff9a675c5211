"""Event bus infrastructure for decoupled communication with presentation layers.

The overlay engine and the agent loop publish plain dataclass events here; any
front end (CLI, web view, tests) subscribes without either side importing the
other.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import (
    Any,
    Callable,
    Generic,
    TypeVar,
    TYPE_CHECKING,
)
from weakref import WeakMethod, ref

if TYPE_CHECKING:  # pragma: no cover - imports for type checking only
    from typing import DefaultDict

logger = logging.getLogger(__name__)

E = TypeVar("E", bound="Event")

Handler = Callable[[E], None]


@dataclass(slots=True)
class Event:
    """Base class for all events published on the bus."""

    pass


# =============================================================================
# Suggestion events
# =============================================================================


@dataclass(slots=True)
class SuggestionsChanged(Event):
    """Emitted after a transaction changed the pending suggestion set or spans.

    Attributes:
        document_id: Document owning the overlay.
        suggestion_ids: Ids of the pending suggestions, in creation order.
        markers: Marker descriptors derived for the current spans.
        content_changed: False when only offsets moved.
    """

    document_id: str
    suggestion_ids: tuple[str, ...]
    markers: tuple[Any, ...] = ()
    content_changed: bool = True


@dataclass(slots=True)
class SuggestionAccepted(Event):
    document_id: str
    suggestion_id: str


@dataclass(slots=True)
class SuggestionRejected(Event):
    document_id: str
    suggestion_id: str


# =============================================================================
# Agent loop events
# =============================================================================


@dataclass(slots=True)
class AgentStateChanged(Event):
    """Emitted whenever the agent loop changes state.

    Attributes:
        previous: Name of the state being left.
        current: Name of the state being entered.
        error: Error text when entering ``Failed``.
    """

    previous: str
    current: str
    error: str | None = None


@dataclass(slots=True)
class TranscriptChanged(Event):
    message_count: int
    reason: str = ""


@dataclass(slots=True)
class ToolExecuted(Event):
    """Emitted after one tool call finished, successfully or not."""

    tool_name: str
    tool_call_id: str
    success: bool
    duration_ms: float = 0.0
    metadata: dict[str, Any] = field(default_factory=dict)


# High-frequency event types that should not log each publish
_QUIET_EVENT_TYPES: set[type] = {SuggestionsChanged}


class EventBus(Generic[E]):
    """A typed publish-subscribe event bus.

    Handlers are stored as weak references where possible (bound methods), so a
    subscriber going away never keeps the bus from publishing. The bus is not
    thread-safe; publish from the event loop thread.
    """

    __slots__ = ("_handlers",)

    def __init__(self) -> None:
        self._handlers: DefaultDict[type[Event], list[_HandlerRef]] = defaultdict(list)

    def subscribe(self, event_type: type[E], handler: Handler[E]) -> None:
        """Register a handler to receive events of the specified type.

        Subscribing the same handler twice results in two invocations.
        """
        handler_ref = _HandlerRef.create(handler)
        self._handlers[event_type].append(handler_ref)
        logger.debug(
            "Subscribed handler %s to event type %s",
            _handler_name(handler),
            event_type.__name__,
        )

    def unsubscribe(self, event_type: type[E], handler: Handler[E]) -> None:
        """Remove the first registration of ``handler``; unknown handlers are ignored."""
        handlers = self._handlers.get(event_type)
        if handlers is None:
            return

        for i, handler_ref in enumerate(handlers):
            if handler_ref.matches(handler):
                handlers.pop(i)
                logger.debug(
                    "Unsubscribed handler %s from event type %s",
                    _handler_name(handler),
                    event_type.__name__,
                )
                return

    def publish(self, event: E) -> None:
        """Broadcast an event to all registered handlers.

        Handlers run synchronously in registration order. A handler that raises
        is logged and the remaining handlers still run.
        """
        event_type = type(event)
        handlers = self._handlers.get(event_type)
        is_quiet = event_type in _QUIET_EVENT_TYPES

        if handlers is None:
            if not is_quiet:
                logger.debug("No handlers for event type %s", event_type.__name__)
            return

        if not is_quiet:
            logger.debug(
                "Publishing %s to %d handler(s)",
                event_type.__name__,
                len(handlers),
            )

        dead_refs: list[_HandlerRef] = []

        for handler_ref in list(handlers):
            handler = handler_ref.resolve()
            if handler is None:
                dead_refs.append(handler_ref)
                continue

            try:
                handler(event)
            except Exception:
                logger.exception(
                    "Handler %s raised exception for event %s",
                    _handler_name(handler),
                    event_type.__name__,
                )

        for handler_ref in dead_refs:
            if handler_ref in handlers:
                handlers.remove(handler_ref)

    def clear(self) -> None:
        self._handlers.clear()
        logger.debug("Cleared all event handlers")

    def handler_count(self, event_type: type[E] | None = None) -> int:
        if event_type is not None:
            return len(self._handlers.get(event_type, []))
        return sum(len(handlers) for handlers in self._handlers.values())


class _HandlerRef:
    """Weak reference for bound methods, strong reference for everything else."""

    __slots__ = ("_ref", "_is_weak")

    def __init__(self, handler_ref: WeakMethod | ref | Handler, is_weak: bool) -> None:
        self._ref = handler_ref
        self._is_weak = is_weak

    @classmethod
    def create(cls, handler: Handler) -> _HandlerRef:
        if hasattr(handler, "__self__") and hasattr(handler, "__func__"):
            try:
                return cls(WeakMethod(handler), is_weak=True)
            except TypeError:
                pass
        return cls(handler, is_weak=False)

    def resolve(self) -> Handler | None:
        if not self._is_weak:
            return self._ref  # type: ignore[return-value]
        return self._ref()  # type: ignore[operator]

    def matches(self, handler: Handler) -> bool:
        resolved = self.resolve()
        if resolved is None:
            return False
        return resolved == handler


def _handler_name(handler: Handler) -> str:
    if hasattr(handler, "__self__") and hasattr(handler, "__func__"):
        cls_name = type(handler.__self__).__name__
        return f"{cls_name}.{handler.__func__.__name__}"
    if hasattr(handler, "__name__"):
        return handler.__name__
    return repr(handler)


__all__ = [
    "Event",
    "EventBus",
    "Handler",
    # Suggestion events
    "SuggestionsChanged",
    "SuggestionAccepted",
    "SuggestionRejected",
    # Agent loop events
    "AgentStateChanged",
    "TranscriptChanged",
    "ToolExecuted",
]
