"""Unit tests for :mod:`inkling.events`."""

from __future__ import annotations

import gc

from inkling.events import (
    AgentStateChanged,
    Event,
    EventBus,
    SuggestionAccepted,
    SuggestionsChanged,
)


class _Recorder:
    def __init__(self) -> None:
        self.received: list[Event] = []

    def on_event(self, event: Event) -> None:
        self.received.append(event)


class TestEventBusSubscription:
    """Tests for EventBus subscription functionality."""

    def test_subscribe_and_publish(self) -> None:
        """Handlers receive events of the type they subscribed to."""
        bus: EventBus[Event] = EventBus()
        received: list[SuggestionAccepted] = []

        bus.subscribe(SuggestionAccepted, received.append)
        bus.publish(SuggestionAccepted(document_id="doc", suggestion_id="s1"))

        assert received == [SuggestionAccepted(document_id="doc", suggestion_id="s1")]
        assert bus.handler_count(SuggestionAccepted) == 1

    def test_event_types_are_isolated(self) -> None:
        """Publishing one type does not reach handlers of another."""
        bus: EventBus[Event] = EventBus()
        received: list[Event] = []
        bus.subscribe(AgentStateChanged, received.append)

        bus.publish(SuggestionsChanged(document_id="doc", suggestion_ids=()))

        assert received == []

    def test_subscribe_same_handler_twice(self) -> None:
        bus: EventBus[Event] = EventBus()
        received: list[Event] = []

        def handler(event: Event) -> None:
            received.append(event)

        bus.subscribe(AgentStateChanged, handler)
        bus.subscribe(AgentStateChanged, handler)
        bus.publish(AgentStateChanged(previous="Idle", current="AwaitingModel"))

        assert len(received) == 2

    def test_unsubscribe_removes_first_registration(self) -> None:
        bus: EventBus[Event] = EventBus()
        received: list[Event] = []

        def handler(event: Event) -> None:
            received.append(event)

        bus.subscribe(AgentStateChanged, handler)
        bus.unsubscribe(AgentStateChanged, handler)
        bus.unsubscribe(AgentStateChanged, handler)
        bus.unsubscribe(SuggestionAccepted, handler)
        bus.publish(AgentStateChanged(previous="Idle", current="AwaitingModel"))

        assert received == []
        assert bus.handler_count() == 0


class TestEventBusDelivery:
    """Tests for handler lifetime and failure isolation."""

    def test_bound_methods_are_held_weakly(self) -> None:
        """A collected subscriber is dropped on the next publish."""
        bus: EventBus[Event] = EventBus()
        recorder = _Recorder()
        bus.subscribe(SuggestionAccepted, recorder.on_event)

        del recorder
        gc.collect()
        bus.publish(SuggestionAccepted(document_id="doc", suggestion_id="s1"))

        assert bus.handler_count(SuggestionAccepted) == 0

    def test_live_bound_method_receives_events(self) -> None:
        bus: EventBus[Event] = EventBus()
        recorder = _Recorder()
        bus.subscribe(SuggestionAccepted, recorder.on_event)

        bus.publish(SuggestionAccepted(document_id="doc", suggestion_id="s1"))

        assert len(recorder.received) == 1

    def test_failing_handler_does_not_block_others(self) -> None:
        """A handler exception is logged and later handlers still run."""
        bus: EventBus[Event] = EventBus()
        received: list[Event] = []

        def broken(event: Event) -> None:
            raise RuntimeError("boom")

        bus.subscribe(AgentStateChanged, broken)
        bus.subscribe(AgentStateChanged, received.append)
        bus.publish(AgentStateChanged(previous="Idle", current="Failed", error="x"))

        assert len(received) == 1

    def test_clear_drops_all_handlers(self) -> None:
        bus: EventBus[Event] = EventBus()
        bus.subscribe(AgentStateChanged, lambda event: None)
        bus.subscribe(SuggestionAccepted, lambda event: None)

        bus.clear()

        assert bus.handler_count() == 0
