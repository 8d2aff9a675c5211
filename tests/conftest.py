"""Shared pytest fixtures."""

from __future__ import annotations

import os
from typing import Iterator

import pytest

from inkling.ai.tools.base import ToolContext
from inkling.editor.document_model import HtmlDocument
from inkling.events import EventBus
from inkling.review.overlay_manager import SuggestionOverlay
from inkling.services.suggestion_cache import InMemorySuggestionStore
from inkling.services.widgets import WidgetCatalog, WidgetPackage

SAMPLE_HTML = '<h1>Title</h1><p>First paragraph.</p><section id="notes"><p>Note</p></section>'


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch: pytest.MonkeyPatch, tmp_path_factory: pytest.TempPathFactory) -> None:
    """Keep user configuration and log files out of the test run."""

    for name in list(os.environ):
        if name.startswith("INKLING_"):
            monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("INKLING_LOG_DIR", str(tmp_path_factory.mktemp("logs")))


@pytest.fixture
def store() -> InMemorySuggestionStore:
    return InMemorySuggestionStore()


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()


@pytest.fixture
def document() -> HtmlDocument:
    return HtmlDocument(SAMPLE_HTML, document_id="doc-1")


@pytest.fixture
def overlay(document: HtmlDocument, store: InMemorySuggestionStore, event_bus: EventBus) -> Iterator[SuggestionOverlay]:
    overlay = SuggestionOverlay(document, store=store, document_key="doc-1", event_bus=event_bus)
    overlay.initialize()
    yield overlay
    overlay.close()


@pytest.fixture
def catalog() -> WidgetCatalog:
    return WidgetCatalog(
        [
            WidgetPackage(
                name="@webwriter/quiz",
                version="1.2.0",
                base_url="https://widgets.test/quiz",
                description="Quizzes with several question types",
            ),
            WidgetPackage(name="@webwriter/slides", version="0.4.1", base_url="", installed=False),
        ]
    )


@pytest.fixture
def tool_context(document: HtmlDocument, overlay: SuggestionOverlay, catalog: WidgetCatalog) -> ToolContext:
    return ToolContext(document=document, overlay=overlay, catalog=catalog)
