from __future__ import annotations

import asyncio
import json
from typing import Any, Mapping

import httpx
import pytest

from conftest import SAMPLE_HTML
from inkling.ai.orchestration.tool_dispatcher import ToolDispatcher
from inkling.ai.orchestration.types import ToolCall
from inkling.ai.tools import document_tools
from inkling.ai.tools.base import ToolContext, ToolResult
from inkling.ai.tools.errors import ErrorCode, ValidationError
from inkling.ai.tools.registry import (
    GetDocument,
    InsertAtBottom,
    LatexToMathml,
    ReplaceElement,
    TOOL_SPECS,
    friendly_name,
    parse_tool_call,
    tool_schemas,
)
from inkling.editor.document_model import HtmlDocument
from inkling.events import EventBus, ToolExecuted
from inkling.review.overlay_manager import SuggestionOverlay
from inkling.services.suggestion_cache import InMemorySuggestionStore
from inkling.services.widgets import WidgetDocsFetcher, WidgetDocumentation, WidgetPackage


class _RecordingTelemetry:
    def __init__(self) -> None:
        self.events: list[tuple[str, Mapping[str, Any]]] = []

    def emit(self, event_name: str, payload: Mapping[str, Any]) -> None:
        self.events.append((event_name, dict(payload)))


class _RecordingListener:
    def __init__(self) -> None:
        self.started: list[str] = []
        self.completed: list[str] = []

    def on_tool_start(self, tool_name: str, arguments: str) -> None:
        self.started.append(tool_name)

    def on_tool_complete(self, tool_name: str, result: ToolResult) -> None:
        self.completed.append(tool_name)


class _SlowFetcher:
    def __init__(self, delay: float) -> None:
        self.delay = delay

    async def fetch(self, package: WidgetPackage) -> WidgetDocumentation:
        await asyncio.sleep(self.delay)
        return WidgetDocumentation(name=package.name, readme="# Quiz")

    async def aclose(self) -> None:
        return None


def _call(name: str, arguments: Any = None, call_id: str = "call-1") -> ToolCall:
    payload = arguments if isinstance(arguments, str) else json.dumps(arguments or {})
    return ToolCall(id=call_id, function_name=name, arguments=payload)


async def _run(context: ToolContext, name: str, arguments: Any = None) -> ToolResult:
    return await ToolDispatcher().dispatch(_call(name, arguments), context)


# ----------------------------------------------------------------------
# Registry
# ----------------------------------------------------------------------


def test_tool_schemas_cover_every_tool() -> None:
    schemas = tool_schemas()

    names = [schema["function"]["name"] for schema in schemas]
    assert names == [
        "get_document",
        "replace_element",
        "insert_at_bottom",
        "insert_into_element",
        "get_widget_documentation",
        "list_widgets",
        "latex_to_mathml",
    ]
    replace = schemas[1]["function"]["parameters"]
    assert replace["required"] == ["selector", "html"]
    assert replace["additionalProperties"] is False
    assert all(spec.friendly_name for spec in TOOL_SPECS)
    assert friendly_name("insert_at_bottom") == "Suggesting new content..."
    assert friendly_name("made_up") == "made_up"


def test_parse_tool_call_returns_typed_variant() -> None:
    assert parse_tool_call("get_document", "") == GetDocument()
    assert parse_tool_call("insert_at_bottom", '{"html": "<p>x</p>"}') == InsertAtBottom(html="<p>x</p>")
    assert parse_tool_call("replace_element", {"selector": "h1", "html": "<h1>A</h1>"}) == ReplaceElement(
        selector="h1", html="<h1>A</h1>"
    )
    assert parse_tool_call("latex_to_mathml", {"latex": "x"}) == LatexToMathml(latex="x")


@pytest.mark.parametrize(
    ("name", "arguments", "code"),
    [
        ("delete_everything", "{}", ErrorCode.UNKNOWN_TOOL),
        ("insert_at_bottom", "{not json", ErrorCode.INVALID_ARGUMENTS),
        ("insert_at_bottom", "[1, 2]", ErrorCode.INVALID_ARGUMENTS),
        ("insert_at_bottom", "{}", ErrorCode.INVALID_ARGUMENTS),
        ("insert_at_bottom", '{"html": "<p/>", "extra": 1}', ErrorCode.INVALID_ARGUMENTS),
        ("replace_element", '{"selector": "", "html": "<p/>"}', ErrorCode.INVALID_ARGUMENTS),
        ("latex_to_mathml", '{"latex": "x", "display": "huge"}', ErrorCode.INVALID_ARGUMENTS),
    ],
)
def test_parse_tool_call_rejects_bad_calls(name: str, arguments: str, code: str) -> None:
    with pytest.raises(ValidationError) as excinfo:
        parse_tool_call(name, arguments)

    assert excinfo.value.error_code == code
    assert excinfo.value.to_dict()["tool_name"] == name


# ----------------------------------------------------------------------
# Document tools
# ----------------------------------------------------------------------


@pytest.mark.asyncio
async def test_insert_at_bottom_of_empty_document() -> None:
    document = HtmlDocument("", document_id="empty")
    overlay = SuggestionOverlay(document, store=InMemorySuggestionStore())
    overlay.initialize()
    context = ToolContext(document=document, overlay=overlay)

    result = await _run(context, "insert_at_bottom", {"html": "<p>Hello</p>"})

    assert result.success
    assert document.content == "<p>Hello</p>"
    assert result.content == {"suggestion_id": result.content["suggestion_id"], "from": 0, "to": 12}
    assert overlay.accept_suggestion(result.content["suggestion_id"])
    assert document.content == "<p>Hello</p>"


@pytest.mark.asyncio
async def test_replace_element_without_match_leaves_document_alone(tool_context: ToolContext) -> None:
    result = await _run(tool_context, "replace_element", {"selector": "table", "html": "<p>x</p>"})

    assert not result.success
    assert result.error.error_code == ErrorCode.NO_MATCH
    assert tool_context.document.content == SAMPLE_HTML
    assert len(tool_context.overlay) == 0
    assert json.loads(result.to_message_content())["error"]["query"] == "table"


@pytest.mark.asyncio
async def test_replace_element_creates_suggestion(tool_context: ToolContext) -> None:
    result = await _run(tool_context, "replace_element", {"selector": "h1", "html": "<h1>Better title</h1>"})

    assert result.success
    assert tool_context.document.content.startswith("<h1>Better title</h1><p>First")
    suggestion = tool_context.overlay.get(result.content["suggestion_id"])
    assert suggestion.original_content == "<h1>Title</h1>"


@pytest.mark.asyncio
async def test_insert_into_element_appends_last_child(tool_context: ToolContext) -> None:
    result = await _run(tool_context, "insert_into_element", {"selector": "#notes", "html": "<p>More</p>"})

    assert result.success
    assert tool_context.document.content.endswith("<p>Note</p><p>More</p></section>")


@pytest.mark.asyncio
async def test_insert_into_void_element_fails() -> None:
    document = HtmlDocument("<p>a<br>b</p>")
    overlay = SuggestionOverlay(document)
    context = ToolContext(document=document, overlay=overlay)

    result = await _run(context, "insert_into_element", {"selector": "br", "html": "<em>x</em>"})

    assert not result.success
    assert result.error.error_code == ErrorCode.NO_MATCH
    assert document.content == "<p>a<br>b</p>"


@pytest.mark.asyncio
async def test_invalid_selector_is_reported(tool_context: ToolContext) -> None:
    result = await _run(tool_context, "replace_element", {"selector": "p[", "html": "<p>x</p>"})

    assert not result.success
    assert result.error.error_code == ErrorCode.INVALID_SELECTOR


@pytest.mark.asyncio
async def test_blank_html_is_invalid_content(tool_context: ToolContext) -> None:
    result = await _run(tool_context, "insert_at_bottom", {"html": "   "})

    assert not result.success
    assert result.error.error_code == ErrorCode.INVALID_CONTENT
    assert tool_context.document.content == SAMPLE_HTML


@pytest.mark.asyncio
async def test_unknown_tool_becomes_failed_result(tool_context: ToolContext) -> None:
    result = await _run(tool_context, "format_disk")

    assert not result.success
    assert result.error.error_code == ErrorCode.UNKNOWN_TOOL
    assert result.tool_call_id == "call-1"


@pytest.mark.asyncio
async def test_get_document_returns_current_html(tool_context: ToolContext) -> None:
    result = await _run(tool_context, "get_document")

    assert result.success
    assert result.content == SAMPLE_HTML


# ----------------------------------------------------------------------
# Math and widget tools
# ----------------------------------------------------------------------


@pytest.mark.asyncio
async def test_latex_to_mathml(tool_context: ToolContext) -> None:
    result = await _run(tool_context, "latex_to_mathml", {"latex": "$x^2$"})

    assert result.success
    assert "<msup>" in result.content
    assert result.content.startswith("<math")


@pytest.mark.asyncio
async def test_latex_to_mathml_rejects_empty_formula(tool_context: ToolContext) -> None:
    result = await _run(tool_context, "latex_to_mathml", {"latex": "$ $"})

    assert not result.success
    assert result.error.error_code == ErrorCode.INVALID_CONTENT


@pytest.mark.asyncio
async def test_list_widgets(tool_context: ToolContext) -> None:
    result = await _run(tool_context, "list_widgets")

    assert result.success
    assert [entry["name"] for entry in result.content] == ["@webwriter/quiz", "@webwriter/slides"]
    assert result.content[0]["version"] == "1.2.0"


@pytest.mark.asyncio
async def test_unknown_widget(tool_context: ToolContext) -> None:
    result = await _run(tool_context, "get_widget_documentation", {"name": "@webwriter/nope"})

    assert not result.success
    assert result.error.error_code == ErrorCode.UNKNOWN_WIDGET


@pytest.mark.asyncio
async def test_widget_documentation_is_fetched(tool_context: ToolContext) -> None:
    manifest = {
        "modules": [
            {
                "declarations": [
                    {
                        "tagName": "webwriter-quiz",
                        "description": "A quiz",
                        "attributes": [{"name": "shuffle", "type": {"text": "boolean"}}],
                    }
                ]
            }
        ]
    }

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("README.md"):
            return httpx.Response(200, text="# Quiz")
        return httpx.Response(200, json=manifest)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    tool_context.docs_fetcher = WidgetDocsFetcher(client, retry_min_seconds=0)

    result = await _run(tool_context, "get_widget_documentation", {"name": "@WebWriter/Quiz"})
    await client.aclose()

    assert result.success
    assert result.content["readme"] == "# Quiz"
    assert result.content["declarations"][0]["tagName"] == "webwriter-quiz"
    assert result.content["declarations"][0]["attributes"] == [{"name": "shuffle", "type": "boolean"}]


@pytest.mark.asyncio
async def test_widget_documentation_without_fetcher(tool_context: ToolContext) -> None:
    result = await _run(tool_context, "get_widget_documentation", {"name": "@webwriter/quiz"})

    assert not result.success
    assert result.error.error_code == ErrorCode.DOCUMENTATION_UNAVAILABLE


# ----------------------------------------------------------------------
# Dispatcher
# ----------------------------------------------------------------------


@pytest.mark.asyncio
async def test_dispatch_all_keeps_request_order(tool_context: ToolContext) -> None:
    tool_context.docs_fetcher = _SlowFetcher(delay=0.05)
    listener = _RecordingListener()
    dispatcher = ToolDispatcher(listener=listener)
    calls = [
        _call("get_widget_documentation", {"name": "@webwriter/quiz"}, call_id="slow"),
        _call("get_document", call_id="fast"),
    ]

    results = await dispatcher.dispatch_all(calls, tool_context)

    assert [result.tool_call_id for result in results] == ["slow", "fast"]
    assert listener.completed == ["get_document", "get_widget_documentation"]
    assert results[0].content["readme"] == "# Quiz"


@pytest.mark.asyncio
async def test_dispatch_publishes_tool_events(tool_context: ToolContext) -> None:
    bus = EventBus()
    events: list[ToolExecuted] = []
    bus.subscribe(ToolExecuted, events.append)
    telemetry = _RecordingTelemetry()
    tool_context.telemetry = telemetry
    tool_context.request_id = "cycle-test"
    dispatcher = ToolDispatcher(event_bus=bus)

    ok = await dispatcher.dispatch(_call("get_document", call_id="a"), tool_context)
    failed = await dispatcher.dispatch(_call("nope", call_id="b"), tool_context)

    assert [(event.tool_call_id, event.success) for event in events] == [("a", True), ("b", False)]
    assert events[1].metadata == {"error_code": ErrorCode.UNKNOWN_TOOL}
    assert ok.metadata == {"tool_name": "get_document", "request_id": "cycle-test"}
    assert failed.duration_ms >= 0
    assert [name for name, _ in telemetry.events] == ["tool_executed", "tool_executed"]


@pytest.mark.asyncio
async def test_unexpected_tool_failure_becomes_internal_error(tool_context: ToolContext, monkeypatch) -> None:
    def boom(context, call):
        raise RuntimeError("kaput")

    monkeypatch.setattr(document_tools, "get_document", boom)

    result = await _run(tool_context, "get_document")

    assert not result.success
    assert result.error.error_code == ErrorCode.INTERNAL_ERROR
    assert "kaput" in result.message
