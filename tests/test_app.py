"""Tests covering the command line entry point and session wiring."""

from __future__ import annotations

import io
import json
from pathlib import Path
from typing import Any

import pytest

from inkling import app
from inkling.ai.client import TransportError
from inkling.ai.orchestration.types import ChatRequest, ChatResponse, Message, ToolCall
from inkling.editor.document_model import HtmlDocument
from inkling.services.settings import Settings, SettingsStore
from inkling.services.suggestion_cache import InMemorySuggestionStore
from inkling.services.widgets import WidgetCatalog


class _StubEndpoint:
    def __init__(self, *replies: Any) -> None:
        self._replies = list(replies)
        self.requests: list[ChatRequest] = []

    async def complete(self, request: ChatRequest) -> ChatResponse:
        self.requests.append(request)
        reply = self._replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return ChatResponse(message=reply)


def _quiz_replies() -> tuple[Message, Message]:
    call = ToolCall(id="c1", function_name="insert_at_bottom", arguments='{"html": "<p>Quiz</p>"}')
    return Message.assistant("", [call]), Message.assistant("Added a quiz paragraph.")


@pytest.fixture(autouse=True)
def _quiet_logging(monkeypatch: pytest.MonkeyPatch) -> list[bool]:
    calls: list[bool] = []
    monkeypatch.setattr(app, "configure_logging", lambda debug=False, *, force=False: calls.append(debug))
    return calls


def test_coerce_cli_overrides_casts_types() -> None:
    overrides = app._coerce_cli_overrides(
        [
            "chat_url=https://cli/api/chat",
            "debug_logging=true",
            "max_tool_iterations=12",
            "request_timeout=42.25",
            "widget_catalog_path=none",
            'default_headers={"X-Client": "cli"}',
        ]
    )

    assert overrides["chat_url"] == "https://cli/api/chat"
    assert overrides["debug_logging"] is True
    assert overrides["max_tool_iterations"] == 12
    assert overrides["request_timeout"] == pytest.approx(42.25)
    assert overrides["widget_catalog_path"] is None
    assert overrides["default_headers"] == {"X-Client": "cli"}


@pytest.mark.parametrize("entry", ["not_a_setting=value", "model", "=x", "debug_logging=maybe"])
def test_coerce_cli_overrides_rejects_bad_entries(entry: str) -> None:
    with pytest.raises(ValueError):
        app._coerce_cli_overrides([entry])


def test_dump_settings_redacts_api_key(tmp_path: Path) -> None:
    settings = Settings(api_key="super-secret", chat_url="https://example.com/api/chat")
    store = SettingsStore(tmp_path / "settings.json")
    buffer = io.StringIO()

    app._dump_settings(settings, store, overrides={"chat_url": "https://cli"}, stream=buffer)

    payload = json.loads(buffer.getvalue())
    assert payload["settings"]["api_key"] == "su********et"
    assert payload["meta"]["secret_backend"] == store.vault.strategy
    assert payload["meta"]["cli_overrides"] == ["chat_url"]


def test_main_dump_settings(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    path = tmp_path / "settings.json"
    SettingsStore(path).save(Settings(api_key="super-secret"))

    exit_code = app.main(["--dump-settings", "--settings-path", str(path), "--set", "model=gpt-cli"])

    payload = json.loads(capsys.readouterr().out)
    assert exit_code == 0
    assert payload["settings"]["model"] == "gpt-cli"
    assert "super-secret" not in json.dumps(payload)
    assert payload["meta"]["path"] == str(path)
    assert "INKLING_LOG_DIR" in payload["meta"]["environment_variables"]


def test_main_rejects_invalid_override(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    exit_code = app.main(["--settings-path", str(tmp_path / "s.json"), "--set", "bogus=1"])

    assert exit_code == 2
    assert "Invalid --set override" in capsys.readouterr().err


def test_main_requires_document_and_prompt(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    settings_path = str(tmp_path / "s.json")
    document = tmp_path / "doc.html"
    document.write_text("<p>x</p>", encoding="utf-8")
    monkeypatch.setattr("sys.stdin", io.StringIO("   "))

    assert app.main(["--settings-path", settings_path]) == 2
    assert app.main([str(document), "--settings-path", settings_path]) == 2
    assert app.main([str(tmp_path / "missing.html"), "-p", "hi", "--settings-path", settings_path]) == 1
    assert "A prompt is required" in capsys.readouterr().err


def test_main_runs_agent_and_writes_document(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    document = tmp_path / "lesson.html"
    document.write_text("<h1>Lesson</h1>", encoding="utf-8")
    monkeypatch.setenv("INKLING_SUGGESTION_CACHE", str(tmp_path / "cache.json"))
    endpoint = _StubEndpoint(*_quiz_replies())
    monkeypatch.setattr(app, "build_endpoint", lambda settings: endpoint)

    exit_code = app.main(
        [
            str(document),
            "--prompt",
            "Add a quiz",
            "--accept-all",
            "--write",
            "--settings-path",
            str(tmp_path / "settings.json"),
        ]
    )

    out = capsys.readouterr().out
    assert exit_code == 0
    assert "Added a quiz paragraph." in out
    assert "1 pending suggestion(s):" in out
    assert "Accepted 1 suggestion(s)." in out
    assert document.read_text(encoding="utf-8") == "<h1>Lesson</h1><p>Quiz</p>"
    cache = json.loads((tmp_path / "cache.json").read_text(encoding="utf-8"))
    assert cache["documents"][str(document.resolve())]["suggestions"] == []


def test_main_reports_transport_failures(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    document = tmp_path / "lesson.html"
    document.write_text("<h1>Lesson</h1>", encoding="utf-8")
    monkeypatch.setenv("INKLING_SUGGESTION_CACHE", str(tmp_path / "cache.json"))
    endpoint = _StubEndpoint(TransportError("proxy down"))
    monkeypatch.setattr(app, "build_endpoint", lambda settings: endpoint)

    exit_code = app.main([str(document), "-p", "Hi", "--settings-path", str(tmp_path / "settings.json")])

    assert exit_code == 1
    assert "proxy down" in capsys.readouterr().err
    assert document.read_text(encoding="utf-8") == "<h1>Lesson</h1>"


@pytest.mark.asyncio
async def test_build_session_wires_overlay_and_controller(catalog: WidgetCatalog) -> None:
    document = HtmlDocument("<h1>Lesson</h1>", document_id="lesson")
    store = InMemorySuggestionStore()
    session = app.build_session(
        document,
        Settings(),
        endpoint=_StubEndpoint(*_quiz_replies()),
        store=store,
        catalog=catalog,
    )

    answer = await session.controller.submit("Add a quiz")
    await session.aclose()

    assert answer == "Added a quiz paragraph."
    assert len(session.overlay) == 1
    assert session.overlay.document_key == "lesson"
    assert store.load("lesson")["docHash"] == document.content_hash()
    assert session.catalog is catalog


def test_print_suggestions_previews_spans() -> None:
    document = HtmlDocument("<p>a</p>")
    session = app.build_session(
        document,
        Settings(),
        endpoint=_StubEndpoint(),
        store=InMemorySuggestionStore(),
        catalog=WidgetCatalog(),
    )
    buffer = io.StringIO()
    app._print_suggestions(session.overlay, buffer)
    suggestion_id = session.overlay.add(document.size, document.size, "<p>" + "x" * 100 + "</p>")

    app._print_suggestions(session.overlay, buffer)

    lines = buffer.getvalue().splitlines()
    assert lines[0] == "No pending suggestions."
    assert lines[1] == "1 pending suggestion(s):"
    assert lines[2].startswith(f"  {suggestion_id} [8, 115) <p>xxx")
    assert lines[2].endswith("...")
