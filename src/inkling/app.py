"""Command line entry point: run one agent prompt against an HTML file."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Sequence, TextIO, get_args, get_origin, get_type_hints

from .ai.client import ChatEndpoint, TransportError, build_endpoint
from .ai.orchestration.agent_loop import AgentLoopController
from .ai.orchestration.tool_dispatcher import ToolDispatcher
from .ai.tools.base import ToolContext
from .editor.document_model import HtmlDocument
from .events import EventBus
from .review.overlay_manager import SuggestionOverlay
from .services.settings import Settings, SettingsStore, redact_secret
from .services.suggestion_cache import SuggestionCacheStore, SuggestionStore
from .services.widgets import WidgetCatalog, WidgetDocsFetcher
from .utils import logging as logging_utils

_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}
_FALSE_VALUES = {"0", "false", "no", "off", "disabled"}
_LOGGER = logging.getLogger(__name__)
_PREVIEW_CHARS = 60


@dataclass(slots=True)
class Session:
    """Everything wired together for one document."""

    document: HtmlDocument
    overlay: SuggestionOverlay
    catalog: WidgetCatalog
    docs_fetcher: WidgetDocsFetcher
    controller: AgentLoopController
    event_bus: EventBus

    async def aclose(self) -> None:
        await self.controller.aclose()
        await self.docs_fetcher.aclose()
        self.overlay.close()


def configure_logging(debug: bool = False, *, force: bool = False) -> None:
    """Configure structured logging for the application."""

    level = logging.DEBUG if debug else logging.INFO
    logging_utils.setup_logging(level, force=force)
    _LOGGER.debug("Logging configured (level=%s)", logging.getLevelName(level))


def load_settings(
    path: Optional[Path] = None,
    *,
    store: SettingsStore | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> Settings:
    """Load persisted settings or fall back to defaults."""

    active_store = store or SettingsStore(path)
    try:
        settings = active_store.load(overrides=overrides)
    except (OSError, ValueError) as exc:
        _LOGGER.warning("Failed to load settings from %s: %s", active_store.path, exc)
        settings = Settings()
    return settings


def build_session(
    document: HtmlDocument,
    settings: Settings,
    *,
    endpoint: ChatEndpoint | None = None,
    store: SuggestionStore | None = None,
    catalog: WidgetCatalog | None = None,
    docs_fetcher: WidgetDocsFetcher | None = None,
    document_key: str | None = None,
    event_bus: EventBus | None = None,
) -> Session:
    """Wire document, overlay, tools and agent loop for one document."""

    bus = event_bus or EventBus()
    if store is None:
        cache_path = Path(settings.suggestion_cache_path).expanduser() if settings.suggestion_cache_path else None
        store = SuggestionCacheStore(cache_path)
    if document_key is None and document.metadata.path is not None:
        document_key = str(Path(document.metadata.path).resolve())

    overlay = SuggestionOverlay(document, store=store, document_key=document_key, event_bus=bus)
    restored = overlay.initialize()
    if restored:
        _LOGGER.info("Restored %d pending suggestion(s) for %s", restored, overlay.document_key)

    if catalog is None:
        catalog = (
            WidgetCatalog.from_file(Path(settings.widget_catalog_path).expanduser())
            if settings.widget_catalog_path
            else WidgetCatalog()
        )
    fetcher = docs_fetcher or WidgetDocsFetcher(
        max_retries=settings.docs_max_retries,
        retry_min_seconds=settings.retry_min_seconds,
        retry_max_seconds=settings.retry_max_seconds,
        timeout=settings.request_timeout,
    )

    def _context() -> ToolContext:
        return ToolContext(document=document, overlay=overlay, catalog=catalog, docs_fetcher=fetcher)

    controller = AgentLoopController(
        endpoint or build_endpoint(settings),
        ToolDispatcher(event_bus=bus),
        _context,
        settings=settings,
        event_bus=bus,
    )
    return Session(
        document=document,
        overlay=overlay,
        catalog=catalog,
        docs_fetcher=fetcher,
        controller=controller,
        event_bus=bus,
    )


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point invoked by the `inkling` console script."""

    args = _parse_cli_args(argv)

    debug = _env_flag("INKLING_DEBUG", default=False)
    configure_logging(debug)

    settings_path = args.settings_path or os.environ.get("INKLING_SETTINGS_PATH")
    resolved_path = Path(settings_path).expanduser() if settings_path else None
    settings_store = SettingsStore(resolved_path)
    try:
        cli_overrides = _coerce_cli_overrides(args.overrides or [])
    except ValueError as exc:
        print(f"Invalid --set override: {exc}", file=sys.stderr)
        return 2

    settings = load_settings(resolved_path, store=settings_store, overrides=cli_overrides or None)

    if args.dump_settings:
        _dump_settings(settings, settings_store, overrides=cli_overrides)
        return 0

    if settings.debug_logging and not debug:
        configure_logging(True, force=True)

    if args.document is None:
        print("A document path is required.", file=sys.stderr)
        return 2
    path = Path(args.document).expanduser()
    try:
        document = HtmlDocument.from_path(path)
    except OSError as exc:
        print(f"Cannot read {path}: {exc}", file=sys.stderr)
        return 1

    prompt = args.prompt if args.prompt is not None else sys.stdin.read()
    if not prompt.strip():
        print("A prompt is required (use --prompt or pipe it on stdin).", file=sys.stderr)
        return 2

    try:
        return asyncio.run(_run(document, settings, prompt, args))
    except KeyboardInterrupt:  # pragma: no cover - manual shutdown path
        _LOGGER.info("Shutdown requested by user.")
        return 130


async def _run(document: HtmlDocument, settings: Settings, prompt: str, args: argparse.Namespace) -> int:
    session = build_session(document, settings)
    try:
        try:
            answer = await session.controller.submit(prompt)
        except TransportError as exc:
            print(f"Agent request failed: {exc}", file=sys.stderr)
            return 1
        if answer:
            print(answer)
        _print_suggestions(session.overlay)

        if args.accept_all and len(session.overlay):
            accepted = session.overlay.accept_all()
            print(f"Accepted {accepted} suggestion(s).")
        if args.write:
            path = Path(document.metadata.path)
            path.write_text(document.content, encoding="utf-8")
            print(f"Wrote {path}")
        return 0
    finally:
        await session.aclose()


def _print_suggestions(overlay: SuggestionOverlay, stream: TextIO | None = None) -> None:
    destination = stream or sys.stdout
    suggestions = overlay.suggestions
    if not suggestions:
        destination.write("No pending suggestions.\n")
        return
    destination.write(f"{len(suggestions)} pending suggestion(s):\n")
    content = overlay.document.content
    for suggestion in suggestions:
        preview = content[suggestion.start : suggestion.end].replace("\n", " ")
        if len(preview) > _PREVIEW_CHARS:
            preview = preview[: _PREVIEW_CHARS - 3] + "..."
        destination.write(f"  {suggestion.id} [{suggestion.start}, {suggestion.end}) {preview}\n")


def _env_flag(name: str, *, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUE_VALUES


def _parse_cli_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="inkling",
        description="Ask the agent to suggest edits to an HTML document.",
    )
    parser.add_argument("document", nargs="?", help="HTML file to work on.")
    parser.add_argument("-p", "--prompt", help="Prompt to send; read from stdin when omitted.")
    parser.add_argument(
        "--accept-all",
        action="store_true",
        help="Accept every pending suggestion after the agent finishes.",
    )
    parser.add_argument(
        "--write",
        action="store_true",
        help="Write the document (including pending suggestions) back to its file.",
    )
    parser.add_argument(
        "--dump-settings",
        action="store_true",
        help="Print the effective settings payload (with secrets redacted) and exit.",
    )
    parser.add_argument(
        "--settings-path",
        metavar="PATH",
        help="Override the default ~/.inkling/settings.json path.",
    )
    parser.add_argument(
        "--set",
        dest="overrides",
        metavar="KEY=VALUE",
        action="append",
        default=[],
        help="Override persisted settings for this run (repeatable).",
    )
    return parser.parse_args(argv)


def _coerce_cli_overrides(items: Sequence[str]) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    if not items:
        return overrides

    fields = Settings.__dataclass_fields__  # type: ignore[attr-defined]
    type_hints = get_type_hints(Settings)
    for entry in items:
        if "=" not in entry:
            raise ValueError(f"Override '{entry}' must use KEY=VALUE syntax.")
        key, raw_value = entry.split("=", 1)
        key = key.strip()
        if not key:
            raise ValueError("Override is missing a field name.")
        if key not in fields:
            raise ValueError(f"Unknown setting '{key}'.")
        annotation = type_hints.get(key, fields[key].type)
        overrides[key] = _coerce_value(annotation, raw_value.strip())
    return overrides


def _coerce_value(annotation: Any, raw_value: str) -> Any:
    target = _resolve_annotation(annotation)
    normalized = raw_value.strip()

    if normalized.lower() in {"none", "null"} and (target is not str or _is_optional(annotation)):
        return None
    if target is str or target is Any:
        return normalized
    if target is bool:
        return _parse_bool(normalized)
    if target is int:
        return int(normalized, 10)
    if target is float:
        return float(normalized)
    if target is dict:
        try:
            return json.loads(normalized or "{}")
        except json.JSONDecodeError as exc:
            raise ValueError("Dict overrides must be valid JSON objects") from exc
    return normalized


def _resolve_annotation(annotation: Any) -> Any:
    origin = get_origin(annotation)
    if origin is None:
        return annotation
    if origin is dict:
        return origin
    args = [arg for arg in get_args(annotation) if arg is not type(None)]
    if not args:
        return origin
    return args[0]


def _is_optional(annotation: Any) -> bool:
    return type(None) in get_args(annotation)


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueError(f"Cannot coerce '{value}' to a boolean.")


def _dump_settings(
    settings: Settings,
    store: SettingsStore,
    *,
    overrides: Mapping[str, Any],
    stream: TextIO | None = None,
) -> None:
    destination = stream or sys.stdout
    payload = asdict(settings)
    payload["api_key"] = redact_secret(settings.api_key)
    metadata = {
        "path": str(store.path),
        "secret_backend": store.vault.strategy,
        "cli_overrides": sorted(overrides.keys()),
        "environment_variables": _active_env_overrides(),
    }
    json.dump({"settings": payload, "meta": metadata}, destination, indent=2)
    destination.write("\n")


def _active_env_overrides() -> list[str]:
    return sorted(name for name in os.environ if name.startswith("INKLING_"))


__all__ = ["Session", "build_session", "configure_logging", "load_settings", "main"]
