"""Document tools: read the HTML and suggest structural edits.

Mutating tools never touch the document directly; every change goes through
:meth:`SuggestionOverlay.add` so it lands as a reviewable suggestion.
"""

from __future__ import annotations

import logging
from typing import Any

from ...editor.structure import VOID_ELEMENTS, Resolution, parse_fragment, resolve_query
from .base import ToolContext
from .errors import ErrorCode, InvalidContentError, ResolutionError, ValidationError
from .registry import GetDocument, InsertAtBottom, InsertIntoElement, ReplaceElement

LOGGER = logging.getLogger(__name__)


def _require_fragment(html: str) -> str:
    fragment = parse_fragment(html)
    if not fragment:
        raise InvalidContentError(message="The html argument contains no content")
    return fragment


def _resolve(context: ToolContext, selector: str) -> Resolution:
    try:
        resolution = resolve_query(context.document.content, selector)
    except ValueError as exc:
        raise ValidationError(
            error_code=ErrorCode.INVALID_SELECTOR,
            message=str(exc),
            suggestion="Use a plain CSS selector such as 'p', '#id' or 'section > h2'",
        ) from exc
    if resolution is None:
        raise ResolutionError(
            message=f"No element matches selector {selector!r}",
            query=selector,
        )
    return resolution


def _suggestion_payload(context: ToolContext, suggestion_id: str) -> dict[str, Any]:
    suggestion = context.overlay.get(suggestion_id)
    payload: dict[str, Any] = {"suggestion_id": suggestion_id}
    if suggestion is not None:
        payload["from"] = suggestion.start
        payload["to"] = suggestion.end
    return payload


def get_document(context: ToolContext, call: GetDocument) -> str:
    return context.document.content


def replace_element(context: ToolContext, call: ReplaceElement) -> dict[str, Any]:
    fragment = _require_fragment(call.html)
    resolution = _resolve(context, call.selector)
    suggestion_id = context.overlay.add(resolution.start, resolution.end, fragment)
    LOGGER.debug(
        "replace_element %r -> [%d, %d) exact=%s",
        call.selector,
        resolution.start,
        resolution.end,
        resolution.exact,
    )
    return _suggestion_payload(context, suggestion_id)


def insert_at_bottom(context: ToolContext, call: InsertAtBottom) -> dict[str, Any]:
    fragment = _require_fragment(call.html)
    size = context.document.size
    suggestion_id = context.overlay.add(size, size, fragment)
    return _suggestion_payload(context, suggestion_id)


def insert_into_element(context: ToolContext, call: InsertIntoElement) -> dict[str, Any]:
    fragment = _require_fragment(call.html)
    resolution = _resolve(context, call.selector)
    element = resolution.element
    if element is None:
        position = resolution.start
    elif element.tag in VOID_ELEMENTS:
        raise ResolutionError(
            message=f"Element <{element.tag}> matched by {call.selector!r} cannot contain children",
            query=call.selector,
            suggestion="Use replace_element or target its parent element",
        )
    else:
        position = element.content_end
    suggestion_id = context.overlay.add(position, position, fragment)
    return _suggestion_payload(context, suggestion_id)


__all__ = ["get_document", "insert_at_bottom", "insert_into_element", "replace_element"]
