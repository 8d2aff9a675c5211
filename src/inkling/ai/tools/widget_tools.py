"""Widget tools: list installable widgets and fetch their documentation."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from .base import ToolContext
from .errors import ErrorCode, ResolutionError, ToolError
from .registry import GetWidgetDocumentation, ListWidgets

LOGGER = logging.getLogger(__name__)


def list_widgets(context: ToolContext, call: ListWidgets) -> list[dict[str, Any]]:
    if context.catalog is None:
        return []
    return context.catalog.entries()


async def get_widget_documentation(context: ToolContext, call: GetWidgetDocumentation) -> dict[str, Any]:
    package = context.catalog.get(call.name) if context.catalog is not None else None
    if package is None:
        raise ResolutionError(
            error_code=ErrorCode.UNKNOWN_WIDGET,
            message=f"No widget package named {call.name!r}",
            suggestion="Call list_widgets to see the available packages",
            query=call.name,
        )
    if context.docs_fetcher is None:
        raise ToolError(
            error_code=ErrorCode.DOCUMENTATION_UNAVAILABLE,
            message="Widget documentation cannot be fetched in this session",
        )
    try:
        documentation = await context.docs_fetcher.fetch(package)
    except (httpx.HTTPError, ValueError) as exc:
        LOGGER.debug("Documentation fetch for %s failed", package.name, exc_info=True)
        raise ToolError(
            error_code=ErrorCode.DOCUMENTATION_UNAVAILABLE,
            message=f"Could not fetch documentation for {package.name}: {exc}",
        ) from exc
    return documentation.to_dict()


__all__ = ["get_widget_documentation", "list_widgets"]
