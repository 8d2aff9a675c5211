"""Math conversion tool."""

from __future__ import annotations

import logging

from latex2mathml.converter import convert

from .base import ToolContext
from .errors import ErrorCode, InvalidContentError
from .registry import LatexToMathml

LOGGER = logging.getLogger(__name__)


def latex_to_mathml(context: ToolContext, call: LatexToMathml) -> str:
    source = call.latex.strip()
    if source.startswith("$") and source.endswith("$"):
        source = source.strip("$").strip()
    if not source:
        raise InvalidContentError(message="The latex argument is empty")
    try:
        return convert(source, display=call.display)
    except Exception as exc:
        # latex2mathml raises a family of unrelated exceptions for bad input.
        LOGGER.debug("LaTeX conversion failed for %r", source, exc_info=True)
        raise InvalidContentError(
            error_code=ErrorCode.CONVERSION_FAILED,
            message=f"Could not convert LaTeX: {exc}",
            suggestion="Check that braces are balanced and commands are spelled correctly",
        ) from exc


__all__ = ["latex_to_mathml"]
