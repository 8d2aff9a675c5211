"""Marker derivation for pending suggestions.

Markers are never stored: they are recomputed from the current suggestion spans
and the document's top-level element structure every time the set changes.
"""

from __future__ import annotations

from typing import Iterable

from ..editor.structure import ElementIndex, ElementRecord
from .models import MarkerDescriptor, Suggestion

__all__ = ["derive_markers", "overlapped_blocks"]


def overlapped_blocks(suggestion: Suggestion, blocks: Iterable[ElementRecord]) -> list[ElementRecord]:
    """Top-level elements sharing at least one character with ``suggestion``."""

    return [block for block in blocks if block.start < suggestion.end and suggestion.start < block.end]


def _is_inline(suggestion: Suggestion, overlapped: list[ElementRecord]) -> bool:
    if not overlapped:
        return True
    if len(overlapped) > 1:
        return False
    block = overlapped[0]
    return block.content_start <= suggestion.start and suggestion.end <= block.content_end


def _inside_block_content(offset: int, blocks: Iterable[ElementRecord]) -> bool:
    return any(block.content_start <= offset <= block.content_end for block in blocks)


def derive_markers(suggestions: Iterable[Suggestion], index: ElementIndex) -> list[MarkerDescriptor]:
    """Return marker descriptors for ``suggestions`` against the indexed source.

    An inline suggestion gets an ``inline`` highlight and a control after its
    end. A suggestion crossing or covering top-level elements gets one ``block``
    highlight per overlapped element and a single control before its start.
    Zero-width suggestions only get a control.
    """

    blocks = index.top_level_blocks()
    markers: list[MarkerDescriptor] = []
    for suggestion in suggestions:
        if suggestion.is_insertion_point:
            side = "end" if _inside_block_content(suggestion.start, blocks) else "start"
            markers.append(
                MarkerDescriptor("control", suggestion.start, suggestion.start, side, suggestion.id)
            )
            continue

        overlapped = overlapped_blocks(suggestion, blocks)
        if _is_inline(suggestion, overlapped):
            markers.append(MarkerDescriptor("inline", suggestion.start, suggestion.end, "end", suggestion.id))
            markers.append(MarkerDescriptor("control", suggestion.end, suggestion.end, "end", suggestion.id))
            continue

        for block in overlapped:
            markers.append(MarkerDescriptor("block", block.start, block.end, "start", suggestion.id))
        markers.append(MarkerDescriptor("control", suggestion.start, suggestion.start, "start", suggestion.id))
    return markers
