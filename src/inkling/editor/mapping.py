"""Offset mapping primitives shared by the document model and the overlay.

A transaction produces one :class:`StepMap` per replace step. Anything that needs
to follow positions across edits (suggestions, cursors, cached spans) only relies
on the :class:`OffsetMapping` capability: ``map(offset, bias) -> offset``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Protocol, runtime_checkable

__all__ = ["OffsetMapping", "StepMap", "Mapping", "compose"]


@runtime_checkable
class OffsetMapping(Protocol):
    """Capability required from any document transform implementation."""

    def map(self, offset: int, bias: int = 1) -> int:
        """Translate a pre-transaction offset to its post-transaction position."""
        ...


@dataclass(slots=True, frozen=True)
class StepMap:
    """Position map for a single ``[start, start + old_size)`` replacement.

    Attributes:
        start: Offset where the replaced range begins.
        old_size: Length of the removed content.
        new_size: Length of the inserted content.
    """

    start: int
    old_size: int
    new_size: int

    def __post_init__(self) -> None:
        if self.start < 0 or self.old_size < 0 or self.new_size < 0:
            raise ValueError("StepMap values must be non-negative")

    @property
    def end(self) -> int:
        return self.start + self.old_size

    def map(self, offset: int, bias: int = 1) -> int:
        start = self.start
        end = self.end
        if offset < start:
            return offset
        if offset > end:
            return offset + self.new_size - self.old_size
        if self.old_size == 0:
            # Pure insertion exactly at ``offset``.
            return start if bias < 0 else start + self.new_size
        if offset == start:
            return start
        if offset == end:
            return start + self.new_size
        # Inside the deleted range: collapse onto the deletion boundary.
        return start if bias < 0 else start + self.new_size

    def invert(self) -> StepMap:
        return StepMap(self.start, self.new_size, self.old_size)


@dataclass(slots=True)
class Mapping:
    """Ordered composition of step maps."""

    maps: list[StepMap] = field(default_factory=list)

    def map(self, offset: int, bias: int = 1) -> int:
        for step_map in self.maps:
            offset = step_map.map(offset, bias)
        return offset

    def append(self, step_map: StepMap) -> None:
        self.maps.append(step_map)

    def append_mapping(self, other: Mapping) -> None:
        self.maps.extend(other.maps)

    @property
    def is_identity(self) -> bool:
        return all(m.old_size == 0 and m.new_size == 0 for m in self.maps)

    def __len__(self) -> int:
        return len(self.maps)


def compose(mappings: Iterable[Mapping]) -> Mapping:
    """Return one mapping equivalent to applying ``mappings`` in order."""

    combined = Mapping()
    for mapping in mappings:
        combined.append_mapping(mapping)
    return combined
