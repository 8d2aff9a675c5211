"""Suggestion data models for the review overlay.

These dataclasses describe pending AI edits awaiting review, the markers derived
from them, and the snapshot format persisted between sessions.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from typing import Any, Literal, Mapping, Sequence

__all__ = [
    "MarkerDescriptor",
    "PersistedSnapshot",
    "Suggestion",
    "new_suggestion_id",
]

MarkerKind = Literal["inline", "block", "control"]
MarkerSide = Literal["start", "end"]


def new_suggestion_id() -> str:
    return f"suggestion-{uuid.uuid4().hex}"


@dataclass(slots=True, frozen=True)
class Suggestion:
    """A pending, reversible edit tracked apart from committed content.

    Attributes:
        id: Opaque identifier, unique within the overlay session.
        start: Current start offset of the suggested content.
        end: Current end offset of the suggested content.
        original_content: Source slice the suggestion replaced.
        seq: Creation order; lower values were created earlier.
    """

    id: str
    start: int
    end: int
    original_content: str = ""
    seq: int = 0

    @property
    def extent(self) -> int:
        return self.end - self.start

    @property
    def is_insertion_point(self) -> bool:
        return self.start == self.end

    def is_viable(self, size: int | None = None) -> bool:
        """Return whether the span survives the degenerate-span policy.

        Non-empty spans are always kept. A zero-width span is kept only when it
        still has original content to restore, i.e. it marks a pure deletion.
        """
        if self.start < 0 or self.start > self.end:
            return False
        if size is not None and self.end > size:
            return False
        if self.start == self.end:
            return bool(self.original_content)
        return True

    def contains(self, other: Suggestion) -> bool:
        return self.start <= other.start and self.end >= other.end

    def moved(self, start: int, end: int) -> Suggestion:
        return replace(self, start=start, end=end)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "from": self.start,
            "to": self.end,
            "originalContent": self.original_content,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any], *, seq: int = 0) -> Suggestion:
        try:
            suggestion_id = payload["id"]
            start = payload["from"]
            end = payload["to"]
        except KeyError as exc:
            raise ValueError(f"Serialized suggestion is missing {exc.args[0]!r}") from exc
        original = payload.get("originalContent", "")
        if not isinstance(suggestion_id, str) or not suggestion_id:
            raise ValueError("Serialized suggestion id must be a non-empty string")
        if not isinstance(start, int) or not isinstance(end, int) or isinstance(start, bool) or isinstance(end, bool):
            raise ValueError(f"Serialized suggestion {suggestion_id} has non-integer offsets")
        if not isinstance(original, str):
            raise ValueError(f"Serialized suggestion {suggestion_id} has non-string original content")
        return cls(id=suggestion_id, start=start, end=end, original_content=original, seq=seq)


@dataclass(slots=True, frozen=True)
class MarkerDescriptor:
    """Declarative presentation annotation derived from a suggestion.

    Attributes:
        kind: ``inline`` or ``block`` highlight, or the ``control`` anchor.
        start: Start offset of the highlight (anchor offset for controls).
        end: End offset of the highlight (equals ``start`` for controls).
        side: Which side of the anchor the control prefers.
        suggestion_id: Suggestion the marker belongs to.
    """

    kind: MarkerKind
    start: int
    end: int
    side: MarkerSide
    suggestion_id: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "from": self.start,
            "to": self.end,
            "side": self.side,
            "suggestion_id": self.suggestion_id,
        }


@dataclass(slots=True, frozen=True)
class PersistedSnapshot:
    """Suggestion set stored for one document, valid while ``doc_hash`` matches."""

    doc_hash: str
    suggestions: tuple[Suggestion, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict[str, Any]:
        return {
            "docHash": self.doc_hash,
            "suggestions": [suggestion.to_dict() for suggestion in self.suggestions],
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> PersistedSnapshot:
        doc_hash = payload.get("docHash")
        if not isinstance(doc_hash, str) or not doc_hash:
            raise ValueError("Persisted snapshot has no docHash")
        entries = payload.get("suggestions", [])
        if not isinstance(entries, Sequence) or isinstance(entries, (str, bytes)):
            raise ValueError("Persisted snapshot suggestions must be a list")
        suggestions = []
        for seq, entry in enumerate(entries):
            if not isinstance(entry, Mapping):
                raise ValueError("Persisted suggestion entries must be objects")
            suggestions.append(Suggestion.from_dict(entry, seq=seq))
        return cls(doc_hash=doc_hash, suggestions=tuple(suggestions))
