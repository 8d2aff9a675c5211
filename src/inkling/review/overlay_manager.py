"""Suggestion overlay engine.

Tracks pending AI suggestions for one document session, keeps their spans
correct across every transaction, and persists the set between sessions. The
overlay is the only component allowed to create suggestions: tools call
:meth:`SuggestionOverlay.add`, never the document directly.
"""

from __future__ import annotations

import itertools
import logging
from typing import Any, Iterable, Sequence

from ..editor.document_model import HtmlDocument, Transaction
from ..editor.structure import ElementIndex
from ..events import EventBus, SuggestionAccepted, SuggestionRejected, SuggestionsChanged
from ..services.suggestion_cache import SuggestionStore
from .markers import derive_markers
from .models import MarkerDescriptor, PersistedSnapshot, Suggestion, new_suggestion_id

__all__ = ["OVERLAY_META", "SuggestionOverlay"]

LOGGER = logging.getLogger(__name__)

# Transaction meta key carrying ``{"add": [Suggestion, ...], "remove": [id, ...]}``.
OVERLAY_META = "inkling.overlay"


def _dominates(a: Suggestion, b: Suggestion) -> bool:
    if a.id == b.id or not a.contains(b):
        return False
    if a.extent != b.extent:
        return a.extent > b.extent
    # Identical spans: the earliest created survives.
    return a.seq < b.seq


class SuggestionOverlay:
    """Pending suggestion set scoped to one :class:`HtmlDocument`.

    Creating the overlay registers its transaction listener on the document;
    :meth:`close` removes it. Every transaction, whatever its origin, remaps the
    whole set.
    """

    def __init__(
        self,
        document: HtmlDocument,
        *,
        store: SuggestionStore | None = None,
        document_key: str | None = None,
        event_bus: EventBus | None = None,
    ) -> None:
        self._document = document
        self._store = store
        self._key = document_key or document.document_id
        self._bus = event_bus
        self._suggestions: dict[str, Suggestion] = {}
        self._seq = itertools.count()
        self._markers: tuple[MarkerDescriptor, ...] | None = None
        self._closed = False
        document.add_listener(self.on_transaction)

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def document(self) -> HtmlDocument:
        return self._document

    @property
    def document_key(self) -> str:
        return self._key

    @property
    def suggestions(self) -> tuple[Suggestion, ...]:
        """Pending suggestions in creation order."""
        return tuple(sorted(self._suggestions.values(), key=lambda s: s.seq))

    def get(self, suggestion_id: str) -> Suggestion | None:
        return self._suggestions.get(suggestion_id)

    def markers(self) -> tuple[MarkerDescriptor, ...]:
        if self._markers is None:
            index = ElementIndex.build(self._document.content)
            self._markers = tuple(derive_markers(self.suggestions, index))
        return self._markers

    def __len__(self) -> int:
        return len(self._suggestions)

    def __contains__(self, suggestion_id: object) -> bool:
        return suggestion_id in self._suggestions

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def initialize(self) -> int:
        """Hydrate from the persisted snapshot when it matches the document.

        Any mismatch (hash, malformed entry, out-of-bounds span, duplicate id)
        discards the whole snapshot. Returns the number of suggestions loaded.
        """
        self._suggestions.clear()
        self._markers = None
        snapshot = self._load_snapshot()
        if snapshot is not None:
            current_hash = self._document.content_hash()
            if snapshot.doc_hash != current_hash:
                LOGGER.debug(
                    "Discarding persisted suggestions for %s: hash %s != %s",
                    self._key,
                    snapshot.doc_hash,
                    current_hash,
                )
            elif not self._snapshot_fits(snapshot.suggestions):
                LOGGER.debug("Discarding persisted suggestions for %s: invalid spans", self._key)
            else:
                for entry in snapshot.suggestions:
                    suggestion = Suggestion(
                        id=entry.id,
                        start=entry.start,
                        end=entry.end,
                        original_content=entry.original_content,
                        seq=next(self._seq),
                    )
                    self._suggestions[suggestion.id] = suggestion
                self._normalize()
        LOGGER.debug("Overlay %s initialized with %d suggestion(s)", self._key, len(self._suggestions))
        self._publish(content_changed=True)
        return len(self._suggestions)

    def close(self) -> None:
        if self._closed:
            return
        self._document.remove_listener(self.on_transaction)
        self._closed = True

    # ------------------------------------------------------------------
    # Transaction hook
    # ------------------------------------------------------------------

    def on_transaction(self, tr: Transaction) -> None:
        """Remap every pending suggestion through ``tr`` and apply overlay meta."""

        before_content = self._content_signature()
        before_spans = self._span_signature()

        if tr.doc_changed:
            size = self._document.size
            remapped: dict[str, Suggestion] = {}
            for suggestion in self._suggestions.values():
                if suggestion.is_insertion_point:
                    # A point stays put when text is inserted right at it.
                    start = end = tr.mapping.map(suggestion.start, -1)
                else:
                    start = tr.mapping.map(suggestion.start, 1)
                    end = tr.mapping.map(suggestion.end, -1)
                moved = suggestion.moved(start, end)
                if moved.is_viable(size):
                    remapped[moved.id] = moved
                else:
                    LOGGER.debug("Suggestion %s collapsed to [%d, %d); dropped", moved.id, start, end)
            self._suggestions = remapped

        meta = tr.get_meta(OVERLAY_META)
        if meta:
            self._apply_meta(meta)

        self._normalize()

        content_changed = self._content_signature() != before_content
        if content_changed or self._span_signature() != before_spans:
            self._markers = None
            self._publish(content_changed=content_changed)
        if content_changed:
            self.persist()

    def _apply_meta(self, meta: dict[str, Any]) -> None:
        size = self._document.size
        for suggestion in meta.get("add", ()):
            if suggestion.id in self._suggestions:
                LOGGER.warning("Suggestion id %s already tracked; ignoring duplicate add", suggestion.id)
                continue
            if not suggestion.is_viable(size):
                LOGGER.debug("Suggestion %s has a degenerate span; not tracked", suggestion.id)
                continue
            self._suggestions[suggestion.id] = suggestion
        for suggestion_id in meta.get("remove", ()):
            self._suggestions.pop(suggestion_id, None)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def add(self, start: int, end: int, replacement: str) -> str:
        """Replace ``[start, end)`` with ``replacement`` as a pending suggestion.

        The replacement and the new suggestion travel in one transaction that is
        kept out of the undo history.

        Returns:
            The new suggestion id.

        Raises:
            ValueError: If the range is outside the document or the edit is empty.
        """
        size = self._document.size
        if not 0 <= start <= end <= size:
            raise ValueError(f"Suggestion range [{start}, {end}) is outside the document (size {size})")
        if start == end and not replacement:
            raise ValueError("Suggestion would neither insert nor remove content")

        original = self._document.slice(start, end)
        suggestion = Suggestion(
            id=new_suggestion_id(),
            start=start,
            end=start + len(replacement),
            original_content=original,
            seq=next(self._seq),
        )
        tr = self._document.transaction()
        tr.replace(start, end, replacement)
        tr.add_to_history = False
        tr.set_meta(OVERLAY_META, {"add": [suggestion]})
        self._document.dispatch(tr)
        LOGGER.debug(
            "Added suggestion %s at [%d, %d) replacing %d char(s)",
            suggestion.id,
            suggestion.start,
            suggestion.end,
            len(original),
        )
        return suggestion.id

    def remove(self, suggestion_id: str) -> bool:
        """Stop tracking ``suggestion_id``; the document is left untouched."""

        return self._remove_many([suggestion_id]) > 0

    def accept_suggestion(self, suggestion_id: str) -> bool:
        accepted = self.remove(suggestion_id)
        if accepted:
            self._emit(SuggestionAccepted(document_id=self._document.document_id, suggestion_id=suggestion_id))
        return accepted

    def reject_suggestion(self, suggestion_id: str) -> bool:
        """Restore the original content of ``suggestion_id`` and stop tracking it."""

        suggestion = self._suggestions.get(suggestion_id)
        if suggestion is None:
            return False
        tr = self._document.transaction()
        tr.replace(suggestion.start, suggestion.end, suggestion.original_content)
        tr.add_to_history = False
        tr.set_meta(OVERLAY_META, {"remove": [suggestion_id]})
        self._document.dispatch(tr)
        self._emit(SuggestionRejected(document_id=self._document.document_id, suggestion_id=suggestion_id))
        return True

    def accept_all(self) -> int:
        ids = [suggestion.id for suggestion in self.suggestions]
        removed = self._remove_many(ids)
        for suggestion_id in ids:
            self._emit(SuggestionAccepted(document_id=self._document.document_id, suggestion_id=suggestion_id))
        return removed

    def reject_all(self) -> int:
        # Last spans first so restored content never shifts a pending one.
        ordered = sorted(self._suggestions.values(), key=lambda s: (s.start, s.end), reverse=True)
        rejected = 0
        for suggestion in ordered:
            if self.reject_suggestion(suggestion.id):
                rejected += 1
        return rejected

    def normalize(self) -> list[str]:
        """Drop suggestions strictly contained in another; return the removed ids."""

        removed = self._normalize()
        if removed:
            self._markers = None
            self._publish(content_changed=True)
            self.persist()
        return removed

    def persist(self) -> None:
        """Write the current set to the store; failures are never raised."""

        if self._store is None:
            return
        snapshot = PersistedSnapshot(
            doc_hash=self._document.content_hash(),
            suggestions=self.suggestions,
        )
        try:
            self._store.save(self._key, snapshot.to_dict())
        except Exception:
            LOGGER.debug("Persisting suggestions for %s failed", self._key, exc_info=True)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _remove_many(self, suggestion_ids: Sequence[str]) -> int:
        present = [suggestion_id for suggestion_id in suggestion_ids if suggestion_id in self._suggestions]
        if not present:
            return 0
        tr = self._document.transaction()
        tr.add_to_history = False
        tr.set_meta(OVERLAY_META, {"remove": present})
        self._document.dispatch(tr)
        return len(present)

    def _normalize(self) -> list[str]:
        values = list(self._suggestions.values())
        removed = [b.id for b in values if any(_dominates(a, b) for a in values)]
        for suggestion_id in removed:
            del self._suggestions[suggestion_id]
        if removed:
            LOGGER.debug("Normalization removed %s", ", ".join(removed))
        return removed

    def _snapshot_fits(self, suggestions: Iterable[Suggestion]) -> bool:
        size = self._document.size
        seen: set[str] = set()
        for suggestion in suggestions:
            if suggestion.id in seen or not suggestion.is_viable(size):
                return False
            seen.add(suggestion.id)
        return True

    def _load_snapshot(self) -> PersistedSnapshot | None:
        if self._store is None:
            return None
        try:
            payload = self._store.load(self._key)
        except Exception:
            LOGGER.debug("Loading suggestions for %s failed", self._key, exc_info=True)
            return None
        if not payload:
            return None
        try:
            return PersistedSnapshot.from_dict(payload)
        except ValueError as exc:
            LOGGER.debug("Persisted suggestions for %s are malformed: %s", self._key, exc)
            return None

    def _content_signature(self) -> tuple[tuple[str, str], ...]:
        return tuple((s.id, s.original_content) for s in self.suggestions)

    def _span_signature(self) -> tuple[tuple[str, int, int], ...]:
        return tuple((s.id, s.start, s.end) for s in self.suggestions)

    def _publish(self, *, content_changed: bool) -> None:
        if self._bus is None:
            return
        self._emit(
            SuggestionsChanged(
                document_id=self._document.document_id,
                suggestion_ids=tuple(s.id for s in self.suggestions),
                markers=self.markers(),
                content_changed=content_changed,
            )
        )

    def _emit(self, event: Any) -> None:
        if self._bus is not None:
            self._bus.publish(event)
