"""HTML document state, transactions and undo history.

The document is kept as HTML source text; offsets are character offsets into
that source. Every edit is an atomic :class:`Transaction` made of replace steps,
and every dispatched transaction exposes a :class:`~inkling.editor.mapping.Mapping`
that translates pre-transaction offsets to post-transaction offsets.
"""

from __future__ import annotations

import hashlib
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Optional

from .mapping import Mapping, StepMap

__all__ = [
    "DocumentMetadata",
    "HtmlDocument",
    "ReplaceStep",
    "Transaction",
    "TransactionListener",
    "content_hash",
]

LOGGER = logging.getLogger(__name__)

# Meta key set on transactions produced by undo()/redo().
HISTORY_META = "history"


def _utcnow() -> datetime:
    """Return the current UTC time as a timezone-aware datetime."""

    return datetime.now(timezone.utc)


def content_hash(text: str) -> str:
    """Cheap content fingerprint used to validate cached state."""

    return hashlib.sha1(text.encode("utf-8")).hexdigest()


@dataclass(slots=True)
class DocumentMetadata:
    """Metadata describing the currently loaded document."""

    path: Optional[Path] = None
    title: str = ""
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)


@dataclass(slots=True, frozen=True)
class ReplaceStep:
    """A single replacement applied by a transaction."""

    start: int
    end: int
    content: str
    removed: str

    def step_map(self) -> StepMap:
        return StepMap(self.start, self.end - self.start, len(self.content))


class Transaction:
    """Builder for an atomic edit against an :class:`HtmlDocument`.

    Steps are applied eagerly to a working copy, so each step's positions refer
    to the document as modified by the previous steps of the same transaction.
    Nothing touches the document until :meth:`HtmlDocument.dispatch` is called.
    """

    def __init__(self, document: HtmlDocument) -> None:
        self.transaction_id = f"tx-{uuid.uuid4().hex[:12]}"
        self.time = time.time()
        self.add_to_history = True
        self.mapping = Mapping()
        self._document = document
        self._before = document.content
        self._doc = document.content
        self._steps: list[ReplaceStep] = []
        self._meta: dict[str, Any] = {}

    @property
    def document(self) -> HtmlDocument:
        return self._document

    @property
    def before(self) -> str:
        return self._before

    @property
    def doc(self) -> str:
        """Document source after all steps of this transaction."""

        return self._doc

    @property
    def steps(self) -> tuple[ReplaceStep, ...]:
        return tuple(self._steps)

    @property
    def doc_changed(self) -> bool:
        return bool(self._steps)

    def replace(self, start: int, end: int, content: str = "") -> Transaction:
        size = len(self._doc)
        if not 0 <= start <= end <= size:
            raise ValueError(f"Replace range [{start}, {end}) is outside the document (size {size})")
        removed = self._doc[start:end]
        self._doc = self._doc[:start] + content + self._doc[end:]
        step = ReplaceStep(start=start, end=end, content=content, removed=removed)
        self._steps.append(step)
        self.mapping.append(step.step_map())
        return self

    def insert(self, pos: int, content: str) -> Transaction:
        return self.replace(pos, pos, content)

    def delete(self, start: int, end: int) -> Transaction:
        return self.replace(start, end, "")

    def set_meta(self, key: str, value: Any) -> Transaction:
        self._meta[key] = value
        return self

    def get_meta(self, key: str, default: Any = None) -> Any:
        return self._meta.get(key, default)

    def inverted_steps(self) -> list[list[Any]]:
        """Return steps undoing this transaction, in post-transaction coordinates.

        Each entry is ``[start, end, content]``. Applying them in order, with every
        position mapped through the previously applied entries, restores the
        pre-transaction document.
        """

        inverted: list[list[Any]] = []
        maps = self.mapping.maps
        for index in range(len(self._steps) - 1, -1, -1):
            step = self._steps[index]
            start = step.start
            end = step.start + len(step.content)
            for later in maps[index + 1 :]:
                start = later.map(start, 1)
                end = later.map(end, -1)
            inverted.append([start, max(start, end), step.removed])
        return inverted


TransactionListener = Callable[[Transaction], None]


@dataclass(slots=True)
class _HistoryEntry:
    steps: list[list[Any]]

    def remap(self, mapping: Mapping) -> None:
        for entry in self.steps:
            start = mapping.map(entry[0], 1)
            end = mapping.map(entry[1], -1)
            entry[0] = start
            entry[1] = max(start, end)


class HtmlDocument:
    """Versioned HTML source document with transaction dispatch."""

    def __init__(
        self,
        content: str = "",
        *,
        document_id: str | None = None,
        metadata: DocumentMetadata | None = None,
        history_limit: int = 100,
    ) -> None:
        self.document_id = document_id or uuid.uuid4().hex
        self.metadata = metadata or DocumentMetadata()
        self.version_id = 1
        self._content = content or ""
        self._listeners: list[TransactionListener] = []
        self._undo: list[_HistoryEntry] = []
        self._redo: list[_HistoryEntry] = []
        self._history_limit = max(1, history_limit)

    @classmethod
    def from_path(cls, path: Path) -> HtmlDocument:
        text = path.read_text(encoding="utf-8")
        metadata = DocumentMetadata(path=path, title=path.stem)
        return cls(text, metadata=metadata)

    # ------------------------------------------------------------------
    # Content access
    # ------------------------------------------------------------------

    @property
    def content(self) -> str:
        return self._content

    @property
    def size(self) -> int:
        return len(self._content)

    def content_hash(self) -> str:
        return content_hash(self._content)

    def slice(self, start: int, end: int) -> str:
        if not 0 <= start <= end <= self.size:
            raise ValueError(f"Slice [{start}, {end}) is outside the document (size {self.size})")
        return self._content[start:end]

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def transaction(self) -> Transaction:
        return Transaction(self)

    def add_listener(self, listener: TransactionListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: TransactionListener) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    def dispatch(self, tr: Transaction) -> None:
        """Apply ``tr`` and notify every listener, regardless of its origin."""

        if tr.document is not self:
            raise ValueError("Transaction belongs to a different document")
        if tr.before != self._content:
            raise ValueError(f"Transaction {tr.transaction_id} was built against a stale document")

        self._content = tr.doc
        if tr.doc_changed:
            self.version_id += 1
            self.metadata.updated_at = _utcnow()
            self._record_history(tr)

        LOGGER.debug(
            "Dispatched %s (steps=%d, history=%s, version=%d)",
            tr.transaction_id,
            len(tr.steps),
            tr.add_to_history,
            self.version_id,
        )

        for listener in list(self._listeners):
            try:
                listener(tr)
            except Exception:
                LOGGER.exception("Transaction listener %r failed for %s", listener, tr.transaction_id)

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    @property
    def can_undo(self) -> bool:
        return bool(self._undo)

    @property
    def can_redo(self) -> bool:
        return bool(self._redo)

    def undo(self) -> bool:
        return self._replay(self._undo, "undo")

    def redo(self) -> bool:
        return self._replay(self._redo, "redo")

    def _replay(self, stack: list[_HistoryEntry], action: str) -> bool:
        if not stack:
            return False
        entry = stack.pop()
        tr = self.transaction()
        for start, end, content in entry.steps:
            mapped_start = tr.mapping.map(start, 1)
            mapped_end = max(mapped_start, tr.mapping.map(end, -1))
            tr.replace(mapped_start, mapped_end, content)
        tr.set_meta(HISTORY_META, action)
        self.dispatch(tr)
        return True

    def _record_history(self, tr: Transaction) -> None:
        for entry in self._undo:
            entry.remap(tr.mapping)
        for entry in self._redo:
            entry.remap(tr.mapping)

        if not tr.add_to_history:
            return

        inverse = _HistoryEntry(tr.inverted_steps())
        action = tr.get_meta(HISTORY_META)
        if action == "undo":
            self._redo.append(inverse)
        elif action == "redo":
            self._undo.append(inverse)
        else:
            self._undo.append(inverse)
            self._redo.clear()
        del self._undo[: -self._history_limit]
