"""Structural index over HTML source and selector resolution.

Two views of the same source are kept in step: a position-tracking element index
(every element's source span) and the BeautifulSoup presentation tree used to
evaluate CSS selectors. Resolution maps a presentation match back to a span in
the source.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from html.parser import HTMLParser
from typing import Iterator, Sequence

from bs4 import BeautifulSoup, Tag
from soupsieve import SelectorSyntaxError

__all__ = [
    "ElementIndex",
    "ElementRecord",
    "Resolution",
    "VOID_ELEMENTS",
    "parse_fragment",
    "resolve_query",
]

LOGGER = logging.getLogger(__name__)

VOID_ELEMENTS = frozenset(
    {
        "area",
        "base",
        "br",
        "col",
        "embed",
        "hr",
        "img",
        "input",
        "keygen",
        "link",
        "meta",
        "param",
        "source",
        "track",
        "wbr",
    }
)


@dataclass(slots=True)
class ElementRecord:
    """Source span of one element.

    ``[start, end)`` covers the whole element including its tags;
    ``[content_start, content_end)`` covers its children. Void and self-closing
    elements have ``content_start == content_end == end``.
    """

    tag: str
    start: int
    end: int
    content_start: int
    content_end: int
    depth: int
    parent: int | None = None

    def contains(self, offset: int) -> bool:
        return self.start <= offset < self.end


class _LineOffsets:
    """Translate ``(line, column)`` pairs reported by ``HTMLParser`` to offsets."""

    def __init__(self, source: str) -> None:
        self._starts = [0]
        index = source.find("\n")
        while index != -1:
            self._starts.append(index + 1)
            index = source.find("\n", index + 1)

    def offset(self, line: int, column: int) -> int:
        return self._starts[line - 1] + column


class _IndexingParser(HTMLParser):
    def __init__(self, source: str) -> None:
        super().__init__(convert_charrefs=True)
        self._source = source
        self._lines = _LineOffsets(source)
        self.records: list[ElementRecord] = []
        self._open: list[int] = []

    def _here(self) -> int:
        line, column = self.getpos()
        return self._lines.offset(line, column)

    def handle_starttag(self, tag: str, attrs) -> None:
        start = self._here()
        raw = self.get_starttag_text() or ""
        tag_end = start + len(raw)
        parent = self._open[-1] if self._open else None
        record = ElementRecord(
            tag=tag,
            start=start,
            end=tag_end,
            content_start=tag_end,
            content_end=tag_end,
            depth=len(self._open),
            parent=parent,
        )
        self.records.append(record)
        if tag not in VOID_ELEMENTS:
            self._open.append(len(self.records) - 1)

    def handle_startendtag(self, tag: str, attrs) -> None:
        start = self._here()
        raw = self.get_starttag_text() or ""
        end = start + len(raw)
        parent = self._open[-1] if self._open else None
        self.records.append(
            ElementRecord(
                tag=tag,
                start=start,
                end=end,
                content_start=end,
                content_end=end,
                depth=len(self._open),
                parent=parent,
            )
        )

    def handle_endtag(self, tag: str) -> None:
        matching = None
        for position in range(len(self._open) - 1, -1, -1):
            if self.records[self._open[position]].tag == tag:
                matching = position
                break
        if matching is None:
            return
        tag_start = self._here()
        close = self._source.find(">", tag_start)
        tag_end = len(self._source) if close == -1 else close + 1
        # Unclosed children end where their parent's end tag begins.
        for index in self._open[matching + 1 :]:
            child = self.records[index]
            child.content_end = tag_start
            child.end = tag_start
        record = self.records[self._open[matching]]
        record.content_end = tag_start
        record.end = tag_end
        del self._open[matching:]

    def finish(self) -> list[ElementRecord]:
        self.close()
        size = len(self._source)
        for index in self._open:
            record = self.records[index]
            record.content_end = size
            record.end = size
        self._open.clear()
        return self.records


class ElementIndex:
    """Element records of an HTML source string in document order."""

    def __init__(self, source: str, records: Sequence[ElementRecord]) -> None:
        self.source = source
        self._records = list(records)
        self._by_start: dict[int, int] = {}
        for index, record in enumerate(self._records):
            # The outermost element wins when several start at the same offset.
            self._by_start.setdefault(record.start, index)

    @classmethod
    def build(cls, source: str) -> ElementIndex:
        parser = _IndexingParser(source)
        parser.feed(source)
        return cls(source, parser.finish())

    def __iter__(self) -> Iterator[ElementRecord]:
        return iter(self._records)

    def __len__(self) -> int:
        return len(self._records)

    @property
    def records(self) -> tuple[ElementRecord, ...]:
        return tuple(self._records)

    def top_level_blocks(self) -> list[ElementRecord]:
        return [record for record in self._records if record.depth == 0]

    def element_at(self, offset: int) -> ElementRecord | None:
        """Return the record starting exactly at ``offset`` if there is one."""

        index = self._by_start.get(offset)
        return None if index is None else self._records[index]


# ----------------------------------------------------------------------
# Presentation layer
# ----------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class Resolution:
    """Span a structural query resolved to.

    ``element`` is set when an exact owning element was found; otherwise the
    resolution is a zero-width insertion point right before the matched node.
    """

    start: int
    end: int
    element: ElementRecord | None = None

    @property
    def exact(self) -> bool:
        return self.element is not None


def _presentation_tree(source: str) -> BeautifulSoup:
    return BeautifulSoup(source, "html.parser")


def _node_offset(node: Tag, lines: _LineOffsets) -> int | None:
    line = getattr(node, "sourceline", None)
    column = getattr(node, "sourcepos", None)
    if line is None or column is None:
        return None
    return lines.offset(line, column)


def resolve_query(source: str, selector: str, index: ElementIndex | None = None) -> Resolution | None:
    """Resolve ``selector`` against ``source``.

    Returns ``None`` when nothing matches or the match carries no source
    position. Invalid selectors raise :class:`ValueError`.
    """

    soup = _presentation_tree(source)
    try:
        node = soup.select_one(selector)
    except SelectorSyntaxError as exc:
        raise ValueError(f"Invalid selector {selector!r}: {exc}") from exc
    if node is None:
        LOGGER.debug("Selector %r matched nothing", selector)
        return None

    lines = _LineOffsets(source)
    node_offset = _node_offset(node, lines)
    if node_offset is None:
        return None

    if index is None:
        index = ElementIndex.build(source)
    candidate: Tag | None = node
    while candidate is not None and not isinstance(candidate, BeautifulSoup):
        offset = _node_offset(candidate, lines)
        if offset is not None:
            record = index.element_at(offset)
            if record is not None and record.tag == candidate.name:
                return Resolution(start=record.start, end=record.end, element=record)
        candidate = candidate.parent

    LOGGER.debug("Selector %r has no owning element; inserting before offset %d", selector, node_offset)
    return Resolution(start=node_offset, end=node_offset)


def parse_fragment(html: str) -> str:
    """Parse an HTML fragment and return its serialized form.

    Returns an empty string when the fragment holds no content at all.
    """

    if not html or not html.strip():
        return ""
    soup = _presentation_tree(html)
    return str(soup)
