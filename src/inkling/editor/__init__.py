"""Editor package containing the HTML document model and offset mapping."""

from .document_model import DocumentMetadata, HtmlDocument, Transaction
from .mapping import Mapping, OffsetMapping, StepMap, compose
from .structure import ElementIndex, Resolution, resolve_query

__all__ = [
    "DocumentMetadata",
    "ElementIndex",
    "HtmlDocument",
    "Mapping",
    "OffsetMapping",
    "Resolution",
    "StepMap",
    "Transaction",
    "compose",
    "resolve_query",
]
