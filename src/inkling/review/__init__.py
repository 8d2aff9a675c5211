"""Review overlay: pending suggestions, their markers and persistence."""

from .markers import derive_markers
from .models import MarkerDescriptor, PersistedSnapshot, Suggestion
from .overlay_manager import SuggestionOverlay

__all__ = [
    "MarkerDescriptor",
    "PersistedSnapshot",
    "Suggestion",
    "SuggestionOverlay",
    "derive_markers",
]
