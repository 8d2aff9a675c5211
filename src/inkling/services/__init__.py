"""Service layer helpers (settings, suggestion cache, widget catalog)."""

from .settings import SecretVault, Settings, SettingsStore
from .suggestion_cache import InMemorySuggestionStore, PersistenceError, SuggestionCacheStore
from .widgets import WidgetCatalog, WidgetDocsFetcher, WidgetPackage

__all__ = [
    "InMemorySuggestionStore",
    "PersistenceError",
    "SecretVault",
    "Settings",
    "SettingsStore",
    "SuggestionCacheStore",
    "WidgetCatalog",
    "WidgetDocsFetcher",
    "WidgetPackage",
]
