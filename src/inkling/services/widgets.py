"""Installed widget catalog and documentation fetching.

Widgets are custom elements shipped in installable packages. The catalog lists
what is installed; :class:`WidgetDocsFetcher` pulls a package's README and its
custom elements manifest and reduces the manifest to what an agent needs to
write valid markup.
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Iterable, Mapping, Sequence

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

__all__ = [
    "WidgetCatalog",
    "WidgetDocsFetcher",
    "WidgetDocumentation",
    "WidgetPackage",
    "normalize_manifest",
]

LOGGER = logging.getLogger(__name__)

README_FILENAME = "README.md"
MANIFEST_FILENAME = "custom-elements.json"


# ----------------------------------------------------------------------
# Catalog
# ----------------------------------------------------------------------


@dataclass(slots=True)
class WidgetPackage:
    """An installable widget package.

    Attributes:
        name: Package name, e.g. ``@webwriter/quiz``.
        version: Installed or latest version string.
        base_url: Location the package's files are served from.
        description: Short summary shown to the agent.
        installed: Whether the package is installed in the current document.
    """

    name: str
    version: str = ""
    base_url: str = ""
    description: str = ""
    installed: bool = True

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class WidgetCatalog:
    """Lookup of widget packages by name."""

    def __init__(self, packages: Iterable[WidgetPackage] = ()) -> None:
        self._packages: dict[str, WidgetPackage] = {}
        for package in packages:
            self.add(package)

    @classmethod
    def from_entries(cls, entries: Iterable[Mapping[str, Any]]) -> WidgetCatalog:
        packages: list[WidgetPackage] = []
        for entry in entries:
            name = entry.get("name")
            if not isinstance(name, str) or not name:
                LOGGER.debug("Skipping catalog entry without a name: %r", entry)
                continue
            packages.append(
                WidgetPackage(
                    name=name,
                    version=str(entry.get("version") or ""),
                    base_url=str(entry.get("base_url") or entry.get("baseUrl") or ""),
                    description=str(entry.get("description") or ""),
                    installed=bool(entry.get("installed", True)),
                )
            )
        return cls(packages)

    @classmethod
    def from_file(cls, path: Path) -> WidgetCatalog:
        """Load a catalog from a JSON list (or ``{"packages": [...]}``) on disk."""

        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            LOGGER.warning("Widget catalog %s does not exist; using an empty catalog", path)
            return cls()
        except json.JSONDecodeError as exc:
            LOGGER.warning("Widget catalog %s is not valid JSON: %s", path, exc)
            return cls()
        if isinstance(data, Mapping):
            data = data.get("packages", [])
        if not isinstance(data, list):
            LOGGER.warning("Widget catalog %s must contain a list of packages", path)
            return cls()
        return cls.from_entries(entry for entry in data if isinstance(entry, Mapping))

    def add(self, package: WidgetPackage) -> None:
        self._packages[package.name] = package

    def get(self, name: str) -> WidgetPackage | None:
        package = self._packages.get(name)
        if package is not None:
            return package
        lowered = (name or "").strip().lower()
        for candidate in self._packages.values():
            if candidate.name.lower() == lowered:
                return candidate
        return None

    def installed(self) -> list[WidgetPackage]:
        return [package for package in self._packages.values() if package.installed]

    def entries(self) -> list[dict[str, Any]]:
        return [package.to_dict() for package in self._packages.values()]

    def __len__(self) -> int:
        return len(self._packages)

    def __iter__(self):
        return iter(self._packages.values())


# ----------------------------------------------------------------------
# Documentation
# ----------------------------------------------------------------------


@dataclass(slots=True)
class WidgetDocumentation:
    """README plus normalized component declarations for one package."""

    name: str
    readme: str | None = None
    declarations: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "readme": self.readme, "declarations": list(self.declarations)}


def _type_text(value: Any) -> str | None:
    if isinstance(value, Mapping):
        text = value.get("text")
        return str(text) if text is not None else None
    if value is None:
        return None
    return str(value)


def _reduce_entry(entry: Mapping[str, Any], *, with_type: bool) -> dict[str, Any]:
    reduced: dict[str, Any] = {"name": entry.get("name", "")}
    if entry.get("description"):
        reduced["description"] = entry["description"]
    if with_type:
        type_text = _type_text(entry.get("type"))
        if type_text:
            reduced["type"] = type_text
    if "default" in entry:
        reduced["default"] = entry["default"]
    return reduced


def _reduce_list(entries: Any, *, with_type: bool = False) -> list[dict[str, Any]]:
    if not isinstance(entries, Sequence) or isinstance(entries, (str, bytes)):
        return []
    return [_reduce_entry(entry, with_type=with_type) for entry in entries if isinstance(entry, Mapping)]


def normalize_manifest(manifest: Mapping[str, Any]) -> list[dict[str, Any]]:
    """Reduce a custom elements manifest to ``{tagName, description, attributes, slots, events}``.

    Only declarations that define a custom element tag are kept; source
    locations, examples and every other field are dropped.
    """

    declarations: list[dict[str, Any]] = []
    modules = manifest.get("modules") if isinstance(manifest, Mapping) else None
    if not isinstance(modules, Sequence):
        return declarations
    for module in modules:
        if not isinstance(module, Mapping):
            continue
        for declaration in module.get("declarations") or ():
            if not isinstance(declaration, Mapping):
                continue
            tag_name = declaration.get("tagName")
            if not tag_name:
                continue
            declarations.append(
                {
                    "tagName": tag_name,
                    "description": declaration.get("description", ""),
                    "attributes": _reduce_list(declaration.get("attributes"), with_type=True),
                    "slots": _reduce_list(declaration.get("slots")),
                    "events": _reduce_list(declaration.get("events")),
                }
            )
    return declarations


class WidgetDocsFetcher:
    """Fetch README and manifest for a widget package over HTTP.

    Transient network failures are retried with exponential backoff. A missing
    README or manifest degrades to ``None`` / an empty declaration list.
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        *,
        max_retries: int = 3,
        retry_min_seconds: float = 0.5,
        retry_max_seconds: float = 6.0,
        timeout: float = 30.0,
    ) -> None:
        self._client = client
        self._owns_client = client is None
        self._max_retries = max(1, max_retries)
        self._retry_min_seconds = retry_min_seconds
        self._retry_max_seconds = retry_max_seconds
        self._timeout = timeout

    async def fetch(self, package: WidgetPackage) -> WidgetDocumentation:
        base = package.base_url.rstrip("/")
        if not base:
            raise ValueError(f"Widget package {package.name} has no base URL")
        readme = await self._get_text(f"{base}/{README_FILENAME}")
        manifest_text = await self._get_text(f"{base}/{MANIFEST_FILENAME}")
        declarations: list[dict[str, Any]] = []
        if manifest_text:
            try:
                declarations = normalize_manifest(json.loads(manifest_text))
            except json.JSONDecodeError as exc:
                LOGGER.warning("Manifest for %s is not valid JSON: %s", package.name, exc)
        LOGGER.debug(
            "Fetched documentation for %s (readme=%s, declarations=%d)",
            package.name,
            readme is not None,
            len(declarations),
        )
        return WidgetDocumentation(name=package.name, readme=readme, declarations=declarations)

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _get_text(self, url: str) -> str | None:
        client = self._get_client()
        async for attempt in self._retrying():
            with attempt:
                response = await client.get(url)
        if response.status_code == 404:
            LOGGER.debug("%s not found", url)
            return None
        response.raise_for_status()
        return response.text

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout, follow_redirects=True)
        return self._client

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(self._max_retries),
            wait=wait_exponential(
                multiplier=self._retry_min_seconds,
                max=self._retry_max_seconds,
            ),
            retry=retry_if_exception_type((httpx.TransportError,)),
        )
