"""Settings dataclasses and persistence helpers."""

from __future__ import annotations

from abc import ABC, abstractmethod
import json
import logging
import os
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping

from cryptography.fernet import Fernet, InvalidToken

__all__ = [
    "ENDPOINT_CHOICES",
    "FernetSecretProvider",
    "SecretProvider",
    "SecretVault",
    "Settings",
    "SettingsStore",
    "redact_secret",
]

LOGGER = logging.getLogger(__name__)
_SETTINGS_DIR = Path.home() / ".inkling"
_DEFAULT_SETTINGS_PATH = _SETTINGS_DIR / "settings.json"
_SETTINGS_VERSION = 1
_ENV_OVERRIDES: Mapping[str, str] = {
    "INKLING_API_KEY": "api_key",
    "INKLING_ENDPOINT": "endpoint",
    "INKLING_CHAT_URL": "chat_url",
    "INKLING_BASE_URL": "base_url",
    "INKLING_MODEL": "model",
    "INKLING_WIDGET_CATALOG": "widget_catalog_path",
    "INKLING_SUGGESTION_CACHE": "suggestion_cache_path",
}
_BOOL_ENV_OVERRIDES: Mapping[str, str] = {
    "INKLING_DEBUG_LOGGING": "debug_logging",
}
_FLOAT_ENV_OVERRIDES: Mapping[str, str] = {
    "INKLING_REQUEST_TIMEOUT": "request_timeout",
}
_INT_ENV_OVERRIDES: Mapping[str, str] = {
    "INKLING_MAX_TOOL_ITERATIONS": "max_tool_iterations",
    "INKLING_MAX_COMPLETION_TOKENS": "max_completion_tokens",
    "INKLING_DOCS_MAX_RETRIES": "docs_max_retries",
}
_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}
_API_KEY_FIELD = "api_key_ciphertext"
ENDPOINT_CHOICES: tuple[str, ...] = ("proxy", "openai")


@dataclass(slots=True)
class Settings:
    """User-configurable settings persisted between sessions.

    ``endpoint`` selects the model transport: ``proxy`` posts the transcript to
    ``chat_url``; ``openai`` talks to an OpenAI-compatible API at ``base_url``.
    """

    endpoint: str = "proxy"
    chat_url: str = "http://localhost:3000/api/chat"
    base_url: str = "https://api.openai.com/v1"
    api_key: str = ""
    model: str = "gpt-4o-mini"
    max_completion_tokens: int = 4_096
    max_tool_iterations: int = 8
    request_timeout: float = 90.0
    docs_max_retries: int = 3
    retry_min_seconds: float = 0.5
    retry_max_seconds: float = 6.0
    widget_catalog_path: str | None = None
    suggestion_cache_path: str | None = None
    debug_logging: bool = False
    default_headers: dict[str, str] = field(default_factory=dict)


class SecretProvider(ABC):
    """Interface for encrypting and decrypting sensitive strings."""

    name: str = "unknown"

    @abstractmethod
    def encrypt(self, secret: str) -> str:
        """Return an encoded representation of ``secret`` suitable for storage."""

    @abstractmethod
    def decrypt(self, token: str) -> str:
        """Return the plaintext representation of ``token``."""


class FernetSecretProvider(SecretProvider):
    """Secret provider that uses a symmetric Fernet key stored on disk."""

    name = "fernet"

    def __init__(self, key_path: Path | None = None) -> None:
        self._key_path = key_path or (_SETTINGS_DIR / "settings.key")
        self._fernet: Fernet | None = None

    def encrypt(self, secret: str) -> str:
        token = self._get_fernet().encrypt(secret.encode("utf-8"))
        return token.decode("ascii")

    def decrypt(self, token: str) -> str:
        raw = self._get_fernet().decrypt(token.encode("ascii"))
        return raw.decode("utf-8")

    def _get_fernet(self) -> Fernet:
        if self._fernet is None:
            key = self._load_or_create_key()
            self._fernet = Fernet(key)
        return self._fernet

    def _load_or_create_key(self) -> bytes:
        path = self._key_path
        path.parent.mkdir(parents=True, exist_ok=True)
        if path.exists():
            return path.read_bytes().strip()
        key = Fernet.generate_key()
        tmp_path = path.with_suffix(".tmp")
        tmp_path.write_bytes(key)
        if os.name != "nt":  # pragma: no cover - depends on OS
            os.chmod(tmp_path, 0o600)
        tmp_path.replace(path)
        return key


class SecretVault:
    """Encrypts and decrypts sensitive strings for settings persistence.

    Tokens are stored as ``<provider>:<payload>`` so the backend can change
    without invalidating existing files.
    """

    def __init__(
        self,
        *,
        key_path: Path | None = None,
        provider: SecretProvider | None = None,
    ) -> None:
        self._key_path = key_path or (_SETTINGS_DIR / "settings.key")
        self._provider = provider or FernetSecretProvider(self._key_path)

    @property
    def strategy(self) -> str:
        return self._provider.name

    def encrypt(self, secret: str) -> str:
        if not secret:
            return ""
        payload = self._provider.encrypt(secret)
        return f"{self._provider.name}:{payload}"

    def decrypt(self, token: str | None) -> str:
        if not token:
            return ""
        prefix, payload = self._split_token(token)
        if prefix not in (None, self._provider.name):
            LOGGER.warning("Unknown secret token prefix %s; returning ciphertext.", prefix)
            return token
        try:
            return self._provider.decrypt(payload)
        except InvalidToken as exc:
            raise ValueError("Invalid Fernet token") from exc

    @staticmethod
    def _split_token(token: str) -> tuple[str | None, str]:
        if ":" not in token:
            return None, token
        prefix, payload = token.split(":", 1)
        return (prefix or None), payload


class SettingsStore:
    """Persistence adapter for :class:`Settings`."""

    def __init__(self, path: Path | None = None, *, vault: SecretVault | None = None) -> None:
        self._path = path or _DEFAULT_SETTINGS_PATH
        key_path = self._path.with_suffix(".key")
        self._vault = vault or SecretVault(key_path=key_path)

    @property
    def path(self) -> Path:
        return self._path

    @property
    def vault(self) -> SecretVault:
        return self._vault

    def load(self, *, overrides: Mapping[str, Any] | None = None) -> Settings:
        """Load settings from disk, applying CLI/environment overrides when present."""

        payload = self._read_payload()
        settings = Settings()

        if payload:
            # Only the encrypted field carries the key.
            payload.pop("api_key", None)
            plaintext_key = self._decrypt_api_key(payload.pop(_API_KEY_FIELD, None))
            data = _filter_fields(payload)
            try:
                settings = Settings(**data)
            except TypeError as exc:
                LOGGER.warning("Settings payload contained unexpected data: %s", exc)
                settings = Settings()
            if plaintext_key:
                settings = replace(settings, api_key=plaintext_key)
            LOGGER.debug("Settings loaded from %s (endpoint=%s)", self._path, settings.endpoint)

        if overrides:
            settings = self._apply_overrides(settings, overrides, source="CLI")

        settings = self._apply_env_overrides(settings)
        return _normalize_endpoint(settings)

    def save(self, settings: Settings) -> Path:
        """Persist settings to disk with atomic file writes."""

        payload = self._serialize(settings)
        body = json.dumps(payload, indent=2, sort_keys=True)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(".tmp")
        tmp_path.write_text(body, encoding="utf-8")
        tmp_path.replace(self._path)
        LOGGER.debug("Settings saved to %s", self._path)
        return self._path

    def _serialize(self, settings: Settings) -> Dict[str, Any]:
        data = asdict(settings)
        api_key = data.pop("api_key", "") or ""
        ciphertext = self._encrypt_api_key(api_key)
        if ciphertext:
            data[_API_KEY_FIELD] = ciphertext
        data["version"] = _SETTINGS_VERSION
        data["secret_backend"] = self._vault.strategy
        return data

    def _read_payload(self) -> Dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            text = self._path.read_text(encoding="utf-8")
            data = json.loads(text)
        except FileNotFoundError:
            return {}
        except json.JSONDecodeError as exc:
            LOGGER.warning("Settings file %s is not valid JSON: %s", self._path, exc)
            return {}
        return dict(data) if isinstance(data, Mapping) else {}

    def _apply_overrides(
        self,
        settings: Settings,
        overrides: Mapping[str, Any],
        *,
        source: str = "runtime",
    ) -> Settings:
        allowed = {field.name for field in fields(Settings)}
        filtered: Dict[str, Any] = {}
        for key, value in overrides.items():
            if key not in allowed or value is None:
                continue
            filtered[key] = value
        if filtered:
            LOGGER.debug("Applying %s settings overrides: %s", source, sorted(filtered))
            settings = replace(settings, **filtered)
        return settings

    def _apply_env_overrides(self, settings: Settings) -> Settings:
        overrides: Dict[str, Any] = {}
        for env_name, field_name in _ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is not None:
                overrides[field_name] = value
        for env_name, field_name in _BOOL_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is not None:
                overrides[field_name] = value.strip().lower() in _TRUE_VALUES
        for env_name, field_name in _INT_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is None:
                continue
            try:
                overrides[field_name] = int(value, 10)
            except ValueError:
                LOGGER.warning(
                    "Environment override %s=%s is not a valid integer",
                    env_name,
                    value,
                )
        for env_name, field_name in _FLOAT_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is None:
                continue
            try:
                overrides[field_name] = float(value)
            except ValueError:
                LOGGER.warning(
                    "Environment override %s=%s is not a valid float", env_name, value
                )
        if overrides:
            settings = self._apply_overrides(settings, overrides, source="environment")
        return settings

    def _encrypt_api_key(self, api_key: str) -> str | None:
        if not api_key:
            return None
        try:
            token = self._vault.encrypt(api_key)
            LOGGER.debug("API key encrypted via %s backend", self._vault.strategy)
            return token
        except OSError as exc:  # pragma: no cover - key file not writable
            LOGGER.warning("Failed to encrypt API key: %s", exc)
            return None

    def _decrypt_api_key(self, ciphertext: str | None) -> str:
        if not ciphertext:
            return ""
        try:
            return self._vault.decrypt(ciphertext)
        except ValueError as exc:
            LOGGER.warning("Unable to decrypt API key: %s", exc)
            return ""


def _filter_fields(payload: Mapping[str, Any]) -> Dict[str, Any]:
    allowed = {field.name for field in fields(Settings)} - {"api_key"}
    result: Dict[str, Any] = {}
    for key, value in payload.items():
        if key not in allowed:
            continue
        result[key] = value
    return result


def _normalize_endpoint(settings: Settings) -> Settings:
    normalized = str(settings.endpoint or "").strip().lower()
    if normalized in ENDPOINT_CHOICES:
        if normalized != settings.endpoint:
            settings = replace(settings, endpoint=normalized)
        return settings
    LOGGER.warning("Unknown endpoint '%s'; defaulting to proxy.", settings.endpoint)
    return replace(settings, endpoint="proxy")


def redact_secret(value: str) -> str:
    stripped = (value or "").strip()
    if not stripped:
        return ""
    if len(stripped) <= 4:
        return "*" * len(stripped)
    return f"{stripped[:2]}{'*' * (len(stripped) - 4)}{stripped[-2:]}"
