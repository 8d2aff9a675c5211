"""Model endpoints used by the agent loop.

Endpoints are stateless: every request carries the full transcript and the tool
list. Two transports are provided, a chat proxy spoken over plain HTTP and an
OpenAI-compatible API through the official SDK. Model requests are never
retried automatically; a retry is an explicit caller action.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Mapping, Protocol, runtime_checkable

import httpx
from openai import APIConnectionError, APIError, APIStatusError, AsyncOpenAI, AuthenticationError

from .orchestration.types import ChatRequest, ChatResponse, Message

if TYPE_CHECKING:  # pragma: no cover
    from ..services.settings import Settings

__all__ = [
    "AuthError",
    "ChatEndpoint",
    "ClientSettings",
    "FormatError",
    "OpenAIChatEndpoint",
    "ProxyChatEndpoint",
    "TransportError",
    "build_endpoint",
]

LOGGER = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# Errors
# -----------------------------------------------------------------------------


class TransportError(RuntimeError):
    """Network failure, non-2xx status, or an endpoint-reported failure."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class AuthError(TransportError):
    """The endpoint rejected the bearer token (HTTP 401)."""


class FormatError(TransportError):
    """The endpoint answered with something that is not a usable message."""


# -----------------------------------------------------------------------------
# Endpoint protocol
# -----------------------------------------------------------------------------


@runtime_checkable
class ChatEndpoint(Protocol):
    async def complete(self, request: ChatRequest) -> ChatResponse:
        ...


@dataclass(slots=True)
class ClientSettings:
    """Subset of settings required to configure a model endpoint."""

    url: str
    api_key: str = ""
    model: str | None = None
    request_timeout: float | None = 90.0
    default_headers: Mapping[str, str] | None = None
    debug_logging: bool = False


def _log_payload(payload: Mapping[str, Any]) -> None:
    try:
        body = json.dumps(payload, ensure_ascii=False)[:4000]
    except (TypeError, ValueError):
        body = repr(payload)[:4000]
    LOGGER.debug("Model request payload: %s", body)


# -----------------------------------------------------------------------------
# Chat proxy
# -----------------------------------------------------------------------------


class ProxyChatEndpoint:
    """POST the transcript to a chat proxy answering ``{success, lastMessage}``."""

    def __init__(self, settings: ClientSettings, *, client: httpx.AsyncClient | None = None) -> None:
        self._settings = settings
        self._client = client
        self._owns_client = client is None

    @property
    def settings(self) -> ClientSettings:
        return self._settings

    async def complete(self, request: ChatRequest) -> ChatResponse:
        payload = request.to_payload()
        if not payload.get("model") and self._settings.model:
            payload["model"] = self._settings.model
        if self._settings.debug_logging:
            _log_payload(payload)
        LOGGER.debug(
            "Posting %d message(s) and %d tool(s) to %s",
            len(payload["messages"]),
            len(payload["tools"]),
            self._settings.url,
        )

        try:
            response = await self._get_client().post(
                self._settings.url,
                json=payload,
                headers=self._headers(),
            )
        except httpx.HTTPError as exc:
            raise TransportError(f"Request to {self._settings.url} failed: {exc}") from exc

        if response.status_code == 401:
            raise AuthError("Model endpoint rejected the credentials", status_code=401)
        if not response.is_success:
            raise TransportError(
                f"Model endpoint returned HTTP {response.status_code}",
                status_code=response.status_code,
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise FormatError("Model endpoint returned a non-JSON body") from exc
        if not isinstance(body, Mapping):
            raise FormatError("Model endpoint returned a non-object body")
        if not body.get("success"):
            error = body.get("error") or "unknown error"
            raise TransportError(f"Model endpoint reported failure: {error}", status_code=response.status_code)

        try:
            message = Message.from_wire(body.get("lastMessage"))
        except ValueError as exc:
            raise FormatError(f"Model endpoint returned an invalid message: {exc}") from exc
        return ChatResponse(message=message, model=payload.get("model"))

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    def _headers(self) -> dict[str, str]:
        headers = dict(self._settings.default_headers or {})
        if self._settings.api_key:
            headers["Authorization"] = f"Bearer {self._settings.api_key}"
        return headers

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._settings.request_timeout)
        return self._client


# -----------------------------------------------------------------------------
# OpenAI-compatible API
# -----------------------------------------------------------------------------


class OpenAIChatEndpoint:
    """Same contract as :class:`ProxyChatEndpoint` over ``AsyncOpenAI``."""

    def __init__(self, settings: ClientSettings, *, client: AsyncOpenAI | None = None) -> None:
        self._settings = settings
        self._client = client or self._build_client(settings)

    @property
    def settings(self) -> ClientSettings:
        return self._settings

    async def complete(self, request: ChatRequest) -> ChatResponse:
        params: dict[str, Any] = {
            "model": request.model or self._settings.model,
            "messages": [message.to_chat_param() for message in request.messages],
        }
        if request.tools:
            params["tools"] = [dict(tool) for tool in request.tools]
            params["tool_choice"] = request.tool_choice
        if request.max_completion_tokens is not None:
            params["max_completion_tokens"] = request.max_completion_tokens
        if self._settings.debug_logging:
            _log_payload(params)

        try:
            completion = await self._client.chat.completions.create(**params)
        except AuthenticationError as exc:
            raise AuthError("Model endpoint rejected the credentials", status_code=401) from exc
        except APIStatusError as exc:
            raise TransportError(f"Model endpoint returned HTTP {exc.status_code}", status_code=exc.status_code) from exc
        except (APIConnectionError, APIError) as exc:
            raise TransportError(f"Model request failed: {exc}") from exc

        choices = getattr(completion, "choices", None) or []
        if not choices:
            raise FormatError("Model endpoint returned no choices")
        choice = choices[0]
        raw_message = choice.message
        payload = raw_message.model_dump() if hasattr(raw_message, "model_dump") else dict(raw_message)
        try:
            message = Message.from_wire(payload)
        except ValueError as exc:
            raise FormatError(f"Model endpoint returned an invalid message: {exc}") from exc
        return ChatResponse(
            message=message,
            finish_reason=getattr(choice, "finish_reason", None),
            model=getattr(completion, "model", None),
        )

    def _build_client(self, settings: ClientSettings) -> AsyncOpenAI:
        headers = dict(settings.default_headers) if settings.default_headers else None
        return AsyncOpenAI(
            api_key=settings.api_key or "missing",
            base_url=settings.url,
            timeout=settings.request_timeout,
            default_headers=headers,
            max_retries=0,
        )


def build_endpoint(settings: Settings) -> ChatEndpoint:
    """Create the endpoint selected by ``settings.endpoint``."""

    if settings.endpoint == "openai":
        return OpenAIChatEndpoint(
            ClientSettings(
                url=settings.base_url,
                api_key=settings.api_key,
                model=settings.model,
                request_timeout=settings.request_timeout,
                default_headers=settings.default_headers,
                debug_logging=settings.debug_logging,
            )
        )
    return ProxyChatEndpoint(
        ClientSettings(
            url=settings.chat_url,
            api_key=settings.api_key,
            model=settings.model,
            request_timeout=settings.request_timeout,
            default_headers=settings.default_headers,
            debug_logging=settings.debug_logging,
        )
    )
