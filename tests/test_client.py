from __future__ import annotations

import json
from types import SimpleNamespace
from typing import Any

import httpx
import openai
import pytest
from openai.types.chat import ChatCompletionMessage

from inkling.ai.client import (
    AuthError,
    ChatEndpoint,
    ClientSettings,
    FormatError,
    OpenAIChatEndpoint,
    ProxyChatEndpoint,
    TransportError,
    build_endpoint,
)
from inkling.ai.orchestration.types import ChatRequest, Message
from inkling.ai.tools.registry import tool_schemas
from inkling.services.settings import Settings

CHAT_URL = "https://proxy.test/api/chat"


def _request() -> ChatRequest:
    return ChatRequest(
        messages=(Message.system("be brief", is_update=True), Message.user("Add a quiz")),
        tools=tuple(tool_schemas()),
        max_completion_tokens=512,
    )


def _proxy(handler, **overrides: Any) -> tuple[ProxyChatEndpoint, httpx.AsyncClient]:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    settings = ClientSettings(url=CHAT_URL, api_key="sk-test", model="gpt-test", **overrides)
    return ProxyChatEndpoint(settings, client=client), client


class _FakeCompletions:
    def __init__(self, outcome: Any) -> None:
        self.outcome = outcome
        self.calls: list[dict[str, Any]] = []

    async def create(self, **params: Any) -> Any:
        self.calls.append(params)
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome


def _fake_openai(outcome: Any) -> tuple[Any, _FakeCompletions]:
    completions = _FakeCompletions(outcome)
    return SimpleNamespace(chat=SimpleNamespace(completions=completions)), completions


# ----------------------------------------------------------------------
# Proxy endpoint
# ----------------------------------------------------------------------


@pytest.mark.asyncio
async def test_proxy_posts_transcript_and_parses_tool_calls() -> None:
    seen: dict[str, Any] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["auth"] = request.headers.get("Authorization")
        seen["payload"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={
                "success": True,
                "lastMessage": {
                    "role": "assistant",
                    "content": None,
                    "tool_calls": [
                        {
                            "id": "call-1",
                            "type": "function",
                            "function": {"name": "insert_at_bottom", "arguments": '{"html": "<p>x</p>"}'},
                        }
                    ],
                    "timestamp": 1700000000000,
                },
            },
        )

    endpoint, client = _proxy(handler)
    response = await endpoint.complete(_request())
    await client.aclose()

    payload = seen["payload"]
    assert seen["auth"] == "Bearer sk-test"
    assert payload["model"] == "gpt-test"
    assert payload["tool_choice"] == "auto"
    assert payload["max_completion_tokens"] == 512
    assert [message["role"] for message in payload["messages"]] == ["system", "user"]
    assert payload["messages"][0]["isUpdate"] is True
    assert len(payload["tools"]) == 7
    assert response.message.role == "assistant"
    assert response.message.content == ""
    assert response.has_tool_calls
    call = response.message.tool_calls[0]
    assert (call.id, call.function_name) == ("call-1", "insert_at_bottom")
    assert json.loads(call.arguments) == {"html": "<p>x</p>"}


@pytest.mark.asyncio
async def test_proxy_maps_unauthorized_to_auth_error() -> None:
    endpoint, client = _proxy(lambda request: httpx.Response(401, json={"error": "nope"}))

    with pytest.raises(AuthError) as excinfo:
        await endpoint.complete(_request())
    await client.aclose()

    assert excinfo.value.status_code == 401


@pytest.mark.asyncio
async def test_proxy_maps_server_errors_to_transport_error() -> None:
    endpoint, client = _proxy(lambda request: httpx.Response(502, text="bad gateway"))

    with pytest.raises(TransportError) as excinfo:
        await endpoint.complete(_request())
    await client.aclose()

    assert excinfo.value.status_code == 502
    assert not isinstance(excinfo.value, (AuthError, FormatError))


@pytest.mark.asyncio
async def test_proxy_reported_failure_is_transport_error() -> None:
    endpoint, client = _proxy(lambda request: httpx.Response(200, json={"success": False, "error": "quota"}))

    with pytest.raises(TransportError, match="quota"):
        await endpoint.complete(_request())
    await client.aclose()


@pytest.mark.asyncio
async def test_proxy_non_json_body_is_format_error() -> None:
    endpoint, client = _proxy(lambda request: httpx.Response(200, text="<html>oops</html>"))

    with pytest.raises(FormatError):
        await endpoint.complete(_request())
    await client.aclose()


@pytest.mark.asyncio
async def test_proxy_invalid_message_is_format_error() -> None:
    endpoint, client = _proxy(
        lambda request: httpx.Response(200, json={"success": True, "lastMessage": {"role": "wizard"}})
    )

    with pytest.raises(FormatError):
        await endpoint.complete(_request())
    await client.aclose()


@pytest.mark.asyncio
async def test_proxy_network_failure_is_transport_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    endpoint, client = _proxy(handler)

    with pytest.raises(TransportError):
        await endpoint.complete(_request())
    await client.aclose()


@pytest.mark.asyncio
async def test_proxy_sends_default_headers() -> None:
    seen: dict[str, Any] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["header"] = request.headers.get("X-Client")
        return httpx.Response(200, json={"success": True, "lastMessage": {"role": "assistant", "content": "ok"}})

    endpoint, client = _proxy(handler, default_headers={"X-Client": "inkling"})
    response = await endpoint.complete(_request())
    await client.aclose()

    assert seen["header"] == "inkling"
    assert response.message.content == "ok"


# ----------------------------------------------------------------------
# OpenAI-compatible endpoint
# ----------------------------------------------------------------------


@pytest.mark.asyncio
async def test_openai_endpoint_parses_sdk_message() -> None:
    message = ChatCompletionMessage.model_validate(
        {
            "role": "assistant",
            "content": None,
            "tool_calls": [
                {"id": "call-9", "type": "function", "function": {"name": "get_document", "arguments": "{}"}}
            ],
        }
    )
    completion = SimpleNamespace(
        choices=[SimpleNamespace(message=message, finish_reason="tool_calls")],
        model="gpt-test",
    )
    client, completions = _fake_openai(completion)
    endpoint = OpenAIChatEndpoint(ClientSettings(url="https://api.test/v1", model="gpt-test"), client=client)

    response = await endpoint.complete(_request())

    params = completions.calls[0]
    assert params["model"] == "gpt-test"
    assert params["tool_choice"] == "auto"
    assert params["max_completion_tokens"] == 512
    assert "isUpdate" not in params["messages"][0]
    assert response.finish_reason == "tool_calls"
    assert response.message.tool_calls[0].function_name == "get_document"


@pytest.mark.asyncio
async def test_openai_authentication_error_maps_to_auth_error() -> None:
    error = openai.AuthenticationError(
        "bad key",
        response=httpx.Response(401, request=httpx.Request("POST", "https://api.test/v1/chat/completions")),
        body=None,
    )
    client, _ = _fake_openai(error)
    endpoint = OpenAIChatEndpoint(ClientSettings(url="https://api.test/v1"), client=client)

    with pytest.raises(AuthError):
        await endpoint.complete(_request())


@pytest.mark.asyncio
async def test_openai_connection_error_maps_to_transport_error() -> None:
    error = openai.APIConnectionError(request=httpx.Request("POST", "https://api.test/v1/chat/completions"))
    client, _ = _fake_openai(error)
    endpoint = OpenAIChatEndpoint(ClientSettings(url="https://api.test/v1"), client=client)

    with pytest.raises(TransportError):
        await endpoint.complete(_request())


@pytest.mark.asyncio
async def test_openai_empty_choices_is_format_error() -> None:
    client, _ = _fake_openai(SimpleNamespace(choices=[], model="gpt-test"))
    endpoint = OpenAIChatEndpoint(ClientSettings(url="https://api.test/v1"), client=client)

    with pytest.raises(FormatError):
        await endpoint.complete(_request())


def test_build_endpoint_follows_settings() -> None:
    proxy = build_endpoint(Settings(chat_url=CHAT_URL))
    direct = build_endpoint(Settings(endpoint="openai", api_key="sk-test"))

    assert isinstance(proxy, ProxyChatEndpoint)
    assert proxy.settings.url == CHAT_URL
    assert isinstance(direct, OpenAIChatEndpoint)
    assert direct.settings.url == "https://api.openai.com/v1"
    assert isinstance(proxy, ChatEndpoint)
    assert isinstance(direct, ChatEndpoint)
