"""Model endpoints, prompts, tools and the agent loop."""

from .client import AuthError, ChatEndpoint, FormatError, OpenAIChatEndpoint, ProxyChatEndpoint, TransportError, build_endpoint

__all__ = [
    "AuthError",
    "ChatEndpoint",
    "FormatError",
    "OpenAIChatEndpoint",
    "ProxyChatEndpoint",
    "TransportError",
    "build_endpoint",
]
