"""Agent loop orchestration.

Only the message types are re-exported here; the controller and dispatcher
depend on :mod:`inkling.ai.client`, which itself imports these types. Import
them from :mod:`.agent_loop` and :mod:`.tool_dispatcher` directly.
"""

from .types import ChatRequest, ChatResponse, Message, ToolCall

__all__ = ["ChatRequest", "ChatResponse", "Message", "ToolCall"]
