"""Agent loop controller.

Drives request -> tool execution -> response cycles against a stateless model
endpoint. The controller owns the transcript: durable history plus ephemeral
(``is_update``) scratch messages that are rebuilt at the start of every cycle.

Cancelling a cycle restores the transcript to the snapshot taken when the
cycle started. Document-side effects of tools that already ran are kept; they
live on as independently reversible suggestions.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Sequence

from ...events import AgentStateChanged, EventBus, TranscriptChanged
from ...services.settings import Settings
from .. import prompts
from ..client import ChatEndpoint, FormatError
from ..tools.base import ToolContext
from ..tools.registry import friendly_name, tool_schemas
from .tool_dispatcher import ToolDispatcher
from .types import ChatRequest, Message

LOGGER = logging.getLogger(__name__)

ContextBuilder = Callable[[], ToolContext]


class AgentState(Enum):
    """Lifecycle states of one agent session."""

    IDLE = "Idle"
    AWAITING_MODEL = "AwaitingModel"
    EXECUTING_TOOLS = "ExecutingTools"
    DONE = "Done"
    CANCELLED = "Cancelled"
    FAILED = "Failed"


_RUNNING_STATES = frozenset({AgentState.AWAITING_MODEL, AgentState.EXECUTING_TOOLS})
_RESTARTABLE_STATES = frozenset({AgentState.CANCELLED, AgentState.FAILED})


@dataclass(slots=True, frozen=True)
class VisibleMessage:
    """One entry of the chat view.

    ``role`` is ``user``, ``assistant`` or ``activity``; activity entries stand
    for tool calls and carry the tool's friendly name.
    """

    role: str
    text: str


class AgentLoopController:
    """Stateful controller for one document session's conversation."""

    def __init__(
        self,
        endpoint: ChatEndpoint,
        dispatcher: ToolDispatcher,
        context_builder: ContextBuilder,
        *,
        settings: Settings | None = None,
        event_bus: EventBus | None = None,
    ) -> None:
        self._endpoint = endpoint
        self._dispatcher = dispatcher
        self._context_builder = context_builder
        self._settings = settings or Settings()
        self._event_bus = event_bus
        self._tools = tuple(tool_schemas())

        self._messages: list[Message] = []
        self._snapshot: tuple[Message, ...] | None = None
        self._state = AgentState.IDLE
        self._cancelled = False
        self._active_task: asyncio.Task[str] | None = None
        self._cycle_id: str | None = None
        self._last_error: BaseException | None = None

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def state(self) -> AgentState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state in _RUNNING_STATES

    @property
    def transcript(self) -> tuple[Message, ...]:
        """Durable and ephemeral messages, in request order."""
        return tuple(self._messages)

    @property
    def snapshot(self) -> tuple[Message, ...] | None:
        """Transcript as captured at the start of the current or last cycle."""
        return self._snapshot

    @property
    def last_error(self) -> BaseException | None:
        return self._last_error

    def durable_messages(self) -> list[Message]:
        return [message for message in self._messages if not message.is_update]

    def visible_messages(self) -> list[VisibleMessage]:
        """Project the transcript onto what a chat view shows."""

        visible: list[VisibleMessage] = []
        for message in self._messages:
            if message.is_update:
                continue
            if message.role == "user":
                visible.append(VisibleMessage("user", message.content))
            elif message.role == "assistant":
                if message.content:
                    visible.append(VisibleMessage("assistant", message.content))
                for call in message.tool_calls or ():
                    visible.append(VisibleMessage("activity", friendly_name(call.function_name)))
        return visible

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def submit(self, text: str) -> str | None:
        """Start a cycle for a new user message.

        Returns:
            The model's final answer, or ``None`` when the cycle was cancelled.

        Raises:
            RuntimeError: If a cycle is already running.
            TransportError: If the endpoint fails; the loop is left ``Failed``.
        """
        if self.is_running:
            raise RuntimeError("An agent cycle is already running")
        self._messages.append(Message.user(text))
        self._start_cycle()
        return await self._run_cycle()

    async def retry(self) -> str | None:
        """Replay the last cancelled or failed cycle from its snapshot."""

        if self._state not in _RESTARTABLE_STATES:
            raise RuntimeError(f"Cannot retry from state {self._state.value}")
        if self._snapshot is None:
            raise RuntimeError("There is no cycle to retry")
        self._messages = list(self._snapshot)
        self._start_cycle()
        return await self._run_cycle()

    def cancel(self) -> bool:
        """Abort the running cycle and restore the cycle-start transcript.

        Returns ``False`` when no cycle is running.
        """
        if not self.is_running:
            LOGGER.debug("cancel() called but no cycle is running")
            return False
        self._cancelled = True
        task = self._active_task
        if task is not None and not task.done():
            LOGGER.info("Cancelling active agent cycle %s", self._cycle_id)
            task.cancel()
        self._restore_snapshot()
        self._set_state(AgentState.CANCELLED)
        return True

    def reset(self) -> None:
        """Clear the conversation."""

        if self.is_running:
            self.cancel()
        self._messages.clear()
        self._snapshot = None
        self._last_error = None
        self._set_state(AgentState.IDLE)
        self._publish_transcript("reset")

    async def aclose(self) -> None:
        task = self._active_task
        if task is not None and not task.done():
            self.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        close = getattr(self._endpoint, "aclose", None)
        if callable(close):
            await close()

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------

    def _start_cycle(self) -> None:
        context = self._context_builder()
        self._messages = self._with_ephemeral(self.durable_messages(), context)
        self._snapshot = tuple(self._messages)
        self._cancelled = False
        self._last_error = None
        self._cycle_id = f"cycle-{uuid.uuid4().hex[:12]}"
        self._publish_transcript("cycle_start")
        self._set_state(AgentState.AWAITING_MODEL)

    async def _run_cycle(self) -> str | None:
        task = asyncio.create_task(self._drive())
        self._active_task = task
        try:
            answer = await task
        except asyncio.CancelledError:
            if not self._cancelled:
                # The caller itself was cancelled; take the cycle down with it.
                task.cancel()
                self.cancel()
                raise
            return None
        except Exception as exc:
            if self._cancelled:
                LOGGER.debug("Ignoring error raised after cancellation", exc_info=True)
                return None
            self._last_error = exc
            LOGGER.warning("Agent cycle %s failed: %s", self._cycle_id, exc)
            self._set_state(AgentState.FAILED, error=str(exc))
            raise
        finally:
            if self._active_task is task:
                self._active_task = None

        if self._cancelled:
            return None
        self._set_state(AgentState.DONE)
        return answer

    async def _drive(self) -> str:
        rounds = 0
        limit = max(1, int(self._settings.max_tool_iterations))
        while True:
            self._set_state(AgentState.AWAITING_MODEL)
            response = await self._endpoint.complete(self._build_request())
            if self._cancelled:
                return ""
            message = response.message
            if message.role != "assistant":
                raise FormatError(f"Expected an assistant message, got role {message.role!r}")
            calls = message.tool_calls or ()
            # The transcript never holds a tool call without its results.
            if calls and rounds >= limit:
                raise FormatError(f"Model exceeded {limit} tool rounds without answering")
            self._append(message)
            if not calls:
                return message.content
            rounds += 1

            self._set_state(AgentState.EXECUTING_TOOLS)
            context = self._context_builder()
            if context.request_id is None:
                context.request_id = self._cycle_id
            results = await self._dispatcher.dispatch_all(calls, context)
            if self._cancelled:
                return ""
            for call, result in zip(calls, results):
                self._append(
                    Message.tool(
                        result.to_message_content(),
                        tool_call_id=call.id,
                        name=call.function_name,
                    )
                )

    def _build_request(self) -> ChatRequest:
        return ChatRequest(
            messages=tuple(self._messages),
            tools=self._tools,
            model=self._settings.model or None,
            max_completion_tokens=self._settings.max_completion_tokens,
        )

    # ------------------------------------------------------------------
    # Transcript helpers
    # ------------------------------------------------------------------

    def _with_ephemeral(self, durable: Sequence[Message], context: ToolContext) -> list[Message]:
        """System prompt first; document and widget context right before the latest user message."""

        widgets = context.catalog.installed() if context.catalog is not None else []
        head = [Message.system(prompts.system_prompt(widgets), is_update=True)]
        context_messages = [
            Message.system(
                prompts.document_snapshot(context.document.content, title=context.document.metadata.title),
                is_update=True,
            ),
            Message.system(prompts.widget_list(widgets), is_update=True),
        ]
        split = len(durable)
        for index in range(len(durable) - 1, -1, -1):
            if durable[index].role == "user":
                split = index
                break
        return head + list(durable[:split]) + context_messages + list(durable[split:])

    def _append(self, message: Message) -> None:
        if self._cancelled:
            LOGGER.debug("Discarding %s message that arrived after cancellation", message.role)
            return
        self._messages.append(message)
        self._publish_transcript("append")

    def _restore_snapshot(self) -> None:
        if self._snapshot is not None:
            self._messages = list(self._snapshot)
            self._publish_transcript("restore")

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def _set_state(self, state: AgentState, *, error: str | None = None) -> None:
        previous = self._state
        if previous is state:
            return
        self._state = state
        LOGGER.debug("Agent state %s -> %s", previous.value, state.value)
        if self._event_bus is not None:
            self._event_bus.publish(AgentStateChanged(previous=previous.value, current=state.value, error=error))

    def _publish_transcript(self, reason: str) -> None:
        if self._event_bus is not None:
            self._event_bus.publish(TranscriptChanged(message_count=len(self._messages), reason=reason))


__all__ = ["AgentLoopController", "AgentState", "ContextBuilder", "VisibleMessage"]
