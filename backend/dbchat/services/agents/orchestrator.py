"""
Streaming turn orchestrator.

Drives one chat turn end to end:

1. Load the thread context of the session.
2. Select the agent (pinned, console, workspace, triage).
3. Build the agent and start a streamed runtime run.
4. Translate runtime events into client events as they
   arrive, following hand-offs between agents.
5. Persist the turn once, start title generation in the
   background, and report the thread and session ids.

The run executes in its own task and writes into a
per-turn ``EventChannel``; ``stream_turn`` reads the channel
under a wall-clock budget until the runtime has drained.
Whatever happens, the stream ends with exactly one ``done``.
"""

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field
from typing import AsyncIterator, List, Optional

from dbchat.config import settings
from dbchat.schemas import ConsoleData
from dbchat.services.agents.events import (
    ClientEvent,
    DoneEvent,
    ErrorEvent,
    SessionEvent,
    TextEvent,
    ThreadInfoEvent,
    TimeoutEvent,
)
from dbchat.services.agents.registry import AgentKind, build_agent
from dbchat.services.agents.runtime import AgentRuntime
from dbchat.services.agents.selector import (
    get_selection_confidence,
    select_initial_agent,
)
from dbchat.services.agents.translator import EventTranslator, TurnState
from dbchat.services.session_store import ChatSessionStore, TurnRecord
from dbchat.services.thread_context import (
    ThreadContext,
    build_agent_context,
)
from dbchat.services.title_service import TitleService

logger = logging.getLogger(__name__)


@dataclass
class TurnRequest:
    """One validated inbound chat turn."""

    workspace_id: str
    user_id: str
    message: str
    session_id: Optional[str] = None
    consoles: List[ConsoleData] = field(default_factory=list)
    console_id: Optional[str] = None


class EventChannel:
    """
    Per-turn queue between the run task and the response.

    Once closed, further emissions are dropped; closing
    enqueues the single ``done`` event.
    """

    def __init__(self):
        self._queue: asyncio.Queue = asyncio.Queue()
        self.closed = False
        self.drained = False

    def emit(self, event: ClientEvent) -> bool:
        if self.closed:
            return False
        self._queue.put_nowait(event)
        return True

    def mark_drained(self) -> None:
        """The runtime finished; later reads are not time-bound."""
        self.drained = True

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._queue.put_nowait(DoneEvent())

    def get_nowait(self) -> Optional[ClientEvent]:
        try:
            return self._queue.get_nowait()
        except asyncio.QueueEmpty:
            return None

    async def get(self) -> ClientEvent:
        return await self._queue.get()


@dataclass
class _PumpResult:
    thread_context: ThreadContext
    state: TurnState
    console_id: Optional[str]


class AgentOrchestrator:
    """
    Run chat turns against an ``AgentRuntime``.

    Parameters:
        runtime (AgentRuntime): Produces raw event streams.
        store (ChatSessionStore): Session persistence.
        title_service (TitleService, optional): Background
            title generation; disabled when None.
        timeout_seconds (float, optional): Wall-clock budget
            of the streamed part of a turn.
        max_turns (int, optional): Model turns per run.
    """

    def __init__(
        self,
        runtime: AgentRuntime,
        store: ChatSessionStore,
        title_service: Optional[TitleService] = None,
        timeout_seconds: Optional[float] = None,
        max_turns: Optional[int] = None,
    ):
        self.runtime = runtime
        self.store = store
        self.title_service = title_service
        self.timeout_seconds = (
            timeout_seconds if timeout_seconds is not None
            else settings.agent_timeout_seconds
        )
        self.max_turns = max_turns or settings.agent_max_turns

    # ----- public API ------------------------------------------------

    async def stream_turn(
        self,
        request: TurnRequest,
    ) -> AsyncIterator[ClientEvent]:
        """
        Run one turn and yield its client events.

        Parameters:
            request (TurnRequest): The validated turn.

        Yields:
            ClientEvent: Canonical events, ending with exactly
                one ``DoneEvent``.
        """
        channel = EventChannel()
        task = asyncio.create_task(self._run_turn(request, channel))
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout_seconds

        try:
            while True:
                event = channel.get_nowait()
                if event is None:
                    if channel.drained:
                        event = await channel.get()
                    else:
                        remaining = deadline - loop.time()
                        try:
                            if remaining <= 0:
                                raise asyncio.TimeoutError()
                            event = await asyncio.wait_for(
                                channel.get(), remaining,
                            )
                        except asyncio.TimeoutError:
                            logger.warning(
                                "[orchestrator] turn timed out after "
                                "%.1fs",
                                self.timeout_seconds,
                            )
                            channel.close()
                            task.cancel()
                            with contextlib.suppress(asyncio.CancelledError):
                                await task
                            yield TimeoutEvent()
                            yield DoneEvent()
                            return

                yield event
                if isinstance(event, DoneEvent):
                    return
        finally:
            if not task.done():
                task.cancel()

    # ----- turn task -------------------------------------------------

    async def _run_turn(
        self,
        request: TurnRequest,
        channel: EventChannel,
    ) -> None:
        try:
            result = await self._pump(request, channel)
            channel.mark_drained()
            await self._persist(request, result, channel)
        except Exception as exc:
            logger.exception("[orchestrator] turn failed")
            channel.emit(ErrorEvent(message=str(exc) or "Agent run failed"))
        finally:
            channel.close()

    async def _pump(
        self,
        request: TurnRequest,
        channel: EventChannel,
    ) -> _PumpResult:
        ctx = await asyncio.to_thread(
            self.store.get_thread_context,
            request.session_id,
            request.workspace_id,
            request.user_id,
        )
        db_types = await asyncio.to_thread(
            self.store.workspace_database_types,
            request.workspace_id,
        )
        selection = (
            ctx.active_agent,
            request.message,
            request.consoles,
            "mongodb" in db_types,
            "bigquery" in db_types,
        )
        kind = select_initial_agent(*selection)
        _, confidence, reason = get_selection_confidence(*selection)
        logger.info(
            "[orchestrator] thread %s -> %s (%s: %s)",
            ctx.thread_id,
            kind.value,
            confidence,
            reason,
        )

        console_id = request.console_id or ctx.pinned_console_id or None
        state = TurnState(active_kind=kind)

        def send_event(event: ClientEvent) -> None:
            if channel.emit(event):
                state.record_sink_delivery(event)

        descriptor = build_agent(
            kind,
            request.workspace_id,
            consoles=request.consoles,
            preferred_console_id=console_id,
            send_event=send_event,
        )
        prompt = build_agent_context(ctx, request.message)
        stream = self.runtime.run_streamed(descriptor, prompt, self.max_turns)

        translator = EventTranslator()
        async for raw_event in stream:
            for event in translator.translate(raw_event, state):
                channel.emit(event)

        try:
            await stream.wait_completed()
        except Exception as exc:
            logger.warning(
                "[orchestrator] run completion failed: %s", exc,
            )

        final_output = getattr(stream, "final_output", None)
        if (
            state.text_delta_count == 0
            and isinstance(final_output, str)
            and final_output.strip()
        ):
            state.assistant_reply = final_output
            channel.emit(TextEvent(content=final_output))

        return _PumpResult(
            thread_context=ctx,
            state=state,
            console_id=console_id,
        )

    async def _persist(
        self,
        request: TurnRequest,
        result: _PumpResult,
        channel: EventChannel,
    ) -> None:
        state = result.state
        if state.correlator.pending():
            logger.info(
                "[orchestrator] %d tool call(s) never completed",
                len(state.correlator.pending()),
            )

        record = TurnRecord(
            thread_context=result.thread_context,
            workspace_id=request.workspace_id,
            user_id=request.user_id,
            user_message=request.message,
            assistant_message=state.assistant_reply,
            tool_calls=state.correlator.to_payload(
                settings.tool_result_max_chars,
            ),
            active_agent=(
                state.active_kind.value
                if state.active_kind != AgentKind.TRIAGE else None
            ),
            pinned_console_id=result.console_id,
        )
        saved = await asyncio.to_thread(self.store.save_turn, record)

        if self.title_service is not None and not saved.title_generated:
            self.title_service.dispatch(saved.session_id, saved.messages)

        channel.emit(ThreadInfoEvent(
            thread_id=saved.thread_id,
            message_count=saved.message_count,
        ))
        channel.emit(SessionEvent(session_id=saved.session_id))
