"""Tests for the streaming turn orchestrator."""

import json

import pytest

from dbchat.errors import PersistenceError
from dbchat.models import ChatMessage, ChatSession
from dbchat.schemas import ConsoleData
from dbchat.services.agents.orchestrator import (
    AgentOrchestrator,
    EventChannel,
    TurnRequest,
)
from dbchat.services.agents.events import DoneEvent, TextEvent
from dbchat.services.agents.registry import AgentKind

from conftest import (
    USER_ID,
    WORKSPACE_ID,
    CallTool,
    ScriptedRuntime,
    Sleep,
    agent_updated,
    handoff_occurred,
    handoff_requested,
    message_created,
    text_delta,
)


class RecordingTitleService:
    def __init__(self):
        self.calls = []

    def dispatch(self, session_id, messages):
        self.calls.append((session_id, messages))


def _request(message="hello", **kwargs):
    return TurnRequest(
        workspace_id=WORKSPACE_ID,
        user_id=USER_ID,
        message=message,
        **kwargs,
    )


async def _collect(orchestrator, request):
    return [event async for event in orchestrator.stream_turn(request)]


def _types(events):
    return [event.type for event in events]


def _messages(session_factory):
    db = session_factory()
    try:
        return [
            (m.role, m.content, m.tool_calls_json)
            for m in db.query(ChatMessage).order_by(ChatMessage.position)
        ]
    finally:
        db.close()


def _session_count(session_factory):
    db = session_factory()
    try:
        return db.query(ChatSession).count()
    finally:
        db.close()


class TestStreamTurn:
    """End-to-end turns against a scripted runtime."""

    @pytest.mark.asyncio
    async def test_new_session_routed_by_console(self, store):
        runtime = ScriptedRuntime([
            message_created(),
            text_delta("There are "),
            text_delta("42 users."),
        ])
        orchestrator = AgentOrchestrator(runtime, store, timeout_seconds=5)

        events = await _collect(orchestrator, _request(
            "count users in mongo db X",
            consoles=[ConsoleData(id="c1", metadata={"type": "mongodb"})],
        ))

        assert _types(events) == [
            "step", "text", "text", "thread_info", "session", "done",
        ]
        assert runtime.runs[0]["descriptor"].kind == AgentKind.MONGO
        assert runtime.runs[0]["prompt"] == "User: count users in mongo db X"

        thread_info, session = events[3], events[4]
        ctx = store.get_thread_context(
            session.session_id, WORKSPACE_ID, USER_ID,
        )
        assert ctx.thread_id == thread_info.thread_id
        assert ctx.active_agent == "mongo"
        assert ctx.message_count == 2
        assert thread_info.message_count == 2
        assert ctx.recent_messages[1]["content"] == "There are 42 users."

    @pytest.mark.asyncio
    async def test_timeout_after_text(self, store, session_factory):
        runtime = ScriptedRuntime([
            text_delta("a"),
            text_delta("b"),
            Sleep(10),
            text_delta("never"),
        ])
        orchestrator = AgentOrchestrator(runtime, store, timeout_seconds=0.2)

        events = await _collect(orchestrator, _request())

        assert _types(events) == ["text", "text", "timeout", "done"]
        assert _session_count(session_factory) == 0

    @pytest.mark.asyncio
    async def test_stream_error_is_reported(self, store, session_factory):
        runtime = ScriptedRuntime(
            [text_delta("partial")], error=RuntimeError("model exploded"),
        )
        orchestrator = AgentOrchestrator(runtime, store, timeout_seconds=5)

        events = await _collect(orchestrator, _request())

        assert _types(events) == ["text", "error", "done"]
        assert events[1].message == "model exploded"
        assert _session_count(session_factory) == 0

    @pytest.mark.asyncio
    async def test_store_failure_before_run(self, store, monkeypatch):
        def broken(*args, **kwargs):
            raise RuntimeError("db down")

        monkeypatch.setattr(store, "get_thread_context", broken)
        runtime = ScriptedRuntime([text_delta("x")])
        orchestrator = AgentOrchestrator(runtime, store, timeout_seconds=5)

        events = await _collect(orchestrator, _request())

        assert _types(events) == ["error", "done"]
        assert runtime.runs == []

    @pytest.mark.asyncio
    async def test_save_failure_after_stream(
        self, store, session_factory, monkeypatch,
    ):
        def broken(record):
            raise PersistenceError("Failed to save chat turn")

        monkeypatch.setattr(store, "save_turn", broken)
        titles = RecordingTitleService()
        orchestrator = AgentOrchestrator(
            ScriptedRuntime([text_delta("The answer "), text_delta("is 7.")]),
            store,
            title_service=titles,
            timeout_seconds=5,
        )

        events = await _collect(orchestrator, _request())

        assert _types(events) == ["text", "text", "error", "done"]
        assert [e.content for e in events[:2]] == ["The answer ", "is 7."]
        assert events[2].message == "Failed to save chat turn"
        assert titles.calls == []
        assert _session_count(session_factory) == 0

    @pytest.mark.asyncio
    async def test_empty_producer(self, store, session_factory):
        orchestrator = AgentOrchestrator(
            ScriptedRuntime([]), store, timeout_seconds=5,
        )

        events = await _collect(orchestrator, _request())

        assert _types(events) == ["thread_info", "session", "done"]
        assert _messages(session_factory) == [("user", "hello", None)]

    @pytest.mark.asyncio
    async def test_final_output_used_without_deltas(
        self, store, session_factory,
    ):
        runtime = ScriptedRuntime([], final_output="Final answer")
        orchestrator = AgentOrchestrator(runtime, store, timeout_seconds=5)

        events = await _collect(orchestrator, _request())

        assert events[0] == TextEvent(content="Final answer")
        assert _messages(session_factory)[1][:2] == (
            "assistant", "Final answer",
        )

    @pytest.mark.asyncio
    async def test_final_output_ignored_after_deltas(
        self, store, session_factory,
    ):
        runtime = ScriptedRuntime([text_delta("streamed")], final_output="x")
        orchestrator = AgentOrchestrator(runtime, store, timeout_seconds=5)

        events = await _collect(orchestrator, _request())

        assert [e for e in events if e.type == "text"] == [
            TextEvent(content="streamed"),
        ]
        assert _messages(session_factory)[1][1] == "streamed"

    @pytest.mark.asyncio
    async def test_completion_failure_is_swallowed(self, store):
        runtime = ScriptedRuntime(
            [text_delta("ok")], completion_error=RuntimeError("late"),
        )
        orchestrator = AgentOrchestrator(runtime, store, timeout_seconds=5)

        events = await _collect(orchestrator, _request())

        assert _types(events) == ["text", "thread_info", "session", "done"]

    @pytest.mark.asyncio
    async def test_exactly_one_done(self, store):
        orchestrator = AgentOrchestrator(
            ScriptedRuntime([text_delta("x")]), store, timeout_seconds=5,
        )

        events = await _collect(orchestrator, _request())

        assert sum(isinstance(e, DoneEvent) for e in events) == 1
        assert isinstance(events[-1], DoneEvent)


class TestHandoffPersistence:
    """Hand-offs during a turn."""

    @pytest.mark.asyncio
    async def test_handoff_without_destination_text(
        self, store, session_factory,
    ):
        runtime = ScriptedRuntime([
            text_delta("Let me route this."),
            handoff_requested("transfer_to_mongodb"),
            handoff_occurred("MongoDB Assistant"),
            agent_updated("MongoDB Assistant"),
        ])
        orchestrator = AgentOrchestrator(runtime, store, timeout_seconds=5)

        events = await _collect(orchestrator, _request())

        assert runtime.runs[0]["descriptor"].kind == AgentKind.TRIAGE
        assert _types(events) == [
            "text", "agent_mode", "handoff", "thread_info", "session", "done",
        ]
        assert events[2].message == "Transferring to MongoDB Assistant"
        assert _messages(session_factory) == [("user", "hello", None)]
        ctx = store.get_thread_context(
            events[4].session_id, WORKSPACE_ID, USER_ID,
        )
        assert ctx.active_agent == "mongo"

    @pytest.mark.asyncio
    async def test_only_destination_text_is_persisted(
        self, store, session_factory,
    ):
        runtime = ScriptedRuntime([
            text_delta("routing"),
            handoff_requested("transfer_to_bigquery"),
            text_delta("suppressed"),
            handoff_occurred("BigQuery Assistant"),
            text_delta("Here is your SQL."),
        ])
        orchestrator = AgentOrchestrator(runtime, store, timeout_seconds=5)

        events = await _collect(orchestrator, _request())

        texts = [e.content for e in events if e.type == "text"]
        assert texts == ["routing", "Here is your SQL."]
        assert _messages(session_factory)[1][1] == "Here is your SQL."

    @pytest.mark.asyncio
    async def test_triage_is_never_pinned(self, store):
        orchestrator = AgentOrchestrator(
            ScriptedRuntime([text_delta("Which database?")]),
            store,
            timeout_seconds=5,
        )

        events = await _collect(orchestrator, _request())

        ctx = store.get_thread_context(
            events[-2].session_id, WORKSPACE_ID, USER_ID,
        )
        assert ctx.active_agent is None


class TestSessionContinuity:
    """Follow-up turns on a stored session."""

    @pytest.mark.asyncio
    async def test_pinned_agent_and_console_reused(
        self, store, add_connection,
    ):
        add_connection("bigquery")
        runtime = ScriptedRuntime([text_delta("done")])
        orchestrator = AgentOrchestrator(runtime, store, timeout_seconds=5)

        first = await _collect(orchestrator, _request(
            "first",
            consoles=[ConsoleData(id="c7", metadata={"type": "mongodb"})],
            console_id="c7",
        ))
        session_id = first[-2].session_id
        second = await _collect(orchestrator, _request(
            "second", session_id=session_id,
        ))

        descriptor = runtime.runs[1]["descriptor"]
        assert descriptor.kind == AgentKind.MONGO
        assert descriptor.preferred_console_id == "c7"
        assert second[-2].session_id == session_id
        assert second[-3].thread_id == first[-3].thread_id
        assert "Recent conversation:" in runtime.runs[1]["prompt"]

    @pytest.mark.asyncio
    async def test_unknown_session_starts_new_one(self, store):
        orchestrator = AgentOrchestrator(
            ScriptedRuntime([text_delta("hi")]), store, timeout_seconds=5,
        )

        events = await _collect(orchestrator, _request(
            session_id="does-not-exist",
        ))

        assert events[-2].session_id != "does-not-exist"

    @pytest.mark.asyncio
    async def test_title_dispatched_after_persist(self, store):
        titles = RecordingTitleService()
        orchestrator = AgentOrchestrator(
            ScriptedRuntime([text_delta("answer")]),
            store,
            title_service=titles,
            timeout_seconds=5,
        )

        events = await _collect(orchestrator, _request())

        session_id, messages = titles.calls[0]
        assert session_id == events[-2].session_id
        assert messages == [
            {"role": "user", "content": "hello"},
            {"role": "assistant", "content": "answer"},
        ]


class TestSideChannelDelivery:
    """Console events sent by tools during a run."""

    @pytest.mark.asyncio
    async def test_console_edit_delivered_once(self, store, session_factory):
        runtime = ScriptedRuntime([
            CallTool(
                "modify_console",
                '{"action": "replace", "content": "db.users.find()"}',
            ),
            text_delta("Updated your console."),
        ])
        orchestrator = AgentOrchestrator(runtime, store, timeout_seconds=5)

        events = await _collect(orchestrator, _request(console_id="c1"))

        assert _types(events) == [
            "step", "console_modification", "step", "text",
            "thread_info", "session", "done",
        ]
        assert events[1].console_id == "c1"

        tool_calls = json.loads(_messages(session_factory)[1][2])
        assert tool_calls[0]["name"] == "modify_console"
        assert tool_calls[0]["status"] == "completed"

    @pytest.mark.asyncio
    async def test_identical_edits_each_delivered(self, store):
        newline = '{"action": "append", "content": "\\n"}'
        runtime = ScriptedRuntime([
            CallTool("modify_console", newline),
            CallTool("modify_console", newline),
            text_delta("Added two blank lines."),
        ])
        orchestrator = AgentOrchestrator(runtime, store, timeout_seconds=5)

        events = await _collect(orchestrator, _request(console_id="c1"))

        assert _types(events) == [
            "step", "console_modification", "step",
            "step", "console_modification", "step",
            "text", "thread_info", "session", "done",
        ]
        assert events[1] == events[4]
        assert events[4].modification == {"action": "append", "content": "\n"}


class TestEventChannel:
    """Tests for EventChannel."""

    @pytest.mark.asyncio
    async def test_emit_after_close_is_dropped(self):
        channel = EventChannel()
        channel.emit(TextEvent(content="a"))
        channel.close()
        channel.close()

        assert channel.emit(TextEvent(content="b")) is False
        assert channel.get_nowait() == TextEvent(content="a")
        assert isinstance(channel.get_nowait(), DoneEvent)
        assert channel.get_nowait() is None
