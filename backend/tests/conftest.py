"""
Shared fixtures for the backend tests.

Provides an in-memory SQLite database patched into every
module that opens sessions, and scripted agent runtimes
that replay raw events without calling a model.
"""

import asyncio
import os

os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from dbchat import database, models
from dbchat.services import session_store
from dbchat.services.session_store import ChatSessionStore

WORKSPACE_ID = "3f1c2a9e-5b7d-4c1e-9a2f-0d6b8e4c7a11"
USER_ID = "user-1"


# ----- database --------------------------------------------------------


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    database.Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine, monkeypatch):
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    monkeypatch.setattr(database, "SessionLocal", factory)
    monkeypatch.setattr(session_store, "SessionLocal", factory)
    return factory


@pytest.fixture
def store(session_factory):
    return ChatSessionStore(session_factory)


@pytest.fixture
def add_connection(session_factory):
    """Register a database connection row and return its id."""

    def _add(db_type, name="main", workspace_id=WORKSPACE_ID):
        db = session_factory()
        try:
            conn = models.DatabaseConnection(
                workspace_id=workspace_id,
                name=name,
                type=db_type,
                connection_string="mongodb://localhost:27017",
                database_name=name,
                project_id="demo-project",
            )
            db.add(conn)
            db.commit()
            return conn.id
        finally:
            db.close()

    return _add


# ----- raw runtime events ----------------------------------------------


def text_delta(delta):
    return {
        "type": "raw_model_stream_event",
        "data": {"type": "output_text_delta", "delta": delta},
    }


def message_created():
    return {"type": "run_item_stream_event", "name": "message_output_created"}


def tool_called(name):
    return {
        "type": "run_item_stream_event",
        "name": "tool_called",
        "item": {"raw_item": {"name": name}},
    }


def tool_output(name, output):
    return {
        "type": "run_item_stream_event",
        "name": "tool_output",
        "item": {"raw_item": {"name": name}, "output": output},
    }


def handoff_requested(tool_name):
    return {
        "type": "run_item_stream_event",
        "name": "handoff_requested",
        "item": {"raw_item": {"name": tool_name}},
    }


def handoff_occurred(target_name):
    return {
        "type": "run_item_stream_event",
        "name": "handoff_occured",
        "item": {"target_agent": {"name": target_name}},
    }


def agent_updated(name):
    return {"type": "agent_updated_stream_event", "new_agent": {"name": name}}


# ----- scripted runtime ------------------------------------------------


class Sleep:
    """Script step: pause the producer."""

    def __init__(self, seconds):
        self.seconds = seconds


class CallTool:
    """Script step: call a tool of the running agent and report it."""

    def __init__(self, name, arguments="{}"):
        self.name = name
        self.arguments = arguments


class ScriptedStream:
    def __init__(
        self,
        descriptor,
        script,
        final_output=None,
        error=None,
        completion_error=None,
    ):
        self.descriptor = descriptor
        self.script = list(script)
        self.final_output = final_output
        self.error = error
        self.completion_error = completion_error
        self.tool_results = []

    def __aiter__(self):
        return self._run()

    async def _run(self):
        for step in self.script:
            if isinstance(step, Sleep):
                await asyncio.sleep(step.seconds)
                continue
            if isinstance(step, CallTool):
                yield tool_called(step.name)
                tool = self.descriptor.tool(step.name)
                result = await tool.invoke(step.arguments)
                self.tool_results.append(result)
                yield tool_output(step.name, result)
                continue
            yield step
        if self.error is not None:
            raise self.error

    async def wait_completed(self):
        if self.completion_error is not None:
            raise self.completion_error


class ScriptedRuntime:
    """``AgentRuntime`` replaying a fixed script for every run."""

    def __init__(self, script=(), **stream_kwargs):
        self.script = script
        self.stream_kwargs = stream_kwargs
        self.runs = []

    def run_streamed(self, descriptor, prompt, max_turns):
        stream = ScriptedStream(descriptor, self.script, **self.stream_kwargs)
        self.runs.append({
            "descriptor": descriptor,
            "prompt": prompt,
            "max_turns": max_turns,
            "stream": stream,
        })
        return stream
