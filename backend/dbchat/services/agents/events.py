"""
Canonical client events.

These models are the only event vocabulary the client sees.
Raw runtime events are translated into them by
``translator.EventTranslator``; each is sent as one
Server-Sent Event frame whose JSON payload is
``{"type": ..., <camelCase fields>}``.
"""

import json
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class ClientEvent(BaseModel):
    """Base class for every event streamed to the client."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )

    type: str

    def to_payload(self) -> Dict[str, Any]:
        """Return the JSON-ready wire payload."""
        return self.model_dump(by_alias=True, exclude_none=True)

    def fingerprint(self) -> str:
        """Stable identity used to drop duplicate side-channel events."""
        return json.dumps(self.to_payload(), sort_keys=True, default=str)


class TextEvent(ClientEvent):
    type: Literal["text"] = "text"
    content: str


class StepEvent(ClientEvent):
    type: Literal["step"] = "step"
    name: str
    status: Literal["started", "completed"]


class ConsoleModificationEvent(ClientEvent):
    type: Literal["console_modification"] = "console_modification"
    modification: Dict[str, Any]
    console_id: Optional[str] = None


class ConsoleCreationEvent(ClientEvent):
    type: Literal["console_creation"] = "console_creation"
    console_id: str
    title: str
    content: str = ""


class AgentModeEvent(ClientEvent):
    type: Literal["agent_mode"] = "agent_mode"
    mode: str


class HandoffEvent(ClientEvent):
    type: Literal["handoff"] = "handoff"
    agent: str
    message: str


class ThreadInfoEvent(ClientEvent):
    type: Literal["thread_info"] = "thread_info"
    thread_id: str
    message_count: int


class SessionEvent(ClientEvent):
    type: Literal["session"] = "session"
    session_id: str


class TimeoutEvent(ClientEvent):
    type: Literal["timeout"] = "timeout"
    message: str = "The agent took too long to respond."


class ErrorEvent(ClientEvent):
    type: Literal["error"] = "error"
    message: str


class DoneEvent(ClientEvent):
    type: Literal["done"] = "done"


def sse_event(event: ClientEvent) -> str:
    """
    Format a canonical event as a Server-Sent Event string.

    Parameters:
        event (ClientEvent): Event to send.

    Returns:
        str: SSE-formatted string.
    """
    payload = json.dumps(
        event.to_payload(), ensure_ascii=False, default=str,
    )
    return f"event: {event.type}\ndata: {payload}\n\n"
