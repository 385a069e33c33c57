"""
Runtime event translation and tool-call correlation.

The agent runtime emits loosely structured events: objects
or dicts, with field names that differ between versions.
``EventTranslator`` classifies each one by its tag, reads
fields through ordered probe paths (first non-empty match
wins, attribute and key access both tried) and produces
canonical ``ClientEvent`` objects.

The runtime gives no reliable call id, so tool results are
paired with their calls by name: each completion closes the
most recent still-open call of the same tool.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from dbchat.errors import ToolOutputParseError
from dbchat.models import utcnow
from dbchat.services.agents.events import (
    ClientEvent,
    ConsoleCreationEvent,
    ConsoleModificationEvent,
    StepEvent,
    TextEvent,
)
from dbchat.services.agents.handoff import HandoffStateMachine
from dbchat.services.agents.registry import AgentKind
from dbchat.services.agents.tools import (
    CONSOLE_CREATION,
    CONSOLE_MODIFICATION,
)

logger = logging.getLogger(__name__)

UNKNOWN_TOOL = "unknown_tool"
MESSAGE_GENERATION_STEP = "message_generation"

# ----- classification --------------------------------------------------

TEXT_DELTA = "text_delta"
TOOL_STARTED = "tool_started"
TOOL_OUTPUT = "tool_output"
HANDOFF_STARTED = "handoff_started"
HANDOFF_COMPLETED = "handoff_completed"
MESSAGE_STARTED = "message_started"
IGNORED = "ignored"

RAW_EVENT_TAGS = {"raw_model_stream_event", "raw_response_event"}
TEXT_DELTA_TYPES = {
    "output_text_delta",
    "response.output_text.delta",
    "text_delta",
    "content.delta",
}
RUN_ITEM_KINDS = {
    "tool_called": TOOL_STARTED,
    "tool_output": TOOL_OUTPUT,
    "output_added": TOOL_OUTPUT,
    "handoff_requested": HANDOFF_STARTED,
    "handoff_occured": HANDOFF_COMPLETED,
    "handoff_occurred": HANDOFF_COMPLETED,
    "message_output_created": MESSAGE_STARTED,
}

# ----- probe paths -----------------------------------------------------

TEXT_PROBES = ("data.delta", "data.text", "delta", "text")

TOOL_NAME_PROBES = (
    "item.raw_item.function.name",
    "item.raw_item.name",
    "item.rawItem.function.name",
    "item.rawItem.name",
    "item.tool_call_name",
    "item.name",
    "tool_name",
)

TOOL_OUTPUT_PROBES = ("item.output", "item.raw_item.output", "output")

HANDOFF_DESTINATION_PROBES = (
    "new_agent.name",
    "new_agent",
    "item.target_agent.name",
    "item.target_agent",
    "item.targetAgent.name",
    "item.raw_item.name",
)


def _dig(obj: Any, path: str) -> Any:
    """Follow a dotted *path* through attributes or mapping keys."""
    current = obj
    for part in path.split("."):
        if current is None:
            return None
        if isinstance(current, dict):
            current = current.get(part)
        else:
            current = getattr(current, part, None)
    return current


def _first_string(obj: Any, probes) -> Optional[str]:
    for path in probes:
        value = _dig(obj, path)
        if isinstance(value, str) and value:
            return value
    return None


def _first_present(obj: Any, probes) -> Any:
    for path in probes:
        value = _dig(obj, path)
        if value is not None:
            return value
    return None


def classify(event: Any) -> str:
    """Return the kind of a raw runtime event."""
    tag = _dig(event, "type")
    if tag in RAW_EVENT_TAGS:
        if _dig(event, "data.type") in TEXT_DELTA_TYPES:
            return TEXT_DELTA
        return IGNORED
    if tag == "run_item_stream_event":
        return RUN_ITEM_KINDS.get(_dig(event, "name"), IGNORED)
    if tag == "agent_updated_stream_event":
        return HANDOFF_COMPLETED
    return IGNORED


def resolve_tool_name(event: Any) -> str:
    """Name of the tool an event refers to, or ``unknown_tool``."""
    return _first_string(event, TOOL_NAME_PROBES) or UNKNOWN_TOOL


def parse_tool_output(raw: Any, tool_name: str) -> Any:
    """
    Decode a tool output payload.

    Dicts are returned as-is; strings that look like a JSON
    object are decoded; anything else is returned unchanged.

    Raises:
        ToolOutputParseError: If a JSON-looking string does
            not decode to an object.
    """
    if not isinstance(raw, str):
        return raw
    text = raw.strip()
    if not text.startswith("{"):
        return raw
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ToolOutputParseError(
            f"Could not decode output of {tool_name}: {exc}",
            tool_name=tool_name,
        ) from exc
    if not isinstance(parsed, dict):
        raise ToolOutputParseError(
            f"Output of {tool_name} is not a JSON object",
            tool_name=tool_name,
        )
    return parsed


# ----- tool-call correlation -------------------------------------------


@dataclass
class ToolCallRecord:
    """One tool invocation observed during a turn."""

    name: str
    status: str = "started"
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    result: Any = None

    def to_dict(self, max_chars: Optional[int] = None) -> Dict[str, Any]:
        """Serialize for storage, truncating a long result."""
        result = self.result
        if result is not None and not isinstance(result, str):
            result = json.dumps(result, default=str)
        if result is not None and max_chars and len(result) > max_chars:
            result = result[:max_chars] + "..."
        return {
            "name": self.name,
            "status": self.status,
            "startedAt": (
                self.started_at.isoformat() if self.started_at else None
            ),
            "completedAt": (
                self.completed_at.isoformat() if self.completed_at else None
            ),
            "result": result,
        }


class ToolCallCorrelator:
    """
    Pair tool completions with their starts by tool name.

    Open calls are kept on one stack per name; a completion
    closes the newest open call with the same name.  With
    concurrent calls of the same tool the pairing is best
    effort.
    """

    def __init__(self):
        self.records: List[ToolCallRecord] = []
        self._open: Dict[str, List[ToolCallRecord]] = {}

    def start(self, name: str) -> ToolCallRecord:
        record = ToolCallRecord(name=name, started_at=utcnow())
        self.records.append(record)
        self._open.setdefault(name, []).append(record)
        return record

    def complete(self, name: str, result: Any = None) -> ToolCallRecord:
        """
        Close the most recent open call of *name*.

        A completion without a matching start is recorded as
        an already-completed call.
        """
        now = utcnow()
        stack = self._open.get(name)
        if stack:
            record = stack.pop()
        else:
            record = ToolCallRecord(name=name, started_at=now)
            self.records.append(record)
        record.status = "completed"
        record.completed_at = now
        record.result = result
        return record

    def pending(self) -> List[ToolCallRecord]:
        return [r for r in self.records if r.status != "completed"]

    def to_payload(
        self,
        max_chars: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        return [r.to_dict(max_chars) for r in self.records]


# ----- turn state ------------------------------------------------------


@dataclass
class TurnState:
    """
    Mutable state of one streamed turn.

    Attributes:
        active_kind (AgentKind): Agent currently answering.
        assistant_reply (str): Text accumulated for the
            active agent.
        correlator (ToolCallCorrelator): Tool calls so far.
        handoff_in_progress (bool): Text is suppressed while
            True.
        handoff_count (int): Completed transitions.
        text_delta_count (int): Text events emitted.
        delivered_echoes (dict[str, int]): Fingerprints of
            side-channel events sent through the tool sink whose
            copy in the tool output has not been seen yet.
    """

    active_kind: AgentKind
    assistant_reply: str = ""
    correlator: ToolCallCorrelator = field(
        default_factory=ToolCallCorrelator
    )
    handoff_in_progress: bool = False
    handoff_count: int = 0
    text_delta_count: int = 0
    delivered_echoes: Dict[str, int] = field(default_factory=dict)

    def record_sink_delivery(self, event: ClientEvent) -> None:
        """Note that *event* reached the client through the tool sink."""
        fingerprint = event.fingerprint()
        self.delivered_echoes[fingerprint] = (
            self.delivered_echoes.get(fingerprint, 0) + 1
        )

    def consume_echo(self, event: ClientEvent) -> bool:
        """Consume one pending sink copy of *event*; False if none."""
        fingerprint = event.fingerprint()
        pending = self.delivered_echoes.get(fingerprint, 0)
        if not pending:
            return False
        if pending == 1:
            del self.delivered_echoes[fingerprint]
        else:
            self.delivered_echoes[fingerprint] = pending - 1
        return True


# ----- translator ------------------------------------------------------


class EventTranslator:
    """Turn raw runtime events into canonical client events."""

    def __init__(self, handoffs: Optional[HandoffStateMachine] = None):
        self.handoffs = handoffs or HandoffStateMachine()

    def translate(self, event: Any, state: TurnState) -> List[ClientEvent]:
        """
        Translate one raw event, updating *state*.

        Parameters:
            event: Raw runtime event (object or dict).
            state (TurnState): Current turn state.

        Returns:
            list[ClientEvent]: Zero or more events to forward.
        """
        kind = classify(event)

        if kind == TEXT_DELTA:
            return self._text_delta(event, state)
        if kind == MESSAGE_STARTED:
            return [StepEvent(name=MESSAGE_GENERATION_STEP, status="started")]
        if kind == TOOL_STARTED:
            name = resolve_tool_name(event)
            state.correlator.start(name)
            return [StepEvent(name=name, status="started")]
        if kind == TOOL_OUTPUT:
            return self._tool_output(event, state)
        if kind == HANDOFF_STARTED:
            return self.handoffs.request(state)
        if kind == HANDOFF_COMPLETED:
            destination = _first_string(event, HANDOFF_DESTINATION_PROBES)
            return self.handoffs.complete(destination, state)
        return []

    def _text_delta(self, event: Any, state: TurnState) -> List[ClientEvent]:
        if state.handoff_in_progress:
            return []
        delta = _first_string(event, TEXT_PROBES)
        if not delta:
            return []
        state.assistant_reply += delta
        state.text_delta_count += 1
        return [TextEvent(content=delta)]

    def _tool_output(self, event: Any, state: TurnState) -> List[ClientEvent]:
        name = resolve_tool_name(event)
        raw_output = _first_present(event, TOOL_OUTPUT_PROBES)
        try:
            output = parse_tool_output(raw_output, name)
        except ToolOutputParseError as exc:
            logger.warning("[translator] %s", exc)
            output = raw_output

        state.correlator.complete(name, output)
        events: List[ClientEvent] = [StepEvent(name=name, status="completed")]

        side_event = _side_channel_event(output)
        if side_event is not None and not state.consume_echo(side_event):
            events.append(side_event)
        return events


def _side_channel_event(output: Any) -> Optional[ClientEvent]:
    """Build the UI event a tool result asks for, if any."""
    if not isinstance(output, dict):
        return None
    event_type = output.get("_eventType")
    if event_type == CONSOLE_MODIFICATION and isinstance(
        output.get("modification"), dict
    ):
        return ConsoleModificationEvent(
            modification=output["modification"],
            console_id=output.get("consoleId"),
        )
    if event_type == CONSOLE_CREATION and output.get("consoleId"):
        return ConsoleCreationEvent(
            console_id=output["consoleId"],
            title=output.get("title") or "",
            content=output.get("content") or "",
        )
    return None
