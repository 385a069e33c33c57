"""
Agent descriptor registry.

Maps an ``AgentKind`` to its display name, instructions,
tools and hand-offs, and builds a fresh, immutable
``AgentDescriptor`` for every turn.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple, Union

from dbchat.config import settings
from dbchat.schemas import ConsoleData
from dbchat.services.agents import bigquery, mongo, triage
from dbchat.services.agents.tools import (
    SendEvent,
    ToolSpec,
    create_console_tools,
    create_workspace_tools,
    dedupe_tools,
)

logger = logging.getLogger(__name__)


class AgentKind(str, Enum):
    """Closed set of agent kinds."""

    TRIAGE = "triage"
    MONGO = "mongo"
    BIGQUERY = "bigquery"


@dataclass(frozen=True)
class HandoffSpec:
    """A tool that transfers the conversation to another agent."""

    tool_name: str
    description: str
    target_kind: AgentKind


@dataclass(frozen=True)
class AgentDescriptor:
    """
    Immutable, per-turn description of a runnable agent.

    Attributes:
        kind (AgentKind): Agent kind.
        name (str): Display name.
        instructions (str): System prompt.
        tools (tuple[ToolSpec]): Ordered capabilities.
        handoffs (tuple[HandoffSpec]): Reachable agents.
        workspace_id (str): Bound workspace.
        consoles (tuple[ConsoleData]): Attached consoles.
        preferred_console_id (str | None): Default console.
        send_event (callable | None): UI event sink.
        model (str): Chat model name.
    """

    kind: AgentKind
    name: str
    instructions: str
    tools: Tuple[ToolSpec, ...]
    handoffs: Tuple[HandoffSpec, ...]
    workspace_id: str
    consoles: Tuple[ConsoleData, ...] = ()
    preferred_console_id: Optional[str] = None
    send_event: Optional[SendEvent] = field(default=None, compare=False)
    model: str = ""

    def tool(self, name: str) -> Optional[ToolSpec]:
        """Return the tool called *name*, if this agent has it."""
        for spec in self.tools:
            if spec.name == name:
                return spec
        return None

    def handoff(self, tool_name: str) -> Optional[HandoffSpec]:
        """Return the hand-off bound to *tool_name*, if any."""
        for spec in self.handoffs:
            if spec.tool_name == tool_name:
                return spec
        return None


@dataclass(frozen=True)
class AgentRegistration:
    """Static registration data of one agent kind."""

    kind: AgentKind
    name: str
    instructions: str
    handoff_tool_name: Optional[str] = None
    handoff_description: str = ""
    handoff_targets: Tuple[AgentKind, ...] = ()


_REGISTRATIONS: Dict[AgentKind, AgentRegistration] = {
    AgentKind.TRIAGE: AgentRegistration(
        kind=AgentKind.TRIAGE,
        name="Triage Assistant",
        instructions=triage.PROMPT,
        handoff_targets=(AgentKind.MONGO, AgentKind.BIGQUERY),
    ),
    AgentKind.MONGO: AgentRegistration(
        kind=AgentKind.MONGO,
        name="MongoDB Assistant",
        instructions=mongo.PROMPT,
        handoff_tool_name="transfer_to_mongodb",
        handoff_description=(
            "Transfer the conversation to the MongoDB Assistant "
            "for MongoDB collections and queries."
        ),
        handoff_targets=(AgentKind.BIGQUERY,),
    ),
    AgentKind.BIGQUERY: AgentRegistration(
        kind=AgentKind.BIGQUERY,
        name="BigQuery Assistant",
        instructions=bigquery.PROMPT,
        handoff_tool_name="transfer_to_bigquery",
        handoff_description=(
            "Transfer the conversation to the BigQuery Assistant "
            "for BigQuery datasets and SQL."
        ),
        handoff_targets=(AgentKind.MONGO,),
    ),
}

_DATABASE_TYPE_KINDS = {
    "mongodb": AgentKind.MONGO,
    "mongo": AgentKind.MONGO,
    "bigquery": AgentKind.BIGQUERY,
    "bq": AgentKind.BIGQUERY,
}


def list_agent_registrations() -> List[AgentRegistration]:
    """Return every registration in kind order."""
    return list(_REGISTRATIONS.values())


def get_agent_display_name(kind: Union[AgentKind, str]) -> str:
    """
    Return the display name of *kind*.

    Unknown values are returned unchanged.
    """
    resolved = resolve_agent_kind(kind)
    if resolved is None:
        return str(kind)
    return _REGISTRATIONS[resolved].name


def kind_for_database_type(db_type: Optional[str]) -> Optional[AgentKind]:
    """
    Map a database type to its specialist kind.

    Parameters:
        db_type (str | None): e.g. ``"mongodb"``, ``"BQ"``.

    Returns:
        AgentKind | None: ``None`` for unknown types.
    """
    if not db_type or not isinstance(db_type, str):
        return None
    return _DATABASE_TYPE_KINDS.get(db_type.strip().lower())


def resolve_agent_kind(value) -> Optional[AgentKind]:
    """
    Resolve a kind from a kind value, display name or
    hand-off tool name.

    Parameters:
        value: ``AgentKind``, ``"mongo"``,
            ``"MongoDB Assistant"``, ``"transfer_to_bigquery"``...

    Returns:
        AgentKind | None: ``None`` when nothing matches.
    """
    if isinstance(value, AgentKind):
        return value
    if not isinstance(value, str):
        return None
    needle = value.strip().lower()
    if not needle:
        return None
    for registration in _REGISTRATIONS.values():
        if needle in (
            registration.kind.value,
            registration.name.lower(),
            (registration.handoff_tool_name or "").lower(),
        ):
            return registration.kind
    return kind_for_database_type(needle)


# ----- building --------------------------------------------------------


def _handoff_specs(registration: AgentRegistration) -> Tuple[HandoffSpec, ...]:
    specs = []
    for target in registration.handoff_targets:
        target_reg = _REGISTRATIONS[target]
        specs.append(HandoffSpec(
            tool_name=target_reg.handoff_tool_name,
            description=target_reg.handoff_description,
            target_kind=target,
        ))
    return tuple(specs)


def _build_tools(
    kind: AgentKind,
    workspace_id: str,
    console_tools: List[ToolSpec],
) -> List[ToolSpec]:
    workspace_tools = create_workspace_tools(workspace_id)
    if kind == AgentKind.MONGO:
        return dedupe_tools(
            workspace_tools
            + mongo.create_mongo_tools(workspace_id)
            + console_tools
        )
    if kind == AgentKind.BIGQUERY:
        return dedupe_tools(
            workspace_tools
            + bigquery.create_bigquery_tools(workspace_id)
            + console_tools
        )
    # Triage picks from the union of the specialists' pools.
    pool = (
        _build_tools(AgentKind.MONGO, workspace_id, console_tools)
        + _build_tools(AgentKind.BIGQUERY, workspace_id, console_tools)
    )
    return triage.select_discovery_tools(pool)


def build_agent(
    kind: Union[AgentKind, str],
    workspace_id: str,
    consoles: Optional[List[ConsoleData]] = None,
    preferred_console_id: Optional[str] = None,
    send_event: Optional[SendEvent] = None,
    model: Optional[str] = None,
) -> AgentDescriptor:
    """
    Build a fresh descriptor for *kind*.

    Parameters:
        kind (AgentKind | str): Agent kind.
        workspace_id (str): Workspace the agent serves.
        consoles (list[ConsoleData], optional): Attached
            consoles.
        preferred_console_id (str, optional): Default console
            for console tools.
        send_event (callable, optional): Event sink for UI
            side effects.
        model (str, optional): Overrides ``openai_model``.

    Returns:
        AgentDescriptor: Immutable descriptor.

    Raises:
        ValueError: If *kind* is unknown.
    """
    resolved = resolve_agent_kind(kind)
    if resolved is None:
        raise ValueError(f"Unknown agent kind: {kind!r}")
    registration = _REGISTRATIONS[resolved]

    console_list = list(consoles or [])
    console_tools = create_console_tools(
        console_list, preferred_console_id, send_event,
    )
    tools = _build_tools(resolved, workspace_id, console_tools)

    logger.debug(
        "[registry] built %s with tools %s",
        resolved.value,
        [t.name for t in tools],
    )
    return AgentDescriptor(
        kind=resolved,
        name=registration.name,
        instructions=registration.instructions,
        tools=tuple(tools),
        handoffs=_handoff_specs(registration),
        workspace_id=workspace_id,
        consoles=tuple(console_list),
        preferred_console_id=preferred_console_id,
        send_event=send_event,
        model=model or settings.openai_model,
    )


def build_handoff_target(
    descriptor: AgentDescriptor,
    target: Union[AgentKind, str],
) -> AgentDescriptor:
    """Build the agent a hand-off leads to, with the same bindings."""
    return build_agent(
        target,
        workspace_id=descriptor.workspace_id,
        consoles=list(descriptor.consoles),
        preferred_console_id=descriptor.preferred_console_id,
        send_event=descriptor.send_event,
        model=descriptor.model,
    )

