"""
Initial agent selection.

Decides which agent answers the first message of a turn.
The decision is deterministic and depends only on its
inputs; ``get_selection_confidence`` adds a diagnostic
opinion from keywords in the message but never changes the
decision.
"""

from typing import Any, Dict, List, Optional, Tuple

from dbchat.schemas import ConsoleData
from dbchat.services.agents.registry import (
    AgentKind,
    kind_for_database_type,
    resolve_agent_kind,
)

MONGO_KEYWORDS = (
    "mongo", "mongodb", "collection", "document", "aggregate",
    "pipeline", "$lookup", "$unwind", "$match", "$group",
    "bson", "objectid", "_id",
)

BIGQUERY_KEYWORDS = (
    "bigquery", "bq", "dataset", "struct", "partition",
    "cluster", "gcp", "lookml",
)


def _console_kind(console: ConsoleData) -> Optional[AgentKind]:
    metadata: Dict[str, Any] = console.metadata or {}
    for key in ("type", "databaseType"):
        kind = kind_for_database_type(metadata.get(key))
        if kind is not None:
            return kind
    return None


def select_initial_agent(
    session_active_agent: Optional[str],
    user_message: str,
    consoles: Optional[List[ConsoleData]] = None,
    workspace_has_mongodb: bool = False,
    workspace_has_bigquery: bool = False,
) -> AgentKind:
    """
    Choose the agent kind for a turn.

    First match wins:

    1. the session's pinned kind;
    2. the database type of the single attached console;
    3. the only backend type the workspace has;
    4. triage.

    Parameters:
        session_active_agent (str | None): Pinned kind.
        user_message (str): The new user message (unused by
            the decision, kept for symmetry with
            ``get_selection_confidence``).
        consoles (list[ConsoleData], optional): Attached
            consoles.
        workspace_has_mongodb (bool): Workspace has MongoDB.
        workspace_has_bigquery (bool): Workspace has BigQuery.

    Returns:
        AgentKind: The selected kind.
    """
    pinned = resolve_agent_kind(session_active_agent)
    if pinned is not None:
        return pinned

    consoles = consoles or []
    if len(consoles) == 1:
        kind = _console_kind(consoles[0])
        if kind is not None:
            return kind

    if workspace_has_mongodb and not workspace_has_bigquery:
        return AgentKind.MONGO
    if workspace_has_bigquery and not workspace_has_mongodb:
        return AgentKind.BIGQUERY

    return AgentKind.TRIAGE


def _keyword_hits(message: str, keywords) -> int:
    words = set(
        message.replace(",", " ").replace(".", " ").split()
    )
    return sum(
        1 for keyword in keywords
        if keyword in words or (len(keyword) > 3 and keyword in message)
    )


def get_selection_confidence(
    session_active_agent: Optional[str],
    user_message: str,
    consoles: Optional[List[ConsoleData]] = None,
    workspace_has_mongodb: bool = False,
    workspace_has_bigquery: bool = False,
) -> Tuple[AgentKind, str, str]:
    """
    Explain the selection for logging.

    Returns:
        tuple: ``(kind, confidence, reason)`` where
            confidence is ``high``, ``medium`` or ``low``.
    """
    kind = select_initial_agent(
        session_active_agent,
        user_message,
        consoles,
        workspace_has_mongodb,
        workspace_has_bigquery,
    )
    if resolve_agent_kind(session_active_agent) is not None:
        return kind, "high", "session already pinned to this agent"
    if kind != AgentKind.TRIAGE:
        if consoles and len(consoles) == 1 and _console_kind(consoles[0]):
            return kind, "high", "attached console targets this backend"
        return kind, "medium", "workspace has a single backend type"

    message = (user_message or "").lower()
    mongo_hits = _keyword_hits(message, MONGO_KEYWORDS)
    bigquery_hits = _keyword_hits(message, BIGQUERY_KEYWORDS)
    if mongo_hits and not bigquery_hits:
        return kind, "medium", "message mentions MongoDB terms"
    if bigquery_hits and not mongo_hits:
        return kind, "medium", "message mentions BigQuery terms"
    return kind, "low", "ambiguous request, routing through triage"
