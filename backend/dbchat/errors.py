"""
Exception hierarchy for the chat backend.

Request validation failures are reported through FastAPI's
``HTTPException``; everything raised below the HTTP layer
derives from ``DbChatError``.
"""

from typing import Any, Dict, Optional


class DbChatError(Exception):
    """Base exception for all chat backend errors."""

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.context = context or {}


class RuntimeStreamError(DbChatError):
    """Raised when the agent runtime fails while streaming events."""

    def __init__(
        self,
        message: str,
        agent_kind: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, context)
        self.agent_kind = agent_kind


class MaxTurnsExceededError(RuntimeStreamError):
    """Raised when a run needs more model turns than allowed."""

    def __init__(
        self,
        max_turns: int,
        agent_kind: Optional[str] = None,
    ):
        super().__init__(
            f"Max turns ({max_turns}) exceeded",
            agent_kind=agent_kind,
        )
        self.max_turns = max_turns


class RuntimeCompletionError(DbChatError):
    """Raised when awaiting a run's completion signal fails."""

    pass


class ToolOutputParseError(DbChatError):
    """Raised when a tool result cannot be decoded as JSON."""

    def __init__(
        self,
        message: str,
        tool_name: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, context)
        self.tool_name = tool_name


class PersistenceError(DbChatError):
    """Raised when a finished turn cannot be written."""

    def __init__(
        self,
        message: str,
        session_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, context)
        self.session_id = session_id


class TitleGenerationError(DbChatError):
    """Raised when the title model call fails."""

    pass


class ConnectorError(DbChatError):
    """Raised when a workspace database cannot be reached or used."""

    def __init__(
        self,
        message: str,
        database_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, context)
        self.database_id = database_id
