"""
Chat session store.

Reads the per-turn ``ThreadContext`` at the start of a turn
and writes the finished turn back exactly once.  Every call
opens its own SQLAlchemy session so the methods can run in a
worker thread (``asyncio.to_thread``) from the streaming
orchestrator.
"""

import json
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Set

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from dbchat.config import settings
from dbchat.database import SessionLocal
from dbchat.errors import PersistenceError
from dbchat.models import (
    ChatMessage,
    ChatSession,
    DatabaseConnection,
    utcnow,
)
from dbchat.services.thread_context import ThreadContext

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "New Chat"


@dataclass
class TurnRecord:
    """Everything needed to persist one completed turn."""

    thread_context: ThreadContext
    workspace_id: str
    user_id: str
    user_message: str
    assistant_message: Optional[str] = None
    tool_calls: List[Dict[str, Any]] = field(default_factory=list)
    active_agent: Optional[str] = None
    pinned_console_id: Optional[str] = None


@dataclass
class SavedTurn:
    """Result of ``ChatSessionStore.save_turn``."""

    session_id: str
    thread_id: str
    message_count: int
    messages: List[Dict[str, str]]
    title_generated: bool


class ChatSessionStore:
    """
    SQLAlchemy-backed access to chat sessions.

    Parameters:
        session_factory (callable, optional): Returns a new
            SQLAlchemy ``Session``.  Defaults to ``SessionLocal``.
    """

    def __init__(
        self,
        session_factory: Optional[Callable[[], Session]] = None,
    ):
        self._session_factory = session_factory or SessionLocal

    # ----- reads -------------------------------------------------------

    def get_thread_context(
        self,
        session_id: Optional[str],
        workspace_id: str,
        user_id: Optional[str] = None,
        window_size: Optional[int] = None,
    ) -> ThreadContext:
        """
        Load the thread context for *session_id*.

        A missing id, or one that does not belong to the given
        workspace and user, yields a fresh context with a new
        thread id.  A stored session without a thread id gets
        a new one here; it is written with the next turn.

        Parameters:
            session_id (str | None): Stored session id.
            workspace_id (str): Owning workspace.
            user_id (str, optional): Owning user.
            window_size (int, optional): Recent messages kept.

        Returns:
            ThreadContext: The per-turn view.
        """
        if window_size is None:
            window_size = settings.context_window_size

        if not session_id:
            return ThreadContext(thread_id=str(uuid.uuid4()))

        db = self._session_factory()
        try:
            chat = _find_session(db, session_id, workspace_id, user_id)
            if chat is None:
                logger.info(
                    "[session_store] session %s not found for "
                    "workspace %s, starting a new one",
                    session_id,
                    workspace_id,
                )
                return ThreadContext(thread_id=str(uuid.uuid4()))

            message_count = (
                db.query(func.count(ChatMessage.id))
                .filter(ChatMessage.session_id == chat.id)
                .scalar()
            ) or 0
            recent: List[ChatMessage] = []
            if window_size > 0:
                recent = (
                    db.query(ChatMessage)
                    .filter(ChatMessage.session_id == chat.id)
                    .order_by(ChatMessage.position.desc())
                    .limit(window_size)
                    .all()
                )
                recent.reverse()

            return ThreadContext(
                thread_id=chat.thread_id or str(uuid.uuid4()),
                recent_messages=[
                    {"role": m.role, "content": m.content}
                    for m in recent
                ],
                message_count=message_count,
                last_activity_at=chat.updated_at,
                session_id=chat.id,
                active_agent=chat.active_agent,
                pinned_console_id=chat.pinned_console_id,
                title_generated=bool(chat.title_generated),
            )
        finally:
            db.close()

    def workspace_database_types(self, workspace_id: str) -> Set[str]:
        """
        Return the database types registered in a workspace.

        Parameters:
            workspace_id (str): Workspace id.

        Returns:
            set[str]: e.g. ``{"mongodb", "bigquery"}``.
        """
        db = self._session_factory()
        try:
            rows = (
                db.query(DatabaseConnection.type)
                .filter(DatabaseConnection.workspace_id == workspace_id)
                .distinct()
                .all()
            )
            return {row[0].lower() for row in rows if row[0]}
        finally:
            db.close()

    # ----- writes ------------------------------------------------------

    def save_turn(self, record: TurnRecord) -> SavedTurn:
        """
        Persist one completed turn in a single transaction.

        Appends the user message and, when non-blank, the
        assistant message with its tool calls.  Creates the
        session with the placeholder title if needed.

        Parameters:
            record (TurnRecord): The finished turn.

        Returns:
            SavedTurn: Session id, thread id and the full
                message list after the write.

        Raises:
            PersistenceError: If the database write fails.
        """
        ctx = record.thread_context
        db = self._session_factory()
        try:
            chat = None
            if ctx.session_id:
                chat = _find_session(
                    db, ctx.session_id,
                    record.workspace_id, record.user_id,
                )
            if chat is None:
                chat = ChatSession(
                    workspace_id=record.workspace_id,
                    created_by=record.user_id or "system",
                    thread_id=ctx.thread_id,
                    title=DEFAULT_TITLE,
                    title_generated=False,
                )
                db.add(chat)
                db.flush()
            elif not chat.thread_id:
                chat.thread_id = ctx.thread_id

            position = (
                db.query(func.max(ChatMessage.position))
                .filter(ChatMessage.session_id == chat.id)
                .scalar()
            )
            position = -1 if position is None else position

            position += 1
            db.add(ChatMessage(
                session_id=chat.id,
                position=position,
                role="user",
                content=record.user_message,
            ))

            if record.assistant_message and record.assistant_message.strip():
                position += 1
                db.add(ChatMessage(
                    session_id=chat.id,
                    position=position,
                    role="assistant",
                    content=record.assistant_message,
                    tool_calls_json=(
                        json.dumps(record.tool_calls, default=str)
                        if record.tool_calls else None
                    ),
                ))

            if record.active_agent:
                chat.active_agent = record.active_agent
            if record.pinned_console_id is not None:
                chat.pinned_console_id = record.pinned_console_id
            chat.updated_at = utcnow()
            db.commit()

            messages = [
                {"role": m.role, "content": m.content}
                for m in (
                    db.query(ChatMessage)
                    .filter(ChatMessage.session_id == chat.id)
                    .order_by(ChatMessage.position)
                    .all()
                )
            ]
            return SavedTurn(
                session_id=chat.id,
                thread_id=chat.thread_id,
                message_count=len(messages),
                messages=messages,
                title_generated=bool(chat.title_generated),
            )
        except SQLAlchemyError as exc:
            db.rollback()
            raise PersistenceError(
                f"Failed to save chat turn: {exc}",
                session_id=ctx.session_id,
            ) from exc
        finally:
            db.close()

    def set_generated_title(self, session_id: str, title: str) -> bool:
        """
        Store a generated title and mark the session titled.

        Parameters:
            session_id (str): Session to update.
            title (str): New title.

        Returns:
            bool: False when the session no longer exists.
        """
        db = self._session_factory()
        try:
            chat = db.get(ChatSession, session_id)
            if chat is None:
                return False
            chat.title = title
            chat.title_generated = True
            db.commit()
            return True
        finally:
            db.close()


def _find_session(
    db: Session,
    session_id: str,
    workspace_id: str,
    user_id: Optional[str],
) -> Optional[ChatSession]:
    """Look up a session owned by the workspace (and user)."""
    query = db.query(ChatSession).filter(
        ChatSession.id == session_id,
        ChatSession.workspace_id == workspace_id,
    )
    if user_id:
        query = query.filter(ChatSession.created_by == user_id)
    return query.first()
