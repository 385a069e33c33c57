"""
SQLAlchemy models for the database chat backend.

Defines tables for workspace database connections, chat
sessions, and the ordered messages of each session.
"""

import uuid
from datetime import datetime, timezone
from sqlalchemy import (
    Column,
    String,
    Text,
    Integer,
    Boolean,
    DateTime,
    ForeignKey,
)
from sqlalchemy.orm import relationship
from dbchat.database import Base


def generate_uuid() -> str:
    """Generate a new UUID string."""
    return str(uuid.uuid4())


def utcnow() -> datetime:
    """Return the current UTC datetime."""
    return datetime.now(timezone.utc)


class DatabaseConnection(Base):
    """
    A database registered in a workspace.

    MongoDB connections use ``connection_string`` and
    ``database_name``; BigQuery connections use ``project_id``
    and an optional service-account ``credentials_json``.
    """

    __tablename__ = "database_connections"

    id = Column(String, primary_key=True, default=generate_uuid)
    workspace_id = Column(String(64), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    type = Column(String(20), nullable=False)
    connection_string = Column(Text, nullable=True)
    database_name = Column(String(255), nullable=True)
    project_id = Column(String(255), nullable=True)
    credentials_json = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class ChatSession(Base):
    """
    A conversation between a user and the database agents.

    ``thread_id`` is a stable correlation id that never changes
    once assigned.  ``active_agent`` pins the specialist that
    handled the conversation so later turns are routed to it.
    """

    __tablename__ = "chat_sessions"

    id = Column(String, primary_key=True, default=generate_uuid)
    workspace_id = Column(String(64), nullable=False, index=True)
    created_by = Column(String(255), nullable=False)
    thread_id = Column(String(64), unique=True, nullable=True)
    title = Column(String(255), nullable=False, default="New Chat")
    title_generated = Column(Boolean, default=False)
    active_agent = Column(String(20), nullable=True)
    pinned_console_id = Column(String(255), nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    messages = relationship(
        "ChatMessage",
        back_populates="session",
        order_by="ChatMessage.position",
        cascade="all, delete-orphan",
    )


class ChatMessage(Base):
    """
    One message of a chat session.

    Messages are append-only; ``position`` gives the order
    within the session.  Assistant messages may carry the
    tool calls made during their turn as JSON.
    """

    __tablename__ = "chat_messages"

    id = Column(String, primary_key=True, default=generate_uuid)
    session_id = Column(
        String, ForeignKey("chat_sessions.id"), nullable=False
    )
    position = Column(Integer, nullable=False)
    role = Column(String(20), nullable=False)
    content = Column(Text, nullable=False)
    tool_calls_json = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow)

    session = relationship("ChatSession", back_populates="messages")
