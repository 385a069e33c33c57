"""
Pydantic schemas for API request/response validation.

Provides data validation, serialization, and documentation
for all API endpoints.
"""

import uuid
from typing import Optional, List, Any, Dict
from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field, field_validator


# --- Allowed type enums --------------------------------

DATABASE_TYPES = {"mongodb", "bigquery"}


def _validate_uuid(value: str, field_name: str) -> str:
    """Raise ``ValueError`` unless *value* is a UUID string."""
    try:
        uuid.UUID(str(value))
    except (ValueError, TypeError, AttributeError):
        raise ValueError(f"'{field_name}' must be a valid id")
    return str(value)


# --- DB Connection Schemas ---

class ConnectionCreate(BaseModel):
    """Schema for registering a database in a workspace."""

    workspace_id: str
    name: str = Field(..., min_length=1, max_length=255)
    type: str
    connection_string: Optional[str] = None
    database_name: Optional[str] = None
    project_id: Optional[str] = None
    credentials_json: Optional[str] = None

    @field_validator("workspace_id")
    @classmethod
    def validate_workspace_id(cls, v: str) -> str:
        """Reject malformed workspace ids."""
        return _validate_uuid(v, "workspace_id")

    @field_validator("type")
    @classmethod
    def validate_type(cls, v: str) -> str:
        """Reject unknown database types."""
        v = v.lower()
        if v not in DATABASE_TYPES:
            raise ValueError(
                f"Unsupported type '{v}'. "
                f"Allowed: {sorted(DATABASE_TYPES)}"
            )
        return v


class ConnectionUpdate(BaseModel):
    """Schema for updating a database connection."""

    name: Optional[str] = None
    connection_string: Optional[str] = None
    database_name: Optional[str] = None
    project_id: Optional[str] = None
    credentials_json: Optional[str] = None


class ConnectionResponse(BaseModel):
    """Schema for database connection API response.

    Connection strings and credentials are never returned.
    """

    id: str
    workspace_id: str
    name: str
    type: str
    database_name: Optional[str] = None
    project_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class ConnectionTestResult(BaseModel):
    """Schema for connection test result."""

    success: bool
    message: str


# --- Console Schemas ---

class ConsoleData(BaseModel):
    """A code console the user attached to a chat turn."""

    id: str
    title: str = ""
    content: str = ""
    metadata: Dict[str, Any] = Field(default_factory=dict)


# --- Agent Stream Schemas ---

class AgentStreamRequest(BaseModel):
    """Body of ``POST /api/agent/stream``."""

    model_config = ConfigDict(populate_by_name=True)

    message: str
    session_id: Optional[str] = Field(default=None, alias="sessionId")
    workspace_id: str = Field(..., alias="workspaceId")
    consoles: List[ConsoleData] = Field(default_factory=list)
    console_id: Optional[str] = Field(default=None, alias="consoleId")

    @field_validator("message")
    @classmethod
    def validate_message(cls, v: str) -> str:
        """Trim the message and reject blank input."""
        v = v.strip()
        if not v:
            raise ValueError("'message' is required")
        return v

    @field_validator("workspace_id")
    @classmethod
    def validate_workspace_id(cls, v: str) -> str:
        """Reject malformed workspace ids."""
        return _validate_uuid(v, "workspaceId")


# --- Chat Session Schemas ---

class ChatMessageResponse(BaseModel):
    """Schema for a single persisted chat message."""

    id: str
    role: str
    content: str
    tool_calls: Optional[List[Dict[str, Any]]] = None
    created_at: Optional[datetime] = None


class ChatSessionSummary(BaseModel):
    """Chat session without its messages (list view)."""

    id: str
    workspace_id: str
    thread_id: Optional[str] = None
    title: str
    title_generated: bool = False
    active_agent: Optional[str] = None
    pinned_console_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class ChatSessionDetail(ChatSessionSummary):
    """Chat session including its ordered messages."""

    messages: List[ChatMessageResponse] = []


class ChatTitleUpdate(BaseModel):
    """Schema for renaming a chat session."""

    title: str = Field(..., min_length=1, max_length=255)
