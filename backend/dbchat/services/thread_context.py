"""
Thread context and prompt window builder.

A ``ThreadContext`` is the per-turn view of a chat session:
its thread id, the most recent messages, and the pinned
agent/console state.  ``build_agent_context`` turns it and
the new user message into the bounded prompt that is sent
to the agent runtime.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from dbchat.config import settings

CONTEXT_TRUNCATED_MARKER = "[Context truncated]\n..."


@dataclass
class ThreadContext:
    """
    Derived, never persisted view of a conversation.

    Attributes:
        thread_id (str): Stable correlation id of the thread.
        recent_messages (list[dict]): Last messages (role /
            content dicts), oldest first.
        message_count (int): Total messages in the session.
        last_activity_at (datetime | None): Last update time.
        session_id (str | None): Stored session id, ``None``
            for a conversation that has not been saved yet.
        active_agent (str | None): Pinned agent kind.
        pinned_console_id (str | None): Pinned console id.
        title_generated (bool): Whether a title was generated.
    """

    thread_id: str
    recent_messages: List[Dict[str, str]] = field(
        default_factory=list
    )
    message_count: int = 0
    last_activity_at: Optional[datetime] = None
    session_id: Optional[str] = None
    active_agent: Optional[str] = None
    pinned_console_id: Optional[str] = None
    title_generated: bool = False

    @property
    def is_new(self) -> bool:
        """True when no stored session backs this context."""
        return self.session_id is None


def _speaker(role: str) -> str:
    return "User" if role == "user" else "Assistant"


def build_agent_context(
    thread_context: ThreadContext,
    new_message: str,
    window_size: Optional[int] = None,
    max_chars: Optional[int] = None,
) -> str:
    """
    Build the prompt for one agent run.

    Older messages beyond the window are replaced by a note
    with the number of omitted messages.  When the result is
    longer than *max_chars*, the start is cut so the most
    recent text survives, and a truncation marker is added.

    Parameters:
        thread_context (ThreadContext): Current thread view.
        new_message (str): Trimmed, non-empty user message.
        window_size (int, optional): Messages kept verbatim.
        max_chars (int, optional): Character budget.

    Returns:
        str: The prompt text.
    """
    if window_size is None:
        window_size = settings.context_window_size
    if max_chars is None:
        max_chars = settings.max_context_chars

    parts: List[str] = []
    if thread_context.message_count > window_size:
        omitted = thread_context.message_count - window_size
        parts.append(f"[Previous {omitted} messages omitted]\n")

    recent = (
        thread_context.recent_messages[-window_size:]
        if window_size > 0 else []
    )
    if recent:
        parts.append("Recent conversation:")
        for msg in recent:
            speaker = _speaker(msg.get("role", "user"))
            parts.append(f"{speaker}: {msg.get('content', '')}")
        parts.append("")

    parts.append(f"User: {new_message}")
    full_context = "\n".join(parts)

    if len(full_context) > max_chars:
        tail = full_context[len(full_context) - max_chars:]
        return f"{CONTEXT_TRUNCATED_MARKER}{tail}"
    return full_context
