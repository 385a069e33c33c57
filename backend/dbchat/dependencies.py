"""
Shared FastAPI dependencies.

The caller's identity arrives already authenticated in the
``X-User-Id`` header; routes that need it depend on
``get_current_user_id``.
"""

from functools import lru_cache
from typing import Optional

from fastapi import Depends, Header, HTTPException

from dbchat.services.agents.orchestrator import AgentOrchestrator
from dbchat.services.agents.runtime import OpenAIAgentRuntime
from dbchat.services.session_store import ChatSessionStore
from dbchat.services.title_service import TitleService


def get_current_user_id(
    x_user_id: Optional[str] = Header(default=None),
) -> str:
    """Return the authenticated user id or reject with 401."""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(
            status_code=401,
            detail="Authentication required",
        )
    return x_user_id.strip()


def get_store() -> ChatSessionStore:
    """Chat session store bound to the application database."""
    return ChatSessionStore()


@lru_cache(maxsize=1)
def get_runtime() -> OpenAIAgentRuntime:
    """Process-wide agent runtime (one OpenAI client)."""
    return OpenAIAgentRuntime()


def get_orchestrator(
    store: ChatSessionStore = Depends(get_store),
) -> AgentOrchestrator:
    """Orchestrator for one request."""
    return AgentOrchestrator(
        runtime=get_runtime(),
        store=store,
        title_service=TitleService(store),
    )
