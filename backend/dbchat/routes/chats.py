"""
API routes for chat session management.

Lists, reads, renames and deletes the chat sessions of the
calling user within a workspace.
"""

import json
import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from dbchat.database import get_db
from dbchat.dependencies import get_current_user_id
from dbchat.models import ChatSession, utcnow
from dbchat.schemas import (
    ChatMessageResponse,
    ChatSessionDetail,
    ChatSessionSummary,
    ChatTitleUpdate,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/chats", tags=["chats"])


def _get_owned_session(
    db: Session,
    chat_id: str,
    user_id: str,
) -> ChatSession:
    chat = db.query(ChatSession).filter(
        ChatSession.id == chat_id,
        ChatSession.created_by == user_id,
    ).first()
    if not chat:
        raise HTTPException(
            status_code=404,
            detail="Chat not found",
        )
    return chat


@router.get(
    "",
    response_model=List[ChatSessionSummary],
    summary="List chat sessions of a workspace",
)
def list_chats(
    workspace_id: str = Query(..., alias="workspaceId"),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """Return the caller's sessions, most recently active first."""
    return (
        db.query(ChatSession)
        .filter(
            ChatSession.workspace_id == workspace_id,
            ChatSession.created_by == user_id,
        )
        .order_by(ChatSession.updated_at.desc())
        .all()
    )


@router.get(
    "/{chat_id}",
    response_model=ChatSessionDetail,
    summary="Get a chat session with its messages",
)
def get_chat(
    chat_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """Return one session and its ordered messages."""
    chat = _get_owned_session(db, chat_id, user_id)
    summary = ChatSessionSummary.model_validate(chat)
    return ChatSessionDetail(
        **summary.model_dump(),
        messages=[
            ChatMessageResponse(
                id=m.id,
                role=m.role,
                content=m.content,
                tool_calls=(
                    json.loads(m.tool_calls_json)
                    if m.tool_calls_json else None
                ),
                created_at=m.created_at,
            )
            for m in chat.messages
        ],
    )


@router.put(
    "/{chat_id}",
    response_model=ChatSessionSummary,
    summary="Rename a chat session",
)
def rename_chat(
    chat_id: str,
    data: ChatTitleUpdate,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """
    Set the title of a session.

    A user-chosen title counts as generated, so background
    title generation will not overwrite it.
    """
    chat = _get_owned_session(db, chat_id, user_id)
    chat.title = data.title.strip()
    chat.title_generated = True
    chat.updated_at = utcnow()
    db.commit()
    db.refresh(chat)
    return chat


@router.delete(
    "/{chat_id}",
    status_code=204,
    summary="Delete a chat session",
)
def delete_chat(
    chat_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """Delete a session and all of its messages."""
    chat = _get_owned_session(db, chat_id, user_id)
    db.delete(chat)
    db.commit()
    logger.info("[chats] deleted %s", chat_id)
