"""
API route for streamed agent chat.

``POST /api/agent/stream`` validates the turn, then streams
the orchestrator's events as Server-Sent Events.  Every
rejection happens before the stream starts.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import StreamingResponse
from pydantic import ValidationError

from dbchat.dependencies import get_current_user_id, get_orchestrator
from dbchat.schemas import AgentStreamRequest
from dbchat.services.agents import AgentOrchestrator, TurnRequest
from dbchat.services.agents.events import sse_event

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/agent", tags=["agent"])


def _validation_detail(exc: ValidationError) -> str:
    """First validation error as a readable message."""
    error = exc.errors()[0]
    location = ".".join(str(part) for part in error.get("loc", ()))
    message = error.get("msg", "Invalid request")
    return f"{location}: {message}" if location else message


@router.post(
    "/stream",
    summary="Send a chat message and stream the agent's reply",
)
async def stream_agent(
    request: Request,
    user_id: str = Depends(get_current_user_id),
    orchestrator: AgentOrchestrator = Depends(get_orchestrator),
):
    """
    Run one chat turn and stream its events.

    The body is JSON: ``message``, ``workspaceId`` and
    optionally ``sessionId``, ``consoles`` and
    ``consoleId``.  Each event is one SSE frame; the stream
    always ends with a ``done`` event.
    """
    try:
        body = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON body")
    if not isinstance(body, dict):
        raise HTTPException(
            status_code=400,
            detail="Request body must be a JSON object",
        )

    try:
        data = AgentStreamRequest.model_validate(body)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=_validation_detail(exc))

    turn = TurnRequest(
        workspace_id=data.workspace_id,
        user_id=user_id,
        message=data.message,
        session_id=data.session_id,
        consoles=data.consoles,
        console_id=data.console_id,
    )
    logger.info(
        "[agent] turn for workspace %s (session %s)",
        turn.workspace_id,
        turn.session_id or "new",
    )

    async def event_stream():
        async for event in orchestrator.stream_turn(turn):
            yield sse_event(event)

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "X-Accel-Buffering": "no",
        },
    )
