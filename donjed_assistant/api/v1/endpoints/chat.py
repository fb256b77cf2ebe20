"""Chat session endpoints with streamed replies."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Response, status
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, field_validator

from donjed_assistant.services.chat import (
    ChatOrchestrator,
    ChatSession,
    ConversationMessage,
    SessionBusyError,
    SessionNotFoundError,
    SessionStore,
    TurnState,
    get_chat_orchestrator,
    get_session_store,
)

router = APIRouter()
logger = logging.getLogger(__name__)


# -------------------------------------------------------------------------
# Request/Response Models
# -------------------------------------------------------------------------


class MessageCreate(BaseModel):
    """Request to send a message to the assistant."""

    message: str

    @field_validator("message")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("message must not be blank")
        return value


class PendingInputUpdate(BaseModel):
    """Draft text typed into the widget but not sent yet."""

    input: str


class SessionResponse(BaseModel):
    """Chat session with its transcript."""

    id: str
    messages: list[ConversationMessage]
    pending_input: str
    is_loading: bool
    state: TurnState
    last_outcome: TurnState | None

    @classmethod
    def from_session(cls, session: ChatSession) -> "SessionResponse":
        return cls(
            id=session.id,
            messages=list(session.messages),
            pending_input=session.pending_input,
            is_loading=session.is_loading,
            state=session.state,
            last_outcome=session.last_outcome,
        )


def _get_session(session_id: str, store: SessionStore) -> ChatSession:
    try:
        return store.get(session_id)
    except SessionNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Chat session not found",
        )


# -------------------------------------------------------------------------
# Session Endpoints
# -------------------------------------------------------------------------


@router.post("/sessions", response_model=SessionResponse, status_code=status.HTTP_201_CREATED)
async def create_session(
    store: Annotated[SessionStore, Depends(get_session_store)],
) -> SessionResponse:
    """Start a new chat session."""
    session = store.create()
    logger.info(f"Created chat session {session.id}")
    return SessionResponse.from_session(session)


@router.get("/sessions/{session_id}", response_model=SessionResponse)
async def get_session(
    session_id: str,
    store: Annotated[SessionStore, Depends(get_session_store)],
) -> SessionResponse:
    """Get a chat session with its messages."""
    return SessionResponse.from_session(_get_session(session_id, store))


@router.put("/sessions/{session_id}/input", response_model=SessionResponse)
async def update_pending_input(
    session_id: str,
    request: PendingInputUpdate,
    store: Annotated[SessionStore, Depends(get_session_store)],
) -> SessionResponse:
    """Store the unsent draft of a session."""
    session = _get_session(session_id, store)
    session.pending_input = request.input
    return SessionResponse.from_session(session)


@router.post("/sessions/{session_id}/reset", response_model=SessionResponse)
async def reset_session(
    session_id: str,
    store: Annotated[SessionStore, Depends(get_session_store)],
    orchestrator: Annotated[ChatOrchestrator, Depends(get_chat_orchestrator)],
) -> SessionResponse:
    """Clear the transcript and pending input of a session."""
    session = _get_session(session_id, store)
    orchestrator.reset(session)
    return SessionResponse.from_session(session)


@router.delete("/sessions/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_session(
    session_id: str,
    store: Annotated[SessionStore, Depends(get_session_store)],
) -> Response:
    """End a chat session."""
    _get_session(session_id, store)
    store.delete(session_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# -------------------------------------------------------------------------
# Chat Endpoint
# -------------------------------------------------------------------------


@router.post("/sessions/{session_id}/messages")
async def send_message(
    session_id: str,
    request: MessageCreate,
    store: Annotated[SessionStore, Depends(get_session_store)],
    orchestrator: Annotated[ChatOrchestrator, Depends(get_chat_orchestrator)],
) -> StreamingResponse:
    """Send a message and stream the reply as plain text.

    Raises:
        HTTPException: If the session is unknown or already streaming a reply.
    """
    session = _get_session(session_id, store)

    try:
        turn = orchestrator.begin_turn(session, request.message)
    except SessionBusyError:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="A reply is already streaming for this session",
        )

    return StreamingResponse(
        orchestrator.stream_turn(turn),
        media_type="text/plain; charset=utf-8",
    )

