"""Chat orchestration: one retrieval-augmented reply per user turn.

A turn appends the user message and an empty bot placeholder to the
session, retrieves documentation context, then streams the model's reply
into the placeholder.
"""

import logging
import uuid
from contextlib import aclosing
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator, Optional

from pydantic import BaseModel, Field

from donjed_assistant.core.ai_constants import CHAT_ERROR_MESSAGE
from donjed_assistant.knowledge.retriever import (
    DEFAULT_TOP_K,
    KnowledgeRetriever,
    get_knowledge_retriever,
    retrieve_context,
)
from donjed_assistant.services.llm_client import (
    ChatMessage,
    ChatRole,
    LLMClient,
    LLMStage,
    get_llm_client,
)

logger = logging.getLogger(__name__)


class MessageRole(str, Enum):
    """Author of a transcript message."""

    USER = "user"
    BOT = "bot"


# Transcript role -> model role
_LLM_ROLES: dict[MessageRole, ChatRole] = {
    MessageRole.USER: ChatRole.USER,
    MessageRole.BOT: ChatRole.ASSISTANT,
}

# Stages after which the reply is an in-band failure notice or was cut short
_FAILURE_STAGES = frozenset(
    {LLMStage.FAILED, LLMStage.RATE_LIMITED, LLMStage.MISSING_CREDENTIALS}
)


class TurnState(str, Enum):
    """Progress of the current (or last) chat turn."""

    IDLE = "idle"
    USER_MESSAGE_APPENDED = "user_message_appended"
    BOT_PLACEHOLDER_APPENDED = "bot_placeholder_appended"
    STREAMING = "streaming"
    COMPLETE = "complete"
    FAILED = "failed"


class ConversationMessage(BaseModel):
    """A message in the chat transcript."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    role: MessageRole
    content: str = ""

    def to_chat_message(self) -> ChatMessage:
        return ChatMessage(role=_LLM_ROLES[self.role], content=self.content)


class SessionBusyError(Exception):
    """A reply is already streaming for this session."""

    pass


class SessionNotFoundError(Exception):
    """No session with the requested id."""

    pass


class ChatSession:
    """Conversation state for one chat widget session."""

    def __init__(self, session_id: str | None = None) -> None:
        self.id = session_id or uuid.uuid4().hex
        self.messages: list[ConversationMessage] = []
        self.pending_input = ""
        self.is_loading = False
        self.state = TurnState.IDLE
        self.last_outcome: Optional[TurnState] = None
        # Bumped on reset so an in-flight turn stops touching the session
        self.generation = 0

    def history(self) -> list[ChatMessage]:
        """Prior non-empty messages in model format."""
        return [
            message.to_chat_message()
            for message in self.messages
            if message.content.strip()
        ]

    def reset(self) -> None:
        """Clear the transcript and pending input."""
        self.messages = []
        self.pending_input = ""
        self.is_loading = False
        self.state = TurnState.IDLE
        self.last_outcome = None
        self.generation += 1


@dataclass
class ChatTurn:
    """A claimed turn: the user message is recorded and the session is busy."""

    session: ChatSession
    message: str
    history: list[ChatMessage]
    placeholder: ConversationMessage
    generation: int

    @property
    def is_current(self) -> bool:
        """False once the session was reset after this turn began."""
        return self.session.generation == self.generation


class ChatOrchestrator:
    """Wires classifier, retriever and LLM client for each turn."""

    def __init__(
        self,
        llm_client: LLMClient,
        retriever: KnowledgeRetriever | None = None,
        top_k: int = DEFAULT_TOP_K,
    ) -> None:
        self.llm_client = llm_client
        self.retriever = retriever
        self.top_k = top_k

    async def build_context(self, message: str) -> str:
        """Retrieve documentation context; empty when retrieval fails."""
        try:
            retrieved = await retrieve_context(message, self.retriever, top_k=self.top_k)
        except Exception as e:
            logger.warning(f"RAG retrieval failed, proceeding without context: {e}")
            return ""
        return retrieved.context

    def begin_turn(self, session: ChatSession, message: str) -> ChatTurn:
        """Claim the session and record the user message and bot placeholder.

        Runs without awaiting, so two submits can never both claim a session.

        Raises:
            ValueError: If the message is blank.
            SessionBusyError: If a reply is already streaming for the session.
        """
        if not message.strip():
            raise ValueError("Message must not be empty")
        if session.is_loading:
            raise SessionBusyError(f"Session {session.id} is already streaming a reply")

        history = session.history()

        session.messages.append(ConversationMessage(role=MessageRole.USER, content=message))
        session.pending_input = ""
        session.state = TurnState.USER_MESSAGE_APPENDED

        placeholder = ConversationMessage(role=MessageRole.BOT)
        session.messages.append(placeholder)
        session.state = TurnState.BOT_PLACEHOLDER_APPENDED
        session.is_loading = True

        return ChatTurn(
            session=session,
            message=message,
            history=history,
            placeholder=placeholder,
            generation=session.generation,
        )

    async def stream_turn(self, turn: ChatTurn) -> AsyncIterator[str]:
        """Stream the bot reply of a claimed turn.

        Yields reply fragments as they arrive. The placeholder always holds
        the full reply accumulated so far. The session is released when the
        stream ends, fails or is closed.
        """
        session = turn.session
        stages: list[LLMStage] = []
        reply = ""
        try:
            context = await self.build_context(turn.message)

            session.state = TurnState.STREAMING
            stream = self.llm_client.stream_chat_response(
                turn.message,
                context=context,
                history=turn.history,
                on_stage=stages.append,
            )
            async with aclosing(stream) as fragments:
                async for fragment in fragments:
                    if not turn.is_current:
                        logger.info(f"Session {session.id} was reset, dropping reply stream")
                        return
                    reply += fragment
                    turn.placeholder.content = reply
                    yield fragment

            if turn.is_current:
                failed = bool(_FAILURE_STAGES.intersection(stages))
                outcome = TurnState.FAILED if failed else TurnState.COMPLETE
                session.state = outcome
                session.last_outcome = outcome

        except Exception as e:
            logger.error(f"Chat turn failed for session {session.id}: {e}")
            if turn.is_current:
                turn.placeholder.content = CHAT_ERROR_MESSAGE
                session.state = TurnState.FAILED
                session.last_outcome = TurnState.FAILED
                yield CHAT_ERROR_MESSAGE

        finally:
            if turn.is_current:
                session.is_loading = False
                session.state = TurnState.IDLE

    def send_message(self, session: ChatSession, message: str) -> AsyncIterator[str]:
        """Claim a turn for ``message`` and return the stream of its reply.

        Raises:
            ValueError: If the message is blank.
            SessionBusyError: If a reply is already streaming for the session.
        """
        return self.stream_turn(self.begin_turn(session, message))

    async def generate_reply(self, session: ChatSession, message: str) -> str:
        """Run a turn to completion and return the final bot message."""
        async for _ in self.send_message(session, message):
            pass
        return session.messages[-1].content

    def reset(self, session: ChatSession) -> None:
        session.reset()


class SessionStore:
    """In-memory chat sessions keyed by id."""

    def __init__(self) -> None:
        self._sessions: dict[str, ChatSession] = {}

    def create(self) -> ChatSession:
        session = ChatSession()
        self._sessions[session.id] = session
        return session

    def get(self, session_id: str) -> ChatSession:
        try:
            return self._sessions[session_id]
        except KeyError:
            raise SessionNotFoundError(session_id) from None

    def get_or_create(self, session_id: str) -> ChatSession:
        if session_id not in self._sessions:
            self._sessions[session_id] = ChatSession(session_id)
        return self._sessions[session_id]

    def delete(self, session_id: str) -> None:
        session = self._sessions.pop(session_id, None)
        if session is not None:
            session.reset()

    def __len__(self) -> int:
        return len(self._sessions)


# Singleton instances
_session_store: Optional[SessionStore] = None
_chat_orchestrator: Optional[ChatOrchestrator] = None


def get_session_store() -> SessionStore:
    global _session_store
    if _session_store is None:
        _session_store = SessionStore()
    return _session_store


def get_chat_orchestrator() -> ChatOrchestrator:
    global _chat_orchestrator
    if _chat_orchestrator is None:
        from donjed_assistant.core.config import get_settings

        _chat_orchestrator = ChatOrchestrator(
            llm_client=get_llm_client(),
            retriever=get_knowledge_retriever(),
            top_k=get_settings().retrieval_top_k,
        )
    return _chat_orchestrator
