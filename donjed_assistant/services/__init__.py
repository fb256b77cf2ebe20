"""Service layer for DonJed Assistant.

Services contain the LLM client and chat orchestration.
"""

from donjed_assistant.services.chat import (
    ChatOrchestrator,
    ChatSession,
    ChatTurn,
    SessionStore,
    get_chat_orchestrator,
    get_session_store,
)
from donjed_assistant.services.llm_client import LLMClient, get_llm_client

__all__ = [
    "ChatOrchestrator",
    "ChatSession",
    "ChatTurn",
    "SessionStore",
    "get_chat_orchestrator",
    "get_session_store",
    "LLMClient",
    "get_llm_client",
]
