"""API v1 router aggregating all endpoint routers.

Chat:
  /api/v1/chat/sessions (create, detail, input, reset, delete)
  /api/v1/chat/sessions/{id}/messages - streamed reply

Knowledge Base:
  /api/v1/knowledge/status, /search
"""

from fastapi import APIRouter

from donjed_assistant.api.v1.endpoints import chat, knowledge

api_router = APIRouter()

# -------------------------------------------------------------------------
# Chat Sessions
# -------------------------------------------------------------------------
api_router.include_router(chat.router, prefix="/chat", tags=["chat"])

# -------------------------------------------------------------------------
# Knowledge Base
# -------------------------------------------------------------------------
api_router.include_router(knowledge.router, prefix="/knowledge", tags=["knowledge"])
