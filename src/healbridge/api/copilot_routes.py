"""
Copilot API Routes — chat with the health companion and manage conversation history.
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from healbridge.api.schemas import ChatRequest, ChatResponse, ConversationDetail, ConversationSummary, MessageResponse
from healbridge.middleware.auth_middleware import get_current_user
from healbridge.models import User
from healbridge.pagination import Pagination
from healbridge.services.copilot_service import CopilotService, get_copilot_service

router = APIRouter(prefix="/copilot", tags=["copilot"])


@router.post("/chat", response_model=ChatResponse)
async def chat(
    req: ChatRequest,
    user: User = Depends(get_current_user),
    svc: CopilotService = Depends(get_copilot_service),
):
    return await svc.chat(user.id, req.message, req.conversation_id)


@router.get("/history", response_model=List[ConversationSummary])
async def get_history(
    page: Optional[int] = Query(None, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    user: User = Depends(get_current_user),
    svc: CopilotService = Depends(get_copilot_service),
):
    """List conversations, newest activity first. `limit` is capped server-side."""
    return await svc.get_history(user.id, Pagination.from_query(page, limit))


@router.get("/history/{conversation_id}", response_model=ConversationDetail)
async def get_conversation(
    conversation_id: str,
    user: User = Depends(get_current_user),
    svc: CopilotService = Depends(get_copilot_service),
):
    return await svc.get_conversation(user.id, conversation_id)


@router.delete("/history/{conversation_id}", response_model=MessageResponse)
async def delete_conversation(
    conversation_id: str,
    user: User = Depends(get_current_user),
    svc: CopilotService = Depends(get_copilot_service),
):
    return await svc.delete_conversation(user.id, conversation_id)
