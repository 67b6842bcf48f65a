"""POST /conversation, GET /conversation/{id} -- the conversational endpoint."""
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from insight_copilot.copilot.schemas import ConversationRequest, ConversationResponse
from insight_copilot.copilot.service import CopilotService, get_service
from insight_copilot.core.logging import get_logger

logger = get_logger(__name__)
router = APIRouter()


@router.post("", response_model=ConversationResponse, response_model_by_alias=True)
async def conversation_endpoint(req: ConversationRequest, service: CopilotService = Depends(get_service)):
    """Answer one message; failures come back as an error-sourced reply, not a 5xx."""
    try:
        return await service.process_conversation(req)
    except Exception as exc:
        logger.exception("Conversation processing failed")
        raise HTTPException(status_code=500, detail=str(exc))


@router.get("/{conversation_id}", response_model=ConversationResponse, response_model_by_alias=True)
def get_conversation_endpoint(conversation_id: str, service: CopilotService = Depends(get_service)):
    """Latest reply of a conversation."""
    response = service.get_conversation(conversation_id)
    if response is None:
        raise HTTPException(status_code=404, detail=f"Conversation {conversation_id} not found")
    return response
