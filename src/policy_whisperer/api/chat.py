"""Chat endpoint: one turn of a policy-document conversation.

LLM failures come back as a 200 with an apologetic ``response``; only bad
input (400) and unknown conversations (404) are errors here.
"""

import logging

from fastapi import APIRouter, Depends

from policy_whisperer.api.deps import get_conversation_service
from policy_whisperer.api.schemas import ChatRequest, ChatResponse, ErrorResponse
from policy_whisperer.pipeline.conversation import ConversationService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["chat"])


@router.post(
    "/generate-ai-response",
    response_model=ChatResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Missing prompt"},
        404: {"model": ErrorResponse, "description": "Conversation not found"},
    },
)
async def generate_ai_response(
    request: ChatRequest,
    service: ConversationService = Depends(get_conversation_service),
):
    reply = await service.post_user_message(
        request.prompt,
        conversation_id=request.conversation_id,
        policy_content=request.policy_content,
        format_as_html=request.format_as_html,
    )
    return ChatResponse(response=reply.response, conversation_id=reply.conversation_id)
