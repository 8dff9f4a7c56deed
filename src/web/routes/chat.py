"""Chat routes: one turn per request, plus conversation create/reset."""

import uuid

import structlog
from fastapi import APIRouter, Depends

from conversation.handler import TurnHandler
from web.deps import get_handler
from web.models import ChatRequest, ChatResponse, ConversationCreated, ConversationReset

logger = structlog.get_logger()

router = APIRouter(prefix="/api", tags=["chat"])


@router.post("/chat", response_model=ChatResponse)
async def chat(body: ChatRequest, handler: TurnHandler = Depends(get_handler)):
    result = await handler.handle_message(body.conversation_id, body.message, snapshot=body.snapshot)
    return ChatResponse(**result.to_dict())


@router.post("/conversation", response_model=ConversationCreated, response_model_by_alias=True)
async def create_conversation(handler: TurnHandler = Depends(get_handler)):
    conversation_id = uuid.uuid4().hex
    conversation = handler.store.get_or_create(conversation_id)
    handler.store.save(conversation)
    logger.info("web.conversation_created", conversation_id=conversation_id)
    return ConversationCreated(
        conversation_id=conversation_id,
        message=conversation.messages[-1].content,
        phase=conversation.phase.value,
    )


@router.delete("/conversation/{conversation_id}", response_model=ConversationReset, response_model_by_alias=True)
async def reset_conversation(conversation_id: str, handler: TurnHandler = Depends(get_handler)):
    conversation = handler.store.reset(conversation_id)
    return ConversationReset(conversation_id=conversation.id, phase=conversation.phase.value)
