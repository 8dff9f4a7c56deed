"""Pydantic request/response schemas for the web API."""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

# --- Chat ---


class ChatRequest(BaseModel):
    """One user turn. ``snapshot`` lets a stateless client carry its own session."""

    model_config = ConfigDict(populate_by_name=True)

    conversation_id: str = Field(..., alias="conversationId", min_length=1, max_length=128)
    message: str = Field(..., max_length=5000)
    snapshot: Optional[dict] = None


class ChatResponse(BaseModel):
    response: str
    phase: str
    facts: dict
    assumptions: list[str] = []
    itinerary: list[dict] = []
    snapshot: dict
    interactive: Optional[dict] = None


# --- Conversations ---


class ConversationCreated(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    conversation_id: str = Field(..., serialization_alias="conversationId")
    message: str
    phase: str


class ConversationReset(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    conversation_id: str = Field(..., serialization_alias="conversationId")
    phase: str
