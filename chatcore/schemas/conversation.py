import uuid
from datetime import datetime

from pydantic import BaseModel, Field


class DirectConversationCreate(BaseModel):
    peer_id: uuid.UUID


class GroupCreate(BaseModel):
    # Empty lists are rejected by the service, not here
    participant_ids: list[uuid.UUID] = Field(default_factory=list)
    name: str | None = Field(default=None, max_length=255)


class ParticipantResponse(BaseModel):
    user_id: uuid.UUID
    role: str
    joined_at: datetime | None = None

    model_config = {"from_attributes": True}


class ConversationResponse(BaseModel):
    id: uuid.UUID
    type: str
    name: str | None
    created_by: uuid.UUID
    created_at: datetime | None = None
    participants: list[ParticipantResponse] = []

    model_config = {"from_attributes": True}


class DirectConversationResponse(ConversationResponse):
    created: bool


class TypingUpdate(BaseModel):
    is_typing: bool


class TypingResponse(BaseModel):
    conversation_id: uuid.UUID
    user_ids: list[uuid.UUID]
