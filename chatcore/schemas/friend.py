import uuid
from datetime import datetime

from pydantic import BaseModel, Field


class FriendRequestCreate(BaseModel):
    receiver_id: uuid.UUID


class FriendRequestResponse(BaseModel):
    id: uuid.UUID
    sender_id: uuid.UUID
    receiver_id: uuid.UUID
    status: str
    attempt_count: int
    created_at: datetime | None = None
    updated_at: datetime | None = None

    model_config = {"from_attributes": True}


class ContactResponse(BaseModel):
    id: uuid.UUID
    owner_id: uuid.UUID
    peer_id: uuid.UUID
    status: str
    can_chat: bool
    is_favorite: bool
    is_blocked: bool
    nickname: str | None = None
    created_at: datetime | None = None

    model_config = {"from_attributes": True}


class FavoriteUpdate(BaseModel):
    is_favorite: bool


class NicknameUpdate(BaseModel):
    nickname: str | None = Field(default=None, max_length=100)
