import uuid
from datetime import datetime

from pydantic import BaseModel, Field


class DisappearingSettingsResponse(BaseModel):
    user_id: uuid.UUID
    enabled: bool
    time_to_live: int
    burn_after_read: bool
    updated_at: datetime | None = None

    model_config = {"from_attributes": True}


class DisappearingSettingsUpdate(BaseModel):
    enabled: bool | None = None
    time_to_live: int | None = Field(default=None, gt=0)
    burn_after_read: bool | None = None


class ScheduleDisappearing(BaseModel):
    ttl_seconds: int | None = Field(default=None, gt=0)
    burn_after_read: bool | None = None


class DisappearingEntryResponse(BaseModel):
    message_id: uuid.UUID
    delete_at: datetime
    burn_after_read: bool
    processed: bool

    model_config = {"from_attributes": True}


class MessageViewResponse(BaseModel):
    message_id: uuid.UUID
    burned: bool
