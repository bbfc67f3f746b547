import uuid
from datetime import datetime

from pydantic import BaseModel


class NotificationResponse(BaseModel):
    id: uuid.UUID
    type: str
    subject_id: uuid.UUID
    object_id: uuid.UUID
    payload: dict
    is_read: bool
    created_at: datetime | None = None

    model_config = {"from_attributes": True}
