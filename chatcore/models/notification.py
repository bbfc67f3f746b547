import uuid
from datetime import datetime

from sqlalchemy import JSON, DateTime, String, func
from sqlalchemy.orm import Mapped, mapped_column

from chatcore.models.base import Base


class Notification(Base):
    __tablename__ = "notifications"

    user_id: Mapped[uuid.UUID] = mapped_column(nullable=False, index=True)
    type: Mapped[str] = mapped_column(
        String(50), nullable=False
    )  # friend_request.created, friend_request.accepted, ...
    subject_id: Mapped[uuid.UUID] = mapped_column(nullable=False)
    object_id: Mapped[uuid.UUID] = mapped_column(nullable=False)
    payload: Mapped[dict | None] = mapped_column(JSON, default=dict)
    is_read: Mapped[bool] = mapped_column(default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
