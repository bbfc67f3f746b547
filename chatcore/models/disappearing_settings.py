import uuid
from datetime import datetime

from sqlalchemy import DateTime, Integer, func
from sqlalchemy.orm import Mapped, mapped_column

from chatcore.models.base import Base


class DisappearingSettings(Base):
    __tablename__ = "disappearing_message_settings"

    user_id: Mapped[uuid.UUID] = mapped_column(unique=True, nullable=False)
    enabled: Mapped[bool] = mapped_column(default=False, nullable=False)
    time_to_live: Mapped[int] = mapped_column(Integer, nullable=False)  # seconds
    burn_after_read: Mapped[bool] = mapped_column(default=False, nullable=False)
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
