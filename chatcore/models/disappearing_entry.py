import uuid
from datetime import datetime

from sqlalchemy import DateTime, String, func
from sqlalchemy.orm import Mapped, mapped_column

from chatcore.models.base import Base


class DisappearingQueueEntry(Base):
    __tablename__ = "disappearing_messages_queue"

    message_id: Mapped[uuid.UUID] = mapped_column(unique=True, nullable=False)
    delete_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, index=True
    )
    burn_after_read: Mapped[bool] = mapped_column(default=False, nullable=False)
    processed: Mapped[bool] = mapped_column(default=False, nullable=False, index=True)
    # Lease held by a sweep run; free when NULL or expired
    claimed_by: Mapped[str | None] = mapped_column(String(64))
    claim_expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
