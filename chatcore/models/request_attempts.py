import uuid
from datetime import datetime

from sqlalchemy import DateTime, Integer, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from chatcore.models.base import Base


class FriendRequestAttempts(Base):
    """Attempts used by requests that were deleted before being accepted.

    A resend after the request row is gone continues from this count.
    """

    __tablename__ = "friend_request_attempts"

    sender_id: Mapped[uuid.UUID] = mapped_column(nullable=False)
    receiver_id: Mapped[uuid.UUID] = mapped_column(nullable=False)
    attempt_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        UniqueConstraint("sender_id", "receiver_id", name="uq_friend_request_attempts_pair"),
    )
