import uuid
from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, Integer, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from chatcore.models.base import Base

REQUEST_PENDING = "pending"
REQUEST_ACCEPTED = "accepted"
REQUEST_REJECTED = "rejected"


class FriendRequest(Base):
    __tablename__ = "friend_requests"

    sender_id: Mapped[uuid.UUID] = mapped_column(nullable=False, index=True)
    receiver_id: Mapped[uuid.UUID] = mapped_column(nullable=False, index=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=REQUEST_PENDING
    )  # pending, accepted, rejected
    attempt_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    # One row per ordered pair; a resend reuses the row
    __table_args__ = (
        UniqueConstraint("sender_id", "receiver_id", name="uq_friend_requests_pair"),
        CheckConstraint("sender_id <> receiver_id", name="not_self"),
    )
