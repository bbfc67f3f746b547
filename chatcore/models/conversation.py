import uuid
from datetime import datetime

from sqlalchemy import DateTime, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from chatcore.models.base import Base

CONVERSATION_DIRECT = "direct"
CONVERSATION_GROUP = "group"


def direct_pair_key(user_a: uuid.UUID, user_b: uuid.UUID) -> str:
    """Canonical key for an unordered pair of participants."""
    low, high = sorted((str(user_a), str(user_b)))
    return f"{low}:{high}"


class Conversation(Base):
    __tablename__ = "conversations"

    type: Mapped[str] = mapped_column(String(10), nullable=False)  # direct, group
    name: Mapped[str | None] = mapped_column(String(255))
    created_by: Mapped[uuid.UUID] = mapped_column(nullable=False)
    # Set for direct conversations only; NULLs do not collide
    direct_key: Mapped[str | None] = mapped_column(String(80), unique=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    participants: Mapped[list["ConversationParticipant"]] = relationship(  # noqa: F821
        back_populates="conversation", cascade="all, delete-orphan", lazy="selectin"
    )
