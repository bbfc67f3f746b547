import uuid
from datetime import datetime

from sqlalchemy import DateTime, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from chatcore.models.base import Base

CONTACT_ACCEPTED = "accepted"
CONTACT_BLOCKED = "blocked"


class Contact(Base):
    """One direction of a friendship. Rows for (a, b) and (b, a) always agree
    on ``status`` and ``can_chat``; the favorite and blocked flags and the nickname
    are owner-specific."""

    __tablename__ = "contacts"

    owner_id: Mapped[uuid.UUID] = mapped_column(nullable=False, index=True)
    peer_id: Mapped[uuid.UUID] = mapped_column(nullable=False, index=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=CONTACT_ACCEPTED
    )  # accepted, blocked
    can_chat: Mapped[bool] = mapped_column(default=False, nullable=False)
    is_favorite: Mapped[bool] = mapped_column(default=False, nullable=False)
    is_blocked: Mapped[bool] = mapped_column(default=False, nullable=False)
    nickname: Mapped[str | None] = mapped_column(String(100))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        UniqueConstraint("owner_id", "peer_id", name="uq_contacts_owner_peer"),
    )
