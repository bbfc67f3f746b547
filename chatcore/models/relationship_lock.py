from datetime import datetime

from sqlalchemy import DateTime, String, func
from sqlalchemy.orm import Mapped, mapped_column

from chatcore.models.base import Base


class RelationshipLock(Base):
    """One row per unordered user pair. Request writers lock it with
    ``SELECT ... FOR UPDATE`` so sends in both directions run one at a time."""

    __tablename__ = "relationship_locks"

    pair_key: Mapped[str] = mapped_column(String(80), unique=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
