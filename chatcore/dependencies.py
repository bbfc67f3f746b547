import uuid

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from chatcore.database import call_after_commit, get_db
from chatcore.services.notification_service import (
    NotificationFanout,
    RedisNotificationChannel,
    StoreNotificationChannel,
)
from chatcore.store.sql import SqlRelationshipStore


async def get_current_user_id(
    x_user_id: str | None = Header(default=None),
) -> uuid.UUID:
    """Caller identity, asserted by the upstream gateway in ``X-User-Id``."""
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing X-User-Id header"
        )
    try:
        return uuid.UUID(x_user_id)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid X-User-Id header"
        )


async def get_store(db: AsyncSession = Depends(get_db)) -> SqlRelationshipStore:
    return SqlRelationshipStore(db)


async def get_fanout(
    request: Request,
    db: AsyncSession = Depends(get_db),
    store: SqlRelationshipStore = Depends(get_store),
) -> NotificationFanout:
    redis_client = getattr(request.app.state, "redis", None)
    realtime = [RedisNotificationChannel(redis_client)] if redis_client is not None else []
    fanout = NotificationFanout([StoreNotificationChannel(store)], after_commit=realtime)
    if realtime:
        call_after_commit(db, fanout.flush)
    return fanout
