import uuid

from fastapi import APIRouter, Depends

from chatcore.dependencies import get_current_user_id, get_store
from chatcore.schemas.notification import NotificationResponse
from chatcore.services import notification_service
from chatcore.store.base import RelationshipStore

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("", response_model=list[NotificationResponse])
async def list_notifications(
    unread: bool = False,
    user_id: uuid.UUID = Depends(get_current_user_id),
    store: RelationshipStore = Depends(get_store),
):
    return await notification_service.list_notifications(store, user_id, unread_only=unread)


@router.post("/read-all")
async def mark_all_notifications_read(
    user_id: uuid.UUID = Depends(get_current_user_id),
    store: RelationshipStore = Depends(get_store),
):
    updated = await notification_service.mark_all_notifications_read(store, user_id)
    return {"updated": updated}


@router.post("/{notification_id}/read")
async def mark_notification_read(
    notification_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    store: RelationshipStore = Depends(get_store),
):
    await notification_service.mark_notification_read(store, notification_id, user_id)
    return {"status": "read"}
