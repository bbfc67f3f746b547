import uuid

from fastapi import APIRouter, Depends, Response, status

from chatcore.dependencies import get_current_user_id, get_store
from chatcore.schemas.message import (
    DisappearingEntryResponse,
    DisappearingSettingsResponse,
    DisappearingSettingsUpdate,
    MessageViewResponse,
    ScheduleDisappearing,
)
from chatcore.services import ephemeral_service
from chatcore.store.base import RelationshipStore

router = APIRouter(prefix="/messages", tags=["messages"])


@router.get("/disappearing-settings", response_model=DisappearingSettingsResponse)
async def get_disappearing_settings(
    user_id: uuid.UUID = Depends(get_current_user_id),
    store: RelationshipStore = Depends(get_store),
):
    return await ephemeral_service.get_disappearing_settings(store, user_id)


@router.put("/disappearing-settings", response_model=DisappearingSettingsResponse)
async def update_disappearing_settings(
    data: DisappearingSettingsUpdate,
    user_id: uuid.UUID = Depends(get_current_user_id),
    store: RelationshipStore = Depends(get_store),
):
    return await ephemeral_service.update_disappearing_settings(
        store, user_id, **data.model_dump()
    )


@router.post(
    "/{message_id}/disappearing",
    response_model=DisappearingEntryResponse,
    responses={204: {"description": "Disappearing messages are off for the sender"}},
)
async def schedule_disappearing(
    message_id: uuid.UUID,
    data: ScheduleDisappearing,
    user_id: uuid.UUID = Depends(get_current_user_id),
    store: RelationshipStore = Depends(get_store),
):
    entry = await ephemeral_service.schedule_disappearing_message(
        store,
        message_id,
        user_id,
        ttl_seconds=data.ttl_seconds,
        burn_after_read=data.burn_after_read,
    )
    if entry is None:
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    return entry


@router.post("/{message_id}/view", response_model=MessageViewResponse)
async def mark_message_viewed(
    message_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    store: RelationshipStore = Depends(get_store),
):
    burned = await ephemeral_service.mark_message_viewed(store, message_id, user_id)
    return MessageViewResponse(message_id=message_id, burned=burned)
