import uuid

from fastapi import APIRouter, Depends, Query, status

from chatcore.dependencies import get_current_user_id, get_fanout, get_store
from chatcore.schemas.friend import (
    ContactResponse,
    FavoriteUpdate,
    FriendRequestCreate,
    FriendRequestResponse,
    NicknameUpdate,
)
from chatcore.services import contact_service, friend_request_service
from chatcore.services.notification_service import NotificationFanout
from chatcore.store.base import RelationshipStore

router = APIRouter(prefix="/friends", tags=["friends"])


@router.post(
    "/requests", response_model=FriendRequestResponse, status_code=status.HTTP_201_CREATED
)
async def send_request(
    data: FriendRequestCreate,
    user_id: uuid.UUID = Depends(get_current_user_id),
    store: RelationshipStore = Depends(get_store),
    fanout: NotificationFanout = Depends(get_fanout),
):
    return await friend_request_service.send_request(
        store, user_id, data.receiver_id, fanout=fanout
    )


@router.get("/requests", response_model=list[FriendRequestResponse])
async def list_requests(
    direction: str = Query("all", pattern=r"^(all|sent|received)$"),
    request_status: str | None = Query(
        None, alias="status", pattern=r"^(pending|accepted|rejected)$"
    ),
    user_id: uuid.UUID = Depends(get_current_user_id),
    store: RelationshipStore = Depends(get_store),
):
    return await friend_request_service.list_requests(
        store, user_id, direction=direction, status=request_status
    )


@router.post("/requests/{request_id}/accept", response_model=FriendRequestResponse)
async def accept_request(
    request_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    store: RelationshipStore = Depends(get_store),
    fanout: NotificationFanout = Depends(get_fanout),
):
    return await friend_request_service.accept_request(
        store, request_id, user_id=user_id, fanout=fanout
    )


@router.post("/requests/{request_id}/reject", response_model=FriendRequestResponse)
async def reject_request(
    request_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    store: RelationshipStore = Depends(get_store),
    fanout: NotificationFanout = Depends(get_fanout),
):
    return await friend_request_service.reject_request(
        store, request_id, user_id=user_id, fanout=fanout
    )


@router.delete("/requests/{request_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_request(
    request_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    store: RelationshipStore = Depends(get_store),
):
    await friend_request_service.delete_request(store, request_id, user_id=user_id)


@router.get("/contacts", response_model=list[ContactResponse])
async def list_contacts(
    contact_status: str | None = Query(
        None, alias="status", pattern=r"^(accepted|blocked)$"
    ),
    favorites: bool = False,
    user_id: uuid.UUID = Depends(get_current_user_id),
    store: RelationshipStore = Depends(get_store),
):
    return await contact_service.list_contacts(
        store, user_id, status=contact_status, favorites_only=favorites
    )


@router.put("/contacts/{peer_id}/favorite", response_model=ContactResponse)
async def set_favorite(
    peer_id: uuid.UUID,
    data: FavoriteUpdate,
    user_id: uuid.UUID = Depends(get_current_user_id),
    store: RelationshipStore = Depends(get_store),
):
    return await contact_service.set_favorite(store, user_id, peer_id, data.is_favorite)


@router.put("/contacts/{peer_id}/nickname", response_model=ContactResponse)
async def set_nickname(
    peer_id: uuid.UUID,
    data: NicknameUpdate,
    user_id: uuid.UUID = Depends(get_current_user_id),
    store: RelationshipStore = Depends(get_store),
):
    return await contact_service.set_nickname(store, user_id, peer_id, data.nickname)


@router.post("/contacts/{peer_id}/block", response_model=ContactResponse)
async def block_contact(
    peer_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    store: RelationshipStore = Depends(get_store),
):
    return await contact_service.block_contact(store, user_id, peer_id)


@router.post("/contacts/{peer_id}/unblock", response_model=ContactResponse)
async def unblock_contact(
    peer_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    store: RelationshipStore = Depends(get_store),
):
    return await contact_service.unblock_contact(store, user_id, peer_id)


@router.delete("/contacts/{peer_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_contact(
    peer_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    store: RelationshipStore = Depends(get_store),
):
    await contact_service.remove_contact(store, user_id, peer_id)
