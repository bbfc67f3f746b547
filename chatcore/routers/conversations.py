import uuid

from fastapi import APIRouter, Depends, Response, status

from chatcore.dependencies import get_current_user_id, get_fanout, get_store
from chatcore.schemas.conversation import (
    ConversationResponse,
    DirectConversationCreate,
    DirectConversationResponse,
    GroupCreate,
    ParticipantResponse,
    TypingResponse,
    TypingUpdate,
)
from chatcore.services import conversation_service, ephemeral_service
from chatcore.services.notification_service import NotificationFanout
from chatcore.store.base import RelationshipStore

router = APIRouter(prefix="/conversations", tags=["conversations"])


@router.get("", response_model=list[ConversationResponse])
async def list_conversations(
    user_id: uuid.UUID = Depends(get_current_user_id),
    store: RelationshipStore = Depends(get_store),
):
    return await conversation_service.list_conversations(store, user_id)


@router.post("/direct", response_model=DirectConversationResponse)
async def get_or_create_direct(
    data: DirectConversationCreate,
    response: Response,
    user_id: uuid.UUID = Depends(get_current_user_id),
    store: RelationshipStore = Depends(get_store),
    fanout: NotificationFanout = Depends(get_fanout),
):
    conversation, created = await conversation_service.get_or_create_direct(
        store, user_id, data.peer_id, fanout=fanout
    )
    response.status_code = status.HTTP_201_CREATED if created else status.HTTP_200_OK
    return DirectConversationResponse(
        **ConversationResponse.model_validate(conversation).model_dump(), created=created
    )


@router.post(
    "/groups", response_model=ConversationResponse, status_code=status.HTTP_201_CREATED
)
async def create_group(
    data: GroupCreate,
    user_id: uuid.UUID = Depends(get_current_user_id),
    store: RelationshipStore = Depends(get_store),
    fanout: NotificationFanout = Depends(get_fanout),
):
    return await conversation_service.create_group(
        store, user_id, data.participant_ids, name=data.name, fanout=fanout
    )


@router.get("/{conversation_id}/participants", response_model=list[ParticipantResponse])
async def get_participants(
    conversation_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    store: RelationshipStore = Depends(get_store),
):
    return await conversation_service.get_participants(store, conversation_id, user_id)


@router.put("/{conversation_id}/typing", status_code=status.HTTP_204_NO_CONTENT)
async def set_typing(
    conversation_id: uuid.UUID,
    data: TypingUpdate,
    user_id: uuid.UUID = Depends(get_current_user_id),
    store: RelationshipStore = Depends(get_store),
):
    await conversation_service.get_participants(store, conversation_id, user_id)
    await ephemeral_service.set_typing(store, conversation_id, user_id, data.is_typing)


@router.get("/{conversation_id}/typing", response_model=TypingResponse)
async def get_typing_users(
    conversation_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    store: RelationshipStore = Depends(get_store),
):
    await conversation_service.get_participants(store, conversation_id, user_id)
    user_ids = await ephemeral_service.get_typing_users(store, conversation_id)
    return TypingResponse(conversation_id=conversation_id, user_ids=user_ids)
