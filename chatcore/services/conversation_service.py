import logging
import uuid

from chatcore.errors import EmptyParticipants, NotFound, NotFriends, UniquenessConflict
from chatcore.models.conversation import CONVERSATION_DIRECT, CONVERSATION_GROUP, Conversation
from chatcore.models.conversation_participant import ROLE_ADMIN, ROLE_MEMBER, ConversationParticipant
from chatcore.services import notification_service
from chatcore.services.notification_service import NotificationFanout
from chatcore.store.base import RelationshipStore

logger = logging.getLogger(__name__)

# Creates attempted before a uniqueness conflict is surfaced
DIRECT_CREATE_ATTEMPTS = 2


async def get_or_create_direct(
    store: RelationshipStore,
    user_id: uuid.UUID,
    peer_id: uuid.UUID,
    fanout: NotificationFanout | None = None,
) -> tuple[Conversation, bool]:
    """Return the direct conversation for the pair, creating it if needed.

    Returns ``(conversation, created)``. Concurrent callers for the same pair
    converge on one conversation: the store rejects a second direct row for
    the pair, and the loser re-reads the winner's row instead of failing.
    """
    if user_id == peer_id:
        raise NotFriends()
    contact = await store.find_contact(user_id, peer_id)
    if contact is None or not contact.can_chat:
        raise NotFriends()

    existing = await store.find_direct_conversation(user_id, peer_id)
    if existing is not None:
        return existing, False

    for attempt in range(1, DIRECT_CREATE_ATTEMPTS + 1):
        try:
            conversation = await store.create_conversation(
                CONVERSATION_DIRECT,
                [(user_id, ROLE_MEMBER), (peer_id, ROLE_MEMBER)],
                created_by=user_id,
            )
        except UniquenessConflict:
            logger.info(
                "Lost direct conversation race for %s/%s (attempt %d), re-reading",
                user_id,
                peer_id,
                attempt,
            )
            existing = await store.find_direct_conversation(user_id, peer_id)
            if existing is not None:
                return existing, False
            continue

        await notification_service.publish(
            fanout,
            notification_service.conversation_created(conversation, [user_id, peer_id]),
        )
        return conversation, True

    raise UniquenessConflict("Could not provision direct conversation, try again")


async def create_group(
    store: RelationshipStore,
    creator_id: uuid.UUID,
    participant_ids: list[uuid.UUID],
    name: str | None = None,
    fanout: NotificationFanout | None = None,
) -> Conversation:
    """Create a group. No friendship check; the creator joins as admin."""
    members: list[uuid.UUID] = []
    for participant_id in participant_ids:
        if participant_id != creator_id and participant_id not in members:
            members.append(participant_id)
    if not members:
        raise EmptyParticipants()

    name = name.strip() if name else None
    participants = [(creator_id, ROLE_ADMIN)] + [(m, ROLE_MEMBER) for m in members]
    conversation = await store.create_conversation(
        CONVERSATION_GROUP, participants, created_by=creator_id, name=name or None
    )

    await notification_service.publish(
        fanout,
        notification_service.conversation_created(conversation, [creator_id, *members]),
    )
    return conversation


async def list_conversations(
    store: RelationshipStore, user_id: uuid.UUID
) -> list[Conversation]:
    return await store.list_conversations(user_id)


async def get_participants(
    store: RelationshipStore, conversation_id: uuid.UUID, user_id: uuid.UUID
) -> list[ConversationParticipant]:
    participants = await store.list_participants(conversation_id)
    if not any(p.user_id == user_id for p in participants):
        raise NotFound("Conversation not found")
    return participants
