import uuid

from chatcore.errors import ContactBlocked, NotFound
from chatcore.models.contact import CONTACT_ACCEPTED, CONTACT_BLOCKED, Contact
from chatcore.store.base import RelationshipStore


async def list_contacts(
    store: RelationshipStore,
    owner_id: uuid.UUID,
    status: str | None = None,
    favorites_only: bool = False,
) -> list[Contact]:
    return await store.list_contacts(owner_id, status=status, favorites_only=favorites_only)


async def set_favorite(
    store: RelationshipStore, owner_id: uuid.UUID, peer_id: uuid.UUID, is_favorite: bool
) -> Contact:
    contact = await store.update_contact(owner_id, peer_id, is_favorite=is_favorite)
    if contact is None:
        raise NotFound("Contact not found")
    return contact


async def block_contact(
    store: RelationshipStore, owner_id: uuid.UUID, peer_id: uuid.UUID
) -> Contact:
    """Block a contact. Both edges stop allowing chat; only the owner's edge
    records who blocked."""
    async with store.atomic():
        if await store.find_contact(owner_id, peer_id) is None:
            raise NotFound("Contact not found")
        await store.upsert_contact_pair(owner_id, peer_id, CONTACT_BLOCKED, can_chat=False)
        return await store.update_contact(owner_id, peer_id, is_blocked=True)


async def unblock_contact(
    store: RelationshipStore, owner_id: uuid.UUID, peer_id: uuid.UUID
) -> Contact:
    async with store.atomic():
        contact = await store.find_contact(owner_id, peer_id)
        if contact is None:
            raise NotFound("Contact not found")
        if not contact.is_blocked:
            return contact

        await store.update_contact(owner_id, peer_id, is_blocked=False)
        peer_edge = await store.find_contact(peer_id, owner_id)
        if peer_edge is None or not peer_edge.is_blocked:
            await store.upsert_contact_pair(owner_id, peer_id, CONTACT_ACCEPTED, can_chat=True)
        return await store.find_contact(owner_id, peer_id)


async def set_nickname(
    store: RelationshipStore, owner_id: uuid.UUID, peer_id: uuid.UUID, nickname: str | None
) -> Contact:
    """Owner-only display name for a contact. Blank clears it."""
    nickname = nickname.strip() if nickname else None
    contact = await store.update_contact(owner_id, peer_id, nickname=nickname or None)
    if contact is None:
        raise NotFound("Contact not found")
    return contact


async def remove_contact(
    store: RelationshipStore, owner_id: uuid.UUID, peer_id: uuid.UUID
) -> None:
    """Unfriend: both edges go at once.

    Refused while either edge carries a block; the blocker unblocks first.
    """
    async with store.atomic():
        edges = [
            await store.find_contact(owner_id, peer_id),
            await store.find_contact(peer_id, owner_id),
        ]
        if all(edge is None for edge in edges):
            raise NotFound("Contact not found")
        if any(edge is not None and edge.is_blocked for edge in edges):
            raise ContactBlocked("Unblock this contact before removing it")
        await store.delete_contact_pair(owner_id, peer_id)
