import asyncio
import uuid
from types import SimpleNamespace

import pytest

from chatcore.errors import EmptyParticipants, NotFound, NotFriends, UniquenessConflict
from chatcore.models.conversation import direct_pair_key
from chatcore.services import conversation_service, friend_request_service
from chatcore.store.sql import SqlRelationshipStore


class InterleavingStore:
    """Just enough store for the direct-conversation gate, yielding to the
    event loop between every read and write the way a real database round
    trip would."""

    def __init__(self, friends: set[tuple[uuid.UUID, uuid.UUID]]):
        self.friends = friends
        self.conversations: dict[str, SimpleNamespace] = {}
        self.create_calls = 0
        self.conflicts = 0

    async def find_contact(self, owner_id, peer_id):
        await asyncio.sleep(0)
        if (owner_id, peer_id) in self.friends:
            return SimpleNamespace(owner_id=owner_id, peer_id=peer_id, can_chat=True)
        return None

    async def find_direct_conversation(self, user_a, user_b):
        await asyncio.sleep(0)
        return self.conversations.get(direct_pair_key(user_a, user_b))

    async def create_conversation(self, type, participants, created_by, name=None):
        self.create_calls += 1
        await asyncio.sleep(0)
        first, second = (user_id for user_id, _ in participants)
        key = direct_pair_key(first, second)
        if key in self.conversations:
            self.conflicts += 1
            raise UniquenessConflict()
        conversation = SimpleNamespace(
            id=uuid.uuid4(), type=type, name=name, created_by=created_by
        )
        self.conversations[key] = conversation
        return conversation


class StaleReadStore(SqlRelationshipStore):
    """Simulates losing the race: the first lookup misses a conversation that
    another caller has already committed."""

    def __init__(self, db, winner_id: uuid.UUID):
        super().__init__(db)
        self.winner_id = winner_id
        self.stale_reads = 1

    async def find_direct_conversation(self, user_a, user_b):
        if self.stale_reads:
            self.stale_reads -= 1
            return None
        return await super().find_direct_conversation(user_a, user_b)


@pytest.mark.asyncio
async def test_direct_requires_friendship(store, alice, bob):
    with pytest.raises(NotFriends):
        await conversation_service.get_or_create_direct(store, alice, bob)


@pytest.mark.asyncio
async def test_direct_with_self(store, alice):
    with pytest.raises(NotFriends):
        await conversation_service.get_or_create_direct(store, alice, alice)


@pytest.mark.asyncio
async def test_direct_is_idempotent(store, friends):
    alice, bob = friends

    first, created = await conversation_service.get_or_create_direct(store, alice, bob)
    second, created_again = await conversation_service.get_or_create_direct(store, bob, alice)

    assert created is True
    assert created_again is False
    assert first.id == second.id
    assert first.type == "direct"
    assert sorted(p.user_id for p in first.participants) == sorted([alice, bob])
    assert {p.role for p in first.participants} == {"member"}


@pytest.mark.asyncio
async def test_direct_after_accepted_request(store, alice, bob):
    request = await friend_request_service.send_request(store, alice, bob)
    await friend_request_service.accept_request(store, request.id, user_id=bob)

    conversation, created = await conversation_service.get_or_create_direct(store, alice, bob)

    assert created is True
    assert conversation.direct_key == direct_pair_key(alice, bob)


@pytest.mark.asyncio
async def test_store_rejects_second_direct_conversation(store, alice, bob):
    await store.create_conversation("direct", [(alice, "member"), (bob, "member")], alice)

    with pytest.raises(UniquenessConflict):
        await store.create_conversation("direct", [(bob, "member"), (alice, "member")], bob)

    # The failed insert must not poison the session
    assert (await store.find_direct_conversation(alice, bob)) is not None


@pytest.mark.asyncio
async def test_direct_loser_returns_winner(store, db_session, friends):
    alice, bob = friends
    winner = await store.create_conversation(
        "direct", [(bob, "member"), (alice, "member")], created_by=bob
    )
    racing_store = StaleReadStore(db_session, winner.id)

    conversation, created = await conversation_service.get_or_create_direct(
        racing_store, alice, bob
    )

    assert created is False
    assert conversation.id == winner.id


@pytest.mark.asyncio
async def test_concurrent_direct_calls_converge(alice, bob):
    store = InterleavingStore({(alice, bob), (bob, alice)})

    results = await asyncio.gather(
        *[
            conversation_service.get_or_create_direct(
                store, *((alice, bob) if i % 2 else (bob, alice))
            )
            for i in range(10)
        ]
    )

    ids = {conversation.id for conversation, _ in results}
    assert len(ids) == 1
    assert sum(1 for _, created in results if created) == 1
    assert len(store.conversations) == 1
    assert store.conflicts == store.create_calls - 1


@pytest.mark.asyncio
async def test_direct_conflict_without_winner_surfaces(alice, bob):
    class AlwaysConflicting(InterleavingStore):
        async def create_conversation(self, *args, **kwargs):
            self.create_calls += 1
            raise UniquenessConflict()

    store = AlwaysConflicting({(alice, bob)})

    with pytest.raises(UniquenessConflict):
        await conversation_service.get_or_create_direct(store, alice, bob)
    assert store.create_calls == conversation_service.DIRECT_CREATE_ATTEMPTS


@pytest.mark.asyncio
async def test_create_group(store, alice, bob, carol):
    group = await conversation_service.create_group(
        store, alice, [bob, carol, bob, alice], name="  Weekend plans "
    )

    assert group.type == "group"
    assert group.name == "Weekend plans"
    assert group.direct_key is None
    roles = {p.user_id: p.role for p in group.participants}
    assert roles == {alice: "admin", bob: "member", carol: "member"}


@pytest.mark.asyncio
async def test_create_group_needs_no_friendship(store, alice, bob):
    first = await conversation_service.create_group(store, alice, [bob])
    second = await conversation_service.create_group(store, alice, [bob])

    assert first.id != second.id
    assert first.name is None


@pytest.mark.asyncio
async def test_create_group_empty(store, alice):
    with pytest.raises(EmptyParticipants):
        await conversation_service.create_group(store, alice, [])
    with pytest.raises(EmptyParticipants):
        await conversation_service.create_group(store, alice, [alice])


@pytest.mark.asyncio
async def test_list_conversations_and_participants(store, friends, carol):
    alice, bob = friends
    direct, _ = await conversation_service.get_or_create_direct(store, alice, bob)
    group = await conversation_service.create_group(store, carol, [alice])

    mine = await conversation_service.list_conversations(store, alice)
    assert {c.id for c in mine} == {direct.id, group.id}
    assert [c.id for c in await conversation_service.list_conversations(store, bob)] == [
        direct.id
    ]

    participants = await conversation_service.get_participants(store, group.id, alice)
    assert {p.user_id for p in participants} == {alice, carol}
    with pytest.raises(NotFound):
        await conversation_service.get_participants(store, group.id, bob)
