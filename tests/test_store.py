import asyncio

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from chatcore.errors import StoreUnavailable, UniquenessConflict
from chatcore.models.contact import CONTACT_ACCEPTED, CONTACT_BLOCKED
from chatcore.models.conversation import direct_pair_key
from chatcore.models.friend_request import REQUEST_PENDING, REQUEST_REJECTED
from chatcore.models.relationship_lock import RelationshipLock
from chatcore.store.sql import SqlRelationshipStore


@pytest.mark.asyncio
async def test_slow_store_call_times_out(db_session, alice, bob, monkeypatch):
    store = SqlRelationshipStore(db_session, timeout=0.01)

    async def slow_execute(*args, **kwargs):
        await asyncio.sleep(1)

    monkeypatch.setattr(db_session, "execute", slow_execute)

    with pytest.raises(StoreUnavailable):
        await store.find_contact(alice, bob)


@pytest.mark.asyncio
async def test_connection_error_maps_to_store_unavailable(db_session, alice, bob, monkeypatch):
    store = SqlRelationshipStore(db_session)

    async def broken_execute(*args, **kwargs):
        raise OperationalError("SELECT 1", {}, Exception("connection refused"))

    monkeypatch.setattr(db_session, "execute", broken_execute)

    with pytest.raises(StoreUnavailable):
        await store.find_friend_request_between(alice, bob)


@pytest.mark.asyncio
async def test_upsert_contact_pair_writes_both_directions(store, alice, bob):
    forward, backward = await store.upsert_contact_pair(alice, bob, CONTACT_ACCEPTED, True)

    assert (forward.owner_id, forward.peer_id) == (alice, bob)
    assert (backward.owner_id, backward.peer_id) == (bob, alice)

    await store.upsert_contact_pair(bob, alice, CONTACT_BLOCKED, False)
    for owner, peer in ((alice, bob), (bob, alice)):
        contact = await store.find_contact(owner, peer)
        assert contact.status == CONTACT_BLOCKED
        assert contact.can_chat is False
    assert len(await store.list_contacts(alice)) == 1


@pytest.mark.asyncio
async def test_conditional_upsert_loses_race(store, alice, bob):
    await store.upsert_friend_request(alice, bob, REQUEST_PENDING, attempt_count=1)

    with pytest.raises(UniquenessConflict):
        await store.upsert_friend_request(
            alice, bob, REQUEST_PENDING, attempt_count=2, expected_status=REQUEST_REJECTED
        )


@pytest.mark.asyncio
async def test_transition_requires_expected_status(store, alice, bob):
    request = await store.upsert_friend_request(alice, bob, REQUEST_PENDING, attempt_count=1)

    moved = await store.transition_friend_request(request.id, REQUEST_PENDING, REQUEST_REJECTED)
    assert moved.status == REQUEST_REJECTED
    assert (
        await store.transition_friend_request(request.id, REQUEST_PENDING, REQUEST_REJECTED)
        is None
    )


@pytest.mark.asyncio
async def test_atomic_rolls_back_every_write(store, alice, bob):
    with pytest.raises(RuntimeError):
        async with store.atomic():
            await store.upsert_contact_pair(alice, bob, CONTACT_ACCEPTED, True)
            raise RuntimeError("abort")

    assert await store.find_contact(alice, bob) is None
    assert await store.find_contact(bob, alice) is None


@pytest.mark.asyncio
async def test_lock_pair_keeps_one_row_per_pair(store, db_session, alice, bob):
    await store.lock_pair(alice, bob)
    await store.lock_pair(bob, alice)

    rows = (await db_session.execute(select(RelationshipLock))).scalars().all()
    assert [row.pair_key for row in rows] == [direct_pair_key(alice, bob)]


@pytest.mark.asyncio
async def test_request_attempts_ledger(store, alice, bob):
    assert await store.find_request_attempts(alice, bob) == 0

    await store.save_request_attempts(alice, bob, 2)
    await store.save_request_attempts(alice, bob, 3)

    assert await store.find_request_attempts(alice, bob) == 3
    assert await store.find_request_attempts(bob, alice) == 0
    await store.clear_request_attempts(bob, alice)
    assert await store.find_request_attempts(alice, bob) == 0
