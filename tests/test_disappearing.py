import uuid
from datetime import datetime, timedelta, timezone

import pytest

from chatcore.config import settings
from chatcore.errors import NotFound, StoreUnavailable
from chatcore.models.conversation import Conversation
from chatcore.models.message import Message
from chatcore.services import conversation_service, ephemeral_service
from chatcore.services.sweeper import Sweeper
from chatcore.store.sql import SqlRelationshipStore

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
async def messages(db_session, alice):
    conversation = Conversation(type="group", name="ephemeral", created_by=alice)
    db_session.add(conversation)
    await db_session.flush()
    rows = [
        Message(conversation_id=conversation.id, sender_id=alice, content=f"message {i}")
        for i in range(3)
    ]
    db_session.add_all(rows)
    await db_session.commit()
    return rows


class FlakyRedactStore(SqlRelationshipStore):
    def __init__(self, db, broken_message_id):
        super().__init__(db)
        self.broken_message_id = broken_message_id

    async def redact_message(self, message_id, now):
        if message_id == self.broken_message_id:
            raise RuntimeError("disk on fire")
        return await super().redact_message(message_id, now)


class UnreachableStore(SqlRelationshipStore):
    async def claim_due_disappearing_entries(self, *args, **kwargs):
        raise StoreUnavailable()


@pytest.mark.asyncio
async def test_schedule_is_idempotent(store, messages):
    first = await ephemeral_service.schedule_message_deletion(store, messages[0].id, 30, now=T0)
    second = await ephemeral_service.schedule_message_deletion(
        store, messages[0].id, 90, now=T0
    )

    assert first.id == second.id
    assert first.processed is False


@pytest.mark.asyncio
async def test_schedule_rejects_non_positive_ttl(store, messages):
    with pytest.raises(ValueError):
        await ephemeral_service.schedule_message_deletion(store, messages[0].id, 0)


@pytest.mark.asyncio
async def test_due_entry_is_processed_and_stays_processed(store, db_session, messages):
    message = messages[0]
    await ephemeral_service.schedule_message_deletion(store, message.id, 60, now=T0)

    result = await ephemeral_service.sweep_disappearing_messages(
        store, now=T0 + timedelta(minutes=2)
    )

    assert result == ephemeral_service.SweepResult(claimed=1, processed=1, failed=0)
    entry = await store.find_disappearing_entry(message.id)
    assert entry.processed is True
    assert entry.claimed_by is None
    await db_session.refresh(message)
    assert message.is_deleted is True
    assert message.content is None

    again = await ephemeral_service.sweep_disappearing_messages(
        store, now=T0 + timedelta(minutes=5)
    )
    assert again.claimed == 0
    entry = await store.find_disappearing_entry(message.id)
    assert entry.processed is True


@pytest.mark.asyncio
async def test_future_entries_are_left_alone(store, messages):
    await ephemeral_service.schedule_message_deletion(store, messages[0].id, 60, now=T0)
    await ephemeral_service.schedule_message_deletion(store, messages[1].id, 3600, now=T0)

    result = await ephemeral_service.sweep_disappearing_messages(
        store, now=T0 + timedelta(minutes=5)
    )

    assert result.processed == 1
    assert (await store.find_disappearing_entry(messages[1].id)).processed is False


@pytest.mark.asyncio
async def test_leased_entries_are_skipped_until_lease_expires(store, messages):
    await ephemeral_service.schedule_message_deletion(store, messages[0].id, 60, now=T0)
    sweep_time = T0 + timedelta(minutes=2)
    claimed = await store.claim_due_disappearing_entries(
        sweep_time, limit=10, claimed_by="other-worker", lease_seconds=300
    )
    assert len(claimed) == 1

    blocked = await ephemeral_service.sweep_disappearing_messages(store, now=sweep_time)
    assert blocked.claimed == 0

    # The other worker died; its lease runs out
    recovered = await ephemeral_service.sweep_disappearing_messages(
        store, now=sweep_time + timedelta(seconds=301)
    )
    assert recovered.processed == 1


@pytest.mark.asyncio
async def test_failed_entry_is_released_and_batch_continues(db_session, messages):
    broken, healthy = messages[0], messages[1]
    store = FlakyRedactStore(db_session, broken.id)
    for message in (broken, healthy):
        await ephemeral_service.schedule_message_deletion(store, message.id, 60, now=T0)

    result = await ephemeral_service.sweep_disappearing_messages(
        store, now=T0 + timedelta(minutes=2)
    )

    assert result == ephemeral_service.SweepResult(claimed=2, processed=1, failed=1)
    failed_entry = await store.find_disappearing_entry(broken.id)
    assert failed_entry.processed is False
    assert failed_entry.claimed_by is None
    assert (await store.find_disappearing_entry(healthy.id)).processed is True

    # Next cycle picks the failed entry up again
    store.broken_message_id = None
    retry = await ephemeral_service.sweep_disappearing_messages(
        store, now=T0 + timedelta(minutes=3)
    )
    assert retry.processed == 1


@pytest.mark.asyncio
async def test_claim_failure_yields_empty_result(db_session, messages):
    store = UnreachableStore(db_session)

    result = await ephemeral_service.sweep_disappearing_messages(store, now=T0)

    assert result == ephemeral_service.SweepResult()


@pytest.mark.asyncio
async def test_batch_limit(store, messages):
    for message in messages:
        await ephemeral_service.schedule_message_deletion(store, message.id, 60, now=T0)

    result = await ephemeral_service.sweep_disappearing_messages(
        store, now=T0 + timedelta(minutes=2), limit=2
    )

    assert result.claimed == 2
    rest = await ephemeral_service.sweep_disappearing_messages(
        store, now=T0 + timedelta(minutes=2), limit=2
    )
    assert rest.claimed == 1


@pytest.mark.asyncio
async def test_delete_message_now(store, db_session, messages):
    message = messages[2]
    await ephemeral_service.schedule_message_deletion(store, message.id, 3600, now=T0)

    assert await ephemeral_service.delete_message_now(store, message.id, now=T0) is True
    assert await ephemeral_service.delete_message_now(store, message.id, now=T0) is False

    await db_session.refresh(message)
    assert message.is_deleted is True
    assert (await store.find_disappearing_entry(message.id)).processed is True


@pytest.mark.asyncio
async def test_sweeper_runs_in_own_session(session_factory, store, messages):
    await ephemeral_service.schedule_message_deletion(store, messages[0].id, 1, now=T0)
    await store.db.commit()

    result = await Sweeper(session_factory).run_disappearing_once()

    assert result.processed == 1


@pytest.fixture
async def group_message(store, db_session, alice, bob, carol):
    group = await conversation_service.create_group(store, alice, [bob, carol], name="burn")
    message = Message(conversation_id=group.id, sender_id=alice, content="read me once")
    db_session.add(message)
    await db_session.commit()
    return message


@pytest.mark.asyncio
async def test_burn_after_read_waits_for_every_recipient(store, group_message, bob, carol):
    await ephemeral_service.schedule_message_deletion(
        store, group_message.id, 3600, now=T0, burn_after_read=True
    )

    assert await ephemeral_service.mark_message_viewed(store, group_message.id, bob) is False
    assert (await store.find_message(group_message.id)).is_deleted is False

    assert await ephemeral_service.mark_message_viewed(store, group_message.id, carol) is True
    message = await store.find_message(group_message.id)
    assert message.is_deleted is True
    assert message.content is None
    assert (await store.find_disappearing_entry(group_message.id)).processed is True
    assert await ephemeral_service.mark_message_viewed(store, group_message.id, bob) is False


@pytest.mark.asyncio
async def test_repeat_view_does_not_count_twice(store, group_message, bob):
    await ephemeral_service.schedule_message_deletion(
        store, group_message.id, 3600, now=T0, burn_after_read=True
    )

    await ephemeral_service.mark_message_viewed(store, group_message.id, bob)
    assert await ephemeral_service.mark_message_viewed(store, group_message.id, bob) is False
    assert await store.list_message_viewers(group_message.id) == [bob]


@pytest.mark.asyncio
async def test_view_without_burn_flag_keeps_message(store, group_message, bob, carol):
    await ephemeral_service.schedule_message_deletion(store, group_message.id, 3600, now=T0)

    for viewer in (bob, carol):
        assert await ephemeral_service.mark_message_viewed(store, group_message.id, viewer) is False

    assert (await store.find_message(group_message.id)).is_deleted is False


@pytest.mark.asyncio
async def test_sender_view_is_ignored(store, group_message, alice):
    await ephemeral_service.schedule_message_deletion(
        store, group_message.id, 3600, now=T0, burn_after_read=True
    )

    assert await ephemeral_service.mark_message_viewed(store, group_message.id, alice) is False
    assert await store.list_message_viewers(group_message.id) == []


@pytest.mark.asyncio
async def test_outsider_cannot_view(store, group_message):
    with pytest.raises(NotFound):
        await ephemeral_service.mark_message_viewed(store, group_message.id, uuid.uuid4())
    with pytest.raises(NotFound):
        await ephemeral_service.mark_message_viewed(store, uuid.uuid4(), uuid.uuid4())


@pytest.mark.asyncio
async def test_disappearing_settings_defaults(store, alice):
    prefs = await ephemeral_service.get_disappearing_settings(store, alice)

    assert prefs.enabled is False
    assert prefs.time_to_live == settings.DISAPPEARING_DEFAULT_TTL_SECONDS
    assert prefs.burn_after_read is False
    assert await store.find_disappearing_settings(alice) is None


@pytest.mark.asyncio
async def test_update_disappearing_settings_merges(store, alice):
    await ephemeral_service.update_disappearing_settings(store, alice, enabled=True)
    prefs = await ephemeral_service.update_disappearing_settings(
        store, alice, time_to_live=600
    )

    assert prefs.enabled is True
    assert prefs.time_to_live == 600
    assert prefs.burn_after_read is False
    with pytest.raises(ValueError):
        await ephemeral_service.update_disappearing_settings(store, alice, time_to_live=0)


@pytest.mark.asyncio
async def test_schedule_uses_sender_defaults(store, messages, alice, bob):
    assert (
        await ephemeral_service.schedule_disappearing_message(
            store, messages[0].id, alice, now=T0
        )
        is None
    )

    await ephemeral_service.update_disappearing_settings(
        store, alice, enabled=True, time_to_live=600, burn_after_read=True
    )
    entry = await ephemeral_service.schedule_disappearing_message(
        store, messages[0].id, alice, now=T0
    )

    assert ephemeral_service.ensure_utc(entry.delete_at) == T0 + timedelta(seconds=600)
    assert entry.burn_after_read is True
    with pytest.raises(NotFound):
        await ephemeral_service.schedule_disappearing_message(store, messages[1].id, bob)


@pytest.mark.asyncio
async def test_explicit_ttl_overrides_disabled_defaults(store, messages, alice):
    entry = await ephemeral_service.schedule_disappearing_message(
        store, messages[0].id, alice, ttl_seconds=30, burn_after_read=True, now=T0
    )

    assert ephemeral_service.ensure_utc(entry.delete_at) == T0 + timedelta(seconds=30)
    assert entry.burn_after_read is True
