"""Disappearing messages (timed and burn-after-read) and typing indicators.

Neither sweep raises per-entry errors to its caller. An entry that fails is
logged, its lease is released, and the next run picks it up again.
"""
import logging
import os
import socket
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from chatcore.config import settings
from chatcore.errors import ChatCoreError, NotFound, UniquenessConflict
from chatcore.models.disappearing_entry import DisappearingQueueEntry
from chatcore.models.disappearing_settings import DisappearingSettings
from chatcore.models.typing_indicator import TypingIndicator
from chatcore.store.base import RelationshipStore

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def sweeper_id() -> str:
    return f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"


@dataclass
class SweepResult:
    claimed: int = 0
    processed: int = 0
    failed: int = 0


# ── Disappearing messages ─────────────────────────────────────────────


async def schedule_message_deletion(
    store: RelationshipStore,
    message_id: uuid.UUID,
    ttl_seconds: int,
    now: datetime | None = None,
    burn_after_read: bool = False,
) -> DisappearingQueueEntry:
    """Queue a message for deletion ``ttl_seconds`` from now.

    Scheduling the same message twice returns the existing entry.
    """
    if ttl_seconds <= 0:
        raise ValueError("ttl_seconds must be positive")
    now = now or utcnow()
    try:
        return await store.create_disappearing_entry(
            message_id,
            now + timedelta(seconds=ttl_seconds),
            burn_after_read=burn_after_read,
        )
    except UniquenessConflict:
        existing = await store.find_disappearing_entry(message_id)
        if existing is None:
            raise
        return existing


async def get_disappearing_settings(
    store: RelationshipStore, user_id: uuid.UUID
) -> DisappearingSettings:
    found = await store.find_disappearing_settings(user_id)
    if found is not None:
        return found
    # Unsaved defaults
    return DisappearingSettings(
        user_id=user_id,
        enabled=False,
        time_to_live=settings.DISAPPEARING_DEFAULT_TTL_SECONDS,
        burn_after_read=False,
    )


async def update_disappearing_settings(
    store: RelationshipStore,
    user_id: uuid.UUID,
    enabled: bool | None = None,
    time_to_live: int | None = None,
    burn_after_read: bool | None = None,
) -> DisappearingSettings:
    if time_to_live is not None and time_to_live <= 0:
        raise ValueError("time_to_live must be positive")
    current = await get_disappearing_settings(store, user_id)
    return await store.upsert_disappearing_settings(
        user_id,
        enabled=current.enabled if enabled is None else enabled,
        time_to_live=current.time_to_live if time_to_live is None else time_to_live,
        burn_after_read=(
            current.burn_after_read if burn_after_read is None else burn_after_read
        ),
    )


async def schedule_disappearing_message(
    store: RelationshipStore,
    message_id: uuid.UUID,
    sender_id: uuid.UUID,
    ttl_seconds: int | None = None,
    burn_after_read: bool | None = None,
    now: datetime | None = None,
) -> DisappearingQueueEntry | None:
    """Schedule a sender's message using their disappearing defaults.

    Explicit ``ttl_seconds`` and ``burn_after_read`` override the defaults.
    Returns None when the sender has disappearing messages off and gave no
    explicit TTL.
    """
    message = await store.find_message(message_id)
    if message is None or message.sender_id != sender_id:
        raise NotFound("Message not found")

    prefs = await get_disappearing_settings(store, sender_id)
    if ttl_seconds is None and not prefs.enabled:
        return None
    return await schedule_message_deletion(
        store,
        message_id,
        ttl_seconds if ttl_seconds is not None else prefs.time_to_live,
        now=now,
        burn_after_read=prefs.burn_after_read if burn_after_read is None else burn_after_read,
    )


async def mark_message_viewed(
    store: RelationshipStore,
    message_id: uuid.UUID,
    user_id: uuid.UUID,
    now: datetime | None = None,
) -> bool:
    """Record that ``user_id`` has seen a message.

    A burn-after-read message is redacted and its queue entry processed as
    soon as every participant other than the sender has viewed it. Returns
    True when this view burned the message.
    """
    now = now or utcnow()
    async with store.atomic():
        message = await store.find_message(message_id)
        if message is None:
            raise NotFound("Message not found")
        participants = {
            p.user_id for p in await store.list_participants(message.conversation_id)
        }
        if user_id not in participants:
            raise NotFound("Message not found")
        if message.is_deleted or user_id == message.sender_id:
            return False

        await store.record_message_view(message_id, user_id, now)
        entry = await store.find_disappearing_entry(message_id)
        if entry is None or entry.processed or not entry.burn_after_read:
            return False

        audience = participants - {message.sender_id}
        if not audience <= set(await store.list_message_viewers(message_id)):
            return False
        await store.redact_message(message_id, now)
        await store.mark_processed(message_id, now)

    logger.info("Message %s burned after being read by all participants", message_id)
    return True


async def sweep_disappearing_messages(
    store: RelationshipStore,
    now: datetime | None = None,
    limit: int | None = None,
    claimed_by: str | None = None,
) -> SweepResult:
    now = now or utcnow()
    limit = limit or settings.DISAPPEARING_SWEEP_BATCH_SIZE
    claimed_by = claimed_by or sweeper_id()
    result = SweepResult()

    try:
        entries = await store.claim_due_disappearing_entries(
            now, limit, claimed_by, settings.DISAPPEARING_CLAIM_LEASE_SECONDS
        )
    except ChatCoreError as exc:
        logger.error("Disappearing sweep could not claim entries: %s", exc.message)
        return result

    result.claimed = len(entries)
    message_ids = [entry.message_id for entry in entries]

    for message_id in message_ids:
        try:
            async with store.atomic():
                await store.redact_message(message_id, now)
                await store.mark_processed(message_id, now)
            result.processed += 1
        except Exception:
            logger.exception("Failed to retire disappearing message %s", message_id)
            result.failed += 1
            try:
                await store.release_claim(message_id)
            except ChatCoreError as exc:
                # Lease expiry frees the entry anyway
                logger.warning("Could not release claim on %s: %s", message_id, exc.message)

    if result.claimed:
        logger.info(
            "Disappearing sweep %s: claimed=%d processed=%d failed=%d",
            claimed_by,
            result.claimed,
            result.processed,
            result.failed,
        )
    return result


async def delete_message_now(
    store: RelationshipStore, message_id: uuid.UUID, now: datetime | None = None
) -> bool:
    """Redact a message immediately. Returns False if it was already gone."""
    now = now or utcnow()
    async with store.atomic():
        redacted = await store.redact_message(message_id, now)
        await store.mark_processed(message_id, now)
    return redacted


# ── Typing indicators ─────────────────────────────────────────────────


def is_indicator_active(
    indicator: TypingIndicator, now: datetime, ttl_seconds: int | None = None
) -> bool:
    ttl = ttl_seconds if ttl_seconds is not None else settings.TYPING_TTL_SECONDS
    if not indicator.is_typing:
        return False
    return ensure_utc(now) - ensure_utc(indicator.updated_at) <= timedelta(seconds=ttl)


async def set_typing(
    store: RelationshipStore,
    conversation_id: uuid.UUID,
    user_id: uuid.UUID,
    is_typing: bool,
    now: datetime | None = None,
) -> TypingIndicator:
    return await store.upsert_typing_indicator(
        conversation_id, user_id, is_typing, now or utcnow()
    )


async def get_typing_users(
    store: RelationshipStore, conversation_id: uuid.UUID, now: datetime | None = None
) -> list[uuid.UUID]:
    now = now or utcnow()
    indicators = await store.list_typing_indicators(conversation_id)
    return [i.user_id for i in indicators if is_indicator_active(i, now)]


async def sweep_typing_indicators(
    store: RelationshipStore, now: datetime | None = None
) -> int:
    now = now or utcnow()
    cutoff = now - timedelta(seconds=settings.TYPING_TTL_SECONDS)
    removed = await store.delete_stale_typing_indicators(cutoff)
    if removed:
        logger.debug("Removed %d stale typing indicators", removed)
    return removed
