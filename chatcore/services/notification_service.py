import asyncio
import json
import logging
import uuid
from dataclasses import dataclass, field

from chatcore.config import settings
from chatcore.errors import NotFound
from chatcore.models.conversation import Conversation
from chatcore.models.friend_request import FriendRequest
from chatcore.models.notification import Notification
from chatcore.store.base import RelationshipStore

logger = logging.getLogger(__name__)

FRIEND_REQUEST_CREATED = "friend_request.created"
FRIEND_REQUEST_ACCEPTED = "friend_request.accepted"
FRIEND_REQUEST_REJECTED = "friend_request.rejected"
CONVERSATION_CREATED = "conversation.created"


@dataclass(frozen=True)
class NotificationRecord:
    """One outbound notification for one user.

    Delivery is at-least-once; consumers deduplicate on ``key``.
    """

    type: str
    user_id: uuid.UUID
    subject_id: uuid.UUID
    object_id: uuid.UUID
    payload: dict = field(default_factory=dict)

    @property
    def key(self) -> tuple[str, uuid.UUID, uuid.UUID]:
        return (self.type, self.subject_id, self.object_id)

    def to_message(self) -> dict:
        return {
            "type": self.type,
            "user_id": str(self.user_id),
            "subject_id": str(self.subject_id),
            "object_id": str(self.object_id),
            "payload": self.payload,
        }


def _request_payload(request: FriendRequest) -> dict:
    return {
        "request_id": str(request.id),
        "sender_id": str(request.sender_id),
        "receiver_id": str(request.receiver_id),
        "status": request.status,
        "attempt_count": request.attempt_count,
    }


def friend_request_created(request: FriendRequest) -> list[NotificationRecord]:
    return [
        NotificationRecord(
            type=FRIEND_REQUEST_CREATED,
            user_id=request.receiver_id,
            subject_id=request.sender_id,
            object_id=request.id,
            payload=_request_payload(request),
        )
    ]


def friend_request_accepted(
    request: FriendRequest, implicit: bool = False
) -> list[NotificationRecord]:
    """The sender learns their request was accepted. On an implicit accept
    both sides acted, so both are told."""
    recipients = [request.sender_id]
    if implicit:
        recipients.append(request.receiver_id)
    return [
        NotificationRecord(
            type=FRIEND_REQUEST_ACCEPTED,
            user_id=recipient,
            subject_id=request.receiver_id,
            object_id=request.id,
            payload={**_request_payload(request), "implicit": implicit},
        )
        for recipient in recipients
    ]


def friend_request_rejected(request: FriendRequest) -> list[NotificationRecord]:
    return [
        NotificationRecord(
            type=FRIEND_REQUEST_REJECTED,
            user_id=request.sender_id,
            subject_id=request.receiver_id,
            object_id=request.id,
            payload=_request_payload(request),
        )
    ]


def conversation_created(
    conversation: Conversation, participant_ids: list[uuid.UUID]
) -> list[NotificationRecord]:
    payload = {
        "conversation_id": str(conversation.id),
        "type": conversation.type,
        "name": conversation.name,
    }
    return [
        NotificationRecord(
            type=CONVERSATION_CREATED,
            user_id=user_id,
            subject_id=conversation.created_by,
            object_id=conversation.id,
            payload=payload,
        )
        for user_id in participant_ids
        if user_id != conversation.created_by
    ]


class StoreNotificationChannel:
    """In-app inbox: one notifications row per record."""

    def __init__(self, store: RelationshipStore):
        self.store = store

    async def deliver(self, record: NotificationRecord) -> None:
        # Own savepoint so a failed insert leaves the caller's transaction usable
        async with self.store.atomic():
            await self.store.add_notification(
                user_id=record.user_id,
                type=record.type,
                subject_id=record.subject_id,
                object_id=record.object_id,
                payload=record.payload,
            )


class RedisNotificationChannel:
    """Realtime channel: publishes JSON to ``notifications:<user_id>``."""

    def __init__(
        self, redis_client, prefix: str = "notifications", timeout: float | None = None
    ):
        self.redis = redis_client
        self.prefix = prefix
        self.timeout = (
            timeout if timeout is not None else settings.NOTIFICATION_PUBLISH_TIMEOUT_SECONDS
        )

    async def deliver(self, record: NotificationRecord) -> None:
        await asyncio.wait_for(
            self.redis.publish(
                f"{self.prefix}:{record.user_id}",
                json.dumps(record.to_message(), default=str),
            ),
            timeout=self.timeout,
        )


class NotificationFanout:
    """Delivers records to ``channels`` at once and to ``after_commit``
    channels only when ``flush`` is called.

    Channels that write into the caller's transaction go in ``channels``.
    Anything visible outside it, such as pub/sub, goes in ``after_commit``.
    """

    def __init__(self, channels=None, after_commit=None):
        self.channels = list(channels or [])
        self.after_commit = list(after_commit or [])
        self._deferred: list[NotificationRecord] = []

    async def _deliver(self, records: list[NotificationRecord], channels) -> int:
        delivered = 0
        for record in records:
            for channel in channels:
                try:
                    await channel.deliver(record)
                    delivered += 1
                except Exception as exc:
                    logger.warning(
                        "Notification %s for %s via %s failed: %r",
                        record.type,
                        record.user_id,
                        type(channel).__name__,
                        exc,
                    )
        return delivered

    async def publish(self, records: list[NotificationRecord]) -> int:
        """Deliver every record on every immediate channel.

        Returns the number of successful deliveries. Never raises: a failed
        channel must not undo or block the transition that produced the record.
        """
        if self.after_commit:
            self._deferred.extend(records)
        return await self._deliver(records, self.channels)

    async def flush(self) -> int:
        """Deliver deferred records; call once the transaction has committed."""
        records, self._deferred = self._deferred, []
        return await self._deliver(records, self.after_commit)


async def publish(fanout: NotificationFanout | None, records: list[NotificationRecord]) -> int:
    if fanout is None or not records:
        return 0
    return await fanout.publish(records)


async def list_notifications(
    store: RelationshipStore, user_id: uuid.UUID, unread_only: bool = False
) -> list[Notification]:
    return await store.list_notifications(user_id, unread_only=unread_only)


async def mark_notification_read(
    store: RelationshipStore, notification_id: uuid.UUID, user_id: uuid.UUID
) -> None:
    if not await store.mark_notification_read(notification_id, user_id):
        raise NotFound("Notification not found")


async def mark_all_notifications_read(store: RelationshipStore, user_id: uuid.UUID) -> int:
    return await store.mark_all_notifications_read(user_id)
