import asyncio
import functools
import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timedelta

from sqlalchemy import and_, delete, or_, select, update
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from chatcore.config import settings
from chatcore.errors import StoreUnavailable, UniquenessConflict
from chatcore.models.contact import Contact
from chatcore.models.conversation import CONVERSATION_DIRECT, Conversation, direct_pair_key
from chatcore.models.conversation_participant import ConversationParticipant
from chatcore.models.disappearing_entry import DisappearingQueueEntry
from chatcore.models.disappearing_settings import DisappearingSettings
from chatcore.models.friend_request import FriendRequest
from chatcore.models.message import Message
from chatcore.models.message_view import MessageView
from chatcore.models.notification import Notification
from chatcore.models.relationship_lock import RelationshipLock
from chatcore.models.request_attempts import FriendRequestAttempts
from chatcore.models.typing_indicator import TypingIndicator
from chatcore.store.base import RelationshipStore

logger = logging.getLogger(__name__)


def _guarded(method):
    """Bound a store call by the store timeout and map connection failures."""

    @functools.wraps(method)
    async def wrapper(self, *args, **kwargs):
        try:
            return await asyncio.wait_for(
                method(self, *args, **kwargs), timeout=self.timeout
            )
        except asyncio.TimeoutError as exc:
            logger.warning(
                "Store call %s timed out after %.1fs", method.__name__, self.timeout
            )
            raise StoreUnavailable() from exc
        except (OperationalError, InterfaceError) as exc:
            logger.warning("Store call %s failed: %s", method.__name__, exc)
            raise StoreUnavailable() from exc

    return wrapper


class SqlRelationshipStore(RelationshipStore):
    """RelationshipStore over a SQLAlchemy async session.

    The session's outer transaction is owned by the caller (request scope or
    sweep run); multi-row writes here run in savepoints so a failed write
    never leaves half of it behind.
    """

    def __init__(self, db: AsyncSession, timeout: float | None = None):
        self.db = db
        self.timeout = timeout if timeout is not None else settings.STORE_TIMEOUT_SECONDS

    @asynccontextmanager
    async def atomic(self):
        async with self.db.begin_nested():
            yield

    async def _insert(self, obj, conflict_message: str):
        try:
            async with self.db.begin_nested():
                self.db.add(obj)
                await self.db.flush()
        except IntegrityError as exc:
            raise UniquenessConflict(conflict_message) from exc
        return obj

    # ── Friend requests ───────────────────────────────────────────────

    @_guarded
    async def lock_pair(self, user_a: uuid.UUID, user_b: uuid.UUID) -> None:
        key = direct_pair_key(user_a, user_b)
        query = (
            select(RelationshipLock.id)
            .where(RelationshipLock.pair_key == key)
            .with_for_update()
        )
        if (await self.db.execute(query)).scalar_one_or_none() is not None:
            return
        try:
            # An uncommitted insert holds the same key against other writers
            await self._insert(RelationshipLock(pair_key=key), "Pair lock already exists")
        except UniquenessConflict:
            # Created by a concurrent writer; wait on its row instead
            await self.db.execute(query)

    @_guarded
    async def find_friend_request(self, request_id: uuid.UUID) -> FriendRequest | None:
        result = await self.db.execute(
            select(FriendRequest)
            .where(FriendRequest.id == request_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    @_guarded
    async def find_friend_request_between(
        self, sender_id: uuid.UUID, receiver_id: uuid.UUID
    ) -> FriendRequest | None:
        result = await self.db.execute(
            select(FriendRequest)
            .where(
                FriendRequest.sender_id == sender_id,
                FriendRequest.receiver_id == receiver_id,
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    @_guarded
    async def upsert_friend_request(
        self,
        sender_id: uuid.UUID,
        receiver_id: uuid.UUID,
        status: str,
        attempt_count: int,
        expected_status: str | None = None,
    ) -> FriendRequest:
        result = await self.db.execute(
            select(FriendRequest).where(
                FriendRequest.sender_id == sender_id,
                FriendRequest.receiver_id == receiver_id,
            )
        )
        existing = result.scalar_one_or_none()
        if existing is None:
            request = FriendRequest(
                sender_id=sender_id,
                receiver_id=receiver_id,
                status=status,
                attempt_count=attempt_count,
            )
            return await self._insert(request, "Friend request already exists")

        stmt = update(FriendRequest).where(FriendRequest.id == existing.id)
        if expected_status is not None:
            stmt = stmt.where(FriendRequest.status == expected_status)
        updated = await self.db.execute(
            stmt.values(status=status, attempt_count=attempt_count)
        )
        if updated.rowcount == 0:
            raise UniquenessConflict("Friend request changed concurrently")
        await self.db.refresh(existing)
        return existing

    @_guarded
    async def transition_friend_request(
        self, request_id: uuid.UUID, from_status: str, to_status: str
    ) -> FriendRequest | None:
        updated = await self.db.execute(
            update(FriendRequest)
            .where(FriendRequest.id == request_id, FriendRequest.status == from_status)
            .values(status=to_status)
        )
        if updated.rowcount == 0:
            return None
        request = await self.db.get(FriendRequest, request_id)
        await self.db.refresh(request)
        return request

    @_guarded
    async def delete_friend_request(self, request_id: uuid.UUID) -> bool:
        result = await self.db.execute(
            delete(FriendRequest).where(FriendRequest.id == request_id)
        )
        return result.rowcount > 0

    @_guarded
    async def list_friend_requests(
        self, user_id: uuid.UUID, direction: str = "all", status: str | None = None
    ) -> list[FriendRequest]:
        if direction == "received":
            clause = FriendRequest.receiver_id == user_id
        elif direction == "sent":
            clause = FriendRequest.sender_id == user_id
        else:
            clause = or_(
                FriendRequest.sender_id == user_id,
                FriendRequest.receiver_id == user_id,
            )
        query = select(FriendRequest).where(clause)
        if status is not None:
            query = query.where(FriendRequest.status == status)
        result = await self.db.execute(
            query.order_by(FriendRequest.updated_at.desc(), FriendRequest.created_at.desc())
        )
        return list(result.scalars().all())

    @_guarded
    async def find_request_attempts(
        self, sender_id: uuid.UUID, receiver_id: uuid.UUID
    ) -> int:
        result = await self.db.execute(
            select(FriendRequestAttempts.attempt_count).where(
                FriendRequestAttempts.sender_id == sender_id,
                FriendRequestAttempts.receiver_id == receiver_id,
            )
        )
        return result.scalar_one_or_none() or 0

    @_guarded
    async def save_request_attempts(
        self, sender_id: uuid.UUID, receiver_id: uuid.UUID, attempt_count: int
    ) -> None:
        result = await self.db.execute(
            select(FriendRequestAttempts).where(
                FriendRequestAttempts.sender_id == sender_id,
                FriendRequestAttempts.receiver_id == receiver_id,
            )
        )
        ledger = result.scalar_one_or_none()
        if ledger is None:
            ledger = FriendRequestAttempts(sender_id=sender_id, receiver_id=receiver_id)
            self.db.add(ledger)
        ledger.attempt_count = attempt_count
        await self.db.flush()

    @_guarded
    async def clear_request_attempts(self, user_a: uuid.UUID, user_b: uuid.UUID) -> None:
        await self.db.execute(
            delete(FriendRequestAttempts)
            .where(
                or_(
                    and_(
                        FriendRequestAttempts.sender_id == user_a,
                        FriendRequestAttempts.receiver_id == user_b,
                    ),
                    and_(
                        FriendRequestAttempts.sender_id == user_b,
                        FriendRequestAttempts.receiver_id == user_a,
                    ),
                )
            )
            .execution_options(synchronize_session=False)
        )

    # ── Contacts ──────────────────────────────────────────────────────

    @_guarded
    async def find_contact(self, owner_id: uuid.UUID, peer_id: uuid.UUID) -> Contact | None:
        result = await self.db.execute(
            select(Contact)
            .where(Contact.owner_id == owner_id, Contact.peer_id == peer_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    @_guarded
    async def list_contacts(
        self, owner_id: uuid.UUID, status: str | None = None, favorites_only: bool = False
    ) -> list[Contact]:
        query = select(Contact).where(Contact.owner_id == owner_id)
        if status is not None:
            query = query.where(Contact.status == status)
        if favorites_only:
            query = query.where(Contact.is_favorite.is_(True))
        result = await self.db.execute(query.order_by(Contact.created_at))
        return list(result.scalars().all())

    @_guarded
    async def upsert_contact_pair(
        self, user_a: uuid.UUID, user_b: uuid.UUID, status: str, can_chat: bool
    ) -> tuple[Contact, Contact]:
        result = await self.db.execute(
            select(Contact).where(
                or_(
                    and_(Contact.owner_id == user_a, Contact.peer_id == user_b),
                    and_(Contact.owner_id == user_b, Contact.peer_id == user_a),
                )
            )
        )
        rows = {(c.owner_id, c.peer_id): c for c in result.scalars().all()}

        pair = []
        try:
            async with self.db.begin_nested():
                for owner, peer in ((user_a, user_b), (user_b, user_a)):
                    contact = rows.get((owner, peer))
                    if contact is None:
                        contact = Contact(owner_id=owner, peer_id=peer)
                        self.db.add(contact)
                    contact.status = status
                    contact.can_chat = can_chat
                    pair.append(contact)
                await self.db.flush()
        except IntegrityError as exc:
            raise UniquenessConflict("Contact pair changed concurrently") from exc
        return pair[0], pair[1]

    @_guarded
    async def update_contact(
        self, owner_id: uuid.UUID, peer_id: uuid.UUID, **fields
    ) -> Contact | None:
        result = await self.db.execute(
            select(Contact).where(Contact.owner_id == owner_id, Contact.peer_id == peer_id)
        )
        contact = result.scalar_one_or_none()
        if contact is None:
            return None
        for key, value in fields.items():
            setattr(contact, key, value)
        await self.db.flush()
        return contact

    @_guarded
    async def delete_contact_pair(self, user_a: uuid.UUID, user_b: uuid.UUID) -> int:
        result = await self.db.execute(
            delete(Contact).where(
                or_(
                    and_(Contact.owner_id == user_a, Contact.peer_id == user_b),
                    and_(Contact.owner_id == user_b, Contact.peer_id == user_a),
                )
            )
        )
        return result.rowcount

    # ── Conversations ─────────────────────────────────────────────────

    @_guarded
    async def find_direct_conversation(
        self, user_a: uuid.UUID, user_b: uuid.UUID
    ) -> Conversation | None:
        result = await self.db.execute(
            select(Conversation).where(
                Conversation.direct_key == direct_pair_key(user_a, user_b)
            )
        )
        return result.scalar_one_or_none()

    @_guarded
    async def create_conversation(
        self,
        type: str,
        participants: list[tuple[uuid.UUID, str]],
        created_by: uuid.UUID,
        name: str | None = None,
    ) -> Conversation:
        direct_key = None
        if type == CONVERSATION_DIRECT:
            first, second = (user_id for user_id, _ in participants)
            direct_key = direct_pair_key(first, second)

        conversation = Conversation(
            type=type,
            name=name,
            created_by=created_by,
            direct_key=direct_key,
        )
        conversation.participants = [
            ConversationParticipant(user_id=user_id, role=role)
            for user_id, role in participants
        ]
        return await self._insert(
            conversation, "Direct conversation already exists for this pair"
        )

    @_guarded
    async def list_conversations(self, user_id: uuid.UUID) -> list[Conversation]:
        result = await self.db.execute(
            select(Conversation)
            .where(
                Conversation.id.in_(
                    select(ConversationParticipant.conversation_id).where(
                        ConversationParticipant.user_id == user_id
                    )
                )
            )
            .order_by(Conversation.created_at.desc())
        )
        return list(result.scalars().all())

    @_guarded
    async def list_participants(
        self, conversation_id: uuid.UUID
    ) -> list[ConversationParticipant]:
        result = await self.db.execute(
            select(ConversationParticipant)
            .where(ConversationParticipant.conversation_id == conversation_id)
            .order_by(ConversationParticipant.joined_at)
        )
        return list(result.scalars().all())

    # ── Disappearing messages ─────────────────────────────────────────

    @_guarded
    async def create_disappearing_entry(
        self, message_id: uuid.UUID, delete_at: datetime, burn_after_read: bool = False
    ) -> DisappearingQueueEntry:
        entry = DisappearingQueueEntry(
            message_id=message_id, delete_at=delete_at, burn_after_read=burn_after_read
        )
        return await self._insert(entry, "Message is already scheduled for deletion")

    @_guarded
    async def find_disappearing_entry(
        self, message_id: uuid.UUID
    ) -> DisappearingQueueEntry | None:
        result = await self.db.execute(
            select(DisappearingQueueEntry)
            .where(DisappearingQueueEntry.message_id == message_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    @_guarded
    async def claim_due_disappearing_entries(
        self, now: datetime, limit: int, claimed_by: str, lease_seconds: int
    ) -> list[DisappearingQueueEntry]:
        lease_free = or_(
            DisappearingQueueEntry.claim_expires_at.is_(None),
            DisappearingQueueEntry.claim_expires_at <= now,
        )
        due = await self.db.execute(
            select(DisappearingQueueEntry.id)
            .where(
                DisappearingQueueEntry.processed.is_(False),
                DisappearingQueueEntry.delete_at <= now,
                lease_free,
            )
            .order_by(DisappearingQueueEntry.delete_at)
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        ids = list(due.scalars().all())
        if not ids:
            return []

        # Re-check the lease in the write so a concurrent sweeper cannot
        # take the same entry between the select and the update
        await self.db.execute(
            update(DisappearingQueueEntry)
            .where(
                DisappearingQueueEntry.id.in_(ids),
                DisappearingQueueEntry.processed.is_(False),
                lease_free,
            )
            .values(
                claimed_by=claimed_by,
                claim_expires_at=now + timedelta(seconds=lease_seconds),
            )
            .execution_options(synchronize_session=False)
        )
        claimed = await self.db.execute(
            select(DisappearingQueueEntry)
            .where(
                DisappearingQueueEntry.id.in_(ids),
                DisappearingQueueEntry.claimed_by == claimed_by,
                DisappearingQueueEntry.processed.is_(False),
            )
            .order_by(DisappearingQueueEntry.delete_at)
            .execution_options(populate_existing=True)
        )
        return list(claimed.scalars().all())

    @_guarded
    async def mark_processed(self, message_id: uuid.UUID, now: datetime) -> bool:
        result = await self.db.execute(
            update(DisappearingQueueEntry)
            .where(
                DisappearingQueueEntry.message_id == message_id,
                DisappearingQueueEntry.processed.is_(False),
            )
            .values(
                processed=True,
                processed_at=now,
                claimed_by=None,
                claim_expires_at=None,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0

    @_guarded
    async def release_claim(self, message_id: uuid.UUID) -> None:
        await self.db.execute(
            update(DisappearingQueueEntry)
            .where(
                DisappearingQueueEntry.message_id == message_id,
                DisappearingQueueEntry.processed.is_(False),
            )
            .values(claimed_by=None, claim_expires_at=None)
            .execution_options(synchronize_session=False)
        )

    @_guarded
    async def redact_message(self, message_id: uuid.UUID, now: datetime) -> bool:
        result = await self.db.execute(
            update(Message)
            .where(Message.id == message_id, Message.is_deleted.is_(False))
            .values(content=None, is_deleted=True, deleted_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0

    @_guarded
    async def find_message(self, message_id: uuid.UUID) -> Message | None:
        result = await self.db.execute(
            select(Message)
            .where(Message.id == message_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    @_guarded
    async def record_message_view(
        self, message_id: uuid.UUID, user_id: uuid.UUID, now: datetime
    ) -> bool:
        try:
            await self._insert(
                MessageView(message_id=message_id, user_id=user_id, viewed_at=now),
                "Message already viewed",
            )
        except UniquenessConflict:
            return False
        return True

    @_guarded
    async def list_message_viewers(self, message_id: uuid.UUID) -> list[uuid.UUID]:
        result = await self.db.execute(
            select(MessageView.user_id).where(MessageView.message_id == message_id)
        )
        return list(result.scalars().all())

    @_guarded
    async def find_disappearing_settings(
        self, user_id: uuid.UUID
    ) -> DisappearingSettings | None:
        result = await self.db.execute(
            select(DisappearingSettings).where(DisappearingSettings.user_id == user_id)
        )
        return result.scalar_one_or_none()

    @_guarded
    async def upsert_disappearing_settings(
        self, user_id: uuid.UUID, **fields
    ) -> DisappearingSettings:
        result = await self.db.execute(
            select(DisappearingSettings).where(DisappearingSettings.user_id == user_id)
        )
        prefs = result.scalar_one_or_none()
        if prefs is None:
            prefs = DisappearingSettings(user_id=user_id, **fields)
            return await self._insert(prefs, "Disappearing settings already exist")
        for key, value in fields.items():
            setattr(prefs, key, value)
        await self.db.flush()
        return prefs

    # ── Typing indicators ─────────────────────────────────────────────

    @_guarded
    async def upsert_typing_indicator(
        self, conversation_id: uuid.UUID, user_id: uuid.UUID, is_typing: bool, now: datetime
    ) -> TypingIndicator:
        query = select(TypingIndicator).where(
            TypingIndicator.conversation_id == conversation_id,
            TypingIndicator.user_id == user_id,
        )
        indicator = (await self.db.execute(query)).scalar_one_or_none()
        if indicator is None:
            indicator = TypingIndicator(
                conversation_id=conversation_id,
                user_id=user_id,
                is_typing=is_typing,
                updated_at=now,
            )
            try:
                return await self._insert(indicator, "Typing indicator exists")
            except UniquenessConflict:
                # Another writer got there first; last write wins
                indicator = (await self.db.execute(query)).scalar_one()

        indicator.is_typing = is_typing
        indicator.updated_at = now
        await self.db.flush()
        return indicator

    @_guarded
    async def list_typing_indicators(self, conversation_id: uuid.UUID) -> list[TypingIndicator]:
        result = await self.db.execute(
            select(TypingIndicator)
            .where(TypingIndicator.conversation_id == conversation_id)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    @_guarded
    async def delete_stale_typing_indicators(self, cutoff: datetime) -> int:
        result = await self.db.execute(
            delete(TypingIndicator)
            .where(TypingIndicator.updated_at < cutoff)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    # ── Notifications ─────────────────────────────────────────────────

    @_guarded
    async def add_notification(
        self,
        user_id: uuid.UUID,
        type: str,
        subject_id: uuid.UUID,
        object_id: uuid.UUID,
        payload: dict | None = None,
    ) -> Notification:
        notification = Notification(
            user_id=user_id,
            type=type,
            subject_id=subject_id,
            object_id=object_id,
            payload=payload or {},
        )
        self.db.add(notification)
        await self.db.flush()
        return notification

    @_guarded
    async def list_notifications(
        self, user_id: uuid.UUID, unread_only: bool = False, limit: int = 50
    ) -> list[Notification]:
        query = select(Notification).where(Notification.user_id == user_id)
        if unread_only:
            query = query.where(Notification.is_read.is_(False))
        result = await self.db.execute(
            query.order_by(Notification.created_at.desc()).limit(limit)
        )
        return list(result.scalars().all())

    @_guarded
    async def mark_notification_read(
        self, notification_id: uuid.UUID, user_id: uuid.UUID
    ) -> bool:
        result = await self.db.execute(
            update(Notification)
            .where(Notification.id == notification_id, Notification.user_id == user_id)
            .values(is_read=True)
        )
        return result.rowcount > 0

    @_guarded
    async def mark_all_notifications_read(self, user_id: uuid.UUID) -> int:
        result = await self.db.execute(
            update(Notification)
            .where(Notification.user_id == user_id, Notification.is_read.is_(False))
            .values(is_read=True)
        )
        return result.rowcount
