"""Relationship store port.

The services never touch sessions or tables; everything they read or write
goes through a ``RelationshipStore``. Implementations own atomicity: a single
method call is one atomic operation, and ``atomic()`` groups several calls
into one transaction. Conditional writes that lose a race raise
``UniquenessConflict``; timeouts and connection failures raise
``StoreUnavailable``.
"""
import uuid
from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager
from datetime import datetime

from chatcore.models.contact import Contact
from chatcore.models.conversation import Conversation
from chatcore.models.conversation_participant import ConversationParticipant
from chatcore.models.disappearing_entry import DisappearingQueueEntry
from chatcore.models.disappearing_settings import DisappearingSettings
from chatcore.models.friend_request import FriendRequest
from chatcore.models.message import Message
from chatcore.models.notification import Notification
from chatcore.models.typing_indicator import TypingIndicator


class RelationshipStore(ABC):
    @abstractmethod
    def atomic(self) -> AbstractAsyncContextManager[None]:
        """Run the enclosed store calls as one all-or-nothing unit."""

    # Friend requests

    @abstractmethod
    async def lock_pair(self, user_a: uuid.UUID, user_b: uuid.UUID) -> None:
        """Hold writers on the unordered pair off until this transaction ends."""

    @abstractmethod
    async def find_friend_request(self, request_id: uuid.UUID) -> FriendRequest | None:
        ...

    @abstractmethod
    async def find_friend_request_between(
        self, sender_id: uuid.UUID, receiver_id: uuid.UUID
    ) -> FriendRequest | None:
        ...

    @abstractmethod
    async def upsert_friend_request(
        self,
        sender_id: uuid.UUID,
        receiver_id: uuid.UUID,
        status: str,
        attempt_count: int,
        expected_status: str | None = None,
    ) -> FriendRequest:
        """Write the row for the ordered pair.

        When ``expected_status`` is given, an existing row is only updated if
        it still has that status; otherwise ``UniquenessConflict`` is raised.
        """

    @abstractmethod
    async def transition_friend_request(
        self, request_id: uuid.UUID, from_status: str, to_status: str
    ) -> FriendRequest | None:
        """Conditional status change. Returns None if the row was not in ``from_status``."""

    @abstractmethod
    async def delete_friend_request(self, request_id: uuid.UUID) -> bool:
        ...

    @abstractmethod
    async def list_friend_requests(
        self, user_id: uuid.UUID, direction: str = "all", status: str | None = None
    ) -> list[FriendRequest]:
        ...

    @abstractmethod
    async def find_request_attempts(
        self, sender_id: uuid.UUID, receiver_id: uuid.UUID
    ) -> int:
        """Attempts used by deleted requests for the ordered pair, 0 if none."""

    @abstractmethod
    async def save_request_attempts(
        self, sender_id: uuid.UUID, receiver_id: uuid.UUID, attempt_count: int
    ) -> None:
        ...

    @abstractmethod
    async def clear_request_attempts(self, user_a: uuid.UUID, user_b: uuid.UUID) -> None:
        """Forget the attempt history in both directions."""

    # Contacts

    @abstractmethod
    async def find_contact(self, owner_id: uuid.UUID, peer_id: uuid.UUID) -> Contact | None:
        ...

    @abstractmethod
    async def list_contacts(
        self, owner_id: uuid.UUID, status: str | None = None, favorites_only: bool = False
    ) -> list[Contact]:
        ...

    @abstractmethod
    async def upsert_contact_pair(
        self, user_a: uuid.UUID, user_b: uuid.UUID, status: str, can_chat: bool
    ) -> tuple[Contact, Contact]:
        """Create or update both directed rows in one atomic write."""

    @abstractmethod
    async def update_contact(
        self, owner_id: uuid.UUID, peer_id: uuid.UUID, **fields
    ) -> Contact | None:
        """Update owner-specific flags on one row."""

    @abstractmethod
    async def delete_contact_pair(self, user_a: uuid.UUID, user_b: uuid.UUID) -> int:
        ...

    # Conversations

    @abstractmethod
    async def find_direct_conversation(
        self, user_a: uuid.UUID, user_b: uuid.UUID
    ) -> Conversation | None:
        ...

    @abstractmethod
    async def create_conversation(
        self,
        type: str,
        participants: list[tuple[uuid.UUID, str]],
        created_by: uuid.UUID,
        name: str | None = None,
    ) -> Conversation:
        """Insert a conversation and its ``(user_id, role)`` participants.

        Raises ``UniquenessConflict`` when a direct conversation for the same
        pair already exists.
        """

    @abstractmethod
    async def list_conversations(self, user_id: uuid.UUID) -> list[Conversation]:
        ...

    @abstractmethod
    async def list_participants(
        self, conversation_id: uuid.UUID
    ) -> list[ConversationParticipant]:
        ...

    # Disappearing messages

    @abstractmethod
    async def create_disappearing_entry(
        self, message_id: uuid.UUID, delete_at: datetime, burn_after_read: bool = False
    ) -> DisappearingQueueEntry:
        ...

    @abstractmethod
    async def find_disappearing_entry(
        self, message_id: uuid.UUID
    ) -> DisappearingQueueEntry | None:
        ...

    @abstractmethod
    async def claim_due_disappearing_entries(
        self, now: datetime, limit: int, claimed_by: str, lease_seconds: int
    ) -> list[DisappearingQueueEntry]:
        """Lease unprocessed entries due at ``now`` to ``claimed_by``."""

    @abstractmethod
    async def mark_processed(self, message_id: uuid.UUID, now: datetime) -> bool:
        """Flip ``processed`` to true. Returns False if it already was."""

    @abstractmethod
    async def release_claim(self, message_id: uuid.UUID) -> None:
        ...

    @abstractmethod
    async def redact_message(self, message_id: uuid.UUID, now: datetime) -> bool:
        ...

    @abstractmethod
    async def find_message(self, message_id: uuid.UUID) -> Message | None:
        ...

    @abstractmethod
    async def record_message_view(
        self, message_id: uuid.UUID, user_id: uuid.UUID, now: datetime
    ) -> bool:
        """Returns False if the user had already viewed the message."""

    @abstractmethod
    async def list_message_viewers(self, message_id: uuid.UUID) -> list[uuid.UUID]:
        ...

    @abstractmethod
    async def find_disappearing_settings(
        self, user_id: uuid.UUID
    ) -> DisappearingSettings | None:
        ...

    @abstractmethod
    async def upsert_disappearing_settings(
        self, user_id: uuid.UUID, **fields
    ) -> DisappearingSettings:
        ...

    # Typing indicators

    @abstractmethod
    async def upsert_typing_indicator(
        self, conversation_id: uuid.UUID, user_id: uuid.UUID, is_typing: bool, now: datetime
    ) -> TypingIndicator:
        ...

    @abstractmethod
    async def list_typing_indicators(self, conversation_id: uuid.UUID) -> list[TypingIndicator]:
        ...

    @abstractmethod
    async def delete_stale_typing_indicators(self, cutoff: datetime) -> int:
        ...

    # Notifications

    @abstractmethod
    async def add_notification(
        self,
        user_id: uuid.UUID,
        type: str,
        subject_id: uuid.UUID,
        object_id: uuid.UUID,
        payload: dict | None = None,
    ) -> Notification:
        ...

    @abstractmethod
    async def list_notifications(
        self, user_id: uuid.UUID, unread_only: bool = False, limit: int = 50
    ) -> list[Notification]:
        ...

    @abstractmethod
    async def mark_notification_read(
        self, notification_id: uuid.UUID, user_id: uuid.UUID
    ) -> bool:
        ...

    @abstractmethod
    async def mark_all_notifications_read(self, user_id: uuid.UUID) -> int:
        ...
