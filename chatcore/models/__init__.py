from chatcore.models.base import Base
from chatcore.models.contact import Contact
from chatcore.models.conversation import Conversation
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

__all__ = [
    "Base",
    "Contact",
    "Conversation",
    "ConversationParticipant",
    "DisappearingQueueEntry",
    "DisappearingSettings",
    "FriendRequest",
    "FriendRequestAttempts",
    "Message",
    "MessageView",
    "Notification",
    "RelationshipLock",
    "TypingIndicator",
]
