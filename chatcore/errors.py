"""Error taxonomy for the relationship core.

Every rejection except ``StoreUnavailable`` is deterministic: it is raised
before any mutation happens and must not be retried. The HTTP layer maps each
class to ``status_code``.
"""


class ChatCoreError(Exception):
    status_code = 400
    default_message = "Request could not be completed"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message


class AlreadyFriends(ChatCoreError):
    status_code = 409
    default_message = "Already friends with this user"


class RequestPending(ChatCoreError):
    status_code = 409
    default_message = "A friend request is already pending between these users"


class AttemptsExhausted(ChatCoreError):
    status_code = 429
    default_message = "Friend request attempt limit reached for this user"


class NotFound(ChatCoreError):
    status_code = 404
    default_message = "Not found"


class NotPending(ChatCoreError):
    status_code = 409
    default_message = "Friend request is no longer pending"


class NotFriends(ChatCoreError):
    status_code = 403
    default_message = "You must be friends with this user to start a conversation"


class EmptyParticipants(ChatCoreError):
    status_code = 400
    default_message = "A group conversation needs at least one other participant"


class CannotRequestSelf(ChatCoreError):
    status_code = 400
    default_message = "Cannot send a friend request to yourself"


class ContactBlocked(ChatCoreError):
    status_code = 403
    default_message = "This contact is blocked"


class UniquenessConflict(ChatCoreError):
    """A conditional write lost a race. Internal; callers re-read and retry once."""

    status_code = 409
    default_message = "Concurrent update conflict"


class StoreUnavailable(ChatCoreError):
    """The store timed out or the connection failed. Safe to retry with backoff."""

    status_code = 503
    default_message = "Store unavailable, try again later"
