"""Friend request state machine.

    pending  -> accepted   (terminal)
    pending  -> rejected   (sender may resend)
    rejected -> pending    (resend, attempt_count + 1, capped)

Contact edges are only ever written here and in contact_service, always as a
pair, so both directions agree on status and can_chat.
"""
import logging
import uuid

from chatcore.config import settings
from chatcore.errors import (
    AlreadyFriends,
    AttemptsExhausted,
    CannotRequestSelf,
    ContactBlocked,
    NotFound,
    NotPending,
    RequestPending,
    UniquenessConflict,
)
from chatcore.models.contact import CONTACT_ACCEPTED, CONTACT_BLOCKED
from chatcore.models.friend_request import (
    REQUEST_ACCEPTED,
    REQUEST_PENDING,
    REQUEST_REJECTED,
    FriendRequest,
)
from chatcore.services import notification_service
from chatcore.services.notification_service import NotificationFanout
from chatcore.store.base import RelationshipStore

logger = logging.getLogger(__name__)


async def send_request(
    store: RelationshipStore,
    sender_id: uuid.UUID,
    receiver_id: uuid.UUID,
    fanout: NotificationFanout | None = None,
) -> FriendRequest:
    """Send (or resend) a friend request.

    If the receiver already has a pending request out to the sender, the two
    requests collapse into one friendship: the incoming request is accepted
    and returned instead of opening a second chain.
    """
    if sender_id == receiver_id:
        raise CannotRequestSelf()

    implicit_accept = False
    async with store.atomic():
        # Sends in both directions queue here, so a mutual pair always sees
        # the other side's request
        await store.lock_pair(sender_id, receiver_id)
        outgoing_edge = await store.find_contact(sender_id, receiver_id)
        incoming_edge = await store.find_contact(receiver_id, sender_id)
        for edge in (outgoing_edge, incoming_edge):
            if edge is not None and edge.status == CONTACT_BLOCKED:
                raise ContactBlocked()
        if outgoing_edge is not None and outgoing_edge.status == CONTACT_ACCEPTED:
            raise AlreadyFriends()

        incoming = await store.find_friend_request_between(receiver_id, sender_id)
        if incoming is not None and incoming.status == REQUEST_PENDING:
            if not settings.IMPLICIT_ACCEPT_ON_MUTUAL_REQUEST:
                raise RequestPending()
            request = await _accept(store, incoming)
            implicit_accept = True
        else:
            request = await _write_outgoing(store, sender_id, receiver_id)

    if implicit_accept:
        logger.info(
            "Mutual friend request between %s and %s resolved as accept of %s",
            sender_id,
            receiver_id,
            request.id,
        )
        records = notification_service.friend_request_accepted(request, implicit=True)
    else:
        records = notification_service.friend_request_created(request)
    await notification_service.publish(fanout, records)
    return request


async def _write_outgoing(
    store: RelationshipStore, sender_id: uuid.UUID, receiver_id: uuid.UUID
) -> FriendRequest:
    existing = await store.find_friend_request_between(sender_id, receiver_id)
    try:
        if existing is None:
            used = await store.find_request_attempts(sender_id, receiver_id)
            if used >= settings.MAX_FRIEND_REQUEST_ATTEMPTS:
                raise AttemptsExhausted()
            return await store.upsert_friend_request(
                sender_id, receiver_id, REQUEST_PENDING, attempt_count=used + 1
            )

        if existing.status == REQUEST_PENDING:
            raise RequestPending()

        if existing.status == REQUEST_REJECTED:
            if existing.attempt_count >= settings.MAX_FRIEND_REQUEST_ATTEMPTS:
                raise AttemptsExhausted()
            return await store.upsert_friend_request(
                sender_id,
                receiver_id,
                REQUEST_PENDING,
                attempt_count=existing.attempt_count + 1,
                expected_status=REQUEST_REJECTED,
            )

        # Accepted earlier and the friendship has since been removed
        return await store.upsert_friend_request(
            sender_id,
            receiver_id,
            REQUEST_PENDING,
            attempt_count=1,
            expected_status=REQUEST_ACCEPTED,
        )
    except UniquenessConflict as exc:
        # A concurrent send for the same pair won
        raise RequestPending() from exc


async def _accept(store: RelationshipStore, request: FriendRequest) -> FriendRequest:
    accepted = await store.transition_friend_request(
        request.id, REQUEST_PENDING, REQUEST_ACCEPTED
    )
    if accepted is None:
        raise NotPending()
    await store.upsert_contact_pair(
        accepted.sender_id, accepted.receiver_id, CONTACT_ACCEPTED, can_chat=True
    )
    await store.clear_request_attempts(accepted.sender_id, accepted.receiver_id)
    return accepted


async def _get_pending_for_receiver(
    store: RelationshipStore, request_id: uuid.UUID, user_id: uuid.UUID | None
) -> FriendRequest:
    request = await store.find_friend_request(request_id)
    # Only the receiver may answer; anyone else sees nothing
    if request is None or (user_id is not None and request.receiver_id != user_id):
        raise NotFound("Friend request not found")
    if request.status != REQUEST_PENDING:
        raise NotPending()
    return request


async def accept_request(
    store: RelationshipStore,
    request_id: uuid.UUID,
    user_id: uuid.UUID | None = None,
    fanout: NotificationFanout | None = None,
) -> FriendRequest:
    async with store.atomic():
        request = await _get_pending_for_receiver(store, request_id, user_id)
        request = await _accept(store, request)

    logger.info("Friend request %s accepted", request.id)
    await notification_service.publish(
        fanout, notification_service.friend_request_accepted(request)
    )
    return request


async def reject_request(
    store: RelationshipStore,
    request_id: uuid.UUID,
    user_id: uuid.UUID | None = None,
    fanout: NotificationFanout | None = None,
) -> FriendRequest:
    async with store.atomic():
        request = await _get_pending_for_receiver(store, request_id, user_id)
        rejected = await store.transition_friend_request(
            request.id, REQUEST_PENDING, REQUEST_REJECTED
        )
        if rejected is None:
            raise NotPending()

    await notification_service.publish(
        fanout, notification_service.friend_request_rejected(rejected)
    )
    return rejected


async def delete_request(
    store: RelationshipStore, request_id: uuid.UUID, user_id: uuid.UUID | None = None
) -> None:
    """Remove a request in any state. Contact edges are left alone.

    Attempts used by an unaccepted request outlive the row, so deleting and
    resending does not reset the attempt cap.
    """
    async with store.atomic():
        request = await store.find_friend_request(request_id)
        if request is None or (
            user_id is not None and user_id not in (request.sender_id, request.receiver_id)
        ):
            raise NotFound("Friend request not found")
        if request.status != REQUEST_ACCEPTED:
            await store.save_request_attempts(
                request.sender_id, request.receiver_id, request.attempt_count
            )
        if not await store.delete_friend_request(request_id):
            raise NotFound("Friend request not found")


async def list_requests(
    store: RelationshipStore,
    user_id: uuid.UUID,
    direction: str = "all",
    status: str | None = None,
) -> list[FriendRequest]:
    return await store.list_friend_requests(user_id, direction=direction, status=status)
