from __future__ import annotations

from typing import Any, List

import anyio
import pytest

from skillswap.database import Database
from skillswap.errors import (
    ConflictError,
    ForbiddenError,
    InvalidRequestError,
    InvalidTransitionError,
    NotFoundError,
)
from skillswap.models import RequestStatus, User, UserId
from skillswap.notifications import NotificationDispatcher
from skillswap.swaps import RequestService

pytestmark = pytest.mark.anyio


class RecordingChannel:
    def __init__(self) -> None:
        self.messages: List[Any] = []

    async def send_json(self, data: Any) -> None:
        self.messages.append(data)


class BrokenChannel:
    async def send_json(self, data: Any) -> None:
        raise ConnectionError("socket closed")


@pytest.fixture()
def dispatcher() -> NotificationDispatcher:
    return NotificationDispatcher()


@pytest.fixture()
def service(database: Database, dispatcher: NotificationDispatcher) -> RequestService:
    return RequestService(database, dispatcher)


@pytest.fixture()
def alice(database: Database) -> User:
    return database.create_user("Alice", "alice@example.com", "alice-secret")


@pytest.fixture()
def bob(database: Database) -> User:
    return database.create_user("Bob", "bob@example.com", "bob-secret")


async def test_submit_notifies_recipient_once(
    service: RequestService, dispatcher: NotificationDispatcher, alice: User, bob: User
) -> None:
    inbox, outbox = RecordingChannel(), RecordingChannel()
    dispatcher.register_channel(bob.id, inbox)
    dispatcher.register_channel(alice.id, outbox)

    request = await service.submit_request(alice.id, bob.id, " Guitar ", "Spanish", " Hi Bob ")

    assert request.status is RequestStatus.PENDING
    assert request.skill_offered == "Guitar"
    assert request.message == "Hi Bob"
    assert outbox.messages == []
    assert len(inbox.messages) == 1
    event = inbox.messages[0]
    assert event["event"] == "newRequest"
    assert event["data"]["message"] == "Alice sent you a skill swap request!"
    assert event["data"]["request"]["id"] == request.id
    assert event["data"]["request"]["status"] == "Pending"
    assert event["data"]["request"]["from_user"] == {"id": alice.id, "name": "Alice", "profile_photo": ""}


async def test_respond_notifies_sender_once(
    service: RequestService, dispatcher: NotificationDispatcher, alice: User, bob: User
) -> None:
    request = await service.submit_request(alice.id, bob.id, "Guitar", "Spanish")
    sender_channel = RecordingChannel()
    dispatcher.register_channel(alice.id, sender_channel)

    updated = await service.respond_to_request(bob.id, request.id, "Rejected")

    assert updated.status is RequestStatus.REJECTED
    assert len(sender_channel.messages) == 1
    event = sender_channel.messages[0]
    assert event["event"] == "requestUpdated"
    assert event["data"]["message"] == "Your request to Bob was rejected!"
    assert event["data"]["request"]["id"] == request.id
    assert event["data"]["request"]["status"] == "Rejected"


async def test_failed_answer_sends_no_notification(
    service: RequestService, dispatcher: NotificationDispatcher, alice: User, bob: User
) -> None:
    request = await service.submit_request(alice.id, bob.id, "Guitar", "Spanish")
    sender_channel = RecordingChannel()
    dispatcher.register_channel(alice.id, sender_channel)

    with pytest.raises(ForbiddenError):
        await service.respond_to_request(alice.id, request.id, RequestStatus.ACCEPTED)
    await service.respond_to_request(bob.id, request.id, RequestStatus.ACCEPTED)
    with pytest.raises(InvalidTransitionError):
        await service.respond_to_request(bob.id, request.id, RequestStatus.REJECTED)

    assert [message["data"]["request"]["status"] for message in sender_channel.messages] == ["Accepted"]


async def test_request_to_self_is_invalid(service: RequestService, alice: User) -> None:
    with pytest.raises(InvalidRequestError):
        await service.submit_request(alice.id, alice.id, "Guitar", "Spanish")
    assert await service.list_for_user(alice.id) == []


async def test_blank_skills_are_invalid(service: RequestService, alice: User, bob: User) -> None:
    with pytest.raises(InvalidRequestError):
        await service.submit_request(alice.id, bob.id, "   ", "Spanish")


async def test_unknown_recipient_is_not_found(service: RequestService, alice: User) -> None:
    with pytest.raises(NotFoundError):
        await service.submit_request(alice.id, UserId("0" * 24), "Guitar", "Spanish")


async def test_unknown_actor_is_forbidden(service: RequestService, bob: User) -> None:
    with pytest.raises(ForbiddenError):
        await service.submit_request(UserId("0" * 24), bob.id, "Guitar", "Spanish")


async def test_duplicate_submission_conflicts_and_notifies_once(
    service: RequestService, dispatcher: NotificationDispatcher, alice: User, bob: User
) -> None:
    inbox = RecordingChannel()
    dispatcher.register_channel(bob.id, inbox)

    await service.submit_request(alice.id, bob.id, "Guitar", "Spanish")
    with pytest.raises(ConflictError):
        await service.submit_request(alice.id, bob.id, "Guitar", "Spanish")

    assert len(inbox.messages) == 1


async def test_concurrent_submissions_create_one_request(
    service: RequestService, dispatcher: NotificationDispatcher, alice: User, bob: User
) -> None:
    inbox = RecordingChannel()
    dispatcher.register_channel(bob.id, inbox)
    outcomes: List[str] = []

    async def submit() -> None:
        try:
            await service.submit_request(alice.id, bob.id, "Guitar", "Spanish")
            outcomes.append("created")
        except ConflictError:
            outcomes.append("conflict")

    async with anyio.create_task_group() as tg:
        for _ in range(3):
            tg.start_soon(submit)

    assert sorted(outcomes) == ["conflict", "conflict", "created"]
    assert len(await service.list_for_user(bob.id)) == 1
    assert len(inbox.messages) == 1


async def test_delivery_failure_does_not_undo_the_write(
    service: RequestService, dispatcher: NotificationDispatcher, alice: User, bob: User
) -> None:
    dispatcher.register_channel(bob.id, BrokenChannel())

    request = await service.submit_request(alice.id, bob.id, "Guitar", "Spanish")

    assert dispatcher.registry.count(bob.id) == 0
    stored = await service.list_for_user(bob.id)
    assert [record.id for record in stored] == [request.id]


async def test_recipient_without_channel_still_sees_request(
    service: RequestService, alice: User, bob: User
) -> None:
    request = await service.submit_request(alice.id, bob.id, "Guitar", "Spanish")

    inbox = await service.list_for_user(bob.id)
    assert [record.id for record in inbox] == [request.id]
    assert inbox[0].to_user.id == bob.id
