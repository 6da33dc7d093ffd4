from __future__ import annotations

from typing import Any, List

import anyio
import pytest

from skillswap.models import UserId
from skillswap.notifications import ChannelRegistry, EventType, NotificationDispatcher

ALICE = UserId("a" * 24)
BOB = UserId("b" * 24)


class RecordingChannel:
    def __init__(self, delay: float = 0.0) -> None:
        self.messages: List[Any] = []
        self._delay = delay

    async def send_json(self, data: Any) -> None:
        if self._delay:
            await anyio.sleep(self._delay)
        self.messages.append(data)


class BrokenChannel:
    def __init__(self) -> None:
        self.attempts = 0

    async def send_json(self, data: Any) -> None:
        self.attempts += 1
        raise RuntimeError("connection reset by peer")


class StalledChannel:
    async def send_json(self, data: Any) -> None:
        await anyio.sleep_forever()


def test_registry_tracks_channels_per_user() -> None:
    registry = ChannelRegistry()
    first, second = RecordingChannel(), RecordingChannel()

    registry.add(ALICE, first)
    registry.add(ALICE, second)
    registry.add(ALICE, first)
    registry.add(BOB, RecordingChannel())

    assert registry.count(ALICE) == 2
    assert set(registry.user_ids()) == {ALICE, BOB}
    assert [slot.channel for slot in registry.channels_for(ALICE)] == [first, second]

    assert registry.discard(ALICE, first) is True
    assert registry.discard(ALICE, first) is False
    assert registry.discard(ALICE, second) is True
    assert registry.count(ALICE) == 0
    assert registry.user_ids() == (BOB,)


@pytest.mark.anyio
async def test_emit_reaches_every_channel_of_the_user() -> None:
    dispatcher = NotificationDispatcher()
    laptop, phone, other = RecordingChannel(), RecordingChannel(), RecordingChannel()
    dispatcher.register_channel(ALICE, laptop)
    dispatcher.register_channel(ALICE, phone)
    dispatcher.register_channel(BOB, other)

    delivered = await dispatcher.emit(ALICE, EventType.NEW_REQUEST, {"message": "hello"})

    assert delivered == 2
    expected = {"event": "newRequest", "data": {"message": "hello"}}
    assert laptop.messages == [expected]
    assert phone.messages == [expected]
    assert other.messages == []


@pytest.mark.anyio
async def test_emit_without_channels_is_dropped() -> None:
    dispatcher = NotificationDispatcher()
    assert await dispatcher.emit(BOB, EventType.REQUEST_UPDATED, {"message": "nobody home"}) == 0


@pytest.mark.anyio
async def test_failing_channel_is_dropped_without_affecting_others(caplog: pytest.LogCaptureFixture) -> None:
    dispatcher = NotificationDispatcher()
    broken, healthy = BrokenChannel(), RecordingChannel()
    dispatcher.register_channel(ALICE, broken)
    dispatcher.register_channel(ALICE, healthy)

    with caplog.at_level("WARNING", logger="skillswap.notifications"):
        delivered = await dispatcher.emit(ALICE, EventType.NEW_REQUEST, {"n": 1})

    assert delivered == 1
    assert healthy.messages == [{"event": "newRequest", "data": {"n": 1}}]
    assert dispatcher.registry.count(ALICE) == 1
    assert "closing channel" in caplog.text

    await dispatcher.emit(ALICE, EventType.NEW_REQUEST, {"n": 2})
    assert broken.attempts == 1


@pytest.mark.anyio
async def test_stalled_channel_times_out_and_is_dropped() -> None:
    dispatcher = NotificationDispatcher(send_timeout=0.05)
    dispatcher.register_channel(ALICE, StalledChannel())

    assert await dispatcher.emit(ALICE, EventType.NEW_REQUEST, {}) == 0
    assert dispatcher.registry.count(ALICE) == 0


@pytest.mark.anyio
async def test_events_to_one_channel_keep_emit_order() -> None:
    dispatcher = NotificationDispatcher()
    channel = RecordingChannel(delay=0.01)
    dispatcher.register_channel(ALICE, channel)

    async with anyio.create_task_group() as tg:
        for index in range(5):
            tg.start_soon(dispatcher.emit, ALICE, EventType.REQUEST_UPDATED, {"n": index})

    assert [message["data"]["n"] for message in channel.messages] == [0, 1, 2, 3, 4]


@pytest.mark.anyio
async def test_connect_unregisters_when_the_block_exits() -> None:
    dispatcher = NotificationDispatcher()
    channel = RecordingChannel()

    async with dispatcher.connect(BOB, channel):
        assert dispatcher.registry.count(BOB) == 1
        await dispatcher.emit(BOB, "requestUpdated", {"ok": True})

    assert dispatcher.registry.count(BOB) == 0
    assert channel.messages == [{"event": "requestUpdated", "data": {"ok": True}}]
    assert await dispatcher.emit(BOB, EventType.REQUEST_UPDATED, {"ok": False}) == 0


@pytest.mark.anyio
async def test_connect_unregisters_on_error() -> None:
    dispatcher = NotificationDispatcher()
    with pytest.raises(RuntimeError):
        async with dispatcher.connect(BOB, RecordingChannel()):
            raise RuntimeError("socket handler crashed")
    assert dispatcher.registry.count(BOB) == 0


@pytest.mark.anyio
async def test_reply_waits_behind_an_emit_in_flight() -> None:
    dispatcher = NotificationDispatcher()
    channel = RecordingChannel(delay=0.02)
    dispatcher.register_channel(ALICE, channel)

    async with anyio.create_task_group() as tg:
        tg.start_soon(dispatcher.emit, ALICE, EventType.NEW_REQUEST, {"n": 1})
        await anyio.sleep(0)
        tg.start_soon(dispatcher.reply, ALICE, channel, "pong", {})

    assert [message["event"] for message in channel.messages] == ["newRequest", "pong"]


@pytest.mark.anyio
async def test_reply_to_unregistered_or_broken_channel() -> None:
    dispatcher = NotificationDispatcher()
    assert await dispatcher.reply(ALICE, RecordingChannel(), "pong", {}) is False

    broken = BrokenChannel()
    dispatcher.register_channel(ALICE, broken)
    assert await dispatcher.reply(ALICE, broken, "pong", {}) is False
    assert dispatcher.registry.count(ALICE) == 0
