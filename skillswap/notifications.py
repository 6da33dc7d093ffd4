"""Best-effort push notifications to a user's open channels."""

from __future__ import annotations

import logging
import threading
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Dict, Mapping, Optional, Protocol, Tuple, Union

import anyio

from .models import UserId

logger = logging.getLogger("skillswap.notifications")

DEFAULT_SEND_TIMEOUT = 5.0


class EventType(str, Enum):
    """Events pushed to connected clients."""

    NEW_REQUEST = "newRequest"
    REQUEST_UPDATED = "requestUpdated"


class Channel(Protocol):
    """Anything that can push a JSON document to one connected client."""

    async def send_json(self, data: Any) -> None:  # pragma: no cover - protocol
        ...


@dataclass(eq=False)
class _ChannelSlot:
    channel: Channel
    lock: anyio.Lock = field(default_factory=anyio.Lock)


class ChannelRegistry:
    """Thread-safe mapping from user id to that user's open channels."""

    def __init__(self) -> None:
        self._slots: Dict[UserId, Dict[int, _ChannelSlot]] = {}
        self._lock = threading.Lock()

    def add(self, user_id: UserId, channel: Channel) -> None:
        with self._lock:
            slots = self._slots.setdefault(user_id, {})
            if id(channel) not in slots:
                slots[id(channel)] = _ChannelSlot(channel)

    def discard(self, user_id: UserId, channel: Channel) -> bool:
        with self._lock:
            slots = self._slots.get(user_id)
            if not slots:
                return False
            removed = slots.pop(id(channel), None)
            if not slots:
                del self._slots[user_id]
            return removed is not None

    def channels_for(self, user_id: UserId) -> Tuple[_ChannelSlot, ...]:
        """Return a snapshot; callers may iterate it while channels come and go."""

        with self._lock:
            return tuple(self._slots.get(user_id, {}).values())

    def slot_for(self, user_id: UserId, channel: Channel) -> Optional[_ChannelSlot]:
        with self._lock:
            return self._slots.get(user_id, {}).get(id(channel))

    def count(self, user_id: UserId) -> int:
        with self._lock:
            return len(self._slots.get(user_id, {}))

    def user_ids(self) -> Tuple[UserId, ...]:
        with self._lock:
            return tuple(self._slots)


class NotificationDispatcher:
    """Deliver events to every channel a user currently has open.

    Delivery is at most once per call with no queue and no retry. A user with
    no open channel simply misses the event; the request ledger stays the
    source of truth.
    """

    def __init__(
        self,
        registry: ChannelRegistry | None = None,
        *,
        send_timeout: float = DEFAULT_SEND_TIMEOUT,
    ) -> None:
        self._registry = registry or ChannelRegistry()
        self._send_timeout = send_timeout

    @property
    def registry(self) -> ChannelRegistry:
        return self._registry

    def register_channel(self, user_id: UserId, channel: Channel) -> None:
        self._registry.add(user_id, channel)

    def unregister_channel(self, user_id: UserId, channel: Channel) -> None:
        self._registry.discard(user_id, channel)

    @asynccontextmanager
    async def connect(self, user_id: UserId, channel: Channel) -> AsyncIterator[None]:
        """Keep ``channel`` registered for the lifetime of the block."""

        self.register_channel(user_id, channel)
        try:
            yield
        finally:
            self.unregister_channel(user_id, channel)

    async def emit(
        self,
        user_id: UserId,
        event_type: Union[EventType, str],
        payload: Mapping[str, Any],
    ) -> int:
        """Push ``payload`` to all of ``user_id``'s channels; return the delivery count.

        Never raises: a channel that fails or times out is logged and dropped.
        """

        event_name = event_type.value if isinstance(event_type, EventType) else str(event_type)
        slots = self._registry.channels_for(user_id)
        if not slots:
            logger.debug("No open channel for user %s; dropping %s event", user_id, event_name)
            return 0

        message = {"event": event_name, "data": dict(payload)}
        delivered = 0
        for slot in slots:
            try:
                async with slot.lock:
                    with anyio.fail_after(self._send_timeout):
                        await slot.channel.send_json(message)
            except Exception:
                logger.warning(
                    "Failed to deliver %s event to user %s; closing channel",
                    event_name,
                    user_id,
                    exc_info=True,
                )
                self._registry.discard(user_id, slot.channel)
                continue
            delivered += 1

        logger.debug("Delivered %s event to %d channel(s) of user %s", event_name, delivered, user_id)
        return delivered

    async def reply(
        self,
        user_id: UserId,
        channel: Channel,
        event_type: str,
        payload: Mapping[str, Any],
    ) -> bool:
        """Send one event to a single registered channel, queued behind any emit in flight."""

        slot = self._registry.slot_for(user_id, channel)
        if slot is None:
            return False
        try:
            async with slot.lock:
                with anyio.fail_after(self._send_timeout):
                    await channel.send_json({"event": event_type, "data": dict(payload)})
        except Exception:
            logger.warning("Failed to reply to user %s; closing channel", user_id, exc_info=True)
            self._registry.discard(user_id, channel)
            return False
        return True


__all__ = ["Channel", "ChannelRegistry", "EventType", "NotificationDispatcher"]
