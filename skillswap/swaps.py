"""Use cases for creating, answering and listing swap requests."""

from __future__ import annotations

import logging
from functools import partial
from typing import List, Union

import anyio

from .database import Database
from .errors import ForbiddenError, InvalidRequestError, NotFoundError
from .ledger import RequestLedger
from .models import RequestId, RequestStatus, SwapRequest, User, UserId
from .notifications import EventType, NotificationDispatcher

logger = logging.getLogger("skillswap.swaps")


class RequestService:
    """Compose the identity store, ledger and dispatcher.

    Notifications are emitted only after the ledger write has committed, and a
    failed or dropped notification never fails the operation.
    """

    def __init__(
        self,
        database: Database,
        dispatcher: NotificationDispatcher,
        ledger: RequestLedger | None = None,
    ) -> None:
        self._database = database
        self._dispatcher = dispatcher
        self._ledger = ledger or RequestLedger(database)

    @property
    def ledger(self) -> RequestLedger:
        return self._ledger

    async def submit_request(
        self,
        acting_user_id: UserId,
        to_user_id: UserId,
        skill_offered: str,
        skill_wanted: str,
        message: str = "",
    ) -> SwapRequest:
        actor = await self._require_actor(acting_user_id)

        if UserId(to_user_id) == actor.id:
            raise InvalidRequestError("You cannot send a swap request to yourself")

        offered = (skill_offered or "").strip()
        wanted = (skill_wanted or "").strip()
        if not offered or not wanted:
            raise InvalidRequestError("Both an offered and a wanted skill are required")

        recipient = await anyio.to_thread.run_sync(self._database.get_user, to_user_id)
        if recipient is None:
            raise NotFoundError("User not found")

        request = await anyio.to_thread.run_sync(
            partial(
                self._ledger.create_request,
                actor.id,
                recipient.id,
                offered,
                wanted,
                (message or "").strip(),
            )
        )
        logger.info("User %s sent swap request %s to %s", actor.id, request.id, recipient.id)

        await self._dispatcher.emit(
            recipient.id,
            EventType.NEW_REQUEST,
            {
                "message": f"{actor.name} sent you a skill swap request!",
                "request": request.to_dict(),
            },
        )
        return request

    async def respond_to_request(
        self,
        acting_user_id: UserId,
        request_id: RequestId,
        new_status: Union[RequestStatus, str],
    ) -> SwapRequest:
        actor = await self._require_actor(acting_user_id)

        request = await anyio.to_thread.run_sync(
            self._ledger.set_status, request_id, actor.id, new_status
        )
        logger.info("User %s marked swap request %s as %s", actor.id, request.id, request.status.value)

        await self._dispatcher.emit(
            request.from_user.id,
            EventType.REQUEST_UPDATED,
            {
                "message": f"Your request to {actor.name} was {request.status.value.lower()}!",
                "request": request.to_dict(),
            },
        )
        return request

    async def list_for_user(self, acting_user_id: UserId) -> List[SwapRequest]:
        return await anyio.to_thread.run_sync(self._ledger.list_for_user, acting_user_id)

    async def _require_actor(self, user_id: UserId) -> User:
        actor = await anyio.to_thread.run_sync(self._database.get_user, user_id)
        if actor is None:
            raise ForbiddenError("Unknown user")
        return actor


__all__ = ["RequestService"]
