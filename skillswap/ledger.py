"""Storage and status transitions for swap requests."""
from __future__ import annotations

import logging
import sqlite3
from typing import List, Optional, Union

from .database import Database, current_timestamp, generate_id, parse_datetime, serialize_datetime
from .errors import ConflictError, ForbiddenError, InvalidTransitionError, NotFoundError
from .models import (
    RESPONSE_STATUSES,
    RequestId,
    RequestStatus,
    SwapRequest,
    UserId,
    UserSummary,
)

logger = logging.getLogger("skillswap.ledger")

_RESOLVED_SELECT = """
    SELECT r.id, r.from_user_id, r.to_user_id, r.skill_offered, r.skill_wanted,
           r.message, r.status, r.created_at, r.updated_at,
           f.name AS from_name, f.profile_photo AS from_photo,
           t.name AS to_name, t.profile_photo AS to_photo
      FROM swap_requests AS r
      JOIN users AS f ON f.id = r.from_user_id
      JOIN users AS t ON t.id = r.to_user_id
"""


def _is_pending_pair_violation(exc: sqlite3.IntegrityError) -> bool:
    text = str(exc)
    return "UNIQUE constraint failed" in text and "swap_requests.from_user_id" in text


def _coerce_status(value: Union[RequestStatus, str]) -> Optional[RequestStatus]:
    if isinstance(value, RequestStatus):
        return value
    try:
        return RequestStatus(str(value))
    except ValueError:
        return None


class RequestLedger:
    """Owns swap request records and enforces their lifecycle.

    The ledger does not check that the two users exist or differ; that is the
    job of :class:`skillswap.swaps.RequestService`. Foreign keys still stop a
    request from pointing at a missing user.
    """

    def __init__(self, database: Database) -> None:
        self._database = database

    def create_request(
        self,
        from_user_id: UserId,
        to_user_id: UserId,
        skill_offered: str,
        skill_wanted: str,
        message: str = "",
    ) -> SwapRequest:
        """Persist a new pending request.

        The partial unique index on pending (sender, recipient) pairs makes the
        duplicate check and the insert a single atomic step.
        """

        request_id = generate_id()
        now = serialize_datetime(current_timestamp())

        try:
            with self._database.connect() as conn:
                conn.execute(
                    """
                    INSERT INTO swap_requests (
                        id, from_user_id, to_user_id, skill_offered, skill_wanted,
                        message, status, created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        request_id,
                        from_user_id,
                        to_user_id,
                        skill_offered,
                        skill_wanted,
                        message or "",
                        RequestStatus.PENDING.value,
                        now,
                        now,
                    ),
                )
        except sqlite3.IntegrityError as exc:
            if _is_pending_pair_violation(exc):
                raise ConflictError("Request already sent to this user") from exc
            if "FOREIGN KEY constraint failed" in str(exc):
                raise NotFoundError("User not found") from exc
            raise

        created = self.get_request(RequestId(request_id))
        if created is None:
            raise RuntimeError("Failed to load swap request after creation")
        return created

    def get_request(self, request_id: RequestId) -> Optional[SwapRequest]:
        with self._database.connect() as conn:
            row = conn.execute(f"{_RESOLVED_SELECT} WHERE r.id = ?", (request_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_request(row)

    def list_for_user(self, user_id: UserId) -> List[SwapRequest]:
        """Return every request sent or received by ``user_id``, newest first."""

        with self._database.connect() as conn:
            rows = conn.execute(
                f"""
                {_RESOLVED_SELECT}
                 WHERE r.from_user_id = ? OR r.to_user_id = ?
                 ORDER BY r.created_at DESC, r.rowid DESC
                """,
                (user_id, user_id),
            ).fetchall()
        return [self._row_to_request(row) for row in rows]

    def set_status(
        self,
        request_id: RequestId,
        acting_user_id: UserId,
        new_status: Union[RequestStatus, str],
    ) -> SwapRequest:
        """Move a pending request to Accepted or Rejected on behalf of its recipient."""

        target = _coerce_status(new_status)

        with self._database.connect() as conn:
            row = conn.execute(
                "SELECT to_user_id, status FROM swap_requests WHERE id = ?",
                (request_id,),
            ).fetchone()
            if row is None:
                raise NotFoundError("Request not found")
            if UserId(str(row["to_user_id"])) != acting_user_id:
                raise ForbiddenError("Not authorized")
            if target not in RESPONSE_STATUSES:
                raise InvalidTransitionError(f"Status must be one of: Accepted, Rejected (got {new_status!r})")
            current = RequestStatus(row["status"])
            if current.is_terminal:
                raise InvalidTransitionError(f"Request is already {current.value.lower()}")

            cursor = conn.execute(
                """
                UPDATE swap_requests
                   SET status = ?, updated_at = ?
                 WHERE id = ? AND to_user_id = ? AND status = ?
                """,
                (
                    target.value,
                    serialize_datetime(current_timestamp()),
                    request_id,
                    acting_user_id,
                    RequestStatus.PENDING.value,
                ),
            )
            if cursor.rowcount == 0:
                # Answered concurrently between the read and the update.
                latest = conn.execute("SELECT status FROM swap_requests WHERE id = ?", (request_id,)).fetchone()
                raise InvalidTransitionError(f"Request is already {str(latest['status']).lower()}")

        updated = self.get_request(request_id)
        if updated is None:
            raise RuntimeError("Failed to load swap request after update")
        logger.debug("Request %s moved to %s by %s", request_id, target.value, acting_user_id)
        return updated

    def _row_to_request(self, row: sqlite3.Row) -> SwapRequest:
        return SwapRequest(
            id=RequestId(str(row["id"])),
            from_user=UserSummary(
                id=UserId(str(row["from_user_id"])),
                name=str(row["from_name"]),
                profile_photo=str(row["from_photo"] or ""),
            ),
            to_user=UserSummary(
                id=UserId(str(row["to_user_id"])),
                name=str(row["to_name"]),
                profile_photo=str(row["to_photo"] or ""),
            ),
            skill_offered=str(row["skill_offered"]),
            skill_wanted=str(row["skill_wanted"]),
            message=str(row["message"] or ""),
            status=RequestStatus(row["status"]),
            created_at=parse_datetime(str(row["created_at"])),
            updated_at=parse_datetime(str(row["updated_at"])),
        )


__all__ = ["RequestLedger"]
