"""Domain models for users, profiles and swap requests."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, NewType, Tuple

UserId = NewType("UserId", str)
RequestId = NewType("RequestId", str)


class Availability(str, Enum):
    """When a user is generally free to trade skills."""

    WEEKENDS = "Weekends"
    EVENINGS = "Evenings"
    WEEKDAYS = "Weekdays"
    FLEXIBLE = "Flexible"


class RequestStatus(str, Enum):
    """Lifecycle state of a swap request."""

    PENDING = "Pending"
    ACCEPTED = "Accepted"
    REJECTED = "Rejected"

    @property
    def is_terminal(self) -> bool:
        return self is not RequestStatus.PENDING


RESPONSE_STATUSES = frozenset({RequestStatus.ACCEPTED, RequestStatus.REJECTED})


@dataclass(frozen=True)
class User:
    """A user profile as stored by the identity store.

    The credential hash never leaves the database layer, so it has no field here.
    """

    id: UserId
    name: str
    email: str
    location: str
    skills_offered: Tuple[str, ...]
    skills_wanted: Tuple[str, ...]
    availability: Availability
    is_public: bool
    profile_photo: str
    created_at: datetime
    updated_at: datetime

    def summary(self) -> "UserSummary":
        return UserSummary(id=self.id, name=self.name, profile_photo=self.profile_photo)


@dataclass(frozen=True)
class UserSummary:
    """Display-safe projection of a user: no email, no credentials."""

    id: UserId
    name: str
    profile_photo: str


@dataclass(frozen=True)
class SwapRequest:
    """A swap request with both parties resolved to :class:`UserSummary`."""

    id: RequestId
    from_user: UserSummary
    to_user: UserSummary
    skill_offered: str
    skill_wanted: str
    message: str
    status: RequestStatus
    created_at: datetime
    updated_at: datetime

    def involves(self, user_id: UserId) -> bool:
        return user_id in (self.from_user.id, self.to_user.id)

    def to_dict(self) -> dict:
        """JSON-ready representation used for push notifications."""

        return {
            "id": self.id,
            "from_user": _summary_to_dict(self.from_user),
            "to_user": _summary_to_dict(self.to_user),
            "skill_offered": self.skill_offered,
            "skill_wanted": self.skill_wanted,
            "message": self.message,
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass(frozen=True)
class UserPage:
    """One page of the public user directory."""

    users: List[User] = field(default_factory=list)
    page: int = 1
    total_pages: int = 0
    total_users: int = 0


def _summary_to_dict(summary: UserSummary) -> dict:
    return {"id": summary.id, "name": summary.name, "profile_photo": summary.profile_photo}


__all__ = [
    "Availability",
    "RESPONSE_STATUSES",
    "RequestId",
    "RequestStatus",
    "SwapRequest",
    "User",
    "UserId",
    "UserPage",
    "UserSummary",
]
