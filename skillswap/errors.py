"""Errors raised by the swap request lifecycle.

Each error carries the HTTP status the API layer answers with. None of them
is raised after a write has been committed.
"""

from __future__ import annotations


class SwapRequestError(Exception):
    """Base class for recoverable request lifecycle failures."""

    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidRequestError(SwapRequestError):
    """The request is malformed, e.g. a user addressing themselves."""

    status_code = 400


class ForbiddenError(SwapRequestError):
    """The acting user may not perform this mutation."""

    status_code = 403


class NotFoundError(SwapRequestError):
    """The referenced request or user does not exist."""

    status_code = 404


class ConflictError(SwapRequestError):
    """A pending request already exists for the same sender and recipient."""

    status_code = 409


class InvalidTransitionError(SwapRequestError):
    """The request is no longer pending or the target status is not allowed."""

    status_code = 409


__all__ = [
    "ConflictError",
    "ForbiddenError",
    "InvalidRequestError",
    "InvalidTransitionError",
    "NotFoundError",
    "SwapRequestError",
]
