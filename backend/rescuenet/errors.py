from __future__ import annotations
from typing import Any, Optional


class RescueError(Exception):
    """Base class for errors that map onto an HTTP status."""

    status_code = 500

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class InvalidInputError(RescueError):
    status_code = 400


class InvalidLocationError(InvalidInputError):
    pass


class InvalidStatusError(InvalidInputError):
    def __init__(self, value: Any):
        super().__init__(f"Invalid status: {value!r}")
        self.value = value


class NotFoundError(RescueError):
    status_code = 404


class ConflictError(RescueError):
    """A precondition on the stored record did not hold.

    ``current`` is the record as it was when the check failed, so callers can
    tell the loser of a claim race who won.
    """

    status_code = 409

    def __init__(self, detail: str, current: Optional[Any] = None):
        super().__init__(detail)
        self.current = current


class DuplicateIdError(RescueError):
    status_code = 500


class ShortCodeTakenError(DuplicateIdError):
    pass


class InternalError(RescueError):
    status_code = 500
