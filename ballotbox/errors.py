"""Errors raised by the voting services."""

from __future__ import annotations

POLL_HAS_ENDED = "Poll is not open."
POLL_HAS_NOT_ENDED = "Poll has not ended."
PAST_POLL_EXPIRATION = "Poll expiration must be in the future."
NOT_OWNER = "Only the poll creator may modify the poll."
NO_CANDIDATES = "At least one option must be provided."
INVALID_OR_DUPLICATE_OPTIONS = "Vote contains invalid or duplicate options."
MAX_CONCURRENT = "A new poll cannot start until the others have ended."
TOO_MANY_OPTIONS = "Only one option may be provided."
CANNOT_VOTE = "Unable to participate."


class VotingError(Exception):
    """Base class for errors that are reported to the caller."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class NotFound(VotingError):
    """The requested record does not exist."""

    def __init__(self, message: str = "Not Found") -> None:
        super().__init__(message)


class AccessDenied(VotingError):
    """The caller may not perform the operation."""


class ValidationError(VotingError):
    """The request is not acceptable."""


def err_empty(field: str) -> ValidationError:
    """Error for a required field left empty."""
    return ValidationError(f"{field} is required")


def err_unknown_count_method(method: str) -> ValidationError:
    """Error for a counting method that is not supported."""
    return ValidationError(f"Counting method '{method}' is not supported")