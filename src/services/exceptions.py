"""Shared exceptions for service layer operations."""


class BookmarkActionError(Exception):
    """
    Base class for failures surfaced by the mutation gateway.

    ``kind`` matches ActionResult.error_kind so the gateway can turn any of
    these into a uniform failed result.
    """

    kind: str = "persistence"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class ValidationError(BookmarkActionError):
    """Raised when input is malformed (bad title, url, id or collection)."""

    kind = "validation"

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        super().__init__(message)


class UnauthorizedError(BookmarkActionError):
    """Raised when there is no active session for the caller."""

    kind = "unauthorized"

    def __init__(self, message: str = "You must be logged in") -> None:
        super().__init__(message)


class PersistenceError(BookmarkActionError):
    """
    Raised when a read or write against the store fails.

    Not-found, not-owned and transient failures all map here on purpose; the
    caller cannot tell them apart.
    """

    kind = "persistence"
