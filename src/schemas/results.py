"""Uniform success/error result returned by the mutation gateway."""
from typing import Generic, Literal, TypeVar

from pydantic import BaseModel, Field

T = TypeVar("T")

ErrorKind = Literal["validation", "unauthorized", "persistence"]


class ActionResult(BaseModel, Generic[T]):
    """
    Result of a gateway operation.

    Exactly one of ``data`` (on success, may be None for operations without a
    payload) or ``error`` is meaningful. ``error_kind`` tells the caller how to
    surface the failure: inline for validation, a sign-in prompt for
    unauthorized, a generic retry notice for persistence.
    """

    success: bool
    data: T | None = None
    error: str | None = None
    error_kind: ErrorKind | None = None
    field: str | None = Field(
        default=None,
        description="Offending input field for validation errors (title, url, id, collection)",
    )

    @classmethod
    def ok(cls, data: T | None = None) -> "ActionResult[T]":
        """Build a successful result."""
        return cls(success=True, data=data)

    @classmethod
    def fail(
        cls,
        error_kind: ErrorKind,
        error: str,
        field: str | None = None,
    ) -> "ActionResult[T]":
        """Build a failed result."""
        return cls(success=False, error=error, error_kind=error_kind, field=field)
