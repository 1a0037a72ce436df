"""Translate gateway ActionResult failures into HTTP responses."""
from typing import TypeVar

from fastapi import Request
from fastapi.responses import JSONResponse

from schemas.results import ActionResult
from services.bookmark_actions import NOT_FOUND

T = TypeVar("T")


class ActionFailedError(Exception):
    """Raised by routers when the gateway reports a failure."""

    def __init__(self, result: ActionResult) -> None:
        self.result = result
        super().__init__(result.error)

    @property
    def status_code(self) -> int:
        """HTTP status for the failure kind."""
        if self.result.error_kind == "validation":
            return 422
        if self.result.error_kind == "unauthorized":
            return 401
        if self.result.error == NOT_FOUND:
            # Missing and owned-by-someone-else look the same
            return 404
        return 500


def unwrap(result: ActionResult[T]) -> T:
    """Return the result payload, or raise ActionFailedError."""
    if not result.success:
        raise ActionFailedError(result)
    return result.data


async def action_failed_handler(_request: Request, exc: ActionFailedError) -> JSONResponse:
    """Render a gateway failure as ``{"detail": ..., "field": ...}``."""
    content: dict = {"detail": exc.result.error}
    if exc.result.field is not None:
        content["field"] = exc.result.field
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return JSONResponse(status_code=exc.status_code, content=content, headers=headers)
