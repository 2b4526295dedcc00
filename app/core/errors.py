"""
Custom exception hierarchy for the ranking service.

Rule: every HTTP error has a machine-readable `code` string so clients
can branch on it without parsing English messages.

"Not a student" and "no ranked students" are deliberately absent: they are
ordinary outcomes of the award and read paths, not failures.
"""
from __future__ import annotations

import logging
from typing import Any

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette import status

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Exception classes
# ---------------------------------------------------------------------------

class RankingException(Exception):
    """Base class for all application-level errors."""
    http_status: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    code: str = "INTERNAL_ERROR"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        payload: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class InvalidCompletionError(RankingException):
    http_status = status.HTTP_404_NOT_FOUND
    code = "INVALID_COMPLETION"

    def __init__(self, completion_id: int):
        super().__init__(
            message=f"Completion {completion_id} does not exist.",
            details={"completion_id": completion_id},
        )


class DuplicateAwardError(RankingException):
    http_status = status.HTTP_409_CONFLICT
    code = "DUPLICATE_AWARD"

    def __init__(self, completion_id: int, user_id: int, course_id: int):
        super().__init__(
            message=f"Completion {completion_id} already paid out points.",
            details={
                "completion_id": completion_id,
                "user_id": user_id,
                "course_id": course_id,
            },
        )


class TransactionFailureError(RankingException):
    """The ledger transaction was rolled back. Safe to retry after a de-dup check."""
    http_status = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "TRANSACTION_FAILURE"

    def __init__(self, operation: str, reason: str | None = None):
        super().__init__(
            message=f"Ledger transaction failed during {operation}.",
            details={"operation": operation, "reason": reason} if reason else {"operation": operation},
        )


class InvalidWindowError(RankingException):
    http_status = status.HTTP_422_UNPROCESSABLE_ENTITY
    code = "INVALID_WINDOW"

    def __init__(self, start: Any, end: Any):
        super().__init__(
            message="Window start must not be after window end.",
            details={"start": str(start), "end": str(end)},
        )


# ---------------------------------------------------------------------------
# FastAPI exception handlers
# ---------------------------------------------------------------------------

async def ranking_exception_handler(request: Request, exc: RankingException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.http_status,
        content=exc.to_dict(),
    )


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Return structured 422 with machine-readable field errors."""
    field_errors = []
    for error in exc.errors():
        field_errors.append({
            "field": ".".join(str(loc) for loc in error["loc"] if loc != "body"),
            "message": error["msg"],
            "type": error["type"],
        })
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "code": "VALIDATION_ERROR",
            "message": "Request validation failed.",
            "details": {"errors": field_errors},
        },
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "code": "INTERNAL_ERROR",
            "message": "An unexpected error occurred.",
        },
    )
