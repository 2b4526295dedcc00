"""
Shared schema primitives used across the API.
"""
from typing import Any, Optional

from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Envelope returned for every RankingException and validation failure."""
    code: str
    message: str
    details: Optional[dict[str, Any]] = None


def error_responses(*codes: int) -> dict[int, dict[str, Any]]:
    """OpenAPI `responses=` entries documenting the error envelope."""
    descriptions = {
        404: "Unknown completion or resource",
        409: "Completion already paid out",
        422: "Invalid request or time window",
        503: "Ledger transaction rolled back; safe to retry",
    }
    return {c: {"model": ErrorResponse, "description": descriptions.get(c, "Error")} for c in codes}
