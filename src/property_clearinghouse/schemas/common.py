"""Schemas shared across routers."""

from __future__ import annotations

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """Body of every non-2xx response produced by the error middleware."""

    error: str = Field(description="Stable machine-readable code, e.g. PRECONDITION_FAILED")
    message: str
    details: dict = Field(default_factory=dict)


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    version: str = "0.1.0"
    database: str = "unknown"
    redis: str = "unknown"


def error_responses(*status_codes: int) -> dict[int | str, dict]:
    """OpenAPI ``responses`` entries for the error codes a router can return."""
    return {code: {"model": ErrorResponse} for code in status_codes}
