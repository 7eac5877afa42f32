"""Pydantic schemas shared by all endpoints."""

from pydantic import BaseModel


class FieldError(BaseModel):
    field: str
    message: str


class ErrorResponse(BaseModel):
    """Body of every error response."""
    error: str
    details: list[FieldError] | str | None = None
