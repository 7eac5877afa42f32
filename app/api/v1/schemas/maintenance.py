"""Pydantic schemas for maintenance endpoints."""

from datetime import datetime
from pydantic import BaseModel


class ReconciliationResponse(BaseModel):
    """Response from running a reconciliation pass."""
    message: str
    checked: int
    repaired: int
    repaired_ids: list[str]
    started_at: datetime
    completed_at: datetime | None = None
