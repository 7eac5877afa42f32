"""Pydantic schemas for registration and match endpoints."""

import uuid
from datetime import datetime
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Renders fields in camelCase on the wire, accepts either case on input."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RegistrantResponse(CamelModel):
    id: uuid.UUID
    name: str
    email: str
    net_id: str
    major: str
    graduation_year: int
    is_matched: bool
    matched_with: uuid.UUID | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class PartnerSummary(CamelModel):
    """The only view of a partner a registrant ever receives."""
    name: str
    email: str
    major: str
    graduation_year: int


class RegistrationResponse(BaseModel):
    """Outcome of POST /api/users. ``match`` is omitted when not matched."""
    matched: bool
    user: RegistrantResponse
    match: PartnerSummary | None = None


class MatchStatusResponse(BaseModel):
    """Outcome of GET /api/users/{id}/match. ``match`` is omitted when not matched."""
    matched: bool
    match: PartnerSummary | None = None
