"""User endpoints — register for pairing and check a pairing."""

from typing import Any

from fastapi import APIRouter, Body, Depends

from app.matching.engine import register_and_match, query_match, partner_summary
from app.models.registrant import Registrant
from app.services.registrant_store import RegistrantStore, get_store
from app.api.v1.schemas.users import (
    RegistrantResponse,
    PartnerSummary,
    RegistrationResponse,
    MatchStatusResponse,
)

router = APIRouter(prefix="/users", tags=["Users"])


def _registrant_to_response(registrant: Registrant) -> RegistrantResponse:
    """Convert a Registrant ORM object to a RegistrantResponse schema."""
    return RegistrantResponse(
        id=registrant.id,
        name=registrant.name,
        email=registrant.email,
        net_id=registrant.net_id,
        major=registrant.major,
        graduation_year=registrant.graduation_year,
        is_matched=registrant.is_matched,
        matched_with=registrant.matched_with,
        created_at=registrant.created_at,
        updated_at=registrant.updated_at,
    )


@router.post("", response_model=RegistrationResponse, response_model_exclude_unset=True)
def register_user(
    payload: dict[str, Any] = Body(...),
    store: RegistrantStore = Depends(get_store),
):
    """
    Register a student and try to pair them immediately.

    Submitting an email that is already registered returns that
    registration's current state instead of creating a new one.
    """
    outcome = register_and_match(store, payload)

    response = RegistrationResponse(
        matched=outcome.matched,
        user=_registrant_to_response(outcome.user),
    )
    if outcome.match is not None:
        response.match = PartnerSummary(**partner_summary(outcome.match))
    return response


@router.get("/{user_id}/match", response_model=MatchStatusResponse, response_model_exclude_unset=True)
def get_user_match(
    user_id: str,
    store: RegistrantStore = Depends(get_store),
):
    """Check whether a registered student has been paired, and with whom."""
    status = query_match(store, user_id)

    response = MatchStatusResponse(matched=status.matched)
    if status.match is not None:
        response.match = PartnerSummary(**partner_summary(status.match))
    return response
