"""Maintenance endpoints — repair pairing state."""

from fastapi import APIRouter, Depends

from app.services.registrant_store import RegistrantStore, get_store
from app.services.reconciliation_service import reconcile_matches
from app.api.v1.schemas.maintenance import ReconciliationResponse

router = APIRouter(prefix="/maintenance", tags=["Maintenance"])


@router.post("/reconcile", response_model=ReconciliationResponse)
def reconcile(store: RegistrantStore = Depends(get_store)):
    """
    Re-check every recorded pairing and reset registrants whose partner
    is missing or no longer points back at them.
    """
    result = reconcile_matches(store)

    return ReconciliationResponse(
        message=f"Reconciliation complete: {result.checked} checked, {result.repaired} repaired",
        **result.to_dict(),
    )
