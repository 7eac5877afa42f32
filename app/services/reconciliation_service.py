"""
Reconciliation service — re-checks symmetry of every recorded pairing.

Called by the /maintenance/reconcile endpoint. For each matched registrant:
  1. Resolve the recorded partner
  2. If the partner is missing or does not point back, reset the
     registrant to unmatched (same rule as the read path)

Lets an operator repair asymmetric state without waiting for the affected
registrants to be read again.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime

from app.matching.engine import resolve_partner
from app.services.registrant_store import RegistrantStore

logger = logging.getLogger(__name__)


@dataclass
class ReconciliationResult:
    """Summary of a reconciliation pass."""

    checked: int = 0
    repaired: int = 0
    repaired_ids: list = field(default_factory=list)

    # Metadata
    started_at: datetime = field(default_factory=datetime.utcnow)
    completed_at: datetime | None = None

    def to_dict(self) -> dict:
        return {
            "checked": self.checked,
            "repaired": self.repaired,
            "repaired_ids": self.repaired_ids,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


def reconcile_matches(store: RegistrantStore) -> ReconciliationResult:
    """
    Heal every matched registrant whose pairing is broken.

    Args:
        store: Registrant store bound to a session

    Returns:
        ReconciliationResult with counts and the ids that were reset.
    """
    result = ReconciliationResult()

    matched = store.list_matched()
    logger.info("Starting reconciliation of %d matched registrants", len(matched))

    for registrant in matched:
        # Skip registrants unmatched since the list was loaded
        store.refresh(registrant)
        if not registrant.is_matched:
            continue

        result.checked += 1
        if resolve_partner(store, registrant) is None:
            result.repaired += 1
            result.repaired_ids.append(str(registrant.id))

    result.completed_at = datetime.utcnow()

    logger.info(
        "Reconciliation complete: %d checked, %d repaired",
        result.checked,
        result.repaired,
    )

    return result
