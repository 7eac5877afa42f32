"""
Candidate selection policy.

Greedy, first-available: a new registrant is offered exactly one candidate.

Order of preference:
  1. Any unmatched registrant with the same major
  2. Any unmatched registrant at all (major fallback)

The candidate is never the registrant itself and is never already matched.
Among several eligible candidates no tie-break is applied; whichever one
the database returns first is offered. This is not FIFO and callers must
not rely on who has waited longest.
"""

import logging

from app.models.registrant import Registrant
from app.services.registrant_store import RegistrantStore

logger = logging.getLogger(__name__)


def select_candidate(store: RegistrantStore, registrant: Registrant) -> Registrant | None:
    """Pick a partner candidate for ``registrant``, or None if nobody is waiting."""
    candidate = store.find_unmatched(exclude_id=registrant.id, major=registrant.major)
    if candidate is not None:
        return candidate

    candidate = store.find_unmatched(exclude_id=registrant.id)
    if candidate is not None:
        logger.debug(
            "No unmatched %s registrant for %s, falling back to major %s",
            registrant.major,
            registrant.id,
            candidate.major,
        )
    return candidate


def is_same_major(registrant: Registrant, candidate: Registrant) -> bool:
    return registrant.major == candidate.major
