"""
Matching engine orchestrator.

Admits registrants and pairs each newly admitted one with at most one
unmatched partner. Uses greedy first-available assignment: there is no
scoring, the selection policy offers one candidate and the engine tries to
commit it.

Flow for register_and_match:
  1. Idempotent admission: an email already on file returns that record's
     current state, no new match attempt
  2. Create the registrant (ValidationError / ConflictError from the store)
  3. Select a candidate (same major first, then anyone unmatched)
  4. Claim both records with a conditional write; on a lost race, reload
     and search again up to match_max_attempts times
  5. Report {matched, user, match?}

Consistency:
  - Within this process the search + claim sequence is serialized by a lock
  - Across processes the claim is compare-and-swap, so two requests can
    never both commit against the same candidate
  - On every read of a matched registrant the partner is re-checked; if it
    is gone or no longer points back, the registrant is healed to unmatched
    with a conditional write that never erases a newer pairing
"""

import logging
import threading
from dataclasses import dataclass

from app.config import get_settings
from app.exceptions import ConflictError, NotFoundError
from app.matching.selection import select_candidate, is_same_major
from app.models.registrant import Registrant
from app.services.registrant_store import RegistrantStore

logger = logging.getLogger(__name__)

# Serializes candidate search + claim for requests handled by this process
_pairing_lock = threading.Lock()


def partner_summary(partner: Registrant) -> dict:
    """Public view of a partner. Never exposes the partner's match state."""
    return {
        "name": partner.name,
        "email": partner.email,
        "major": partner.major,
        "graduationYear": partner.graduation_year,
    }


@dataclass
class MatchOutcome:
    """Result of a registration."""

    matched: bool
    user: Registrant
    match: Registrant | None = None


@dataclass
class MatchStatus:
    """Result of a match query."""

    matched: bool
    match: Registrant | None = None


def resolve_partner(store: RegistrantStore, registrant: Registrant) -> Registrant | None:
    """
    Return the registrant's partner, healing a broken pairing.

    A matched registrant whose partner record is missing, or whose partner
    does not point back at it, is reset to unmatched and persisted. The reset
    only applies while the registrant still points at the partner that was
    checked; if another request re-paired it in the meantime, the registrant
    is reloaded and its current pairing is checked instead.

    Returns:
        The partner, or None if the registrant is (now) unmatched.
    """
    while registrant.is_matched:
        checked_partner_id = registrant.matched_with
        partner = None
        if checked_partner_id is not None:
            partner = store.find_by_id(checked_partner_id)

        if partner is not None and partner.is_matched and partner.matched_with == registrant.id:
            return partner

        logger.warning(
            "Healing registrant %s: partner %s %s",
            registrant.id,
            checked_partner_id,
            "is missing" if partner is None else "does not point back",
        )
        released = store.release(registrant.id, checked_partner_id)
        store.refresh(registrant)
        if released:
            return None

        logger.info("Pairing of %s changed while healing, re-checking", registrant.id)

    return None


def _current_state(store: RegistrantStore, registrant: Registrant) -> MatchOutcome:
    partner = resolve_partner(store, registrant)
    return MatchOutcome(matched=partner is not None, user=registrant, match=partner)


def _lookup_email(fields) -> str | None:
    if not isinstance(fields, dict):
        return None
    email = fields.get("email")
    if not isinstance(email, str) or not email.strip():
        return None
    return email.strip()


def register_and_match(
    store: RegistrantStore,
    fields: dict,
    max_attempts: int | None = None,
) -> MatchOutcome:
    """
    Admit a registrant and try to pair it.

    Args:
        store: Registrant store bound to the caller's session
        fields: Raw registration payload (name, email, netId, major, graduationYear)
        max_attempts: Claim attempts before leaving the registrant pending
                      (defaults to settings.match_max_attempts)

    Returns:
        MatchOutcome with the registrant and, if paired, the partner.

    Raises:
        ValidationError: payload is missing or has malformed fields
        ConflictError: netId belongs to a registrant with a different email
        StorageUnavailable: database unreachable or timed out
    """
    if max_attempts is None:
        max_attempts = get_settings().match_max_attempts

    email = _lookup_email(fields)
    existing = store.find_by_email(email) if email else None
    if existing is not None:
        logger.info("Re-registration for %s, returning existing record %s", email, existing.id)
        return _current_state(store, existing)

    try:
        registrant = store.create(fields)
    except ConflictError as e:
        existing = store.find_by_email(email) if email else None
        if existing is None:
            logger.warning("Registration conflict on %s that is not a re-registration", e.field)
            raise
        logger.info("Concurrent duplicate registration for %s, returning existing record", email)
        return _current_state(store, existing)

    return _find_and_commit(store, registrant, max_attempts)


def _find_and_commit(
    store: RegistrantStore,
    registrant: Registrant,
    max_attempts: int,
) -> MatchOutcome:
    for attempt in range(1, max_attempts + 1):
        with _pairing_lock:
            store.refresh(registrant)

            # Another registration may have claimed us since we were created
            if registrant.is_matched:
                partner = resolve_partner(store, registrant)
                if partner is not None:
                    logger.info(
                        "Registrant %s was paired with %s by a concurrent registration",
                        registrant.id,
                        partner.id,
                    )
                    return MatchOutcome(matched=True, user=registrant, match=partner)

            candidate = select_candidate(store, registrant)
            if candidate is None:
                logger.info("No unmatched registrants, %s left pending", registrant.id)
                return MatchOutcome(matched=False, user=registrant)

            candidate_id = candidate.id
            same_major = is_same_major(registrant, candidate)
            if store.claim_pair(registrant.id, candidate_id):
                logger.info(
                    "Matched %s with %s (%s)",
                    registrant.id,
                    candidate_id,
                    "same major" if same_major else "major fallback",
                )
                return MatchOutcome(matched=True, user=registrant, match=candidate)

        logger.info(
            "Lost race for candidate %s (attempt %d/%d)",
            candidate_id,
            attempt,
            max_attempts,
        )

    logger.warning(
        "Gave up pairing %s after %d attempts, left pending",
        registrant.id,
        max_attempts,
    )
    return MatchOutcome(matched=False, user=registrant)


def query_match(store: RegistrantStore, registrant_id) -> MatchStatus:
    """
    Report a registrant's current pairing.

    Raises:
        NotFoundError: no registrant with this id
    """
    registrant = store.find_by_id(registrant_id)
    if registrant is None:
        raise NotFoundError(registrant_id)

    partner = resolve_partner(store, registrant)
    return MatchStatus(matched=partner is not None, match=partner)
