"""
Tests for the matching engine.

Covers:
- Same-major pairing and major fallback
- Idempotent re-registration
- Self-healing of dangling and asymmetric pairings
- Concurrent registrations never double-allocate
- Lost claim races are retried, then given up
"""

import threading
import uuid

import pytest

from app.db.session import SessionLocal
from app.exceptions import ConflictError, NotFoundError, ValidationError
from app.matching.engine import register_and_match, query_match, partner_summary, resolve_partner
from app.models.registrant import Registrant
from app.services.registrant_store import RegistrantStore


def test_first_registrant_waits_second_same_major_matches(store, make_payload, assert_pairings_consistent):
    first = register_and_match(store, make_payload(1, "CS"))
    assert first.matched is False
    assert first.match is None

    second = register_and_match(store, make_payload(2, "CS"))
    assert second.matched is True
    assert second.match.id == first.user.id

    status = query_match(store, first.user.id)
    assert status.matched is True
    assert status.match.id == second.user.id
    assert_pairings_consistent()


def test_major_fallback_when_no_same_major(store, make_payload):
    first = register_and_match(store, make_payload(1, "CS"))

    second = register_and_match(store, make_payload(2, "Math"))

    assert second.matched is True
    assert second.match.id == first.user.id


def test_partner_summary_exposes_public_fields_only(store, make_payload):
    register_and_match(store, make_payload(1, "CS"))
    outcome = register_and_match(store, make_payload(2, "CS"))

    assert partner_summary(outcome.match) == {
        "name": "Student 1",
        "email": "student1@rice.edu",
        "major": "CS",
        "graduationYear": 2026,
    }


def test_reregistration_returns_same_record(store, db, make_payload):
    first = register_and_match(store, make_payload(1))
    again = register_and_match(store, make_payload(1, name="Renamed"))

    assert again.user.id == first.user.id
    assert again.matched is False
    assert db.query(Registrant).count() == 1


def test_reregistration_of_matched_returns_partner(store, make_payload):
    first = register_and_match(store, make_payload(1))
    second = register_and_match(store, make_payload(2))

    again = register_and_match(store, make_payload(1))

    assert again.matched is True
    assert again.user.id == first.user.id
    assert again.match.id == second.user.id


def test_reregistration_does_not_attempt_new_match(store, make_payload):
    first = store.create(make_payload(1))
    store.create(make_payload(2))

    again = register_and_match(store, make_payload(1))

    assert again.matched is False
    assert again.user.id == first.id


def test_validation_error_propagates(store):
    with pytest.raises(ValidationError) as exc_info:
        register_and_match(store, {"name": "No Major", "email": "x@rice.edu", "netId": "x", "graduationYear": 2026})

    assert exc_info.value.fields == ["major"]


def test_net_id_taken_by_other_email_is_a_conflict(store, make_payload):
    register_and_match(store, make_payload(1))

    with pytest.raises(ConflictError):
        register_and_match(store, make_payload(2, netId="st1"))


def test_concurrent_duplicate_resolves_to_existing(store, make_payload, monkeypatch):
    """Create loses a race to an identical submission: return the winner's record."""
    winner = store.create(make_payload(1))
    real_find = store.find_by_email
    lookups = []

    def find_after_race(email):
        lookups.append(email)
        # First lookup runs before the concurrent insert became visible
        return None if len(lookups) == 1 else real_find(email)

    monkeypatch.setattr(store, "find_by_email", find_after_race)

    outcome = register_and_match(store, make_payload(1))

    assert outcome.user.id == winner.id
    assert outcome.matched is False


def test_query_unknown_registrant(store):
    with pytest.raises(NotFoundError):
        query_match(store, uuid.uuid4())
    with pytest.raises(NotFoundError):
        query_match(store, "garbage")


def test_query_heals_missing_partner(store, db, make_payload, assert_pairings_consistent):
    first = register_and_match(store, make_payload(1))
    second = register_and_match(store, make_payload(2))
    db.query(Registrant).filter(Registrant.id == second.user.id).delete()
    db.commit()

    status = query_match(store, first.user.id)

    assert status.matched is False
    healed = store.find_by_id(first.user.id)
    store.refresh(healed)
    assert healed.is_matched is False
    assert healed.matched_with is None
    assert_pairings_consistent()


def test_reregistration_heals_missing_partner(store, db, make_payload):
    first = register_and_match(store, make_payload(1))
    second = register_and_match(store, make_payload(2))
    db.query(Registrant).filter(Registrant.id == second.user.id).delete()
    db.commit()

    again = register_and_match(store, make_payload(1))

    assert again.matched is False
    assert again.user.is_matched is False


def test_query_heals_asymmetric_pairing(store, make_payload, assert_pairings_consistent):
    """Only one side of a pairing was written: the orphaned side is reset."""
    a = store.create(make_payload(1))
    b = store.create(make_payload(2))
    store.update(a.id, {"is_matched": True, "matched_with": b.id})

    assert query_match(store, a.id).matched is False
    assert query_match(store, b.id).matched is False
    assert_pairings_consistent()


def test_healed_registrant_can_be_matched_again(store, db, make_payload):
    first = register_and_match(store, make_payload(1))
    second = register_and_match(store, make_payload(2))
    db.query(Registrant).filter(Registrant.id == second.user.id).delete()
    db.commit()
    query_match(store, first.user.id)

    third = register_and_match(store, make_payload(3))

    assert third.matched is True
    assert third.match.id == first.user.id


def test_concurrent_registrations_form_exactly_one_pair(make_payload, assert_pairings_consistent):
    outcomes = []
    errors = []
    barrier = threading.Barrier(3)

    def register(n):
        session = SessionLocal()
        try:
            barrier.wait()
            outcome = register_and_match(RegistrantStore(session), make_payload(n, "CS"))
            outcomes.append((outcome.matched, outcome.user.id))
        except Exception as e:  # surfaced by the assertion below
            errors.append(e)
        finally:
            session.close()

    threads = [threading.Thread(target=register, args=(n,)) for n in range(1, 4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)

    assert errors == []
    assert len(outcomes) == 3
    assert any(matched for matched, _ in outcomes)

    registrants = assert_pairings_consistent()
    assert len(registrants) == 3
    assert sum(r.is_matched for r in registrants) == 2


def test_many_concurrent_registrations_stay_consistent(make_payload, assert_pairings_consistent):
    count = 8
    barrier = threading.Barrier(count)
    errors = []

    def register(n):
        session = SessionLocal()
        try:
            barrier.wait()
            register_and_match(RegistrantStore(session), make_payload(n, "CS" if n % 2 else "Math"))
        except Exception as e:
            errors.append(e)
        finally:
            session.close()

    threads = [threading.Thread(target=register, args=(n,)) for n in range(count)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)

    assert errors == []
    registrants = assert_pairings_consistent()
    assert len(registrants) == count
    # Greedy allocation leaves at most one registrant waiting
    assert sum(not r.is_matched for r in registrants) <= 1


def test_lost_race_retries_with_next_candidate(store, make_payload, assert_pairings_consistent):
    waiting = [store.create(make_payload(n, "CS")).id for n in range(1, 4)]
    real_claim = store.claim_pair
    claimed = []

    def racing_claim(first_id, second_id):
        claimed.append(second_id)
        if len(claimed) == 1:
            # Another request grabs our candidate just before we commit
            interloper = next(i for i in waiting if i != second_id)
            assert real_claim(interloper, second_id)
        return real_claim(first_id, second_id)

    store.claim_pair = racing_claim

    outcome = register_and_match(store, make_payload(4, "CS"))

    assert outcome.matched is True
    assert len(claimed) == 2
    assert outcome.match.id != claimed[0]
    assert_pairings_consistent()


def test_gives_up_after_max_attempts(store, make_payload):
    store.create(make_payload(1))
    attempts = []

    def always_lose(first_id, second_id):
        attempts.append(second_id)
        return False

    store.claim_pair = always_lose

    outcome = register_and_match(store, make_payload(2), max_attempts=3)

    assert outcome.matched is False
    assert len(attempts) == 3
    store.refresh(outcome.user)
    assert outcome.user.is_matched is False


def test_stale_heal_does_not_erase_newer_pairing(store, db, make_payload, assert_pairings_consistent):
    """A request holding an outdated view of a broken pairing must not undo a re-pairing."""
    a = register_and_match(store, make_payload(1)).user
    b = register_and_match(store, make_payload(2)).user
    db.query(Registrant).filter(Registrant.id == b.id).delete()
    db.commit()

    other_session = SessionLocal()
    try:
        other_store = RegistrantStore(other_session)
        stale_a = other_store.find_by_id(a.id)
        assert stale_a.matched_with == b.id

        # Meanwhile A is healed and re-paired with a new arrival
        assert query_match(store, a.id).matched is False
        c = register_and_match(store, make_payload(3)).user
        assert store.find_by_id(c.id).matched_with == a.id

        partner = resolve_partner(other_store, stale_a)

        assert partner is not None
        assert partner.id == c.id
        assert stale_a.matched_with == c.id
    finally:
        other_session.close()

    d = register_and_match(store, make_payload(4))

    assert d.matched is False
    assert_pairings_consistent()
