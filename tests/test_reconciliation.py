"""Tests for the reconciliation pass."""

from app.matching.engine import register_and_match
from app.models.registrant import Registrant
from app.services.reconciliation_service import reconcile_matches


def test_symmetric_pairs_are_left_alone(store, make_payload):
    register_and_match(store, make_payload(1))
    register_and_match(store, make_payload(2))

    result = reconcile_matches(store)

    assert result.checked == 2
    assert result.repaired == 0
    assert result.completed_at is not None


def test_repairs_missing_and_asymmetric_partners(store, db, make_payload, assert_pairings_consistent):
    # Healthy pair
    register_and_match(store, make_payload(1))
    register_and_match(store, make_payload(2))

    # Partner deleted externally
    orphan = register_and_match(store, make_payload(3)).user
    gone = register_and_match(store, make_payload(4)).user
    db.query(Registrant).filter(Registrant.id == gone.id).delete()
    db.commit()

    # Half-written pairing
    half = store.create(make_payload(5))
    other = store.create(make_payload(6))
    store.update(half.id, {"is_matched": True, "matched_with": other.id})

    result = reconcile_matches(store)

    assert result.checked == 4
    assert sorted(result.repaired_ids) == sorted([str(orphan.id), str(half.id)])
    assert result.to_dict()["repaired"] == 2
    assert_pairings_consistent()
