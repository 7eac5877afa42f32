"""
Pytest configuration and shared fixtures.

Points the application at a throwaway SQLite file before anything from
``app`` is imported, creates the schema once, and empties the registrants
table after every test.

Fixtures:
    - db: SQLAlchemy session for direct setup and assertions
    - store: RegistrantStore bound to ``db`` (no storage monitor)
    - client: FastAPI TestClient (lifespan not started)
    - make_payload: factory for registration payloads
    - assert_pairings_consistent: checks symmetry / no self-match / one partner
"""

import os
import tempfile
from collections import Counter

_tmpdir = tempfile.mkdtemp(prefix="rcssa-match-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_tmpdir, 'test.db')}"
os.environ.setdefault("LOG_LEVEL", "DEBUG")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from app.db.base import Base  # noqa: E402
from app.db.session import SessionLocal, engine  # noqa: E402
from app.main import app  # noqa: E402
from app.models.registrant import Registrant  # noqa: E402
from app.services.registrant_store import RegistrantStore  # noqa: E402


@pytest.fixture(scope="session", autouse=True)
def schema():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def clean_registrants():
    yield
    with engine.begin() as conn:
        conn.execute(Registrant.__table__.delete())


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def store(db):
    return RegistrantStore(db)


@pytest.fixture
def client():
    """TestClient that turns unhandled errors into 500 responses."""
    return TestClient(app, raise_server_exceptions=False)


@pytest.fixture
def make_payload():
    def _make(n: int, major: str = "CS", **overrides) -> dict:
        payload = {
            "name": f"Student {n}",
            "email": f"student{n}@rice.edu",
            "netId": f"st{n}",
            "major": major,
            "graduationYear": 2026,
        }
        payload.update(overrides)
        return payload

    return _make


@pytest.fixture
def assert_pairings_consistent():
    def _check() -> list[Registrant]:
        session = SessionLocal()
        try:
            registrants = session.query(Registrant).all()
            by_id = {r.id: r for r in registrants}
            targets = Counter()

            for r in registrants:
                assert r.is_matched == (r.matched_with is not None), r
                if not r.is_matched:
                    continue
                assert r.matched_with != r.id, f"{r} matched to itself"
                partner = by_id.get(r.matched_with)
                assert partner is not None, f"{r} points at a missing partner"
                assert partner.matched_with == r.id, f"{r} and {partner} are not symmetric"
                targets[r.matched_with] += 1

            assert all(count == 1 for count in targets.values())
            assert len({r.email for r in registrants}) == len(registrants)
            assert len({r.net_id for r in registrants}) == len(registrants)
            return registrants
        finally:
            session.close()

    return _check
