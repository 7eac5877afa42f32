"""
Registrant store — uniquely-keyed persistence of registrants.

Wraps a SQLAlchemy session with the point lookups and writes the matching
engine needs. Two writes matter for consistency:

  - create(): admits a registrant, turning a uniqueness violation (found by
    lookup or raised by the database at commit) into ConflictError
  - claim_pair(): compare-and-swap commit of a pairing. Each side is updated
    only while it is still unmatched, both updates share one transaction,
    and rows are touched in ascending id order
  - release(): compare-and-swap heal, unmatching a registrant only while it
    still points at the partner that was found broken

Every operation is guarded: while the storage monitor reports the database
down, or when the driver reports a connectivity failure or timeout, the
operation raises StorageUnavailable instead of blocking.
"""

import logging
import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import Generator

from fastapi import Depends
from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, OperationalError, TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session

from app.db.compat import parse_uuid
from app.db.monitor import StorageMonitor
from app.db.session import get_db, storage_monitor
from app.exceptions import ConflictError, NotFoundError, StorageUnavailable, ValidationError
from app.models.registrant import Registrant

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = {"is_matched", "matched_with"}

# Driver messages for lock contention and per-statement timeouts. These fail the
# request but do not mean the database is down.
CONTENTION_MARKERS = (
    "database is locked",
    "database table is locked",
    "statement timeout",
    "lock timeout",
    "deadlock detected",
)


class RegistrantCreate(BaseModel):
    """Registration payload as submitted by the client."""

    model_config = ConfigDict(
        populate_by_name=True,
        str_strip_whitespace=True,
        extra="ignore",
    )

    # Limits match the column widths on Registrant
    name: str = Field(min_length=1, max_length=255)
    email: str = Field(min_length=1, max_length=255)
    net_id: str = Field(min_length=1, max_length=100, alias="netId")
    major: str = Field(min_length=1, max_length=255)
    graduation_year: int = Field(alias="graduationYear")


def validate_registration(fields) -> RegistrantCreate:
    """Validate a raw payload, collecting every violated field.

    Raises:
        ValidationError: with one detail entry per violation
    """
    try:
        return RegistrantCreate.model_validate(fields)
    except PydanticValidationError as e:
        details = []
        for error in e.errors():
            field = ".".join(str(part) for part in error["loc"]) or "body"
            details.append({"field": field, "message": error["msg"]})
        raise ValidationError(details) from e


def _conflicting_field(error: IntegrityError) -> str:
    message = str(error.orig).lower()
    if "net_id" in message:
        return "netId"
    return "email"


def _is_contention(error: OperationalError) -> bool:
    if error.connection_invalidated:
        return False
    message = str(error.orig).lower()
    return any(marker in message for marker in CONTENTION_MARKERS)


class RegistrantStore:
    """Point lookups and guarded writes over the registrants table."""

    def __init__(self, db: Session, monitor: StorageMonitor | None = None):
        self.db = db
        self.monitor = monitor

    @contextmanager
    def _guard(self, operation: str):
        if self.monitor is not None and not self.monitor.is_available:
            raise StorageUnavailable("Database is unavailable, please retry shortly")
        try:
            yield
        except PoolTimeoutError as e:
            self.db.rollback()
            logger.warning("Connection pool exhausted during %s: %s", operation, e)
            raise StorageUnavailable(f"Storage busy during {operation}") from e
        except OperationalError as e:
            self.db.rollback()
            if _is_contention(e):
                logger.warning("Contention during %s: %s", operation, e.orig)
                raise StorageUnavailable(f"Storage busy during {operation}") from e
            logger.error("Storage failure during %s: %s", operation, e)
            if self.monitor is not None:
                self.monitor.mark_unavailable(str(e))
            raise StorageUnavailable(f"Storage failure during {operation}") from e

    # -- lookups --

    def find_by_email(self, email: str) -> Registrant | None:
        with self._guard("find_by_email"):
            return self.db.query(Registrant).filter(Registrant.email == email).first()

    def find_by_net_id(self, net_id: str) -> Registrant | None:
        with self._guard("find_by_net_id"):
            return self.db.query(Registrant).filter(Registrant.net_id == net_id).first()

    def find_by_id(self, registrant_id) -> Registrant | None:
        parsed = parse_uuid(registrant_id)
        if parsed is None:
            return None
        with self._guard("find_by_id"):
            return self.db.query(Registrant).filter(Registrant.id == parsed).first()

    def find_unmatched(
        self,
        exclude_id: uuid.UUID,
        major: str | None = None,
    ) -> Registrant | None:
        """Return any one unmatched registrant other than ``exclude_id``.

        No ordering is applied: which of several eligible registrants comes
        back is up to the database.
        """
        with self._guard("find_unmatched"):
            query = self.db.query(Registrant).filter(
                Registrant.id != exclude_id,
                Registrant.is_matched.is_(False),
            )
            if major is not None:
                query = query.filter(Registrant.major == major)
            return query.first()

    def list_matched(self) -> list[Registrant]:
        with self._guard("list_matched"):
            return self.db.query(Registrant).filter(Registrant.is_matched.is_(True)).all()

    def refresh(self, registrant: Registrant) -> Registrant:
        """Reload a registrant's committed state."""
        with self._guard("refresh"):
            self.db.refresh(registrant)
        return registrant

    # -- writes --

    def create(self, fields) -> Registrant:
        """Validate and persist a new registrant.

        Raises:
            ValidationError: a required field is missing or malformed
            ConflictError: email or netId already registered
        """
        data = validate_registration(fields)

        with self._guard("create"):
            if self.find_by_email(data.email) is not None:
                raise ConflictError("email", data.email)
            if self.find_by_net_id(data.net_id) is not None:
                raise ConflictError("netId", data.net_id)

            registrant = Registrant(
                name=data.name,
                email=data.email,
                net_id=data.net_id,
                major=data.major,
                graduation_year=data.graduation_year,
                is_matched=False,
                matched_with=None,
            )
            self.db.add(registrant)
            try:
                self.db.commit()
            except IntegrityError as e:
                # Lost a race with a concurrent registration of the same identity
                self.db.rollback()
                raise ConflictError(_conflicting_field(e)) from e
            self.db.refresh(registrant)

        logger.info("Registered %s (%s, major=%s)", registrant.id, registrant.email, registrant.major)
        return registrant

    def update(self, registrant_id, fields: dict) -> Registrant:
        """Apply a partial update to match-state fields.

        Raises:
            NotFoundError: no registrant with this id
        """
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update fields: {', '.join(sorted(unknown))}")

        registrant = self.find_by_id(registrant_id)
        if registrant is None:
            raise NotFoundError(registrant_id)

        with self._guard("update"):
            for key, value in fields.items():
                setattr(registrant, key, value)
            self.db.commit()
            self.db.refresh(registrant)
        return registrant

    def claim_pair(self, first_id: uuid.UUID, second_id: uuid.UUID) -> bool:
        """Atomically pair two registrants if both are still unmatched.

        Returns:
            True if both rows were claimed and committed, False if either had
            already been matched by someone else (nothing is written then).
        """
        if first_id == second_id:
            raise ValueError("A registrant cannot be matched to itself")

        partner_of = {first_id: second_id, second_id: first_id}
        now = datetime.utcnow()

        with self._guard("claim_pair"):
            for registrant_id in sorted(partner_of, key=str):
                result = self.db.execute(
                    update(Registrant)
                    .where(
                        Registrant.id == registrant_id,
                        Registrant.is_matched.is_(False),
                    )
                    .values(
                        is_matched=True,
                        matched_with=partner_of[registrant_id],
                        updated_at=now,
                    )
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    self.db.rollback()
                    logger.debug("Claim on %s failed, already matched", registrant_id)
                    return False
            self.db.commit()

        return True

    def release(self, registrant_id: uuid.UUID, stale_partner_id: uuid.UUID | None) -> bool:
        """Reset a registrant to unmatched if it still points at ``stale_partner_id``.

        Returns:
            False if the registrant's pairing changed since it was read (nothing
            is written then); the caller must reload and re-check.
        """
        if stale_partner_id is None:
            points_at_stale = Registrant.matched_with.is_(None)
        else:
            points_at_stale = Registrant.matched_with == stale_partner_id

        with self._guard("release"):
            result = self.db.execute(
                update(Registrant)
                .where(
                    Registrant.id == registrant_id,
                    Registrant.is_matched.is_(True),
                    points_at_stale,
                )
                .values(is_matched=False, matched_with=None, updated_at=datetime.utcnow())
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                self.db.rollback()
                logger.debug("Release of %s skipped, pairing changed", registrant_id)
                return False
            self.db.commit()

        return True


def get_store(db: Session = Depends(get_db)) -> Generator[RegistrantStore, None, None]:
    """Dependency for getting a store bound to the request's session."""
    yield RegistrantStore(db, monitor=storage_monitor)
