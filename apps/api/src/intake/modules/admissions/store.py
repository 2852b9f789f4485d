"""
Admissions Store

Persistence interface used by the identifier allocator, the admission state
machine, credential issuing and the recovery flow, with two implementations:

- SqlAdmissionStore: durable store on an async SQLAlchemy session
- MemoryAdmissionStore: in-process store for development and tests

Design Principles:
- Services depend on the AdmissionStore protocol, never on a concrete store
- Status transitions and recovery challenge updates are conditional writes
  (UPDATE ... WHERE status = ? / WHERE otp_code_hash = ?)
- Identifier uniqueness is enforced by a storage constraint, and violations
  surface as IdentifierConflict rather than raw driver errors
- Connection drops and timeouts surface as TransientError
"""

import asyncio
import logging
import uuid
from collections.abc import AsyncIterator, Callable
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from datetime import UTC, datetime
from typing import Any, Protocol

from sqlalchemy import inspect, select, union_all, update
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import AsyncSession

from intake.core.exceptions import TransientError
from intake.modules.admissions.models import (
    Admission,
    AdmissionStatus,
    AssignedIdentifier,
    IdentifierOwner,
)
from intake.modules.users.models import User, UserRole

logger = logging.getLogger(__name__)

_TRANSIENT_ERRORS = (OperationalError, InterfaceError, PoolTimeoutError, TimeoutError)


class IdentifierConflict(Exception):
    """An identifier is already held by an applicant, an identity or the registry."""

    def __init__(self, value: str):
        self.value = value
        super().__init__(f"Identifier {value} is already assigned")


class DuplicateRecord(Exception):
    """A unique field (e-mail or student_id) already exists."""

    def __init__(self, field: str):
        self.field = field
        super().__init__(f"Duplicate value for {field}")


class AdmissionStore(Protocol):
    """Storage operations the admission and recovery services rely on."""

    def transaction(self) -> AbstractAsyncContextManager[None]:
        """All writes inside the block commit together or not at all."""
        ...

    async def assigned_identifiers(self, prefix: str) -> list[str]:
        """Every identifier starting with prefix held by applicants or identities."""
        ...

    async def reserve_identifier(self, value: str, owner_kind: IdentifierOwner) -> None:
        """Claim an identifier. Raises IdentifierConflict if it is already taken."""
        ...

    async def get_applicant(self, applicant_id: uuid.UUID) -> Admission | None: ...

    async def find_pending_applicant_by_email(self, email: str) -> Admission | None: ...

    async def create_applicant(self, **fields: Any) -> Admission: ...

    async def transition_applicant(
        self,
        applicant_id: uuid.UUID,
        from_status: AdmissionStatus,
        to_status: AdmissionStatus,
        **changes: Any,
    ) -> Admission | None:
        """Atomically move an applicant from from_status to to_status.

        Returns None when the applicant is missing or not in from_status.
        """
        ...

    async def update_applicant(self, applicant: Admission, **changes: Any) -> Admission: ...

    async def get_identity(self, identity_id: uuid.UUID) -> User | None: ...

    async def get_identity_by_email(self, email: str) -> User | None: ...

    async def find_identity(self, email: str, role: UserRole) -> User | None: ...

    async def create_identity(self, **fields: Any) -> User:
        """Create an identity record. Raises DuplicateRecord on e-mail/student_id clash."""
        ...

    async def update_identity(self, identity: User, **changes: Any) -> User: ...

    async def update_identity_if(
        self, identity: User, guard: dict[str, Any], **changes: Any
    ) -> User | None:
        """Apply changes only while every guard column still holds its value.

        Returns None when another writer changed a guarded column first.
        """
        ...

    async def increment_code_attempts(self, identity: User, code_hash: str) -> int | None:
        """Atomically count one verification attempt against the code on file.

        Returns the new count, or None when code_hash is no longer the active code.
        """
        ...


# ============================================
# SQLAlchemy store
# ============================================


class SqlAdmissionStore:
    """AdmissionStore on top of an AsyncSession.

    Outside transaction() every write commits immediately; inside it writes
    are only flushed and committed when the block exits cleanly.
    """

    def __init__(self, db: AsyncSession):
        self._db = db
        self._depth = 0

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        self._depth += 1
        try:
            yield
        except BaseException:
            self._depth -= 1
            if self._depth == 0:
                await self._db.rollback()
            raise
        self._depth -= 1
        if self._depth == 0:
            await self._guard(self._db.commit)

    async def _guard(self, operation: Callable[[], Any]) -> Any:
        """Run a session call, mapping connection failures to TransientError."""
        try:
            return await operation()
        except _TRANSIENT_ERRORS as e:
            logger.error(f"Persistence failure: {e.__class__.__name__}: {e}")
            await self._db.rollback()
            raise TransientError() from e

    async def _execute(self, stmt):
        return await self._guard(lambda: self._db.execute(stmt))

    async def _persist(self, field_for_conflict: str | None = None) -> None:
        """Flush inside a transaction, commit outside one."""
        operation = self._db.flush if self._depth else self._db.commit
        try:
            await self._guard(operation)
        except IntegrityError as e:
            await self._db.rollback()
            raise DuplicateRecord(field_for_conflict or "record") from e

    async def assigned_identifiers(self, prefix: str) -> list[str]:
        pattern = f"{prefix}%"
        stmt = union_all(
            select(Admission.student_id).where(Admission.student_id.like(pattern)),
            select(User.student_id).where(User.student_id.like(pattern)),
            select(AssignedIdentifier.value).where(AssignedIdentifier.value.like(pattern)),
        )
        result = await self._execute(stmt)
        return [value for value in result.scalars().all() if value]

    async def reserve_identifier(self, value: str, owner_kind: IdentifierOwner) -> None:
        # SAVEPOINT so a conflict leaves the surrounding transaction usable
        try:
            async with self._db.begin_nested():
                self._db.add(AssignedIdentifier(value=value, owner_kind=owner_kind))
        except IntegrityError as e:
            raise IdentifierConflict(value) from e
        except _TRANSIENT_ERRORS as e:
            logger.error(f"Persistence failure reserving identifier: {e}")
            raise TransientError() from e

        if not self._depth:
            await self._persist("student_id")

    async def get_applicant(self, applicant_id: uuid.UUID) -> Admission | None:
        return await self._guard(lambda: self._db.get(Admission, applicant_id))

    async def find_pending_applicant_by_email(self, email: str) -> Admission | None:
        result = await self._execute(
            select(Admission)
            .where(Admission.email == email, Admission.status == AdmissionStatus.PENDING)
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def create_applicant(self, **fields: Any) -> Admission:
        applicant = Admission(status=AdmissionStatus.PENDING, **fields)
        self._db.add(applicant)
        await self._persist("email")
        await self._guard(lambda: self._db.refresh(applicant))
        return applicant

    async def transition_applicant(
        self,
        applicant_id: uuid.UUID,
        from_status: AdmissionStatus,
        to_status: AdmissionStatus,
        **changes: Any,
    ) -> Admission | None:
        stmt = (
            update(Admission)
            .where(Admission.id == applicant_id, Admission.status == from_status)
            .values(status=to_status, **changes)
            .returning(Admission)
            .execution_options(populate_existing=True)
        )
        result = await self._execute(stmt)
        applicant = result.scalar_one_or_none()
        if applicant is not None and not self._depth:
            await self._persist()
        return applicant

    async def update_applicant(self, applicant: Admission, **changes: Any) -> Admission:
        for key, value in changes.items():
            setattr(applicant, key, value)
        await self._persist("student_id")
        return applicant

    async def get_identity(self, identity_id: uuid.UUID) -> User | None:
        return await self._guard(lambda: self._db.get(User, identity_id))

    async def get_identity_by_email(self, email: str) -> User | None:
        result = await self._execute(select(User).where(User.email == email))
        return result.scalar_one_or_none()

    async def find_identity(self, email: str, role: UserRole) -> User | None:
        result = await self._execute(select(User).where(User.email == email, User.role == role))
        return result.scalar_one_or_none()

    async def create_identity(self, **fields: Any) -> User:
        identity = User(**fields)
        self._db.add(identity)
        await self._persist("email")
        logger.info(f"Created user: {identity.id}")
        return identity

    async def update_identity(self, identity: User, **changes: Any) -> User:
        for key, value in changes.items():
            setattr(identity, key, value)
        await self._persist("student_id")
        return identity

    async def update_identity_if(
        self, identity: User, guard: dict[str, Any], **changes: Any
    ) -> User | None:
        conditions = [getattr(User, column) == value for column, value in guard.items()]
        stmt = (
            update(User)
            .where(User.id == identity.id, *conditions)
            .values(**changes)
            .returning(User)
            .execution_options(populate_existing=True)
        )
        result = await self._execute(stmt)
        updated = result.scalar_one_or_none()
        if updated is not None and not self._depth:
            await self._persist()
        return updated

    async def increment_code_attempts(self, identity: User, code_hash: str) -> int | None:
        stmt = (
            update(User)
            .where(User.id == identity.id, User.otp_code_hash == code_hash)
            .values(otp_attempts=User.otp_attempts + 1)
            .returning(User)
            .execution_options(populate_existing=True)
        )
        result = await self._execute(stmt)
        updated = result.scalar_one_or_none()
        if updated is None:
            return None
        if not self._depth:
            await self._persist()
        return updated.otp_attempts


# ============================================
# In-memory store
# ============================================


def _column_values(obj: Any) -> dict[str, Any]:
    return {attr.key: getattr(obj, attr.key) for attr in inspect(type(obj)).column_attrs}


class MemoryAdmissionStore:
    """
    AdmissionStore kept in process memory.

    Used when no database is configured and throughout the test suite. One
    instance is created per application (never a module global). Writes are
    serialized with an asyncio.Lock, and a failed transaction restores the
    snapshot taken when it began.
    """

    def __init__(self) -> None:
        self.applicants: dict[uuid.UUID, Admission] = {}
        self.identities: dict[uuid.UUID, User] = {}
        self.registry: dict[str, IdentifierOwner] = {}
        self._lock = asyncio.Lock()
        self._owner: asyncio.Task | None = None

    @asynccontextmanager
    async def _exclusive(self) -> AsyncIterator[None]:
        # Re-entrant for the task that already holds the lock
        if self._owner is not None and self._owner is asyncio.current_task():
            yield
            return
        async with self._lock:
            self._owner = asyncio.current_task()
            try:
                yield
            finally:
                self._owner = None

    def _snapshot(self) -> tuple:
        return (
            {key: (obj, _column_values(obj)) for key, obj in self.applicants.items()},
            {key: (obj, _column_values(obj)) for key, obj in self.identities.items()},
            dict(self.registry),
        )

    def _restore(self, snapshot: tuple) -> None:
        applicants, identities, registry = snapshot
        for target, saved in ((self.applicants, applicants), (self.identities, identities)):
            target.clear()
            for key, (obj, values) in saved.items():
                for attr, value in values.items():
                    setattr(obj, attr, value)
                target[key] = obj
        self.registry = registry

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        async with self._exclusive():
            snapshot = self._snapshot()
            try:
                yield
            except BaseException:
                self._restore(snapshot)
                raise

    def _identifier_taken(self, value: str) -> bool:
        return (
            value in self.registry
            or any(a.student_id == value for a in self.applicants.values())
            or any(u.student_id == value for u in self.identities.values())
        )

    async def assigned_identifiers(self, prefix: str) -> list[str]:
        values = [a.student_id for a in self.applicants.values()]
        values += [u.student_id for u in self.identities.values()]
        values += list(self.registry)
        return [v for v in values if v and v.startswith(prefix)]

    async def reserve_identifier(self, value: str, owner_kind: IdentifierOwner) -> None:
        async with self._exclusive():
            if self._identifier_taken(value):
                raise IdentifierConflict(value)
            self.registry[value] = owner_kind

    async def get_applicant(self, applicant_id: uuid.UUID) -> Admission | None:
        return self.applicants.get(applicant_id)

    async def find_pending_applicant_by_email(self, email: str) -> Admission | None:
        for applicant in self.applicants.values():
            if applicant.email == email and applicant.status == AdmissionStatus.PENDING:
                return applicant
        return None

    async def create_applicant(self, **fields: Any) -> Admission:
        async with self._exclusive():
            now = datetime.now(UTC)
            applicant = Admission(
                id=fields.pop("id", None) or uuid.uuid4(),
                status=fields.pop("status", AdmissionStatus.PENDING),
                submitted_at=now,
                updated_at=now,
                **fields,
            )
            if applicant.student_id and self._identifier_taken(applicant.student_id):
                raise DuplicateRecord("student_id")
            self.applicants[applicant.id] = applicant
            return applicant

    async def transition_applicant(
        self,
        applicant_id: uuid.UUID,
        from_status: AdmissionStatus,
        to_status: AdmissionStatus,
        **changes: Any,
    ) -> Admission | None:
        async with self._exclusive():
            applicant = self.applicants.get(applicant_id)
            if applicant is None or applicant.status != from_status:
                return None
            applicant.status = to_status
            for key, value in changes.items():
                setattr(applicant, key, value)
            applicant.updated_at = datetime.now(UTC)
            return applicant

    async def update_applicant(self, applicant: Admission, **changes: Any) -> Admission:
        async with self._exclusive():
            # The identity created for this applicant holds the same value;
            # cross-set uniqueness is the registry's job.
            new_id = changes.get("student_id")
            if new_id and any(
                a.student_id == new_id and a.id != applicant.id for a in self.applicants.values()
            ):
                raise DuplicateRecord("student_id")
            for key, value in changes.items():
                setattr(applicant, key, value)
            applicant.updated_at = datetime.now(UTC)
            return applicant

    async def get_identity(self, identity_id: uuid.UUID) -> User | None:
        return self.identities.get(identity_id)

    async def get_identity_by_email(self, email: str) -> User | None:
        for identity in self.identities.values():
            if identity.email == email:
                return identity
        return None

    async def find_identity(self, email: str, role: UserRole) -> User | None:
        for identity in self.identities.values():
            if identity.email == email and identity.role == role:
                return identity
        return None

    async def create_identity(self, **fields: Any) -> User:
        async with self._exclusive():
            if any(u.email == fields.get("email") for u in self.identities.values()):
                raise DuplicateRecord("email")
            student_id = fields.get("student_id")
            if student_id and any(u.student_id == student_id for u in self.identities.values()):
                raise DuplicateRecord("student_id")

            now = datetime.now(UTC)
            identity = User(
                id=fields.pop("id", None) or uuid.uuid4(),
                role=fields.pop("role", UserRole.MEMBER),
                last_name=fields.pop("last_name", ""),
                is_active=fields.pop("is_active", True),
                must_change_password=fields.pop("must_change_password", False),
                otp_attempts=0,
                created_at=now,
                updated_at=now,
                **fields,
            )
            self.identities[identity.id] = identity
            logger.info(f"Created user: {identity.id} ({identity.role.value})")
            return identity

    async def update_identity(self, identity: User, **changes: Any) -> User:
        async with self._exclusive():
            new_id = changes.get("student_id")
            if new_id and any(
                u.student_id == new_id and u.id != identity.id for u in self.identities.values()
            ):
                raise DuplicateRecord("student_id")
            for key, value in changes.items():
                setattr(identity, key, value)
            identity.updated_at = datetime.now(UTC)
            return identity

    async def update_identity_if(
        self, identity: User, guard: dict[str, Any], **changes: Any
    ) -> User | None:
        async with self._exclusive():
            if any(getattr(identity, column) != value for column, value in guard.items()):
                return None
            for key, value in changes.items():
                setattr(identity, key, value)
            identity.updated_at = datetime.now(UTC)
            return identity

    async def increment_code_attempts(self, identity: User, code_hash: str) -> int | None:
        async with self._exclusive():
            if identity.otp_code_hash != code_hash:
                return None
            identity.otp_attempts += 1
            return identity.otp_attempts


__all__ = [
    "AdmissionStore",
    "DuplicateRecord",
    "IdentifierConflict",
    "MemoryAdmissionStore",
    "SqlAdmissionStore",
]
