"""
Counter storage for invoice numbering.

The numbering service only relies on two operations:

  find_and_lock(org, year)
      Return the counter row (or None) and hold an exclusive lock on it until
      the caller's transaction ends.
  save(counter)
      Persist a new or updated counter. Inserting a second row for the same
      (org, year) raises SequenceConflictError.

SqlSequenceStore implements both on an AsyncSession. It never commits: the
transaction belongs to the caller.
"""
import logging
from typing import Protocol

from sqlalchemy import inspect, select, text
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from invoicing.models.sequence import InvoiceSequence
from invoicing.services.exceptions import (
    SequenceConflictError,
    SequenceLockTimeoutError,
    SequenceStorageUnavailableError,
)

logger = logging.getLogger(__name__)

# PostgreSQL lock_not_available (raised when lock_timeout expires)
_LOCK_TIMEOUT_SQLSTATES = {"55P03"}


class SequenceStore(Protocol):
    async def find_and_lock(self, organization_id: str, year: int) -> InvoiceSequence | None:
        ...

    async def save(self, counter: InvoiceSequence) -> None:
        ...


def is_lock_timeout(exc: DBAPIError) -> bool:
    orig = exc.orig
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if code in _LOCK_TIMEOUT_SQLSTATES:
        return True
    # SQLite reports an expired busy timeout this way
    return "database is locked" in str(orig).lower()


def translate_storage_error(exc: DBAPIError, action: str) -> Exception:
    """Map a driver error to the retryable numbering error the caller sees."""
    if is_lock_timeout(exc):
        logger.warning("Lock wait timed out while trying to %s: %s", action, exc.orig)
        return SequenceLockTimeoutError(f"Timed out waiting for the sequence lock ({action})")
    logger.error("Sequence storage failure while trying to %s: %s", action, exc)
    return SequenceStorageUnavailableError(f"Sequence storage unavailable ({action})")


class SqlSequenceStore:
    def __init__(self, session: AsyncSession, lock_timeout_ms: int | None = None):
        self.session = session
        self.lock_timeout_ms = lock_timeout_ms

    async def _apply_lock_timeout(self) -> None:
        if not self.lock_timeout_ms:
            return
        if self.session.get_bind().dialect.name != "postgresql":
            return
        # SET does not take bind parameters; the value is an int from settings
        await self.session.execute(text(f"SET LOCAL lock_timeout = {int(self.lock_timeout_ms)}"))

    async def find_and_lock(self, organization_id: str, year: int) -> InvoiceSequence | None:
        stmt = (
            select(InvoiceSequence)
            .where(
                InvoiceSequence.organization_id == organization_id,
                InvoiceSequence.year == year,
            )
            .with_for_update()
            # a counter already in the identity map must be re-read under the lock
            .execution_options(populate_existing=True)
        )
        try:
            await self._apply_lock_timeout()
            result = await self.session.execute(stmt)
        except DBAPIError as exc:
            raise translate_storage_error(exc, "lock the sequence") from exc
        return result.scalars().first()

    async def save(self, counter: InvoiceSequence) -> None:
        if inspect(counter).transient:
            await self._insert(counter)
            return
        try:
            await self.session.flush()
        except DBAPIError as exc:
            raise translate_storage_error(exc, "update the sequence") from exc

    async def _insert(self, counter: InvoiceSequence) -> None:
        # Savepoint: a losing insert must not poison the caller's transaction
        try:
            async with self.session.begin_nested():
                self.session.add(counter)
                await self.session.flush()
        except IntegrityError as exc:
            raise SequenceConflictError(counter.organization_id, counter.year) from exc
        except DBAPIError as exc:
            raise translate_storage_error(exc, "create the sequence") from exc

    async def list_for_organization(self, organization_id: str) -> list[InvoiceSequence]:
        """All counters of one organization, newest year first (read-only)."""
        try:
            result = await self.session.execute(
                select(InvoiceSequence)
                .where(InvoiceSequence.organization_id == organization_id)
                .order_by(InvoiceSequence.year.desc())
            )
        except DBAPIError as exc:
            raise translate_storage_error(exc, "list sequences") from exc
        return list(result.scalars().all())
