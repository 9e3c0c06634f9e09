"""
Gapless invoice numbering.

Each (organization, calendar year) owns one counter row. Allocation runs in
the caller's transaction:

  1. lock the counter for the current year (creating it on first use),
  2. increment last_issued by one,
  3. flush, format and hand the number back.

The number only exists once the caller commits. A rollback releases the lock
and leaves last_issued untouched, so the next caller gets the same value.

Two callers can both see "no counter yet" for a fresh year. The loser of the
insert gets SequenceConflictError from the store (its savepoint is rolled
back) and starts over; by then the winner's row exists and find_and_lock
waits on it like any other allocation.
"""
import logging
from collections.abc import Callable
from datetime import datetime
from zoneinfo import ZoneInfo

from sqlalchemy.ext.asyncio import AsyncSession

from invoicing.core.config import Settings, get_settings
from invoicing.core.tenant import TenantContext
from invoicing.models.sequence import InvoiceSequence
from invoicing.services.exceptions import (
    SequenceConflictError,
    SequenceContentionError,
    TenantNotResolvedError,
)
from invoicing.services.formatting import format_invoice_number, validate_prefix
from invoicing.services.sequence_store import SequenceStore, SqlSequenceStore

logger = logging.getLogger(__name__)


class NumberingService:
    def __init__(
        self,
        store: SequenceStore,
        settings: Settings | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.store = store
        self.settings = settings or get_settings()
        self._clock = clock or self._now

    @classmethod
    def for_session(cls, session: AsyncSession, **kwargs) -> "NumberingService":
        settings = kwargs.get("settings") or get_settings()
        store = SqlSequenceStore(session, lock_timeout_ms=settings.numbering_lock_timeout_ms)
        return cls(store, **kwargs)

    def _now(self) -> datetime:
        return datetime.now(ZoneInfo(self.settings.numbering_timezone))

    def current_year(self) -> int:
        return self._clock().year

    def prefix_for(self, tenant: TenantContext) -> str:
        return validate_prefix(tenant.invoice_prefix or self.settings.invoice_default_prefix)

    async def allocate_next(self, tenant: TenantContext | None) -> str:
        """
        Reserve the next invoice number for the tenant's organization.

        Does not commit. The caller commits (number issued) or rolls back
        (nothing issued, no gap).

        Raises:
            TenantNotResolvedError: no organization in the tenant context.
            SequenceContentionError: counter creation kept conflicting.
            SequenceLockTimeoutError / SequenceStorageUnavailableError:
                propagated from the store; the caller must roll back.
        """
        if tenant is None or not tenant.organization_id:
            raise TenantNotResolvedError("No organization bound to the calling context")

        organization_id = tenant.organization_id
        year = self.current_year()
        max_attempts = self.settings.numbering_max_attempts

        for attempt in range(1, max_attempts + 1):
            try:
                counter = await self._lock_or_create(tenant, year)
            except SequenceConflictError:
                logger.warning(
                    "Concurrent creation of sequence org=%s year=%s, retrying (attempt %d/%d)",
                    organization_id,
                    year,
                    attempt,
                    max_attempts,
                )
                continue

            counter.last_issued += 1
            await self.store.save(counter)

            number = format_invoice_number(
                counter.prefix,
                year,
                counter.last_issued,
                width=self.settings.invoice_number_width,
            )
            logger.info("Allocated invoice number %s for org=%s", number, organization_id)
            return number

        raise SequenceContentionError(
            f"Could not create the {year} sequence for organization "
            f"{organization_id!r} after {max_attempts} attempts"
        )

    async def _lock_or_create(self, tenant: TenantContext, year: int) -> InvoiceSequence:
        counter = await self.store.find_and_lock(tenant.organization_id, year)
        if counter is not None:
            return counter

        counter = InvoiceSequence(
            organization_id=tenant.organization_id,
            year=year,
            prefix=self.prefix_for(tenant),
            last_issued=0,
        )
        await self.store.save(counter)
        logger.info(
            "Created invoice sequence org=%s year=%s prefix=%s",
            tenant.organization_id,
            year,
            counter.prefix,
        )
        return counter
