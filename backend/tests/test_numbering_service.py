"""
Tests for the allocate-next-number protocol in NumberingService.

Most tests run against the SQLite store with one committed transaction per
allocation, the way requests use the service. The creation-race tests use a
scripted store so the losing side of the race is exercised deterministically.
"""
import asyncio
from datetime import datetime

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from invoicing.core.config import get_settings
from invoicing.core.db import build_engine
from invoicing.core.tenant import TenantContext
from invoicing.models.sequence import InvoiceSequence
from invoicing.services.exceptions import (
    SequenceConflictError,
    SequenceContentionError,
    SequenceLockTimeoutError,
    SequenceStorageUnavailableError,
    TenantNotResolvedError,
)
from invoicing.services.numbering import NumberingService

ACME = TenantContext(organization_id="acme")
GLOBEX = TenantContext(organization_id="globex")


def _seq(number: str) -> int:
    return int(number.rsplit("-", 1)[1])


# ---------------------------------------------------------------------------
# Sequential behaviour
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_first_allocation_starts_at_one(allocate):
    assert await allocate(ACME) == "FA2026-00001"


@pytest.mark.asyncio
async def test_sequential_allocations_have_no_gaps(allocate):
    numbers = [await allocate(ACME) for _ in range(5)]
    assert numbers == [f"FA2026-0000{i}" for i in range(1, 6)]


@pytest.mark.asyncio
async def test_new_year_restarts_at_one(allocate, session_factory):
    for _ in range(3):
        await allocate(ACME, year=2026)

    assert await allocate(ACME, year=2027) == "FA2027-00001"

    async with session_factory() as session:
        rows = (
            await session.execute(
                select(InvoiceSequence).where(InvoiceSequence.organization_id == "acme")
            )
        ).scalars().all()
        await session.commit()
    assert {(r.year, r.last_issued) for r in rows} == {(2026, 3), (2027, 1)}


@pytest.mark.asyncio
async def test_tenant_prefix_is_used_for_new_counter(allocate):
    tenant = TenantContext(organization_id="initech", invoice_prefix="INV")
    assert await allocate(tenant) == "INV2026-00001"


@pytest.mark.asyncio
async def test_prefix_change_applies_from_next_counter(allocate):
    assert await allocate(ACME) == "FA2026-00001"

    renamed = TenantContext(organization_id="acme", invoice_prefix="AC")
    # existing 2026 counter keeps its prefix
    assert await allocate(renamed) == "FA2026-00002"
    assert await allocate(renamed, year=2027) == "AC2027-00001"


@pytest.mark.asyncio
async def test_wide_sequence_is_not_truncated(session_factory, make_service):
    async with session_factory() as session:
        session.add(
            InvoiceSequence(organization_id="acme", year=2026, prefix="FA", last_issued=99999)
        )
        await session.commit()

    async with session_factory() as session:
        number = await make_service(session).allocate_next(ACME)
        await session.commit()
    assert number == "FA2026-100000"


@pytest.mark.asyncio
@pytest.mark.parametrize("tenant", [None, TenantContext(organization_id="")])
async def test_missing_tenant_is_rejected(db_session, make_service, tenant):
    with pytest.raises(TenantNotResolvedError):
        await make_service(db_session).allocate_next(tenant)


# ---------------------------------------------------------------------------
# Transactions and concurrency
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_rolled_back_allocation_leaves_no_gap(allocate, session_factory, make_service):
    assert await allocate(ACME) == "FA2026-00001"

    async with session_factory() as session:
        assert await make_service(session).allocate_next(ACME) == "FA2026-00002"
        await session.rollback()

    assert await allocate(ACME) == "FA2026-00002"


@pytest.mark.asyncio
async def test_rolled_back_first_allocation_leaves_no_counter(allocate, session_factory, make_service):
    async with session_factory() as session:
        await make_service(session).allocate_next(ACME)
        await session.rollback()

    assert await allocate(ACME) == "FA2026-00001"


@pytest.mark.asyncio
async def test_concurrent_allocations_are_gapless(allocate):
    await allocate(ACME)

    numbers = await asyncio.gather(*(allocate(ACME) for _ in range(10)))

    assert sorted(_seq(n) for n in numbers) == list(range(2, 12))


@pytest.mark.asyncio
async def test_concurrent_first_allocations_yield_one_to_n(allocate):
    numbers = await asyncio.gather(*(allocate(ACME) for _ in range(8)))

    assert sorted(_seq(n) for n in numbers) == list(range(1, 9))
    assert all(n.startswith("FA2026-") for n in numbers)


@pytest.mark.asyncio
async def test_organizations_do_not_influence_each_other(allocate):
    calls = [allocate(ACME) if i % 2 else allocate(GLOBEX) for i in range(10)]
    numbers = await asyncio.gather(*calls)

    acme = sorted(_seq(n) for i, n in enumerate(numbers) if i % 2)
    globex = sorted(_seq(n) for i, n in enumerate(numbers) if not i % 2)
    assert acme == [1, 2, 3, 4, 5]
    assert globex == [1, 2, 3, 4, 5]


# ---------------------------------------------------------------------------
# Creation race (scripted store)
# ---------------------------------------------------------------------------

class RacingStore:
    """Reports no counter on the first `losses` lookups and loses every insert."""

    def __init__(self, winner: InvoiceSequence | None, losses: int = 1):
        self.winner = winner
        self.losses = losses
        self.lock_calls = 0
        self.saved: list[int] = []

    async def find_and_lock(self, organization_id, year):
        self.lock_calls += 1
        if self.lock_calls <= self.losses:
            return None
        return self.winner

    async def save(self, counter):
        if counter is not self.winner:
            raise SequenceConflictError(counter.organization_id, counter.year)
        self.saved.append(counter.last_issued)


class BrokenStore:
    def __init__(self, counter: InvoiceSequence):
        self.counter = counter

    async def find_and_lock(self, organization_id, year):
        return self.counter

    async def save(self, counter):
        raise SequenceStorageUnavailableError("connection reset")


def _service(store, year=2026, **overrides):
    settings = get_settings().model_copy(update=overrides)
    return NumberingService(store, settings=settings, clock=lambda: datetime(year, 1, 1))


@pytest.mark.asyncio
async def test_lost_creation_race_is_retried_transparently():
    winner = InvoiceSequence(organization_id="acme", year=2026, prefix="FA", last_issued=1)
    store = RacingStore(winner)

    number = await _service(store).allocate_next(ACME)

    assert number == "FA2026-00002"
    assert store.lock_calls == 2
    assert store.saved == [2]


@pytest.mark.asyncio
async def test_unresolved_creation_race_fails_after_max_attempts():
    store = RacingStore(winner=None, losses=100)

    with pytest.raises(SequenceContentionError):
        await _service(store, numbering_max_attempts=3).allocate_next(ACME)

    assert store.lock_calls == 3


@pytest.mark.asyncio
async def test_storage_failure_is_not_retried():
    counter = InvoiceSequence(organization_id="acme", year=2026, prefix="FA", last_issued=7)

    with pytest.raises(SequenceStorageUnavailableError):
        await _service(BrokenStore(counter)).allocate_next(ACME)


# ---------------------------------------------------------------------------
# Lock timeouts (real SQLite lock)
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_lock_wait_times_out_and_leaves_no_trace(
    tmp_path, session_factory, make_service, allocate
):
    impatient = build_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'numbering.db'}",
        connect_args={"timeout": 0.2},
    )
    try:
        async with session_factory() as holder:
            # first allocation holds the write lock until rollback
            assert await make_service(holder).allocate_next(ACME) == "FA2026-00001"

            async with async_sessionmaker(impatient, expire_on_commit=False)() as waiter:
                with pytest.raises(SequenceLockTimeoutError):
                    await make_service(waiter).allocate_next(ACME)
                await waiter.rollback()

            await holder.rollback()
    finally:
        await impatient.dispose()

    assert await allocate(ACME) == "FA2026-00001"
