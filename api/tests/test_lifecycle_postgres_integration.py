from __future__ import annotations

import asyncio
import os
from decimal import Decimal

import asyncpg  # type: ignore[import-untyped]
import pytest

from quotebridge.schemas.commands import (
    AcceptQuoteCommand,
    CreateJobCommand,
    SubmitQuoteCommand,
    WithdrawCommand,
)
from quotebridge.services.engine import LifecycleService
from quotebridge.services.errors import RepositoryConflictError, RepositoryNotFoundError
from quotebridge.services.repository import PostgresRepository


@pytest.fixture(scope="session")
def database_url() -> str:
    url = os.getenv("QB_DATABASE_URL") or os.getenv("DATABASE_URL")
    if not url:
        pytest.skip("integration tests require QB_DATABASE_URL or DATABASE_URL")
    return url


@pytest.fixture(autouse=True)
def reset_tables(database_url: str) -> None:
    asyncio.run(_reset(database_url))


def _service(database_url: str, dispatcher, clock) -> tuple[PostgresRepository, LifecycleService]:
    repository = PostgresRepository(database_url, min_pool_size=1, max_pool_size=4)
    return repository, LifecycleService(repository, dispatcher, clock=clock)


def test_bidding_acceptance_and_audit_trail(database_url: str, dispatcher, clock) -> None:
    repository, service = _service(database_url, dispatcher, clock)

    async def scenario():
        try:
            job = await service.create_job(
                CreateJobCommand(homeowner_id="homeowner-1", county="Dublin", town="Drumcondra")
            )
            await service.submit_or_revise_quote(
                SubmitQuoteCommand(job_id=job.id, contractor_id="contractor-a", price=Decimal("170"))
            )
            winner = await service.submit_or_revise_quote(
                SubmitQuoteCommand(job_id=job.id, contractor_id="contractor-b", price=Decimal("150"))
            )
            eligible = await service.list_eligible_jobs("contractor-a")
            await service.accept_quote(
                AcceptQuoteCommand(job_id=job.id, quote_id=winner.quote.id, homeowner_id="homeowner-1")
            )
            return job, eligible, await repository.get_job(job.id), await repository.list_job_quotes(job.id)
        finally:
            await repository.close()

    job, eligible, stored_job, quotes = asyncio.run(scenario())

    # contractor-a already quoted, so the job is not offered again.
    assert eligible == []
    assert stored_job.status == "quote_accepted"
    assert stored_job.assigned_contractor_id == "contractor-b"
    assert {quote.contractor_id: quote.status for quote in quotes} == {
        "contractor-a": "rejected",
        "contractor-b": "accepted",
    }
    assert asyncio.run(_count_events(database_url, job.id)) == 2


def test_concurrent_acceptance_has_one_winner(database_url: str, dispatcher, clock) -> None:
    repository, service = _service(database_url, dispatcher, clock)

    async def scenario():
        try:
            job = await service.create_job(CreateJobCommand(homeowner_id="homeowner-1", county="Dublin", town="Howth"))
            quote_a = await service.submit_or_revise_quote(
                SubmitQuoteCommand(job_id=job.id, contractor_id="contractor-a", price=Decimal("170"))
            )
            quote_b = await service.submit_or_revise_quote(
                SubmitQuoteCommand(job_id=job.id, contractor_id="contractor-b", price=Decimal("150"))
            )
            results = await asyncio.gather(
                service.accept_quote(AcceptQuoteCommand(job_id=job.id, quote_id=quote_a.quote.id)),
                service.accept_quote(AcceptQuoteCommand(job_id=job.id, quote_id=quote_b.quote.id)),
                return_exceptions=True,
            )
            return results, await repository.list_job_quotes(job.id)
        finally:
            await repository.close()

    results, quotes = asyncio.run(scenario())

    assert sum(isinstance(result, RepositoryConflictError) for result in results) == 1
    assert [quote.status for quote in quotes].count("accepted") == 1


def test_expiry_relists_and_withdrawal_persists(database_url: str, dispatcher, clock) -> None:
    repository, service = _service(database_url, dispatcher, clock)

    async def scenario():
        try:
            job = await service.create_job(CreateJobCommand(homeowner_id="homeowner-1", county="Dublin", town="Malahide"))
            await service.submit_or_revise_quote(
                SubmitQuoteCommand(job_id=job.id, contractor_id="contractor-a", price=Decimal("180"))
            )
            await service.withdraw(WithdrawCommand(job_id=job.id, contractor_id="contractor-b", reason_code="too_far"))
            clock.advance(days=6)
            report = await service.run_expiry_sweep(actor_id="local-maintenance")
            return job, report, await repository.get_job(job.id), await repository.list_withdrawn_job_ids("contractor-b")
        finally:
            await repository.close()

    job, report, stored_job, withdrawn = asyncio.run(scenario())

    assert report.relisted_job_ids == [job.id]
    assert stored_job.status == "live"
    assert withdrawn == {job.id}


def test_malformed_job_id_is_not_found(database_url: str, dispatcher, clock) -> None:
    repository, _ = _service(database_url, dispatcher, clock)

    async def scenario() -> None:
        try:
            await repository.get_job("not-a-uuid")
        finally:
            await repository.close()

    with pytest.raises(RepositoryNotFoundError):
        asyncio.run(scenario())


async def _reset(database_url: str) -> None:
    conn = await asyncpg.connect(database_url)
    try:
        await conn.execute(
            """
            truncate table quotes, job_withdrawals, jobs, provenance_events, contractor_profiles
            restart identity cascade
            """
        )
        await conn.execute(
            """
            insert into contractor_profiles (contractor_id, email, service_counties, specialty)
            values
              ('contractor-a', 'a@assessors.ie', array['Dublin'], 'domestic'),
              ('contractor-b', 'b@assessors.ie', array['Dublin', 'Wicklow'], 'both')
            """
        )
    finally:
        await conn.close()


async def _count_events(database_url: str, job_id: str) -> int:
    conn = await asyncpg.connect(database_url)
    try:
        return await conn.fetchval(
            "select count(*) from provenance_events where entity_type = 'job' and entity_id = $1::uuid",
            job_id,
        )
    finally:
        await conn.close()
