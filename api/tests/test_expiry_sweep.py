from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from decimal import Decimal

from quotebridge.schemas.commands import AcceptQuoteCommand, CreateJobCommand, SubmitQuoteCommand
from quotebridge.services.engine import LifecycleService
from quotebridge.services.errors import RepositoryStaleError
from quotebridge.services.expiry import expiry_cutoff


def _create(town: str = "Rathmines") -> CreateJobCommand:
    return CreateJobCommand(homeowner_id="homeowner-1", county="Dublin", town=town, contact_email="owner@example.ie")


def _quote(job_id: str, contractor_id: str, price: str = "180") -> SubmitQuoteCommand:
    return SubmitQuoteCommand(job_id=job_id, contractor_id=contractor_id, price=Decimal(price))


def test_stale_lone_quote_expires_and_job_is_relisted(service, repository, dispatcher, clock) -> None:
    async def scenario():
        job = await service.create_job(_create())
        quote = await service.submit_or_revise_quote(_quote(job.id, "contractor-a"))
        clock.advance(days=6)
        report = await service.run_expiry_sweep(actor_id="local-maintenance")
        return job, quote, report

    job, quote, report = asyncio.run(scenario())

    assert report.expired_count == 1
    assert report.relisted_count == 1
    assert report.expired_quote_ids == [quote.quote.id]
    assert report.relisted_job_ids == [job.id]
    assert report.has_more is False
    assert repository.quotes[quote.quote.id].status == "rejected"
    assert repository.jobs[job.id].status == "live"

    expired = dispatcher.of_kind("quote_expired")
    assert [request.recipient for request in expired] == ["contractor-a"]
    assert expired[0].payload["relisted"] is True

    audit = repository.events[-1]
    assert (audit.event_type, audit.actor_type, audit.actor_id) == ("expired", "machine", "local-maintenance")


def test_fresh_quotes_are_left_alone(service, repository, clock) -> None:
    async def scenario():
        job = await service.create_job(_create())
        await service.submit_or_revise_quote(_quote(job.id, "contractor-a"))
        clock.advance(days=4, hours=23)
        return job, await service.run_expiry_sweep()

    job, report = asyncio.run(scenario())

    assert report.expired_count == 0
    assert report.skipped_count == 0
    assert repository.jobs[job.id].status == "pending_quote"


def test_job_keeps_pending_status_while_another_quote_is_active(service, repository, clock) -> None:
    async def scenario():
        job = await service.create_job(_create())
        old = await service.submit_or_revise_quote(_quote(job.id, "contractor-a"))
        clock.advance(days=3)
        await service.submit_or_revise_quote(_quote(job.id, "contractor-b", "160"))
        clock.advance(days=3)
        return job, old, await service.run_expiry_sweep()

    job, old, report = asyncio.run(scenario())

    assert report.expired_quote_ids == [old.quote.id]
    assert report.relisted_count == 0
    assert repository.jobs[job.id].status == "pending_quote"


def test_revision_restarts_the_expiry_clock(service, repository, clock) -> None:
    async def scenario():
        job = await service.create_job(_create())
        quote = await service.submit_or_revise_quote(_quote(job.id, "contractor-a", "200"))
        clock.advance(days=4)
        await service.submit_or_revise_quote(_quote(job.id, "contractor-a", "185"))
        clock.advance(days=2)
        return quote, await service.run_expiry_sweep()

    quote, report = asyncio.run(scenario())

    assert report.expired_count == 0
    assert repository.quotes[quote.quote.id].status == "pending"


def test_accepted_quotes_never_expire(service, repository, clock) -> None:
    async def scenario():
        job = await service.create_job(_create())
        quote = await service.submit_or_revise_quote(_quote(job.id, "contractor-a"))
        await service.accept_quote(AcceptQuoteCommand(job_id=job.id, quote_id=quote.quote.id))
        clock.advance(days=30)
        return job, await service.run_expiry_sweep()

    job, report = asyncio.run(scenario())

    assert report.expired_count == 0
    assert repository.jobs[job.id].status == "quote_accepted"


def test_batch_size_limits_work_and_reports_more(service, repository, clock) -> None:
    async def scenario():
        for index in range(3):
            job = await service.create_job(_create(town=f"Town {index}"))
            await service.submit_or_revise_quote(_quote(job.id, "contractor-a"))
        clock.advance(days=7)
        first = await service.run_expiry_sweep(batch_size=2)
        second = await service.run_expiry_sweep(batch_size=2)
        return first, second

    first, second = asyncio.run(scenario())

    assert (first.expired_count, first.has_more) == (2, True)
    assert (second.expired_count, second.has_more) == (1, False)
    assert all(quote.status == "rejected" for quote in repository.quotes.values())


def test_batch_size_is_clamped_to_the_configured_maximum(repository, dispatcher, clock) -> None:
    service = LifecycleService(
        repository,
        dispatcher,
        clock=clock,
        sweep_default_batch_size=5,
        sweep_max_batch_size=10,
    )

    report = asyncio.run(service.run_expiry_sweep(batch_size=5000))

    assert report.batch_size == 10


def test_one_failing_quote_does_not_abort_the_sweep(service, repository, clock) -> None:
    original_expire = repository.expire_quote
    failing: set[str] = set()

    async def flaky_expire(quote_id, **kwargs):
        if quote_id in failing:
            raise RepositoryStaleError("quote was modified concurrently")
        return await original_expire(quote_id, **kwargs)

    repository.expire_quote = flaky_expire

    async def scenario():
        first_job = await service.create_job(_create(town="Ranelagh"))
        first = await service.submit_or_revise_quote(_quote(first_job.id, "contractor-a"))
        clock.advance(minutes=1)
        second_job = await service.create_job(_create(town="Clontarf"))
        second = await service.submit_or_revise_quote(_quote(second_job.id, "contractor-b"))
        failing.add(first.quote.id)
        clock.advance(days=6)
        return first, second, await service.run_expiry_sweep()

    first, second, report = asyncio.run(scenario())

    assert [failure.quote_id for failure in report.failures] == [first.quote.id]
    assert report.expired_quote_ids == [second.quote.id]
    assert repository.quotes[first.quote.id].status == "pending"


def test_quote_revised_after_selection_is_skipped(service, repository, clock) -> None:
    original_list = repository.list_expirable_quote_ids

    async def scenario():
        job = await service.create_job(_create())
        quote = await service.submit_or_revise_quote(_quote(job.id, "contractor-a"))
        clock.advance(days=6)

        async def list_then_revise(**kwargs):
            ids = await original_list(**kwargs)
            await service.submit_or_revise_quote(_quote(job.id, "contractor-a", "150"))
            return ids

        repository.list_expirable_quote_ids = list_then_revise
        return quote, await service.run_expiry_sweep()

    quote, report = asyncio.run(scenario())

    assert report.skipped_count == 1
    assert report.expired_count == 0
    assert repository.quotes[quote.quote.id].price == Decimal("150.00")


def test_quote_accepted_after_selection_is_skipped(service, repository, dispatcher, clock) -> None:
    original_list = repository.list_expirable_quote_ids

    async def scenario():
        job = await service.create_job(_create())
        quote = await service.submit_or_revise_quote(_quote(job.id, "contractor-a"))
        clock.advance(days=6)

        async def list_then_accept(**kwargs):
            ids = await original_list(**kwargs)
            await service.accept_quote(
                AcceptQuoteCommand(job_id=job.id, quote_id=quote.quote.id, homeowner_id="homeowner-1")
            )
            return ids

        repository.list_expirable_quote_ids = list_then_accept
        return job, quote, await service.run_expiry_sweep()

    job, quote, report = asyncio.run(scenario())

    assert report.skipped_count == 1
    assert report.expired_count == 0
    assert repository.quotes[quote.quote.id].status == "accepted"
    assert repository.jobs[job.id].status == "quote_accepted"
    assert dispatcher.of_kind("quote_expired") == []


def test_cutoff_is_measured_in_days() -> None:
    now = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)

    assert expiry_cutoff(now, expiry_days=5) == datetime(2026, 3, 5, 12, 0, tzinfo=timezone.utc)
    assert expiry_cutoff(now, expiry_days=0.5) == datetime(2026, 3, 10, 0, 0, tzinfo=timezone.utc)
