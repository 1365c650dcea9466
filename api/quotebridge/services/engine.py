from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from collections.abc import Collection
from typing import Callable

from fastapi import Depends

from quotebridge.core.config import Settings, get_settings
from quotebridge.schemas.commands import (
    AcceptQuoteCommand,
    CompleteJobCommand,
    CreateJobCommand,
    ScheduleInspectionCommand,
    SubmitQuoteCommand,
    WithdrawCommand,
)
from quotebridge.services.eligibility import JobClassifier, classify_job, eligible_jobs, is_job_eligible
from quotebridge.services.errors import RepositoryError
from quotebridge.services.expiry import SweepReport, run_expiry_sweep
from quotebridge.services.lifecycle import TransitionPlan
from quotebridge.services.notifications import NotificationDispatcher, get_notification_dispatcher
from quotebridge.services.ranking import QuoteRanking, rank_quotes
from quotebridge.services.records import JobRecord, NotificationRequest, QuoteRecord, WithdrawalRecord
from quotebridge.services.repository import Repository, get_repository

logger = logging.getLogger(__name__)

OPEN_JOB_PAGE_SIZE = 500


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True, frozen=True)
class TransitionOutcome:
    job: JobRecord
    quote: QuoteRecord | None
    withdrawal: WithdrawalRecord | None
    changed: bool


@dataclass(slots=True)
class DigestReport:
    contractors_seen: int = 0
    digests_sent: int = 0
    has_more: bool = False


class LifecycleService:
    """Entry point for every job/quote operation.

    Mutations are delegated to the storage adapter, which applies the planned
    transition atomically; notifications are dispatched only after that unit
    has committed.
    """

    def __init__(
        self,
        repository: Repository,
        dispatcher: NotificationDispatcher,
        *,
        expiry_days: float = 5.0,
        sweep_default_batch_size: int = 100,
        sweep_max_batch_size: int = 1000,
        digest_batch_size: int = 200,
        classifier: JobClassifier = classify_job,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.repository = repository
        self.dispatcher = dispatcher
        self.expiry_days = expiry_days
        self.sweep_default_batch_size = max(1, sweep_default_batch_size)
        self.sweep_max_batch_size = max(self.sweep_default_batch_size, sweep_max_batch_size)
        self.digest_batch_size = max(1, digest_batch_size)
        self.classifier = classifier
        self.clock = clock

    async def create_job(self, command: CreateJobCommand) -> JobRecord:
        plan = await self.repository.create_job(command, now=self.clock())
        logger.info("job created job_id=%s county=%s status=%s", plan.job.id, plan.job.county, plan.job.status)
        self.dispatcher.dispatch(plan.notifications)
        await self._announce_job(plan.job)
        return plan.job

    async def get_job(self, job_id: str) -> JobRecord:
        return await self.repository.get_job(job_id)

    async def list_job_quotes(self, job_id: str) -> list[QuoteRecord]:
        await self.repository.get_job(job_id)
        return await self.repository.list_job_quotes(job_id)

    async def list_eligible_jobs(self, contractor_id: str) -> list[JobRecord]:
        preferences = await self.repository.get_contractor_preferences(contractor_id)
        open_jobs = await self._open_jobs(preferences.service_counties)
        active_quote_job_ids = await self.repository.list_contractor_quote_job_ids(contractor_id)
        withdrawn_job_ids = await self.repository.list_withdrawn_job_ids(contractor_id)
        return eligible_jobs(
            preferences,
            open_jobs,
            active_quote_job_ids=active_quote_job_ids,
            withdrawn_job_ids=withdrawn_job_ids,
            classifier=self.classifier,
        )

    async def submit_or_revise_quote(self, command: SubmitQuoteCommand) -> TransitionOutcome:
        plan = await self.repository.submit_quote(command, now=self.clock())
        if not plan.noop:
            logger.info(
                "quote saved job_id=%s quote_id=%s contractor_id=%s version=%s",
                command.job_id,
                plan.quote.id if plan.quote else None,
                command.contractor_id,
                plan.quote.version if plan.quote else None,
            )
        return self._finish(plan)

    async def withdraw(self, command: WithdrawCommand) -> TransitionOutcome:
        plan = await self.repository.withdraw(command, now=self.clock())
        if not plan.noop:
            logger.info(
                "contractor withdrew job_id=%s contractor_id=%s reason=%s",
                command.job_id,
                command.contractor_id,
                command.reason_code,
            )
        return self._finish(plan)

    async def accept_quote(self, command: AcceptQuoteCommand) -> TransitionOutcome:
        plan = await self.repository.accept_quote(command, now=self.clock())
        if not plan.noop:
            logger.info(
                "quote accepted job_id=%s quote_id=%s contractor_id=%s rejected=%s",
                command.job_id,
                command.quote_id,
                plan.job.assigned_contractor_id,
                len(plan.quote_updates) - 1,
            )
        return self._finish(plan)

    async def schedule(self, command: ScheduleInspectionCommand) -> TransitionOutcome:
        plan = await self.repository.schedule_inspection(command, now=self.clock())
        if not plan.noop:
            logger.info(
                "inspection scheduled job_id=%s contractor_id=%s date=%s",
                command.job_id,
                command.contractor_id,
                command.scheduled_date.isoformat(),
            )
        return self._finish(plan)

    async def complete(self, command: CompleteJobCommand) -> TransitionOutcome:
        plan = await self.repository.complete_job(command, now=self.clock())
        if not plan.noop:
            logger.info("assessment completed job_id=%s contractor_id=%s", command.job_id, command.contractor_id)
        return self._finish(plan)

    async def rank(self, job_id: str) -> QuoteRanking:
        quotes = await self.list_job_quotes(job_id)
        return rank_quotes(job_id, quotes)

    async def run_expiry_sweep(
        self,
        *,
        now: datetime | None = None,
        batch_size: int | None = None,
        actor_id: str | None = None,
    ) -> SweepReport:
        size = batch_size or self.sweep_default_batch_size
        size = min(max(1, size), self.sweep_max_batch_size)
        return await run_expiry_sweep(
            self.repository,
            self.dispatcher,
            now=now or self.clock(),
            expiry_days=self.expiry_days,
            batch_size=size,
            actor_id=actor_id,
        )

    async def run_job_digest(self, *, limit: int | None = None, offset: int = 0) -> DigestReport:
        """Send each active contractor one summary of the jobs they can still quote."""
        page_size = min(max(1, limit or self.digest_batch_size), self.digest_batch_size)
        contractors = await self.repository.list_contractor_preferences(
            active_only=True,
            limit=page_size,
            offset=offset,
        )
        open_jobs = await self._open_jobs()
        report = DigestReport(contractors_seen=len(contractors), has_more=len(contractors) >= page_size)
        if not open_jobs:
            return report

        requests: list[NotificationRequest] = []
        for preferences in contractors:
            visible = eligible_jobs(
                preferences,
                open_jobs,
                active_quote_job_ids=await self.repository.list_contractor_quote_job_ids(preferences.contractor_id),
                withdrawn_job_ids=await self.repository.list_withdrawn_job_ids(preferences.contractor_id),
                classifier=self.classifier,
            )
            if not visible:
                continue
            requests.append(
                NotificationRequest(
                    event_kind="job_digest",
                    job_id=None,
                    recipient=preferences.email or preferences.contractor_id,
                    payload={
                        "contractor_id": preferences.contractor_id,
                        "job_ids": [job.id for job in visible],
                        "job_count": len(visible),
                    },
                )
            )

        report.digests_sent = self.dispatcher.dispatch(requests)
        logger.info(
            "job digest finished contractors=%s digests=%s offset=%s",
            report.contractors_seen,
            report.digests_sent,
            offset,
        )
        return report

    async def _announce_job(self, job: JobRecord) -> None:
        # The job is already committed; a failed fan-out only costs notifications.
        requests: list[NotificationRequest] = []
        offset = 0
        try:
            while True:
                page = await self.repository.list_contractor_preferences(
                    active_only=True,
                    limit=self.digest_batch_size,
                    offset=offset,
                )
                for preferences in page:
                    if is_job_eligible(job, preferences, classifier=self.classifier):
                        requests.append(
                            NotificationRequest(
                                event_kind="job_available",
                                job_id=job.id,
                                recipient=preferences.email or preferences.contractor_id,
                                payload={
                                    "contractor_id": preferences.contractor_id,
                                    "town": job.town,
                                    "county": job.county,
                                    "property_type": job.property_type,
                                },
                            )
                        )
                if len(page) < self.digest_batch_size:
                    break
                offset += len(page)
        except RepositoryError:
            logger.warning("job announcement skipped job_id=%s", job.id, exc_info=True)
        self.dispatcher.dispatch(requests)

    async def _open_jobs(self, counties: Collection[str] | None = None) -> list[JobRecord]:
        jobs: list[JobRecord] = []
        while True:
            page = await self.repository.list_open_jobs(
                counties=counties,
                limit=OPEN_JOB_PAGE_SIZE,
                offset=len(jobs),
            )
            jobs.extend(page)
            if len(page) < OPEN_JOB_PAGE_SIZE:
                return jobs

    def _finish(self, plan: TransitionPlan) -> TransitionOutcome:
        if not plan.noop:
            self.dispatcher.dispatch(plan.notifications)
        return TransitionOutcome(
            job=plan.job,
            quote=plan.quote,
            withdrawal=plan.withdrawal,
            changed=not plan.noop,
        )


def get_lifecycle_service(
    settings: Settings = Depends(get_settings),
    repository: Repository = Depends(get_repository),
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
) -> LifecycleService:
    return LifecycleService(
        repository,
        dispatcher,
        expiry_days=settings.quote_expiry_days,
        sweep_default_batch_size=settings.sweep_default_batch_size,
        sweep_max_batch_size=settings.sweep_max_batch_size,
        digest_batch_size=settings.digest_batch_size,
    )
