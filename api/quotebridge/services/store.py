from __future__ import annotations

import asyncio
import hashlib
from collections.abc import Callable, Collection
from datetime import datetime
from uuid import uuid4

from quotebridge.schemas.commands import (
    AcceptQuoteCommand,
    CompleteJobCommand,
    CreateJobCommand,
    ScheduleInspectionCommand,
    SubmitQuoteCommand,
    WithdrawCommand,
)
from quotebridge.services.errors import RepositoryNotFoundError, RepositoryStaleError
from quotebridge.services.lifecycle import (
    TransitionPlan,
    plan_completion,
    plan_inspection_schedule,
    plan_job_creation,
    plan_quote_acceptance,
    plan_quote_expiry,
    plan_quote_submission,
    plan_withdrawal,
)
from quotebridge.services.records import (
    OPEN_JOB_STATUSES,
    AuditEvent,
    ContractorPreferenceRecord,
    JobRecord,
    MachineCredentialRecord,
    QuoteRecord,
    WithdrawalRecord,
)


class InMemoryRepository:
    """Process-local storage for development and tests.

    One lock serializes every read-plan-apply cycle, which gives the same
    all-or-nothing behaviour the PostgreSQL adapter gets from transactions.
    """

    def __init__(self) -> None:
        self.jobs: dict[str, JobRecord] = {}
        self.quotes: dict[str, QuoteRecord] = {}
        self.withdrawals: dict[tuple[str, str], WithdrawalRecord] = {}
        self.preferences: dict[str, ContractorPreferenceRecord] = {}
        self.events: list[AuditEvent] = []
        self._modules: dict[str, MachineCredentialRecord] = {}
        self._lock = asyncio.Lock()

    async def close(self) -> None:
        return None

    async def ping(self) -> None:
        return None

    def register_module(self, module_id: str, api_key: str, scopes: list[str]) -> None:
        self._modules[module_id] = MachineCredentialRecord(
            module_db_id=str(uuid4()),
            module_id=module_id,
            scopes=list(scopes),
            key_hash=hashlib.sha256(api_key.encode("utf-8")).hexdigest(),
        )

    def put_contractor_preferences(self, preferences: ContractorPreferenceRecord) -> None:
        self.preferences[preferences.contractor_id] = preferences

    async def get_machine_credentials(self, module_id: str) -> list[MachineCredentialRecord]:
        record = self._modules.get(module_id)
        return [record] if record else []

    async def get_contractor_preferences(self, contractor_id: str) -> ContractorPreferenceRecord:
        preferences = self.preferences.get(contractor_id)
        if preferences is None:
            raise RepositoryNotFoundError("contractor profile not found")
        return preferences

    async def list_contractor_preferences(
        self,
        *,
        active_only: bool = True,
        limit: int = 200,
        offset: int = 0,
    ) -> list[ContractorPreferenceRecord]:
        rows = sorted(self.preferences.values(), key=lambda item: item.contractor_id)
        if active_only:
            rows = [row for row in rows if row.is_active]
        return rows[offset : offset + limit]

    async def get_job(self, job_id: str) -> JobRecord:
        job = self.jobs.get(job_id)
        if job is None:
            raise RepositoryNotFoundError("job not found")
        return job

    async def list_open_jobs(
        self,
        *,
        counties: Collection[str] | None = None,
        limit: int = 500,
        offset: int = 0,
    ) -> list[JobRecord]:
        rows = [
            job
            for job in self.jobs.values()
            if job.status in OPEN_JOB_STATUSES and (not counties or job.county in counties)
        ]
        rows.sort(key=lambda job: (job.created_at, job.id), reverse=True)
        return rows[offset : offset + limit]

    async def list_job_quotes(self, job_id: str) -> list[QuoteRecord]:
        rows = [quote for quote in self.quotes.values() if quote.job_id == job_id]
        rows.sort(key=lambda quote: (quote.created_at, quote.id))
        return rows

    async def list_contractor_quote_job_ids(self, contractor_id: str, *, active_only: bool = True) -> set[str]:
        return {
            quote.job_id
            for quote in self.quotes.values()
            if quote.contractor_id == contractor_id and (quote.is_active or not active_only)
        }

    async def list_withdrawn_job_ids(self, contractor_id: str) -> set[str]:
        return {job_id for (job_id, owner), _ in self.withdrawals.items() if owner == contractor_id}

    async def create_job(self, command: CreateJobCommand, *, now: datetime) -> TransitionPlan:
        async with self._lock:
            plan = plan_job_creation(command, job_id=str(uuid4()), now=now)
            self.jobs[plan.job.id] = plan.job
            self.events.extend(plan.audit_events)
            return plan

    async def submit_quote(self, command: SubmitQuoteCommand, *, now: datetime) -> TransitionPlan:
        return await self._transition(
            command.job_id,
            lambda job, quotes: plan_quote_submission(job, quotes, command, quote_id=str(uuid4()), now=now),
        )

    async def accept_quote(self, command: AcceptQuoteCommand, *, now: datetime) -> TransitionPlan:
        return await self._transition(
            command.job_id,
            lambda job, quotes: plan_quote_acceptance(job, quotes, command, now=now),
        )

    async def schedule_inspection(self, command: ScheduleInspectionCommand, *, now: datetime) -> TransitionPlan:
        return await self._transition(
            command.job_id,
            lambda job, _: plan_inspection_schedule(job, command, now=now),
        )

    async def complete_job(self, command: CompleteJobCommand, *, now: datetime) -> TransitionPlan:
        return await self._transition(
            command.job_id,
            lambda job, _: plan_completion(job, command, now=now),
        )

    async def withdraw(self, command: WithdrawCommand, *, now: datetime) -> TransitionPlan:
        return await self._transition(
            command.job_id,
            lambda job, quotes: plan_withdrawal(
                job,
                quotes,
                self.withdrawals.get((command.job_id, command.contractor_id)),
                command,
                now=now,
            ),
        )

    async def list_expirable_quote_ids(self, *, cutoff: datetime, limit: int) -> list[str]:
        rows = [quote for quote in self.quotes.values() if quote.status == "pending" and quote.updated_at <= cutoff]
        rows.sort(key=lambda quote: (quote.updated_at, quote.id))
        return [quote.id for quote in rows[:limit]]

    async def expire_quote(
        self,
        quote_id: str,
        *,
        now: datetime,
        cutoff: datetime,
        actor_id: str | None = None,
    ) -> TransitionPlan | None:
        async with self._lock:
            quote = self.quotes.get(quote_id)
            if quote is None:
                return None
            job = await self.get_job(quote.job_id)
            quotes = await self.list_job_quotes(job.id)
            plan = plan_quote_expiry(job, quotes, quote_id, now=now, cutoff=cutoff, actor_id=actor_id)
            if plan is not None:
                self._apply(plan)
            return plan

    async def _transition(
        self,
        job_id: str,
        planner: Callable[[JobRecord, list[QuoteRecord]], TransitionPlan],
    ) -> TransitionPlan:
        async with self._lock:
            job = await self.get_job(job_id)
            quotes = await self.list_job_quotes(job_id)
            plan = planner(job, quotes)
            if not plan.noop:
                self._apply(plan)
            return plan

    def _apply(self, plan: TransitionPlan) -> None:
        # Validate everything first so a failed check leaves no partial writes.
        if plan.job_changed:
            current = self.jobs.get(plan.job.id)
            if current is None or current.version != plan.job.version - 1:
                raise RepositoryStaleError("job was modified concurrently")
        for quote in plan.quote_updates:
            current_quote = self.quotes.get(quote.id)
            if current_quote is None or current_quote.version != quote.version - 1:
                raise RepositoryStaleError("quote was modified concurrently")
        for quote in plan.quote_inserts:
            if any(
                other.job_id == quote.job_id and other.contractor_id == quote.contractor_id and other.is_active
                for other in self.quotes.values()
            ):
                raise RepositoryStaleError("contractor already has an active quote on this job")

        if plan.job_changed:
            self.jobs[plan.job.id] = plan.job
        for quote in [*plan.quote_updates, *plan.quote_inserts]:
            self.quotes[quote.id] = quote
        if plan.withdrawal is not None:
            self.withdrawals[(plan.withdrawal.job_id, plan.withdrawal.contractor_id)] = plan.withdrawal
        self.events.extend(plan.audit_events)
