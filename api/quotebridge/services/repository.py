from __future__ import annotations

import json
from collections.abc import AsyncIterator, Callable, Collection
from contextlib import asynccontextmanager
from datetime import datetime
from functools import lru_cache
from typing import Union
from uuid import uuid4

import asyncpg  # type: ignore[import-untyped]
from asyncpg import exceptions as pg_exc

from quotebridge.core.config import get_settings
from quotebridge.schemas.commands import (
    AcceptQuoteCommand,
    CompleteJobCommand,
    CreateJobCommand,
    ScheduleInspectionCommand,
    SubmitQuoteCommand,
    WithdrawCommand,
)
from quotebridge.services.errors import (
    RepositoryNotFoundError,
    RepositoryStaleError,
    RepositoryUnavailableError,
    RepositoryValidationError,
)
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
    AuditEvent,
    ContractorPreferenceRecord,
    JobRecord,
    MachineCredentialRecord,
    QuoteRecord,
    WithdrawalRecord,
)
from quotebridge.services.store import InMemoryRepository

JOB_COLUMNS = """
  id::text as id,
  homeowner_id,
  contact_email,
  county,
  town,
  property_address,
  property_type,
  property_size,
  bedrooms,
  job_type,
  preferred_date,
  preferred_time_window,
  status::text as status,
  assigned_contractor_id,
  scheduled_date,
  certificate_ref,
  completed_at,
  created_at,
  updated_at,
  version
"""

QUOTE_COLUMNS = """
  id::text as id,
  job_id::text as job_id,
  contractor_id,
  price,
  notes,
  status::text as status,
  created_at,
  updated_at,
  version
"""

Planner = Callable[[JobRecord, list[QuoteRecord]], TransitionPlan]


class PostgresRepository:
    def __init__(self, database_url: str | None, min_pool_size: int, max_pool_size: int) -> None:
        self.database_url = database_url
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self._pool: asyncpg.Pool | None = None

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    async def ping(self) -> None:
        pool = await self._get_pool()
        try:
            await pool.fetchval("select 1")
        except (OSError, pg_exc.PostgresConnectionError, asyncpg.InterfaceError) as exc:
            raise RepositoryUnavailableError("database unavailable") from exc

    async def get_machine_credentials(self, module_id: str) -> list[MachineCredentialRecord]:
        pool = await self._get_pool()
        rows = await pool.fetch(
            """
            select
              m.id::text as module_db_id,
              m.module_id,
              m.scopes,
              mc.key_hash
            from modules m
            join module_credentials mc on mc.module_id = m.id
            where m.module_id = $1
              and m.enabled = true
              and mc.is_active = true
              and mc.revoked_at is null
              and (mc.expires_at is null or mc.expires_at > now())
            """,
            module_id,
        )
        return [
            MachineCredentialRecord(
                module_db_id=row["module_db_id"],
                module_id=row["module_id"],
                scopes=list(row["scopes"] or []),
                key_hash=row["key_hash"],
            )
            for row in rows
        ]

    async def get_contractor_preferences(self, contractor_id: str) -> ContractorPreferenceRecord:
        pool = await self._get_pool()
        row = await pool.fetchrow(
            """
            select
              contractor_id,
              email,
              full_name,
              service_counties,
              specialty::text as specialty,
              is_active
            from contractor_profiles
            where contractor_id = $1
            """,
            contractor_id,
        )
        if not row:
            raise RepositoryNotFoundError("contractor profile not found")
        return self._preferences_from_row(row)

    async def list_contractor_preferences(
        self,
        *,
        active_only: bool = True,
        limit: int = 200,
        offset: int = 0,
    ) -> list[ContractorPreferenceRecord]:
        pool = await self._get_pool()
        rows = await pool.fetch(
            """
            select
              contractor_id,
              email,
              full_name,
              service_counties,
              specialty::text as specialty,
              is_active
            from contractor_profiles
            where ($1::boolean = false or is_active = true)
            order by contractor_id asc
            limit $2
            offset $3
            """,
            active_only,
            limit,
            offset,
        )
        return [self._preferences_from_row(row) for row in rows]

    async def get_job(self, job_id: str) -> JobRecord:
        pool = await self._get_pool()
        try:
            row = await pool.fetchrow(f"select {JOB_COLUMNS} from jobs where id = $1::uuid", job_id)
        except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError) as exc:
            raise RepositoryNotFoundError("job not found") from exc
        if not row:
            raise RepositoryNotFoundError("job not found")
        return self._job_from_row(row)

    async def list_open_jobs(
        self,
        *,
        counties: Collection[str] | None = None,
        limit: int = 500,
        offset: int = 0,
    ) -> list[JobRecord]:
        pool = await self._get_pool()
        rows = await pool.fetch(
            f"""
            select {JOB_COLUMNS}
            from jobs
            where status in ('live', 'submitted', 'pending_quote')
              and ($1::text[] is null or county = any($1::text[]))
            order by created_at desc, id desc
            limit $2
            offset $3
            """,
            sorted(counties) if counties else None,
            limit,
            offset,
        )
        return [self._job_from_row(row) for row in rows]

    async def list_job_quotes(self, job_id: str) -> list[QuoteRecord]:
        pool = await self._get_pool()
        try:
            rows = await pool.fetch(
                f"""
                select {QUOTE_COLUMNS}
                from quotes
                where job_id = $1::uuid
                order by created_at asc, id asc
                """,
                job_id,
            )
        except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError) as exc:
            raise RepositoryNotFoundError("job not found") from exc
        return [self._quote_from_row(row) for row in rows]

    async def list_contractor_quote_job_ids(self, contractor_id: str, *, active_only: bool = True) -> set[str]:
        pool = await self._get_pool()
        rows = await pool.fetch(
            """
            select distinct job_id::text as job_id
            from quotes
            where contractor_id = $1
              and ($2::boolean = false or status <> 'rejected')
            """,
            contractor_id,
            active_only,
        )
        return {row["job_id"] for row in rows}

    async def list_withdrawn_job_ids(self, contractor_id: str) -> set[str]:
        pool = await self._get_pool()
        rows = await pool.fetch(
            "select job_id::text as job_id from job_withdrawals where contractor_id = $1",
            contractor_id,
        )
        return {row["job_id"] for row in rows}

    async def create_job(self, command: CreateJobCommand, *, now: datetime) -> TransitionPlan:
        plan = plan_job_creation(command, job_id=str(uuid4()), now=now)
        job = plan.job
        async with self._transaction() as conn:
            await conn.execute(
                """
                insert into jobs (
                  id,
                  homeowner_id,
                  contact_email,
                  county,
                  town,
                  property_address,
                  property_type,
                  property_size,
                  bedrooms,
                  job_type,
                  preferred_date,
                  preferred_time_window,
                  status,
                  created_at,
                  updated_at,
                  version
                )
                values (
                  $1::uuid, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12,
                  $13::job_status, $14, $14, $15
                )
                """,
                job.id,
                job.homeowner_id,
                job.contact_email,
                job.county,
                job.town,
                job.property_address,
                job.property_type,
                job.property_size,
                job.bedrooms,
                job.job_type,
                job.preferred_date,
                job.preferred_time_window,
                job.status,
                job.created_at,
                job.version,
            )
            await self._record_events(conn=conn, events=plan.audit_events)
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
        async with self._transaction() as conn:
            job, quotes = await self._lock_job_with_quotes(conn=conn, job_id=command.job_id)
            row = await conn.fetchrow(
                """
                select
                  job_id::text as job_id,
                  contractor_id,
                  reason_code::text as reason_code,
                  created_at
                from job_withdrawals
                where job_id = $1::uuid and contractor_id = $2
                """,
                command.job_id,
                command.contractor_id,
            )
            existing = (
                WithdrawalRecord(
                    job_id=row["job_id"],
                    contractor_id=row["contractor_id"],
                    reason_code=row["reason_code"],
                    created_at=row["created_at"],
                )
                if row
                else None
            )
            plan = plan_withdrawal(job, quotes, existing, command, now=now)
            if not plan.noop:
                await self._apply_plan(conn=conn, plan=plan)
            return plan

    async def list_expirable_quote_ids(self, *, cutoff: datetime, limit: int) -> list[str]:
        pool = await self._get_pool()
        rows = await pool.fetch(
            """
            select id::text as id
            from quotes
            where status = 'pending'
              and updated_at <= $1
            order by updated_at asc, id asc
            limit $2
            """,
            cutoff,
            limit,
        )
        return [row["id"] for row in rows]

    async def expire_quote(
        self,
        quote_id: str,
        *,
        now: datetime,
        cutoff: datetime,
        actor_id: str | None = None,
    ) -> TransitionPlan | None:
        async with self._transaction() as conn:
            job_id = await conn.fetchval("select job_id::text from quotes where id = $1::uuid", quote_id)
            if job_id is None:
                return None
            job, quotes = await self._lock_job_with_quotes(conn=conn, job_id=job_id)
            plan = plan_quote_expiry(job, quotes, quote_id, now=now, cutoff=cutoff, actor_id=actor_id)
            if plan is not None:
                await self._apply_plan(conn=conn, plan=plan)
            return plan

    async def _transition(self, job_id: str, planner: Planner) -> TransitionPlan:
        async with self._transaction() as conn:
            job, quotes = await self._lock_job_with_quotes(conn=conn, job_id=job_id)
            plan = planner(job, quotes)
            if not plan.noop:
                await self._apply_plan(conn=conn, plan=plan)
            return plan

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[asyncpg.Connection]:
        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                async with conn.transaction():
                    yield conn
        except pg_exc.UniqueViolationError as exc:
            raise RepositoryStaleError("concurrent update conflicts with an existing quote") from exc
        except pg_exc.InvalidTextRepresentationError as exc:
            raise RepositoryNotFoundError("job or quote not found") from exc
        except (pg_exc.CheckViolationError, asyncpg.DataError) as exc:
            raise RepositoryValidationError("invalid job or quote data") from exc
        except (OSError, pg_exc.PostgresConnectionError, asyncpg.InterfaceError) as exc:
            raise RepositoryUnavailableError("database unavailable") from exc

    async def _lock_job_with_quotes(
        self,
        *,
        conn: asyncpg.Connection,
        job_id: str,
    ) -> tuple[JobRecord, list[QuoteRecord]]:
        # Job row first, then its quotes in id order, for every transition.
        job_row = await conn.fetchrow(f"select {JOB_COLUMNS} from jobs where id = $1::uuid for update", job_id)
        if not job_row:
            raise RepositoryNotFoundError("job not found")
        quote_rows = await conn.fetch(
            f"""
            select {QUOTE_COLUMNS}
            from quotes
            where job_id = $1::uuid
            order by id asc
            for update
            """,
            job_id,
        )
        quotes = sorted((self._quote_from_row(row) for row in quote_rows), key=lambda quote: (quote.created_at, quote.id))
        return self._job_from_row(job_row), quotes

    async def _apply_plan(self, *, conn: asyncpg.Connection, plan: TransitionPlan) -> None:
        if plan.job_changed:
            job = plan.job
            status = await conn.execute(
                """
                update jobs
                set
                  status = $2::job_status,
                  assigned_contractor_id = $3,
                  scheduled_date = $4,
                  certificate_ref = $5,
                  completed_at = $6,
                  updated_at = $7,
                  version = $8
                where id = $1::uuid
                  and version = $9
                """,
                job.id,
                job.status,
                job.assigned_contractor_id,
                job.scheduled_date,
                job.certificate_ref,
                job.completed_at,
                job.updated_at,
                job.version,
                job.version - 1,
            )
            if status.endswith(" 0"):
                raise RepositoryStaleError("job was modified concurrently")

        for quote in plan.quote_updates:
            status = await conn.execute(
                """
                update quotes
                set
                  price = $2,
                  notes = $3,
                  status = $4::quote_status,
                  updated_at = $5,
                  version = $6
                where id = $1::uuid
                  and version = $7
                """,
                quote.id,
                quote.price,
                quote.notes,
                quote.status,
                quote.updated_at,
                quote.version,
                quote.version - 1,
            )
            if status.endswith(" 0"):
                raise RepositoryStaleError("quote was modified concurrently")

        for quote in plan.quote_inserts:
            await conn.execute(
                """
                insert into quotes (id, job_id, contractor_id, price, notes, status, created_at, updated_at, version)
                values ($1::uuid, $2::uuid, $3, $4, $5, $6::quote_status, $7, $7, $8)
                """,
                quote.id,
                quote.job_id,
                quote.contractor_id,
                quote.price,
                quote.notes,
                quote.status,
                quote.created_at,
                quote.version,
            )

        if plan.withdrawal is not None:
            await conn.execute(
                """
                insert into job_withdrawals (job_id, contractor_id, reason_code, created_at)
                values ($1::uuid, $2, $3::withdrawal_reason, $4)
                """,
                plan.withdrawal.job_id,
                plan.withdrawal.contractor_id,
                plan.withdrawal.reason_code,
                plan.withdrawal.created_at,
            )

        await self._record_events(conn=conn, events=plan.audit_events)

    async def _record_events(self, *, conn: asyncpg.Connection, events: list[AuditEvent]) -> None:
        for event in events:
            await conn.execute(
                """
                insert into provenance_events (
                  entity_type,
                  entity_id,
                  event_type,
                  actor_type,
                  actor_id,
                  payload
                )
                values ($1, $2::uuid, $3, $4::actor_type, $5, $6::jsonb)
                """,
                event.entity_type,
                event.entity_id,
                event.event_type,
                event.actor_type,
                event.actor_id,
                json.dumps(event.payload),
            )

    async def _get_pool(self) -> asyncpg.Pool:
        if not self.database_url:
            raise RepositoryUnavailableError("QB_DATABASE_URL is required")

        if self._pool is not None:
            return self._pool

        try:
            self._pool = await asyncpg.create_pool(
                dsn=self.database_url,
                min_size=self.min_pool_size,
                max_size=self.max_pool_size,
                command_timeout=15,
            )
            return self._pool
        except Exception as exc:  # pragma: no cover - depends on environment
            raise RepositoryUnavailableError("database unavailable") from exc

    @staticmethod
    def _job_from_row(row: asyncpg.Record) -> JobRecord:
        return JobRecord(
            id=row["id"],
            homeowner_id=row["homeowner_id"],
            county=row["county"],
            town=row["town"],
            status=row["status"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            contact_email=row["contact_email"],
            property_address=row["property_address"],
            property_type=row["property_type"],
            property_size=row["property_size"],
            bedrooms=row["bedrooms"],
            job_type=row["job_type"],
            preferred_date=row["preferred_date"],
            preferred_time_window=row["preferred_time_window"],
            assigned_contractor_id=row["assigned_contractor_id"],
            scheduled_date=row["scheduled_date"],
            certificate_ref=row["certificate_ref"],
            completed_at=row["completed_at"],
            version=row["version"],
        )

    @staticmethod
    def _quote_from_row(row: asyncpg.Record) -> QuoteRecord:
        return QuoteRecord(
            id=row["id"],
            job_id=row["job_id"],
            contractor_id=row["contractor_id"],
            price=row["price"],
            status=row["status"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            notes=row["notes"],
            version=row["version"],
        )

    @staticmethod
    def _preferences_from_row(row: asyncpg.Record) -> ContractorPreferenceRecord:
        return ContractorPreferenceRecord(
            contractor_id=row["contractor_id"],
            service_counties=frozenset(row["service_counties"] or []),
            specialty=row["specialty"],
            email=row["email"],
            full_name=row["full_name"],
            is_active=row["is_active"],
        )


Repository = Union[PostgresRepository, InMemoryRepository]


@lru_cache
def get_repository() -> Repository:
    settings = get_settings()
    if settings.storage_backend == "memory":
        return InMemoryRepository()
    return PostgresRepository(
        database_url=settings.database_url,
        min_pool_size=settings.database_pool_min_size,
        max_pool_size=settings.database_pool_max_size,
    )
