"""Job and quote lifecycle rules.

Every transition is planned here as a pure function of the rows it touches
(the job, its quotes, the command) and returns a :class:`TransitionPlan`. The
storage adapters lock those rows, call the planner, and apply the plan in a
single atomic unit, so the guards below are always evaluated against the
committed state.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date, datetime
from decimal import Decimal
from typing import Union

from quotebridge.schemas.commands import (
    AcceptQuoteCommand,
    CompleteJobCommand,
    CreateJobCommand,
    ScheduleInspectionCommand,
    SubmitQuoteCommand,
    WithdrawCommand,
)
from quotebridge.services.errors import (
    RepositoryConflictError,
    RepositoryForbiddenError,
    RepositoryNotFoundError,
    RepositoryStaleError,
)
from quotebridge.services.records import (
    ASSIGNED_JOB_STATUSES,
    OPEN_JOB_STATUSES,
    AuditEvent,
    JobRecord,
    NotificationRequest,
    QuoteRecord,
    WithdrawalRecord,
)

PRICE_QUANTUM = Decimal("0.01")

JOB_STATUS_TRANSITIONS: dict[str, set[str]] = {
    "live": {"pending_quote"},
    "submitted": {"pending_quote"},
    "pending_quote": {"quote_accepted", "live"},
    "quote_accepted": {"scheduled"},
    "scheduled": {"scheduled", "completed"},
    "completed": set(),
}


@dataclass(slots=True, frozen=True)
class OpenPhase:
    status: str


@dataclass(slots=True, frozen=True)
class AssignedPhase:
    status: str
    contractor_id: str
    scheduled_date: date | None


@dataclass(slots=True, frozen=True)
class CompletedPhase:
    contractor_id: str
    certificate_ref: str | None
    completed_at: datetime | None


JobPhase = Union[OpenPhase, AssignedPhase, CompletedPhase]


@dataclass(slots=True)
class TransitionPlan:
    job: JobRecord
    quote: QuoteRecord | None = None
    job_changed: bool = False
    quote_inserts: list[QuoteRecord] = field(default_factory=list)
    quote_updates: list[QuoteRecord] = field(default_factory=list)
    withdrawal: WithdrawalRecord | None = None
    audit_events: list[AuditEvent] = field(default_factory=list)
    notifications: list[NotificationRequest] = field(default_factory=list)
    noop: bool = False
    relisted: bool = False


def job_phase(job: JobRecord) -> JobPhase:
    if job.status in OPEN_JOB_STATUSES:
        return OpenPhase(status=job.status)
    if job.status not in ASSIGNED_JOB_STATUSES:
        raise RepositoryConflictError(f"unknown job status: {job.status}")
    if not job.assigned_contractor_id:
        raise RepositoryConflictError(f"job {job.id} is {job.status} without an assigned contractor")
    if job.status == "completed":
        return CompletedPhase(
            contractor_id=job.assigned_contractor_id,
            certificate_ref=job.certificate_ref,
            completed_at=job.completed_at,
        )
    return AssignedPhase(
        status=job.status,
        contractor_id=job.assigned_contractor_id,
        scheduled_date=job.scheduled_date,
    )


def validate_job_status_transition(*, from_status: str, to_status: str) -> None:
    if to_status == from_status and to_status != "scheduled":
        return
    allowed = JOB_STATUS_TRANSITIONS.get(from_status)
    if not allowed or to_status not in allowed:
        raise RepositoryConflictError(f"invalid job status transition: {from_status} -> {to_status}")


def plan_job_creation(command: CreateJobCommand, *, job_id: str, now: datetime) -> TransitionPlan:
    job = JobRecord(
        id=job_id,
        homeowner_id=command.homeowner_id,
        county=command.county,
        town=command.town,
        status=command.initial_status,
        created_at=now,
        updated_at=now,
        contact_email=command.contact_email,
        property_address=command.property_address,
        property_type=command.property_type,
        property_size=command.property_size,
        bedrooms=command.bedrooms,
        job_type=command.job_type,
        preferred_date=command.preferred_date,
        preferred_time_window=command.preferred_time_window,
    )
    return TransitionPlan(
        job=job,
        job_changed=True,
        audit_events=[
            _audit(
                "job",
                job.id,
                "created",
                actor_id=command.homeowner_id,
                payload={"status": job.status, "county": job.county, "town": job.town},
            )
        ],
        notifications=[
            NotificationRequest(
                event_kind="job_live",
                job_id=job.id,
                recipient=_homeowner_recipient(job),
                payload={"town": job.town, "county": job.county},
            )
        ],
    )


def plan_quote_submission(
    job: JobRecord,
    job_quotes: list[QuoteRecord],
    command: SubmitQuoteCommand,
    *,
    quote_id: str,
    now: datetime,
) -> TransitionPlan:
    if not job.is_open:
        raise RepositoryConflictError(f"job is not accepting quotes (status={job.status})")

    price = command.price.quantize(PRICE_QUANTUM)
    active = [
        quote for quote in job_quotes if quote.contractor_id == command.contractor_id and quote.is_active
    ]
    if len(active) > 1:
        raise RepositoryConflictError("contractor holds more than one active quote on this job")

    if active:
        return _plan_quote_revision(job, active[0], command, price=price, now=now)

    if command.expected_version is not None:
        raise RepositoryStaleError("quote is no longer active; refresh before revising")

    quote = QuoteRecord(
        id=quote_id,
        job_id=job.id,
        contractor_id=command.contractor_id,
        price=price,
        status="pending",
        created_at=now,
        updated_at=now,
        notes=command.notes,
    )
    plan = TransitionPlan(job=job, quote=quote, quote_inserts=[quote])
    if job.status in {"live", "submitted"}:
        plan.job = _advance_job(job, "pending_quote", now=now)
        plan.job_changed = True
    plan.audit_events.append(
        _audit(
            "quote",
            quote.id,
            "submitted",
            actor_id=command.contractor_id,
            payload={"job_id": job.id, "price": str(price)},
        )
    )
    plan.notifications.append(
        NotificationRequest(
            event_kind="quote_received",
            job_id=job.id,
            recipient=_homeowner_recipient(job),
            payload={
                "quote_id": quote.id,
                "contractor_id": quote.contractor_id,
                "price": str(price),
                "town": job.town,
                "county": job.county,
            },
        )
    )
    return plan


def _plan_quote_revision(
    job: JobRecord,
    existing: QuoteRecord,
    command: SubmitQuoteCommand,
    *,
    price: Decimal,
    now: datetime,
) -> TransitionPlan:
    if command.expected_version is not None and command.expected_version != existing.version:
        raise RepositoryStaleError(
            f"quote was modified concurrently (expected version {command.expected_version}, found {existing.version})"
        )

    if existing.price == price and existing.notes == command.notes and existing.status == "pending":
        return TransitionPlan(job=job, quote=existing, noop=True)

    revised = replace(
        existing,
        price=price,
        notes=command.notes,
        status="pending",
        updated_at=now,
        version=existing.version + 1,
    )
    plan = TransitionPlan(job=job, quote=revised, quote_updates=[revised])
    if job.status in {"live", "submitted"}:
        plan.job = _advance_job(job, "pending_quote", now=now)
        plan.job_changed = True
    plan.audit_events.append(
        _audit(
            "quote",
            revised.id,
            "revised",
            actor_id=command.contractor_id,
            payload={"job_id": job.id, "previous_price": str(existing.price), "price": str(price)},
        )
    )
    plan.notifications.append(
        NotificationRequest(
            event_kind="quote_revised",
            job_id=job.id,
            recipient=_homeowner_recipient(job),
            payload={
                "quote_id": revised.id,
                "contractor_id": revised.contractor_id,
                "price": str(price),
                "previous_price": str(existing.price),
            },
        )
    )
    return plan


def plan_quote_acceptance(
    job: JobRecord,
    job_quotes: list[QuoteRecord],
    command: AcceptQuoteCommand,
    *,
    now: datetime,
) -> TransitionPlan:
    if command.homeowner_id is not None and command.homeowner_id != job.homeowner_id:
        raise RepositoryForbiddenError("only the job owner may accept quotes")

    quote = next((item for item in job_quotes if item.id == command.quote_id), None)
    if quote is None or quote.job_id != job.id:
        raise RepositoryNotFoundError("quote not found for job")

    if (
        quote.status == "accepted"
        and job.status in ASSIGNED_JOB_STATUSES
        and job.assigned_contractor_id == quote.contractor_id
    ):
        return TransitionPlan(job=job, quote=quote, noop=True)

    if quote.status != "pending":
        raise RepositoryConflictError(f"quote is not pending (status={quote.status})")
    if command.expected_quote_version is not None and command.expected_quote_version != quote.version:
        raise RepositoryStaleError("quote was revised after it was displayed; refresh before accepting")
    validate_job_status_transition(from_status=job.status, to_status="quote_accepted")

    accepted = replace(quote, status="accepted", updated_at=now, version=quote.version + 1)
    rejected = [
        replace(item, status="rejected", updated_at=now, version=item.version + 1)
        for item in job_quotes
        if item.id != quote.id and item.status != "rejected"
    ]
    assigned = replace(
        job,
        status="quote_accepted",
        assigned_contractor_id=quote.contractor_id,
        updated_at=now,
        version=job.version + 1,
    )

    plan = TransitionPlan(
        job=assigned,
        quote=accepted,
        job_changed=True,
        quote_updates=[accepted, *rejected],
    )
    plan.audit_events.append(
        _audit(
            "job",
            job.id,
            "quote_accepted",
            actor_id=command.homeowner_id or job.homeowner_id,
            payload={
                "quote_id": quote.id,
                "contractor_id": quote.contractor_id,
                "rejected_quote_ids": [item.id for item in rejected],
            },
        )
    )
    price = str(accepted.price)
    plan.notifications.extend(
        [
            NotificationRequest(
                event_kind="quote_accepted",
                job_id=job.id,
                recipient=_homeowner_recipient(job),
                payload={"quote_id": quote.id, "contractor_id": quote.contractor_id, "price": price},
            ),
            NotificationRequest(
                event_kind="quote_accepted",
                job_id=job.id,
                recipient=quote.contractor_id,
                payload={
                    "quote_id": quote.id,
                    "price": price,
                    "town": job.town,
                    "county": job.county,
                    "property_address": job.property_address,
                },
            ),
        ]
    )
    return plan


def plan_inspection_schedule(
    job: JobRecord,
    command: ScheduleInspectionCommand,
    *,
    now: datetime,
) -> TransitionPlan:
    phase = job_phase(job)
    if not isinstance(phase, AssignedPhase):
        raise RepositoryConflictError(f"job cannot be scheduled (status={job.status})")
    if phase.contractor_id != command.contractor_id:
        raise RepositoryConflictError("job is not assigned to this contractor")

    previous_date = phase.scheduled_date
    if job.status == "scheduled" and previous_date == command.scheduled_date:
        return TransitionPlan(job=job, noop=True)

    validate_job_status_transition(from_status=job.status, to_status="scheduled")
    scheduled = replace(
        job,
        status="scheduled",
        scheduled_date=command.scheduled_date,
        updated_at=now,
        version=job.version + 1,
    )
    rescheduled = previous_date is not None and previous_date != command.scheduled_date
    event_kind = "inspection_rescheduled" if rescheduled else "inspection_scheduled"
    payload = {
        "contractor_id": command.contractor_id,
        "scheduled_date": command.scheduled_date.isoformat(),
        "previous_date": previous_date.isoformat() if previous_date else None,
        "town": job.town,
    }
    return TransitionPlan(
        job=scheduled,
        job_changed=True,
        audit_events=[_audit("job", job.id, event_kind, actor_id=command.contractor_id, payload=payload)],
        notifications=[
            NotificationRequest(
                event_kind=event_kind,
                job_id=job.id,
                recipient=_homeowner_recipient(job),
                payload=payload,
            )
        ],
    )


def plan_completion(job: JobRecord, command: CompleteJobCommand, *, now: datetime) -> TransitionPlan:
    phase = job_phase(job)
    if isinstance(phase, CompletedPhase):
        if phase.contractor_id == command.contractor_id and phase.certificate_ref == command.certificate_ref:
            return TransitionPlan(job=job, noop=True)
        raise RepositoryConflictError("job is already completed")
    if not isinstance(phase, AssignedPhase):
        raise RepositoryConflictError(f"job cannot be completed (status={job.status})")
    if phase.contractor_id != command.contractor_id:
        raise RepositoryConflictError("job is not assigned to this contractor")
    validate_job_status_transition(from_status=job.status, to_status="completed")

    completed = replace(
        job,
        status="completed",
        certificate_ref=command.certificate_ref,
        completed_at=now,
        updated_at=now,
        version=job.version + 1,
    )
    payload = {
        "contractor_id": command.contractor_id,
        "certificate_ref": command.certificate_ref,
        "completed_at": now.isoformat(),
        "town": job.town,
    }
    return TransitionPlan(
        job=completed,
        job_changed=True,
        audit_events=[_audit("job", job.id, "completed", actor_id=command.contractor_id, payload=payload)],
        notifications=[
            NotificationRequest(
                event_kind="assessment_completed",
                job_id=job.id,
                recipient=_homeowner_recipient(job),
                payload=payload,
            )
        ],
    )


def plan_withdrawal(
    job: JobRecord,
    job_quotes: list[QuoteRecord],
    existing: WithdrawalRecord | None,
    command: WithdrawCommand,
    *,
    now: datetime,
) -> TransitionPlan:
    if not job.is_open:
        raise RepositoryConflictError(f"job is no longer open (status={job.status})")
    if any(quote.contractor_id == command.contractor_id and quote.is_active for quote in job_quotes):
        raise RepositoryConflictError("contractor already holds an active quote on this job")
    if existing is not None:
        return TransitionPlan(job=job, withdrawal=existing, noop=True)

    withdrawal = WithdrawalRecord(
        job_id=job.id,
        contractor_id=command.contractor_id,
        reason_code=command.reason_code,
        created_at=now,
    )
    return TransitionPlan(
        job=job,
        withdrawal=withdrawal,
        audit_events=[
            _audit(
                "job",
                job.id,
                "contractor_withdrew",
                actor_id=command.contractor_id,
                payload={"reason_code": command.reason_code},
            )
        ],
    )


def plan_quote_expiry(
    job: JobRecord,
    job_quotes: list[QuoteRecord],
    quote_id: str,
    *,
    now: datetime,
    cutoff: datetime,
    actor_id: str | None = None,
) -> TransitionPlan | None:
    """Plan the expiry of one stale quote, or ``None`` when it no longer qualifies."""
    quote = next((item for item in job_quotes if item.id == quote_id), None)
    if quote is None or quote.status != "pending" or quote.updated_at > cutoff:
        return None

    expired = replace(quote, status="rejected", updated_at=now, version=quote.version + 1)
    plan = TransitionPlan(job=job, quote=expired, quote_updates=[expired])

    remaining = [item for item in job_quotes if item.id != quote.id and item.is_active]
    if not remaining and job.status == "pending_quote":
        plan.job = _advance_job(job, "live", now=now)
        plan.job_changed = True
        plan.relisted = True

    plan.audit_events.append(
        _audit(
            "quote",
            quote.id,
            "expired",
            actor_type="machine",
            actor_id=actor_id,
            payload={"job_id": job.id, "relisted": plan.relisted, "age_cutoff": cutoff.isoformat()},
        )
    )
    plan.notifications.append(
        NotificationRequest(
            event_kind="quote_expired",
            job_id=job.id,
            recipient=quote.contractor_id,
            payload={
                "quote_id": quote.id,
                "price": str(quote.price),
                "town": job.town,
                "county": job.county,
                "relisted": plan.relisted,
            },
        )
    )
    return plan


def _advance_job(job: JobRecord, status: str, *, now: datetime) -> JobRecord:
    validate_job_status_transition(from_status=job.status, to_status=status)
    return replace(job, status=status, updated_at=now, version=job.version + 1)


def _homeowner_recipient(job: JobRecord) -> str:
    return job.contact_email or job.homeowner_id


def _audit(
    entity_type: str,
    entity_id: str,
    event_type: str,
    *,
    actor_id: str | None,
    payload: dict,
    actor_type: str = "human",
) -> AuditEvent:
    return AuditEvent(
        entity_type=entity_type,
        entity_id=entity_id,
        event_type=event_type,
        actor_type=actor_type,
        actor_id=actor_id,
        payload=payload,
    )
