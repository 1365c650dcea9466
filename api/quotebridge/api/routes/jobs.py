from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Path, status

from quotebridge.api.errors import forbidden, http_error
from quotebridge.core.auth import Principal
from quotebridge.core.security import get_human_principal
from quotebridge.schemas.commands import (
    AcceptQuoteCommand,
    CompleteJobCommand,
    CreateJobCommand,
    ScheduleInspectionCommand,
    SubmitQuoteCommand,
    WithdrawCommand,
)
from quotebridge.schemas.jobs import (
    CompleteRequest,
    EligibleJobOut,
    JobCreateRequest,
    JobOut,
    JobTransitionOut,
    QuoteAcceptOut,
    QuoteAcceptRequest,
    QuoteOut,
    QuoteSubmitOut,
    QuoteSubmitRequest,
    RankedQuoteOut,
    RankingOut,
    ScheduleRequest,
    WithdrawalOut,
    WithdrawRequest,
)
from quotebridge.services.engine import LifecycleService, get_lifecycle_service
from quotebridge.services.errors import RepositoryError
from quotebridge.services.records import JobRecord

router = APIRouter()

JobId = Annotated[str, Path(min_length=1, max_length=128)]
QuoteId = Annotated[str, Path(min_length=1, max_length=128)]


@router.post("", response_model=JobOut, status_code=status.HTTP_201_CREATED)
async def create_job(
    payload: JobCreateRequest,
    principal=Depends(get_human_principal),
    service: LifecycleService = Depends(get_lifecycle_service),
) -> JobOut:
    try:
        principal.require_scopes({"jobs:write"})
        principal.require_role("homeowner")
    except PermissionError as exc:
        raise forbidden(exc) from exc

    command = CreateJobCommand(homeowner_id=_actor_id(principal), **payload.model_dump())
    try:
        job = await service.create_job(command)
    except RepositoryError as exc:
        raise http_error(exc) from exc

    return JobOut.model_validate(job)


@router.get("/eligible", response_model=list[EligibleJobOut])
async def list_eligible_jobs(
    principal=Depends(get_human_principal),
    service: LifecycleService = Depends(get_lifecycle_service),
) -> list[EligibleJobOut]:
    try:
        principal.require_scopes({"jobs:read"})
        principal.require_role("contractor")
    except PermissionError as exc:
        raise forbidden(exc) from exc

    try:
        jobs = await service.list_eligible_jobs(_actor_id(principal))
    except RepositoryError as exc:
        raise http_error(exc) from exc

    return [EligibleJobOut.model_validate(job) for job in jobs]


@router.get("/{job_id}", response_model=JobOut)
async def get_job(
    job_id: JobId,
    principal=Depends(get_human_principal),
    service: LifecycleService = Depends(get_lifecycle_service),
) -> JobOut:
    try:
        principal.require_scopes({"jobs:read"})
    except PermissionError as exc:
        raise forbidden(exc) from exc

    try:
        job = await service.get_job(job_id)
    except RepositoryError as exc:
        raise http_error(exc) from exc

    if not _can_view_job(principal, job):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="job is not visible to this user")
    return JobOut.model_validate(job)


@router.get("/{job_id}/quotes", response_model=list[QuoteOut])
async def list_job_quotes(
    job_id: JobId,
    principal=Depends(get_human_principal),
    service: LifecycleService = Depends(get_lifecycle_service),
) -> list[QuoteOut]:
    try:
        principal.require_scopes({"jobs:read"})
    except PermissionError as exc:
        raise forbidden(exc) from exc

    try:
        job = await service.get_job(job_id)
        quotes = await service.list_job_quotes(job_id)
    except RepositoryError as exc:
        raise http_error(exc) from exc

    if _sees_all_quotes(principal, job):
        return [QuoteOut.model_validate(quote) for quote in quotes]
    if principal.role == "contractor":
        return [QuoteOut.model_validate(quote) for quote in quotes if quote.contractor_id == principal.actor_id]
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="quotes are not visible to this user")


@router.get("/{job_id}/ranking", response_model=RankingOut)
async def get_ranking(
    job_id: JobId,
    principal=Depends(get_human_principal),
    service: LifecycleService = Depends(get_lifecycle_service),
) -> RankingOut:
    try:
        principal.require_scopes({"jobs:read"})
    except PermissionError as exc:
        raise forbidden(exc) from exc

    try:
        job = await service.get_job(job_id)
        ranking = await service.rank(job_id)
    except RepositoryError as exc:
        raise http_error(exc) from exc

    if _sees_all_quotes(principal, job):
        visible = ranking.quotes
    elif principal.role == "contractor":
        own = ranking.for_contractor(_actor_id(principal))
        visible = [own] if own else []
    else:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="ranking is not visible to this user")

    return RankingOut(
        job_id=ranking.job_id,
        available=ranking.available,
        lowest_price=ranking.lowest_price,
        quotes=[RankedQuoteOut.model_validate(quote) for quote in visible],
    )


@router.post("/{job_id}/quotes", response_model=QuoteSubmitOut)
async def submit_quote(
    job_id: JobId,
    payload: QuoteSubmitRequest,
    principal=Depends(get_human_principal),
    service: LifecycleService = Depends(get_lifecycle_service),
) -> QuoteSubmitOut:
    try:
        principal.require_scopes({"quotes:write"})
        principal.require_role("contractor")
    except PermissionError as exc:
        raise forbidden(exc) from exc

    command = SubmitQuoteCommand(
        job_id=job_id,
        contractor_id=_actor_id(principal),
        price=payload.price,
        notes=payload.notes,
        expected_version=payload.expected_version,
    )
    try:
        outcome = await service.submit_or_revise_quote(command)
    except RepositoryError as exc:
        raise http_error(exc) from exc

    return QuoteSubmitOut(
        quote=QuoteOut.model_validate(outcome.quote),
        job_status=outcome.job.status,
        changed=outcome.changed,
    )


@router.post("/{job_id}/withdraw", response_model=WithdrawalOut)
async def withdraw_from_job(
    job_id: JobId,
    payload: WithdrawRequest,
    principal=Depends(get_human_principal),
    service: LifecycleService = Depends(get_lifecycle_service),
) -> WithdrawalOut:
    try:
        principal.require_scopes({"quotes:write"})
        principal.require_role("contractor")
    except PermissionError as exc:
        raise forbidden(exc) from exc

    command = WithdrawCommand(job_id=job_id, contractor_id=_actor_id(principal), reason_code=payload.reason_code)
    try:
        outcome = await service.withdraw(command)
    except RepositoryError as exc:
        raise http_error(exc) from exc

    withdrawal = outcome.withdrawal
    return WithdrawalOut(
        job_id=withdrawal.job_id,
        contractor_id=withdrawal.contractor_id,
        reason_code=withdrawal.reason_code,
        created_at=withdrawal.created_at,
        changed=outcome.changed,
    )


@router.post("/{job_id}/quotes/{quote_id}/accept", response_model=QuoteAcceptOut)
async def accept_quote(
    job_id: JobId,
    quote_id: QuoteId,
    payload: QuoteAcceptRequest | None = None,
    principal=Depends(get_human_principal),
    service: LifecycleService = Depends(get_lifecycle_service),
) -> QuoteAcceptOut:
    try:
        principal.require_scopes({"quotes:accept"})
        principal.require_role("homeowner")
    except PermissionError as exc:
        raise forbidden(exc) from exc

    command = AcceptQuoteCommand(
        job_id=job_id,
        quote_id=quote_id,
        homeowner_id=_actor_id(principal),
        expected_quote_version=payload.expected_quote_version if payload else None,
    )
    try:
        outcome = await service.accept_quote(command)
    except RepositoryError as exc:
        raise http_error(exc) from exc

    return QuoteAcceptOut(
        job=JobOut.model_validate(outcome.job),
        quote=QuoteOut.model_validate(outcome.quote),
        changed=outcome.changed,
    )


@router.post("/{job_id}/schedule", response_model=JobTransitionOut)
async def schedule_inspection(
    job_id: JobId,
    payload: ScheduleRequest,
    principal=Depends(get_human_principal),
    service: LifecycleService = Depends(get_lifecycle_service),
) -> JobTransitionOut:
    try:
        principal.require_scopes({"inspections:write"})
        principal.require_role("contractor")
    except PermissionError as exc:
        raise forbidden(exc) from exc

    command = ScheduleInspectionCommand(
        job_id=job_id,
        contractor_id=_actor_id(principal),
        scheduled_date=payload.scheduled_date,
    )
    try:
        outcome = await service.schedule(command)
    except RepositoryError as exc:
        raise http_error(exc) from exc

    return JobTransitionOut(job=JobOut.model_validate(outcome.job), changed=outcome.changed)


@router.post("/{job_id}/complete", response_model=JobTransitionOut)
async def complete_job(
    job_id: JobId,
    payload: CompleteRequest,
    principal=Depends(get_human_principal),
    service: LifecycleService = Depends(get_lifecycle_service),
) -> JobTransitionOut:
    try:
        principal.require_scopes({"inspections:write"})
        principal.require_role("contractor")
    except PermissionError as exc:
        raise forbidden(exc) from exc

    command = CompleteJobCommand(
        job_id=job_id,
        contractor_id=_actor_id(principal),
        certificate_ref=payload.certificate_ref,
    )
    try:
        outcome = await service.complete(command)
    except RepositoryError as exc:
        raise http_error(exc) from exc

    return JobTransitionOut(job=JobOut.model_validate(outcome.job), changed=outcome.changed)


def _actor_id(principal: Principal) -> str:
    if not principal.actor_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid human principal")
    return principal.actor_id


def _sees_all_quotes(principal: Principal, job: JobRecord) -> bool:
    if principal.role == "admin":
        return True
    return principal.role == "homeowner" and principal.actor_id == job.homeowner_id


def _can_view_job(principal: Principal, job: JobRecord) -> bool:
    if _sees_all_quotes(principal, job):
        return True
    if principal.role != "contractor":
        return False
    return job.is_open or job.assigned_contractor_id == principal.actor_id
