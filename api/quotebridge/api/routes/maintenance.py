from fastapi import APIRouter, Depends

from quotebridge.api.errors import forbidden, http_error
from quotebridge.core.security import get_machine_principal
from quotebridge.schemas.maintenance import (
    ExpireQuotesOut,
    ExpireQuotesRequest,
    JobDigestOut,
    JobDigestRequest,
    SweepFailureOut,
)
from quotebridge.services.engine import DigestReport, LifecycleService, get_lifecycle_service
from quotebridge.services.errors import RepositoryError
from quotebridge.services.expiry import SweepReport

router = APIRouter()


@router.post("/expire-quotes", response_model=ExpireQuotesOut)
async def expire_quotes(
    payload: ExpireQuotesRequest | None = None,
    principal=Depends(get_machine_principal),
    service: LifecycleService = Depends(get_lifecycle_service),
) -> ExpireQuotesOut:
    try:
        principal.require_scopes({"maintenance:write"})
    except PermissionError as exc:
        raise forbidden(exc) from exc

    try:
        report = await service.run_expiry_sweep(
            batch_size=payload.batch_size if payload else None,
            actor_id=principal.subject,
        )
    except RepositoryError as exc:
        raise http_error(exc) from exc

    return sweep_report_out(report)


@router.post("/job-digest", response_model=JobDigestOut)
async def send_job_digest(
    payload: JobDigestRequest | None = None,
    principal=Depends(get_machine_principal),
    service: LifecycleService = Depends(get_lifecycle_service),
) -> JobDigestOut:
    try:
        principal.require_scopes({"maintenance:write"})
    except PermissionError as exc:
        raise forbidden(exc) from exc

    request = payload or JobDigestRequest()
    try:
        report = await service.run_job_digest(limit=request.limit, offset=request.offset)
    except RepositoryError as exc:
        raise http_error(exc) from exc

    return digest_report_out(report)


def sweep_report_out(report: SweepReport) -> ExpireQuotesOut:
    return ExpireQuotesOut(
        cutoff=report.cutoff,
        batch_size=report.batch_size,
        expired_count=report.expired_count,
        relisted_count=report.relisted_count,
        skipped_count=report.skipped_count,
        failures=[SweepFailureOut(quote_id=item.quote_id, error=item.error) for item in report.failures],
        has_more=report.has_more,
        expired_quote_ids=report.expired_quote_ids,
        relisted_job_ids=report.relisted_job_ids,
    )


def digest_report_out(report: DigestReport) -> JobDigestOut:
    return JobDigestOut(
        contractors_seen=report.contractors_seen,
        digests_sent=report.digests_sent,
        has_more=report.has_more,
    )
