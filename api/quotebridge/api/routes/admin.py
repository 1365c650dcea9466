from fastapi import APIRouter, Depends, HTTPException, Query, status

from quotebridge.api.errors import forbidden, http_error
from quotebridge.api.routes.maintenance import digest_report_out, sweep_report_out
from quotebridge.core.security import get_human_principal
from quotebridge.schemas.maintenance import ExpireQuotesOut, JobDigestOut
from quotebridge.services.engine import LifecycleService, get_lifecycle_service
from quotebridge.services.errors import RepositoryError

router = APIRouter()


@router.post("/maintenance/expire-quotes", response_model=ExpireQuotesOut)
async def expire_quotes(
    principal=Depends(get_human_principal),
    service: LifecycleService = Depends(get_lifecycle_service),
    batch_size: int = Query(default=100, ge=1, le=1000),
) -> ExpireQuotesOut:
    try:
        principal.require_scopes({"maintenance:write"})
        principal.require_role("admin")
    except PermissionError as exc:
        raise forbidden(exc) from exc

    if not principal.actor_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid human principal")

    try:
        report = await service.run_expiry_sweep(batch_size=batch_size, actor_id=principal.actor_id)
    except RepositoryError as exc:
        raise http_error(exc) from exc

    return sweep_report_out(report)


@router.post("/maintenance/job-digest", response_model=JobDigestOut)
async def send_job_digest(
    principal=Depends(get_human_principal),
    service: LifecycleService = Depends(get_lifecycle_service),
    limit: int = Query(default=200, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
) -> JobDigestOut:
    try:
        principal.require_scopes({"maintenance:write"})
        principal.require_role("admin")
    except PermissionError as exc:
        raise forbidden(exc) from exc

    try:
        report = await service.run_job_digest(limit=limit, offset=offset)
    except RepositoryError as exc:
        raise http_error(exc) from exc

    return digest_report_out(report)
