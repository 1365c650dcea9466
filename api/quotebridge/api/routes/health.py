from fastapi import APIRouter, Depends

from quotebridge.api.errors import http_error
from quotebridge.core.config import Settings, get_settings
from quotebridge.services.errors import RepositoryError
from quotebridge.services.repository import get_repository

router = APIRouter()


@router.get("/")
async def root(settings: Settings = Depends(get_settings)) -> dict[str, str]:
    return {"status": "ok", "service": settings.app_name}


@router.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/readyz")
async def readyz(repository=Depends(get_repository)) -> dict[str, str]:
    try:
        await repository.ping()
    except RepositoryError as exc:
        raise http_error(exc) from exc
    return {"status": "ready"}
