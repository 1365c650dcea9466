import hashlib
import hmac
from collections.abc import Iterable
from typing import Any

import httpx
from fastapi import Depends, Header, HTTPException, status

from quotebridge.core.auth import Principal, PrincipalType
from quotebridge.core.config import Settings, get_settings
from quotebridge.services.errors import RepositoryUnavailableError
from quotebridge.services.records import MachineCredentialRecord
from quotebridge.services.repository import get_repository

ROLE_SCOPES: dict[str, frozenset[str]] = {
    "homeowner": frozenset({"jobs:read", "jobs:write", "quotes:accept"}),
    "contractor": frozenset({"jobs:read", "quotes:write", "inspections:write"}),
    "admin": frozenset({"jobs:read", "maintenance:write"}),
}
# Roles a user may claim through self-editable user metadata.
SELF_ASSIGNABLE_ROLES = frozenset({"homeowner", "contractor"})
DEFAULT_ROLE = "homeowner"


def hash_api_key(api_key: str) -> str:
    return hashlib.sha256(api_key.encode("utf-8")).hexdigest()


def match_credential(
    credentials: Iterable[MachineCredentialRecord],
    api_key: str,
) -> MachineCredentialRecord | None:
    key_hash = hash_api_key(api_key)
    return next((record for record in credentials if hmac.compare_digest(record.key_hash, key_hash)), None)


async def get_machine_principal(
    settings: Settings = Depends(get_settings),
    repository=Depends(get_repository),
    x_api_key: str | None = Header(default=None, alias="X-API-Key"),
    x_module_id: str | None = Header(default=None, alias="X-Module-Id"),
) -> Principal:
    if not x_api_key or not x_module_id:
        raise _unauthorized(f"machine auth requires {settings.api_key_header} and X-Module-Id")

    try:
        credentials = await repository.get_machine_credentials(x_module_id)
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    matched = match_credential(credentials, x_api_key)
    if matched is None:
        raise _unauthorized("invalid module credentials")

    return Principal(
        principal_type=PrincipalType.MACHINE,
        subject=matched.module_id,
        scopes=set(matched.scopes),
        actor_id=matched.module_db_id,
    )


async def get_human_principal(
    settings: Settings = Depends(get_settings),
    authorization: str | None = Header(default=None, alias="Authorization"),
) -> Principal:
    token = _bearer_token(authorization)
    if not settings.supabase_url or not settings.supabase_anon_key:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Supabase auth is not configured",
        )

    user = await _fetch_supabase_user(
        supabase_url=settings.supabase_url,
        supabase_anon_key=settings.supabase_anon_key,
        token=token,
        timeout_seconds=settings.auth_timeout_seconds,
    )
    return principal_from_user(user)


def principal_from_user(user: dict[str, Any]) -> Principal:
    """Build a homeowner, contractor or admin principal from a Supabase user object."""
    user_id = user.get("id")
    if not isinstance(user_id, str) or not user_id:
        raise _unauthorized("invalid bearer token")

    role = resolve_role(user)
    return Principal(
        principal_type=PrincipalType.HUMAN,
        subject=user_id,
        role=role,
        scopes=set(ROLE_SCOPES[role]),
        actor_id=user_id,
    )


def resolve_role(user: dict[str, Any]) -> str:
    # app_metadata is writable only with the service role, so any known role is trusted there.
    app_role = _metadata_role(user, "app_metadata")
    if app_role in ROLE_SCOPES:
        return app_role

    self_role = _metadata_role(user, "user_metadata")
    if self_role in SELF_ASSIGNABLE_ROLES:
        return self_role

    return DEFAULT_ROLE


def _metadata_role(user: dict[str, Any], key: str) -> str | None:
    metadata = user.get(key)
    if not isinstance(metadata, dict):
        return None
    role = metadata.get("role")
    return role.strip().lower() if isinstance(role, str) else None


def _bearer_token(authorization: str | None) -> str:
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer":
        raise _unauthorized("human auth requires bearer token")
    if not token.strip():
        raise _unauthorized("empty bearer token")
    return token.strip()


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


async def _fetch_supabase_user(
    *,
    supabase_url: str,
    supabase_anon_key: str,
    token: str,
    timeout_seconds: float,
) -> dict[str, Any]:
    url = f"{supabase_url.rstrip('/')}/auth/v1/user"
    headers = {"Authorization": f"Bearer {token}", "apikey": supabase_anon_key}

    try:
        async with httpx.AsyncClient(timeout=timeout_seconds) as client:
            response = await client.get(url, headers=headers)
    except httpx.HTTPError as exc:  # pragma: no cover - network dependent
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Supabase auth verification unavailable",
        ) from exc

    if response.status_code in {status.HTTP_401_UNAUTHORIZED, status.HTTP_403_FORBIDDEN}:
        raise _unauthorized("invalid bearer token")
    if response.status_code != status.HTTP_200_OK:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Supabase auth verification failed",
        )
    return response.json()
