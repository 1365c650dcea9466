from __future__ import annotations

from typing import Any

import httpx


class MaintenanceClient:
    """Calls the API's machine-authenticated maintenance endpoints."""

    def __init__(
        self,
        base_url: str,
        module_id: str,
        api_key: str,
        *,
        timeout_seconds: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.headers = {
            "X-Module-Id": module_id,
            "X-API-Key": api_key,
        }
        self._transport = transport

    async def expire_quotes(self, *, batch_size: int) -> dict[str, Any]:
        return await self._post("/maintenance/expire-quotes", {"batch_size": batch_size})

    async def send_job_digest(self, *, limit: int, offset: int = 0) -> dict[str, Any]:
        return await self._post("/maintenance/job-digest", {"limit": limit, "offset": offset})

    async def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self._transport) as client:
            response = await client.post(f"{self.base_url}{path}", json=payload, headers=self.headers)
            response.raise_for_status()
            return response.json()
