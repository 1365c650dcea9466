from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from functools import lru_cache
from typing import Any, Protocol

import httpx

from quotebridge.core.config import get_settings
from quotebridge.services.records import NotificationRequest

logger = logging.getLogger(__name__)


class NotificationGateway(Protocol):
    async def notify(self, event_kind: str, job_id: str | None, recipient: str, payload: dict[str, Any]) -> None:
        ...


class LoggingNotificationGateway:
    """Used when no webhook is configured; records the event in the log only."""

    async def notify(self, event_kind: str, job_id: str | None, recipient: str, payload: dict[str, Any]) -> None:
        logger.info(
            "notification event_kind=%s job_id=%s recipient=%s payload_keys=%s",
            event_kind,
            job_id,
            recipient,
            sorted(payload),
        )


class WebhookNotificationGateway:
    def __init__(
        self,
        url: str,
        *,
        token: str | None = None,
        timeout_seconds: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.url = url
        self.timeout_seconds = timeout_seconds
        self.headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._client = client

    async def notify(self, event_kind: str, job_id: str | None, recipient: str, payload: dict[str, Any]) -> None:
        body = {
            "event_kind": event_kind,
            "job_id": job_id,
            "recipient": recipient,
            "payload": payload,
        }
        if self._client is not None:
            response = await self._client.post(self.url, json=body, headers=self.headers)
            response.raise_for_status()
            return

        async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
            response = await client.post(self.url, json=body, headers=self.headers)
            response.raise_for_status()


class NotificationDispatcher:
    """Fire-and-forget delivery of lifecycle notifications.

    ``dispatch`` never blocks on the gateway and never raises: each request is
    delivered on its own task, and delivery failures are logged. Lifecycle
    state has already been committed by the time anything is dispatched, so a
    lost or duplicated notification is tolerable.
    """

    def __init__(self, gateway: NotificationGateway) -> None:
        self.gateway = gateway
        self._pending: set[asyncio.Task[None]] = set()

    def dispatch(self, requests: Iterable[NotificationRequest]) -> int:
        scheduled = 0
        for request in requests:
            task = asyncio.get_running_loop().create_task(self._deliver(request))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
            scheduled += 1
        return scheduled

    async def drain(self) -> None:
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def _deliver(self, request: NotificationRequest) -> None:
        try:
            await self.gateway.notify(request.event_kind, request.job_id, request.recipient, request.payload)
        except Exception:
            logger.warning(
                "notification delivery failed event_kind=%s job_id=%s recipient=%s",
                request.event_kind,
                request.job_id,
                request.recipient,
                exc_info=True,
            )


def build_notification_gateway() -> NotificationGateway:
    settings = get_settings()
    if not settings.notification_webhook_url:
        return LoggingNotificationGateway()
    return WebhookNotificationGateway(
        settings.notification_webhook_url,
        token=settings.notification_webhook_token,
        timeout_seconds=settings.notification_timeout_seconds,
    )


@lru_cache
def get_notification_dispatcher() -> NotificationDispatcher:
    return NotificationDispatcher(build_notification_gateway())
