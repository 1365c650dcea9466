import asyncio
import json

import httpx
import pytest

from quotebridge_workers.services.maintenance_client import MaintenanceClient


def test_expire_quotes_posts_batch_with_module_credentials() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"expired_count": 1, "has_more": False})

    client = MaintenanceClient(
        "http://api.internal/",
        "local-maintenance",
        "secret-key",
        transport=httpx.MockTransport(handler),
    )

    report = asyncio.run(client.expire_quotes(batch_size=25))

    assert report == {"expired_count": 1, "has_more": False}
    assert str(seen[0].url) == "http://api.internal/maintenance/expire-quotes"
    assert seen[0].headers["X-Module-Id"] == "local-maintenance"
    assert seen[0].headers["X-API-Key"] == "secret-key"
    assert json.loads(seen[0].content) == {"batch_size": 25}


def test_job_digest_sends_paging_parameters() -> None:
    seen: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(json.loads(request.content))
        return httpx.Response(200, json={"contractors_seen": 0, "digests_sent": 0, "has_more": False})

    client = MaintenanceClient("http://api.internal", "m", "k", transport=httpx.MockTransport(handler))

    asyncio.run(client.send_job_digest(limit=50, offset=100))

    assert seen == [{"limit": 50, "offset": 100}]


def test_error_status_is_raised() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(403, json={"detail": "missing required scopes"})

    client = MaintenanceClient("http://api.internal", "m", "k", transport=httpx.MockTransport(handler))

    with pytest.raises(httpx.HTTPStatusError):
        asyncio.run(client.expire_quotes(batch_size=10))
