from __future__ import annotations

import os
from typing import Any

import pytest
from fastapi.testclient import TestClient

import quotebridge.core.security as security
from quotebridge.core.config import get_settings
from quotebridge.main import app
from quotebridge.services.engine import LifecycleService, get_lifecycle_service
from quotebridge.services.repository import get_repository

USERS: dict[str, dict[str, Any]] = {
    "homeowner-1": {"id": "homeowner-1", "user_metadata": {"role": "homeowner"}},
    "homeowner-2": {"id": "homeowner-2"},
    "contractor-a": {"id": "contractor-a", "user_metadata": {"role": "contractor"}},
    "contractor-b": {"id": "contractor-b", "user_metadata": {"role": "contractor"}},
    "contractor-cork": {"id": "contractor-cork", "user_metadata": {"role": "contractor"}},
    "admin-1": {"id": "admin-1", "app_metadata": {"role": "admin"}},
    "sneaky": {"id": "sneaky", "user_metadata": {"role": "admin"}},
}


def _auth(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def client(monkeypatch: pytest.MonkeyPatch, repository, dispatcher, clock) -> TestClient:
    os.environ["QB_SUPABASE_URL"] = "https://example.supabase.co"
    os.environ["QB_SUPABASE_ANON_KEY"] = "anon-key"
    get_settings.cache_clear()

    async def _fake_fetch(*, token: str, **_: Any) -> dict[str, Any]:
        return USERS[token]

    monkeypatch.setattr(security, "_fetch_supabase_user", _fake_fetch)
    service = LifecycleService(repository, dispatcher, clock=clock)
    app.dependency_overrides[get_repository] = lambda: repository
    app.dependency_overrides[get_lifecycle_service] = lambda: service

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
    os.environ.pop("QB_SUPABASE_URL", None)
    os.environ.pop("QB_SUPABASE_ANON_KEY", None)
    get_settings.cache_clear()


def _create_job(client: TestClient, **fields: Any) -> dict[str, Any]:
    body = {"county": "Dublin", "town": "Drumcondra", "property_type": "Semi-detached house"}
    body.update(fields)
    response = client.post("/jobs", json=body, headers=_auth("homeowner-1"))
    assert response.status_code == 201, response.text
    return response.json()


def _submit(client: TestClient, job_id: str, contractor: str, price: str, **fields: Any):
    return client.post(f"/jobs/{job_id}/quotes", json={"price": price, **fields}, headers=_auth(contractor))


def test_homeowner_creates_live_job(client: TestClient, dispatcher) -> None:
    job = _create_job(client)

    assert job["status"] == "live"
    assert job["homeowner_id"] == "homeowner-1"
    assert job["version"] == 1
    assert "job_live" in dispatcher.kinds()


def test_contractor_cannot_create_job(client: TestClient) -> None:
    response = client.post("/jobs", json={"county": "Dublin", "town": "Swords"}, headers=_auth("contractor-a"))
    assert response.status_code == 403


def test_create_job_rejects_unknown_county(client: TestClient) -> None:
    response = client.post("/jobs", json={"county": "Atlantis", "town": "Nowhere"}, headers=_auth("homeowner-1"))
    assert response.status_code == 422


def test_requests_without_bearer_token_are_rejected(client: TestClient) -> None:
    assert client.get("/jobs/eligible").status_code == 401


def test_self_assigned_admin_role_is_ignored(client: TestClient) -> None:
    response = client.post("/admin/maintenance/job-digest", headers=_auth("sneaky"))
    assert response.status_code == 403


def test_eligible_listing_matches_county_and_hides_contact_details(client: TestClient) -> None:
    job = _create_job(client, contact_email="owner@example.ie", property_address="12 Main Street")

    dublin = client.get("/jobs/eligible", headers=_auth("contractor-a"))
    cork = client.get("/jobs/eligible", headers=_auth("contractor-cork"))

    assert dublin.status_code == 200
    assert [item["id"] for item in dublin.json()] == [job["id"]]
    assert "contact_email" not in dublin.json()[0]
    assert "property_address" not in dublin.json()[0]
    assert cork.json() == []


def test_homeowner_cannot_list_eligible_jobs(client: TestClient) -> None:
    assert client.get("/jobs/eligible", headers=_auth("homeowner-1")).status_code == 403


def test_competitive_bidding_through_to_completion(client: TestClient) -> None:
    job = _create_job(client)
    job_id = job["id"]

    first = _submit(client, job_id, "contractor-a", "170")
    assert first.status_code == 200
    assert first.json()["job_status"] == "pending_quote"
    second = _submit(client, job_id, "contractor-b", "150")
    quote_b = second.json()["quote"]

    owner_view = client.get(f"/jobs/{job_id}/ranking", headers=_auth("homeowner-1")).json()
    assert owner_view["lowest_price"] == "150.00"
    assert [item["contractor_id"] for item in owner_view["quotes"]] == ["contractor-b", "contractor-a"]

    contractor_view = client.get(f"/jobs/{job_id}/ranking", headers=_auth("contractor-a")).json()
    assert contractor_view["lowest_price"] == "150.00"
    assert [item["contractor_id"] for item in contractor_view["quotes"]] == ["contractor-a"]
    assert contractor_view["quotes"][0]["is_competitive"] is False

    accepted = client.post(f"/jobs/{job_id}/quotes/{quote_b['id']}/accept", headers=_auth("homeowner-1"))
    assert accepted.status_code == 200
    assert accepted.json()["job"]["status"] == "quote_accepted"
    assert accepted.json()["job"]["assigned_contractor_id"] == "contractor-b"

    quotes = client.get(f"/jobs/{job_id}/quotes", headers=_auth("homeowner-1")).json()
    assert {item["contractor_id"]: item["status"] for item in quotes} == {
        "contractor-a": "rejected",
        "contractor-b": "accepted",
    }

    # The losing contractor no longer sees the job once it is assigned elsewhere.
    assert client.get(f"/jobs/{job_id}", headers=_auth("contractor-a")).status_code == 403
    assert client.get(f"/jobs/{job_id}", headers=_auth("contractor-b")).status_code == 200

    scheduled = client.post(
        f"/jobs/{job_id}/schedule",
        json={"scheduled_date": "2026-03-12"},
        headers=_auth("contractor-b"),
    )
    assert scheduled.status_code == 200
    assert scheduled.json()["job"]["scheduled_date"] == "2026-03-12"

    completed = client.post(
        f"/jobs/{job_id}/complete",
        json={"certificate_ref": "BER-100234"},
        headers=_auth("contractor-b"),
    )
    assert completed.status_code == 200
    assert completed.json()["job"]["status"] == "completed"
    assert completed.json()["changed"] is True


def test_contractor_sees_only_own_quotes(client: TestClient) -> None:
    job_id = _create_job(client)["id"]
    _submit(client, job_id, "contractor-a", "170")
    _submit(client, job_id, "contractor-b", "150")

    response = client.get(f"/jobs/{job_id}/quotes", headers=_auth("contractor-b"))

    assert [item["contractor_id"] for item in response.json()] == ["contractor-b"]


def test_other_homeowner_cannot_see_or_accept_quotes(client: TestClient) -> None:
    job_id = _create_job(client)["id"]
    quote_id = _submit(client, job_id, "contractor-a", "170").json()["quote"]["id"]

    assert client.get(f"/jobs/{job_id}/quotes", headers=_auth("homeowner-2")).status_code == 403
    response = client.post(f"/jobs/{job_id}/quotes/{quote_id}/accept", headers=_auth("homeowner-2"))
    assert response.status_code == 403


def test_contractor_cannot_accept_quotes(client: TestClient) -> None:
    job_id = _create_job(client)["id"]
    quote_id = _submit(client, job_id, "contractor-a", "170").json()["quote"]["id"]

    response = client.post(f"/jobs/{job_id}/quotes/{quote_id}/accept", headers=_auth("contractor-a"))
    assert response.status_code == 403


def test_quote_price_must_be_positive(client: TestClient) -> None:
    job_id = _create_job(client)["id"]

    assert _submit(client, job_id, "contractor-a", "0").status_code == 422
    assert _submit(client, job_id, "contractor-a", "12.345").status_code == 422


def test_revision_with_stale_version_returns_precondition_failed(client: TestClient) -> None:
    job_id = _create_job(client)["id"]
    _submit(client, job_id, "contractor-a", "170")
    revised = _submit(client, job_id, "contractor-a", "160", expected_version=1)
    assert revised.json()["quote"]["version"] == 2

    stale = _submit(client, job_id, "contractor-a", "155", expected_version=1)
    assert stale.status_code == 412


def test_second_acceptance_conflicts(client: TestClient) -> None:
    job_id = _create_job(client)["id"]
    quote_a = _submit(client, job_id, "contractor-a", "170").json()["quote"]["id"]
    quote_b = _submit(client, job_id, "contractor-b", "150").json()["quote"]["id"]

    assert client.post(f"/jobs/{job_id}/quotes/{quote_b}/accept", headers=_auth("homeowner-1")).status_code == 200
    again = client.post(f"/jobs/{job_id}/quotes/{quote_b}/accept", headers=_auth("homeowner-1"))
    assert again.status_code == 200
    assert again.json()["changed"] is False

    other = client.post(f"/jobs/{job_id}/quotes/{quote_a}/accept", headers=_auth("homeowner-1"))
    assert other.status_code == 409


def test_quoting_after_acceptance_conflicts(client: TestClient) -> None:
    job_id = _create_job(client)["id"]
    quote_id = _submit(client, job_id, "contractor-a", "170").json()["quote"]["id"]
    client.post(f"/jobs/{job_id}/quotes/{quote_id}/accept", headers=_auth("homeowner-1"))

    assert _submit(client, job_id, "contractor-b", "120").status_code == 409


def test_scheduling_by_unassigned_contractor_conflicts(client: TestClient) -> None:
    job_id = _create_job(client)["id"]
    quote_id = _submit(client, job_id, "contractor-a", "170").json()["quote"]["id"]
    client.post(f"/jobs/{job_id}/quotes/{quote_id}/accept", headers=_auth("homeowner-1"))

    response = client.post(
        f"/jobs/{job_id}/schedule",
        json={"scheduled_date": "2026-03-12"},
        headers=_auth("contractor-b"),
    )
    assert response.status_code == 409


def test_withdraw_hides_job_from_contractor(client: TestClient) -> None:
    job_id = _create_job(client)["id"]

    response = client.post(f"/jobs/{job_id}/withdraw", json={"reason_code": "too_far"}, headers=_auth("contractor-a"))
    assert response.status_code == 200
    assert response.json()["changed"] is True

    assert client.get("/jobs/eligible", headers=_auth("contractor-a")).json() == []
    assert len(client.get("/jobs/eligible", headers=_auth("contractor-b")).json()) == 1


def test_withdraw_rejects_unknown_reason(client: TestClient) -> None:
    job_id = _create_job(client)["id"]

    response = client.post(f"/jobs/{job_id}/withdraw", json={"reason_code": "bored"}, headers=_auth("contractor-a"))
    assert response.status_code == 422


def test_unknown_job_is_not_found(client: TestClient) -> None:
    assert client.get("/jobs/does-not-exist", headers=_auth("homeowner-1")).status_code == 404
    assert _submit(client, "does-not-exist", "contractor-a", "170").status_code == 404
