from datetime import datetime, timezone

import pytest

from brandbite.api.problem_details import PROBLEM_TYPE_RATE_LIMIT
from brandbite.domain.roles import UserRole
from brandbite.domain.tickets.db_models import Ticket
from brandbite.infra.security import InMemoryRateLimiter
from brandbite.main import app
from brandbite.settings import settings
from tests.helpers import auth_headers, create_company, create_job_type, create_project, create_user


def test_healthz(client):
    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}
    assert response.headers["X-Content-Type-Options"] == "nosniff"
    assert response.headers["X-Frame-Options"] == "DENY"
    assert "X-Request-ID" in response.headers


def test_request_id_is_echoed(client):
    response = client.get("/healthz", headers={"X-Request-ID": "req-123"})
    assert response.headers["X-Request-ID"] == "req-123"


def test_readyz_checks_database(client):
    response = client.get("/readyz")
    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "ok"
    assert payload["checks"]["database"]["ok"] is True


def test_metrics_endpoint(client):
    settings.metrics_token = None
    response = client.get("/metrics")
    assert response.status_code == 200
    assert "text/plain" in response.headers["content-type"]


def test_metrics_token_required_when_configured(client):
    settings.metrics_token = "scrape-secret"
    missing = client.get("/metrics")
    assert missing.status_code == 401

    allowed = client.get("/metrics", headers={"Authorization": "Bearer scrape-secret"})
    assert allowed.status_code == 200


def test_missing_and_invalid_tokens_are_unauthorized(client):
    missing = client.get("/v1/customer/tokens")
    assert missing.status_code == 401
    assert missing.json()["status"] == 401
    assert "request_id" in missing.json()

    invalid = client.get("/v1/customer/tokens", headers={"Authorization": "Bearer not-a-jwt"})
    assert invalid.status_code == 401


def test_rate_limit_returns_problem_and_skips_exempt_paths(client, monkeypatch):
    monkeypatch.setattr(app.state, "rate_limiter", InMemoryRateLimiter(2))
    settings.stripe_webhook_secret = None

    for _ in range(2):
        assert client.get("/v1/customer/tokens").status_code == 401

    blocked = client.get("/v1/customer/tokens", headers={"X-Request-ID": "req-limited"})
    assert blocked.status_code == 429
    assert blocked.headers["content-type"].startswith("application/problem+json")
    body = blocked.json()
    assert body["status"] == 429
    assert body["title"] == "Too Many Requests"
    assert body["detail"] == "Rate limit exceeded"
    assert body["type"] == PROBLEM_TYPE_RATE_LIMIT
    assert body["request_id"] == "req-limited"

    assert client.get("/healthz").status_code == 200
    webhook = client.post("/v1/billing/webhook", content=b"{}", headers={"Stripe-Signature": "t=test"})
    assert webhook.status_code == 503


@pytest.mark.anyio
async def test_role_mismatch_is_forbidden(async_session_maker, client):
    async with async_session_maker() as session:
        customer = await create_user(session)
        await create_company(session, customer)
        await session.commit()

    response = client.get("/v1/admin/withdrawals", headers=auth_headers(customer))
    assert response.status_code == 403


@pytest.mark.anyio
async def test_token_for_deleted_user_is_rejected(async_session_maker, client):
    async with async_session_maker() as session:
        ghost = await create_user(session)
        await session.commit()
        headers = auth_headers(ghost)
        await session.delete(ghost)
        await session.commit()

    response = client.get("/v1/notifications", headers=headers)
    assert response.status_code == 401


@pytest.mark.anyio
async def test_admin_completed_jobs(async_session_maker, client):
    async with async_session_maker() as session:
        admin = await create_user(session, UserRole.SITE_ADMIN)
        owner = await create_user(session)
        creative = await create_user(session, UserRole.DESIGNER, name="Dana")
        company = await create_company(session, owner, name="Pixel Co")
        project = await create_project(session, company)
        job_type = await create_job_type(session, name="Logo")
        session.add(
            Ticket(
                title="Logo refresh",
                status="DONE",
                priority="MEDIUM",
                company_id=company.id,
                project_id=project.id,
                job_type_id=job_type.id,
                created_by_id=owner.id,
                creative_id=creative.id,
                company_ticket_number=101,
                quantity=1,
                completed_at=datetime(2024, 5, 1, tzinfo=timezone.utc),
            )
        )
        await session.commit()

    response = client.get("/v1/admin/completed-jobs", headers=auth_headers(admin))
    assert response.status_code == 200
    jobs = response.json()
    assert len(jobs) == 1
    assert jobs[0]["code"] == "WEB-101"
    assert jobs[0]["company_name"] == "Pixel Co"
    assert jobs[0]["creative_name"] == "Dana"
    assert jobs[0]["effective_payout"] == 6
    assert jobs[0]["has_payout_entry"] is False
