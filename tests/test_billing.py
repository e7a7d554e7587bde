from types import SimpleNamespace

import pytest
import sqlalchemy as sa

from brandbite.domain.billing import service as billing_service
from brandbite.domain.billing.db_models import StripeEvent
from brandbite.domain.billing.schemas import BillingStatus
from brandbite.domain.companies.db_models import Company
from brandbite.domain.ledger.db_models import TokenLedger
from brandbite.domain.roles import CompanyRole
from brandbite.main import app
from brandbite.settings import settings
from brandbite.shared.circuit_breaker import CircuitBreakerOpenError
from tests.helpers import add_member, auth_headers, create_company, create_plan, create_user


def _checkout_event(event_id: str, company_id: str, plan_id: str, subscription_id: str = "sub_123") -> dict:
    return {
        "id": event_id,
        "type": "checkout.session.completed",
        "data": {
            "object": {
                "id": "cs_test",
                "customer": "cus_123",
                "subscription": subscription_id,
                "metadata": {"companyId": company_id, "planId": plan_id},
            }
        },
    }


def _post_webhook(client, payload: bytes = b"{}"):
    return client.post("/v1/billing/webhook", content=payload, headers={"Stripe-Signature": "t=test"})


def test_map_subscription_status():
    assert billing_service.map_subscription_status("active") == BillingStatus.ACTIVE
    assert billing_service.map_subscription_status("trialing") == BillingStatus.ACTIVE
    assert billing_service.map_subscription_status("past_due") == BillingStatus.PAST_DUE
    assert billing_service.map_subscription_status("unpaid") == BillingStatus.PAST_DUE
    assert billing_service.map_subscription_status("canceled") == BillingStatus.CANCELED
    assert billing_service.map_subscription_status("active", deleted=True) == BillingStatus.CANCELED
    assert billing_service.map_subscription_status(None) == BillingStatus.CANCELED


@pytest.mark.anyio
async def test_checkout_webhook_credits_company_once(async_session_maker, client):
    settings.stripe_webhook_secret = "whsec_test"
    async with async_session_maker() as session:
        owner = await create_user(session)
        company = await create_company(session, owner, token_balance=5)
        plan = await create_plan(session, monthly_tokens=100)
        await session.commit()

    event = _checkout_event("evt_checkout_1", company.id, plan.id)
    app.state.stripe_client = SimpleNamespace(verify_webhook=lambda payload, signature: event)

    response = _post_webhook(client)
    assert response.status_code == 200
    assert response.json() == {"received": True, "processed": True}

    duplicate = _post_webhook(client)
    assert duplicate.status_code == 200
    assert duplicate.json() == {"received": True, "processed": False}

    mismatch = _post_webhook(client, b'{"changed": true}')
    assert mismatch.status_code == 400

    async with async_session_maker() as session:
        refreshed = await session.get(Company, company.id)
        assert refreshed.token_balance == 105
        assert refreshed.plan_id == plan.id
        assert refreshed.stripe_subscription_id == "sub_123"
        assert refreshed.billing_status == "ACTIVE"
        credits = (
            await session.execute(sa.select(TokenLedger).where(TokenLedger.company_id == company.id))
        ).scalars().all()
        assert [entry.reason for entry in credits] == ["SUBSCRIPTION_INITIAL_CREDIT"]
        record = await session.scalar(sa.select(StripeEvent).where(StripeEvent.event_id == "evt_checkout_1"))
        assert record.status == "succeeded"
        assert record.company_id == company.id


@pytest.mark.anyio
async def test_renewal_and_cancellation_webhooks(async_session_maker, client):
    settings.stripe_webhook_secret = "whsec_test"
    async with async_session_maker() as session:
        owner = await create_user(session)
        company = await create_company(session, owner, token_balance=0)
        plan = await create_plan(session, monthly_tokens=50)
        company.plan_id = plan.id
        company.stripe_subscription_id = "sub_live"
        company.billing_status = "ACTIVE"
        await session.commit()

    events = {
        "renewal": {
            "id": "evt_invoice_1",
            "type": "invoice.payment_succeeded",
            "data": {"object": {"id": "in_1", "subscription": "sub_live", "billing_reason": "subscription_cycle"}},
        },
        "first_invoice": {
            "id": "evt_invoice_0",
            "type": "invoice.payment_succeeded",
            "data": {"object": {"id": "in_0", "subscription": "sub_live", "billing_reason": "subscription_create"}},
        },
        "past_due": {
            "id": "evt_sub_1",
            "type": "customer.subscription.updated",
            "data": {"object": {"id": "sub_live", "status": "past_due"}},
        },
        "deleted": {
            "id": "evt_sub_2",
            "type": "customer.subscription.deleted",
            "data": {"object": {"id": "sub_live", "status": "canceled"}},
        },
    }
    current = {"event": None}
    app.state.stripe_client = SimpleNamespace(verify_webhook=lambda payload, signature: current["event"])

    current["event"] = events["renewal"]
    assert _post_webhook(client).json()["processed"] is True
    current["event"] = events["first_invoice"]
    assert _post_webhook(client).json()["processed"] is False

    async with async_session_maker() as session:
        refreshed = await session.get(Company, company.id)
        assert refreshed.token_balance == 50

    current["event"] = events["past_due"]
    assert _post_webhook(client).json()["processed"] is True
    async with async_session_maker() as session:
        assert (await session.get(Company, company.id)).billing_status == "PAST_DUE"

    current["event"] = events["deleted"]
    assert _post_webhook(client).json()["processed"] is True
    async with async_session_maker() as session:
        assert (await session.get(Company, company.id)).billing_status == "CANCELED"


@pytest.mark.anyio
async def test_unknown_event_is_ignored(async_session_maker, client):
    settings.stripe_webhook_secret = "whsec_test"
    event = {"id": "evt_other", "type": "charge.refunded", "data": {"object": {}}}
    app.state.stripe_client = SimpleNamespace(verify_webhook=lambda payload, signature: event)

    response = _post_webhook(client)
    assert response.status_code == 200
    assert response.json() == {"received": True, "processed": False}

    async with async_session_maker() as session:
        record = await session.scalar(sa.select(StripeEvent).where(StripeEvent.event_id == "evt_other"))
        assert record.status == "ignored"
        assert record.company_id is None


@pytest.mark.anyio
async def test_failed_webhook_is_recorded_and_redelivery_processes(async_session_maker, client, monkeypatch):
    settings.stripe_webhook_secret = "whsec_test"
    async with async_session_maker() as session:
        owner = await create_user(session)
        company = await create_company(session, owner, token_balance=5)
        plan = await create_plan(session, monthly_tokens=100)
        await session.commit()

    event = _checkout_event("evt_checkout_retry", company.id, plan.id)
    app.state.stripe_client = SimpleNamespace(verify_webhook=lambda payload, signature: event)
    real_handler = billing_service.handle_stripe_event
    failures = {"remaining": 1}

    async def flaky_handler(session, incoming):
        processed = await real_handler(session, incoming)
        if failures["remaining"]:
            failures["remaining"] -= 1
            raise RuntimeError("downstream failure")
        return processed

    monkeypatch.setattr(billing_service, "handle_stripe_event", flaky_handler)

    failed = _post_webhook(client)
    assert failed.status_code == 500
    assert failed.json()["detail"] == "Stripe webhook processing error"

    async with async_session_maker() as session:
        record = await session.scalar(sa.select(StripeEvent).where(StripeEvent.event_id == "evt_checkout_retry"))
        assert record.status == "error"
        assert record.last_error == "downstream failure"
        untouched = await session.get(Company, company.id)
        assert untouched.token_balance == 5
        assert untouched.stripe_subscription_id is None

    redelivered = _post_webhook(client)
    assert redelivered.status_code == 200
    assert redelivered.json() == {"received": True, "processed": True}

    async with async_session_maker() as session:
        record = await session.scalar(sa.select(StripeEvent).where(StripeEvent.event_id == "evt_checkout_retry"))
        assert record.status == "succeeded"
        assert record.last_error is None
        credited = await session.get(Company, company.id)
        assert credited.token_balance == 105
        credits = (
            await session.execute(sa.select(TokenLedger).where(TokenLedger.company_id == company.id))
        ).scalars().all()
        assert len(credits) == 1


def test_webhook_requires_signature_and_secret(client):
    settings.stripe_webhook_secret = None
    disabled = client.post("/v1/billing/webhook", content=b"{}", headers={"Stripe-Signature": "t=test"})
    assert disabled.status_code == 503

    settings.stripe_webhook_secret = "whsec_test"
    missing = client.post("/v1/billing/webhook", content=b"{}")
    assert missing.status_code == 400
    assert missing.json()["detail"] == "Missing Stripe signature"


def test_webhook_invalid_signature(client):
    settings.stripe_webhook_secret = "whsec_test"

    def _reject(payload, signature):
        raise ValueError("bad signature")

    app.state.stripe_client = SimpleNamespace(verify_webhook=_reject)
    response = client.post("/v1/billing/webhook", content=b"{}", headers={"Stripe-Signature": "t=bad"})
    assert response.status_code == 400
    assert response.json()["detail"] == "Invalid Stripe webhook"


@pytest.mark.anyio
async def test_checkout_session_created(async_session_maker, client):
    settings.stripe_secret_key = "sk_test"
    async with async_session_maker() as session:
        owner = await create_user(session)
        company = await create_company(session, owner)
        plan = await create_plan(session, stripe_price_id="price_pro")
        await session.commit()

    calls = []

    def _create(**kwargs):
        calls.append(kwargs)
        return {"url": "https://checkout.stripe.test/session"}

    app.state.stripe_client = SimpleNamespace(create_subscription_checkout_session=_create)
    response = client.post("/v1/billing/checkout", headers=auth_headers(owner), json={"plan_id": plan.id})
    assert response.status_code == 201
    assert response.json() == {"url": "https://checkout.stripe.test/session"}
    assert calls[0]["price_id"] == "price_pro"
    assert calls[0]["metadata"] == {"planId": plan.id, "companyId": company.id, "userId": owner.id}
    assert calls[0]["idempotency_key"].startswith(f"checkout:{company.id}:{plan.id}:")


@pytest.mark.anyio
async def test_checkout_rules(async_session_maker, client):
    settings.stripe_secret_key = "sk_test"
    async with async_session_maker() as session:
        owner = await create_user(session)
        company = await create_company(session, owner)
        member = await create_user(session)
        await add_member(session, company, member, CompanyRole.MEMBER)
        plan = await create_plan(session)
        offline_plan = await create_plan(session, name="Enterprise", stripe_price_id=None)
        await session.commit()

    def _open_circuit(**kwargs):
        raise CircuitBreakerOpenError("stripe circuit open")

    app.state.stripe_client = SimpleNamespace(create_subscription_checkout_session=_open_circuit)

    forbidden = client.post("/v1/billing/checkout", headers=auth_headers(member), json={"plan_id": plan.id})
    assert forbidden.status_code == 403

    unknown = client.post("/v1/billing/checkout", headers=auth_headers(owner), json={"plan_id": "missing"})
    assert unknown.status_code == 404

    offline = client.post("/v1/billing/checkout", headers=auth_headers(owner), json={"plan_id": offline_plan.id})
    assert offline.status_code == 400

    unavailable = client.post("/v1/billing/checkout", headers=auth_headers(owner), json={"plan_id": plan.id})
    assert unavailable.status_code == 503
    assert unavailable.json()["detail"] == "Stripe temporarily unavailable"


@pytest.mark.anyio
async def test_checkout_without_stripe_configuration(async_session_maker, client):
    settings.stripe_secret_key = None
    app.state.stripe_client = None
    async with async_session_maker() as session:
        owner = await create_user(session)
        await create_company(session, owner)
        plan = await create_plan(session)
        await session.commit()

    response = client.post("/v1/billing/checkout", headers=auth_headers(owner), json={"plan_id": plan.id})
    assert response.status_code == 503
    assert response.json()["detail"] == "Stripe not configured"


@pytest.mark.anyio
async def test_list_plans(async_session_maker, client):
    async with async_session_maker() as session:
        owner = await create_user(session)
        await create_company(session, owner)
        await create_plan(session, name="Pro", monthly_tokens=300)
        await create_plan(session, name="Starter", monthly_tokens=100)
        await session.commit()

    response = client.get("/v1/billing/plans", headers=auth_headers(owner))
    assert response.status_code == 200
    assert [plan["name"] for plan in response.json()] == ["Starter", "Pro"]
