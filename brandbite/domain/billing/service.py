from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from brandbite.domain.billing.schemas import BillingStatus
from brandbite.domain.catalog.db_models import Plan
from brandbite.domain.companies.db_models import Company
from brandbite.domain.errors import DomainError, NotFoundError
from brandbite.domain.ledger import service as ledger_service
from brandbite.domain.ledger.schemas import LedgerDirection, LedgerReason
from brandbite.domain.users.db_models import UserAccount
from brandbite.infra import stripe_client as stripe_infra
from brandbite.settings import settings
from brandbite.shared.clock import utcnow

logger = logging.getLogger(__name__)

ACTIVE_SUBSCRIPTION_STATUSES = {"trialing", "active"}
PAST_DUE_SUBSCRIPTION_STATUSES = {"past_due", "unpaid", "incomplete", "paused"}


def safe_get(source: object, key: str, default: Any | None = None) -> Any:
    if isinstance(source, dict):
        return source.get(key, default)
    return getattr(source, key, default)


def _event_object(event: Any) -> Any:
    data = safe_get(event, "data", {}) or {}
    return safe_get(data, "object", {}) or {}


def _metadata(payload_object: Any) -> dict:
    metadata = safe_get(payload_object, "metadata", {}) or {}
    return dict(metadata) if isinstance(metadata, dict) else {}


def map_subscription_status(stripe_status: str | None, *, deleted: bool = False) -> BillingStatus:
    if deleted:
        return BillingStatus.CANCELED
    if stripe_status in ACTIVE_SUBSCRIPTION_STATUSES:
        return BillingStatus.ACTIVE
    if stripe_status in PAST_DUE_SUBSCRIPTION_STATUSES:
        return BillingStatus.PAST_DUE
    return BillingStatus.CANCELED


def event_company_id(event: Any) -> str | None:
    return _metadata(_event_object(event)).get("companyId")


async def list_active_plans(session: AsyncSession) -> list[Plan]:
    result = await session.execute(
        select(Plan).where(Plan.is_active.is_(True)).order_by(Plan.monthly_tokens, Plan.name)
    )
    return list(result.scalars())


async def create_checkout(
    session: AsyncSession,
    stripe_client: Any,
    *,
    company: Company,
    user: UserAccount,
    plan_id: str,
    now: datetime | None = None,
) -> dict[str, str]:
    """Open a Stripe subscription checkout for ``plan_id``.

    Stripe errors propagate; the route maps an open circuit to 503 and any
    other failure to 502.
    """
    now = now or utcnow()
    plan = await session.get(Plan, plan_id)
    if plan is None or not plan.is_active:
        raise NotFoundError(detail="Plan not found")
    if not plan.stripe_price_id:
        raise DomainError(detail="Plan is not available for online checkout")

    # One key per company, plan and minute collapses double clicks.
    idempotency_key = f"checkout:{company.id}:{plan.id}:{int(now.timestamp() // 60)}"
    checkout_session = await stripe_infra.call_stripe_client_method(
        stripe_client,
        "create_subscription_checkout_session",
        price_id=plan.stripe_price_id,
        success_url=settings.stripe_billing_success_url,
        cancel_url=settings.stripe_billing_cancel_url,
        metadata={"planId": plan.id, "companyId": company.id, "userId": user.id},
        customer=company.stripe_customer_id,
        customer_email=user.email,
        idempotency_key=idempotency_key,
    )
    url = safe_get(checkout_session, "url")
    if not url:
        raise DomainError(detail="Stripe checkout session has no URL")
    logger.info(
        "stripe_checkout_created",
        extra={"extra": {"company_id": company.id, "plan_id": plan.id}},
    )
    return {"url": url}


async def _company_by_subscription(session: AsyncSession, subscription_id: str | None) -> Company | None:
    if not subscription_id:
        return None
    return await session.scalar(
        select(Company).where(Company.stripe_subscription_id == subscription_id).with_for_update()
    )


def _invoice_subscription_id(invoice: Any) -> str | None:
    subscription = safe_get(invoice, "subscription")
    if subscription:
        return subscription if isinstance(subscription, str) else safe_get(subscription, "id")
    parent = safe_get(invoice, "parent") or {}
    details = safe_get(parent, "subscription_details") or {}
    subscription = safe_get(details, "subscription")
    if subscription:
        return subscription if isinstance(subscription, str) else safe_get(subscription, "id")
    return None


async def _handle_checkout_completed(session: AsyncSession, event: Any) -> bool:
    checkout = _event_object(event)
    metadata = _metadata(checkout)
    plan_id = metadata.get("planId")
    company_id = metadata.get("companyId")
    if not plan_id or not company_id:
        logger.info("stripe_checkout_missing_metadata", extra={"extra": {"event_id": safe_get(event, "id")}})
        return False

    plan = await session.get(Plan, plan_id)
    if plan is None or not plan.is_active:
        logger.warning("stripe_checkout_plan_inactive", extra={"extra": {"plan_id": plan_id}})
        return False
    company = await session.scalar(select(Company).where(Company.id == company_id).with_for_update())
    if company is None:
        logger.warning("stripe_checkout_company_missing", extra={"extra": {"company_id": company_id}})
        return False

    subscription_id = safe_get(checkout, "subscription")
    customer_id = safe_get(checkout, "customer")
    first_subscription = not company.stripe_subscription_id
    if first_subscription and plan.monthly_tokens > 0:
        await ledger_service.apply_company_ledger_entry(
            session,
            company_id=company.id,
            amount=plan.monthly_tokens,
            direction=LedgerDirection.CREDIT,
            reason=LedgerReason.SUBSCRIPTION_INITIAL_CREDIT,
            notes=f"Initial credit for plan {plan.name}",
            metadata={
                "planId": plan.id,
                "stripeEventId": safe_get(event, "id"),
                "stripeSubscriptionId": subscription_id,
            },
        )

    company.plan_id = plan.id
    if customer_id:
        company.stripe_customer_id = customer_id
    if subscription_id:
        company.stripe_subscription_id = subscription_id
    company.billing_status = BillingStatus.ACTIVE.value
    await session.flush()
    logger.info(
        "stripe_subscription_activated",
        extra={"extra": {"company_id": company.id, "plan_id": plan.id, "initial_credit": first_subscription}},
    )
    return True


async def _handle_invoice_paid(session: AsyncSession, event: Any) -> bool:
    invoice = _event_object(event)
    if safe_get(invoice, "billing_reason") == "subscription_create":
        return False
    company = await _company_by_subscription(session, _invoice_subscription_id(invoice))
    if company is None:
        logger.info("stripe_invoice_company_missing", extra={"extra": {"event_id": safe_get(event, "id")}})
        return False

    plan = await session.get(Plan, company.plan_id) if company.plan_id else None
    if plan is not None and plan.monthly_tokens > 0:
        await ledger_service.apply_company_ledger_entry(
            session,
            company_id=company.id,
            amount=plan.monthly_tokens,
            direction=LedgerDirection.CREDIT,
            reason=LedgerReason.SUBSCRIPTION_RENEWAL,
            notes=f"Renewal credit for plan {plan.name}",
            metadata={
                "planId": plan.id,
                "stripeEventId": safe_get(event, "id"),
                "stripeInvoiceId": safe_get(invoice, "id"),
            },
        )
    company.billing_status = BillingStatus.ACTIVE.value
    await session.flush()
    logger.info("stripe_subscription_renewed", extra={"extra": {"company_id": company.id}})
    return True


async def _handle_subscription_change(session: AsyncSession, event: Any, *, deleted: bool) -> bool:
    subscription = _event_object(event)
    company = await _company_by_subscription(session, safe_get(subscription, "id"))
    if company is None:
        return False
    billing_status = map_subscription_status(safe_get(subscription, "status"), deleted=deleted)
    company.billing_status = billing_status.value
    await session.flush()
    logger.info(
        "stripe_subscription_status_changed",
        extra={"extra": {"company_id": company.id, "billing_status": billing_status.value}},
    )
    return True


async def handle_stripe_event(session: AsyncSession, event: Any) -> bool:
    event_type = safe_get(event, "type")
    if event_type == "checkout.session.completed":
        return await _handle_checkout_completed(session, event)
    if event_type == "invoice.payment_succeeded":
        return await _handle_invoice_paid(session, event)
    if event_type == "customer.subscription.updated":
        return await _handle_subscription_change(session, event, deleted=False)
    if event_type == "customer.subscription.deleted":
        return await _handle_subscription_change(session, event, deleted=True)
    logger.info("stripe_webhook_unhandled_type", extra={"extra": {"event_type": event_type}})
    return False
