from __future__ import annotations

import hashlib
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from brandbite.api.auth import require_customer_company, require_user
from brandbite.domain.billing import service as billing_service
from brandbite.domain.billing.db_models import StripeEvent
from brandbite.domain.billing.schemas import CheckoutRequest, CheckoutResponse, PlanResponse
from brandbite.domain.companies import service as companies_service
from brandbite.domain.companies.db_models import Company
from brandbite.domain.errors import DomainError, ForbiddenError
from brandbite.domain.identity import Identity
from brandbite.domain.roles import can_manage_billing
from brandbite.domain.users import service as users_service
from brandbite.infra import stripe_client as stripe_infra
from brandbite.infra.db import get_db_session
from brandbite.infra.metrics import metrics
from brandbite.settings import settings
from brandbite.shared.circuit_breaker import CircuitBreakerOpenError

router = APIRouter()
logger = logging.getLogger(__name__)


def _stripe_client(request: Request):
    if getattr(request.app.state, "stripe_client", None):
        return request.app.state.stripe_client
    services = getattr(request.app.state, "services", None)
    if services and getattr(services, "stripe_client", None):
        return services.stripe_client
    return stripe_infra.resolve_client(request.app.state)


@router.get("/v1/billing/plans", response_model=list[PlanResponse])
async def list_plans(
    identity: Identity = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
) -> list[PlanResponse]:
    plans = await billing_service.list_active_plans(session)
    return [PlanResponse.model_validate(plan) for plan in plans]


@router.post("/v1/billing/checkout", response_model=CheckoutResponse, status_code=status.HTTP_201_CREATED)
async def create_checkout(
    payload: CheckoutRequest,
    http_request: Request,
    identity: Identity = Depends(require_customer_company),
    session: AsyncSession = Depends(get_db_session),
) -> CheckoutResponse:
    if not can_manage_billing(identity.company_role):
        raise ForbiddenError(detail="Only company owners can manage billing.")
    if not settings.stripe_secret_key and getattr(http_request.app.state, "stripe_client", None) is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Stripe not configured")

    company = await companies_service.get_company(session, identity.company_id)
    user = await users_service.get_user(session, identity.user_id)
    stripe_client = _stripe_client(http_request)
    try:
        result = await billing_service.create_checkout(
            session, stripe_client, company=company, user=user, plan_id=payload.plan_id
        )
    except DomainError:
        raise
    except CircuitBreakerOpenError as exc:
        metrics.record_stripe_circuit_open()
        logger.warning(
            "stripe_checkout_circuit_open",
            extra={"extra": {"company_id": company.id, "reason": type(exc).__name__}},
        )
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Stripe temporarily unavailable",
        ) from exc
    except Exception as exc:  # noqa: BLE001
        logger.warning(
            "stripe_checkout_creation_failed",
            extra={"extra": {"company_id": company.id, "reason": type(exc).__name__}},
        )
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Stripe checkout unavailable") from exc
    return CheckoutResponse(url=result["url"])


async def _stripe_webhook_handler(http_request: Request, session: AsyncSession) -> dict[str, bool]:
    payload = await http_request.body()
    sig_header = http_request.headers.get("Stripe-Signature")
    if not settings.stripe_webhook_secret:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Stripe webhook disabled")
    if not sig_header:
        metrics.record_webhook_error("missing_signature")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing Stripe signature")

    outcome = "error"
    try:
        stripe_client = _stripe_client(http_request)
        try:
            event = await stripe_infra.call_stripe_client_method(
                stripe_client, "verify_webhook", payload=payload, signature=sig_header
            )
        except CircuitBreakerOpenError as exc:
            metrics.record_webhook_error("stripe_unavailable")
            metrics.record_stripe_circuit_open()
            logger.warning("stripe_webhook_circuit_open", extra={"extra": {"reason": type(exc).__name__}})
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Stripe temporarily unavailable",
            ) from exc
        except Exception as exc:  # noqa: BLE001
            metrics.record_webhook("error")
            metrics.record_webhook_error("invalid_signature")
            logger.warning("stripe_webhook_invalid", extra={"extra": {"reason": type(exc).__name__}})
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid Stripe webhook") from exc

        event_id = billing_service.safe_get(event, "id")
        if not event_id:
            metrics.record_webhook_error("missing_event_id")
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing event id")
        payload_hash = hashlib.sha256(payload or b"").hexdigest()
        event_type = billing_service.safe_get(event, "type")

        processed = False
        processing_error: Exception | None = None
        async with session.begin():
            existing = await session.scalar(
                select(StripeEvent).where(StripeEvent.event_id == str(event_id)).with_for_update()
            )
            if existing:
                if existing.payload_hash != payload_hash:
                    logger.warning("stripe_webhook_replayed_mismatch", extra={"extra": {"event_id": event_id}})
                    metrics.record_webhook_error("payload_mismatch")
                    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Event payload mismatch")

                if existing.status in {"succeeded", "ignored", "processing"}:
                    logger.info(
                        "stripe_webhook_duplicate",
                        extra={"extra": {"event_id": event_id, "status": existing.status}},
                    )
                    metrics.record_webhook("ignored")
                    outcome = "ignored"
                    return {"received": True, "processed": False}

                record = existing
                record.status = "processing"
                if not record.event_type:
                    record.event_type = event_type
            else:
                record = StripeEvent(
                    event_id=str(event_id),
                    status="processing",
                    payload_hash=payload_hash,
                    event_type=event_type,
                )
                session.add(record)

            company_id = billing_service.event_company_id(event)
            if company_id and record.company_id is None and await session.get(Company, company_id) is not None:
                record.company_id = company_id

            try:
                async with session.begin_nested():
                    processed = await billing_service.handle_stripe_event(session, event)
                record.status = "succeeded" if processed else "ignored"
            except Exception as exc:  # noqa: BLE001
                processed = False
                record.status = "error"
                processing_error = exc
                record.last_error = str(exc)
                logger.exception(
                    "stripe_webhook_error",
                    extra={"extra": {"event_id": event_id, "reason": type(exc).__name__}},
                )
                metrics.record_webhook("error")
                metrics.record_webhook_error("processing_error")
            else:
                record.last_error = None

        if processing_error is not None:
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Stripe webhook processing error",
            ) from processing_error

        metrics.record_webhook("processed" if processed else "ignored")
        outcome = "processed" if processed else "ignored"
        return {"received": True, "processed": processed}
    finally:
        metrics.record_stripe_webhook(outcome)


@router.post("/v1/billing/webhook", status_code=status.HTTP_200_OK)
async def stripe_webhook(
    http_request: Request, session: AsyncSession = Depends(get_db_session)
) -> dict[str, bool]:
    return await _stripe_webhook_handler(http_request, session)
