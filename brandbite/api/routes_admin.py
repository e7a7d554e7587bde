import logging

from fastapi import APIRouter, Depends, Query, Request, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from brandbite.api.auth import require_site_admin
from brandbite.domain.app_settings import service as app_settings_service
from brandbite.domain.app_settings.schemas import AppSettingsResponse, AppSettingUpdateRequest
from brandbite.domain.companies import service as companies_service
from brandbite.domain.identity import Identity
from brandbite.domain.ledger import service as ledger_service
from brandbite.domain.ledger.schemas import LedgerAdjustmentRequest, LedgerEntryResponse, LedgerReason
from brandbite.domain.notifications import service as notifications_service
from brandbite.domain.payouts import service as payouts_service
from brandbite.domain.payouts.schemas import (
    PayoutRuleCreateRequest,
    PayoutRuleResponse,
    PayoutRuleUpdateRequest,
)
from brandbite.domain.tickets import service as tickets_service
from brandbite.domain.tickets.schemas import AdminTicketUpdateRequest, CompletedJobResponse, TicketResponse
from brandbite.domain.users import service as users_service
from brandbite.domain.withdrawals import service as withdrawals_service
from brandbite.domain.withdrawals.schemas import (
    WithdrawalRejectRequest,
    WithdrawalResponse,
    WithdrawalStatus,
)
from brandbite.infra.db import get_db_session
from brandbite.infra.email import resolve_app_email_adapter

router = APIRouter(prefix="/v1/admin")
logger = logging.getLogger(__name__)


class LedgerAdjustmentResponse(BaseModel):
    entry: LedgerEntryResponse
    company_balance: int


class BalanceRecalculationResponse(BaseModel):
    company_id: str
    token_balance: int


@router.get("/payout-rules", response_model=list[PayoutRuleResponse])
async def list_payout_rules(
    identity: Identity = Depends(require_site_admin),
    session: AsyncSession = Depends(get_db_session),
) -> list[PayoutRuleResponse]:
    rules = await payouts_service.list_rules(session)
    return [PayoutRuleResponse.model_validate(rule) for rule in rules]


@router.post("/payout-rules", response_model=PayoutRuleResponse, status_code=status.HTTP_201_CREATED)
async def create_payout_rule(
    payload: PayoutRuleCreateRequest,
    identity: Identity = Depends(require_site_admin),
    session: AsyncSession = Depends(get_db_session),
) -> PayoutRuleResponse:
    rule = await payouts_service.create_rule(session, payload)
    await session.commit()
    return PayoutRuleResponse.model_validate(rule)


@router.patch("/payout-rules/{rule_id}", response_model=PayoutRuleResponse)
async def update_payout_rule(
    rule_id: str,
    payload: PayoutRuleUpdateRequest,
    identity: Identity = Depends(require_site_admin),
    session: AsyncSession = Depends(get_db_session),
) -> PayoutRuleResponse:
    rule = await payouts_service.update_rule(session, rule_id, payload)
    await session.commit()
    return PayoutRuleResponse.model_validate(rule)


@router.delete("/payout-rules/{rule_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_payout_rule(
    rule_id: str,
    identity: Identity = Depends(require_site_admin),
    session: AsyncSession = Depends(get_db_session),
) -> None:
    await payouts_service.delete_rule(session, rule_id)
    await session.commit()


@router.get("/withdrawals", response_model=list[WithdrawalResponse])
async def list_withdrawals(
    status_filter: WithdrawalStatus | None = Query(default=None, alias="status"),
    identity: Identity = Depends(require_site_admin),
    session: AsyncSession = Depends(get_db_session),
) -> list[WithdrawalResponse]:
    withdrawals = await withdrawals_service.list_withdrawals(session, status_filter)
    return [WithdrawalResponse.model_validate(withdrawal) for withdrawal in withdrawals]


@router.post("/withdrawals/{withdrawal_id}/approve", response_model=WithdrawalResponse)
async def approve_withdrawal(
    withdrawal_id: str,
    identity: Identity = Depends(require_site_admin),
    session: AsyncSession = Depends(get_db_session),
) -> WithdrawalResponse:
    withdrawal = await withdrawals_service.approve_withdrawal(session, withdrawal_id, identity.user_id)
    await session.commit()
    return WithdrawalResponse.model_validate(withdrawal)


@router.post("/withdrawals/{withdrawal_id}/reject", response_model=WithdrawalResponse)
async def reject_withdrawal(
    withdrawal_id: str,
    payload: WithdrawalRejectRequest | None = None,
    identity: Identity = Depends(require_site_admin),
    session: AsyncSession = Depends(get_db_session),
) -> WithdrawalResponse:
    withdrawal = await withdrawals_service.reject_withdrawal(
        session, withdrawal_id, identity.user_id, payload.reason if payload else None
    )
    await session.commit()
    return WithdrawalResponse.model_validate(withdrawal)


@router.post("/withdrawals/{withdrawal_id}/mark-paid", response_model=WithdrawalResponse)
async def mark_withdrawal_paid(
    withdrawal_id: str,
    identity: Identity = Depends(require_site_admin),
    session: AsyncSession = Depends(get_db_session),
) -> WithdrawalResponse:
    withdrawal = await withdrawals_service.mark_withdrawal_paid(session, withdrawal_id, identity.user_id)
    await session.commit()
    return WithdrawalResponse.model_validate(withdrawal)


@router.get("/settings", response_model=AppSettingsResponse)
async def get_settings(
    identity: Identity = Depends(require_site_admin),
    session: AsyncSession = Depends(get_db_session),
) -> AppSettingsResponse:
    return AppSettingsResponse(settings=await app_settings_service.list_app_settings(session))


@router.patch("/settings", response_model=AppSettingsResponse)
async def update_settings(
    payload: AppSettingUpdateRequest,
    identity: Identity = Depends(require_site_admin),
    session: AsyncSession = Depends(get_db_session),
) -> AppSettingsResponse:
    await app_settings_service.update_admin_setting(session, payload.key, payload.value)
    await session.commit()
    logger.info(
        "admin_setting_changed",
        extra={"extra": {"key": payload.key, "admin_id": identity.user_id}},
    )
    return AppSettingsResponse(settings=await app_settings_service.list_app_settings(session))


@router.get("/ledger", response_model=list[LedgerEntryResponse])
async def list_ledger(
    company_id: str | None = Query(default=None),
    user_id: str | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=500),
    identity: Identity = Depends(require_site_admin),
    session: AsyncSession = Depends(get_db_session),
) -> list[LedgerEntryResponse]:
    entries = await ledger_service.list_ledger(session, company_id=company_id, user_id=user_id, limit=limit)
    return [LedgerEntryResponse.model_validate(entry) for entry in entries]


@router.post("/ledger/adjustments", response_model=LedgerAdjustmentResponse, status_code=status.HTTP_201_CREATED)
async def create_ledger_adjustment(
    payload: LedgerAdjustmentRequest,
    identity: Identity = Depends(require_site_admin),
    session: AsyncSession = Depends(get_db_session),
) -> LedgerAdjustmentResponse:
    result = await ledger_service.apply_company_ledger_entry(
        session,
        company_id=payload.company_id,
        amount=payload.amount,
        direction=payload.direction,
        reason=LedgerReason.ADMIN_ADJUSTMENT,
        notes=payload.notes.strip(),
        metadata={"adminUserId": identity.user_id},
        allow_negative=payload.allow_negative,
    )
    await session.commit()
    return LedgerAdjustmentResponse(
        entry=LedgerEntryResponse.model_validate(result.entry),
        company_balance=result.balance_after,
    )


@router.post("/companies/{company_id}/recalculate-balance", response_model=BalanceRecalculationResponse)
async def recalculate_company_balance(
    company_id: str,
    identity: Identity = Depends(require_site_admin),
    session: AsyncSession = Depends(get_db_session),
) -> BalanceRecalculationResponse:
    company = await companies_service.get_company(session, company_id)
    balance = await ledger_service.recalculate_company_token_balance(session, company.id)
    await session.commit()
    return BalanceRecalculationResponse(company_id=company.id, token_balance=balance)


@router.get("/completed-jobs", response_model=list[CompletedJobResponse])
async def list_completed_jobs(
    identity: Identity = Depends(require_site_admin),
    session: AsyncSession = Depends(get_db_session),
) -> list[CompletedJobResponse]:
    return await tickets_service.list_completed_jobs(session)


@router.patch("/tickets/{ticket_id}", response_model=TicketResponse)
async def update_ticket(
    ticket_id: str,
    payload: AdminTicketUpdateRequest,
    http_request: Request,
    identity: Identity = Depends(require_site_admin),
    session: AsyncSession = Depends(get_db_session),
) -> TicketResponse:
    result = await tickets_service.admin_update_ticket(
        session, admin_id=identity.user_id, ticket_id=ticket_id, payload=payload
    )
    await session.commit()

    if result.notification is not None:
        creative = await users_service.get_user(session, result.ticket.creative_id)
        await notifications_service.send_notification_email(
            resolve_app_email_adapter(http_request), creative.email, result.notification
        )
    return await tickets_service.get_company_ticket(session, result.ticket.company_id, result.ticket.id)
