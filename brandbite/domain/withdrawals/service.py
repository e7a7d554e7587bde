from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from brandbite.domain.app_settings import service as app_settings_service
from brandbite.domain.errors import DomainError, InsufficientTokensError, NotFoundError
from brandbite.domain.ledger import service as ledger_service
from brandbite.domain.ledger.schemas import LedgerDirection, LedgerReason
from brandbite.domain.withdrawals.db_models import Withdrawal
from brandbite.domain.withdrawals.schemas import (
    CreativeWithdrawalsResponse,
    WithdrawalResponse,
    WithdrawalStats,
    WithdrawalStatus,
)
from brandbite.infra.metrics import metrics
from brandbite.settings import settings
from brandbite.shared.clock import utcnow

logger = logging.getLogger(__name__)


async def get_min_withdrawal_tokens(session: AsyncSession) -> int:
    return await app_settings_service.get_app_setting_int(
        session,
        app_settings_service.MIN_WITHDRAWAL_TOKENS,
        settings.min_withdrawal_tokens_default,
    )


async def create_withdrawal(
    session: AsyncSession, creative_id: str, amount_tokens: int, notes: str | None = None
) -> Withdrawal:
    if isinstance(amount_tokens, bool) or not isinstance(amount_tokens, int) or amount_tokens <= 0:
        raise DomainError(detail="Amount must be a positive integer.")
    minimum = await get_min_withdrawal_tokens(session)
    if amount_tokens < minimum:
        raise DomainError(detail=f"Minimum withdrawal amount is {minimum} tokens.")
    balance = await ledger_service.get_user_token_balance(session, creative_id)
    if amount_tokens > balance:
        raise InsufficientTokensError(detail="Requested amount exceeds your current token balance.")

    withdrawal = Withdrawal(
        creative_id=creative_id,
        amount_tokens=amount_tokens,
        status=WithdrawalStatus.PENDING.value,
        notes=(notes or "").strip() or None,
        metadata_json={},
    )
    session.add(withdrawal)
    await session.flush()
    metrics.record_withdrawal("requested")
    logger.info(
        "withdrawal_requested",
        extra={"extra": {"withdrawal_id": withdrawal.id, "creative_id": creative_id, "amount": amount_tokens}},
    )
    return withdrawal


async def list_creative_withdrawals(session: AsyncSession, creative_id: str) -> CreativeWithdrawalsResponse:
    result = await session.execute(
        select(Withdrawal).where(Withdrawal.creative_id == creative_id).order_by(Withdrawal.created_at.desc())
    )
    withdrawals = list(result.scalars())
    balance = await ledger_service.get_user_token_balance(session, creative_id)
    stats = WithdrawalStats(
        available_balance=balance,
        total_requested=sum(item.amount_tokens for item in withdrawals),
        pending_count=sum(1 for item in withdrawals if item.status == WithdrawalStatus.PENDING.value),
        withdrawals_count=len(withdrawals),
    )
    return CreativeWithdrawalsResponse(
        stats=stats,
        withdrawals=[WithdrawalResponse.model_validate(item) for item in withdrawals],
    )


async def list_withdrawals(session: AsyncSession, status: WithdrawalStatus | None = None) -> list[Withdrawal]:
    stmt = select(Withdrawal)
    if status is not None:
        stmt = stmt.where(Withdrawal.status == WithdrawalStatus(status).value)
    result = await session.execute(stmt.order_by(Withdrawal.created_at.desc()))
    return list(result.scalars())


async def _get_for_update(session: AsyncSession, withdrawal_id: str) -> Withdrawal:
    withdrawal = await session.scalar(
        select(Withdrawal).where(Withdrawal.id == withdrawal_id).with_for_update()
    )
    if withdrawal is None:
        raise NotFoundError(detail="Withdrawal not found")
    return withdrawal


async def approve_withdrawal(
    session: AsyncSession, withdrawal_id: str, admin_id: str, now: datetime | None = None
) -> Withdrawal:
    now = now or utcnow()
    withdrawal = await _get_for_update(session, withdrawal_id)
    if withdrawal.status != WithdrawalStatus.PENDING.value:
        raise DomainError(detail="Only pending withdrawals can be approved")

    balance = await ledger_service.get_user_token_balance(session, withdrawal.creative_id)
    if withdrawal.amount_tokens > balance:
        raise InsufficientTokensError(detail="Creative does not have enough tokens at approval time")

    result = await ledger_service.apply_user_ledger_entry(
        session,
        user_id=withdrawal.creative_id,
        amount=withdrawal.amount_tokens,
        direction=LedgerDirection.DEBIT,
        reason=LedgerReason.WITHDRAW,
        notes=f"Withdrawal approved (id: {withdrawal.id})",
        metadata={"withdrawalId": withdrawal.id},
    )
    withdrawal.status = WithdrawalStatus.APPROVED.value
    withdrawal.approved_at = now
    withdrawal.metadata_json = {
        **(withdrawal.metadata_json or {}),
        "ledgerEntryId": result.entry.id,
        "approvedByUserId": admin_id,
    }
    await session.flush()
    metrics.record_withdrawal("approved")
    logger.info(
        "withdrawal_approved",
        extra={"extra": {"withdrawal_id": withdrawal.id, "admin_id": admin_id, "amount": withdrawal.amount_tokens}},
    )
    return withdrawal


async def reject_withdrawal(
    session: AsyncSession, withdrawal_id: str, admin_id: str, reason: str | None = None
) -> Withdrawal:
    withdrawal = await _get_for_update(session, withdrawal_id)
    if withdrawal.status != WithdrawalStatus.PENDING.value:
        raise DomainError(detail="Only pending withdrawals can be rejected")
    metadata = {**(withdrawal.metadata_json or {}), "rejectedByUserId": admin_id}
    if reason and reason.strip():
        metadata["adminRejectReason"] = reason.strip()
    withdrawal.status = WithdrawalStatus.REJECTED.value
    withdrawal.metadata_json = metadata
    await session.flush()
    metrics.record_withdrawal("rejected")
    logger.info("withdrawal_rejected", extra={"extra": {"withdrawal_id": withdrawal.id, "admin_id": admin_id}})
    return withdrawal


async def mark_withdrawal_paid(
    session: AsyncSession, withdrawal_id: str, admin_id: str, now: datetime | None = None
) -> Withdrawal:
    now = now or utcnow()
    withdrawal = await _get_for_update(session, withdrawal_id)
    if withdrawal.status != WithdrawalStatus.APPROVED.value:
        raise DomainError(detail="Only approved withdrawals can be marked as paid")
    withdrawal.status = WithdrawalStatus.PAID.value
    withdrawal.paid_at = now
    withdrawal.metadata_json = {**(withdrawal.metadata_json or {}), "paidByUserId": admin_id}
    await session.flush()
    metrics.record_withdrawal("paid")
    logger.info("withdrawal_paid", extra={"extra": {"withdrawal_id": withdrawal.id, "admin_id": admin_id}})
    return withdrawal
