from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from brandbite.domain.catalog.db_models import JobType
from brandbite.domain.companies.db_models import Company
from brandbite.domain.errors import DomainError, InsufficientTokensError, NotFoundError
from brandbite.domain.ledger.db_models import TokenLedger
from brandbite.domain.ledger.schemas import (
    EffectiveTokenValues,
    LedgerDirection,
    LedgerReason,
    LedgerResult,
    TicketCompletionResult,
)
from brandbite.domain.payouts import service as payout_service
from brandbite.domain.tickets.db_models import Ticket
from brandbite.domain.tickets.schemas import TicketStatus
from brandbite.infra.metrics import metrics
from brandbite.shared.clock import utcnow

logger = logging.getLogger(__name__)


def compute_signed_amount(amount: int, direction: LedgerDirection | str) -> int:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise DomainError(detail="Token amount must be a positive integer")
    return amount if LedgerDirection(direction) == LedgerDirection.CREDIT else -amount


def _signed_sum():
    return func.coalesce(
        func.sum(
            case(
                (TokenLedger.direction == LedgerDirection.CREDIT.value, TokenLedger.amount),
                else_=-TokenLedger.amount,
            )
        ),
        0,
    )


def _reason_value(reason: LedgerReason | str) -> str:
    return reason.value if isinstance(reason, LedgerReason) else str(reason)


async def _lock_company(session: AsyncSession, company_id: str) -> Company:
    company = await session.scalar(select(Company).where(Company.id == company_id).with_for_update())
    if company is None:
        raise NotFoundError(detail="Company not found")
    return company


async def apply_company_ledger_entry(
    session: AsyncSession,
    *,
    company_id: str,
    amount: int,
    direction: LedgerDirection | str,
    reason: LedgerReason | str,
    ticket_id: str | None = None,
    notes: str | None = None,
    metadata: dict[str, Any] | None = None,
    allow_negative: bool = False,
) -> LedgerResult:
    signed_amount = compute_signed_amount(amount, direction)
    company = await _lock_company(session, company_id)

    balance_before = int(company.token_balance or 0)
    balance_after = balance_before + signed_amount
    if balance_after < 0 and not allow_negative:
        raise InsufficientTokensError(
            detail="Not enough tokens for this operation",
            errors=[{"balance": balance_before, "required": amount}],
        )

    entry = TokenLedger(
        company_id=company_id,
        user_id=None,
        ticket_id=ticket_id,
        direction=LedgerDirection(direction).value,
        amount=amount,
        reason=_reason_value(reason),
        notes=notes,
        metadata_json=metadata or {},
        balance_before=balance_before,
        balance_after=balance_after,
    )
    session.add(entry)
    company.token_balance = balance_after
    await session.flush()

    metrics.record_ledger_entry(entry.direction, entry.reason, amount)
    logger.info(
        "ledger_entry_applied",
        extra={
            "extra": {
                "scope": "company",
                "company_id": company_id,
                "direction": entry.direction,
                "reason": entry.reason,
                "amount": amount,
                "balance_after": balance_after,
            }
        },
    )
    return LedgerResult(entry=entry, balance_after=balance_after)


async def recalculate_company_token_balance(session: AsyncSession, company_id: str) -> int:
    company = await _lock_company(session, company_id)
    balance = int(
        await session.scalar(
            select(_signed_sum()).where(
                TokenLedger.company_id == company_id,
                TokenLedger.user_id.is_(None),
            )
        )
        or 0
    )
    if company.token_balance != balance:
        logger.warning(
            "company_balance_repaired",
            extra={"extra": {"company_id": company_id, "stored": company.token_balance, "ledger": balance}},
        )
    company.token_balance = balance
    await session.flush()
    return balance


async def get_user_token_balance(session: AsyncSession, user_id: str) -> int:
    value = await session.scalar(select(_signed_sum()).where(TokenLedger.user_id == user_id))
    return int(value or 0)


async def apply_user_ledger_entry(
    session: AsyncSession,
    *,
    user_id: str,
    amount: int,
    direction: LedgerDirection | str,
    reason: LedgerReason | str,
    company_id: str | None = None,
    ticket_id: str | None = None,
    notes: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> LedgerResult:
    signed_amount = compute_signed_amount(amount, direction)
    balance_before = await get_user_token_balance(session, user_id)
    balance_after = balance_before + signed_amount
    if balance_after < 0:
        raise InsufficientTokensError(
            detail="Not enough tokens for this operation",
            errors=[{"balance": balance_before, "required": amount}],
        )

    entry = TokenLedger(
        company_id=company_id,
        user_id=user_id,
        ticket_id=ticket_id,
        direction=LedgerDirection(direction).value,
        amount=amount,
        reason=_reason_value(reason),
        notes=notes,
        metadata_json=metadata or {},
        balance_before=balance_before,
        balance_after=balance_after,
    )
    session.add(entry)
    await session.flush()

    metrics.record_ledger_entry(entry.direction, entry.reason, amount)
    logger.info(
        "ledger_entry_applied",
        extra={
            "extra": {
                "scope": "user",
                "user_id": user_id,
                "direction": entry.direction,
                "reason": entry.reason,
                "amount": amount,
                "balance_after": balance_after,
            }
        },
    )
    return LedgerResult(entry=entry, balance_after=balance_after)


def get_effective_token_values(
    *,
    quantity: int | None,
    token_cost_override: int | None,
    creative_payout_override: int | None,
    job_type: JobType | None,
) -> EffectiveTokenValues:
    """Resolve what a ticket costs the company and pays the creative.

    Overrides replace the catalogue price times quantity; an override of 0 is
    a valid price.
    """
    if job_type is None:
        return EffectiveTokenValues(effective_cost=0, effective_payout=0, is_overridden=False)
    qty = quantity if quantity is not None else 1
    cost = token_cost_override if token_cost_override is not None else job_type.token_cost * qty
    payout = (
        creative_payout_override
        if creative_payout_override is not None
        else job_type.creative_payout_tokens * qty
    )
    return EffectiveTokenValues(
        effective_cost=cost,
        effective_payout=payout,
        is_overridden=token_cost_override is not None or creative_payout_override is not None,
    )


async def list_company_ledger(session: AsyncSession, company_id: str, limit: int = 50) -> list[TokenLedger]:
    result = await session.execute(
        select(TokenLedger)
        .where(TokenLedger.company_id == company_id, TokenLedger.user_id.is_(None))
        .order_by(TokenLedger.created_at.desc())
        .limit(limit)
    )
    return list(result.scalars())


async def list_user_ledger(session: AsyncSession, user_id: str, limit: int = 50) -> list[TokenLedger]:
    result = await session.execute(
        select(TokenLedger)
        .where(TokenLedger.user_id == user_id)
        .order_by(TokenLedger.created_at.desc())
        .limit(limit)
    )
    return list(result.scalars())


async def list_ledger(
    session: AsyncSession,
    *,
    company_id: str | None = None,
    user_id: str | None = None,
    limit: int = 50,
) -> list[TokenLedger]:
    stmt = select(TokenLedger)
    if company_id:
        stmt = stmt.where(TokenLedger.company_id == company_id)
    if user_id:
        stmt = stmt.where(TokenLedger.user_id == user_id)
    result = await session.execute(stmt.order_by(TokenLedger.created_at.desc()).limit(limit))
    return list(result.scalars())


async def has_job_payment(session: AsyncSession, ticket_id: str) -> bool:
    existing = await session.scalar(
        select(TokenLedger.id)
        .where(
            TokenLedger.ticket_id == ticket_id,
            TokenLedger.reason == LedgerReason.JOB_PAYMENT.value,
        )
        .limit(1)
    )
    return existing is not None


async def complete_ticket_and_apply_tokens(
    session: AsyncSession, ticket_id: str, *, now: datetime | None = None
) -> TicketCompletionResult:
    """Mark a ticket DONE and pay the assigned creative once.

    The company was charged when the ticket was created, so completion only
    credits the creative. A ticket that is already DONE, or that already has a
    JOB_PAYMENT row, is reported as ``already_completed`` and writes nothing.
    A ticket without a job type is closed with no payout.
    """
    now = now or utcnow()
    ticket = await session.scalar(select(Ticket).where(Ticket.id == ticket_id).with_for_update())
    if ticket is None:
        raise NotFoundError(detail="Ticket not found")
    if ticket.status == TicketStatus.DONE.value or await has_job_payment(session, ticket.id):
        if ticket.status != TicketStatus.DONE.value:
            ticket.status = TicketStatus.DONE.value
            ticket.completed_at = ticket.completed_at or now
            await session.flush()
        return TicketCompletionResult(
            ticket=ticket,
            creative_entry_id=None,
            creative_balance_after=None,
            payout_tokens=0,
            payout_percent=payout_service.BASE_PAYOUT_PERCENT,
            already_completed=True,
        )

    job_type = await session.get(JobType, ticket.job_type_id) if ticket.job_type_id else None
    if job_type is None:
        ticket.status = TicketStatus.DONE.value
        ticket.completed_at = now
        await session.flush()
        logger.info("ticket_completed_without_job_type", extra={"extra": {"ticket_id": ticket.id}})
        return TicketCompletionResult(
            ticket=ticket,
            creative_entry_id=None,
            creative_balance_after=None,
            payout_tokens=0,
            payout_percent=payout_service.BASE_PAYOUT_PERCENT,
            already_completed=False,
        )

    values = get_effective_token_values(
        quantity=ticket.quantity,
        token_cost_override=ticket.token_cost_override,
        creative_payout_override=ticket.creative_payout_override,
        job_type=job_type,
    )

    payout_percent = payout_service.BASE_PAYOUT_PERCENT
    matched_rule_name: str | None = None
    payout_tokens = values.effective_payout
    if ticket.creative_id:
        evaluation = await payout_service.evaluate_creative_payout_percent(
            session, ticket.creative_id, now=now
        )
        payout_percent = evaluation.payout_percent
        matched_rule_name = evaluation.matched_rule_name
        payout_tokens = payout_service.compute_creative_payout(
            effective_cost=values.effective_cost,
            effective_payout=values.effective_payout,
            payout_percent=payout_percent,
            is_overridden=ticket.creative_payout_override is not None,
        )

    creative_entry_id: str | None = None
    creative_balance_after: int | None = None
    if ticket.creative_id and payout_tokens > 0:
        result = await apply_user_ledger_entry(
            session,
            user_id=ticket.creative_id,
            amount=payout_tokens,
            direction=LedgerDirection.CREDIT,
            reason=LedgerReason.JOB_PAYMENT,
            company_id=ticket.company_id,
            ticket_id=ticket.id,
            notes=f"Job payment for ticket {ticket.id}",
            metadata={
                "jobTypeId": job_type.id,
                "quantity": ticket.quantity,
                "basePayout": values.effective_payout,
                "payoutPercent": payout_percent,
                "matchedRuleName": matched_rule_name,
            },
        )
        creative_entry_id = result.entry.id
        creative_balance_after = result.balance_after

    ticket.status = TicketStatus.DONE.value
    ticket.completed_at = now
    await session.flush()

    logger.info(
        "ticket_completed",
        extra={
            "extra": {
                "ticket_id": ticket.id,
                "creative_id": ticket.creative_id,
                "payout_tokens": payout_tokens if creative_entry_id else 0,
                "payout_percent": payout_percent,
            }
        },
    )
    return TicketCompletionResult(
        ticket=ticket,
        creative_entry_id=creative_entry_id,
        creative_balance_after=creative_balance_after,
        payout_tokens=payout_tokens if creative_entry_id else 0,
        payout_percent=payout_percent,
        already_completed=False,
    )
