from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from brandbite.domain.errors import DomainError, NotFoundError
from brandbite.domain.payouts.db_models import PayoutRule
from brandbite.domain.payouts.schemas import (
    PayoutEvaluation,
    PayoutRuleCreateRequest,
    PayoutRuleUpdateRequest,
    PayoutTier,
    PayoutTierOverview,
)
from brandbite.domain.tickets.db_models import Ticket
from brandbite.shared.clock import utcnow

logger = logging.getLogger(__name__)

BASE_PAYOUT_PERCENT = 60
MAX_PAYOUT_PERCENT = 100
PAYOUT_PERCENT_ERROR = "payoutPercent must be between 61 and 100"


def _normalize_percent(value: float) -> int:
    if not math.isfinite(value) or value <= BASE_PAYOUT_PERCENT or value > MAX_PAYOUT_PERCENT:
        raise DomainError(detail=PAYOUT_PERCENT_ERROR)
    # Round half-up; a value that rounds to the base is rejected.
    percent = math.floor(value + 0.5)
    if percent <= BASE_PAYOUT_PERCENT:
        raise DomainError(detail=PAYOUT_PERCENT_ERROR)
    return percent


async def list_rules(session: AsyncSession) -> list[PayoutRule]:
    result = await session.execute(
        select(PayoutRule).order_by(PayoutRule.payout_percent.desc(), PayoutRule.created_at)
    )
    return list(result.scalars())


async def create_rule(session: AsyncSession, payload: PayoutRuleCreateRequest) -> PayoutRule:
    name = payload.name.strip()
    if not name:
        raise DomainError(detail="Name is required")
    rule = PayoutRule(
        name=name,
        description=payload.description.strip() if payload.description else None,
        min_completed_tickets=payload.min_completed_tickets,
        time_window_days=payload.time_window_days,
        payout_percent=_normalize_percent(payload.payout_percent),
        priority=payload.priority,
        is_active=payload.is_active,
    )
    session.add(rule)
    await session.flush()
    logger.info(
        "payout_rule_created",
        extra={"extra": {"rule_id": rule.id, "payout_percent": rule.payout_percent}},
    )
    return rule


async def update_rule(
    session: AsyncSession, rule_id: str, payload: PayoutRuleUpdateRequest
) -> PayoutRule:
    changes = payload.model_dump(exclude_unset=True)
    if not changes:
        raise DomainError(detail="No fields to update")
    rule = await session.get(PayoutRule, rule_id)
    if rule is None:
        raise NotFoundError(detail="Payout rule not found")

    if "name" in changes:
        name = (changes["name"] or "").strip()
        if not name:
            raise DomainError(detail="Name is required")
        rule.name = name
    if "description" in changes:
        description = changes["description"]
        rule.description = description.strip() if description else None
    if changes.get("min_completed_tickets") is not None:
        rule.min_completed_tickets = changes["min_completed_tickets"]
    if changes.get("time_window_days") is not None:
        rule.time_window_days = changes["time_window_days"]
    if "payout_percent" in changes:
        if changes["payout_percent"] is None:
            raise DomainError(detail=PAYOUT_PERCENT_ERROR)
        rule.payout_percent = _normalize_percent(changes["payout_percent"])
    if changes.get("priority") is not None:
        rule.priority = changes["priority"]
    if changes.get("is_active") is not None:
        rule.is_active = changes["is_active"]

    await session.flush()
    logger.info("payout_rule_updated", extra={"extra": {"rule_id": rule.id, "fields": sorted(changes)}})
    return rule


async def delete_rule(session: AsyncSession, rule_id: str) -> None:
    rule = await session.get(PayoutRule, rule_id)
    if rule is None:
        raise NotFoundError(detail="Payout rule not found")
    await session.delete(rule)
    await session.flush()
    logger.info("payout_rule_deleted", extra={"extra": {"rule_id": rule_id}})


async def count_completed_in_window(
    session: AsyncSession, creative_id: str, days: int, now: datetime
) -> int:
    window_start = now - timedelta(days=days)
    value = await session.scalar(
        select(func.count(Ticket.id)).where(
            Ticket.creative_id == creative_id,
            Ticket.status == "DONE",
            Ticket.completed_at.is_not(None),
            Ticket.completed_at >= window_start,
        )
    )
    return int(value or 0)


async def _active_rules(session: AsyncSession) -> list[PayoutRule]:
    result = await session.execute(
        select(PayoutRule)
        .where(PayoutRule.is_active.is_(True))
        .order_by(PayoutRule.priority.desc(), PayoutRule.payout_percent.desc())
    )
    return list(result.scalars())


async def evaluate_creative_payout_percent(
    session: AsyncSession, creative_id: str, now: datetime | None = None
) -> PayoutEvaluation:
    now = now or utcnow()
    for rule in await _active_rules(session):
        completed = await count_completed_in_window(session, creative_id, rule.time_window_days, now)
        if completed >= rule.min_completed_tickets:
            return PayoutEvaluation(
                payout_percent=rule.payout_percent,
                matched_rule_name=rule.name,
                matched_rule_id=rule.id,
            )
    return PayoutEvaluation(payout_percent=BASE_PAYOUT_PERCENT)


def compute_creative_payout(
    *,
    effective_cost: int,
    effective_payout: int,
    payout_percent: int,
    is_overridden: bool,
) -> int:
    """Tokens owed to the creative for one completed ticket.

    The job type payout is a floor: a tier only ever raises it to the given
    share of what the company paid.
    """
    if is_overridden or payout_percent <= BASE_PAYOUT_PERCENT:
        return effective_payout
    tier_payout = (effective_cost * payout_percent) // 100
    return max(effective_payout, tier_payout)


async def get_payout_tier_overview(
    session: AsyncSession, creative_id: str, now: datetime | None = None
) -> PayoutTierOverview:
    now = now or utcnow()
    evaluation = await evaluate_creative_payout_percent(session, creative_id, now=now)
    rules = sorted(await _active_rules(session), key=lambda rule: rule.payout_percent)
    tiers: list[PayoutTier] = []
    for rule in rules:
        completed = await count_completed_in_window(session, creative_id, rule.time_window_days, now)
        tiers.append(
            PayoutTier(
                id=rule.id,
                name=rule.name,
                description=rule.description,
                min_completed_tickets=rule.min_completed_tickets,
                time_window_days=rule.time_window_days,
                payout_percent=rule.payout_percent,
                completed_in_window=completed,
                qualified=completed >= rule.min_completed_tickets,
            )
        )
    return PayoutTierOverview(
        current_payout_percent=evaluation.payout_percent,
        current_tier_name=evaluation.matched_rule_name,
        base_payout_percent=BASE_PAYOUT_PERCENT,
        tiers=tiers,
    )
