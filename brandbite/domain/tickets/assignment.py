"""Workload-based creative selection for new tickets.

A creative's load is the sum over their open tickets of
``priority_weight * (job token cost or 1) * quantity``. The least loaded
creative wins; ties go to the earliest created account.
"""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from brandbite.domain.catalog.db_models import JobType
from brandbite.domain.creatives.db_models import CreativeSkill
from brandbite.domain.creatives.service import is_creative_paused
from brandbite.domain.roles import UserRole
from brandbite.domain.tickets.db_models import Ticket
from brandbite.domain.tickets.schemas import (
    PRIORITY_WEIGHTS,
    AssignmentDecision,
    AssignmentReason,
    AutoAssignMode,
    TicketStatus,
)
from brandbite.domain.users.db_models import UserAccount
from brandbite.shared.clock import utcnow

logger = logging.getLogger(__name__)

ASSIGNMENT_ALGORITHM = "v3-skill-weighted-token-cost"


def is_auto_assign_enabled(project_mode: str | None, company_default_enabled: bool) -> bool:
    if project_mode == AutoAssignMode.ON.value:
        return True
    if project_mode == AutoAssignMode.OFF.value:
        return False
    return bool(company_default_enabled)


async def _available_creatives(session: AsyncSession, now: datetime) -> list[UserAccount]:
    result = await session.execute(
        select(UserAccount)
        .where(UserAccount.role == UserRole.DESIGNER.value)
        .order_by(UserAccount.created_at, UserAccount.id)
    )
    return [user for user in result.scalars() if not is_creative_paused(user, now)]


async def _skilled_creative_ids(session: AsyncSession, job_type_id: str) -> set[str]:
    result = await session.execute(
        select(CreativeSkill.creative_id).where(CreativeSkill.job_type_id == job_type_id)
    )
    return set(result.scalars())


async def compute_creative_loads(session: AsyncSession, creative_ids: list[str]) -> dict[str, int]:
    loads = {creative_id: 0 for creative_id in creative_ids}
    if not creative_ids:
        return loads
    result = await session.execute(
        select(Ticket.creative_id, Ticket.priority, Ticket.quantity, JobType.token_cost)
        .outerjoin(JobType, JobType.id == Ticket.job_type_id)
        .where(
            Ticket.creative_id.in_(creative_ids),
            Ticket.status != TicketStatus.DONE.value,
        )
    )
    for creative_id, priority, quantity, token_cost in result.all():
        weight = PRIORITY_WEIGHTS.get(priority, PRIORITY_WEIGHTS["MEDIUM"])
        loads[creative_id] += weight * (token_cost or 1) * (quantity or 1)
    return loads


async def choose_creative(
    session: AsyncSession,
    *,
    job_type_id: str | None,
    enabled: bool,
    now: datetime | None = None,
) -> AssignmentDecision:
    if not enabled:
        return AssignmentDecision(
            creative=None,
            reason=AssignmentReason.FALLBACK,
            metadata={"fallbackMode": "settings_disabled"},
        )

    now = now or utcnow()
    candidates = await _available_creatives(session, now)
    skill_filtered = False
    if job_type_id and candidates:
        skilled_ids = await _skilled_creative_ids(session, job_type_id)
        skilled = [creative for creative in candidates if creative.id in skilled_ids]
        if skilled:
            candidates = skilled
            skill_filtered = True

    if not candidates:
        return AssignmentDecision(
            creative=None,
            reason=AssignmentReason.FALLBACK,
            metadata={"fallbackMode": "no_designers"},
        )

    loads = await compute_creative_loads(session, [creative.id for creative in candidates])
    chosen = candidates[0]
    for creative in candidates[1:]:
        if loads[creative.id] < loads[chosen.id]:
            chosen = creative

    metadata = {
        "algorithm": ASSIGNMENT_ALGORITHM,
        "load": loads[chosen.id],
        "candidates": len(candidates),
        "skillFiltered": skill_filtered,
    }
    if job_type_id and not skill_filtered:
        metadata["fallbackMode"] = "no_skilled_designers"
    logger.info(
        "ticket_creative_selected",
        extra={"extra": {"creative_id": chosen.id, **metadata}},
    )
    return AssignmentDecision(creative=chosen, reason=AssignmentReason.AUTO_ASSIGN, metadata=metadata)
