from __future__ import annotations

import logging
from datetime import datetime, timedelta

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from brandbite.domain.catalog.db_models import JobType
from brandbite.domain.creatives.db_models import CreativeSkill
from brandbite.domain.creatives.schemas import AvailabilityResponse, PauseType
from brandbite.domain.errors import DomainError
from brandbite.domain.users.db_models import UserAccount
from brandbite.shared.clock import ensure_utc, utcnow

logger = logging.getLogger(__name__)

PAUSE_DURATIONS: dict[str, timedelta | None] = {
    PauseType.ONE_HOUR.value: timedelta(hours=1),
    PauseType.SEVEN_DAYS.value: timedelta(days=7),
    PauseType.MANUAL.value: None,
}


def is_valid_pause_type(value: str | None) -> bool:
    return value in PAUSE_DURATIONS


def calculate_pause_expiry(pause_type: str, now: datetime) -> datetime | None:
    if not is_valid_pause_type(pause_type):
        raise DomainError(detail="Invalid pause type")
    duration = PAUSE_DURATIONS[pause_type]
    return now + duration if duration else None


def is_creative_paused(user: UserAccount, now: datetime | None = None) -> bool:
    if not user.is_paused:
        return False
    if user.pause_expires_at is None:
        return True
    now = now or utcnow()
    return ensure_utc(user.pause_expires_at) > now


def format_pause_status(user: UserAccount, now: datetime | None = None) -> AvailabilityResponse:
    now = now or utcnow()
    paused = is_creative_paused(user, now)
    expires_at = ensure_utc(user.pause_expires_at) if user.pause_expires_at else None
    remaining_ms = None
    if paused and expires_at is not None:
        remaining_ms = max(0, int((expires_at - now).total_seconds() * 1000))
    return AvailabilityResponse(
        is_paused=paused,
        paused_at=ensure_utc(user.paused_at) if paused and user.paused_at else None,
        pause_expires_at=expires_at if paused else None,
        pause_type=user.pause_type if paused else None,
        remaining_ms=remaining_ms,
    )


async def pause_creative(
    session: AsyncSession, user: UserAccount, pause_type: str | None, now: datetime | None = None
) -> UserAccount:
    now = now or utcnow()
    if not is_valid_pause_type(pause_type):
        raise DomainError(detail="Invalid pause type. Use 1_HOUR, 7_DAYS or MANUAL.")
    user.is_paused = True
    user.paused_at = now
    user.pause_type = pause_type
    user.pause_expires_at = calculate_pause_expiry(pause_type, now)
    await session.flush()
    logger.info("creative_paused", extra={"extra": {"user_id": user.id, "pause_type": pause_type}})
    return user


async def resume_creative(session: AsyncSession, user: UserAccount) -> UserAccount:
    user.is_paused = False
    user.paused_at = None
    user.pause_type = None
    user.pause_expires_at = None
    await session.flush()
    logger.info("creative_resumed", extra={"extra": {"user_id": user.id}})
    return user


async def list_skills(session: AsyncSession, creative_id: str) -> list[str]:
    result = await session.execute(
        select(CreativeSkill.job_type_id)
        .where(CreativeSkill.creative_id == creative_id)
        .order_by(CreativeSkill.created_at)
    )
    return list(result.scalars())


async def set_skills(session: AsyncSession, creative_id: str, job_type_ids: list[str]) -> list[str]:
    unique_ids = list(dict.fromkeys(job_type_ids))
    if unique_ids:
        result = await session.execute(
            select(JobType.id).where(JobType.id.in_(unique_ids), JobType.is_active.is_(True))
        )
        known = set(result.scalars())
        unknown = [job_type_id for job_type_id in unique_ids if job_type_id not in known]
        if unknown:
            raise DomainError(
                detail="One or more job types are unknown or inactive",
                errors=[{"field": "job_type_ids", "message": job_type_id} for job_type_id in unknown],
            )

    await session.execute(delete(CreativeSkill).where(CreativeSkill.creative_id == creative_id))
    for job_type_id in unique_ids:
        session.add(CreativeSkill(creative_id=creative_id, job_type_id=job_type_id))
    await session.flush()
    logger.info(
        "creative_skills_updated",
        extra={"extra": {"user_id": creative_id, "skills": len(unique_ids)}},
    )
    return unique_ids
