from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from brandbite.domain.catalog.db_models import JobType


async def list_active_job_types(session: AsyncSession) -> list[JobType]:
    result = await session.execute(
        select(JobType).where(JobType.is_active.is_(True)).order_by(JobType.category, JobType.name)
    )
    return list(result.scalars())
