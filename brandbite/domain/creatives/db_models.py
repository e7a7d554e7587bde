from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from brandbite.infra.db import Base
from brandbite.shared.clock import utcnow


class CreativeSkill(Base):
    __tablename__ = "creative_skills"
    __table_args__ = (
        UniqueConstraint("creative_id", "job_type_id", name="uq_creative_skills_creative_job_type"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    creative_id: Mapped[str] = mapped_column(
        ForeignKey("user_accounts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    job_type_id: Mapped[str] = mapped_column(
        ForeignKey("job_types.id", ondelete="CASCADE"), nullable=False, index=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
