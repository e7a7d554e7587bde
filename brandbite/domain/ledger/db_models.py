from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import JSON

from brandbite.infra.db import Base
from brandbite.shared.clock import utcnow


class TokenLedger(Base):
    __tablename__ = "token_ledger"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_token_ledger_amount_positive"),
        Index("ix_token_ledger_company_created", "company_id", "created_at"),
        Index("ix_token_ledger_user_created", "user_id", "created_at"),
        Index("ix_token_ledger_ticket_reason", "ticket_id", "reason"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    company_id: Mapped[str | None] = mapped_column(ForeignKey("companies.id"), nullable=True)
    user_id: Mapped[str | None] = mapped_column(ForeignKey("user_accounts.id"), nullable=True)
    ticket_id: Mapped[str | None] = mapped_column(ForeignKey("tickets.id"), nullable=True)
    direction: Mapped[str] = mapped_column(String(8), nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[str] = mapped_column(String(64), nullable=False)
    notes: Mapped[str | None] = mapped_column(Text())
    metadata_json: Mapped[dict] = mapped_column("metadata", JSON, nullable=False, default=dict)
    balance_before: Mapped[int] = mapped_column(Integer, nullable=False)
    balance_after: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
