from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import JSON

from brandbite.infra.db import Base
from brandbite.shared.clock import utcnow


class Ticket(Base):
    __tablename__ = "tickets"
    __table_args__ = (
        UniqueConstraint("company_id", "company_ticket_number", name="uq_tickets_company_number"),
        Index("ix_tickets_company_status", "company_id", "status"),
        Index("ix_tickets_creative_status", "creative_id", "status"),
        Index("ix_tickets_creative_completed", "creative_id", "completed_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text())
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="TODO")
    priority: Mapped[str] = mapped_column(String(16), nullable=False, default="MEDIUM")
    due_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    company_id: Mapped[str] = mapped_column(ForeignKey("companies.id", ondelete="CASCADE"), nullable=False)
    project_id: Mapped[str | None] = mapped_column(ForeignKey("projects.id"), nullable=True)
    created_by_id: Mapped[str] = mapped_column(ForeignKey("user_accounts.id"), nullable=False)
    creative_id: Mapped[str | None] = mapped_column(ForeignKey("user_accounts.id"), nullable=True)
    job_type_id: Mapped[str | None] = mapped_column(ForeignKey("job_types.id"), nullable=True)
    company_ticket_number: Mapped[int | None] = mapped_column(Integer)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    token_cost_override: Mapped[int | None] = mapped_column(Integer)
    creative_payout_override: Mapped[int | None] = mapped_column(Integer)
    revision_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
        nullable=False,
    )


class TicketAssignmentLog(Base):
    __tablename__ = "ticket_assignment_logs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    ticket_id: Mapped[str] = mapped_column(
        ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False, index=True
    )
    creative_id: Mapped[str | None] = mapped_column(ForeignKey("user_accounts.id"), nullable=True)
    reason: Mapped[str] = mapped_column(String(16), nullable=False)
    notes: Mapped[str | None] = mapped_column(Text())
    metadata_json: Mapped[dict] = mapped_column("metadata", JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )


class TicketRevision(Base):
    __tablename__ = "ticket_revisions"
    __table_args__ = (
        UniqueConstraint("ticket_id", "version", name="uq_ticket_revisions_version"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    ticket_id: Mapped[str] = mapped_column(ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    submitted_by_creative_id: Mapped[str] = mapped_column(ForeignKey("user_accounts.id"), nullable=False)
    submitted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    creative_message: Mapped[str | None] = mapped_column(Text())
    feedback_by_customer_id: Mapped[str | None] = mapped_column(ForeignKey("user_accounts.id"), nullable=True)
    feedback_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    feedback_message: Mapped[str | None] = mapped_column(Text())


class TicketComment(Base):
    __tablename__ = "ticket_comments"
    __table_args__ = (Index("ix_ticket_comments_ticket_created", "ticket_id", "created_at"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    ticket_id: Mapped[str] = mapped_column(ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False)
    author_id: Mapped[str] = mapped_column(ForeignKey("user_accounts.id"), nullable=False)
    body: Mapped[str] = mapped_column(Text(), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
