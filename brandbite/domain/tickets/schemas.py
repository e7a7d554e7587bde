from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class TicketStatus(str, Enum):
    TODO = "TODO"
    IN_PROGRESS = "IN_PROGRESS"
    IN_REVIEW = "IN_REVIEW"
    DONE = "DONE"


class TicketPriority(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    URGENT = "URGENT"


PRIORITY_WEIGHTS: dict[str, int] = {
    TicketPriority.LOW.value: 1,
    TicketPriority.MEDIUM.value: 2,
    TicketPriority.HIGH.value: 3,
    TicketPriority.URGENT.value: 4,
}


class AssignmentReason(str, Enum):
    AUTO_ASSIGN = "AUTO_ASSIGN"
    FALLBACK = "FALLBACK"


class AutoAssignMode(str, Enum):
    INHERIT = "INHERIT"
    ON = "ON"
    OFF = "OFF"


@dataclass
class AssignmentDecision:
    creative: Any | None
    reason: AssignmentReason
    metadata: dict[str, Any]


@dataclass
class TicketCreationResult:
    ticket: Any
    ledger_entry: Any | None
    creative: Any | None


@dataclass
class AdminTicketUpdateResult:
    ticket: Any
    notification: Any | None


class TicketCreateRequest(BaseModel):
    title: str
    description: str | None = None
    project_id: str | None = None
    job_type_id: str | None = None
    priority: str | None = None
    due_date: date | None = None
    quantity: int | None = None


class AdminTicketUpdateRequest(BaseModel):
    """Only fields present in the body are applied; null clears an override."""

    creative_id: str | None = None
    token_cost_override: int | None = Field(default=None, ge=0)
    creative_payout_override: int | None = Field(default=None, ge=0)


class CustomerStatusUpdateRequest(BaseModel):
    ticket_id: str
    status: TicketStatus


class CreativeStatusUpdateRequest(BaseModel):
    status: TicketStatus


class RevisionSubmitRequest(BaseModel):
    message: str | None = Field(default=None, max_length=5000)


class RequestChangesRequest(BaseModel):
    message: str = Field(min_length=1, max_length=5000)


class CommentCreateRequest(BaseModel):
    body: str


class TicketResponse(BaseModel):
    id: str
    code: str
    title: str
    description: str | None
    status: TicketStatus
    priority: TicketPriority
    due_date: datetime | None
    company_id: str
    company_ticket_number: int | None
    quantity: int
    project_id: str | None
    project_name: str | None = None
    project_code: str | None = None
    job_type_id: str | None
    job_type_name: str | None = None
    creative_id: str | None
    creative_name: str | None = None
    created_by_id: str
    effective_cost: int
    effective_payout: int
    token_cost_override: int | None = None
    creative_payout_override: int | None = None
    revision_count: int
    completed_at: datetime | None
    created_at: datetime


class TicketCreateResponse(BaseModel):
    ticket: TicketResponse
    ledger_entry_id: str | None
    company_balance: int


class CreativeTicketListResponse(BaseModel):
    tickets: list[TicketResponse]
    stats: dict[str, int]


class RevisionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    ticket_id: str
    version: int
    submitted_by_creative_id: str
    submitted_at: datetime
    creative_message: str | None
    feedback_by_customer_id: str | None
    feedback_at: datetime | None
    feedback_message: str | None


class CommentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    ticket_id: str
    author_id: str
    body: str
    created_at: datetime


class CompletionResponse(BaseModel):
    ticket_id: str
    status: TicketStatus
    already_completed: bool
    payout_tokens: int
    payout_percent: int
    creative_balance_after: int | None


class CompletedJobResponse(BaseModel):
    ticket_id: str
    code: str
    title: str
    completed_at: datetime | None
    company_id: str
    company_name: str | None
    project_name: str | None
    creative_id: str | None
    creative_name: str | None
    job_type_name: str | None
    effective_payout: int
    has_payout_entry: bool
