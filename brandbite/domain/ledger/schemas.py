from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class LedgerDirection(str, Enum):
    CREDIT = "CREDIT"
    DEBIT = "DEBIT"


class LedgerReason(str, Enum):
    JOB_REQUEST_CREATED = "JOB_REQUEST_CREATED"
    JOB_PAYMENT = "JOB_PAYMENT"
    WITHDRAW = "WITHDRAW"
    SUBSCRIPTION_INITIAL_CREDIT = "SUBSCRIPTION_INITIAL_CREDIT"
    SUBSCRIPTION_RENEWAL = "SUBSCRIPTION_RENEWAL"
    ADMIN_ADJUSTMENT = "ADMIN_ADJUSTMENT"
    REFUND = "REFUND"


@dataclass
class LedgerResult:
    entry: Any
    balance_after: int


@dataclass(frozen=True)
class EffectiveTokenValues:
    effective_cost: int
    effective_payout: int
    is_overridden: bool


@dataclass
class TicketCompletionResult:
    ticket: Any
    creative_entry_id: str | None
    creative_balance_after: int | None
    payout_tokens: int
    payout_percent: int
    already_completed: bool


class LedgerEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    company_id: str | None
    user_id: str | None
    ticket_id: str | None
    direction: LedgerDirection
    amount: int
    reason: str
    notes: str | None
    metadata: dict[str, Any] = Field(default_factory=dict, validation_alias="metadata_json")
    balance_before: int
    balance_after: int
    created_at: datetime


class LedgerAdjustmentRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    company_id: str
    direction: LedgerDirection
    amount: int = Field(gt=0)
    notes: str = Field(min_length=1, max_length=500)
    allow_negative: bool = False
