from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class WithdrawalStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    PAID = "PAID"


class WithdrawalCreateRequest(BaseModel):
    amount_tokens: int
    notes: str | None = Field(default=None, max_length=1000)


class WithdrawalRejectRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=1000)


class WithdrawalResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    creative_id: str
    amount_tokens: int
    status: WithdrawalStatus
    notes: str | None
    metadata: dict[str, Any] = Field(default_factory=dict, validation_alias="metadata_json")
    created_at: datetime
    approved_at: datetime | None
    paid_at: datetime | None


class WithdrawalStats(BaseModel):
    available_balance: int
    total_requested: int
    pending_count: int
    withdrawals_count: int


class CreativeWithdrawalsResponse(BaseModel):
    stats: WithdrawalStats
    withdrawals: list[WithdrawalResponse]
