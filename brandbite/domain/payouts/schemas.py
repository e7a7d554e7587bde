from dataclasses import dataclass
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


@dataclass(frozen=True)
class PayoutEvaluation:
    payout_percent: int
    matched_rule_name: str | None = None
    matched_rule_id: str | None = None


class PayoutRuleCreateRequest(BaseModel):
    name: str
    description: str | None = None
    min_completed_tickets: int = Field(ge=1)
    time_window_days: int = Field(ge=1)
    payout_percent: float = Field(allow_inf_nan=False)
    priority: int = 0
    is_active: bool = True


class PayoutRuleUpdateRequest(BaseModel):
    name: str | None = None
    description: str | None = None
    min_completed_tickets: int | None = Field(default=None, ge=1)
    time_window_days: int | None = Field(default=None, ge=1)
    payout_percent: float | None = Field(default=None, allow_inf_nan=False)
    priority: int | None = None
    is_active: bool | None = None


class PayoutRuleResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    description: str | None
    min_completed_tickets: int
    time_window_days: int
    payout_percent: int
    priority: int
    is_active: bool
    created_at: datetime
    updated_at: datetime | None = None


class PayoutTier(BaseModel):
    id: str
    name: str
    description: str | None
    min_completed_tickets: int
    time_window_days: int
    payout_percent: int
    completed_in_window: int
    qualified: bool


class PayoutTierOverview(BaseModel):
    current_payout_percent: int
    current_tier_name: str | None
    base_payout_percent: int
    tiers: list[PayoutTier]
