from enum import Enum

from pydantic import BaseModel, ConfigDict


class BillingStatus(str, Enum):
    ACTIVE = "ACTIVE"
    PAST_DUE = "PAST_DUE"
    CANCELED = "CANCELED"


class PlanResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    monthly_tokens: int
    price_cents: int | None
    description: str | None
    is_active: bool


class CheckoutRequest(BaseModel):
    plan_id: str


class CheckoutResponse(BaseModel):
    url: str
