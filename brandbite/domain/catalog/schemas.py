from pydantic import BaseModel, ConfigDict


class JobTypeResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    description: str | None
    category: str | None
    token_cost: int
    creative_payout_tokens: int
