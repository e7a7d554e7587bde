from datetime import datetime
from enum import Enum

from pydantic import BaseModel


class PauseType(str, Enum):
    ONE_HOUR = "1_HOUR"
    SEVEN_DAYS = "7_DAYS"
    MANUAL = "MANUAL"


class AvailabilityUpdateRequest(BaseModel):
    is_paused: bool
    pause_type: str | None = None


class AvailabilityResponse(BaseModel):
    is_paused: bool
    paused_at: datetime | None
    pause_expires_at: datetime | None
    pause_type: str | None
    remaining_ms: int | None


class SkillsUpdateRequest(BaseModel):
    job_type_ids: list[str]


class SkillsResponse(BaseModel):
    job_type_ids: list[str]
