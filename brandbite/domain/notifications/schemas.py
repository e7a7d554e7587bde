from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict


class NotificationType(str, Enum):
    REVISION_SUBMITTED = "REVISION_SUBMITTED"
    FEEDBACK_SUBMITTED = "FEEDBACK_SUBMITTED"
    TICKET_COMPLETED = "TICKET_COMPLETED"
    TICKET_ASSIGNED = "TICKET_ASSIGNED"
    TICKET_STATUS_CHANGED = "TICKET_STATUS_CHANGED"
    PIN_RESOLVED = "PIN_RESOLVED"


class NotificationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    type: NotificationType
    title: str
    message: str
    ticket_id: str | None
    actor_id: str | None
    read: bool
    created_at: datetime


class NotificationListResponse(BaseModel):
    notifications: list[NotificationResponse]
    unread_count: int


class PreferenceEntry(BaseModel):
    type: NotificationType
    enabled: bool


class PreferenceUpdateRequest(BaseModel):
    type: NotificationType
    enabled: bool
