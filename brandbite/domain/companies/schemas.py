from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from brandbite.domain.ledger.schemas import LedgerEntryResponse
from brandbite.domain.roles import CompanyRole
from brandbite.domain.tickets.schemas import AutoAssignMode


class InviteStatus(str, Enum):
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"


class InviteCreateRequest(BaseModel):
    email: str = Field(min_length=3, max_length=320)
    role_in_company: str | None = None


class MemberRoleUpdateRequest(BaseModel):
    role_in_company: str


class ProjectCreateRequest(BaseModel):
    name: str
    code: str | None = None


class ProjectUpdateRequest(BaseModel):
    name: str | None = None
    code: str | None = None
    auto_assign_mode: AutoAssignMode | None = None


class CompanySettingsUpdateRequest(BaseModel):
    auto_assign_default_enabled: bool


class MemberResponse(BaseModel):
    id: str
    user_id: str
    email: str
    name: str | None
    role_in_company: CompanyRole
    joined_at: datetime


class InviteResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    company_id: str
    email: str
    role_in_company: CompanyRole
    status: InviteStatus
    created_at: datetime
    accepted_at: datetime | None = None


class PublicInviteResponse(BaseModel):
    email: str
    role_in_company: CompanyRole
    status: InviteStatus
    company_id: str
    company_name: str


class MembersResponse(BaseModel):
    members: list[MemberResponse]
    pending_invites: list[InviteResponse]


class ProjectResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    company_id: str
    name: str
    code: str | None
    auto_assign_mode: AutoAssignMode
    created_at: datetime


class CompanyRoleResponse(BaseModel):
    company_id: str
    company_name: str
    role_in_company: CompanyRole | None


class CompanyTokensResponse(BaseModel):
    company_id: str
    token_balance: int
    ledger: list[LedgerEntryResponse]


class CompanySettingsResponse(BaseModel):
    company_id: str
    auto_assign_default_enabled: bool
