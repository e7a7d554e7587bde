from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from brandbite.api.auth import require_customer_company, require_user
from brandbite.domain.companies import service as companies_service
from brandbite.domain.companies.schemas import (
    InviteCreateRequest,
    InviteResponse,
    MemberRoleUpdateRequest,
    MembersResponse,
    ProjectCreateRequest,
    ProjectResponse,
    ProjectUpdateRequest,
    PublicInviteResponse,
)
from brandbite.domain.identity import Identity
from brandbite.domain.users import service as users_service
from brandbite.infra.db import get_db_session
from brandbite.infra.email import resolve_app_email_adapter

router = APIRouter()


@router.get("/v1/customer/members", response_model=MembersResponse)
async def list_members(
    identity: Identity = Depends(require_customer_company),
    session: AsyncSession = Depends(get_db_session),
) -> MembersResponse:
    return await companies_service.list_members(session, identity.company_id)


@router.post("/v1/customer/members/invite", response_model=InviteResponse, status_code=status.HTTP_201_CREATED)
async def invite_member(
    payload: InviteCreateRequest,
    http_request: Request,
    identity: Identity = Depends(require_customer_company),
    session: AsyncSession = Depends(get_db_session),
) -> InviteResponse:
    invite = await companies_service.create_invite(
        session,
        company_id=identity.company_id,
        inviter=identity,
        email=payload.email,
        role_in_company=payload.role_in_company,
    )
    company = await companies_service.get_company(session, identity.company_id)
    await session.commit()
    await companies_service.send_invite_email(resolve_app_email_adapter(http_request), invite, company.name)
    return InviteResponse.model_validate(invite)


@router.delete("/v1/customer/members/invite/{invite_id}", response_model=InviteResponse)
async def cancel_invite(
    invite_id: str,
    identity: Identity = Depends(require_customer_company),
    session: AsyncSession = Depends(get_db_session),
) -> InviteResponse:
    invite = await companies_service.cancel_invite(session, identity=identity, invite_id=invite_id)
    await session.commit()
    return InviteResponse.model_validate(invite)


@router.patch("/v1/customer/members/{member_id}")
async def update_member_role(
    member_id: str,
    payload: MemberRoleUpdateRequest,
    identity: Identity = Depends(require_customer_company),
    session: AsyncSession = Depends(get_db_session),
) -> dict[str, str]:
    member = await companies_service.update_member_role(
        session, identity=identity, member_id=member_id, role_in_company=payload.role_in_company
    )
    await session.commit()
    return {"id": member.id, "role_in_company": member.role_in_company}


@router.delete("/v1/customer/members/{member_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_member(
    member_id: str,
    identity: Identity = Depends(require_customer_company),
    session: AsyncSession = Depends(get_db_session),
) -> None:
    await companies_service.remove_member(session, identity=identity, member_id=member_id)
    await session.commit()


@router.get("/v1/customer/projects", response_model=list[ProjectResponse])
async def list_projects(
    identity: Identity = Depends(require_customer_company),
    session: AsyncSession = Depends(get_db_session),
) -> list[ProjectResponse]:
    projects = await companies_service.list_projects(session, identity.company_id)
    return [ProjectResponse.model_validate(project) for project in projects]


@router.post("/v1/customer/projects", response_model=ProjectResponse, status_code=status.HTTP_201_CREATED)
async def create_project(
    payload: ProjectCreateRequest,
    identity: Identity = Depends(require_customer_company),
    session: AsyncSession = Depends(get_db_session),
) -> ProjectResponse:
    project = await companies_service.create_project(
        session,
        company_id=identity.company_id,
        name=payload.name,
        code=payload.code,
        identity=identity,
    )
    await session.commit()
    return ProjectResponse.model_validate(project)


@router.patch("/v1/customer/projects/{project_id}", response_model=ProjectResponse)
async def update_project(
    project_id: str,
    payload: ProjectUpdateRequest,
    identity: Identity = Depends(require_customer_company),
    session: AsyncSession = Depends(get_db_session),
) -> ProjectResponse:
    project = await companies_service.update_project(
        session, identity=identity, project_id=project_id, payload=payload
    )
    await session.commit()
    return ProjectResponse.model_validate(project)


@router.get("/v1/invites/{token}", response_model=PublicInviteResponse)
async def get_invite(token: str, session: AsyncSession = Depends(get_db_session)) -> PublicInviteResponse:
    invite, company = await companies_service.get_invite_by_token(session, token)
    return PublicInviteResponse(
        email=invite.email,
        role_in_company=invite.role_in_company,
        status=invite.status,
        company_id=company.id,
        company_name=company.name,
    )


@router.post("/v1/invites/{token}/accept")
async def accept_invite(
    token: str,
    identity: Identity = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
) -> dict[str, str]:
    user = await users_service.get_user(session, identity.user_id)
    member = await companies_service.accept_invite(session, token, user)
    await session.commit()
    return {
        "company_id": member.company_id,
        "role_in_company": member.role_in_company,
        "active_company_id": user.active_company_id or member.company_id,
    }
