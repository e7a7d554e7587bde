from __future__ import annotations

import logging
import uuid
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from brandbite.domain.companies.abbreviation import generate_unique_project_code, is_valid_project_code
from brandbite.domain.companies.db_models import Company, CompanyInvite, CompanyMember, Project
from brandbite.domain.companies.schemas import (
    InviteResponse,
    InviteStatus,
    MemberResponse,
    MembersResponse,
    ProjectUpdateRequest,
)
from brandbite.domain.errors import ConflictError, DomainError, ForbiddenError, NotFoundError
from brandbite.domain.identity import Identity
from brandbite.domain.roles import (
    CompanyRole,
    can_manage_members,
    can_manage_projects,
    is_customer_role,
    normalize_company_role,
)
from brandbite.domain.users.db_models import UserAccount
from brandbite.infra.email import send_best_effort
from brandbite.settings import settings
from brandbite.shared.clock import utcnow

logger = logging.getLogger(__name__)

INVITABLE_ROLES = frozenset({CompanyRole.MEMBER, CompanyRole.PM, CompanyRole.BILLING})
PROJECT_NAME_MIN_LENGTH = 2


async def get_company(session: AsyncSession, company_id: str) -> Company:
    company = await session.get(Company, company_id)
    if company is None:
        raise NotFoundError(detail="Company not found")
    return company


async def get_company_role(session: AsyncSession, company_id: str, user_id: str) -> CompanyRole | None:
    role = await session.scalar(
        select(CompanyMember.role_in_company).where(
            CompanyMember.company_id == company_id, CompanyMember.user_id == user_id
        )
    )
    return normalize_company_role(role)


def _require_member_admin(identity: Identity) -> None:
    if not can_manage_members(identity.company_role):
        raise ForbiddenError(detail="Only company owners or project managers can manage members.")


async def list_members(session: AsyncSession, company_id: str) -> MembersResponse:
    result = await session.execute(
        select(CompanyMember, UserAccount)
        .join(UserAccount, UserAccount.id == CompanyMember.user_id)
        .where(CompanyMember.company_id == company_id)
        .order_by(CompanyMember.created_at)
    )
    members = [
        MemberResponse(
            id=member.id,
            user_id=user.id,
            email=user.email,
            name=user.name,
            role_in_company=CompanyRole(member.role_in_company),
            joined_at=member.created_at,
        )
        for member, user in result.all()
    ]
    invites = await session.execute(
        select(CompanyInvite)
        .where(
            CompanyInvite.company_id == company_id,
            CompanyInvite.status == InviteStatus.PENDING.value,
        )
        .order_by(CompanyInvite.created_at.desc())
    )
    return MembersResponse(
        members=members,
        pending_invites=[InviteResponse.model_validate(invite) for invite in invites.scalars()],
    )


async def create_invite(
    session: AsyncSession,
    *,
    company_id: str,
    inviter: Identity,
    email: str,
    role_in_company: str | None = None,
) -> CompanyInvite:
    _require_member_admin(inviter)
    role = normalize_company_role(role_in_company) if role_in_company else CompanyRole.MEMBER
    if role not in INVITABLE_ROLES:
        raise DomainError(detail="Invite role must be MEMBER, PM or BILLING.")
    normalized_email = (email or "").strip().lower()
    if "@" not in normalized_email:
        raise DomainError(detail="A valid email address is required.")

    existing_member = await session.scalar(
        select(CompanyMember.id)
        .join(UserAccount, UserAccount.id == CompanyMember.user_id)
        .where(CompanyMember.company_id == company_id, UserAccount.email == normalized_email)
    )
    if existing_member is not None:
        raise ConflictError(detail="This user is already a member of your company.")
    pending = await session.scalar(
        select(CompanyInvite.id).where(
            CompanyInvite.company_id == company_id,
            CompanyInvite.email == normalized_email,
            CompanyInvite.status == InviteStatus.PENDING.value,
        )
    )
    if pending is not None:
        raise ConflictError(detail="An invite already exists for this email.")

    invite = CompanyInvite(
        company_id=company_id,
        email=normalized_email,
        invited_by_user_id=inviter.user_id,
        role_in_company=role.value,
        token=str(uuid.uuid4()),
        status=InviteStatus.PENDING.value,
    )
    session.add(invite)
    await session.flush()
    logger.info(
        "company_invite_created",
        extra={"extra": {"company_id": company_id, "invite_id": invite.id, "role": role.value}},
    )
    return invite


async def send_invite_email(adapter, invite: CompanyInvite, company_name: str) -> bool:
    link = f"{settings.public_base_url.rstrip('/')}/invite/{invite.token}"
    body = (
        f"You have been invited to join {company_name} on Brandbite.\n\n"
        f"Accept the invite: {link}\n"
    )
    return await send_best_effort(
        adapter,
        recipient=invite.email,
        subject=f"You're invited to join {company_name} on Brandbite",
        body=body,
        event="company_invite",
    )


async def cancel_invite(session: AsyncSession, *, identity: Identity, invite_id: str) -> CompanyInvite:
    _require_member_admin(identity)
    invite = await session.scalar(
        select(CompanyInvite).where(
            CompanyInvite.id == invite_id, CompanyInvite.company_id == identity.company_id
        )
    )
    if invite is None:
        raise NotFoundError(detail="Invite not found")
    if invite.status != InviteStatus.PENDING.value:
        raise DomainError(detail="Only pending invites can be cancelled")
    invite.status = InviteStatus.CANCELLED.value
    await session.flush()
    logger.info("company_invite_cancelled", extra={"extra": {"invite_id": invite.id}})
    return invite


async def get_invite_by_token(session: AsyncSession, token: str) -> tuple[CompanyInvite, Company]:
    row = (
        await session.execute(
            select(CompanyInvite, Company)
            .join(Company, Company.id == CompanyInvite.company_id)
            .where(CompanyInvite.token == token)
        )
    ).first()
    if row is None:
        raise NotFoundError(detail="Invite not found")
    return row[0], row[1]


async def accept_invite(
    session: AsyncSession, token: str, user: UserAccount, now: datetime | None = None
) -> CompanyMember:
    now = now or utcnow()
    if not is_customer_role(user.role):
        raise ForbiddenError(detail="Only customer accounts can accept company invites")
    invite = await session.scalar(select(CompanyInvite).where(CompanyInvite.token == token).with_for_update())
    if invite is None:
        raise NotFoundError(detail="Invite not found")
    if invite.status != InviteStatus.PENDING.value:
        raise DomainError(detail="Only pending invites can be accepted")

    member = await session.scalar(
        select(CompanyMember).where(
            CompanyMember.company_id == invite.company_id, CompanyMember.user_id == user.id
        )
    )
    if member is None:
        member = CompanyMember(
            company_id=invite.company_id,
            user_id=user.id,
            role_in_company=invite.role_in_company,
        )
        session.add(member)
    if not user.active_company_id:
        user.active_company_id = invite.company_id
    invite.status = InviteStatus.ACCEPTED.value
    invite.accepted_at = now
    await session.flush()
    logger.info(
        "company_invite_accepted",
        extra={"extra": {"invite_id": invite.id, "company_id": invite.company_id, "user_id": user.id}},
    )
    return member


async def _get_member(session: AsyncSession, company_id: str | None, member_id: str) -> CompanyMember:
    member = await session.scalar(
        select(CompanyMember).where(CompanyMember.id == member_id, CompanyMember.company_id == company_id)
    )
    if member is None:
        raise NotFoundError(detail="Member not found.")
    return member


async def update_member_role(
    session: AsyncSession, *, identity: Identity, member_id: str, role_in_company: str
) -> CompanyMember:
    _require_member_admin(identity)
    role = normalize_company_role(role_in_company)
    if role is None:
        raise DomainError(detail="Invalid role.")
    if role == CompanyRole.OWNER:
        raise ForbiddenError(detail="The OWNER role cannot be assigned.")
    member = await _get_member(session, identity.company_id, member_id)
    if member.role_in_company == CompanyRole.OWNER.value:
        raise ForbiddenError(detail="The company owner's role cannot be changed.")
    member.role_in_company = role.value
    await session.flush()
    logger.info(
        "company_member_role_updated",
        extra={"extra": {"member_id": member.id, "role": role.value}},
    )
    return member


async def remove_member(session: AsyncSession, *, identity: Identity, member_id: str) -> None:
    _require_member_admin(identity)
    member = await _get_member(session, identity.company_id, member_id)
    if member.role_in_company == CompanyRole.OWNER.value:
        raise ForbiddenError(detail="The company owner cannot be removed.")
    user = await session.get(UserAccount, member.user_id)
    if user is not None and user.active_company_id == member.company_id:
        user.active_company_id = None
    await session.delete(member)
    await session.flush()
    logger.info("company_member_removed", extra={"extra": {"member_id": member_id}})


async def list_projects(session: AsyncSession, company_id: str) -> list[Project]:
    result = await session.execute(
        select(Project).where(Project.company_id == company_id).order_by(Project.created_at)
    )
    return list(result.scalars())


async def _existing_codes(session: AsyncSession, company_id: str, exclude_id: str | None = None) -> set[str]:
    stmt = select(Project.code).where(Project.company_id == company_id)
    if exclude_id:
        stmt = stmt.where(Project.id != exclude_id)
    result = await session.execute(stmt)
    return {code for code in result.scalars() if code}


def _clean_project_name(name: str | None) -> str:
    cleaned = (name or "").strip()
    if len(cleaned) < PROJECT_NAME_MIN_LENGTH:
        raise DomainError(detail="Project name is required (min 2 characters).")
    return cleaned


async def _resolve_code(
    session: AsyncSession, company_id: str, name: str, code: str | None, exclude_id: str | None = None
) -> str:
    existing = await _existing_codes(session, company_id, exclude_id)
    if code:
        candidate = code.strip().upper()
        if not is_valid_project_code(candidate):
            raise DomainError(detail="Project code must be exactly 3 uppercase letters.")
        if candidate in existing:
            raise ConflictError(detail="Project code is already used in this company.")
        return candidate
    return generate_unique_project_code(name, existing)


async def create_project(
    session: AsyncSession,
    *,
    company_id: str,
    name: str,
    code: str | None = None,
    identity: Identity | None = None,
) -> Project:
    if identity is not None and not can_manage_projects(identity.company_role):
        raise ForbiddenError(detail="Only company owners and project managers can create projects.")
    cleaned = _clean_project_name(name)
    project = Project(
        company_id=company_id,
        name=cleaned,
        code=await _resolve_code(session, company_id, cleaned, code),
    )
    session.add(project)
    await session.flush()
    logger.info("project_created", extra={"extra": {"project_id": project.id, "code": project.code}})
    return project


async def update_project(
    session: AsyncSession,
    *,
    identity: Identity,
    project_id: str,
    payload: ProjectUpdateRequest,
) -> Project:
    if not can_manage_projects(identity.company_role):
        raise ForbiddenError(detail="Only company owners and project managers can update projects.")
    project = await session.scalar(
        select(Project).where(Project.id == project_id, Project.company_id == identity.company_id)
    )
    if project is None:
        raise NotFoundError(detail="Project not found.")
    changes = payload.model_dump(exclude_unset=True)
    if not changes:
        raise DomainError(detail="No fields to update")
    if "name" in changes:
        project.name = _clean_project_name(changes["name"])
    if changes.get("code"):
        project.code = await _resolve_code(
            session, project.company_id, project.name, changes["code"], exclude_id=project.id
        )
    if changes.get("auto_assign_mode") is not None:
        project.auto_assign_mode = payload.auto_assign_mode.value
    await session.flush()
    logger.info("project_updated", extra={"extra": {"project_id": project.id, "fields": sorted(changes)}})
    return project


async def update_company_settings(
    session: AsyncSession, company_id: str, *, auto_assign_default_enabled: bool
) -> Company:
    company = await get_company(session, company_id)
    company.auto_assign_default_enabled = auto_assign_default_enabled
    await session.flush()
    logger.info(
        "company_settings_updated",
        extra={"extra": {"company_id": company_id, "auto_assign_default_enabled": auto_assign_default_enabled}},
    )
    return company
