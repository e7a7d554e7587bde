import uuid
from datetime import datetime

from brandbite.domain.catalog.db_models import JobType, Plan
from brandbite.domain.companies.db_models import Company, CompanyMember, Project
from brandbite.domain.identity import Identity
from brandbite.domain.roles import CompanyRole, UserRole
from brandbite.domain.users.db_models import UserAccount
from brandbite.infra.auth import create_access_token
from brandbite.settings import settings


async def create_user(
    session,
    role: UserRole = UserRole.CUSTOMER,
    *,
    email: str | None = None,
    name: str | None = None,
    created_at: datetime | None = None,
) -> UserAccount:
    user = UserAccount(
        email=email or f"{uuid.uuid4().hex[:10]}@example.com",
        name=name or role.value.title(),
        role=role.value,
    )
    if created_at is not None:
        user.created_at = created_at
    session.add(user)
    await session.flush()
    return user


async def create_company(
    session,
    owner: UserAccount | None = None,
    *,
    name: str = "Acme Studio",
    token_balance: int = 0,
    auto_assign_default_enabled: bool = True,
) -> Company:
    company = Company(
        name=name,
        slug=f"{name.lower().replace(' ', '-')}-{uuid.uuid4().hex[:6]}",
        token_balance=token_balance,
        auto_assign_default_enabled=auto_assign_default_enabled,
    )
    session.add(company)
    await session.flush()
    if owner is not None:
        await add_member(session, company, owner, CompanyRole.OWNER)
    return company


async def add_member(
    session, company: Company, user: UserAccount, role: CompanyRole = CompanyRole.MEMBER
) -> CompanyMember:
    member = CompanyMember(company_id=company.id, user_id=user.id, role_in_company=role.value)
    session.add(member)
    if not user.active_company_id:
        user.active_company_id = company.id
    await session.flush()
    return member


async def create_job_type(
    session, *, name: str = "Logo design", token_cost: int = 10, creative_payout_tokens: int = 6
) -> JobType:
    job_type = JobType(name=name, token_cost=token_cost, creative_payout_tokens=creative_payout_tokens)
    session.add(job_type)
    await session.flush()
    return job_type


async def create_project(
    session, company: Company, *, name: str = "Website", code: str | None = "WEB", auto_assign_mode: str = "INHERIT"
) -> Project:
    project = Project(company_id=company.id, name=name, code=code, auto_assign_mode=auto_assign_mode)
    session.add(project)
    await session.flush()
    return project


async def create_plan(
    session, *, name: str = "Starter", monthly_tokens: int = 100, stripe_price_id: str | None = "price_starter"
) -> Plan:
    plan = Plan(name=name, monthly_tokens=monthly_tokens, price_cents=4900, stripe_price_id=stripe_price_id)
    session.add(plan)
    await session.flush()
    return plan


def identity_for(
    user: UserAccount, company: Company | None = None, company_role: CompanyRole | None = None
) -> Identity:
    return Identity(
        user_id=user.id,
        role=UserRole(user.role),
        email=user.email,
        name=user.name,
        company_id=company.id if company else None,
        company_role=company_role,
    )


def auth_headers(user: UserAccount) -> dict[str, str]:
    token = create_access_token(user.id, user.role, 60, settings)
    return {"Authorization": f"Bearer {token}"}
