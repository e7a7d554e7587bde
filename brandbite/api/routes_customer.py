from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from brandbite.api.auth import require_customer_company
from brandbite.domain.catalog import service as catalog_service
from brandbite.domain.catalog.schemas import JobTypeResponse
from brandbite.domain.companies import service as companies_service
from brandbite.domain.companies.schemas import (
    CompanyRoleResponse,
    CompanySettingsResponse,
    CompanySettingsUpdateRequest,
    CompanyTokensResponse,
)
from brandbite.domain.errors import ForbiddenError
from brandbite.domain.identity import Identity
from brandbite.domain.ledger import service as ledger_service
from brandbite.domain.ledger.schemas import LedgerEntryResponse
from brandbite.domain.roles import can_edit_company_profile
from brandbite.infra.db import get_db_session
from brandbite.settings import settings

router = APIRouter()


@router.get("/v1/customer/tokens", response_model=CompanyTokensResponse)
async def get_company_tokens(
    identity: Identity = Depends(require_customer_company),
    session: AsyncSession = Depends(get_db_session),
) -> CompanyTokensResponse:
    company = await companies_service.get_company(session, identity.company_id)
    entries = await ledger_service.list_company_ledger(
        session, company.id, limit=settings.ledger_history_limit
    )
    return CompanyTokensResponse(
        company_id=company.id,
        token_balance=company.token_balance,
        ledger=[LedgerEntryResponse.model_validate(entry) for entry in entries],
    )


@router.get("/v1/customer/job-types", response_model=list[JobTypeResponse])
async def list_job_types(
    identity: Identity = Depends(require_customer_company),
    session: AsyncSession = Depends(get_db_session),
) -> list[JobTypeResponse]:
    job_types = await catalog_service.list_active_job_types(session)
    return [JobTypeResponse.model_validate(job_type) for job_type in job_types]


@router.get("/v1/customer/company-role", response_model=CompanyRoleResponse)
async def get_company_role(
    identity: Identity = Depends(require_customer_company),
    session: AsyncSession = Depends(get_db_session),
) -> CompanyRoleResponse:
    company = await companies_service.get_company(session, identity.company_id)
    role = await companies_service.get_company_role(session, company.id, identity.user_id)
    return CompanyRoleResponse(company_id=company.id, company_name=company.name, role_in_company=role)


@router.patch("/v1/customer/settings", response_model=CompanySettingsResponse)
async def update_company_settings(
    payload: CompanySettingsUpdateRequest,
    identity: Identity = Depends(require_customer_company),
    session: AsyncSession = Depends(get_db_session),
) -> CompanySettingsResponse:
    if not can_edit_company_profile(identity.company_role):
        raise ForbiddenError(detail="Only company owners or project managers can change company settings.")
    company = await companies_service.update_company_settings(
        session,
        identity.company_id,
        auto_assign_default_enabled=payload.auto_assign_default_enabled,
    )
    await session.commit()
    return CompanySettingsResponse(
        company_id=company.id,
        auto_assign_default_enabled=company.auto_assign_default_enabled,
    )
