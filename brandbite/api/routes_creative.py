from fastapi import APIRouter, Depends, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from brandbite.api.auth import require_creative
from brandbite.domain.creatives import service as creatives_service
from brandbite.domain.creatives.schemas import (
    AvailabilityResponse,
    AvailabilityUpdateRequest,
    SkillsResponse,
    SkillsUpdateRequest,
)
from brandbite.domain.identity import Identity
from brandbite.domain.ledger import service as ledger_service
from brandbite.domain.ledger.schemas import LedgerEntryResponse
from brandbite.domain.payouts import service as payouts_service
from brandbite.domain.payouts.schemas import PayoutTierOverview
from brandbite.domain.tickets import service as tickets_service
from brandbite.domain.tickets.schemas import (
    CommentCreateRequest,
    CommentResponse,
    CreativeStatusUpdateRequest,
    CreativeTicketListResponse,
    RevisionResponse,
    RevisionSubmitRequest,
    TicketResponse,
)
from brandbite.domain.users import service as users_service
from brandbite.domain.withdrawals import service as withdrawals_service
from brandbite.domain.withdrawals.schemas import (
    CreativeWithdrawalsResponse,
    WithdrawalCreateRequest,
    WithdrawalResponse,
)
from brandbite.infra.db import get_db_session
from brandbite.settings import settings

router = APIRouter()


class CreativeBalanceResponse(BaseModel):
    balance: int
    ledger: list[LedgerEntryResponse]


@router.get("/v1/creative/balance", response_model=CreativeBalanceResponse)
async def get_balance(
    identity: Identity = Depends(require_creative),
    session: AsyncSession = Depends(get_db_session),
) -> CreativeBalanceResponse:
    balance = await ledger_service.get_user_token_balance(session, identity.user_id)
    entries = await ledger_service.list_user_ledger(
        session, identity.user_id, limit=settings.ledger_history_limit
    )
    return CreativeBalanceResponse(
        balance=balance,
        ledger=[LedgerEntryResponse.model_validate(entry) for entry in entries],
    )


@router.get("/v1/creative/payout-tier", response_model=PayoutTierOverview)
async def get_payout_tier(
    identity: Identity = Depends(require_creative),
    session: AsyncSession = Depends(get_db_session),
) -> PayoutTierOverview:
    return await payouts_service.get_payout_tier_overview(session, identity.user_id)


@router.get("/v1/creative/withdrawals", response_model=CreativeWithdrawalsResponse)
async def list_withdrawals(
    identity: Identity = Depends(require_creative),
    session: AsyncSession = Depends(get_db_session),
) -> CreativeWithdrawalsResponse:
    return await withdrawals_service.list_creative_withdrawals(session, identity.user_id)


@router.post("/v1/creative/withdrawals", response_model=WithdrawalResponse, status_code=status.HTTP_201_CREATED)
async def request_withdrawal(
    payload: WithdrawalCreateRequest,
    identity: Identity = Depends(require_creative),
    session: AsyncSession = Depends(get_db_session),
) -> WithdrawalResponse:
    withdrawal = await withdrawals_service.create_withdrawal(
        session, identity.user_id, payload.amount_tokens, payload.notes
    )
    await session.commit()
    return WithdrawalResponse.model_validate(withdrawal)


@router.get("/v1/creative/tickets", response_model=CreativeTicketListResponse)
async def list_tickets(
    identity: Identity = Depends(require_creative),
    session: AsyncSession = Depends(get_db_session),
) -> CreativeTicketListResponse:
    return await tickets_service.list_creative_tickets(session, identity.user_id)


@router.get("/v1/creative/tickets/{ticket_id}", response_model=TicketResponse)
async def get_ticket(
    ticket_id: str,
    identity: Identity = Depends(require_creative),
    session: AsyncSession = Depends(get_db_session),
) -> TicketResponse:
    return await tickets_service.get_creative_ticket(session, identity.user_id, ticket_id)


@router.patch("/v1/creative/tickets/{ticket_id}/status", response_model=TicketResponse)
async def update_ticket_status(
    ticket_id: str,
    payload: CreativeStatusUpdateRequest,
    identity: Identity = Depends(require_creative),
    session: AsyncSession = Depends(get_db_session),
) -> TicketResponse:
    await tickets_service.update_status_by_creative(
        session, creative_id=identity.user_id, ticket_id=ticket_id, status=payload.status
    )
    await session.commit()
    return await tickets_service.get_creative_ticket(session, identity.user_id, ticket_id)


@router.get("/v1/creative/tickets/{ticket_id}/revisions", response_model=list[RevisionResponse])
async def list_revisions(
    ticket_id: str,
    identity: Identity = Depends(require_creative),
    session: AsyncSession = Depends(get_db_session),
) -> list[RevisionResponse]:
    ticket = await tickets_service.get_creative_ticket(session, identity.user_id, ticket_id)
    revisions = await tickets_service.list_revisions(session, ticket.id)
    return [RevisionResponse.model_validate(revision) for revision in revisions]


@router.post(
    "/v1/creative/tickets/{ticket_id}/revisions",
    response_model=RevisionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def submit_revision(
    ticket_id: str,
    payload: RevisionSubmitRequest,
    identity: Identity = Depends(require_creative),
    session: AsyncSession = Depends(get_db_session),
) -> RevisionResponse:
    revision = await tickets_service.submit_revision(
        session, creative_id=identity.user_id, ticket_id=ticket_id, message=payload.message
    )
    await session.commit()
    return RevisionResponse.model_validate(revision)


@router.get("/v1/creative/tickets/{ticket_id}/comments", response_model=list[CommentResponse])
async def list_comments(
    ticket_id: str,
    identity: Identity = Depends(require_creative),
    session: AsyncSession = Depends(get_db_session),
) -> list[CommentResponse]:
    comments = await tickets_service.list_comments(session, identity=identity, ticket_id=ticket_id)
    return [CommentResponse.model_validate(comment) for comment in comments]


@router.post(
    "/v1/creative/tickets/{ticket_id}/comments",
    response_model=CommentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_comment(
    ticket_id: str,
    payload: CommentCreateRequest,
    identity: Identity = Depends(require_creative),
    session: AsyncSession = Depends(get_db_session),
) -> CommentResponse:
    comment = await tickets_service.add_comment(
        session, identity=identity, ticket_id=ticket_id, body=payload.body
    )
    await session.commit()
    return CommentResponse.model_validate(comment)


@router.get("/v1/creative/availability", response_model=AvailabilityResponse)
async def get_availability(
    identity: Identity = Depends(require_creative),
    session: AsyncSession = Depends(get_db_session),
) -> AvailabilityResponse:
    user = await users_service.get_user(session, identity.user_id)
    return creatives_service.format_pause_status(user)


@router.patch("/v1/creative/availability", response_model=AvailabilityResponse)
async def update_availability(
    payload: AvailabilityUpdateRequest,
    identity: Identity = Depends(require_creative),
    session: AsyncSession = Depends(get_db_session),
) -> AvailabilityResponse:
    user = await users_service.get_user(session, identity.user_id)
    if payload.is_paused:
        await creatives_service.pause_creative(session, user, payload.pause_type)
    else:
        await creatives_service.resume_creative(session, user)
    await session.commit()
    return creatives_service.format_pause_status(user)


@router.get("/v1/creative/skills", response_model=SkillsResponse)
async def get_skills(
    identity: Identity = Depends(require_creative),
    session: AsyncSession = Depends(get_db_session),
) -> SkillsResponse:
    return SkillsResponse(job_type_ids=await creatives_service.list_skills(session, identity.user_id))


@router.put("/v1/creative/skills", response_model=SkillsResponse)
async def replace_skills(
    payload: SkillsUpdateRequest,
    identity: Identity = Depends(require_creative),
    session: AsyncSession = Depends(get_db_session),
) -> SkillsResponse:
    job_type_ids = await creatives_service.set_skills(session, identity.user_id, payload.job_type_ids)
    await session.commit()
    return SkillsResponse(job_type_ids=job_type_ids)
