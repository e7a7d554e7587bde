import logging

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from brandbite.api.auth import require_customer_company, require_user
from brandbite.domain.companies.db_models import Company
from brandbite.domain.errors import ForbiddenError
from brandbite.domain.identity import Identity
from brandbite.domain.notifications import service as notifications_service
from brandbite.domain.roles import can_create_tickets
from brandbite.domain.tickets import service as tickets_service
from brandbite.domain.tickets.schemas import (
    CommentCreateRequest,
    CommentResponse,
    CompletionResponse,
    CustomerStatusUpdateRequest,
    RequestChangesRequest,
    RevisionResponse,
    TicketCreateRequest,
    TicketCreateResponse,
    TicketResponse,
    TicketStatus,
)
from brandbite.infra.db import get_db_session
from brandbite.infra.email import resolve_app_email_adapter

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/v1/customer/tickets", response_model=TicketCreateResponse, status_code=status.HTTP_201_CREATED)
async def create_ticket(
    payload: TicketCreateRequest,
    http_request: Request,
    identity: Identity = Depends(require_customer_company),
    session: AsyncSession = Depends(get_db_session),
) -> TicketCreateResponse:
    if not can_create_tickets(identity.company_role):
        raise ForbiddenError(detail="Your company role does not allow creating tickets.")
    result = await tickets_service.create_ticket(
        session,
        company_id=identity.company_id,
        created_by_id=identity.user_id,
        payload=payload,
    )
    notification = await tickets_service.notify_ticket_assigned(session, result.ticket, identity.user_id)
    await session.commit()

    if notification is not None and result.creative is not None:
        await notifications_service.send_notification_email(
            resolve_app_email_adapter(http_request), result.creative.email, notification
        )

    company = await session.get(Company, identity.company_id)
    ticket = await tickets_service.get_company_ticket(session, identity.company_id, result.ticket.id)
    return TicketCreateResponse(
        ticket=ticket,
        ledger_entry_id=result.ledger_entry.id if result.ledger_entry else None,
        company_balance=company.token_balance if company else 0,
    )


@router.get("/v1/customer/tickets", response_model=list[TicketResponse])
async def list_tickets(
    identity: Identity = Depends(require_customer_company),
    session: AsyncSession = Depends(get_db_session),
) -> list[TicketResponse]:
    return await tickets_service.list_company_tickets(session, identity.company_id)


@router.patch("/v1/customer/tickets/status", response_model=TicketResponse)
async def update_ticket_status(
    payload: CustomerStatusUpdateRequest,
    identity: Identity = Depends(require_customer_company),
    session: AsyncSession = Depends(get_db_session),
) -> TicketResponse:
    ticket = await tickets_service.update_status_by_customer(
        session, identity=identity, ticket_id=payload.ticket_id, status=payload.status
    )
    await session.commit()
    return await tickets_service.get_company_ticket(session, identity.company_id, ticket.id)


@router.get("/v1/customer/tickets/{ticket_id}", response_model=TicketResponse)
async def get_ticket(
    ticket_id: str,
    identity: Identity = Depends(require_customer_company),
    session: AsyncSession = Depends(get_db_session),
) -> TicketResponse:
    return await tickets_service.get_company_ticket(session, identity.company_id, ticket_id)


@router.get("/v1/customer/tickets/{ticket_id}/revisions", response_model=list[RevisionResponse])
async def list_ticket_revisions(
    ticket_id: str,
    identity: Identity = Depends(require_customer_company),
    session: AsyncSession = Depends(get_db_session),
) -> list[RevisionResponse]:
    ticket = await tickets_service.get_company_ticket(session, identity.company_id, ticket_id)
    revisions = await tickets_service.list_revisions(session, ticket.id)
    return [RevisionResponse.model_validate(revision) for revision in revisions]


@router.post("/v1/customer/tickets/{ticket_id}/request-changes", response_model=RevisionResponse)
async def request_ticket_changes(
    ticket_id: str,
    payload: RequestChangesRequest,
    identity: Identity = Depends(require_customer_company),
    session: AsyncSession = Depends(get_db_session),
) -> RevisionResponse:
    revision = await tickets_service.request_changes(
        session, identity=identity, ticket_id=ticket_id, message=payload.message
    )
    await session.commit()
    return RevisionResponse.model_validate(revision)


@router.get("/v1/customer/tickets/{ticket_id}/comments", response_model=list[CommentResponse])
async def list_ticket_comments(
    ticket_id: str,
    identity: Identity = Depends(require_customer_company),
    session: AsyncSession = Depends(get_db_session),
) -> list[CommentResponse]:
    comments = await tickets_service.list_comments(session, identity=identity, ticket_id=ticket_id)
    return [CommentResponse.model_validate(comment) for comment in comments]


@router.post(
    "/v1/customer/tickets/{ticket_id}/comments",
    response_model=CommentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_ticket_comment(
    ticket_id: str,
    payload: CommentCreateRequest,
    identity: Identity = Depends(require_customer_company),
    session: AsyncSession = Depends(get_db_session),
) -> CommentResponse:
    comment = await tickets_service.add_comment(
        session, identity=identity, ticket_id=ticket_id, body=payload.body
    )
    await session.commit()
    return CommentResponse.model_validate(comment)


@router.post("/v1/tickets/{ticket_id}/complete", response_model=CompletionResponse)
async def complete_ticket(
    ticket_id: str,
    identity: Identity = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
) -> CompletionResponse:
    result = await tickets_service.complete_ticket(session, identity=identity, ticket_id=ticket_id)
    await session.commit()
    logger.info(
        "ticket_completion_committed",
        extra={"extra": {"ticket_id": ticket_id, "payout_tokens": result.payout_tokens}},
    )
    return CompletionResponse(
        ticket_id=result.ticket.id,
        status=TicketStatus(result.ticket.status),
        already_completed=result.already_completed,
        payout_tokens=result.payout_tokens,
        payout_percent=result.payout_percent,
        creative_balance_after=result.creative_balance_after,
    )
