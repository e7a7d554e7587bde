from __future__ import annotations

import logging
from datetime import date, datetime, time, timezone

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from brandbite.domain.catalog.db_models import JobType
from brandbite.domain.companies.db_models import Company, Project
from brandbite.domain.errors import (
    ConflictError,
    DomainError,
    ForbiddenError,
    InsufficientTokensError,
    NotFoundError,
)
from brandbite.domain.identity import Identity
from brandbite.domain.ledger import service as ledger_service
from brandbite.domain.ledger.db_models import TokenLedger
from brandbite.domain.ledger.schemas import LedgerDirection, LedgerReason, TicketCompletionResult
from brandbite.domain.notifications import service as notifications_service
from brandbite.domain.notifications.schemas import NotificationType
from brandbite.domain.roles import (
    can_edit_tickets,
    can_mark_tickets_done_for_company,
    can_move_tickets_on_board,
    is_billing_read_only,
    is_creative_role,
    is_customer_role,
    is_site_admin_role,
)
from brandbite.domain.tickets import assignment
from brandbite.domain.tickets.codes import build_ticket_code
from brandbite.domain.tickets.db_models import (
    Ticket,
    TicketAssignmentLog,
    TicketComment,
    TicketRevision,
)
from brandbite.domain.tickets.schemas import (
    AdminTicketUpdateRequest,
    AdminTicketUpdateResult,
    CompletedJobResponse,
    CreativeTicketListResponse,
    TicketCreateRequest,
    TicketCreationResult,
    TicketPriority,
    TicketResponse,
    TicketStatus,
)
from brandbite.domain.users.db_models import UserAccount
from brandbite.infra.metrics import metrics
from brandbite.settings import settings
from brandbite.shared.clock import utcnow

logger = logging.getLogger(__name__)

FIRST_COMPANY_TICKET_NUMBER = 101
COMMENT_MAX_LENGTH = 2000
CREATIVE_MOVABLE_STATUSES = {TicketStatus.TODO.value, TicketStatus.IN_PROGRESS.value}


def normalize_priority(value: str | None) -> str:
    if not value:
        return TicketPriority.MEDIUM.value
    try:
        return TicketPriority(value.strip().upper()).value
    except ValueError:
        return TicketPriority.MEDIUM.value


def normalize_quantity(value: int | None) -> int:
    if value is None:
        return 1
    return max(1, min(settings.ticket_quantity_max, int(value)))


def _add_years(value: date, years: int) -> date:
    try:
        return value.replace(year=value.year + years)
    except ValueError:
        return value.replace(year=value.year + years, day=28)


def validate_due_date(due_date: date | None, now: datetime) -> datetime | None:
    if due_date is None:
        return None
    today = now.date()
    if due_date < today:
        raise DomainError(detail="Due date cannot be in the past.")
    max_years = settings.ticket_max_due_years
    if due_date > _add_years(today, max_years):
        raise DomainError(detail=f"Due date cannot be more than {max_years} years in the future.")
    return datetime.combine(due_date, time.min, tzinfo=timezone.utc)


def to_ticket_response(
    ticket: Ticket,
    project: Project | None = None,
    job_type: JobType | None = None,
    creative: UserAccount | None = None,
) -> TicketResponse:
    values = ledger_service.get_effective_token_values(
        quantity=ticket.quantity,
        token_cost_override=ticket.token_cost_override,
        creative_payout_override=ticket.creative_payout_override,
        job_type=job_type,
    )
    return TicketResponse(
        id=ticket.id,
        code=build_ticket_code(project.code if project else None, ticket.company_ticket_number, ticket.id),
        title=ticket.title,
        description=ticket.description,
        status=TicketStatus(ticket.status),
        priority=TicketPriority(ticket.priority),
        due_date=ticket.due_date,
        company_id=ticket.company_id,
        company_ticket_number=ticket.company_ticket_number,
        quantity=ticket.quantity,
        project_id=ticket.project_id,
        project_name=project.name if project else None,
        project_code=project.code if project else None,
        job_type_id=ticket.job_type_id,
        job_type_name=job_type.name if job_type else None,
        creative_id=ticket.creative_id,
        creative_name=(creative.name or creative.email) if creative else None,
        created_by_id=ticket.created_by_id,
        effective_cost=values.effective_cost,
        effective_payout=values.effective_payout,
        token_cost_override=ticket.token_cost_override,
        creative_payout_override=ticket.creative_payout_override,
        revision_count=ticket.revision_count,
        completed_at=ticket.completed_at,
        created_at=ticket.created_at,
    )


def _ticket_detail_query():
    creative = aliased(UserAccount)
    stmt = (
        select(Ticket, Project, JobType, creative)
        .outerjoin(Project, Project.id == Ticket.project_id)
        .outerjoin(JobType, JobType.id == Ticket.job_type_id)
        .outerjoin(creative, creative.id == Ticket.creative_id)
    )
    return stmt


async def _fetch_responses(session: AsyncSession, stmt) -> list[TicketResponse]:
    result = await session.execute(stmt)
    return [to_ticket_response(*row) for row in result.all()]


async def create_ticket(
    session: AsyncSession,
    *,
    company_id: str,
    created_by_id: str,
    payload: TicketCreateRequest,
    now: datetime | None = None,
) -> TicketCreationResult:
    """Create a ticket, charge the company and pick a creative.

    The company row stays locked from the balance check until the debit so
    two concurrent requests cannot both spend the same tokens.
    """
    now = now or utcnow()
    title = (payload.title or "").strip()
    if not title:
        raise DomainError(detail="Title is required")
    quantity = normalize_quantity(payload.quantity)
    priority = normalize_priority(payload.priority)
    due_date = validate_due_date(payload.due_date, now)
    description = (payload.description or "").strip() or None

    company = await session.scalar(select(Company).where(Company.id == company_id).with_for_update())
    if company is None:
        raise NotFoundError(detail="Company not found")

    project = None
    if payload.project_id:
        project = await session.scalar(
            select(Project).where(Project.id == payload.project_id, Project.company_id == company_id)
        )
        if project is None:
            raise DomainError(detail="Project not found for this company")

    job_type = None
    if payload.job_type_id:
        job_type = await session.get(JobType, payload.job_type_id)
        if job_type is None or not job_type.is_active:
            raise DomainError(detail="Job type not found")

    effective_cost = job_type.token_cost * quantity if job_type else 0
    if effective_cost > 0 and company.token_balance < effective_cost:
        raise InsufficientTokensError(
            detail="Not enough tokens for this job type",
            errors=[{"balance": company.token_balance, "required": effective_cost}],
        )

    auto_assign = assignment.is_auto_assign_enabled(
        project.auto_assign_mode if project else None,
        company.auto_assign_default_enabled,
    )
    max_number = await session.scalar(
        select(func.max(Ticket.company_ticket_number)).where(Ticket.company_id == company_id)
    )
    company_ticket_number = (max_number + 1) if max_number is not None else FIRST_COMPANY_TICKET_NUMBER

    decision = await assignment.choose_creative(
        session,
        job_type_id=job_type.id if job_type else None,
        enabled=auto_assign,
        now=now,
    )

    ticket = Ticket(
        title=title,
        description=description,
        status=TicketStatus.TODO.value,
        priority=priority,
        due_date=due_date,
        company_id=company_id,
        project_id=project.id if project else None,
        created_by_id=created_by_id,
        creative_id=decision.creative.id if decision.creative else None,
        job_type_id=job_type.id if job_type else None,
        company_ticket_number=company_ticket_number,
        quantity=quantity,
    )
    session.add(ticket)
    await session.flush()

    ledger_entry = None
    if effective_cost > 0:
        result = await ledger_service.apply_company_ledger_entry(
            session,
            company_id=company_id,
            amount=effective_cost,
            direction=LedgerDirection.DEBIT,
            reason=LedgerReason.JOB_REQUEST_CREATED,
            ticket_id=ticket.id,
            notes=f"Job request created: {title}",
            metadata={
                "jobTypeId": job_type.id,
                "unitCost": job_type.token_cost,
                "quantity": quantity,
                "companyTicketNumber": company_ticket_number,
                "createdByUserId": created_by_id,
            },
        )
        ledger_entry = result.entry

    session.add(
        TicketAssignmentLog(
            ticket_id=ticket.id,
            creative_id=ticket.creative_id,
            reason=decision.reason.value,
            metadata_json=decision.metadata,
        )
    )
    await session.flush()

    metrics.record_ticket("created")
    logger.info(
        "ticket_created",
        extra={
            "extra": {
                "ticket_id": ticket.id,
                "company_id": company_id,
                "creative_id": ticket.creative_id,
                "cost": effective_cost,
                "assignment": decision.reason.value,
            }
        },
    )
    return TicketCreationResult(ticket=ticket, ledger_entry=ledger_entry, creative=decision.creative)


async def notify_ticket_assigned(session: AsyncSession, ticket: Ticket, actor_id: str | None):
    if not ticket.creative_id:
        return None
    return await notifications_service.create_notification(
        session,
        user_id=ticket.creative_id,
        notification_type=NotificationType.TICKET_ASSIGNED,
        title="New ticket assigned",
        message=f'You have been assigned "{ticket.title}".',
        ticket_id=ticket.id,
        actor_id=actor_id,
    )


async def list_company_tickets(session: AsyncSession, company_id: str) -> list[TicketResponse]:
    stmt = _ticket_detail_query().where(Ticket.company_id == company_id).order_by(Ticket.created_at.desc())
    return await _fetch_responses(session, stmt)


async def get_company_ticket(session: AsyncSession, company_id: str, ticket_id: str) -> TicketResponse:
    stmt = _ticket_detail_query().where(Ticket.id == ticket_id, Ticket.company_id == company_id)
    responses = await _fetch_responses(session, stmt)
    if not responses:
        raise NotFoundError(detail="Ticket not found for this company")
    return responses[0]


async def list_creative_tickets(session: AsyncSession, creative_id: str) -> CreativeTicketListResponse:
    stmt = _ticket_detail_query().where(Ticket.creative_id == creative_id).order_by(Ticket.created_at.desc())
    tickets = await _fetch_responses(session, stmt)
    stats = {status_.value: 0 for status_ in TicketStatus}
    for ticket in tickets:
        stats[ticket.status.value] += 1
    stats["total"] = len(tickets)
    return CreativeTicketListResponse(tickets=tickets, stats=stats)


async def get_creative_ticket(session: AsyncSession, creative_id: str, ticket_id: str) -> TicketResponse:
    stmt = _ticket_detail_query().where(Ticket.id == ticket_id, Ticket.creative_id == creative_id)
    responses = await _fetch_responses(session, stmt)
    if not responses:
        raise NotFoundError(detail="Ticket not found")
    return responses[0]


async def admin_update_ticket(
    session: AsyncSession, *, admin_id: str, ticket_id: str, payload: AdminTicketUpdateRequest
) -> AdminTicketUpdateResult:
    """Reassign a ticket or change its token overrides.

    A new cost override settles the difference with the company straight away:
    a higher cost debits the company and a lower one credits it back, both as
    ADMIN_ADJUSTMENT entries tied to the ticket.
    """
    ticket = await session.scalar(select(Ticket).where(Ticket.id == ticket_id).with_for_update())
    if ticket is None:
        raise NotFoundError(detail="Ticket not found")
    changes = payload.model_dump(exclude_unset=True)
    if not changes:
        raise DomainError(detail="No changes provided")

    notification = None
    if "creative_id" in changes and changes["creative_id"] != ticket.creative_id:
        creative_id = changes["creative_id"]
        if creative_id is not None:
            creative = await session.get(UserAccount, creative_id)
            if creative is None or not is_creative_role(creative.role):
                raise DomainError(detail="Creative not found")
        ticket.creative_id = creative_id
        await session.flush()
        notification = await notify_ticket_assigned(session, ticket, admin_id)

    if "token_cost_override" in changes:
        new_override = changes["token_cost_override"]
        job_type = await session.get(JobType, ticket.job_type_id) if ticket.job_type_id else None
        old_values = ledger_service.get_effective_token_values(
            quantity=ticket.quantity,
            token_cost_override=ticket.token_cost_override,
            creative_payout_override=ticket.creative_payout_override,
            job_type=job_type,
        )
        new_values = ledger_service.get_effective_token_values(
            quantity=ticket.quantity,
            token_cost_override=new_override,
            creative_payout_override=ticket.creative_payout_override,
            job_type=job_type,
        )
        delta = new_values.effective_cost - old_values.effective_cost
        if job_type is not None and delta != 0:
            await ledger_service.apply_company_ledger_entry(
                session,
                company_id=ticket.company_id,
                amount=abs(delta),
                direction=LedgerDirection.DEBIT if delta > 0 else LedgerDirection.CREDIT,
                reason=LedgerReason.ADMIN_ADJUSTMENT,
                ticket_id=ticket.id,
                notes=f"Admin token cost override: {old_values.effective_cost} -> {new_values.effective_cost}",
                metadata={
                    "adminUserId": admin_id,
                    "oldEffectiveCost": old_values.effective_cost,
                    "newEffectiveCost": new_values.effective_cost,
                    "oldOverride": ticket.token_cost_override,
                    "newOverride": new_override,
                },
            )
        ticket.token_cost_override = new_override

    if "creative_payout_override" in changes:
        ticket.creative_payout_override = changes["creative_payout_override"]

    await session.flush()
    logger.info(
        "ticket_admin_updated",
        extra={"extra": {"ticket_id": ticket.id, "admin_id": admin_id, "fields": sorted(changes)}},
    )
    return AdminTicketUpdateResult(ticket=ticket, notification=notification)


async def _company_ticket_for_update(session: AsyncSession, company_id: str | None, ticket_id: str) -> Ticket:
    ticket = await session.scalar(
        select(Ticket).where(Ticket.id == ticket_id, Ticket.company_id == company_id).with_for_update()
    )
    if ticket is None:
        raise NotFoundError(detail="Ticket not found for this company")
    return ticket


async def _creative_ticket_for_update(session: AsyncSession, creative_id: str, ticket_id: str) -> Ticket:
    ticket = await session.scalar(
        select(Ticket).where(Ticket.id == ticket_id, Ticket.creative_id == creative_id).with_for_update()
    )
    if ticket is None:
        raise NotFoundError(detail="Ticket not found")
    return ticket


async def update_status_by_customer(
    session: AsyncSession, *, identity: Identity, ticket_id: str, status: TicketStatus
) -> Ticket:
    if is_billing_read_only(identity.company_role) or not can_move_tickets_on_board(identity.company_role):
        raise ForbiddenError(detail="Your company role does not allow changing ticket status")
    ticket = await _company_ticket_for_update(session, identity.company_id, ticket_id)
    target = TicketStatus(status)

    if target == TicketStatus.DONE:
        if not can_mark_tickets_done_for_company(identity.role, identity.company_role):
            raise ForbiddenError(detail="Only company owners or project managers can mark tickets as done")
        result = await ledger_service.complete_ticket_and_apply_tokens(session, ticket.id)
        if not result.already_completed:
            metrics.record_ticket("completed")
            await _notify_completion(session, result.ticket, identity.user_id)
        return result.ticket

    if ticket.status == TicketStatus.DONE.value:
        raise ConflictError(detail="Completed tickets cannot be moved back")

    previous = ticket.status
    ticket.status = target.value
    await session.flush()
    if previous != ticket.status:
        metrics.record_ticket("status_changed")
        if ticket.creative_id:
            await notifications_service.create_notification(
                session,
                user_id=ticket.creative_id,
                notification_type=NotificationType.TICKET_STATUS_CHANGED,
                title="Ticket status updated",
                message=f'"{ticket.title}" moved to {ticket.status}.',
                ticket_id=ticket.id,
                actor_id=identity.user_id,
            )
    logger.info(
        "ticket_status_changed",
        extra={"extra": {"ticket_id": ticket.id, "from": previous, "to": ticket.status, "actor": "customer"}},
    )
    return ticket


async def update_status_by_creative(
    session: AsyncSession, *, creative_id: str, ticket_id: str, status: TicketStatus
) -> Ticket:
    target = TicketStatus(status)
    if target == TicketStatus.DONE:
        raise ForbiddenError(detail="Creatives cannot mark tickets as done")
    if target == TicketStatus.IN_REVIEW:
        raise DomainError(detail="Submit a revision to send a ticket for review")
    ticket = await _creative_ticket_for_update(session, creative_id, ticket_id)
    if ticket.status not in CREATIVE_MOVABLE_STATUSES:
        raise ConflictError(detail=f"Ticket cannot be moved while {ticket.status}")

    previous = ticket.status
    ticket.status = target.value
    await session.flush()
    if previous != ticket.status:
        metrics.record_ticket("status_changed")
        await notifications_service.create_notification(
            session,
            user_id=ticket.created_by_id,
            notification_type=NotificationType.TICKET_STATUS_CHANGED,
            title="Ticket status updated",
            message=f'"{ticket.title}" moved to {ticket.status}.',
            ticket_id=ticket.id,
            actor_id=creative_id,
        )
    logger.info(
        "ticket_status_changed",
        extra={"extra": {"ticket_id": ticket.id, "from": previous, "to": ticket.status, "actor": "creative"}},
    )
    return ticket


async def submit_revision(
    session: AsyncSession,
    *,
    creative_id: str,
    ticket_id: str,
    message: str | None = None,
    now: datetime | None = None,
) -> TicketRevision:
    now = now or utcnow()
    ticket = await _creative_ticket_for_update(session, creative_id, ticket_id)
    if ticket.status not in CREATIVE_MOVABLE_STATUSES:
        raise ConflictError(detail="Revisions can only be submitted for tickets in TODO or IN_PROGRESS")

    version = (ticket.revision_count or 0) + 1
    revision = TicketRevision(
        ticket_id=ticket.id,
        version=version,
        submitted_by_creative_id=creative_id,
        submitted_at=now,
        creative_message=(message or "").strip() or None,
    )
    session.add(revision)
    ticket.revision_count = version
    ticket.status = TicketStatus.IN_REVIEW.value
    await session.flush()

    metrics.record_ticket("revision_submitted")
    await notifications_service.create_notification(
        session,
        user_id=ticket.created_by_id,
        notification_type=NotificationType.REVISION_SUBMITTED,
        title=ticket.title,
        message=f'Version {version} of "{ticket.title}" is ready for review.',
        ticket_id=ticket.id,
        actor_id=creative_id,
    )
    logger.info("ticket_revision_submitted", extra={"extra": {"ticket_id": ticket.id, "version": version}})
    return revision


async def request_changes(
    session: AsyncSession,
    *,
    identity: Identity,
    ticket_id: str,
    message: str,
    now: datetime | None = None,
) -> TicketRevision:
    now = now or utcnow()
    if not can_edit_tickets(identity.company_role):
        raise ForbiddenError(detail="Your company role does not allow requesting changes")
    feedback = (message or "").strip()
    if not feedback:
        raise DomainError(detail="Feedback message is required")
    ticket = await _company_ticket_for_update(session, identity.company_id, ticket_id)
    if ticket.status != TicketStatus.IN_REVIEW.value:
        raise ConflictError(detail="Changes can only be requested while the ticket is in review")

    revision = await session.scalar(
        select(TicketRevision)
        .where(TicketRevision.ticket_id == ticket.id)
        .order_by(TicketRevision.version.desc())
        .limit(1)
    )
    if revision is None:
        raise DomainError(detail="Ticket has no revision to review")

    revision.feedback_message = feedback
    revision.feedback_by_customer_id = identity.user_id
    revision.feedback_at = now
    ticket.status = TicketStatus.IN_PROGRESS.value
    await session.flush()

    metrics.record_ticket("changes_requested")
    if ticket.creative_id:
        await notifications_service.create_notification(
            session,
            user_id=ticket.creative_id,
            notification_type=NotificationType.FEEDBACK_SUBMITTED,
            title=ticket.title,
            message=f'Changes were requested on version {revision.version} of "{ticket.title}".',
            ticket_id=ticket.id,
            actor_id=identity.user_id,
        )
    logger.info(
        "ticket_changes_requested",
        extra={"extra": {"ticket_id": ticket.id, "version": revision.version}},
    )
    return revision


async def list_revisions(session: AsyncSession, ticket_id: str) -> list[TicketRevision]:
    result = await session.execute(
        select(TicketRevision).where(TicketRevision.ticket_id == ticket_id).order_by(TicketRevision.version)
    )
    return list(result.scalars())


async def _notify_completion(session: AsyncSession, ticket: Ticket, actor_id: str) -> list:
    notifications = []
    recipients = [ticket.creative_id, ticket.created_by_id]
    for user_id in dict.fromkeys(recipient for recipient in recipients if recipient):
        if user_id == actor_id:
            continue
        notification = await notifications_service.create_notification(
            session,
            user_id=user_id,
            notification_type=NotificationType.TICKET_COMPLETED,
            title=ticket.title,
            message=f'"{ticket.title}" has been marked as complete.',
            ticket_id=ticket.id,
            actor_id=actor_id,
        )
        if notification is not None:
            notifications.append(notification)
    return notifications


async def complete_ticket(
    session: AsyncSession, *, identity: Identity, ticket_id: str
) -> TicketCompletionResult:
    if not can_mark_tickets_done_for_company(identity.role, identity.company_role):
        raise ForbiddenError(detail="You are not allowed to complete tickets")
    ticket = await session.get(Ticket, ticket_id)
    if ticket is None:
        raise NotFoundError(detail="Ticket not found")
    if not is_site_admin_role(identity.role) and ticket.company_id != identity.company_id:
        raise ForbiddenError(detail="You can only complete tickets of your own company")
    if ticket.status == TicketStatus.DONE.value:
        raise ConflictError(detail="Ticket is already completed")

    result = await ledger_service.complete_ticket_and_apply_tokens(session, ticket.id)
    if result.already_completed:
        raise ConflictError(detail="Ticket is already completed")

    metrics.record_ticket("completed")
    await _notify_completion(session, result.ticket, identity.user_id)
    return result


async def _ticket_for_identity(session: AsyncSession, identity: Identity, ticket_id: str) -> Ticket:
    ticket = await session.get(Ticket, ticket_id)
    allowed = False
    if ticket is not None:
        if is_site_admin_role(identity.role):
            allowed = True
        elif is_customer_role(identity.role):
            allowed = identity.company_id is not None and ticket.company_id == identity.company_id
        elif is_creative_role(identity.role):
            allowed = ticket.creative_id == identity.user_id
    if not allowed:
        raise NotFoundError(detail="Ticket not found")
    return ticket


async def add_comment(
    session: AsyncSession, *, identity: Identity, ticket_id: str, body: str
) -> TicketComment:
    text = (body or "").strip()
    if not text:
        raise DomainError(detail="Comment body is required")
    if len(text) > COMMENT_MAX_LENGTH:
        raise DomainError(detail=f"Comment must be at most {COMMENT_MAX_LENGTH} characters")
    ticket = await _ticket_for_identity(session, identity, ticket_id)
    comment = TicketComment(ticket_id=ticket.id, author_id=identity.user_id, body=text)
    session.add(comment)
    await session.flush()
    logger.info("ticket_comment_added", extra={"extra": {"ticket_id": ticket.id, "comment_id": comment.id}})
    return comment


async def list_comments(session: AsyncSession, *, identity: Identity, ticket_id: str) -> list[TicketComment]:
    ticket = await _ticket_for_identity(session, identity, ticket_id)
    result = await session.execute(
        select(TicketComment).where(TicketComment.ticket_id == ticket.id).order_by(TicketComment.created_at)
    )
    return list(result.scalars())


async def list_completed_jobs(session: AsyncSession, limit: int = 100) -> list[CompletedJobResponse]:
    creative = aliased(UserAccount)
    payout_exists = (
        select(TokenLedger.id)
        .where(TokenLedger.ticket_id == Ticket.id, TokenLedger.reason == LedgerReason.JOB_PAYMENT.value)
        .correlate(Ticket)
        .exists()
    )
    result = await session.execute(
        select(Ticket, Company, Project, JobType, creative, payout_exists)
        .join(Company, Company.id == Ticket.company_id)
        .outerjoin(Project, Project.id == Ticket.project_id)
        .outerjoin(JobType, JobType.id == Ticket.job_type_id)
        .outerjoin(creative, creative.id == Ticket.creative_id)
        .where(Ticket.status == TicketStatus.DONE.value)
        .order_by(Ticket.completed_at.desc())
        .limit(limit)
    )
    jobs = []
    for ticket, company, project, job_type, creative_user, has_payout in result.all():
        values = ledger_service.get_effective_token_values(
            quantity=ticket.quantity,
            token_cost_override=ticket.token_cost_override,
            creative_payout_override=ticket.creative_payout_override,
            job_type=job_type,
        )
        jobs.append(
            CompletedJobResponse(
                ticket_id=ticket.id,
                code=build_ticket_code(project.code if project else None, ticket.company_ticket_number, ticket.id),
                title=ticket.title,
                completed_at=ticket.completed_at,
                company_id=company.id,
                company_name=company.name,
                project_name=project.name if project else None,
                creative_id=ticket.creative_id,
                creative_name=(creative_user.name or creative_user.email) if creative_user else None,
                job_type_name=job_type.name if job_type else None,
                effective_payout=values.effective_payout,
                has_payout_entry=bool(has_payout),
            )
        )
    return jobs
