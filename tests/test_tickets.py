from datetime import date, datetime, timedelta, timezone

import pytest
import sqlalchemy as sa

from brandbite.domain.errors import ConflictError, DomainError, ForbiddenError, InsufficientTokensError
from brandbite.domain.ledger.db_models import TokenLedger
from brandbite.domain.roles import CompanyRole, UserRole
from brandbite.domain.tickets import service as tickets_service
from brandbite.domain.tickets.db_models import Ticket, TicketAssignmentLog
from brandbite.domain.tickets.schemas import TicketCreateRequest, TicketStatus
from tests.helpers import (
    add_member,
    auth_headers,
    create_company,
    create_job_type,
    create_project,
    create_user,
    identity_for,
)


@pytest.mark.anyio
async def test_create_ticket_debits_company_and_numbers_from_101(async_session_maker):
    async with async_session_maker() as session:
        owner = await create_user(session)
        company = await create_company(session, owner, token_balance=100)
        job_type = await create_job_type(session, token_cost=10)

        first = await tickets_service.create_ticket(
            session,
            company_id=company.id,
            created_by_id=owner.id,
            payload=TicketCreateRequest(title="Logo", job_type_id=job_type.id, quantity=3),
        )
        second = await tickets_service.create_ticket(
            session,
            company_id=company.id,
            created_by_id=owner.id,
            payload=TicketCreateRequest(title="Banner", job_type_id=job_type.id),
        )
        await session.commit()

        assert first.ticket.company_ticket_number == 101
        assert second.ticket.company_ticket_number == 102
        assert first.ticket.quantity == 3
        assert first.ledger_entry.amount == 30
        assert first.ledger_entry.reason == "JOB_REQUEST_CREATED"
        assert first.ledger_entry.metadata_json["unitCost"] == 10
        assert company.token_balance == 60


@pytest.mark.anyio
async def test_create_ticket_normalizes_input(async_session_maker):
    async with async_session_maker() as session:
        owner = await create_user(session)
        company = await create_company(session, owner, token_balance=1000)
        job_type = await create_job_type(session, token_cost=1)

        result = await tickets_service.create_ticket(
            session,
            company_id=company.id,
            created_by_id=owner.id,
            payload=TicketCreateRequest(
                title="  Poster  ", job_type_id=job_type.id, quantity=50, priority="urgent"
            ),
        )
        assert result.ticket.title == "Poster"
        assert result.ticket.quantity == 10
        assert result.ticket.priority == "URGENT"

        fallback = await tickets_service.create_ticket(
            session,
            company_id=company.id,
            created_by_id=owner.id,
            payload=TicketCreateRequest(title="Flyer", priority="whenever", quantity=0),
        )
        assert fallback.ticket.priority == "MEDIUM"
        assert fallback.ticket.quantity == 1
        assert fallback.ledger_entry is None

        with pytest.raises(DomainError):
            await tickets_service.create_ticket(
                session,
                company_id=company.id,
                created_by_id=owner.id,
                payload=TicketCreateRequest(title="   "),
            )
        with pytest.raises(DomainError):
            await tickets_service.create_ticket(
                session,
                company_id=company.id,
                created_by_id=owner.id,
                payload=TicketCreateRequest(title="Late", due_date=date.today() - timedelta(days=2)),
            )


@pytest.mark.anyio
async def test_create_ticket_insufficient_tokens_writes_nothing(async_session_maker):
    async with async_session_maker() as session:
        owner = await create_user(session)
        company = await create_company(session, owner, token_balance=5)
        job_type = await create_job_type(session, token_cost=10)
        await session.commit()

        with pytest.raises(InsufficientTokensError):
            await tickets_service.create_ticket(
                session,
                company_id=company.id,
                created_by_id=owner.id,
                payload=TicketCreateRequest(title="Logo", job_type_id=job_type.id),
            )
        await session.rollback()

        tickets = await session.scalar(sa.select(sa.func.count()).select_from(Ticket))
        entries = await session.scalar(sa.select(sa.func.count()).select_from(TokenLedger))
        assert tickets == 0
        assert entries == 0


@pytest.mark.anyio
async def test_auto_assign_picks_least_loaded_unpaused_designer(async_session_maker):
    base = datetime(2024, 1, 1, tzinfo=timezone.utc)
    async with async_session_maker() as session:
        owner = await create_user(session)
        company = await create_company(session, owner, token_balance=1000)
        job_type = await create_job_type(session, token_cost=5)
        busy = await create_user(session, UserRole.DESIGNER, created_at=base)
        idle = await create_user(session, UserRole.DESIGNER, created_at=base + timedelta(minutes=1))
        paused = await create_user(session, UserRole.DESIGNER, created_at=base - timedelta(minutes=1))
        paused.is_paused = True
        session.add(
            Ticket(
                title="Existing",
                status="IN_PROGRESS",
                priority="HIGH",
                company_id=company.id,
                created_by_id=owner.id,
                creative_id=busy.id,
                job_type_id=job_type.id,
                company_ticket_number=101,
                quantity=1,
            )
        )
        await session.flush()

        result = await tickets_service.create_ticket(
            session,
            company_id=company.id,
            created_by_id=owner.id,
            payload=TicketCreateRequest(title="New", job_type_id=job_type.id),
        )
        assert result.ticket.creative_id == idle.id
        assert result.ticket.company_ticket_number == 102

        log = await session.scalar(
            sa.select(TicketAssignmentLog).where(TicketAssignmentLog.ticket_id == result.ticket.id)
        )
        assert log.reason == "AUTO_ASSIGN"
        assert log.creative_id == idle.id


@pytest.mark.anyio
async def test_auto_assign_prefers_skilled_designers(async_session_maker):
    base = datetime(2024, 1, 1, tzinfo=timezone.utc)
    async with async_session_maker() as session:
        owner = await create_user(session)
        company = await create_company(session, owner, token_balance=100)
        job_type = await create_job_type(session, token_cost=5)
        await create_user(session, UserRole.DESIGNER, created_at=base)
        skilled = await create_user(session, UserRole.DESIGNER, created_at=base + timedelta(minutes=5))
        from brandbite.domain.creatives import service as creatives_service

        await creatives_service.set_skills(session, skilled.id, [job_type.id])

        result = await tickets_service.create_ticket(
            session,
            company_id=company.id,
            created_by_id=owner.id,
            payload=TicketCreateRequest(title="Skilled", job_type_id=job_type.id),
        )
        assert result.ticket.creative_id == skilled.id


@pytest.mark.anyio
async def test_auto_assign_respects_company_and_project_settings(async_session_maker):
    async with async_session_maker() as session:
        owner = await create_user(session)
        company = await create_company(session, owner, token_balance=100, auto_assign_default_enabled=False)
        designer = await create_user(session, UserRole.DESIGNER)
        forced = await create_project(session, company, name="Campaign", code="CAM", auto_assign_mode="ON")

        disabled = await tickets_service.create_ticket(
            session,
            company_id=company.id,
            created_by_id=owner.id,
            payload=TicketCreateRequest(title="Unassigned"),
        )
        assert disabled.ticket.creative_id is None
        log = await session.scalar(
            sa.select(TicketAssignmentLog).where(TicketAssignmentLog.ticket_id == disabled.ticket.id)
        )
        assert log.reason == "FALLBACK"
        assert log.metadata_json == {"fallbackMode": "settings_disabled"}

        project_on = await tickets_service.create_ticket(
            session,
            company_id=company.id,
            created_by_id=owner.id,
            payload=TicketCreateRequest(title="Assigned", project_id=forced.id),
        )
        assert project_on.ticket.creative_id == designer.id


@pytest.mark.anyio
async def test_auto_assign_without_designers_falls_back(async_session_maker):
    async with async_session_maker() as session:
        owner = await create_user(session)
        company = await create_company(session, owner)
        result = await tickets_service.create_ticket(
            session,
            company_id=company.id,
            created_by_id=owner.id,
            payload=TicketCreateRequest(title="Nobody"),
        )
        log = await session.scalar(
            sa.select(TicketAssignmentLog).where(TicketAssignmentLog.ticket_id == result.ticket.id)
        )
        assert result.ticket.creative_id is None
        assert log.metadata_json == {"fallbackMode": "no_designers"}


async def _ticket_with_designer(session, *, token_balance=100, token_cost=10, payout=6):
    owner = await create_user(session)
    company = await create_company(session, owner, token_balance=token_balance)
    designer = await create_user(session, UserRole.DESIGNER)
    job_type = await create_job_type(session, token_cost=token_cost, creative_payout_tokens=payout)
    result = await tickets_service.create_ticket(
        session,
        company_id=company.id,
        created_by_id=owner.id,
        payload=TicketCreateRequest(title="Brand kit", job_type_id=job_type.id),
    )
    return owner, company, designer, result.ticket


@pytest.mark.anyio
async def test_customer_status_rules(async_session_maker):
    async with async_session_maker() as session:
        owner, company, designer, ticket = await _ticket_with_designer(session)
        member = await create_user(session)
        await add_member(session, company, member, CompanyRole.MEMBER)
        billing = await create_user(session)
        await add_member(session, company, billing, CompanyRole.BILLING)

        member_identity = identity_for(member, company, CompanyRole.MEMBER)
        moved = await tickets_service.update_status_by_customer(
            session, identity=member_identity, ticket_id=ticket.id, status=TicketStatus.IN_PROGRESS
        )
        assert moved.status == "IN_PROGRESS"

        with pytest.raises(ForbiddenError):
            await tickets_service.update_status_by_customer(
                session, identity=member_identity, ticket_id=ticket.id, status=TicketStatus.DONE
            )
        with pytest.raises(ForbiddenError):
            await tickets_service.update_status_by_customer(
                session,
                identity=identity_for(billing, company, CompanyRole.BILLING),
                ticket_id=ticket.id,
                status=TicketStatus.TODO,
            )

        owner_identity = identity_for(owner, company, CompanyRole.OWNER)
        done = await tickets_service.update_status_by_customer(
            session, identity=owner_identity, ticket_id=ticket.id, status=TicketStatus.DONE
        )
        assert done.status == "DONE"
        assert done.completed_at is not None

        with pytest.raises(ConflictError):
            await tickets_service.update_status_by_customer(
                session, identity=owner_identity, ticket_id=ticket.id, status=TicketStatus.IN_PROGRESS
            )


@pytest.mark.anyio
async def test_creative_status_rules(async_session_maker):
    async with async_session_maker() as session:
        _, _, designer, ticket = await _ticket_with_designer(session)

        with pytest.raises(ForbiddenError):
            await tickets_service.update_status_by_creative(
                session, creative_id=designer.id, ticket_id=ticket.id, status=TicketStatus.DONE
            )
        with pytest.raises(DomainError):
            await tickets_service.update_status_by_creative(
                session, creative_id=designer.id, ticket_id=ticket.id, status=TicketStatus.IN_REVIEW
            )

        moved = await tickets_service.update_status_by_creative(
            session, creative_id=designer.id, ticket_id=ticket.id, status=TicketStatus.IN_PROGRESS
        )
        assert moved.status == "IN_PROGRESS"

        revision = await tickets_service.submit_revision(
            session, creative_id=designer.id, ticket_id=ticket.id, message="First draft"
        )
        assert revision.version == 1
        assert ticket.status == "IN_REVIEW"
        assert ticket.revision_count == 1

        with pytest.raises(ConflictError):
            await tickets_service.update_status_by_creative(
                session, creative_id=designer.id, ticket_id=ticket.id, status=TicketStatus.TODO
            )


@pytest.mark.anyio
async def test_request_changes_returns_ticket_to_progress(async_session_maker):
    async with async_session_maker() as session:
        owner, company, designer, ticket = await _ticket_with_designer(session)
        identity = identity_for(owner, company, CompanyRole.OWNER)

        with pytest.raises(DomainError):
            await tickets_service.request_changes(
                session, identity=identity, ticket_id=ticket.id, message="Too early"
            )

        await tickets_service.submit_revision(session, creative_id=designer.id, ticket_id=ticket.id)
        revision = await tickets_service.request_changes(
            session, identity=identity, ticket_id=ticket.id, message="Bigger logo please"
        )
        assert revision.feedback_message == "Bigger logo please"
        assert revision.feedback_by_customer_id == owner.id
        assert ticket.status == "IN_PROGRESS"

        second = await tickets_service.submit_revision(
            session, creative_id=designer.id, ticket_id=ticket.id, message="Second draft"
        )
        assert second.version == 2
        revisions = await tickets_service.list_revisions(session, ticket.id)
        assert [item.version for item in revisions] == [1, 2]


@pytest.mark.anyio
async def test_comments_validation_and_access(async_session_maker):
    async with async_session_maker() as session:
        owner, company, designer, ticket = await _ticket_with_designer(session)
        outsider = await create_user(session, UserRole.DESIGNER)
        owner_identity = identity_for(owner, company, CompanyRole.OWNER)

        comment = await tickets_service.add_comment(
            session, identity=owner_identity, ticket_id=ticket.id, body="  Looks great  "
        )
        assert comment.body == "Looks great"
        await tickets_service.add_comment(
            session, identity=identity_for(designer), ticket_id=ticket.id, body="Thanks!"
        )

        with pytest.raises(DomainError):
            await tickets_service.add_comment(session, identity=owner_identity, ticket_id=ticket.id, body="   ")
        with pytest.raises(DomainError):
            await tickets_service.add_comment(
                session, identity=owner_identity, ticket_id=ticket.id, body="x" * 2001
            )
        with pytest.raises(DomainError) as excinfo:
            await tickets_service.list_comments(session, identity=identity_for(outsider), ticket_id=ticket.id)
        assert excinfo.value.status_code == 404

        comments = await tickets_service.list_comments(session, identity=owner_identity, ticket_id=ticket.id)
        assert [item.body for item in comments] == ["Looks great", "Thanks!"]


@pytest.mark.anyio
async def test_create_ticket_endpoint(async_session_maker, client):
    async with async_session_maker() as session:
        owner = await create_user(session)
        company = await create_company(session, owner, token_balance=50)
        designer = await create_user(session, UserRole.DESIGNER, email="designer@example.com")
        job_type = await create_job_type(session, token_cost=20)
        project = await create_project(session, company, name="Website", code="WEB")
        await session.commit()

    response = client.post(
        "/v1/customer/tickets",
        headers=auth_headers(owner),
        json={"title": "Homepage hero", "job_type_id": job_type.id, "project_id": project.id},
    )
    assert response.status_code == 201
    payload = response.json()
    assert payload["company_balance"] == 30
    assert payload["ticket"]["code"] == "WEB-101"
    assert payload["ticket"]["creative_id"] == designer.id
    assert payload["ticket"]["effective_cost"] == 20
    assert payload["ledger_entry_id"]

    adapter = client.app.state.email_adapter
    assert [message["recipient"] for message in adapter.sent] == ["designer@example.com"]

    listing = client.get("/v1/customer/tickets", headers=auth_headers(owner))
    assert listing.status_code == 200
    assert [item["title"] for item in listing.json()] == ["Homepage hero"]

    broke = client.post(
        "/v1/customer/tickets",
        headers=auth_headers(owner),
        json={"title": "Another", "job_type_id": job_type.id, "quantity": 2},
    )
    assert broke.status_code == 400
    assert broke.json()["title"] == "Insufficient Tokens"


@pytest.mark.anyio
async def test_billing_member_cannot_create_tickets(async_session_maker, client):
    async with async_session_maker() as session:
        owner = await create_user(session)
        company = await create_company(session, owner, token_balance=50)
        billing = await create_user(session)
        await add_member(session, company, billing, CompanyRole.BILLING)
        await session.commit()

    response = client.post("/v1/customer/tickets", headers=auth_headers(billing), json={"title": "Nope"})
    assert response.status_code == 403


@pytest.mark.anyio
async def test_creative_board_endpoints(async_session_maker, client):
    async with async_session_maker() as session:
        owner, company, designer, ticket = await _ticket_with_designer(session)
        await session.commit()

    listing = client.get("/v1/creative/tickets", headers=auth_headers(designer))
    assert listing.status_code == 200
    assert listing.json()["stats"]["TODO"] == 1
    assert listing.json()["stats"]["total"] == 1

    moved = client.patch(
        f"/v1/creative/tickets/{ticket.id}/status",
        headers=auth_headers(designer),
        json={"status": "IN_PROGRESS"},
    )
    assert moved.status_code == 200
    assert moved.json()["status"] == "IN_PROGRESS"

    forbidden = client.patch(
        f"/v1/creative/tickets/{ticket.id}/status",
        headers=auth_headers(designer),
        json={"status": "DONE"},
    )
    assert forbidden.status_code == 403

    revision = client.post(
        f"/v1/creative/tickets/{ticket.id}/revisions",
        headers=auth_headers(designer),
        json={"message": "Ready for review"},
    )
    assert revision.status_code == 201
    assert revision.json()["version"] == 1

    changes = client.post(
        f"/v1/customer/tickets/{ticket.id}/request-changes",
        headers=auth_headers(owner),
        json={"message": "Swap the colours"},
    )
    assert changes.status_code == 200
    assert changes.json()["feedback_message"] == "Swap the colours"

    notifications = client.get("/v1/notifications", headers=auth_headers(designer))
    assert notifications.status_code == 200
    types = {item["type"] for item in notifications.json()["notifications"]}
    assert {"TICKET_ASSIGNED", "FEEDBACK_SUBMITTED"} <= types


@pytest.mark.anyio
async def test_admin_ticket_overrides_reconcile_company_balance(async_session_maker, client):
    async with async_session_maker() as session:
        admin = await create_user(session, UserRole.SITE_ADMIN)
        owner = await create_user(session)
        company = await create_company(session, owner, token_balance=100)
        first_designer = await create_user(session, UserRole.DESIGNER)
        job_type = await create_job_type(session, token_cost=10, creative_payout_tokens=6)
        created = await tickets_service.create_ticket(
            session,
            company_id=company.id,
            created_by_id=owner.id,
            payload=TicketCreateRequest(title="Poster", job_type_id=job_type.id),
        )
        second_designer = await create_user(session, UserRole.DESIGNER, email="second@example.com")
        await session.commit()
    ticket_id = created.ticket.id
    assert created.ticket.creative_id == first_designer.id

    raised = client.patch(
        f"/v1/admin/tickets/{ticket_id}", headers=auth_headers(admin), json={"token_cost_override": 25}
    )
    assert raised.status_code == 200
    assert raised.json()["effective_cost"] == 25
    assert raised.json()["token_cost_override"] == 25

    cleared = client.patch(
        f"/v1/admin/tickets/{ticket_id}", headers=auth_headers(admin), json={"token_cost_override": None}
    )
    assert cleared.json()["effective_cost"] == 10

    async with async_session_maker() as session:
        adjustments = (
            await session.execute(
                sa.select(TokenLedger)
                .where(TokenLedger.ticket_id == ticket_id, TokenLedger.reason == "ADMIN_ADJUSTMENT")
                .order_by(TokenLedger.created_at)
            )
        ).scalars().all()
        assert [(entry.direction, entry.amount) for entry in adjustments] == [("DEBIT", 15), ("CREDIT", 15)]
        assert adjustments[0].metadata_json["adminUserId"] == admin.id
        assert adjustments[0].balance_after == 75
        assert adjustments[1].balance_after == 90

    reassigned = client.patch(
        f"/v1/admin/tickets/{ticket_id}",
        headers=auth_headers(admin),
        json={"creative_id": second_designer.id, "creative_payout_override": 3},
    )
    assert reassigned.status_code == 200
    assert reassigned.json()["creative_id"] == second_designer.id
    assert reassigned.json()["effective_payout"] == 3
    assert client.app.state.email_adapter.sent[-1]["recipient"] == "second@example.com"

    not_creative = client.patch(
        f"/v1/admin/tickets/{ticket_id}", headers=auth_headers(admin), json={"creative_id": owner.id}
    )
    assert not_creative.status_code == 400
    empty = client.patch(f"/v1/admin/tickets/{ticket_id}", headers=auth_headers(admin), json={})
    assert empty.status_code == 400
    negative = client.patch(
        f"/v1/admin/tickets/{ticket_id}", headers=auth_headers(admin), json={"token_cost_override": -1}
    )
    assert negative.status_code == 422
    missing = client.patch("/v1/admin/tickets/nope", headers=auth_headers(admin), json={"creative_payout_override": 1})
    assert missing.status_code == 404
    forbidden = client.patch(
        f"/v1/admin/tickets/{ticket_id}", headers=auth_headers(owner), json={"creative_payout_override": 1}
    )
    assert forbidden.status_code == 403

    completed = client.post(f"/v1/tickets/{ticket_id}/complete", headers=auth_headers(owner))
    assert completed.status_code == 200
    assert completed.json()["payout_tokens"] == 3

    async with async_session_maker() as session:
        refreshed = await session.get(Ticket, ticket_id)
        assert refreshed.creative_payout_override == 3
        payout = await session.scalar(
            sa.select(TokenLedger).where(TokenLedger.ticket_id == ticket_id, TokenLedger.reason == "JOB_PAYMENT")
        )
        assert payout.user_id == second_designer.id
        assert payout.amount == 3
