import pytest
import sqlalchemy as sa

from brandbite.domain.errors import DomainError, InsufficientTokensError
from brandbite.domain.ledger import service as ledger_service
from brandbite.domain.ledger.db_models import TokenLedger
from brandbite.domain.ledger.schemas import LedgerDirection, LedgerReason
from brandbite.domain.roles import UserRole
from tests.helpers import auth_headers, create_company, create_job_type, create_user


def test_compute_signed_amount():
    assert ledger_service.compute_signed_amount(5, LedgerDirection.CREDIT) == 5
    assert ledger_service.compute_signed_amount(5, "DEBIT") == -5
    with pytest.raises(DomainError):
        ledger_service.compute_signed_amount(0, LedgerDirection.CREDIT)
    with pytest.raises(DomainError):
        ledger_service.compute_signed_amount(-3, LedgerDirection.DEBIT)


@pytest.mark.anyio
async def test_effective_token_values(async_session_maker):
    async with async_session_maker() as session:
        job_type = await create_job_type(session, token_cost=10, creative_payout_tokens=6)

        values = ledger_service.get_effective_token_values(
            quantity=3, token_cost_override=None, creative_payout_override=None, job_type=job_type
        )
        assert (values.effective_cost, values.effective_payout, values.is_overridden) == (30, 18, False)

        overridden = ledger_service.get_effective_token_values(
            quantity=3, token_cost_override=0, creative_payout_override=None, job_type=job_type
        )
        assert overridden.effective_cost == 0
        assert overridden.effective_payout == 18
        assert overridden.is_overridden is True

        missing = ledger_service.get_effective_token_values(
            quantity=2, token_cost_override=None, creative_payout_override=None, job_type=None
        )
        assert (missing.effective_cost, missing.effective_payout) == (0, 0)


@pytest.mark.anyio
async def test_company_entries_track_balance(async_session_maker):
    async with async_session_maker() as session:
        company = await create_company(session, token_balance=50)
        credit = await ledger_service.apply_company_ledger_entry(
            session,
            company_id=company.id,
            amount=25,
            direction=LedgerDirection.CREDIT,
            reason=LedgerReason.ADMIN_ADJUSTMENT,
        )
        debit = await ledger_service.apply_company_ledger_entry(
            session,
            company_id=company.id,
            amount=60,
            direction=LedgerDirection.DEBIT,
            reason=LedgerReason.JOB_REQUEST_CREATED,
        )
        await session.commit()

        assert (credit.entry.balance_before, credit.entry.balance_after) == (50, 75)
        assert (debit.entry.balance_before, debit.entry.balance_after) == (75, 15)
        assert debit.entry.user_id is None
        assert company.token_balance == 15


@pytest.mark.anyio
async def test_company_debit_rejects_overdraft(async_session_maker):
    async with async_session_maker() as session:
        company = await create_company(session, token_balance=5)
        with pytest.raises(InsufficientTokensError):
            await ledger_service.apply_company_ledger_entry(
                session,
                company_id=company.id,
                amount=6,
                direction=LedgerDirection.DEBIT,
                reason=LedgerReason.JOB_REQUEST_CREATED,
            )
        result = await ledger_service.apply_company_ledger_entry(
            session,
            company_id=company.id,
            amount=6,
            direction=LedgerDirection.DEBIT,
            reason=LedgerReason.ADMIN_ADJUSTMENT,
            allow_negative=True,
        )
        assert result.balance_after == -1


@pytest.mark.anyio
async def test_user_balance_is_ledger_sum(async_session_maker):
    async with async_session_maker() as session:
        creative = await create_user(session, UserRole.DESIGNER)
        await ledger_service.apply_user_ledger_entry(
            session,
            user_id=creative.id,
            amount=40,
            direction=LedgerDirection.CREDIT,
            reason=LedgerReason.JOB_PAYMENT,
        )
        await ledger_service.apply_user_ledger_entry(
            session,
            user_id=creative.id,
            amount=15,
            direction=LedgerDirection.DEBIT,
            reason=LedgerReason.WITHDRAW,
        )
        assert await ledger_service.get_user_token_balance(session, creative.id) == 25
        with pytest.raises(InsufficientTokensError):
            await ledger_service.apply_user_ledger_entry(
                session,
                user_id=creative.id,
                amount=26,
                direction=LedgerDirection.DEBIT,
                reason=LedgerReason.WITHDRAW,
            )


@pytest.mark.anyio
async def test_recalculate_company_balance_ignores_creative_rows(async_session_maker):
    async with async_session_maker() as session:
        company = await create_company(session, token_balance=0)
        creative = await create_user(session, UserRole.DESIGNER)
        await ledger_service.apply_company_ledger_entry(
            session,
            company_id=company.id,
            amount=100,
            direction=LedgerDirection.CREDIT,
            reason=LedgerReason.SUBSCRIPTION_INITIAL_CREDIT,
        )
        await ledger_service.apply_company_ledger_entry(
            session,
            company_id=company.id,
            amount=30,
            direction=LedgerDirection.DEBIT,
            reason=LedgerReason.JOB_REQUEST_CREATED,
        )
        await ledger_service.apply_user_ledger_entry(
            session,
            user_id=creative.id,
            company_id=company.id,
            amount=20,
            direction=LedgerDirection.CREDIT,
            reason=LedgerReason.JOB_PAYMENT,
        )
        company.token_balance = 999
        await session.flush()

        balance = await ledger_service.recalculate_company_token_balance(session, company.id)
        assert balance == 70
        assert company.token_balance == 70


@pytest.mark.anyio
async def test_customer_tokens_endpoint(async_session_maker, client):
    async with async_session_maker() as session:
        owner = await create_user(session)
        company = await create_company(session, owner, token_balance=0)
        await ledger_service.apply_company_ledger_entry(
            session,
            company_id=company.id,
            amount=40,
            direction=LedgerDirection.CREDIT,
            reason=LedgerReason.SUBSCRIPTION_INITIAL_CREDIT,
            metadata={"planId": "starter"},
        )
        await session.commit()

    response = client.get("/v1/customer/tokens", headers=auth_headers(owner))
    assert response.status_code == 200
    payload = response.json()
    assert payload["token_balance"] == 40
    assert len(payload["ledger"]) == 1
    assert payload["ledger"][0]["reason"] == "SUBSCRIPTION_INITIAL_CREDIT"
    assert payload["ledger"][0]["metadata"] == {"planId": "starter"}


@pytest.mark.anyio
async def test_admin_ledger_adjustment(async_session_maker, client):
    async with async_session_maker() as session:
        admin = await create_user(session, UserRole.SITE_ADMIN)
        company = await create_company(session, token_balance=10)
        await session.commit()

    response = client.post(
        "/v1/admin/ledger/adjustments",
        headers=auth_headers(admin),
        json={"company_id": company.id, "direction": "CREDIT", "amount": 15, "notes": "Goodwill"},
    )
    assert response.status_code == 201
    payload = response.json()
    assert payload["company_balance"] == 25
    assert payload["entry"]["reason"] == "ADMIN_ADJUSTMENT"
    assert payload["entry"]["metadata"]["adminUserId"] == admin.id

    overdraft = client.post(
        "/v1/admin/ledger/adjustments",
        headers=auth_headers(admin),
        json={"company_id": company.id, "direction": "DEBIT", "amount": 100, "notes": "Correction"},
    )
    assert overdraft.status_code == 400

    async with async_session_maker() as session:
        count = await session.scalar(
            sa.select(sa.func.count()).select_from(TokenLedger).where(TokenLedger.company_id == company.id)
        )
        assert count == 1


@pytest.mark.anyio
async def test_admin_recalculate_balance(async_session_maker, client):
    async with async_session_maker() as session:
        admin = await create_user(session, UserRole.SITE_OWNER)
        company = await create_company(session, token_balance=0)
        await ledger_service.apply_company_ledger_entry(
            session,
            company_id=company.id,
            amount=12,
            direction=LedgerDirection.CREDIT,
            reason=LedgerReason.ADMIN_ADJUSTMENT,
        )
        company.token_balance = 3
        await session.commit()

    response = client.post(f"/v1/admin/companies/{company.id}/recalculate-balance", headers=auth_headers(admin))
    assert response.status_code == 200
    assert response.json() == {"company_id": company.id, "token_balance": 12}
