import pytest

from brandbite.domain.app_settings import service as app_settings_service
from brandbite.domain.errors import DomainError, InsufficientTokensError
from brandbite.domain.ledger import service as ledger_service
from brandbite.domain.ledger.schemas import LedgerDirection, LedgerReason
from brandbite.domain.roles import UserRole
from brandbite.domain.withdrawals import service as withdrawals_service
from tests.helpers import auth_headers, create_user


async def _funded_creative(session, amount: int = 100):
    creative = await create_user(session, UserRole.DESIGNER)
    await ledger_service.apply_user_ledger_entry(
        session,
        user_id=creative.id,
        amount=amount,
        direction=LedgerDirection.CREDIT,
        reason=LedgerReason.JOB_PAYMENT,
    )
    return creative


@pytest.mark.anyio
async def test_withdrawal_request_validation(async_session_maker):
    async with async_session_maker() as session:
        creative = await _funded_creative(session, 50)

        with pytest.raises(DomainError):
            await withdrawals_service.create_withdrawal(session, creative.id, 0)
        with pytest.raises(DomainError) as minimum:
            await withdrawals_service.create_withdrawal(session, creative.id, 10)
        assert "20" in minimum.value.detail
        with pytest.raises(InsufficientTokensError):
            await withdrawals_service.create_withdrawal(session, creative.id, 60)

        withdrawal = await withdrawals_service.create_withdrawal(session, creative.id, 30, notes="  June  ")
        assert withdrawal.status == "PENDING"
        assert withdrawal.notes == "June"
        assert await ledger_service.get_user_token_balance(session, creative.id) == 50


@pytest.mark.anyio
async def test_minimum_follows_app_setting(async_session_maker):
    async with async_session_maker() as session:
        creative = await _funded_creative(session, 50)
        await app_settings_service.update_admin_setting(session, app_settings_service.MIN_WITHDRAWAL_TOKENS, 5)

        withdrawal = await withdrawals_service.create_withdrawal(session, creative.id, 6)
        assert withdrawal.amount_tokens == 6


@pytest.mark.anyio
async def test_withdrawal_lifecycle(async_session_maker):
    async with async_session_maker() as session:
        admin = await create_user(session, UserRole.SITE_ADMIN)
        creative = await _funded_creative(session, 100)
        withdrawal = await withdrawals_service.create_withdrawal(session, creative.id, 40)

        with pytest.raises(DomainError):
            await withdrawals_service.mark_withdrawal_paid(session, withdrawal.id, admin.id)

        approved = await withdrawals_service.approve_withdrawal(session, withdrawal.id, admin.id)
        assert approved.status == "APPROVED"
        assert approved.approved_at is not None
        assert approved.metadata_json["approvedByUserId"] == admin.id
        assert await ledger_service.get_user_token_balance(session, creative.id) == 60

        with pytest.raises(DomainError):
            await withdrawals_service.approve_withdrawal(session, withdrawal.id, admin.id)
        with pytest.raises(DomainError):
            await withdrawals_service.reject_withdrawal(session, withdrawal.id, admin.id)

        paid = await withdrawals_service.mark_withdrawal_paid(session, withdrawal.id, admin.id)
        assert paid.status == "PAID"
        assert paid.paid_at is not None
        assert await ledger_service.get_user_token_balance(session, creative.id) == 60


@pytest.mark.anyio
async def test_reject_keeps_balance(async_session_maker):
    async with async_session_maker() as session:
        admin = await create_user(session, UserRole.SITE_ADMIN)
        creative = await _funded_creative(session, 100)
        withdrawal = await withdrawals_service.create_withdrawal(session, creative.id, 40)

        rejected = await withdrawals_service.reject_withdrawal(session, withdrawal.id, admin.id, "Wrong IBAN")
        assert rejected.status == "REJECTED"
        assert rejected.metadata_json["adminRejectReason"] == "Wrong IBAN"
        assert await ledger_service.get_user_token_balance(session, creative.id) == 100


@pytest.mark.anyio
async def test_approval_rechecks_balance(async_session_maker):
    async with async_session_maker() as session:
        admin = await create_user(session, UserRole.SITE_ADMIN)
        creative = await _funded_creative(session, 50)
        first = await withdrawals_service.create_withdrawal(session, creative.id, 40)
        second = await withdrawals_service.create_withdrawal(session, creative.id, 30)

        await withdrawals_service.approve_withdrawal(session, first.id, admin.id)
        with pytest.raises(InsufficientTokensError):
            await withdrawals_service.approve_withdrawal(session, second.id, admin.id)


@pytest.mark.anyio
async def test_withdrawal_endpoints(async_session_maker, client):
    async with async_session_maker() as session:
        admin = await create_user(session, UserRole.SITE_OWNER)
        creative = await _funded_creative(session, 80)
        await session.commit()

    created = client.post(
        "/v1/creative/withdrawals", headers=auth_headers(creative), json={"amount_tokens": 25}
    )
    assert created.status_code == 201
    withdrawal_id = created.json()["id"]

    too_small = client.post(
        "/v1/creative/withdrawals", headers=auth_headers(creative), json={"amount_tokens": 5}
    )
    assert too_small.status_code == 400

    overview = client.get("/v1/creative/withdrawals", headers=auth_headers(creative))
    assert overview.status_code == 200
    stats = overview.json()["stats"]
    assert stats == {"available_balance": 80, "total_requested": 25, "pending_count": 1, "withdrawals_count": 1}

    pending = client.get("/v1/admin/withdrawals", params={"status": "PENDING"}, headers=auth_headers(admin))
    assert [item["id"] for item in pending.json()] == [withdrawal_id]

    approved = client.post(f"/v1/admin/withdrawals/{withdrawal_id}/approve", headers=auth_headers(admin))
    assert approved.status_code == 200
    assert approved.json()["status"] == "APPROVED"

    rejected = client.post(f"/v1/admin/withdrawals/{withdrawal_id}/reject", headers=auth_headers(admin))
    assert rejected.status_code == 400

    paid = client.post(f"/v1/admin/withdrawals/{withdrawal_id}/mark-paid", headers=auth_headers(admin))
    assert paid.status_code == 200
    assert paid.json()["status"] == "PAID"

    balance = client.get("/v1/creative/balance", headers=auth_headers(creative))
    assert balance.json()["balance"] == 55

    forbidden = client.post(f"/v1/admin/withdrawals/{withdrawal_id}/approve", headers=auth_headers(creative))
    assert forbidden.status_code == 403
