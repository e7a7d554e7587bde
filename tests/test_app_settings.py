import pytest

from brandbite.domain.app_settings import service as app_settings_service
from brandbite.domain.errors import DomainError
from brandbite.domain.roles import UserRole
from tests.helpers import auth_headers, create_user


@pytest.mark.anyio
async def test_admin_setting_validation(async_session_maker):
    async with async_session_maker() as session:
        assert await app_settings_service.get_app_setting_int(
            session, app_settings_service.MIN_WITHDRAWAL_TOKENS, 0
        ) == 20

        with pytest.raises(DomainError):
            await app_settings_service.update_admin_setting(session, "UNKNOWN_KEY", 5)
        with pytest.raises(DomainError):
            await app_settings_service.update_admin_setting(session, app_settings_service.MIN_WITHDRAWAL_TOKENS, 0)
        with pytest.raises(DomainError):
            await app_settings_service.update_admin_setting(session, app_settings_service.MIN_WITHDRAWAL_TOKENS, "")

        stored = await app_settings_service.update_admin_setting(
            session, app_settings_service.MIN_WITHDRAWAL_TOKENS, " 35 "
        )
        assert stored.value == "35"
        assert await app_settings_service.get_app_setting_int(
            session, app_settings_service.MIN_WITHDRAWAL_TOKENS, 0
        ) == 35


@pytest.mark.anyio
async def test_admin_settings_endpoints(async_session_maker, client):
    async with async_session_maker() as session:
        admin = await create_user(session, UserRole.SITE_ADMIN)
        creative = await create_user(session, UserRole.DESIGNER)
        await session.commit()

    current = client.get("/v1/admin/settings", headers=auth_headers(admin))
    assert current.status_code == 200
    assert current.json() == {"settings": {"MIN_WITHDRAWAL_TOKENS": "20"}}

    updated = client.patch(
        "/v1/admin/settings", headers=auth_headers(admin), json={"key": "MIN_WITHDRAWAL_TOKENS", "value": 50}
    )
    assert updated.status_code == 200
    assert updated.json()["settings"]["MIN_WITHDRAWAL_TOKENS"] == "50"

    unknown = client.patch("/v1/admin/settings", headers=auth_headers(admin), json={"key": "THEME", "value": "dark"})
    assert unknown.status_code == 400

    negative = client.patch(
        "/v1/admin/settings", headers=auth_headers(admin), json={"key": "MIN_WITHDRAWAL_TOKENS", "value": -1}
    )
    assert negative.status_code == 400

    forbidden = client.get("/v1/admin/settings", headers=auth_headers(creative))
    assert forbidden.status_code == 403
