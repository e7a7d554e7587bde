from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from brandbite.domain.app_settings.db_models import AppSetting
from brandbite.domain.errors import DomainError
from brandbite.settings import settings

logger = logging.getLogger(__name__)

MIN_WITHDRAWAL_TOKENS = "MIN_WITHDRAWAL_TOKENS"

DEFAULTS: dict[str, str] = {
    MIN_WITHDRAWAL_TOKENS: str(settings.min_withdrawal_tokens_default),
}
ALLOWED_KEYS = frozenset(DEFAULTS)
POSITIVE_INT_KEYS = frozenset({MIN_WITHDRAWAL_TOKENS})


async def get_app_setting(session: AsyncSession, key: str) -> str | None:
    value = await session.scalar(select(AppSetting.value).where(AppSetting.key == key))
    if value is None:
        return DEFAULTS.get(key)
    return value


async def get_app_setting_int(session: AsyncSession, key: str, fallback: int) -> int:
    raw = await get_app_setting(session, key)
    if raw is None:
        return fallback
    try:
        return int(raw.strip())
    except ValueError:
        logger.warning("app_setting_not_integer", extra={"extra": {"key": key}})
        return fallback


async def set_app_setting(session: AsyncSession, key: str, value: str) -> AppSetting:
    setting = await session.get(AppSetting, key)
    if setting is None:
        setting = AppSetting(key=key, value=value)
        session.add(setting)
    else:
        setting.value = value
    await session.flush()
    logger.info("app_setting_updated", extra={"extra": {"key": key}})
    return setting


async def list_app_settings(session: AsyncSession) -> dict[str, str]:
    result = await session.execute(select(AppSetting.key, AppSetting.value).where(AppSetting.key.in_(ALLOWED_KEYS)))
    stored = dict(result.all())
    return {key: stored.get(key, default) for key, default in DEFAULTS.items()}


async def update_admin_setting(session: AsyncSession, key: str, value: object) -> AppSetting:
    """Validate and store a setting coming from the admin surface."""
    if key not in ALLOWED_KEYS:
        raise DomainError(detail="Invalid or unknown setting key.")
    text = str(value).strip() if value is not None else ""
    if not text:
        raise DomainError(detail="Setting value is required.")
    if key in POSITIVE_INT_KEYS:
        try:
            number = int(text)
        except ValueError:
            number = 0
        if number <= 0:
            raise DomainError(detail=f"{key} must be a positive integer.")
        text = str(number)
    return await set_app_setting(session, key, text)
