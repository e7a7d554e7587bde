from __future__ import annotations

import logging

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from brandbite.domain.notifications.db_models import Notification, NotificationPreference
from brandbite.domain.notifications.schemas import NotificationType, PreferenceEntry
from brandbite.infra.email import send_best_effort
from brandbite.shared.clock import utcnow

logger = logging.getLogger(__name__)

SUBJECTS: dict[str, str] = {
    NotificationType.REVISION_SUBMITTED.value: "New revision ready for review",
    NotificationType.FEEDBACK_SUBMITTED.value: "New feedback on your ticket",
    NotificationType.TICKET_COMPLETED.value: "Ticket marked complete",
    NotificationType.TICKET_ASSIGNED.value: "New ticket assigned to you",
    NotificationType.TICKET_STATUS_CHANGED.value: "Ticket status updated",
    NotificationType.PIN_RESOLVED.value: "Feedback note resolved",
}
DEFAULT_SUBJECT = "Notification from Brandbite"


def _type_value(value: NotificationType | str) -> str:
    return value.value if isinstance(value, NotificationType) else str(value)


async def _is_enabled(session: AsyncSession, user_id: str, type_value: str) -> bool:
    enabled = await session.scalar(
        select(NotificationPreference.enabled).where(
            NotificationPreference.user_id == user_id,
            NotificationPreference.type == type_value,
        )
    )
    return enabled is None or bool(enabled)


async def create_notification(
    session: AsyncSession,
    *,
    user_id: str,
    notification_type: NotificationType | str,
    title: str,
    message: str,
    ticket_id: str | None = None,
    actor_id: str | None = None,
) -> Notification | None:
    """Store an in-app notification unless the user opted out of its type.

    The insert runs in a savepoint. A failure is logged and only that
    savepoint is rolled back, so the triggering operation still commits.
    """
    type_value = _type_value(notification_type)
    try:
        if not await _is_enabled(session, user_id, type_value):
            return None
        async with session.begin_nested():
            notification = Notification(
                user_id=user_id,
                type=type_value,
                title=title,
                message=message,
                ticket_id=ticket_id,
                actor_id=actor_id,
            )
            session.add(notification)
    except SQLAlchemyError as exc:
        logger.warning(
            "notification_create_failed",
            extra={"extra": {"user_id": user_id, "type": type_value, "reason": exc.__class__.__name__}},
        )
        return None
    return notification


async def get_unread_count(session: AsyncSession, user_id: str) -> int:
    value = await session.scalar(
        select(func.count(Notification.id)).where(
            Notification.user_id == user_id, Notification.read.is_(False)
        )
    )
    return int(value or 0)


async def list_notifications(
    session: AsyncSession,
    user_id: str,
    *,
    limit: int = 20,
    offset: int = 0,
    unread_only: bool = False,
) -> list[Notification]:
    stmt = select(Notification).where(Notification.user_id == user_id)
    if unread_only:
        stmt = stmt.where(Notification.read.is_(False))
    result = await session.execute(
        stmt.order_by(Notification.created_at.desc()).limit(limit).offset(offset)
    )
    return list(result.scalars())


async def mark_as_read(session: AsyncSession, notification_id: str, user_id: str) -> bool:
    result = await session.execute(
        update(Notification)
        .where(Notification.id == notification_id, Notification.user_id == user_id)
        .values(read=True, read_at=utcnow())
    )
    return (result.rowcount or 0) > 0


async def mark_all_as_read(session: AsyncSession, user_id: str) -> int:
    result = await session.execute(
        update(Notification)
        .where(Notification.user_id == user_id, Notification.read.is_(False))
        .values(read=True, read_at=utcnow())
    )
    return int(result.rowcount or 0)


async def get_user_preferences(session: AsyncSession, user_id: str) -> list[PreferenceEntry]:
    result = await session.execute(
        select(NotificationPreference.type, NotificationPreference.enabled).where(
            NotificationPreference.user_id == user_id
        )
    )
    stored = {type_value: enabled for type_value, enabled in result.all()}
    return [
        PreferenceEntry(type=type_, enabled=bool(stored.get(type_.value, True)))
        for type_ in NotificationType
    ]


async def set_user_preference(
    session: AsyncSession, user_id: str, notification_type: NotificationType | str, enabled: bool
) -> PreferenceEntry:
    type_value = _type_value(notification_type)
    preference = await session.scalar(
        select(NotificationPreference).where(
            NotificationPreference.user_id == user_id,
            NotificationPreference.type == type_value,
        )
    )
    if preference is None:
        preference = NotificationPreference(user_id=user_id, type=type_value, enabled=enabled)
        session.add(preference)
    else:
        preference.enabled = enabled
    await session.flush()
    return PreferenceEntry(type=NotificationType(type_value), enabled=enabled)


def subject_for_type(notification_type: NotificationType | str, title: str | None) -> str:
    base = SUBJECTS.get(_type_value(notification_type), DEFAULT_SUBJECT)
    return f"{base}: {title}" if title else base


async def send_notification_email(adapter, recipient: str | None, notification: Notification) -> bool:
    return await send_best_effort(
        adapter,
        recipient=recipient,
        subject=subject_for_type(notification.type, notification.title),
        body=notification.message,
        event=f"notification_{notification.type.lower()}",
    )
