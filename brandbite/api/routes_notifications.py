from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from brandbite.api.auth import require_user
from brandbite.domain.errors import NotFoundError
from brandbite.domain.identity import Identity
from brandbite.domain.notifications import service as notifications_service
from brandbite.domain.notifications.schemas import (
    NotificationListResponse,
    NotificationResponse,
    PreferenceEntry,
    PreferenceUpdateRequest,
)
from brandbite.infra.db import get_db_session

router = APIRouter(prefix="/v1/notifications")


@router.get("", response_model=NotificationListResponse)
async def list_notifications(
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    unread_only: bool = Query(default=False),
    identity: Identity = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
) -> NotificationListResponse:
    notifications = await notifications_service.list_notifications(
        session, identity.user_id, limit=limit, offset=offset, unread_only=unread_only
    )
    unread = await notifications_service.get_unread_count(session, identity.user_id)
    return NotificationListResponse(
        notifications=[NotificationResponse.model_validate(item) for item in notifications],
        unread_count=unread,
    )


@router.post("/read-all")
async def mark_all_read(
    identity: Identity = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
) -> dict[str, int]:
    updated = await notifications_service.mark_all_as_read(session, identity.user_id)
    await session.commit()
    return {"updated": updated}


@router.post("/{notification_id}/read")
async def mark_read(
    notification_id: str,
    identity: Identity = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
) -> dict[str, bool]:
    if not await notifications_service.mark_as_read(session, notification_id, identity.user_id):
        raise NotFoundError(detail="Notification not found")
    await session.commit()
    return {"read": True}


@router.get("/preferences", response_model=list[PreferenceEntry])
async def get_preferences(
    identity: Identity = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
) -> list[PreferenceEntry]:
    return await notifications_service.get_user_preferences(session, identity.user_id)


@router.patch("/preferences", response_model=list[PreferenceEntry])
async def update_preference(
    payload: PreferenceUpdateRequest,
    identity: Identity = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
) -> list[PreferenceEntry]:
    await notifications_service.set_user_preference(session, identity.user_id, payload.type, payload.enabled)
    await session.commit()
    return await notifications_service.get_user_preferences(session, identity.user_id)
