import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from liquidation_api.database import get_db
from liquidation_api.exceptions import NotFoundError
from liquidation_api.middleware.auth import get_current_actor
from liquidation_api.models.notification import Notification
from liquidation_api.schemas.notification import (
    MarkAllReadResponse,
    NotificationListResponse,
    NotificationResponse,
)
from liquidation_api.services import notification_service
from liquidation_api.services.permissions import Actor

router = APIRouter()


def _to_response(n: Notification) -> NotificationResponse:
    return NotificationResponse(
        id=str(n.id),
        action=n.action,
        description=n.description,
        actor_name=n.actor_name,
        subject_type=n.subject_type,
        subject_id=str(n.subject_id) if n.subject_id else None,
        subject_label=n.subject_label,
        module=n.module,
        is_read=n.read_at is not None,
        read_at=n.read_at.isoformat() if n.read_at else None,
        created_at=n.created_at.isoformat() if n.created_at else "",
    )


@router.get("", response_model=NotificationListResponse)
async def list_notifications(
    unread_only: bool = Query(False),
    page: int = Query(1, ge=1, le=1000),
    limit: int = Query(20, ge=1, le=50),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """Recent notifications for the logged-in user, newest first."""
    rows, total, unread = await notification_service.list_notifications(
        db, actor.user_id, unread_only=unread_only, page=page, limit=limit
    )
    return NotificationListResponse(
        data=[_to_response(n) for n in rows], unread_count=unread, total=total
    )


@router.post("/{notification_id}/read", response_model=NotificationResponse)
async def mark_read(
    notification_id: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    notification = await notification_service.mark_read(db, actor.user_id, notification_id)
    if notification is None:
        raise NotFoundError("Notification", notification_id)
    return _to_response(notification)


@router.post("/read-all", response_model=MarkAllReadResponse)
async def mark_all_read(
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    updated = await notification_service.mark_all_read(db, actor.user_id)
    return MarkAllReadResponse(updated=updated)
