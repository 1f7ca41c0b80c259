import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from liquidation_api.database import get_db
from liquidation_api.middleware.auth import get_current_actor
from liquidation_api.middleware.authorization import require_capability
from liquidation_api.models.activity_log import ActivityLog
from liquidation_api.schemas.activity_log import ActivityLogResponse
from liquidation_api.schemas.common import PaginatedResponse, build_pagination
from liquidation_api.services.activity_service import list_activity_logs
from liquidation_api.services.permissions import Actor, VIEW_ACTIVITY_LOGS

router = APIRouter()


def _to_response(log: ActivityLog) -> ActivityLogResponse:
    return ActivityLogResponse(
        id=str(log.id),
        actor_id=str(log.actor_id) if log.actor_id else None,
        actor_name=log.actor_name,
        action=log.action,
        description=log.description,
        entity_type=log.entity_type,
        entity_id=str(log.entity_id) if log.entity_id else None,
        module=log.module,
        before_state=log.before_state,
        after_state=log.after_state,
        changed_fields=log.changed_fields,
        request_id=log.request_id,
        created_at=log.created_at.isoformat() if log.created_at else "",
    )


@router.get("", response_model=PaginatedResponse[ActivityLogResponse])
async def get_activity_logs(
    entity_type: Optional[str] = Query(None),
    entity_id: Optional[uuid.UUID] = Query(None),
    actor_id: Optional[uuid.UUID] = Query(None),
    module: Optional[str] = Query(None),
    page: int = Query(1, ge=1, le=1000),
    limit: int = Query(20, ge=1, le=50),
    actor: Actor = Depends(get_current_actor),
    _auth: None = Depends(require_capability(VIEW_ACTIVITY_LOGS)),
    db: AsyncSession = Depends(get_db),
):
    rows, total = await list_activity_logs(
        db,
        entity_type=entity_type,
        entity_id=entity_id,
        actor_id=actor_id,
        module=module,
        page=page,
        limit=limit,
    )
    return PaginatedResponse(
        data=[_to_response(r) for r in rows],
        pagination=build_pagination(page, limit, total),
    )
