"""Activity logging service. Records entity state changes."""

from typing import Optional
from datetime import datetime
import uuid

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from liquidation_api.models.activity_log import ActivityLog
from liquidation_api.services.permissions import Actor

logger = structlog.get_logger()


def _to_uuid(value, field_name: str) -> Optional[uuid.UUID]:
    if value is None:
        return None
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (ValueError, TypeError):
        logger.warning("activity_invalid_uuid", field=field_name, value=str(value))
        return None


def _compute_changed_fields(
    before: Optional[dict], after: Optional[dict]
) -> Optional[list[str]]:
    """Diff two state dicts and return list of changed field names."""
    if not before or not after:
        return None
    changed = []
    all_keys = set(before.keys()) | set(after.keys())
    for key in sorted(all_keys):
        if before.get(key) != after.get(key):
            changed.append(key)
    return changed or None


def _current_request_id() -> Optional[str]:
    return structlog.contextvars.get_contextvars().get("request_id")


async def create_activity_log(
    session: AsyncSession,
    actor: Optional[Actor],
    action: str,
    entity_type: str,
    entity_id,
    description: Optional[str] = None,
    before_state: Optional[dict] = None,
    after_state: Optional[dict] = None,
    module: Optional[str] = None,
) -> ActivityLog:
    """
    Create an activity log entry.

    Uses session.flush(); the caller owns the transaction.
    """
    entry = ActivityLog(
        actor_id=actor.user_id if actor else None,
        actor_name=actor.name if actor else None,
        action=action,
        description=description,
        entity_type=entity_type,
        entity_id=_to_uuid(entity_id, "entity_id"),
        module=module,
        before_state=before_state,
        after_state=after_state,
        changed_fields=_compute_changed_fields(before_state, after_state),
        request_id=_current_request_id(),
        created_at=datetime.utcnow(),
    )
    session.add(entry)
    await session.flush()

    logger.info(
        "activity_log_created",
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id) if entity_id else None,
        actor_id=str(actor.user_id) if actor else None,
    )
    return entry


async def list_activity_logs(
    session: AsyncSession,
    entity_type: Optional[str] = None,
    entity_id: Optional[uuid.UUID] = None,
    actor_id: Optional[uuid.UUID] = None,
    module: Optional[str] = None,
    page: int = 1,
    limit: int = 20,
) -> tuple[list[ActivityLog], int]:
    query = select(ActivityLog)
    count_query = select(func.count()).select_from(ActivityLog)

    filters = []
    if entity_type:
        filters.append(ActivityLog.entity_type == entity_type)
    if entity_id:
        filters.append(ActivityLog.entity_id == entity_id)
    if actor_id:
        filters.append(ActivityLog.actor_id == actor_id)
    if module:
        filters.append(ActivityLog.module == module)
    for f in filters:
        query = query.where(f)
        count_query = count_query.where(f)

    total = (await session.execute(count_query)).scalar() or 0
    offset = (page - 1) * limit
    result = await session.execute(
        query.order_by(ActivityLog.created_at.desc()).offset(offset).limit(limit)
    )
    return list(result.scalars().all()), total
