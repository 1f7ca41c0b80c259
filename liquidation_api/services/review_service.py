"""
Review trail: an append-only record of who did what to a liquidation.

Rows are only ever inserted; nothing here updates or deletes them.
"""

from datetime import datetime
from typing import Optional
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from liquidation_api.exceptions import ValidationError
from liquidation_api.models.review import LiquidationReview, ReviewType
from liquidation_api.services.permissions import Actor

logger = structlog.get_logger()


async def record_review(
    session: AsyncSession,
    liquidation_id: uuid.UUID,
    review_type: ReviewType,
    actor: Actor,
    remarks: Optional[str],
    documents_for_compliance: Optional[str] = None,
) -> LiquidationReview:
    if documents_for_compliance and review_type != ReviewType.RC_RETURN:
        raise ValidationError(
            "documents_for_compliance is only allowed on an RC return",
            field="documents_for_compliance",
            review_type=review_type.value,
        )

    review = LiquidationReview(
        id=uuid.uuid4(),
        liquidation_id=liquidation_id,
        review_type=review_type,
        performed_by=actor.user_id,
        performed_by_name=actor.name,
        remarks=remarks,
        documents_for_compliance=documents_for_compliance,
        performed_at=datetime.utcnow(),
    )
    session.add(review)
    await session.flush()

    logger.info(
        "review_recorded",
        liquidation_id=str(liquidation_id),
        review_type=review_type.value,
        performed_by=str(actor.user_id),
    )
    return review


async def list_reviews(
    session: AsyncSession, liquidation_id: uuid.UUID
) -> list[LiquidationReview]:
    """Oldest first. This ordering is the human-readable history."""
    result = await session.execute(
        select(LiquidationReview)
        .where(LiquidationReview.liquidation_id == liquidation_id)
        .order_by(LiquidationReview.performed_at.asc(), LiquidationReview.seq.asc())
    )
    return list(result.scalars().all())


async def latest_review(
    session: AsyncSession, liquidation_id: uuid.UUID, review_type: ReviewType
) -> Optional[LiquidationReview]:
    result = await session.execute(
        select(LiquidationReview)
        .where(
            LiquidationReview.liquidation_id == liquidation_id,
            LiquidationReview.review_type == review_type,
        )
        .order_by(LiquidationReview.performed_at.desc(), LiquidationReview.seq.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


def latest_remark(reviews: list[LiquidationReview], review_type: ReviewType) -> Optional[str]:
    """Latest remark of a type from an already-loaded, oldest-first trail."""
    for review in reversed(reviews):
        if review.review_type == review_type:
            return review.remarks
    return None
