"""
Unit tests for liquidation_api/services/review_service.py
"""

import uuid
from datetime import datetime
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from liquidation_api.exceptions import ValidationError
from liquidation_api.models.review import LiquidationReview, ReviewType
from liquidation_api.services import review_service


@pytest.mark.asyncio
async def test_record_review_snapshots_actor_name(session, rc_ncr):
    liquidation_id = uuid.uuid4()

    review = await review_service.record_review(
        session, liquidation_id, ReviewType.RC_RETURN, rc_ncr, "Missing ORs", "Official receipts"
    )

    assert isinstance(review, LiquidationReview)
    assert review.liquidation_id == liquidation_id
    assert review.performed_by == rc_ncr.user_id
    assert review.performed_by_name == rc_ncr.name
    assert review.documents_for_compliance == "Official receipts"
    assert review.performed_at is not None
    session.add.assert_called_once_with(review)
    session.flush.assert_awaited_once()


@pytest.mark.asyncio
async def test_compliance_documents_only_on_rc_return(session, accountant):
    with pytest.raises(ValidationError):
        await review_service.record_review(
            session, uuid.uuid4(), ReviewType.ACCOUNTANT_RETURN, accountant, "x", "docs"
        )
    session.add.assert_not_called()


def test_latest_remark_walks_backwards():
    trail = [
        SimpleNamespace(review_type=ReviewType.RC_RETURN, remarks="first", performed_at=datetime(2025, 1, 1)),
        SimpleNamespace(review_type=ReviewType.HEI_RESUBMISSION, remarks=None, performed_at=datetime(2025, 1, 2)),
        SimpleNamespace(review_type=ReviewType.RC_RETURN, remarks="second", performed_at=datetime(2025, 1, 3)),
    ]
    assert review_service.latest_remark(trail, ReviewType.RC_RETURN) == "second"
    assert review_service.latest_remark(trail, ReviewType.ACCOUNTANT_RETURN) is None


@pytest.mark.asyncio
async def test_list_reviews_breaks_timestamp_ties_by_insertion_sequence(session):
    result = MagicMock()
    result.scalars.return_value.all.return_value = []
    session.execute = AsyncMock(return_value=result)

    await review_service.list_reviews(session, uuid.uuid4())

    stmt = session.execute.await_args.args[0]
    order = [str(clause) for clause in stmt._order_by_clauses]
    assert order == [
        "liquidation_reviews.performed_at ASC",
        "liquidation_reviews.seq ASC",
    ]


def test_review_sequence_is_database_assigned():
    column = LiquidationReview.__table__.c.seq
    assert column.identity is not None
    assert column.unique
