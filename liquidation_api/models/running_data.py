import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    String,
    DateTime,
    Integer,
    Numeric,
    ForeignKey,
    CheckConstraint,
    Index,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from liquidation_api.database import Base


class LiquidationRunningData(Base):
    """One line of the running liquidation ledger kept by the RC.

    The entries' totals are mirrored onto the financial record each time the
    ledger is saved.
    """

    __tablename__ = "liquidation_running_data"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    liquidation_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("liquidations.id", ondelete="CASCADE"),
        nullable=False,
    )
    grantees_liquidated: Mapped[Optional[int]] = mapped_column(Integer)
    amount_complete_docs: Mapped[Optional[Decimal]] = mapped_column(Numeric(14, 2))
    amount_refunded: Mapped[Optional[Decimal]] = mapped_column(Numeric(14, 2))
    refund_or_no: Mapped[Optional[str]] = mapped_column(String(100))
    total_amount_liquidated: Mapped[Optional[Decimal]] = mapped_column(Numeric(14, 2))
    transmittal_ref_no: Mapped[Optional[str]] = mapped_column(String(255))
    group_transmittal_ref_no: Mapped[Optional[str]] = mapped_column(String(255))
    sort_order: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    __table_args__ = (
        CheckConstraint("grantees_liquidated >= 0", name="chk_running_grantees"),
        CheckConstraint("amount_complete_docs >= 0", name="chk_running_complete_docs"),
        CheckConstraint("amount_refunded >= 0", name="chk_running_refunded"),
        CheckConstraint("total_amount_liquidated >= 0", name="chk_running_liquidated"),
        Index("idx_running_data_liquidation", "liquidation_id", "sort_order"),
    )
