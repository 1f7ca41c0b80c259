import enum
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    BigInteger,
    String,
    DateTime,
    Text,
    ForeignKey,
    Identity,
    Index,
    Enum as SAEnum,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from liquidation_api.database import Base


class ReviewType(str, enum.Enum):
    RC_RETURN = "rc_return"
    RC_ENDORSEMENT = "rc_endorsement"
    HEI_RESUBMISSION = "hei_resubmission"
    ACCOUNTANT_RETURN = "accountant_return"
    ACCOUNTANT_ENDORSEMENT = "accountant_endorsement"


class LiquidationReview(Base):
    """One entry of the append-only review trail. Rows are never updated."""

    __tablename__ = "liquidation_reviews"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    liquidation_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("liquidations.id", ondelete="RESTRICT"),
        nullable=False,
    )
    review_type: Mapped[ReviewType] = mapped_column(
        SAEnum(
            ReviewType,
            name="review_type",
            native_enum=False,
            length=50,
            values_callable=lambda members: [m.value for m in members],
        ),
        nullable=False,
    )
    performed_by: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), nullable=False
    )
    # Name as it was when the action happened; a later rename must not rewrite history
    performed_by_name: Mapped[str] = mapped_column(String(200), nullable=False)
    remarks: Mapped[Optional[str]] = mapped_column(Text)
    documents_for_compliance: Mapped[Optional[str]] = mapped_column(Text)
    performed_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    # Database-assigned insertion order; breaks ties between equal performed_at
    seq: Mapped[int] = mapped_column(BigInteger, Identity(), unique=True, nullable=False)

    __table_args__ = (
        Index("idx_reviews_liquidation", "liquidation_id", "performed_at"),
    )
