import enum
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import Numeric, DateTime, Text, ForeignKey, Index, Enum as SAEnum
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from liquidation_api.database import Base


class ComplianceStatus(str, enum.Enum):
    PENDING_HEI_REVIEW = "pending_hei_review"
    DOCUMENTS_SUBMITTED = "documents_submitted"
    UNDER_REVIEW = "under_review"
    COMPLIANT = "compliant"
    NON_COMPLIANT = "non_compliant"


class LiquidationCompliance(Base):
    __tablename__ = "liquidation_compliance"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    liquidation_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("liquidations.id", ondelete="RESTRICT"),
        nullable=False,
    )
    documents_required: Mapped[str] = mapped_column(Text, nullable=False)
    compliance_status: Mapped[ComplianceStatus] = mapped_column(
        SAEnum(
            ComplianceStatus,
            name="compliance_status",
            native_enum=False,
            length=50,
            values_callable=lambda members: [m.value for m in members],
        ),
        default=ComplianceStatus.PENDING_HEI_REVIEW,
        nullable=False,
    )
    concerns_emailed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    compliance_submitted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    amount_with_complete_docs: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(14, 2)
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow
    )

    __table_args__ = (
        Index("idx_compliance_liquidation", "liquidation_id", "created_at"),
    )
