import enum
import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    String,
    Boolean,
    BigInteger,
    Integer,
    Numeric,
    Date,
    DateTime,
    Text,
    ForeignKey,
    CheckConstraint,
    Index,
    UniqueConstraint,
    Enum as SAEnum,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from liquidation_api.database import Base

# Constraint names matched when mapping IntegrityError to a conflict
CONTROL_NO_CONSTRAINT = "liquidations_control_no_key"
DOCUMENT_REQUIREMENT_CONSTRAINT = "uq_documents_liquidation_requirement"


class WorkflowStatus(str, enum.Enum):
    DRAFT = "draft"
    FOR_INITIAL_REVIEW = "for_initial_review"
    RETURNED_TO_HEI = "returned_to_hei"
    ENDORSED_TO_ACCOUNTING = "endorsed_to_accounting"
    RETURNED_TO_RC = "returned_to_rc"
    ENDORSED_TO_COA = "endorsed_to_coa"
    APPROVED = "approved"
    REJECTED = "rejected"


class LiquidationStatus(str, enum.Enum):
    UNLIQUIDATED = "UNLIQUIDATED"
    PARTIALLY_LIQUIDATED = "PARTIALLY_LIQUIDATED"
    FULLY_LIQUIDATED = "FULLY_LIQUIDATED"


class DocumentStatus(str, enum.Enum):
    NONE = "NONE"
    PARTIAL = "PARTIAL"
    COMPLETE = "COMPLETE"


def _enum_column(enum_cls, name: str):
    return SAEnum(
        enum_cls,
        name=name,
        native_enum=False,
        length=50,
        values_callable=lambda members: [m.value for m in members],
    )


class Liquidation(Base):
    __tablename__ = "liquidations"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    control_no: Mapped[str] = mapped_column(String(50), nullable=False)
    hei_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("heis.id"), nullable=False
    )
    program_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("programs.id"), nullable=False
    )
    academic_year_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("academic_years.id"), nullable=False
    )
    semester_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("semesters.id")
    )
    batch_no: Mapped[Optional[str]] = mapped_column(String(50))
    created_by: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), nullable=False
    )
    status: Mapped[WorkflowStatus] = mapped_column(
        _enum_column(WorkflowStatus, "workflow_status"),
        default=WorkflowStatus.DRAFT,
        nullable=False,
    )
    liquidation_status: Mapped[LiquidationStatus] = mapped_column(
        _enum_column(LiquidationStatus, "liquidation_status"),
        default=LiquidationStatus.UNLIQUIDATED,
        nullable=False,
    )
    document_status: Mapped[DocumentStatus] = mapped_column(
        _enum_column(DocumentStatus, "document_status"),
        default=DocumentStatus.NONE,
        nullable=False,
    )
    remarks: Mapped[Optional[str]] = mapped_column(Text)
    date_submitted: Mapped[Optional[datetime]] = mapped_column(DateTime)

    # Review history stamps: set by their transition, never cleared
    reviewed_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id")
    )
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    accountant_reviewed_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id")
    )
    accountant_reviewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    coa_endorsed_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id")
    )
    coa_endorsed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    __table_args__ = (
        Index("idx_liquidations_hei", "hei_id"),
        Index("idx_liquidations_program", "program_id"),
        Index("idx_liquidations_status", "status"),
        Index("idx_liquidations_created_by", "created_by"),
        UniqueConstraint("control_no", name=CONTROL_NO_CONSTRAINT),
    )


class LiquidationFinancial(Base):
    __tablename__ = "liquidation_financials"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    liquidation_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("liquidations.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    amount_received: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=0)
    amount_disbursed: Mapped[Optional[Decimal]] = mapped_column(Numeric(14, 2))
    amount_liquidated: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=0)
    amount_refunded: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=0)
    number_of_grantees: Mapped[Optional[int]] = mapped_column(Integer)
    date_fund_released: Mapped[Optional[date]] = mapped_column(Date)
    due_date: Mapped[Optional[date]] = mapped_column(Date)
    fund_source: Mapped[Optional[str]] = mapped_column(String(255))
    purpose: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    __table_args__ = (
        CheckConstraint("amount_received >= 0", name="chk_fin_received"),
        CheckConstraint("amount_liquidated >= 0", name="chk_fin_liquidated"),
        CheckConstraint("amount_refunded >= 0", name="chk_fin_refunded"),
    )


class LiquidationBeneficiary(Base):
    __tablename__ = "liquidation_beneficiaries"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    liquidation_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("liquidations.id", ondelete="CASCADE"),
        nullable=False,
    )
    student_no: Mapped[Optional[str]] = mapped_column(String(50))
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    middle_name: Mapped[Optional[str]] = mapped_column(String(100))
    extension_name: Mapped[Optional[str]] = mapped_column(String(20))
    award_no: Mapped[Optional[str]] = mapped_column(String(100))
    date_disbursed: Mapped[Optional[date]] = mapped_column(Date)
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=0)
    remarks: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow
    )

    __table_args__ = (
        CheckConstraint("amount >= 0", name="chk_beneficiary_amount"),
        Index("idx_beneficiaries_liquidation", "liquidation_id"),
    )

    @property
    def full_name(self) -> str:
        parts = [self.first_name, self.middle_name, self.last_name]
        name = " ".join(p for p in parts if p)
        if self.extension_name:
            name = f"{name} {self.extension_name}"
        return name


class LiquidationDocument(Base):
    """Uploaded-file metadata. The blob itself lives outside this service."""

    __tablename__ = "liquidation_documents"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    liquidation_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("liquidations.id", ondelete="CASCADE"),
        nullable=False,
    )
    # NULL for free-form uploads (RC letters); at most one document per requirement
    document_requirement_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("document_requirements.id", ondelete="SET NULL")
    )
    document_type: Mapped[Optional[str]] = mapped_column(String(100))
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    file_path: Mapped[Optional[str]] = mapped_column(String(500))
    file_type: Mapped[Optional[str]] = mapped_column(String(100))
    file_size: Mapped[Optional[int]] = mapped_column(BigInteger)
    gdrive_link: Mapped[Optional[str]] = mapped_column(String(1000))
    is_gdrive: Mapped[bool] = mapped_column(Boolean, default=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    uploaded_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id")
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow
    )

    __table_args__ = (
        Index("idx_documents_liquidation", "liquidation_id"),
        UniqueConstraint(
            "liquidation_id", "document_requirement_id", name=DOCUMENT_REQUIREMENT_CONSTRAINT
        ),
    )
