import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import String, Integer, DateTime, Text, ForeignKey, Index, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from liquidation_api.database import Base

TRANSMITTAL_REFERENCE_CONSTRAINT = "liquidation_transmittals_transmittal_reference_no_key"


class LiquidationTransmittal(Base):
    """Document hand-off created at each RC -> Accounting endorsement."""

    __tablename__ = "liquidation_transmittals"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    liquidation_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("liquidations.id", ondelete="RESTRICT"),
        nullable=False,
    )
    transmittal_reference_no: Mapped[str] = mapped_column(String(255), nullable=False)
    receiver_name: Mapped[Optional[str]] = mapped_column(String(255))
    document_location_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("document_locations.id")
    )
    number_of_folders: Mapped[Optional[int]] = mapped_column(Integer)
    folder_location_number: Mapped[Optional[str]] = mapped_column(String(255))
    group_transmittal: Mapped[Optional[str]] = mapped_column(String(255))
    other_file_location: Mapped[Optional[str]] = mapped_column(String(255))
    endorsed_by: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), nullable=False
    )
    endorsed_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )

    __table_args__ = (
        Index("idx_transmittals_liquidation", "liquidation_id", "endorsed_at"),
        UniqueConstraint("transmittal_reference_no", name=TRANSMITTAL_REFERENCE_CONSTRAINT),
    )


class TransmittalLocationEvent(Base):
    """Append-only location change; the ordered events form a transmittal's location history."""

    __tablename__ = "transmittal_location_events"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    transmittal_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("liquidation_transmittals.id", ondelete="CASCADE"),
        nullable=False,
    )
    location_name: Mapped[str] = mapped_column(String(255), nullable=False)
    previous_location: Mapped[Optional[str]] = mapped_column(String(255))
    notes: Mapped[Optional[str]] = mapped_column(Text)
    changed_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id")
    )
    changed_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )

    __table_args__ = (
        Index("idx_location_events_transmittal", "transmittal_id", "changed_at"),
    )
