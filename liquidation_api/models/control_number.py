from datetime import datetime

from sqlalchemy import String, Integer, DateTime, PrimaryKeyConstraint, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column

from liquidation_api.database import Base


class ControlNumberSequence(Base):
    """Per (prefix, year) counter. Locked FOR UPDATE while a control number is issued."""

    __tablename__ = "control_number_sequences"

    prefix: Mapped[str] = mapped_column(String(20), nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    last_value: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    __table_args__ = (
        PrimaryKeyConstraint("prefix", "year", name="pk_control_number_sequences"),
        CheckConstraint("last_value >= 0", name="chk_control_seq_non_negative"),
    )
