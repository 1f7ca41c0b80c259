"""Financial sub-record: one row per liquidation, updated in place."""

from datetime import date
from decimal import Decimal
from typing import Optional
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from liquidation_api.exceptions import ValidationError
from liquidation_api.models.liquidation import Liquidation, LiquidationFinancial
from liquidation_api.services.workflow import (
    derive_liquidation_status,
    effective_due_date,
)

logger = structlog.get_logger()

FINANCIAL_FIELDS = (
    "amount_received",
    "amount_disbursed",
    "amount_liquidated",
    "amount_refunded",
    "number_of_grantees",
    "date_fund_released",
    "due_date",
    "fund_source",
    "purpose",
)

_AMOUNT_FIELDS = (
    "amount_received",
    "amount_disbursed",
    "amount_liquidated",
    "amount_refunded",
)


def _clean_fields(fields: dict) -> dict:
    """Keep known financial fields, reject negative amounts, default disbursed to received."""
    data = {k: v for k, v in fields.items() if k in FINANCIAL_FIELDS and v is not None}
    for key in _AMOUNT_FIELDS:
        if key in data and Decimal(data[key]) < 0:
            raise ValidationError(f"{key} cannot be negative", field=key)

    if "amount_received" in data and "amount_disbursed" not in data:
        data["amount_disbursed"] = data["amount_received"]
    return data


async def get_financial(session: AsyncSession, liquidation_id) -> Optional[LiquidationFinancial]:
    result = await session.execute(
        select(LiquidationFinancial).where(
            LiquidationFinancial.liquidation_id == liquidation_id
        )
    )
    return result.scalar_one_or_none()


async def upsert_financial(
    session: AsyncSession,
    liquidation: Liquidation,
    fields: dict,
    financial: Optional[LiquidationFinancial] = None,
) -> LiquidationFinancial:
    """Create the financial row on first call, update it in place after that.

    Pass ``financial`` when the caller already loaded it to skip the lookup.
    """
    data = _clean_fields(fields)
    if financial is None:
        financial = await get_financial(session, liquidation.id)

    if financial is None:
        return await create_financial(session, liquidation, data)

    for key, value in data.items():
        setattr(financial, key, value)
    liquidation.liquidation_status = derive_liquidation_status(financial)
    _warn_if_over_liquidated(liquidation, financial)
    await session.flush()
    return financial


async def create_financial(
    session: AsyncSession, liquidation: Liquidation, fields: dict
) -> LiquidationFinancial:
    data = _clean_fields(fields)
    financial = LiquidationFinancial(
        id=uuid.uuid4(),
        liquidation_id=liquidation.id,
        amount_received=Decimal("0"),
        amount_liquidated=Decimal("0"),
        amount_refunded=Decimal("0"),
    )
    for key, value in data.items():
        setattr(financial, key, value)
    session.add(financial)

    liquidation.liquidation_status = derive_liquidation_status(financial)
    _warn_if_over_liquidated(liquidation, financial)
    await session.flush()
    logger.info("financial_created", liquidation_id=str(liquidation.id))
    return financial


async def set_amount_liquidated(
    session: AsyncSession,
    liquidation: Liquidation,
    financial: LiquidationFinancial,
    amount: Decimal,
) -> LiquidationFinancial:
    financial.amount_liquidated = amount
    liquidation.liquidation_status = derive_liquidation_status(financial)
    _warn_if_over_liquidated(liquidation, financial)
    await session.flush()
    return financial


def _warn_if_over_liquidated(liquidation: Liquidation, financial: LiquidationFinancial):
    received = Decimal(financial.amount_received or 0)
    liquidated = Decimal(financial.amount_liquidated or 0)
    if received > 0 and liquidated > received:
        logger.warning(
            "financial_over_liquidated",
            liquidation_id=str(liquidation.id),
            control_no=liquidation.control_no,
            amount_received=str(received),
            amount_liquidated=str(liquidated),
        )


# ---------- read helpers ----------

def unliquidated_amount(financial: Optional[LiquidationFinancial]) -> Decimal:
    """Disbursed minus liquidated. Negative when over-liquidated."""
    if financial is None:
        return Decimal("0")
    base = financial.amount_disbursed
    if base is None:
        base = financial.amount_received
    return Decimal(base or 0) - Decimal(financial.amount_liquidated or 0)


def liquidation_percentage(financial: Optional[LiquidationFinancial]) -> Decimal:
    if financial is None or not financial.amount_received:
        return Decimal("0")
    pct = Decimal(financial.amount_liquidated or 0) / Decimal(financial.amount_received) * 100
    return pct.quantize(Decimal("0.01"))


def financial_due_date(financial: Optional[LiquidationFinancial]) -> Optional[date]:
    if financial is None:
        return None
    return effective_due_date(financial.date_fund_released, financial.due_date)


def lapsing_period(financial: Optional[LiquidationFinancial], date_submitted) -> int:
    """Days overdue at submission; 0 when submitted on time or not yet submitted."""
    due = financial_due_date(financial)
    if due is None or date_submitted is None:
        return 0
    submitted = date_submitted.date() if hasattr(date_submitted, "date") else date_submitted
    return max((submitted - due).days, 0)
