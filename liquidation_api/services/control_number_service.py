"""
Control-number issuance: ``{PROGRAM}-{YYYY}-{NNNNN}``.

One ``control_number_sequences`` row per (prefix, year). The row is created
with INSERT .. ON CONFLICT DO NOTHING, then locked FOR UPDATE, so concurrent
creators queue on it until the creating transaction commits. The first time
a (prefix, year) is used its row is seeded from the highest suffix already in
``liquidations`` so numbers issued before the counter existed are never
reused; later calls only touch the counter row.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from liquidation_api.models.control_number import ControlNumberSequence
from liquidation_api.models.liquidation import Liquidation
from liquidation_api.services.workflow import (
    control_prefix,
    format_control_number,
    parse_control_sequence,
)

logger = structlog.get_logger()


async def max_existing_sequence(session: AsyncSession, prefix: str, year: int) -> int:
    result = await session.execute(
        select(Liquidation.control_no).where(
            Liquidation.control_no.like(f"{prefix}-{year}-%")
        )
    )
    highest = 0
    for control_no in result.scalars().all():
        seq = parse_control_sequence(control_no, prefix, year)
        if seq is not None and seq > highest:
            highest = seq
    return highest


async def _select_sequence_row(
    session: AsyncSession, prefix: str, year: int
) -> Optional[ControlNumberSequence]:
    result = await session.execute(
        select(ControlNumberSequence)
        .where(
            ControlNumberSequence.prefix == prefix,
            ControlNumberSequence.year == year,
        )
        .with_for_update()
    )
    return result.scalar_one_or_none()


async def _lock_sequence_row(
    session: AsyncSession, prefix: str, year: int
) -> ControlNumberSequence:
    row = await _select_sequence_row(session, prefix, year)
    if row is not None:
        return row

    # First number of this prefix/year: seed from the historical scan
    seed = await max_existing_sequence(session, prefix, year)
    await session.execute(
        pg_insert(ControlNumberSequence)
        .values(prefix=prefix, year=year, last_value=seed, updated_at=datetime.utcnow())
        .on_conflict_do_nothing(index_elements=["prefix", "year"])
    )
    logger.info("control_number_sequence_seeded", prefix=prefix, year=year, seed=seed)
    return await _select_sequence_row(session, prefix, year)


async def next_control_number(
    session: AsyncSession, program_code: str, year: Optional[int] = None
) -> str:
    prefix = control_prefix(program_code)
    year = year or datetime.utcnow().year

    row = await _lock_sequence_row(session, prefix, year)
    row.last_value = row.last_value + 1
    row.updated_at = datetime.utcnow()
    await session.flush()

    control_no = format_control_number(prefix, year, row.last_value)
    logger.info("control_number_generated", control_no=control_no, prefix=prefix, year=year)
    return control_no
