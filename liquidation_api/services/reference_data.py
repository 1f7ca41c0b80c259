"""
Reference-data lookups (HEIs, programs, semesters, academic years, regions,
document locations, document requirements, reviewer lists) cached in Upstash
as JSON snapshots.

The cache is an optimisation only: any read or write failure is logged and
the database answers instead. Write endpoints call the ``invalidate_*`` hooks.

Snapshots are plain dicts with string ids so they survive a JSON round trip.
"""

import json
from typing import Awaitable, Callable, Optional
import uuid

import httpx
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from liquidation_api.config import settings
from liquidation_api.exceptions import NotFoundError
from liquidation_api.models.academic_year import AcademicYear
from liquidation_api.models.document_location import DocumentLocation
from liquidation_api.models.document_requirement import DocumentRequirement
from liquidation_api.models.hei import HEI
from liquidation_api.models.program import Program
from liquidation_api.models.region import Region
from liquidation_api.models.semester import (
    Semester,
    SEMESTER_FIRST,
    SEMESTER_SECOND,
    SEMESTER_SUMMER,
)
from liquidation_api.models.user import User
from liquidation_api.services.cache import cache
from liquidation_api.services.permissions import ROLE_ACCOUNTANT, ROLE_REGIONAL_COORDINATOR

logger = structlog.get_logger()

KEY_SEMESTERS = "lookup:semesters"
KEY_PROGRAMS = "lookup:programs"
KEY_HEIS = "lookup:heis"
KEY_REGIONS = "lookup:regions"
KEY_ACADEMIC_YEARS = "lookup:academic_years"
KEY_DOCUMENT_LOCATIONS = "lookup:document_locations"
KEY_REGIONAL_COORDINATORS = "users:regional_coordinators"
KEY_ACCOUNTANTS = "users:accountants"

LOOKUP_KEYS = (
    KEY_SEMESTERS,
    KEY_PROGRAMS,
    KEY_HEIS,
    KEY_REGIONS,
    KEY_ACADEMIC_YEARS,
    KEY_DOCUMENT_LOCATIONS,
)

SEMESTER_ALIASES = {
    "1": SEMESTER_FIRST,
    "1st": SEMESTER_FIRST,
    "1st semester": SEMESTER_FIRST,
    "2": SEMESTER_SECOND,
    "2nd": SEMESTER_SECOND,
    "2nd semester": SEMESTER_SECOND,
    "3": SEMESTER_SUMMER,
    "summer": SEMESTER_SUMMER,
    "sum": SEMESTER_SUMMER,
}


def hei_uii_key(uii: str) -> str:
    return f"hei:uii:{uii.strip().lower()}"


def document_requirements_key(program_id) -> str:
    return f"lookup:document_requirements:{program_id}"


# ---------- snapshots ----------

def _id(value) -> Optional[str]:
    return str(value) if value is not None else None


def hei_snapshot(hei: HEI) -> dict:
    return {
        "id": _id(hei.id),
        "uii": hei.uii,
        "code": hei.code,
        "name": hei.name,
        "region_id": _id(hei.region_id),
        "status": hei.status,
    }


def program_snapshot(program: Program) -> dict:
    return {
        "id": _id(program.id),
        "code": program.code,
        "name": program.name,
        "description": program.description,
        "status": program.status,
    }


def semester_snapshot(semester: Semester) -> dict:
    return {
        "id": _id(semester.id),
        "code": semester.code,
        "name": semester.name,
        "sort_order": semester.sort_order,
        "is_active": semester.is_active,
    }


def academic_year_snapshot(year: AcademicYear) -> dict:
    return {
        "id": _id(year.id),
        "code": year.code,
        "start_year": year.start_year,
        "end_year": year.end_year,
        "is_active": year.is_active,
    }


def region_snapshot(region: Region) -> dict:
    return {"id": _id(region.id), "code": region.code, "name": region.name}


def document_location_snapshot(location: DocumentLocation) -> dict:
    return {
        "id": _id(location.id),
        "name": location.name,
        "sort_order": location.sort_order,
    }


def document_requirement_snapshot(requirement: DocumentRequirement) -> dict:
    return {
        "id": _id(requirement.id),
        "program_id": _id(requirement.program_id),
        "code": requirement.code,
        "name": requirement.name,
        "description": requirement.description,
        "upload_message": requirement.upload_message,
        "sort_order": requirement.sort_order,
        "is_required": requirement.is_required,
        "is_active": requirement.is_active,
    }


def user_snapshot(user: User) -> dict:
    return {
        "id": _id(user.id),
        "email": user.email,
        "name": user.name,
        "role": user.role,
        "hei_id": _id(user.hei_id),
        "region_id": _id(user.region_id),
    }


# ---------- cache plumbing ----------

async def _cached(key: str, ttl: int, loader: Callable[[], Awaitable]):
    if cache.enabled:
        try:
            raw = await cache.get(key)
            if raw is not None:
                return json.loads(raw)
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("cache_read_failed", key=key, error=str(exc))

    value = await loader()

    if cache.enabled and value is not None:
        try:
            await cache.set(key, json.dumps(value, default=str), ex=ttl)
        except httpx.HTTPError as exc:
            logger.warning("cache_write_failed", key=key, error=str(exc))
    return value


async def _forget(*keys: str):
    if not cache.enabled:
        return
    try:
        await cache.delete(*keys)
        logger.info("cache_invalidated", keys=list(keys))
    except httpx.HTTPError as exc:
        logger.warning("cache_invalidate_failed", keys=list(keys), error=str(exc))


async def invalidate_lookups():
    await _forget(*LOOKUP_KEYS)


async def invalidate_hei(uii: Optional[str] = None):
    keys = [KEY_HEIS]
    if uii:
        keys.append(hei_uii_key(uii))
    await _forget(*keys)


async def invalidate_document_requirements(*program_ids):
    keys = {document_requirements_key(p) for p in program_ids if p is not None}
    if keys:
        await _forget(*sorted(keys))


async def invalidate_users():
    await _forget(KEY_REGIONAL_COORDINATORS, KEY_ACCOUNTANTS)


# ---------- lists ----------

async def list_semesters(session: AsyncSession) -> list[dict]:
    async def load():
        result = await session.execute(
            select(Semester)
            .where(Semester.is_active == True)  # noqa: E712
            .order_by(Semester.sort_order)
        )
        return [semester_snapshot(s) for s in result.scalars().all()]

    return await _cached(KEY_SEMESTERS, settings.CACHE_TTL_LONG, load)


async def list_academic_years(session: AsyncSession) -> list[dict]:
    async def load():
        result = await session.execute(
            select(AcademicYear).order_by(AcademicYear.start_year.desc())
        )
        return [academic_year_snapshot(y) for y in result.scalars().all()]

    return await _cached(KEY_ACADEMIC_YEARS, settings.CACHE_TTL_LONG, load)


async def list_programs(session: AsyncSession) -> list[dict]:
    async def load():
        result = await session.execute(
            select(Program).where(Program.status == "active").order_by(Program.name)
        )
        return [program_snapshot(p) for p in result.scalars().all()]

    return await _cached(KEY_PROGRAMS, settings.CACHE_TTL_MEDIUM, load)


async def list_heis(session: AsyncSession) -> list[dict]:
    async def load():
        result = await session.execute(
            select(HEI).where(HEI.status == "active").order_by(HEI.name)
        )
        return [hei_snapshot(h) for h in result.scalars().all()]

    return await _cached(KEY_HEIS, settings.CACHE_TTL_MEDIUM, load)


async def list_regions(session: AsyncSession) -> list[dict]:
    async def load():
        result = await session.execute(select(Region).order_by(Region.code))
        return [region_snapshot(r) for r in result.scalars().all()]

    return await _cached(KEY_REGIONS, settings.CACHE_TTL_LONG, load)


async def list_document_locations(session: AsyncSession) -> list[dict]:
    async def load():
        result = await session.execute(
            select(DocumentLocation).order_by(
                DocumentLocation.sort_order, DocumentLocation.name
            )
        )
        return [document_location_snapshot(d) for d in result.scalars().all()]

    return await _cached(KEY_DOCUMENT_LOCATIONS, settings.CACHE_TTL_LONG, load)


async def list_document_requirements(session: AsyncSession, program_id) -> list[dict]:
    """Active requirements of one program, in upload order."""

    async def load():
        result = await session.execute(
            select(DocumentRequirement)
            .where(
                DocumentRequirement.program_id == program_id,
                DocumentRequirement.is_active == True,  # noqa: E712
            )
            .order_by(DocumentRequirement.sort_order, DocumentRequirement.name)
        )
        return [document_requirement_snapshot(r) for r in result.scalars().all()]

    return await _cached(
        document_requirements_key(program_id), settings.CACHE_TTL_LONG, load
    )


async def _active_users_with_role(session: AsyncSession, role: str) -> list[dict]:
    result = await session.execute(
        select(User).where(
            User.role == role,
            User.is_active == True,  # noqa: E712
            User.deleted_at.is_(None),
        )
    )
    return [user_snapshot(u) for u in result.scalars().all()]


async def get_regional_coordinators(
    session: AsyncSession, region_id=None
) -> list[dict]:
    users = await _cached(
        KEY_REGIONAL_COORDINATORS,
        settings.CACHE_TTL_SHORT,
        lambda: _active_users_with_role(session, ROLE_REGIONAL_COORDINATOR),
    )
    if region_id is None:
        return users
    return [u for u in users if u["region_id"] == str(region_id)]


async def get_accountants(session: AsyncSession) -> list[dict]:
    return await _cached(
        KEY_ACCOUNTANTS,
        settings.CACHE_TTL_SHORT,
        lambda: _active_users_with_role(session, ROLE_ACCOUNTANT),
    )


# ---------- single lookups ----------

async def find_hei_by_uii(session: AsyncSession, uii: str) -> Optional[dict]:
    """Exact UII match first, then case-insensitive."""
    uii = (uii or "").strip()
    if not uii:
        return None

    async def load():
        result = await session.execute(select(HEI).where(HEI.uii == uii))
        hei = result.scalar_one_or_none()
        if hei is None:
            result = await session.execute(
                select(HEI).where(func.lower(HEI.uii) == uii.lower())
            )
            hei = result.scalars().first()
        return hei_snapshot(hei) if hei else None

    return await _cached(hei_uii_key(uii), settings.CACHE_TTL_MEDIUM, load)


async def get_hei(session: AsyncSession, hei_id) -> dict:
    hei = await session.get(HEI, hei_id)
    if hei is None:
        raise NotFoundError("HEI", hei_id)
    return hei_snapshot(hei)


async def find_program(session: AsyncSession, program_ref) -> Optional[dict]:
    """Look up a program by id, code or name (code and name case-insensitive)."""
    if program_ref is None:
        return None
    ref = str(program_ref).strip()
    if not ref:
        return None
    for program in await list_programs(session):
        if program["id"] == ref or ref.lower() in (
            program["code"].lower(), program["name"].lower()
        ):
            return program

    # Inactive programs are not in the cached list
    try:
        condition = Program.id == uuid.UUID(ref)
    except ValueError:
        condition = func.lower(Program.code) == ref.lower()
    result = await session.execute(select(Program).where(condition))
    program = result.scalar_one_or_none()
    return program_snapshot(program) if program else None


async def find_semester_id(session: AsyncSession, label: Optional[str]) -> Optional[uuid.UUID]:
    """Map a free-form semester label to a semester id, falling back to 1ST."""
    semesters = await list_semesters(session)
    by_code = {s["code"]: s for s in semesters}
    value = (label or "").strip().lower()

    match = None
    if value:
        code = SEMESTER_ALIASES.get(value)
        if code:
            match = by_code.get(code)
        else:
            match = next((s for s in semesters if s["name"].lower() == value), None)

    if match is None:
        match = by_code.get(SEMESTER_FIRST)
        if value:
            logger.info("semester_label_fallback", label=label)
    return uuid.UUID(match["id"]) if match else None


async def find_academic_year(session: AsyncSession, label) -> Optional[dict]:
    """Look up an academic year by id or code (``2024-2025``)."""
    if label is None:
        return None
    ref = str(label).strip()
    for year in await list_academic_years(session):
        if year["id"] == ref or year["code"] == ref:
            return year
    return None


async def find_document_location(session: AsyncSession, location_id) -> Optional[dict]:
    if location_id is None:
        return None
    for location in await list_document_locations(session):
        if location["id"] == str(location_id):
            return location
    return None


async def find_document_location_by_name(session: AsyncSession, name: str) -> Optional[dict]:
    wanted = (name or "").strip().lower()
    for location in await list_document_locations(session):
        if location["name"].lower() == wanted:
            return location
    return None


async def find_document_requirement(
    session: AsyncSession, program_id, requirement_id
) -> Optional[dict]:
    """An active requirement of ``program_id``; None when inactive or of another program."""
    for requirement in await list_document_requirements(session, program_id):
        if requirement["id"] == str(requirement_id):
            return requirement
    return None
