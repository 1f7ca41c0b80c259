import uuid
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from liquidation_api.database import get_db, is_unique_violation
from liquidation_api.exceptions import ConflictError, NotFoundError, ValidationError
from liquidation_api.middleware.auth import get_current_actor
from liquidation_api.middleware.authorization import require_capability
from liquidation_api.models.academic_year import AcademicYear
from liquidation_api.models.document_location import DocumentLocation
from liquidation_api.models.document_requirement import (
    REQUIREMENT_CODE_CONSTRAINT,
    DocumentRequirement,
)
from liquidation_api.models.hei import HEI
from liquidation_api.models.program import Program
from liquidation_api.models.region import Region
from liquidation_api.models.semester import Semester
from liquidation_api.schemas.reference import (
    AcademicYearCreate,
    AcademicYearResponse,
    DocumentLocationCreate,
    DocumentLocationResponse,
    DocumentRequirementCreate,
    DocumentRequirementResponse,
    DocumentRequirementUpdate,
    HeiCreate,
    HeiResponse,
    HeiUpdate,
    ProgramCreate,
    ProgramResponse,
    ProgramUpdate,
    RegionCreate,
    RegionResponse,
    SemesterCreate,
    SemesterResponse,
)
from liquidation_api.services import reference_data
from liquidation_api.services.activity_service import create_activity_log
from liquidation_api.services.permissions import Actor, MANAGE_REFERENCE_DATA

logger = structlog.get_logger()
router = APIRouter()

MODULE = "reference_data"


async def _ensure_unique(db: AsyncSession, column, value, entity: str):
    existing = await db.execute(select(func.count()).where(func.lower(column) == value.lower()))
    if (existing.scalar() or 0) > 0:
        raise ConflictError(f"{entity} '{value}' already exists", entity=entity, value=value)


async def _log(db: AsyncSession, actor: Actor, action: str, entity_type: str, entity_id,
               label: str, before: Optional[dict] = None, after: Optional[dict] = None):
    await create_activity_log(
        db,
        actor,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        description=f"{action.capitalize()} {entity_type} {label}",
        before_state=before,
        after_state=after,
        module=MODULE,
    )


# ---------- regions ----------

@router.get("/regions", response_model=list[RegionResponse])
async def list_regions(
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    return [RegionResponse(**r) for r in await reference_data.list_regions(db)]


@router.post("/regions", response_model=RegionResponse, status_code=status.HTTP_201_CREATED)
async def create_region(
    body: RegionCreate,
    actor: Actor = Depends(get_current_actor),
    _auth: None = Depends(require_capability(MANAGE_REFERENCE_DATA)),
    db: AsyncSession = Depends(get_db),
):
    await _ensure_unique(db, Region.code, body.code, "Region")
    region = Region(id=uuid.uuid4(), code=body.code.strip().upper(), name=body.name.strip(),
                    created_at=datetime.utcnow())
    db.add(region)
    await db.flush()
    snapshot = reference_data.region_snapshot(region)
    await _log(db, actor, "created", "region", region.id, region.code, after=snapshot)
    await reference_data.invalidate_lookups()
    return RegionResponse(**snapshot)


# ---------- HEIs ----------

@router.get("/heis", response_model=list[HeiResponse])
async def list_heis(
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    return [HeiResponse(**h) for h in await reference_data.list_heis(db)]


@router.get("/heis/by-uii/{uii}", response_model=HeiResponse)
async def get_hei_by_uii(
    uii: str,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    hei = await reference_data.find_hei_by_uii(db, uii)
    if hei is None:
        raise NotFoundError("HEI", uii, field="uii")
    return HeiResponse(**hei)


@router.post("/heis", response_model=HeiResponse, status_code=status.HTTP_201_CREATED)
async def create_hei(
    body: HeiCreate,
    actor: Actor = Depends(get_current_actor),
    _auth: None = Depends(require_capability(MANAGE_REFERENCE_DATA)),
    db: AsyncSession = Depends(get_db),
):
    await _ensure_unique(db, HEI.uii, body.uii.strip(), "HEI")
    region_id = body.region_id
    if region_id and await db.get(Region, region_id) is None:
        raise NotFoundError("Region", body.region_id, field="region_id")

    now = datetime.utcnow()
    hei = HEI(
        id=uuid.uuid4(),
        uii=body.uii.strip(),
        code=body.code,
        name=body.name.strip(),
        region_id=region_id,
        status="active",
        created_at=now,
        updated_at=now,
    )
    db.add(hei)
    await db.flush()
    snapshot = reference_data.hei_snapshot(hei)
    await _log(db, actor, "created", "hei", hei.id, hei.uii, after=snapshot)
    await reference_data.invalidate_hei(hei.uii)
    return HeiResponse(**snapshot)


@router.put("/heis/{hei_id}", response_model=HeiResponse)
async def update_hei(
    hei_id: uuid.UUID,
    body: HeiUpdate,
    actor: Actor = Depends(get_current_actor),
    _auth: None = Depends(require_capability(MANAGE_REFERENCE_DATA)),
    db: AsyncSession = Depends(get_db),
):
    hei = await db.get(HEI, hei_id)
    if hei is None:
        raise NotFoundError("HEI", hei_id)

    before = reference_data.hei_snapshot(hei)
    changes = body.model_dump(exclude_unset=True)
    if changes.get("region_id") and await db.get(Region, changes["region_id"]) is None:
        raise NotFoundError("Region", changes["region_id"], field="region_id")
    for key, value in changes.items():
        setattr(hei, key, value)
    hei.updated_at = datetime.utcnow()
    await db.flush()

    after = reference_data.hei_snapshot(hei)
    await _log(db, actor, "updated", "hei", hei.id, hei.uii, before=before, after=after)
    await reference_data.invalidate_hei(hei.uii)
    return HeiResponse(**after)


# ---------- programs ----------

@router.get("/programs", response_model=list[ProgramResponse])
async def list_programs(
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    return [ProgramResponse(**p) for p in await reference_data.list_programs(db)]


@router.post("/programs", response_model=ProgramResponse, status_code=status.HTTP_201_CREATED)
async def create_program(
    body: ProgramCreate,
    actor: Actor = Depends(get_current_actor),
    _auth: None = Depends(require_capability(MANAGE_REFERENCE_DATA)),
    db: AsyncSession = Depends(get_db),
):
    await _ensure_unique(db, Program.code, body.code, "Program")
    now = datetime.utcnow()
    program = Program(
        id=uuid.uuid4(),
        code=body.code.strip().upper(),
        name=body.name.strip(),
        description=body.description,
        status="active",
        created_at=now,
        updated_at=now,
    )
    db.add(program)
    await db.flush()
    snapshot = reference_data.program_snapshot(program)
    await _log(db, actor, "created", "program", program.id, program.code, after=snapshot)
    await reference_data.invalidate_lookups()
    return ProgramResponse(**snapshot)


@router.put("/programs/{program_id}", response_model=ProgramResponse)
async def update_program(
    program_id: uuid.UUID,
    body: ProgramUpdate,
    actor: Actor = Depends(get_current_actor),
    _auth: None = Depends(require_capability(MANAGE_REFERENCE_DATA)),
    db: AsyncSession = Depends(get_db),
):
    program = await db.get(Program, program_id)
    if program is None:
        raise NotFoundError("Program", program_id)

    before = reference_data.program_snapshot(program)
    # code is the control-number prefix and stays fixed
    for key, value in body.model_dump(exclude_unset=True).items():
        setattr(program, key, value)
    program.updated_at = datetime.utcnow()
    await db.flush()

    after = reference_data.program_snapshot(program)
    await _log(db, actor, "updated", "program", program.id, program.code, before=before, after=after)
    await reference_data.invalidate_lookups()
    return ProgramResponse(**after)


# ---------- semesters ----------

@router.get("/semesters", response_model=list[SemesterResponse])
async def list_semesters(
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    return [SemesterResponse(**s) for s in await reference_data.list_semesters(db)]


@router.post("/semesters", response_model=SemesterResponse, status_code=status.HTTP_201_CREATED)
async def create_semester(
    body: SemesterCreate,
    actor: Actor = Depends(get_current_actor),
    _auth: None = Depends(require_capability(MANAGE_REFERENCE_DATA)),
    db: AsyncSession = Depends(get_db),
):
    await _ensure_unique(db, Semester.code, body.code, "Semester")
    semester = Semester(
        id=uuid.uuid4(),
        code=body.code,
        name=body.name.strip(),
        sort_order=body.sort_order,
        is_active=True,
        created_at=datetime.utcnow(),
    )
    db.add(semester)
    await db.flush()
    snapshot = reference_data.semester_snapshot(semester)
    await _log(db, actor, "created", "semester", semester.id, semester.code, after=snapshot)
    await reference_data.invalidate_lookups()
    return SemesterResponse(**snapshot)


# ---------- academic years ----------

@router.get("/academic-years", response_model=list[AcademicYearResponse])
async def list_academic_years(
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    return [AcademicYearResponse(**y) for y in await reference_data.list_academic_years(db)]


@router.post("/academic-years", response_model=AcademicYearResponse,
             status_code=status.HTTP_201_CREATED)
async def create_academic_year(
    body: AcademicYearCreate,
    actor: Actor = Depends(get_current_actor),
    _auth: None = Depends(require_capability(MANAGE_REFERENCE_DATA)),
    db: AsyncSession = Depends(get_db),
):
    start, end = (int(part) for part in body.code.split("-"))
    if end != start + 1:
        raise ValidationError(
            f"Academic year {body.code} must span consecutive years", field="code"
        )
    await _ensure_unique(db, AcademicYear.code, body.code, "AcademicYear")
    year = AcademicYear(
        id=uuid.uuid4(),
        code=body.code,
        start_year=start,
        end_year=end,
        is_active=body.is_active,
        created_at=datetime.utcnow(),
    )
    db.add(year)
    await db.flush()
    snapshot = reference_data.academic_year_snapshot(year)
    await _log(db, actor, "created", "academic_year", year.id, year.code, after=snapshot)
    await reference_data.invalidate_lookups()
    return AcademicYearResponse(**snapshot)


# ---------- document locations ----------

@router.get("/document-locations", response_model=list[DocumentLocationResponse])
async def list_document_locations(
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    return [
        DocumentLocationResponse(**d)
        for d in await reference_data.list_document_locations(db)
    ]


@router.post("/document-locations", response_model=DocumentLocationResponse,
             status_code=status.HTTP_201_CREATED)
async def create_document_location(
    body: DocumentLocationCreate,
    actor: Actor = Depends(get_current_actor),
    _auth: None = Depends(require_capability(MANAGE_REFERENCE_DATA)),
    db: AsyncSession = Depends(get_db),
):
    await _ensure_unique(db, DocumentLocation.name, body.name.strip(), "DocumentLocation")
    location = DocumentLocation(
        id=uuid.uuid4(),
        name=body.name.strip(),
        sort_order=body.sort_order,
        created_at=datetime.utcnow(),
    )
    db.add(location)
    await db.flush()
    snapshot = reference_data.document_location_snapshot(location)
    await _log(db, actor, "created", "document_location", location.id, location.name,
               after=snapshot)
    await reference_data.invalidate_lookups()
    return DocumentLocationResponse(**snapshot)


# ---------- document requirements ----------

async def _ensure_requirement_code_free(
    db: AsyncSession, program_id, code: str, exclude_id=None
):
    query = select(func.count()).where(
        DocumentRequirement.program_id == program_id,
        DocumentRequirement.code == code,
    )
    if exclude_id is not None:
        query = query.where(DocumentRequirement.id != exclude_id)
    if ((await db.execute(query)).scalar() or 0) > 0:
        raise ConflictError(
            f"Document requirement '{code}' already exists for this program",
            entity="DocumentRequirement",
            value=code,
        )


async def _flush_requirement(db: AsyncSession, code: str):
    try:
        await db.flush()
    except IntegrityError as exc:
        if not is_unique_violation(exc, REQUIREMENT_CODE_CONSTRAINT):
            raise
        raise ConflictError(
            f"Document requirement '{code}' already exists for this program",
            entity="DocumentRequirement",
            value=code,
        ) from exc


async def _require_program(db: AsyncSession, program_id):
    if await db.get(Program, program_id) is None:
        raise NotFoundError("Program", program_id, field="program_id")


@router.get("/programs/{program_id}/document-requirements",
            response_model=list[DocumentRequirementResponse])
async def list_document_requirements(
    program_id: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    return [
        DocumentRequirementResponse(**r)
        for r in await reference_data.list_document_requirements(db, program_id)
    ]


@router.post("/document-requirements", response_model=DocumentRequirementResponse,
             status_code=status.HTTP_201_CREATED)
async def create_document_requirement(
    body: DocumentRequirementCreate,
    actor: Actor = Depends(get_current_actor),
    _auth: None = Depends(require_capability(MANAGE_REFERENCE_DATA)),
    db: AsyncSession = Depends(get_db),
):
    await _require_program(db, body.program_id)
    code = body.code.strip().upper()
    await _ensure_requirement_code_free(db, body.program_id, code)

    now = datetime.utcnow()
    requirement = DocumentRequirement(
        id=uuid.uuid4(),
        program_id=body.program_id,
        code=code,
        name=body.name.strip(),
        description=body.description or None,
        upload_message=body.upload_message or None,
        sort_order=body.sort_order,
        is_required=body.is_required,
        is_active=body.is_active,
        created_at=now,
        updated_at=now,
    )
    db.add(requirement)
    await _flush_requirement(db, code)
    snapshot = reference_data.document_requirement_snapshot(requirement)
    await _log(db, actor, "created", "document_requirement", requirement.id, code,
               after=snapshot)
    await reference_data.invalidate_document_requirements(requirement.program_id)
    return DocumentRequirementResponse(**snapshot)


@router.put("/document-requirements/{requirement_id}",
            response_model=DocumentRequirementResponse)
async def update_document_requirement(
    requirement_id: uuid.UUID,
    body: DocumentRequirementUpdate,
    actor: Actor = Depends(get_current_actor),
    _auth: None = Depends(require_capability(MANAGE_REFERENCE_DATA)),
    db: AsyncSession = Depends(get_db),
):
    requirement = await db.get(DocumentRequirement, requirement_id)
    if requirement is None:
        raise NotFoundError("DocumentRequirement", requirement_id)

    before = reference_data.document_requirement_snapshot(requirement)
    old_program_id = requirement.program_id
    changes = body.model_dump(exclude_unset=True)
    if changes.get("program_id") and changes["program_id"] != old_program_id:
        await _require_program(db, changes["program_id"])
    if changes.get("code"):
        changes["code"] = changes["code"].strip().upper()
    await _ensure_requirement_code_free(
        db,
        changes.get("program_id") or old_program_id,
        changes.get("code") or requirement.code,
        exclude_id=requirement.id,
    )
    for key, value in changes.items():
        setattr(requirement, key, value)
    requirement.updated_at = datetime.utcnow()
    await _flush_requirement(db, requirement.code)

    after = reference_data.document_requirement_snapshot(requirement)
    await _log(db, actor, "updated", "document_requirement", requirement.id, requirement.code,
               before=before, after=after)
    # A moved requirement leaves both programs' lists stale
    await reference_data.invalidate_document_requirements(old_program_id, requirement.program_id)
    return DocumentRequirementResponse(**after)


@router.delete("/document-requirements/{requirement_id}",
               status_code=status.HTTP_204_NO_CONTENT)
async def delete_document_requirement(
    requirement_id: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    _auth: None = Depends(require_capability(MANAGE_REFERENCE_DATA)),
    db: AsyncSession = Depends(get_db),
):
    requirement = await db.get(DocumentRequirement, requirement_id)
    if requirement is None:
        raise NotFoundError("DocumentRequirement", requirement_id)

    before = reference_data.document_requirement_snapshot(requirement)
    # Uploaded documents keep their rows; the FK nulls out
    await db.delete(requirement)
    await db.flush()
    await _log(db, actor, "deleted", "document_requirement", requirement_id, before["code"],
               before=before)
    await reference_data.invalidate_document_requirements(before["program_id"])
