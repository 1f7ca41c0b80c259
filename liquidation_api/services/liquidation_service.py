"""
Liquidation service: creation, workflow transitions, HEI-side edits, reads.

Every operation takes the request's ``AsyncSession`` and an explicit ``Actor``.
Services only flush; ``get_db`` owns the commit, so the status change, review
row, sub-records, activity log and notifications land atomically.

Transition checks run in a fixed order and raise before anything is mutated:

    1. liquidation exists and is not soft-deleted      NotFoundError
    2. capability, ownership, region scope             UnauthorizedError
    3. current status is a source of the operation     InvalidStateError
    4. inputs                                          ValidationError
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Optional
import uuid

from sqlalchemy import select, func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from liquidation_api.database import is_unique_violation
from liquidation_api.exceptions import (
    ConflictError,
    InvalidStateError,
    LiquidationError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from liquidation_api.models.compliance import ComplianceStatus, LiquidationCompliance
from liquidation_api.models.hei import HEI
from liquidation_api.models.liquidation import (
    CONTROL_NO_CONSTRAINT,
    DOCUMENT_REQUIREMENT_CONSTRAINT,
    DocumentStatus,
    Liquidation,
    LiquidationBeneficiary,
    LiquidationDocument,
    LiquidationFinancial,
    LiquidationStatus,
    WorkflowStatus,
)
from liquidation_api.models.review import LiquidationReview, ReviewType
from liquidation_api.models.running_data import LiquidationRunningData
from liquidation_api.models.transmittal import (
    TRANSMITTAL_REFERENCE_CONSTRAINT,
    LiquidationTransmittal,
    TransmittalLocationEvent,
)
from liquidation_api.services import (
    financial_service,
    notification_service,
    reference_data,
    review_service,
)
from liquidation_api.services.activity_service import create_activity_log
from liquidation_api.services.control_number_service import next_control_number
from liquidation_api.services.notification_service import EmailMessage
from liquidation_api.services.permissions import (
    Actor,
    has_capability,
    BULK_IMPORT_LIQUIDATIONS,
    CREATE_LIQUIDATION,
    DELETE_LIQUIDATION,
    EDIT_LIQUIDATION,
    ENDORSE_TO_ACCOUNTING,
    ENDORSE_TO_COA,
    MANAGE_ALL_LIQUIDATIONS,
    MANAGE_RUNNING_DATA,
    REGION_SCOPED,
    ROLE_ACCOUNTANT,
    ROLE_ADMIN,
    ROLE_HEI,
    ROLE_REGIONAL_COORDINATOR,
    ROLE_SUPER_ADMIN,
)
from liquidation_api.services.workflow import (
    EDITABLE_STATUSES,
    LOCKED_STATUSES,
    TRANSITIONS,
    Operation,
    days_lapsed,
    derive_document_status,
    derive_liquidation_status,
    resolve_transition,
)

logger = structlog.get_logger()

MODULE = "liquidations"

# Uploads without a document requirement (RC letters); Drive links are not counted
MAX_FREE_FORM_FILES = 3
FREE_FORM_DOCUMENT_TYPE = "RC Letter"

BULK_DOCUMENT_STATUSES = {
    "COMPLETE": DocumentStatus.COMPLETE,
    "COMPLETED": DocumentStatus.COMPLETE,
    "PARTIAL": DocumentStatus.PARTIAL,
    "INCOMPLETE": DocumentStatus.PARTIAL,
    "NONE": DocumentStatus.NONE,
    "N/A": DocumentStatus.NONE,
    "NA": DocumentStatus.NONE,
}


@dataclass
class TransmittalView:
    transmittal: LiquidationTransmittal
    location_history: list[TransmittalLocationEvent] = field(default_factory=list)

    @property
    def current_location(self) -> Optional[str]:
        if self.location_history:
            return self.location_history[-1].location_name
        return None


@dataclass
class LiquidationAggregate:
    liquidation: Liquidation
    financial: Optional[LiquidationFinancial] = None
    hei: Optional[dict] = None
    beneficiary_count: int = 0
    document_count: int = 0
    reviews: list[LiquidationReview] = field(default_factory=list)
    transmittals: list[TransmittalView] = field(default_factory=list)
    compliance: list[LiquidationCompliance] = field(default_factory=list)
    running_data: list[LiquidationRunningData] = field(default_factory=list)
    # Rendered notification e-mail; the route schedules delivery
    email: Optional[EmailMessage] = None

    @property
    def days_lapsed(self) -> Optional[int]:
        if self.financial is None:
            return None
        return days_lapsed(
            self.financial.date_fund_released, self.liquidation.date_submitted
        )

    @property
    def active_transmittal(self) -> Optional[TransmittalView]:
        return self.transmittals[-1] if self.transmittals else None

    @property
    def active_compliance(self) -> Optional[LiquidationCompliance]:
        return self.compliance[-1] if self.compliance else None


# ---------- queries ----------

async def get_liquidation(session: AsyncSession, liquidation_id) -> Liquidation:
    result = await session.execute(
        select(Liquidation).where(
            Liquidation.id == liquidation_id,
            Liquidation.deleted_at.is_(None),
        )
    )
    liquidation = result.scalar_one_or_none()
    if liquidation is None:
        raise NotFoundError("Liquidation", liquidation_id)
    return liquidation


async def get_liquidation_for_update(session: AsyncSession, liquidation_id) -> Liquidation:
    """Load and row-lock a liquidation; concurrent reviewers queue here."""
    result = await session.execute(
        select(Liquidation)
        .where(
            Liquidation.id == liquidation_id,
            Liquidation.deleted_at.is_(None),
        )
        .with_for_update()
    )
    liquidation = result.scalar_one_or_none()
    if liquidation is None:
        raise NotFoundError("Liquidation", liquidation_id)
    return liquidation


async def count_beneficiaries(session: AsyncSession, liquidation_id) -> int:
    result = await session.execute(
        select(func.count(LiquidationBeneficiary.id)).where(
            LiquidationBeneficiary.liquidation_id == liquidation_id
        )
    )
    return result.scalar() or 0


async def count_documents(session: AsyncSession, liquidation_id) -> int:
    result = await session.execute(
        select(func.count(LiquidationDocument.id)).where(
            LiquidationDocument.liquidation_id == liquidation_id
        )
    )
    return result.scalar() or 0


async def sum_beneficiary_amounts(session: AsyncSession, liquidation_id) -> Decimal:
    result = await session.execute(
        select(func.coalesce(func.sum(LiquidationBeneficiary.amount), 0)).where(
            LiquidationBeneficiary.liquidation_id == liquidation_id
        )
    )
    return Decimal(result.scalar() or 0)


async def list_transmittals(session: AsyncSession, liquidation_id) -> list[TransmittalView]:
    result = await session.execute(
        select(LiquidationTransmittal)
        .where(LiquidationTransmittal.liquidation_id == liquidation_id)
        .order_by(LiquidationTransmittal.endorsed_at.asc())
    )
    transmittals = list(result.scalars().all())
    if not transmittals:
        return []

    events_result = await session.execute(
        select(TransmittalLocationEvent)
        .where(TransmittalLocationEvent.transmittal_id.in_([t.id for t in transmittals]))
        .order_by(TransmittalLocationEvent.changed_at.asc())
    )
    by_transmittal: dict = {}
    for event in events_result.scalars().all():
        by_transmittal.setdefault(event.transmittal_id, []).append(event)
    return [TransmittalView(t, by_transmittal.get(t.id, [])) for t in transmittals]


async def list_compliance(session: AsyncSession, liquidation_id) -> list[LiquidationCompliance]:
    result = await session.execute(
        select(LiquidationCompliance)
        .where(LiquidationCompliance.liquidation_id == liquidation_id)
        .order_by(LiquidationCompliance.created_at.asc())
    )
    return list(result.scalars().all())


async def list_running_data(
    session: AsyncSession, liquidation_id
) -> list[LiquidationRunningData]:
    result = await session.execute(
        select(LiquidationRunningData)
        .where(LiquidationRunningData.liquidation_id == liquidation_id)
        .order_by(LiquidationRunningData.sort_order.asc())
    )
    return list(result.scalars().all())


async def count_free_form_files(session: AsyncSession, liquidation_id) -> int:
    """Uploaded files not tied to a requirement (RC letters); links excluded."""
    result = await session.execute(
        select(func.count(LiquidationDocument.id)).where(
            LiquidationDocument.liquidation_id == liquidation_id,
            LiquidationDocument.document_requirement_id.is_(None),
            LiquidationDocument.is_gdrive == False,  # noqa: E712
        )
    )
    return result.scalar() or 0


async def requirement_has_document(session: AsyncSession, liquidation_id, requirement_id) -> bool:
    result = await session.execute(
        select(func.count(LiquidationDocument.id)).where(
            LiquidationDocument.liquidation_id == liquidation_id,
            LiquidationDocument.document_requirement_id == requirement_id,
        )
    )
    return (result.scalar() or 0) > 0


async def control_no_taken(session: AsyncSession, control_no: str) -> bool:
    """Soft-deleted liquidations still hold their control number."""
    result = await session.execute(
        select(func.count(Liquidation.id)).where(Liquidation.control_no == control_no)
    )
    return (result.scalar() or 0) > 0


async def load_aggregate(
    session: AsyncSession,
    liquidation: Liquidation,
    email: Optional[EmailMessage] = None,
) -> LiquidationAggregate:
    return LiquidationAggregate(
        liquidation=liquidation,
        financial=await financial_service.get_financial(session, liquidation.id),
        hei=await reference_data.get_hei(session, liquidation.hei_id),
        beneficiary_count=await count_beneficiaries(session, liquidation.id),
        document_count=await count_documents(session, liquidation.id),
        reviews=await review_service.list_reviews(session, liquidation.id),
        transmittals=await list_transmittals(session, liquidation.id),
        compliance=await list_compliance(session, liquidation.id),
        running_data=await list_running_data(session, liquidation.id),
        email=email,
    )


# ---------- authorization ----------

def _deny(actor: Actor, action: str, liquidation: Optional[Liquidation] = None, reason: str = ""):
    logger.warning(
        "liquidation_action_denied",
        action=action,
        actor_id=str(actor.user_id),
        role=actor.role,
        liquidation_id=str(liquidation.id) if liquidation else None,
        reason=reason,
    )
    subject = " this liquidation" if liquidation is not None else ""
    raise UnauthorizedError(
        f"Role '{actor.role}' cannot {action.replace('_', ' ')}{subject}",
        action=action,
        role=actor.role,
        liquidation_id=liquidation.id if liquidation else None,
    )


def _require_capability(actor: Actor, capability: str, action: str, liquidation=None):
    if not has_capability(actor, capability):
        _deny(actor, action, liquidation, reason=f"missing capability {capability}")


def is_owner(actor: Actor, liquidation: Liquidation) -> bool:
    """Creator, a user of the liquidation's HEI, or an administrator."""
    if has_capability(actor, MANAGE_ALL_LIQUIDATIONS):
        return True
    if liquidation.created_by == actor.user_id:
        return True
    return actor.hei_id is not None and liquidation.hei_id == actor.hei_id


async def _check_region_scope(
    session: AsyncSession, actor: Actor, liquidation: Liquidation, action: str
) -> dict:
    hei = await reference_data.get_hei(session, liquidation.hei_id)
    if has_capability(actor, REGION_SCOPED) and not has_capability(actor, MANAGE_ALL_LIQUIDATIONS):
        if actor.region_id is None or hei["region_id"] != str(actor.region_id):
            _deny(actor, action, liquidation, reason="outside assigned region")
    return hei


async def _authorize_transition(
    session: AsyncSession,
    actor: Actor,
    operation: Operation,
    liquidation: Liquidation,
) -> dict:
    if operation == Operation.SUBMIT_FOR_REVIEW:
        # The creator may submit its own draft; everyone else needs the capability
        if liquidation.created_by != actor.user_id:
            _require_capability(
                actor, TRANSITIONS[operation].capability, operation.value, liquidation
            )
            if not is_owner(actor, liquidation):
                _deny(actor, operation.value, liquidation, reason="not owner")
    else:
        _require_capability(
            actor, TRANSITIONS[operation].capability, operation.value, liquidation
        )
    return await _check_region_scope(session, actor, liquidation, operation.value)


# ---------- helpers ----------

def _state(liquidation: Liquidation) -> dict:
    return {
        "status": liquidation.status.value if liquidation.status else None,
        "liquidation_status": (
            liquidation.liquidation_status.value if liquidation.liquidation_status else None
        ),
        "document_status": (
            liquidation.document_status.value if liquidation.document_status else None
        ),
        "remarks": liquidation.remarks,
        "batch_no": liquidation.batch_no,
    }


def _blank(value: Optional[str]) -> bool:
    return value is None or not value.strip()


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


async def _refresh_liquidation_status(
    session: AsyncSession, liquidation: Liquidation
) -> Optional[LiquidationFinancial]:
    financial = await financial_service.get_financial(session, liquidation.id)
    liquidation.liquidation_status = derive_liquidation_status(financial)
    return financial


async def _finish_transition(
    session: AsyncSession,
    actor: Actor,
    liquidation: Liquidation,
    hei: dict,
    action: str,
    description: str,
    before: dict,
) -> LiquidationAggregate:
    liquidation.updated_at = datetime.utcnow()
    await session.flush()

    await create_activity_log(
        session,
        actor,
        action=action,
        entity_type="liquidation",
        entity_id=liquidation.id,
        description=description,
        before_state=before,
        after_state=_state(liquidation),
        module=MODULE,
    )
    dispatched = await notification_service.dispatch(
        session, action, description, liquidation, actor, module=MODULE, hei=hei
    )
    logger.info(
        f"liquidation_{action}",
        liquidation_id=str(liquidation.id),
        control_no=liquidation.control_no,
        from_status=before["status"],
        to_status=liquidation.status.value,
        actor_id=str(actor.user_id),
    )
    return await load_aggregate(session, liquidation, email=dispatched.email)


# ---------- creation ----------

async def create_liquidation(session: AsyncSession, actor: Actor, data: dict) -> LiquidationAggregate:
    """
    Create a draft liquidation with its financial record.

    ``data`` keys: uii, program (id or code), academic_year (id or code),
    semester (free-form label), batch_no, remarks, and the financial fields
    (amount_received is required).
    """
    _require_capability(actor, CREATE_LIQUIDATION, "create_liquidation")

    hei = await reference_data.find_hei_by_uii(session, data.get("uii") or "")
    if hei is None:
        raise NotFoundError("HEI", data.get("uii"), field="uii")

    if actor.role == ROLE_HEI and not has_capability(actor, MANAGE_ALL_LIQUIDATIONS):
        if actor.hei_id is None or hei["id"] != str(actor.hei_id):
            _deny(actor, "create_liquidation", reason="HEI other than the user's own")

    if has_capability(actor, REGION_SCOPED) and not has_capability(actor, MANAGE_ALL_LIQUIDATIONS):
        if actor.region_id is None or hei["region_id"] != str(actor.region_id):
            _deny(actor, "create_liquidation", reason="HEI outside assigned region")

    program = await reference_data.find_program(session, data.get("program"))
    if program is None:
        raise NotFoundError("Program", data.get("program"), field="program")

    academic_year = await reference_data.find_academic_year(session, data.get("academic_year"))
    if academic_year is None:
        raise NotFoundError("AcademicYear", data.get("academic_year"), field="academic_year")

    if data.get("amount_received") is None:
        raise ValidationError("amount_received is required", field="amount_received")

    semester_id = await reference_data.find_semester_id(session, data.get("semester"))
    control_no = await next_control_number(session, program["code"])

    now = datetime.utcnow()
    liquidation = Liquidation(
        id=uuid.uuid4(),
        control_no=control_no,
        hei_id=uuid.UUID(hei["id"]),
        program_id=uuid.UUID(program["id"]),
        academic_year_id=uuid.UUID(academic_year["id"]),
        semester_id=semester_id,
        batch_no=_clean(data.get("batch_no")),
        created_by=actor.user_id,
        status=WorkflowStatus.DRAFT,
        liquidation_status=LiquidationStatus.UNLIQUIDATED,
        document_status=DocumentStatus.NONE,
        remarks=_clean(data.get("remarks")),
        created_at=now,
        updated_at=now,
    )
    session.add(liquidation)
    try:
        await session.flush()
    except IntegrityError as exc:
        if not is_unique_violation(exc, CONTROL_NO_CONSTRAINT):
            raise
        logger.error("control_number_conflict", control_no=control_no, error=str(exc.orig))
        raise ConflictError(
            f"Control number {control_no} is already in use", control_no=control_no
        ) from exc

    await financial_service.create_financial(session, liquidation, data)

    await create_activity_log(
        session,
        actor,
        action="created",
        entity_type="liquidation",
        entity_id=liquidation.id,
        description=f"Created liquidation {control_no}",
        after_state=_state(liquidation),
        module=MODULE,
    )
    logger.info(
        "liquidation_created",
        liquidation_id=str(liquidation.id),
        control_no=control_no,
        hei_id=hei["id"],
        created_by=str(actor.user_id),
    )
    return await load_aggregate(session, liquidation)


# ---------- workflow transitions ----------

async def submit_for_review(
    session: AsyncSession,
    liquidation_id,
    actor: Actor,
    remarks: Optional[str] = None,
) -> LiquidationAggregate:
    operation = Operation.SUBMIT_FOR_REVIEW
    liquidation = await get_liquidation_for_update(session, liquidation_id)
    hei = await _authorize_transition(session, actor, operation, liquidation)
    target = resolve_transition(operation, liquidation.status, liquidation.id)

    beneficiaries = await count_beneficiaries(session, liquidation.id)
    if beneficiaries == 0:
        raise ValidationError(
            "Cannot submit a liquidation with no beneficiaries",
            field="beneficiaries",
            liquidation_id=liquidation.id,
        )
    documents = await count_documents(session, liquidation.id)

    before = _state(liquidation)
    resubmission = liquidation.status == WorkflowStatus.RETURNED_TO_HEI
    if resubmission:
        await review_service.record_review(
            session, liquidation.id, ReviewType.HEI_RESUBMISSION, actor, _clean(remarks)
        )
    elif not _blank(remarks):
        liquidation.remarks = remarks.strip()

    liquidation.status = target
    liquidation.date_submitted = datetime.utcnow()
    liquidation.document_status = derive_document_status(beneficiaries > 0, documents > 0)
    await _refresh_liquidation_status(session, liquidation)

    description = (
        f"Resubmitted liquidation {liquidation.control_no} for review"
        if resubmission
        else f"Submitted liquidation {liquidation.control_no} for review"
    )
    return await _finish_transition(
        session, actor, liquidation, hei, "submitted", description, before
    )


async def endorse_to_accounting(
    session: AsyncSession,
    liquidation_id,
    actor: Actor,
    transmittal: dict,
) -> LiquidationAggregate:
    """
    RC endorsement. Always creates a NEW transmittal row; the latest is the
    active one and earlier ones stay as history.

    ``transmittal`` keys: transmittal_reference_no (required), receiver_name,
    document_location (name), number_of_folders, folder_location_number,
    group_transmittal, other_file_location, remarks.
    """
    operation = Operation.ENDORSE_TO_ACCOUNTING
    liquidation = await get_liquidation_for_update(session, liquidation_id)
    hei = await _authorize_transition(session, actor, operation, liquidation)
    target = resolve_transition(operation, liquidation.status, liquidation.id)

    reference_no = _clean(transmittal.get("transmittal_reference_no"))
    if reference_no is None:
        raise ValidationError(
            "transmittal_reference_no is required", field="transmittal_reference_no"
        )
    location_name = _clean(transmittal.get("document_location"))
    location = None
    if location_name:
        location = await reference_data.find_document_location_by_name(session, location_name)
        if location is None:
            raise NotFoundError("DocumentLocation", location_name, field="document_location")

    before = _state(liquidation)
    now = datetime.utcnow()
    record = LiquidationTransmittal(
        id=uuid.uuid4(),
        liquidation_id=liquidation.id,
        transmittal_reference_no=reference_no,
        receiver_name=_clean(transmittal.get("receiver_name")),
        document_location_id=uuid.UUID(location["id"]) if location else None,
        number_of_folders=transmittal.get("number_of_folders"),
        folder_location_number=_clean(transmittal.get("folder_location_number")),
        group_transmittal=_clean(transmittal.get("group_transmittal")),
        other_file_location=_clean(transmittal.get("other_file_location")),
        endorsed_by=actor.user_id,
        endorsed_at=now,
    )
    session.add(record)
    try:
        await session.flush()
    except IntegrityError as exc:
        if not is_unique_violation(exc, TRANSMITTAL_REFERENCE_CONSTRAINT):
            raise
        raise ConflictError(
            f"Transmittal reference {reference_no} is already in use",
            transmittal_reference_no=reference_no,
        ) from exc

    if location:
        session.add(TransmittalLocationEvent(
            id=uuid.uuid4(),
            transmittal_id=record.id,
            location_name=location["name"],
            previous_location=None,
            notes="Initial location at endorsement",
            changed_by=actor.user_id,
            changed_at=now,
        ))

    remarks = _clean(transmittal.get("remarks"))
    if remarks:
        await review_service.record_review(
            session, liquidation.id, ReviewType.RC_ENDORSEMENT, actor, remarks
        )

    liquidation.status = target
    liquidation.reviewed_by = actor.user_id
    liquidation.reviewed_at = now
    await _refresh_liquidation_status(session, liquidation)

    return await _finish_transition(
        session,
        actor,
        liquidation,
        hei,
        "endorsed_to_accounting",
        f"Endorsed liquidation {liquidation.control_no} to Accounting ({reference_no})",
        before,
    )


async def return_to_hei(
    session: AsyncSession,
    liquidation_id,
    actor: Actor,
    remarks: str,
    documents_for_compliance: Optional[str] = None,
    amount_with_complete_docs: Optional[Decimal] = None,
) -> LiquidationAggregate:
    operation = Operation.RETURN_TO_HEI
    liquidation = await get_liquidation_for_update(session, liquidation_id)
    hei = await _authorize_transition(session, actor, operation, liquidation)
    target = resolve_transition(operation, liquidation.status, liquidation.id)

    if _blank(remarks):
        raise ValidationError("Remarks are required when returning to the HEI", field="remarks")
    if amount_with_complete_docs is not None and Decimal(amount_with_complete_docs) < 0:
        raise ValidationError(
            "amount_with_complete_docs cannot be negative", field="amount_with_complete_docs"
        )
    documents = _clean(documents_for_compliance)
    # The amount is stored on the compliance record, which needs a document list
    if amount_with_complete_docs is not None and documents is None:
        raise ValidationError(
            "amount_with_complete_docs requires documents_for_compliance",
            field="amount_with_complete_docs",
        )

    before = _state(liquidation)
    await review_service.record_review(
        session, liquidation.id, ReviewType.RC_RETURN, actor, remarks.strip(), documents
    )
    if documents:
        session.add(LiquidationCompliance(
            id=uuid.uuid4(),
            liquidation_id=liquidation.id,
            documents_required=documents,
            compliance_status=ComplianceStatus.PENDING_HEI_REVIEW,
            concerns_emailed_at=datetime.utcnow(),
            amount_with_complete_docs=amount_with_complete_docs,
            created_at=datetime.utcnow(),
        ))

    liquidation.status = target
    liquidation.reviewed_by = actor.user_id
    liquidation.reviewed_at = datetime.utcnow()
    await _refresh_liquidation_status(session, liquidation)

    return await _finish_transition(
        session,
        actor,
        liquidation,
        hei,
        "returned_to_hei",
        f"Returned liquidation {liquidation.control_no} to HEI: {remarks.strip()}",
        before,
    )


async def endorse_to_coa(
    session: AsyncSession,
    liquidation_id,
    actor: Actor,
    remarks: Optional[str] = None,
) -> LiquidationAggregate:
    operation = Operation.ENDORSE_TO_COA
    liquidation = await get_liquidation_for_update(session, liquidation_id)
    hei = await _authorize_transition(session, actor, operation, liquidation)
    target = resolve_transition(operation, liquidation.status, liquidation.id)

    before = _state(liquidation)
    if not _blank(remarks):
        await review_service.record_review(
            session, liquidation.id, ReviewType.ACCOUNTANT_ENDORSEMENT, actor, remarks.strip()
        )

    now = datetime.utcnow()
    liquidation.status = target
    liquidation.accountant_reviewed_by = actor.user_id
    liquidation.accountant_reviewed_at = now
    liquidation.coa_endorsed_by = actor.user_id
    liquidation.coa_endorsed_at = now
    await _refresh_liquidation_status(session, liquidation)

    return await _finish_transition(
        session,
        actor,
        liquidation,
        hei,
        "endorsed_to_coa",
        f"Endorsed liquidation {liquidation.control_no} to COA",
        before,
    )


async def return_to_rc(
    session: AsyncSession,
    liquidation_id,
    actor: Actor,
    remarks: str,
) -> LiquidationAggregate:
    operation = Operation.RETURN_TO_RC
    liquidation = await get_liquidation_for_update(session, liquidation_id)
    hei = await _authorize_transition(session, actor, operation, liquidation)
    target = resolve_transition(operation, liquidation.status, liquidation.id)

    if _blank(remarks):
        raise ValidationError("Remarks are required when returning to the RC", field="remarks")

    before = _state(liquidation)
    await review_service.record_review(
        session, liquidation.id, ReviewType.ACCOUNTANT_RETURN, actor, remarks.strip()
    )

    liquidation.status = target
    liquidation.accountant_reviewed_by = actor.user_id
    liquidation.accountant_reviewed_at = datetime.utcnow()
    await _refresh_liquidation_status(session, liquidation)

    return await _finish_transition(
        session,
        actor,
        liquidation,
        hei,
        "returned_to_rc",
        f"Returned liquidation {liquidation.control_no} to RC: {remarks.strip()}",
        before,
    )


# ---------- edits ----------

async def _authorize_edit(
    session: AsyncSession, actor: Actor, liquidation: Liquidation, action: str
) -> dict:
    _require_capability(actor, EDIT_LIQUIDATION, action, liquidation)
    if not is_owner(actor, liquidation) and not has_capability(actor, REGION_SCOPED):
        _deny(actor, action, liquidation, reason="not owner")
    hei = await _check_region_scope(session, actor, liquidation, action)
    _check_editable(actor, liquidation, action)
    return hei


def _check_editable(actor: Actor, liquidation: Liquidation, action: str):
    if liquidation.status in LOCKED_STATUSES:
        raise InvalidStateError(liquidation.id, action, liquidation.status)
    if (
        liquidation.status not in EDITABLE_STATUSES
        and not has_capability(actor, MANAGE_ALL_LIQUIDATIONS)
    ):
        raise InvalidStateError(liquidation.id, action, liquidation.status)


async def update_liquidation(
    session: AsyncSession, liquidation_id, actor: Actor, fields: dict
) -> LiquidationAggregate:
    """Edit remarks, batch number and financial fields before the report is locked."""
    liquidation = await get_liquidation_for_update(session, liquidation_id)
    await _authorize_edit(session, actor, liquidation, "update_liquidation")

    before = _state(liquidation)
    if "remarks" in fields:
        liquidation.remarks = _clean(fields["remarks"])
    if "batch_no" in fields:
        liquidation.batch_no = _clean(fields["batch_no"])

    financial_fields = {
        k: v for k, v in fields.items() if k in financial_service.FINANCIAL_FIELDS
    }
    if financial_fields:
        await financial_service.upsert_financial(session, liquidation, financial_fields)

    liquidation.updated_at = datetime.utcnow()
    await session.flush()

    await create_activity_log(
        session,
        actor,
        action="updated",
        entity_type="liquidation",
        entity_id=liquidation.id,
        description=f"Updated liquidation {liquidation.control_no}",
        before_state=before,
        after_state=_state(liquidation),
        module=MODULE,
    )
    logger.info("liquidation_updated", liquidation_id=str(liquidation.id))
    return await load_aggregate(session, liquidation)


async def delete_liquidation(session: AsyncSession, liquidation_id, actor: Actor) -> None:
    """Soft delete; only drafts can go."""
    liquidation = await get_liquidation_for_update(session, liquidation_id)
    _require_capability(actor, DELETE_LIQUIDATION, "delete_liquidation", liquidation)
    await _check_region_scope(session, actor, liquidation, "delete_liquidation")
    if liquidation.status != WorkflowStatus.DRAFT:
        raise InvalidStateError(liquidation.id, "delete_liquidation", liquidation.status)

    liquidation.deleted_at = datetime.utcnow()
    await session.flush()

    await create_activity_log(
        session,
        actor,
        action="deleted",
        entity_type="liquidation",
        entity_id=liquidation.id,
        description=f"Deleted liquidation {liquidation.control_no}",
        before_state=_state(liquidation),
        module=MODULE,
    )
    logger.info("liquidation_deleted", liquidation_id=str(liquidation.id))


async def add_beneficiaries(
    session: AsyncSession, liquidation_id, actor: Actor, rows: list[dict]
) -> LiquidationAggregate:
    """Append beneficiaries and recompute ``amount_liquidated`` as their total."""
    liquidation = await get_liquidation_for_update(session, liquidation_id)
    hei = await _authorize_edit(session, actor, liquidation, "add_beneficiaries")
    if liquidation.status not in EDITABLE_STATUSES:
        raise InvalidStateError(liquidation.id, "add_beneficiaries", liquidation.status)

    if not rows:
        raise ValidationError("At least one beneficiary is required", field="beneficiaries")
    for index, row in enumerate(rows):
        for required in ("last_name", "first_name"):
            if _blank(row.get(required)):
                raise ValidationError(
                    f"Row {index + 1}: {required} is required", field=required, row=index + 1
                )
        if Decimal(row.get("amount") or 0) < 0:
            raise ValidationError(
                f"Row {index + 1}: amount cannot be negative", field="amount", row=index + 1
            )

    before = _state(liquidation)
    for row in rows:
        session.add(LiquidationBeneficiary(
            id=uuid.uuid4(),
            liquidation_id=liquidation.id,
            student_no=_clean(row.get("student_no")),
            last_name=row["last_name"].strip(),
            first_name=row["first_name"].strip(),
            middle_name=_clean(row.get("middle_name")),
            extension_name=_clean(row.get("extension_name")),
            award_no=_clean(row.get("award_no")),
            date_disbursed=row.get("date_disbursed"),
            amount=Decimal(row.get("amount") or 0),
            remarks=_clean(row.get("remarks")),
            created_at=datetime.utcnow(),
        ))
    await session.flush()

    total = await sum_beneficiary_amounts(session, liquidation.id)
    financial = await financial_service.get_financial(session, liquidation.id)
    if financial is None:
        await financial_service.upsert_financial(session, liquidation, {"amount_liquidated": total})
    else:
        await financial_service.set_amount_liquidated(session, liquidation, financial, total)

    documents = await count_documents(session, liquidation.id)
    liquidation.document_status = derive_document_status(True, documents > 0)
    liquidation.updated_at = datetime.utcnow()
    await session.flush()

    description = f"Imported {len(rows)} beneficiaries into liquidation {liquidation.control_no}"
    await create_activity_log(
        session,
        actor,
        action="imported_beneficiaries",
        entity_type="liquidation",
        entity_id=liquidation.id,
        description=description,
        before_state=before,
        after_state=_state(liquidation),
        module=MODULE,
    )
    dispatched = await notification_service.dispatch(
        session, "imported_beneficiaries", description, liquidation, actor, module=MODULE, hei=hei
    )
    logger.info(
        "beneficiaries_imported",
        liquidation_id=str(liquidation.id),
        count=len(rows),
        amount_liquidated=str(total),
    )
    return await load_aggregate(session, liquidation, email=dispatched.email)


async def attach_document(
    session: AsyncSession, liquidation_id, actor: Actor, metadata: dict
) -> LiquidationAggregate:
    """Record uploaded-file metadata (or a Google Drive link); the blob is stored elsewhere.

    With ``document_requirement_id`` the document fulfils one active requirement
    of the liquidation's program, and each requirement takes a single document.
    Without it the upload is a free-form file (an RC letter), capped at
    ``MAX_FREE_FORM_FILES`` per liquidation.
    """
    liquidation = await get_liquidation_for_update(session, liquidation_id)
    hei = await _authorize_edit(session, actor, liquidation, "attach_document")
    if liquidation.status not in EDITABLE_STATUSES:
        raise InvalidStateError(liquidation.id, "attach_document", liquidation.status)

    is_gdrive = bool(metadata.get("gdrive_link"))
    if _blank(metadata.get("file_name")):
        raise ValidationError("file_name is required", field="file_name")
    if not is_gdrive and _blank(metadata.get("file_path")):
        raise ValidationError("Either file_path or gdrive_link is required", field="file_path")

    requirement_id = metadata.get("document_requirement_id")
    if requirement_id:
        requirement = await reference_data.find_document_requirement(
            session, liquidation.program_id, requirement_id
        )
        if requirement is None:
            raise ValidationError(
                "Invalid document requirement for this program",
                field="document_requirement_id",
            )
        if await requirement_has_document(session, liquidation.id, requirement_id):
            raise ValidationError(
                "A document was already submitted for this requirement; delete it first",
                field="document_requirement_id",
            )
        document_type = requirement["name"]
    else:
        if not is_gdrive and (
            await count_free_form_files(session, liquidation.id) >= MAX_FREE_FORM_FILES
        ):
            raise ValidationError(
                f"At most {MAX_FREE_FORM_FILES} files may be attached without a requirement",
                field="file_path",
            )
        document_type = _clean(metadata.get("document_type")) or FREE_FORM_DOCUMENT_TYPE

    before = _state(liquidation)
    document = LiquidationDocument(
        id=uuid.uuid4(),
        liquidation_id=liquidation.id,
        document_requirement_id=uuid.UUID(str(requirement_id)) if requirement_id else None,
        document_type=document_type,
        file_name=metadata["file_name"].strip(),
        file_path=_clean(metadata.get("file_path")),
        file_type=_clean(metadata.get("file_type")),
        file_size=metadata.get("file_size"),
        gdrive_link=_clean(metadata.get("gdrive_link")),
        is_gdrive=is_gdrive,
        description=_clean(metadata.get("description")),
        uploaded_by=actor.user_id,
        created_at=datetime.utcnow(),
    )
    session.add(document)
    try:
        await session.flush()
    except IntegrityError as exc:
        if not is_unique_violation(exc, DOCUMENT_REQUIREMENT_CONSTRAINT):
            raise
        raise ConflictError(
            "A document was already submitted for this requirement",
            liquidation_id=liquidation.id,
            document_requirement_id=requirement_id,
        ) from exc

    beneficiaries = await count_beneficiaries(session, liquidation.id)
    liquidation.document_status = derive_document_status(beneficiaries > 0, True)
    liquidation.updated_at = datetime.utcnow()
    await session.flush()

    action = "added_gdrive_link" if is_gdrive else "uploaded_document"
    description = f"Attached {document.file_name} to liquidation {liquidation.control_no}"
    await create_activity_log(
        session,
        actor,
        action=action,
        entity_type="liquidation",
        entity_id=liquidation.id,
        description=description,
        before_state=before,
        after_state=_state(liquidation),
        module=MODULE,
    )
    dispatched = await notification_service.dispatch(
        session, action, description, liquidation, actor, module=MODULE, hei=hei
    )
    logger.info("document_attached", liquidation_id=str(liquidation.id), is_gdrive=is_gdrive)
    return await load_aggregate(session, liquidation, email=dispatched.email)


async def move_transmittal_location(
    session: AsyncSession,
    liquidation_id,
    actor: Actor,
    location_name: str,
    notes: Optional[str] = None,
) -> LiquidationAggregate:
    """Append a location event to the active (latest) transmittal."""
    liquidation = await get_liquidation_for_update(session, liquidation_id)
    if not (
        has_capability(actor, ENDORSE_TO_ACCOUNTING) or has_capability(actor, ENDORSE_TO_COA)
    ):
        _deny(actor, "move_transmittal_location", liquidation, reason="missing capability")
    hei = await _check_region_scope(session, actor, liquidation, "move_transmittal_location")

    transmittals = await list_transmittals(session, liquidation.id)
    if not transmittals:
        raise NotFoundError("Transmittal", liquidation.id, liquidation_id=liquidation.id)
    if _blank(location_name):
        raise ValidationError("location is required", field="location")

    active = transmittals[-1]
    event = TransmittalLocationEvent(
        id=uuid.uuid4(),
        transmittal_id=active.transmittal.id,
        location_name=location_name.strip(),
        previous_location=active.current_location,
        notes=_clean(notes),
        changed_by=actor.user_id,
        changed_at=datetime.utcnow(),
    )
    session.add(event)
    await session.flush()

    description = (
        f"Moved documents of {liquidation.control_no} to {event.location_name}"
    )
    await create_activity_log(
        session,
        actor,
        action="updated_tracking",
        entity_type="liquidation",
        entity_id=liquidation.id,
        description=description,
        before_state={"location": event.previous_location},
        after_state={"location": event.location_name},
        module=MODULE,
    )
    dispatched = await notification_service.dispatch(
        session, "updated_tracking", description, liquidation, actor, module=MODULE, hei=hei
    )
    logger.info(
        "transmittal_location_moved",
        liquidation_id=str(liquidation.id),
        transmittal_id=str(active.transmittal.id),
        location=event.location_name,
    )
    return await load_aggregate(session, liquidation, email=dispatched.email)


async def delete_document(
    session: AsyncSession, liquidation_id, document_id, actor: Actor
) -> LiquidationAggregate:
    """Remove a document row so its requirement can be uploaded again."""
    liquidation = await get_liquidation_for_update(session, liquidation_id)
    result = await session.execute(
        select(LiquidationDocument).where(
            LiquidationDocument.id == document_id,
            LiquidationDocument.liquidation_id == liquidation.id,
        )
    )
    document = result.scalar_one_or_none()
    if document is None:
        raise NotFoundError("Document", document_id, liquidation_id=liquidation.id)

    if not (
        has_capability(actor, MANAGE_ALL_LIQUIDATIONS)
        or document.uploaded_by == actor.user_id
        or liquidation.created_by == actor.user_id
    ):
        _deny(actor, "delete_document", liquidation, reason="not uploader or creator")
    _check_editable(actor, liquidation, "delete_document")
    hei = await reference_data.get_hei(session, liquidation.hei_id)

    before = _state(liquidation)
    file_name = document.file_name
    await session.delete(document)
    await session.flush()

    beneficiaries = await count_beneficiaries(session, liquidation.id)
    documents = await count_documents(session, liquidation.id)
    liquidation.document_status = derive_document_status(beneficiaries > 0, documents > 0)
    liquidation.updated_at = datetime.utcnow()
    await session.flush()

    description = f"Deleted {file_name} from liquidation {liquidation.control_no}"
    await create_activity_log(
        session,
        actor,
        action="deleted_document",
        entity_type="liquidation",
        entity_id=liquidation.id,
        description=description,
        before_state=before,
        after_state=_state(liquidation),
        module=MODULE,
    )
    dispatched = await notification_service.dispatch(
        session, "deleted_document", description, liquidation, actor, module=MODULE, hei=hei
    )
    logger.info(
        "document_deleted",
        liquidation_id=str(liquidation.id),
        document_id=str(document_id),
    )
    return await load_aggregate(session, liquidation, email=dispatched.email)


_RUNNING_AMOUNTS = ("amount_complete_docs", "amount_refunded", "total_amount_liquidated")
_RUNNING_TEXT = ("refund_or_no", "transmittal_ref_no", "group_transmittal_ref_no")


def _running_values(index: int, entry: dict) -> dict:
    values = {}
    grantees = entry.get("grantees_liquidated")
    if grantees is not None and int(grantees) < 0:
        raise ValidationError(
            f"Row {index + 1}: grantees_liquidated cannot be negative",
            field="grantees_liquidated",
            row=index + 1,
        )
    values["grantees_liquidated"] = int(grantees) if grantees is not None else None
    for key in _RUNNING_AMOUNTS:
        amount = entry.get(key)
        if amount is not None and Decimal(amount) < 0:
            raise ValidationError(
                f"Row {index + 1}: {key} cannot be negative", field=key, row=index + 1
            )
        values[key] = Decimal(amount) if amount is not None else None
    for key in _RUNNING_TEXT:
        values[key] = _clean(entry.get(key))
    return values


async def save_running_data(
    session: AsyncSession, liquidation_id, actor: Actor, entries: list[dict]
) -> LiquidationAggregate:
    """
    Replace the RC's running ledger with ``entries``, in order.

    Entries carrying an ``id`` update that row, entries without one are
    created, and stored rows missing from ``entries`` are deleted. The sums of
    ``total_amount_liquidated`` and ``amount_refunded`` are written to the
    financial record.
    """
    liquidation = await get_liquidation_for_update(session, liquidation_id)
    _require_capability(actor, MANAGE_RUNNING_DATA, "save_running_data", liquidation)
    await _check_region_scope(session, actor, liquidation, "save_running_data")

    existing = {row.id: row for row in await list_running_data(session, liquidation.id)}
    cleaned = []
    for index, entry in enumerate(entries):
        entry_id = entry.get("id")
        if entry_id is not None:
            entry_id = uuid.UUID(str(entry_id))
            if entry_id not in existing:
                raise ValidationError(
                    f"Row {index + 1}: running data entry does not belong to this liquidation",
                    field="id",
                    row=index + 1,
                )
        cleaned.append((entry_id, _running_values(index, entry)))

    before = _state(liquidation)
    kept = {entry_id for entry_id, _ in cleaned if entry_id is not None}
    for row_id, row in existing.items():
        if row_id not in kept:
            await session.delete(row)

    now = datetime.utcnow()
    total_liquidated = Decimal("0")
    total_refunded = Decimal("0")
    for sort_order, (entry_id, values) in enumerate(cleaned):
        if entry_id is None:
            row = LiquidationRunningData(
                id=uuid.uuid4(), liquidation_id=liquidation.id, created_at=now
            )
            session.add(row)
        else:
            row = existing[entry_id]
        for key, value in values.items():
            setattr(row, key, value)
        row.sort_order = sort_order
        row.updated_at = now
        total_liquidated += values["total_amount_liquidated"] or 0
        total_refunded += values["amount_refunded"] or 0
    await session.flush()

    await financial_service.upsert_financial(
        session,
        liquidation,
        {"amount_liquidated": total_liquidated, "amount_refunded": total_refunded},
    )
    liquidation.updated_at = now
    await session.flush()

    await create_activity_log(
        session,
        actor,
        action="updated",
        entity_type="liquidation",
        entity_id=liquidation.id,
        description=f"Updated running data for {liquidation.control_no}",
        before_state=before,
        after_state=_state(liquidation),
        module=MODULE,
    )
    logger.info(
        "running_data_saved",
        liquidation_id=str(liquidation.id),
        entries=len(cleaned),
        amount_liquidated=str(total_liquidated),
        amount_refunded=str(total_refunded),
    )
    return await load_aggregate(session, liquidation)


# ---------- bulk import ----------

@dataclass
class BulkImportResult:
    imported: int = 0
    control_numbers: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


def _bulk_document_status(value: Optional[str]) -> DocumentStatus:
    if _blank(value):
        return DocumentStatus.NONE
    status = BULK_DOCUMENT_STATUSES.get(value.strip().upper())
    if status is None:
        raise ValidationError(f"Unknown document status '{value}'", field="document_status")
    return status


async def _import_row(session: AsyncSession, actor: Actor, row: dict) -> Liquidation:
    hei = await reference_data.find_hei_by_uii(session, row.get("uii") or "")
    if hei is None:
        raise NotFoundError("HEI", row.get("uii"), field="uii")
    if has_capability(actor, REGION_SCOPED) and not has_capability(actor, MANAGE_ALL_LIQUIDATIONS):
        if actor.region_id is None or hei["region_id"] != str(actor.region_id):
            raise UnauthorizedError(
                f"HEI {hei['uii']} is outside your assigned region", uii=hei["uii"]
            )

    program = await reference_data.find_program(session, row.get("program"))
    if program is None:
        raise NotFoundError("Program", row.get("program"), field="program")
    academic_year = await reference_data.find_academic_year(session, row.get("academic_year"))
    if academic_year is None:
        raise NotFoundError("AcademicYear", row.get("academic_year"), field="academic_year")
    document_status = _bulk_document_status(row.get("document_status"))

    control_no = _clean(row.get("control_no"))
    if control_no is None:
        control_no = await next_control_number(session, program["code"])
    elif await control_no_taken(session, control_no):
        raise ConflictError(
            f"Control number {control_no} is already in use", control_no=control_no
        )

    now = datetime.utcnow()
    liquidation = Liquidation(
        id=uuid.uuid4(),
        control_no=control_no,
        hei_id=uuid.UUID(hei["id"]),
        program_id=uuid.UUID(program["id"]),
        academic_year_id=uuid.UUID(academic_year["id"]),
        semester_id=await reference_data.find_semester_id(session, row.get("semester")),
        batch_no=_clean(row.get("batch_no")),
        created_by=actor.user_id,
        status=WorkflowStatus.DRAFT,
        liquidation_status=LiquidationStatus.UNLIQUIDATED,
        document_status=document_status,
        remarks=_clean(row.get("remarks")),
        created_at=now,
        updated_at=now,
    )
    session.add(liquidation)
    await session.flush()

    disbursed = row.get("total_disbursements") or 0
    await financial_service.create_financial(
        session,
        liquidation,
        {
            "amount_received": disbursed,
            "amount_disbursed": disbursed,
            "amount_liquidated": row.get("total_liquidated") or 0,
            "number_of_grantees": row.get("number_of_grantees"),
            "date_fund_released": row.get("date_fund_released"),
            "due_date": row.get("due_date"),
        },
    )
    return liquidation


async def bulk_import_liquidations(
    session: AsyncSession, actor: Actor, rows: list[dict]
) -> BulkImportResult:
    """
    Create one draft liquidation per spreadsheet row.

    Each row runs in its own savepoint: a bad row is reported as
    ``"Row N: <message>"`` and skipped while the others are kept. When no row
    imports the whole call fails with a ValidationError.

    Row keys: uii, program (code or name), academic_year, semester, batch_no,
    control_no (generated when blank), number_of_grantees, total_disbursements,
    total_liquidated, date_fund_released, due_date, document_status, remarks.
    """
    _require_capability(actor, BULK_IMPORT_LIQUIDATIONS, "bulk_import_liquidations")
    if not rows:
        raise ValidationError("At least one row is required", field="rows")

    outcome = BulkImportResult()
    for index, row in enumerate(rows):
        label = f"Row {index + 1}"
        try:
            async with session.begin_nested():
                liquidation = await _import_row(session, actor, row)
        except LiquidationError as exc:
            outcome.errors.append(f"{label}: {exc.message}")
            continue
        except IntegrityError as exc:
            if not is_unique_violation(exc, CONTROL_NO_CONSTRAINT):
                raise
            outcome.errors.append(f"{label}: control number is already in use")
            continue
        outcome.imported += 1
        outcome.control_numbers.append(liquidation.control_no)

    if outcome.imported == 0:
        raise ValidationError(
            "Import failed: " + "; ".join(outcome.errors[:5]),
            field="rows",
            errors=len(outcome.errors),
        )

    await create_activity_log(
        session,
        actor,
        action="bulk_imported",
        entity_type="liquidation",
        entity_id=None,
        description=f"Bulk imported {outcome.imported} liquidations",
        after_state={
            "imported": outcome.imported,
            "control_numbers": outcome.control_numbers,
            "errors": len(outcome.errors),
        },
        module=MODULE,
    )
    logger.info(
        "liquidations_bulk_imported",
        imported=outcome.imported,
        failed=len(outcome.errors),
        actor_id=str(actor.user_id),
    )
    return outcome


# ---------- reads ----------

def _apply_role_filter(query, actor: Actor):
    if has_capability(actor, MANAGE_ALL_LIQUIDATIONS) or actor.role in (
        ROLE_SUPER_ADMIN, ROLE_ADMIN, ROLE_ACCOUNTANT
    ):
        return query
    if actor.role == ROLE_HEI and actor.hei_id:
        return query.where(Liquidation.hei_id == actor.hei_id)
    if actor.role == ROLE_REGIONAL_COORDINATOR and actor.region_id:
        return query.where(
            Liquidation.hei_id.in_(select(HEI.id).where(HEI.region_id == actor.region_id))
        )
    return query.where(Liquidation.created_by == actor.user_id)


async def list_liquidations(
    session: AsyncSession,
    actor: Actor,
    filters: Optional[dict] = None,
    page: int = 1,
    limit: int = 15,
) -> tuple[list[Liquidation], int]:
    filters = filters or {}
    query = _apply_role_filter(
        select(Liquidation).where(Liquidation.deleted_at.is_(None)), actor
    )

    if filters.get("program_id"):
        query = query.where(Liquidation.program_id == filters["program_id"])
    if filters.get("status"):
        query = query.where(Liquidation.status == WorkflowStatus(filters["status"]))
    if filters.get("document_status"):
        query = query.where(
            Liquidation.document_status == DocumentStatus(filters["document_status"].upper())
        )
    if filters.get("liquidation_status"):
        query = query.where(
            Liquidation.liquidation_status
            == LiquidationStatus(filters["liquidation_status"].upper())
        )
    if filters.get("search"):
        pattern = f"%{filters['search']}%"
        query = query.where(
            or_(
                Liquidation.control_no.ilike(pattern),
                Liquidation.hei_id.in_(select(HEI.id).where(HEI.name.ilike(pattern))),
            )
        )

    total = (await session.execute(
        select(func.count()).select_from(query.subquery())
    )).scalar() or 0

    offset = (page - 1) * limit
    result = await session.execute(
        query.order_by(Liquidation.control_no.asc()).offset(offset).limit(limit)
    )
    return list(result.scalars().all()), total


async def get_liquidation_detail(
    session: AsyncSession, liquidation_id, actor: Actor
) -> LiquidationAggregate:
    liquidation = await get_liquidation(session, liquidation_id)
    if not await _visible_to(session, actor, liquidation):
        _deny(actor, "view_liquidation", liquidation, reason="outside scope")
    return await load_aggregate(session, liquidation)


async def _visible_to(session: AsyncSession, actor: Actor, liquidation: Liquidation) -> bool:
    if has_capability(actor, MANAGE_ALL_LIQUIDATIONS) or actor.role == ROLE_ACCOUNTANT:
        return True
    if actor.role == ROLE_HEI:
        return actor.hei_id is not None and liquidation.hei_id == actor.hei_id
    if has_capability(actor, REGION_SCOPED):
        hei = await reference_data.get_hei(session, liquidation.hei_id)
        return actor.region_id is not None and hei["region_id"] == str(actor.region_id)
    return liquidation.created_by == actor.user_id
