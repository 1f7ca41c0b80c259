from typing import Optional
import uuid

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from liquidation_api.database import get_db
from liquidation_api.middleware.auth import get_current_actor
from liquidation_api.middleware.authorization import require_capability
from liquidation_api.models.liquidation import (
    DocumentStatus,
    Liquidation,
    LiquidationStatus,
    WorkflowStatus,
)
from liquidation_api.models.review import LiquidationReview
from liquidation_api.schemas.common import (
    WORKFLOW_ERROR_RESPONSES,
    PaginatedResponse,
    build_pagination,
)
from liquidation_api.schemas.liquidation import (
    BeneficiaryImport,
    BulkImportRequest,
    BulkImportResponse,
    ComplianceResponse,
    DocumentCreate,
    EndorseToAccountingRequest,
    EndorseToCoaRequest,
    FinancialResponse,
    LiquidationCreate,
    LiquidationResponse,
    LiquidationSummary,
    LiquidationUpdate,
    LocationEventResponse,
    LocationMoveRequest,
    ReturnToHeiRequest,
    ReturnToRcRequest,
    ReviewResponse,
    RunningDataResponse,
    RunningDataSave,
    SubmitRequest,
    TransmittalResponse,
)
from liquidation_api.services import financial_service, liquidation_service, review_service
from liquidation_api.services.liquidation_service import LiquidationAggregate, TransmittalView
from liquidation_api.services.notification_service import deliver
from liquidation_api.services.permissions import (
    Actor,
    BULK_IMPORT_LIQUIDATIONS,
    CREATE_LIQUIDATION,
    DELETE_LIQUIDATION,
    EDIT_LIQUIDATION,
    ENDORSE_TO_ACCOUNTING,
    ENDORSE_TO_COA,
    MANAGE_RUNNING_DATA,
    RETURN_APPLICATION,
    RETURN_TO_RC,
    VIEW_LIQUIDATION,
)
from liquidation_api.services.workflow import allowed_operations

logger = structlog.get_logger()
router = APIRouter(responses=WORKFLOW_ERROR_RESPONSES)


def _iso(value) -> Optional[str]:
    return value.isoformat() if value else None


def _str(value) -> Optional[str]:
    return str(value) if value is not None else None


def _summary_fields(liq: Liquidation) -> dict:
    return dict(
        id=str(liq.id),
        control_no=liq.control_no,
        hei_id=str(liq.hei_id),
        program_id=str(liq.program_id),
        academic_year_id=str(liq.academic_year_id),
        semester_id=_str(liq.semester_id),
        batch_no=liq.batch_no,
        status=liq.status.value,
        liquidation_status=liq.liquidation_status.value,
        document_status=liq.document_status.value,
        created_by=str(liq.created_by),
        date_submitted=_iso(liq.date_submitted),
        created_at=_iso(liq.created_at) or "",
        updated_at=_iso(liq.updated_at) or "",
    )


def _review_to_response(review: LiquidationReview) -> ReviewResponse:
    return ReviewResponse(
        id=str(review.id),
        review_type=review.review_type.value,
        performed_by=str(review.performed_by),
        performed_by_name=review.performed_by_name,
        remarks=review.remarks,
        documents_for_compliance=review.documents_for_compliance,
        performed_at=_iso(review.performed_at) or "",
    )


def _transmittal_to_response(view: TransmittalView) -> TransmittalResponse:
    t = view.transmittal
    return TransmittalResponse(
        id=str(t.id),
        transmittal_reference_no=t.transmittal_reference_no,
        receiver_name=t.receiver_name,
        document_location_id=_str(t.document_location_id),
        current_location=view.current_location,
        number_of_folders=t.number_of_folders,
        folder_location_number=t.folder_location_number,
        group_transmittal=t.group_transmittal,
        other_file_location=t.other_file_location,
        endorsed_by=str(t.endorsed_by),
        endorsed_at=_iso(t.endorsed_at) or "",
        location_history=[
            LocationEventResponse(
                location=e.location_name,
                previous_location=e.previous_location,
                notes=e.notes,
                changed_at=_iso(e.changed_at) or "",
            )
            for e in view.location_history
        ],
    )


def _financial_to_response(agg: LiquidationAggregate) -> Optional[FinancialResponse]:
    fin = agg.financial
    if fin is None:
        return None
    return FinancialResponse(
        amount_received=fin.amount_received or 0,
        amount_disbursed=fin.amount_disbursed,
        amount_liquidated=fin.amount_liquidated or 0,
        amount_refunded=fin.amount_refunded or 0,
        unliquidated_amount=financial_service.unliquidated_amount(fin),
        liquidation_percentage=financial_service.liquidation_percentage(fin),
        number_of_grantees=fin.number_of_grantees,
        date_fund_released=_iso(fin.date_fund_released),
        due_date=_iso(financial_service.financial_due_date(fin)),
        lapsing_period=financial_service.lapsing_period(fin, agg.liquidation.date_submitted),
        fund_source=fin.fund_source,
        purpose=fin.purpose,
    )


def _to_response(agg: LiquidationAggregate) -> LiquidationResponse:
    liq = agg.liquidation
    return LiquidationResponse(
        **_summary_fields(liq),
        remarks=liq.remarks,
        hei_name=agg.hei.get("name") if agg.hei else None,
        reviewed_by=_str(liq.reviewed_by),
        reviewed_at=_iso(liq.reviewed_at),
        accountant_reviewed_by=_str(liq.accountant_reviewed_by),
        accountant_reviewed_at=_iso(liq.accountant_reviewed_at),
        coa_endorsed_by=_str(liq.coa_endorsed_by),
        coa_endorsed_at=_iso(liq.coa_endorsed_at),
        days_lapsed=agg.days_lapsed,
        beneficiary_count=agg.beneficiary_count,
        document_count=agg.document_count,
        allowed_operations=[op.value for op in allowed_operations(liq.status)],
        financial=_financial_to_response(agg),
        reviews=[_review_to_response(r) for r in agg.reviews],
        transmittals=[_transmittal_to_response(t) for t in agg.transmittals],
        compliance=[
            ComplianceResponse(
                id=str(c.id),
                documents_required=c.documents_required,
                compliance_status=c.compliance_status.value,
                concerns_emailed_at=_iso(c.concerns_emailed_at),
                compliance_submitted_at=_iso(c.compliance_submitted_at),
                amount_with_complete_docs=c.amount_with_complete_docs,
                created_at=_iso(c.created_at) or "",
            )
            for c in agg.compliance
        ],
        running_data=[
            RunningDataResponse(
                id=str(r.id),
                grantees_liquidated=r.grantees_liquidated,
                amount_complete_docs=r.amount_complete_docs,
                amount_refunded=r.amount_refunded,
                refund_or_no=r.refund_or_no,
                total_amount_liquidated=r.total_amount_liquidated,
                transmittal_ref_no=r.transmittal_ref_no,
                group_transmittal_ref_no=r.group_transmittal_ref_no,
                sort_order=r.sort_order or 0,
            )
            for r in agg.running_data
        ],
    )


def _respond(agg: LiquidationAggregate, background_tasks: BackgroundTasks) -> LiquidationResponse:
    # Emails were resolved while the session was open; delivery happens after the response
    if agg.email is not None:
        background_tasks.add_task(deliver, agg.email)
    return _to_response(agg)


# ---------- reads ----------

@router.get("", response_model=PaginatedResponse[LiquidationSummary])
async def list_liquidations(
    program_id: Optional[str] = Query(None),
    status_filter: Optional[WorkflowStatus] = Query(None, alias="status"),
    document_status: Optional[DocumentStatus] = Query(None),
    liquidation_status: Optional[LiquidationStatus] = Query(None),
    search: Optional[str] = Query(None, max_length=100),
    page: int = Query(1, ge=1, le=1000),
    limit: int = Query(15, ge=1, le=100),
    actor: Actor = Depends(get_current_actor),
    _auth: None = Depends(require_capability(VIEW_LIQUIDATION)),
    db: AsyncSession = Depends(get_db),
):
    filters = {
        "program_id": program_id,
        "status": status_filter.value if status_filter else None,
        "document_status": document_status.value if document_status else None,
        "liquidation_status": liquidation_status.value if liquidation_status else None,
        "search": search,
    }
    rows, total = await liquidation_service.list_liquidations(db, actor, filters, page, limit)
    return PaginatedResponse(
        data=[LiquidationSummary(**_summary_fields(liq)) for liq in rows],
        pagination=build_pagination(page, limit, total),
    )


@router.get("/{liquidation_id}", response_model=LiquidationResponse)
async def get_liquidation(
    liquidation_id: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    _auth: None = Depends(require_capability(VIEW_LIQUIDATION)),
    db: AsyncSession = Depends(get_db),
):
    agg = await liquidation_service.get_liquidation_detail(db, liquidation_id, actor)
    return _to_response(agg)


@router.get("/{liquidation_id}/reviews", response_model=list[ReviewResponse])
async def list_reviews(
    liquidation_id: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    _auth: None = Depends(require_capability(VIEW_LIQUIDATION)),
    db: AsyncSession = Depends(get_db),
):
    agg = await liquidation_service.get_liquidation_detail(db, liquidation_id, actor)
    reviews = await review_service.list_reviews(db, agg.liquidation.id)
    return [_review_to_response(r) for r in reviews]


# ---------- create / edit ----------

@router.post("", response_model=LiquidationResponse, status_code=status.HTTP_201_CREATED)
async def create_liquidation(
    body: LiquidationCreate,
    actor: Actor = Depends(get_current_actor),
    _auth: None = Depends(require_capability(CREATE_LIQUIDATION)),
    db: AsyncSession = Depends(get_db),
):
    agg = await liquidation_service.create_liquidation(db, actor, body.model_dump())
    return _to_response(agg)


@router.post("/bulk-import", response_model=BulkImportResponse, status_code=status.HTTP_201_CREATED)
async def bulk_import_liquidations(
    body: BulkImportRequest,
    actor: Actor = Depends(get_current_actor),
    _auth: None = Depends(require_capability(BULK_IMPORT_LIQUIDATIONS)),
    db: AsyncSession = Depends(get_db),
):
    result = await liquidation_service.bulk_import_liquidations(
        db, actor, [row.model_dump() for row in body.rows]
    )
    return BulkImportResponse(
        imported=result.imported,
        control_numbers=result.control_numbers,
        errors=result.errors,
    )


@router.put("/{liquidation_id}", response_model=LiquidationResponse)
async def update_liquidation(
    liquidation_id: uuid.UUID,
    body: LiquidationUpdate,
    actor: Actor = Depends(get_current_actor),
    _auth: None = Depends(require_capability(EDIT_LIQUIDATION)),
    db: AsyncSession = Depends(get_db),
):
    agg = await liquidation_service.update_liquidation(
        db, liquidation_id, actor, body.model_dump(exclude_unset=True)
    )
    return _to_response(agg)


@router.delete("/{liquidation_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_liquidation(
    liquidation_id: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    _auth: None = Depends(require_capability(DELETE_LIQUIDATION)),
    db: AsyncSession = Depends(get_db),
):
    await liquidation_service.delete_liquidation(db, liquidation_id, actor)


@router.post("/{liquidation_id}/beneficiaries", response_model=LiquidationResponse)
async def add_beneficiaries(
    liquidation_id: uuid.UUID,
    body: BeneficiaryImport,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_current_actor),
    _auth: None = Depends(require_capability(EDIT_LIQUIDATION)),
    db: AsyncSession = Depends(get_db),
):
    agg = await liquidation_service.add_beneficiaries(
        db, liquidation_id, actor, [b.model_dump() for b in body.beneficiaries]
    )
    return _respond(agg, background_tasks)


@router.post("/{liquidation_id}/documents", response_model=LiquidationResponse)
async def attach_document(
    liquidation_id: uuid.UUID,
    body: DocumentCreate,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_current_actor),
    _auth: None = Depends(require_capability(EDIT_LIQUIDATION)),
    db: AsyncSession = Depends(get_db),
):
    agg = await liquidation_service.attach_document(db, liquidation_id, actor, body.model_dump())
    return _respond(agg, background_tasks)


@router.delete("/{liquidation_id}/documents/{document_id}", response_model=LiquidationResponse)
async def delete_document(
    liquidation_id: uuid.UUID,
    document_id: uuid.UUID,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    agg = await liquidation_service.delete_document(db, liquidation_id, document_id, actor)
    return _respond(agg, background_tasks)


@router.put("/{liquidation_id}/running-data", response_model=LiquidationResponse)
async def save_running_data(
    liquidation_id: uuid.UUID,
    body: RunningDataSave,
    actor: Actor = Depends(get_current_actor),
    _auth: None = Depends(require_capability(MANAGE_RUNNING_DATA)),
    db: AsyncSession = Depends(get_db),
):
    agg = await liquidation_service.save_running_data(
        db, liquidation_id, actor, [e.model_dump() for e in body.running_data]
    )
    return _to_response(agg)


# ---------- workflow ----------

@router.post("/{liquidation_id}/submit", response_model=LiquidationResponse)
async def submit_for_review(
    liquidation_id: uuid.UUID,
    body: SubmitRequest,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    agg = await liquidation_service.submit_for_review(db, liquidation_id, actor, body.remarks)
    return _respond(agg, background_tasks)


@router.post("/{liquidation_id}/endorse-to-accounting", response_model=LiquidationResponse)
async def endorse_to_accounting(
    liquidation_id: uuid.UUID,
    body: EndorseToAccountingRequest,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_current_actor),
    _auth: None = Depends(require_capability(ENDORSE_TO_ACCOUNTING)),
    db: AsyncSession = Depends(get_db),
):
    agg = await liquidation_service.endorse_to_accounting(
        db, liquidation_id, actor, body.model_dump()
    )
    return _respond(agg, background_tasks)


@router.post("/{liquidation_id}/return-to-hei", response_model=LiquidationResponse)
async def return_to_hei(
    liquidation_id: uuid.UUID,
    body: ReturnToHeiRequest,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_current_actor),
    _auth: None = Depends(require_capability(RETURN_APPLICATION)),
    db: AsyncSession = Depends(get_db),
):
    agg = await liquidation_service.return_to_hei(
        db,
        liquidation_id,
        actor,
        body.remarks,
        documents_for_compliance=body.documents_for_compliance,
        amount_with_complete_docs=body.amount_with_complete_docs,
    )
    return _respond(agg, background_tasks)


@router.post("/{liquidation_id}/endorse-to-coa", response_model=LiquidationResponse)
async def endorse_to_coa(
    liquidation_id: uuid.UUID,
    body: EndorseToCoaRequest,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_current_actor),
    _auth: None = Depends(require_capability(ENDORSE_TO_COA)),
    db: AsyncSession = Depends(get_db),
):
    agg = await liquidation_service.endorse_to_coa(db, liquidation_id, actor, body.remarks)
    return _respond(agg, background_tasks)


@router.post("/{liquidation_id}/return-to-rc", response_model=LiquidationResponse)
async def return_to_rc(
    liquidation_id: uuid.UUID,
    body: ReturnToRcRequest,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_current_actor),
    _auth: None = Depends(require_capability(RETURN_TO_RC)),
    db: AsyncSession = Depends(get_db),
):
    agg = await liquidation_service.return_to_rc(db, liquidation_id, actor, body.remarks)
    return _respond(agg, background_tasks)


@router.post("/{liquidation_id}/transmittal/location", response_model=LiquidationResponse)
async def move_transmittal_location(
    liquidation_id: uuid.UUID,
    body: LocationMoveRequest,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_current_actor),
    _auth: None = Depends(require_capability(ENDORSE_TO_ACCOUNTING, ENDORSE_TO_COA)),
    db: AsyncSession = Depends(get_db),
):
    agg = await liquidation_service.move_transmittal_location(
        db, liquidation_id, actor, body.location, body.notes
    )
    return _respond(agg, background_tasks)
