"""
Unit tests for liquidation_api/services/liquidation_service.py

Tests: transition check order (not found -> unauthorized -> invalid state ->
       validation), review trail rows per transition, transmittal and
       compliance records, region scope, resubmission, create_liquidation,
       document requirements, running data, bulk import.
"""

import uuid
from contextlib import ExitStack
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy.exc import IntegrityError

from conftest import (
    REGION_III_ID,
    hei_snapshot,
    integrity_error,
    make_actor,
    make_liquidation,
)
from liquidation_api.exceptions import (
    ConflictError,
    InvalidStateError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from liquidation_api.models.compliance import ComplianceStatus, LiquidationCompliance
from liquidation_api.models.liquidation import (
    DocumentStatus,
    LiquidationDocument,
    WorkflowStatus,
)
from liquidation_api.models.review import ReviewType
from liquidation_api.models.running_data import LiquidationRunningData
from liquidation_api.models.transmittal import (
    LiquidationTransmittal,
    TransmittalLocationEvent,
)
from liquidation_api.services import liquidation_service
from liquidation_api.services.notification_service import DispatchResult
from liquidation_api.services.permissions import ROLE_HEI, ROLE_REGIONAL_COORDINATOR

SVC = "liquidation_api.services.liquidation_service"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

class _Patched:
    """Patch every I/O helper the transitions touch; expose the mocks."""

    def __init__(self, liquidation, hei=None, beneficiaries=3, documents=1):
        self.liquidation = liquidation
        self.hei = hei or hei_snapshot()
        self.beneficiaries = beneficiaries
        self.documents = documents
        self._stack = ExitStack()

    def __enter__(self):
        p = self._stack.enter_context
        self.get_for_update = p(patch(
            f"{SVC}.get_liquidation_for_update",
            new=AsyncMock(return_value=self.liquidation),
        ))
        self.get_hei = p(patch(
            "liquidation_api.services.reference_data.get_hei",
            new=AsyncMock(return_value=self.hei),
        ))
        self.count_beneficiaries = p(patch(
            f"{SVC}.count_beneficiaries", new=AsyncMock(return_value=self.beneficiaries)
        ))
        self.count_documents = p(patch(
            f"{SVC}.count_documents", new=AsyncMock(return_value=self.documents)
        ))
        self.get_financial = p(patch(
            "liquidation_api.services.financial_service.get_financial",
            new=AsyncMock(return_value=None),
        ))
        self.record_review = p(patch(
            "liquidation_api.services.review_service.record_review", new=AsyncMock()
        ))
        self.activity = p(patch(f"{SVC}.create_activity_log", new=AsyncMock()))
        self.dispatch = p(patch(
            "liquidation_api.services.notification_service.dispatch",
            new=AsyncMock(return_value=DispatchResult()),
        ))
        self.load_aggregate = p(patch(
            f"{SVC}.load_aggregate",
            new=AsyncMock(side_effect=lambda s, liq, email=None: MagicMock(liquidation=liq)),
        ))
        self.find_location = p(patch(
            "liquidation_api.services.reference_data.find_document_location_by_name",
            new=AsyncMock(return_value={
                "id": str(uuid.uuid4()), "name": "Records Section", "sort_order": 1,
            }),
        ))
        self.list_transmittals = p(patch(
            f"{SVC}.list_transmittals", new=AsyncMock(return_value=[])
        ))
        return self

    def __exit__(self, *exc):
        return self._stack.__exit__(*exc)


def _added(session, cls):
    return [c.args[0] for c in session.add.call_args_list if isinstance(c.args[0], cls)]


def _review_types(mocks):
    return [c.args[2] for c in mocks.record_review.call_args_list]


# ---------------------------------------------------------------------------
# submit_for_review
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_submit_moves_draft_to_initial_review(session, hei_user):
    liq = make_liquidation(WorkflowStatus.DRAFT, created_by=hei_user.user_id)

    with _Patched(liq, beneficiaries=3, documents=0) as m:
        await liquidation_service.submit_for_review(session, liq.id, hei_user, "  first pass ")

    assert liq.status == WorkflowStatus.FOR_INITIAL_REVIEW
    assert liq.date_submitted is not None
    assert liq.remarks == "first pass"
    assert liq.document_status == DocumentStatus.PARTIAL
    # First submission writes no review row
    m.record_review.assert_not_called()
    assert m.activity.await_args.kwargs["action"] == "submitted"
    assert m.dispatch.await_args.args[1] == "submitted"


@pytest.mark.asyncio
async def test_resubmission_records_hei_resubmission_review(session, hei_user):
    liq = make_liquidation(WorkflowStatus.RETURNED_TO_HEI)

    with _Patched(liq) as m:
        await liquidation_service.submit_for_review(session, liq.id, hei_user, None)

    assert liq.status == WorkflowStatus.FOR_INITIAL_REVIEW
    assert _review_types(m) == [ReviewType.HEI_RESUBMISSION]
    # Remarks on the liquidation are left alone on resubmission
    assert liq.remarks is None


@pytest.mark.asyncio
async def test_submit_without_beneficiaries_is_validation_error(session, hei_user):
    liq = make_liquidation(WorkflowStatus.DRAFT)

    with _Patched(liq, beneficiaries=0) as m:
        with pytest.raises(ValidationError) as exc_info:
            await liquidation_service.submit_for_review(session, liq.id, hei_user)

    assert exc_info.value.context["field"] == "beneficiaries"
    assert liq.status == WorkflowStatus.DRAFT
    m.activity.assert_not_called()


@pytest.mark.asyncio
async def test_submit_by_other_hei_is_unauthorized(session):
    outsider = make_actor(ROLE_HEI, hei_id=uuid.uuid4())
    liq = make_liquidation(WorkflowStatus.DRAFT)

    with _Patched(liq):
        with pytest.raises(UnauthorizedError):
            await liquidation_service.submit_for_review(session, liq.id, outsider)

    assert liq.status == WorkflowStatus.DRAFT


@pytest.mark.asyncio
async def test_rc_creator_can_submit_own_draft(session, rc_ncr):
    liq = make_liquidation(WorkflowStatus.DRAFT, created_by=rc_ncr.user_id)

    with _Patched(liq):
        await liquidation_service.submit_for_review(session, liq.id, rc_ncr)

    assert liq.status == WorkflowStatus.FOR_INITIAL_REVIEW


@pytest.mark.asyncio
async def test_rc_cannot_submit_someone_elses_draft(session, rc_ncr):
    liq = make_liquidation(WorkflowStatus.DRAFT)

    with _Patched(liq):
        with pytest.raises(UnauthorizedError):
            await liquidation_service.submit_for_review(session, liq.id, rc_ncr)

    assert liq.status == WorkflowStatus.DRAFT


@pytest.mark.asyncio
async def test_not_found_wins_over_everything(session, accountant):
    with patch(
        f"{SVC}.get_liquidation_for_update",
        new=AsyncMock(side_effect=NotFoundError("Liquidation", "missing")),
    ):
        with pytest.raises(NotFoundError):
            await liquidation_service.submit_for_review(session, uuid.uuid4(), accountant)


@pytest.mark.asyncio
async def test_unauthorized_checked_before_state(session, accountant):
    """An accountant cannot submit; the wrong status must not be reported first."""
    liq = make_liquidation(WorkflowStatus.ENDORSED_TO_COA)

    with _Patched(liq):
        with pytest.raises(UnauthorizedError):
            await liquidation_service.submit_for_review(session, liq.id, accountant)


@pytest.mark.asyncio
async def test_state_checked_before_validation(session, rc_ncr):
    """Blank remarks on an illegal edge report InvalidState, not Validation."""
    liq = make_liquidation(WorkflowStatus.DRAFT)

    with _Patched(liq):
        with pytest.raises(InvalidStateError):
            await liquidation_service.return_to_hei(session, liq.id, rc_ncr, "   ")


# ---------------------------------------------------------------------------
# endorse_to_accounting
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_endorse_creates_transmittal_and_location_event(session, rc_ncr):
    liq = make_liquidation(WorkflowStatus.FOR_INITIAL_REVIEW)

    with _Patched(liq) as m:
        await liquidation_service.endorse_to_accounting(session, liq.id, rc_ncr, {
            "transmittal_reference_no": " TR-2025-001 ",
            "document_location": "Records Section",
            "number_of_folders": 2,
            "remarks": "Complete",
        })

    assert liq.status == WorkflowStatus.ENDORSED_TO_ACCOUNTING
    assert liq.reviewed_by == rc_ncr.user_id

    transmittals = _added(session, LiquidationTransmittal)
    assert len(transmittals) == 1
    assert transmittals[0].transmittal_reference_no == "TR-2025-001"
    assert transmittals[0].number_of_folders == 2

    events = _added(session, TransmittalLocationEvent)
    assert len(events) == 1
    assert events[0].location_name == "Records Section"
    assert events[0].previous_location is None

    assert _review_types(m) == [ReviewType.RC_ENDORSEMENT]


@pytest.mark.asyncio
async def test_endorse_without_remarks_writes_no_review(session, rc_ncr):
    liq = make_liquidation(WorkflowStatus.RETURNED_TO_RC)

    with _Patched(liq) as m:
        await liquidation_service.endorse_to_accounting(
            session, liq.id, rc_ncr, {"transmittal_reference_no": "TR-9"}
        )

    assert liq.status == WorkflowStatus.ENDORSED_TO_ACCOUNTING
    m.record_review.assert_not_called()
    assert _added(session, TransmittalLocationEvent) == []


@pytest.mark.asyncio
async def test_endorse_requires_reference_no(session, rc_ncr):
    liq = make_liquidation(WorkflowStatus.FOR_INITIAL_REVIEW)

    with _Patched(liq):
        with pytest.raises(ValidationError):
            await liquidation_service.endorse_to_accounting(
                session, liq.id, rc_ncr, {"transmittal_reference_no": "  "}
            )

    assert liq.status == WorkflowStatus.FOR_INITIAL_REVIEW
    session.add.assert_not_called()


@pytest.mark.asyncio
async def test_endorse_unknown_location_is_not_found(session, rc_ncr):
    liq = make_liquidation(WorkflowStatus.FOR_INITIAL_REVIEW)

    with _Patched(liq) as m:
        m.find_location.return_value = None
        with pytest.raises(NotFoundError):
            await liquidation_service.endorse_to_accounting(session, liq.id, rc_ncr, {
                "transmittal_reference_no": "TR-1",
                "document_location": "Basement",
            })


@pytest.mark.asyncio
async def test_endorse_duplicate_reference_is_conflict(session, rc_ncr):
    liq = make_liquidation(WorkflowStatus.FOR_INITIAL_REVIEW)
    session.flush = AsyncMock(side_effect=integrity_error(
        "23505", "liquidation_transmittals_transmittal_reference_no_key"
    ))

    with _Patched(liq):
        with pytest.raises(ConflictError):
            await liquidation_service.endorse_to_accounting(
                session, liq.id, rc_ncr, {"transmittal_reference_no": "TR-1"}
            )


@pytest.mark.asyncio
async def test_endorse_other_integrity_error_is_not_conflict(session, rc_ncr):
    liq = make_liquidation(WorkflowStatus.FOR_INITIAL_REVIEW)
    session.flush = AsyncMock(side_effect=integrity_error(
        "23503", "liquidation_transmittals_endorsed_by_fkey"
    ))

    with _Patched(liq):
        with pytest.raises(IntegrityError):
            await liquidation_service.endorse_to_accounting(
                session, liq.id, rc_ncr, {"transmittal_reference_no": "TR-1"}
            )


@pytest.mark.asyncio
async def test_rc_outside_region_is_unauthorized(session, rc_region_iii):
    liq = make_liquidation(WorkflowStatus.FOR_INITIAL_REVIEW)

    with _Patched(liq):  # HEI is in NCR
        with pytest.raises(UnauthorizedError):
            await liquidation_service.endorse_to_accounting(
                session, liq.id, rc_region_iii, {"transmittal_reference_no": "TR-1"}
            )

    assert liq.status == WorkflowStatus.FOR_INITIAL_REVIEW


@pytest.mark.asyncio
async def test_admin_ignores_region_scope(session, admin):
    liq = make_liquidation(WorkflowStatus.FOR_INITIAL_REVIEW)

    with _Patched(liq, hei=hei_snapshot(region_id=REGION_III_ID)):
        await liquidation_service.endorse_to_accounting(
            session, liq.id, admin, {"transmittal_reference_no": "TR-ADM"}
        )

    assert liq.status == WorkflowStatus.ENDORSED_TO_ACCOUNTING


# ---------------------------------------------------------------------------
# return_to_hei
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_return_to_hei_requires_remarks(session, rc_ncr):
    liq = make_liquidation(WorkflowStatus.FOR_INITIAL_REVIEW)

    with _Patched(liq) as m:
        with pytest.raises(ValidationError):
            await liquidation_service.return_to_hei(session, liq.id, rc_ncr, "")

    assert liq.status == WorkflowStatus.FOR_INITIAL_REVIEW
    m.record_review.assert_not_called()


@pytest.mark.asyncio
async def test_return_to_hei_with_compliance_documents(session, rc_ncr):
    liq = make_liquidation(WorkflowStatus.FOR_INITIAL_REVIEW)

    with _Patched(liq) as m:
        await liquidation_service.return_to_hei(
            session,
            liq.id,
            rc_ncr,
            "Missing signatures",
            documents_for_compliance="Signed payroll",
            amount_with_complete_docs=Decimal("25000.00"),
        )

    assert liq.status == WorkflowStatus.RETURNED_TO_HEI
    review_call = m.record_review.await_args
    assert review_call.args[2] == ReviewType.RC_RETURN
    assert review_call.args[4] == "Missing signatures"
    assert review_call.args[5] == "Signed payroll"

    compliance = _added(session, LiquidationCompliance)
    assert len(compliance) == 1
    assert compliance[0].documents_required == "Signed payroll"
    assert compliance[0].compliance_status == ComplianceStatus.PENDING_HEI_REVIEW
    assert compliance[0].amount_with_complete_docs == Decimal("25000.00")


@pytest.mark.asyncio
async def test_return_to_hei_without_documents_adds_no_compliance(session, rc_ncr):
    liq = make_liquidation(WorkflowStatus.RETURNED_TO_RC)

    with _Patched(liq):
        await liquidation_service.return_to_hei(session, liq.id, rc_ncr, "Fix totals")

    assert liq.status == WorkflowStatus.RETURNED_TO_HEI
    assert _added(session, LiquidationCompliance) == []


@pytest.mark.asyncio
async def test_return_to_hei_amount_without_documents_is_rejected(session, rc_ncr):
    liq = make_liquidation(WorkflowStatus.FOR_INITIAL_REVIEW)

    with _Patched(liq) as m:
        with pytest.raises(ValidationError) as exc_info:
            await liquidation_service.return_to_hei(
                session,
                liq.id,
                rc_ncr,
                "Missing signatures",
                documents_for_compliance="  ",
                amount_with_complete_docs=Decimal("1000"),
            )

    assert exc_info.value.context["field"] == "amount_with_complete_docs"
    assert liq.status == WorkflowStatus.FOR_INITIAL_REVIEW
    m.record_review.assert_not_called()
    assert _added(session, LiquidationCompliance) == []


# ---------------------------------------------------------------------------
# accountant transitions
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_endorse_to_coa_stamps_accountant(session, accountant):
    liq = make_liquidation(WorkflowStatus.ENDORSED_TO_ACCOUNTING)

    with _Patched(liq) as m:
        await liquidation_service.endorse_to_coa(session, liq.id, accountant, "OK")

    assert liq.status == WorkflowStatus.ENDORSED_TO_COA
    assert liq.coa_endorsed_by == accountant.user_id
    assert liq.accountant_reviewed_by == accountant.user_id
    assert _review_types(m) == [ReviewType.ACCOUNTANT_ENDORSEMENT]


@pytest.mark.asyncio
async def test_endorse_to_coa_by_rc_is_unauthorized(session, rc_ncr):
    liq = make_liquidation(WorkflowStatus.ENDORSED_TO_ACCOUNTING)

    with _Patched(liq):
        with pytest.raises(UnauthorizedError):
            await liquidation_service.endorse_to_coa(session, liq.id, rc_ncr)


@pytest.mark.asyncio
async def test_return_to_rc_requires_remarks(session, accountant):
    liq = make_liquidation(WorkflowStatus.ENDORSED_TO_ACCOUNTING)

    with _Patched(liq):
        with pytest.raises(ValidationError):
            await liquidation_service.return_to_rc(session, liq.id, accountant, "  ")

    assert liq.status == WorkflowStatus.ENDORSED_TO_ACCOUNTING


@pytest.mark.asyncio
async def test_return_to_rc_records_accountant_return(session, accountant):
    liq = make_liquidation(WorkflowStatus.ENDORSED_TO_ACCOUNTING)

    with _Patched(liq) as m:
        await liquidation_service.return_to_rc(session, liq.id, accountant, "ORs missing")

    assert liq.status == WorkflowStatus.RETURNED_TO_RC
    assert _review_types(m) == [ReviewType.ACCOUNTANT_RETURN]
    assert m.dispatch.await_args.args[1] == "returned_to_rc"


@pytest.mark.asyncio
async def test_endorse_to_coa_twice_is_invalid_state(session, accountant):
    liq = make_liquidation(WorkflowStatus.ENDORSED_TO_COA)

    with _Patched(liq) as m:
        with pytest.raises(InvalidStateError):
            await liquidation_service.endorse_to_coa(session, liq.id, accountant)

    m.record_review.assert_not_called()


# ---------------------------------------------------------------------------
# Full TES round trip
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_full_round_trip_review_counts(session, hei_user, rc_ncr, accountant):
    """draft -> review -> returned -> resubmitted -> accounting -> RC -> accounting -> COA"""
    liq = make_liquidation(WorkflowStatus.DRAFT, created_by=hei_user.user_id)

    with _Patched(liq) as m:
        await liquidation_service.submit_for_review(session, liq.id, hei_user)
        await liquidation_service.return_to_hei(
            session, liq.id, rc_ncr, "Incomplete", documents_for_compliance="Payroll"
        )
        await liquidation_service.submit_for_review(session, liq.id, hei_user, "Fixed")
        await liquidation_service.endorse_to_accounting(
            session, liq.id, rc_ncr, {"transmittal_reference_no": "TR-1", "remarks": "Good"}
        )
        await liquidation_service.return_to_rc(session, liq.id, accountant, "Recheck")
        await liquidation_service.endorse_to_accounting(
            session, liq.id, rc_ncr, {"transmittal_reference_no": "TR-2"}
        )
        await liquidation_service.endorse_to_coa(session, liq.id, accountant)

    assert liq.status == WorkflowStatus.ENDORSED_TO_COA
    assert _review_types(m) == [
        ReviewType.RC_RETURN,
        ReviewType.HEI_RESUBMISSION,
        ReviewType.RC_ENDORSEMENT,
        ReviewType.ACCOUNTANT_RETURN,
    ]
    assert len(_added(session, LiquidationTransmittal)) == 2
    assert len(_added(session, LiquidationCompliance)) == 1
    assert m.activity.await_count == 7


# ---------------------------------------------------------------------------
# create_liquidation
# ---------------------------------------------------------------------------

def _reference_patches(hei=None, program=None, academic_year=None):
    stack = ExitStack()
    p = stack.enter_context
    p(patch(
        "liquidation_api.services.reference_data.find_hei_by_uii",
        new=AsyncMock(return_value=hei),
    ))
    p(patch(
        "liquidation_api.services.reference_data.find_program",
        new=AsyncMock(return_value=program),
    ))
    p(patch(
        "liquidation_api.services.reference_data.find_academic_year",
        new=AsyncMock(return_value=academic_year),
    ))
    p(patch(
        "liquidation_api.services.reference_data.find_semester_id",
        new=AsyncMock(return_value=uuid.uuid4()),
    ))
    p(patch(f"{SVC}.next_control_number", new=AsyncMock(return_value="TES-2025-00001")))
    p(patch(
        "liquidation_api.services.financial_service.create_financial", new=AsyncMock()
    ))
    p(patch(f"{SVC}.create_activity_log", new=AsyncMock()))
    p(patch(
        f"{SVC}.load_aggregate",
        new=AsyncMock(side_effect=lambda s, liq, email=None: MagicMock(liquidation=liq)),
    ))
    return stack


_PROGRAM = {"id": str(uuid.uuid4()), "code": "TES", "name": "Tertiary Education Subsidy"}
_YEAR = {"id": str(uuid.uuid4()), "code": "2024-2025"}


@pytest.mark.asyncio
async def test_create_liquidation_draft(session, rc_ncr):
    data = {
        "uii": "13001",
        "program": "TES",
        "academic_year": "2024-2025",
        "semester": "1st",
        "amount_received": Decimal("150000"),
        "batch_no": " B1 ",
    }
    with _reference_patches(hei_snapshot(), _PROGRAM, _YEAR):
        agg = await liquidation_service.create_liquidation(session, rc_ncr, data)

    liq = agg.liquidation
    assert liq.control_no == "TES-2025-00001"
    assert liq.status == WorkflowStatus.DRAFT
    assert liq.created_by == rc_ncr.user_id
    assert liq.batch_no == "B1"


@pytest.mark.asyncio
async def test_create_liquidation_hei_user_for_own_hei(session, hei_user):
    data = {
        "uii": "13001",
        "program": "TES",
        "academic_year": "2024-2025",
        "amount_received": Decimal("5000"),
    }
    with _reference_patches(hei_snapshot(), _PROGRAM, _YEAR):
        agg = await liquidation_service.create_liquidation(session, hei_user, data)

    assert agg.liquidation.created_by == hei_user.user_id
    assert agg.liquidation.hei_id == hei_user.hei_id


@pytest.mark.asyncio
async def test_create_liquidation_hei_user_for_other_hei_is_unauthorized(session):
    outsider = make_actor(ROLE_HEI, hei_id=uuid.uuid4())
    with _reference_patches(hei_snapshot(), _PROGRAM, _YEAR):
        with pytest.raises(UnauthorizedError):
            await liquidation_service.create_liquidation(session, outsider, {
                "uii": "13001",
                "program": "TES",
                "academic_year": "2024-2025",
                "amount_received": 1000,
            })
    session.add.assert_not_called()


@pytest.mark.asyncio
async def test_create_liquidation_denial_message_has_no_subject(session, accountant):
    with _reference_patches(hei_snapshot(), _PROGRAM, _YEAR):
        with pytest.raises(UnauthorizedError) as exc_info:
            await liquidation_service.create_liquidation(
                session, accountant, {"uii": "13001", "program": "TES"}
            )
    assert exc_info.value.message == "Role 'accountant' cannot create liquidation"


@pytest.mark.asyncio
async def test_create_liquidation_duplicate_control_no_is_conflict(session, rc_ncr):
    session.flush = AsyncMock(
        side_effect=integrity_error("23505", "liquidations_control_no_key")
    )
    with _reference_patches(hei_snapshot(), _PROGRAM, _YEAR):
        with pytest.raises(ConflictError) as exc_info:
            await liquidation_service.create_liquidation(session, rc_ncr, {
                "uii": "13001",
                "program": "TES",
                "academic_year": "2024-2025",
                "amount_received": 1000,
            })
    assert exc_info.value.context["control_no"] == "TES-2025-00001"


@pytest.mark.asyncio
async def test_create_liquidation_foreign_key_error_propagates(session, rc_ncr):
    session.flush = AsyncMock(
        side_effect=integrity_error("23503", "liquidations_created_by_fkey")
    )
    with _reference_patches(hei_snapshot(), _PROGRAM, _YEAR):
        with pytest.raises(IntegrityError):
            await liquidation_service.create_liquidation(session, rc_ncr, {
                "uii": "13001",
                "program": "TES",
                "academic_year": "2024-2025",
                "amount_received": 1000,
            })


@pytest.mark.asyncio
async def test_create_liquidation_unknown_hei(session, rc_ncr):
    with _reference_patches(None, _PROGRAM, _YEAR):
        with pytest.raises(NotFoundError) as exc_info:
            await liquidation_service.create_liquidation(
                session, rc_ncr, {"uii": "99999", "program": "TES"}
            )
    assert exc_info.value.context["field"] == "uii"


@pytest.mark.asyncio
async def test_create_liquidation_requires_amount_received(session, rc_ncr):
    with _reference_patches(hei_snapshot(), _PROGRAM, _YEAR):
        with pytest.raises(ValidationError):
            await liquidation_service.create_liquidation(session, rc_ncr, {
                "uii": "13001", "program": "TES", "academic_year": "2024-2025",
            })


@pytest.mark.asyncio
async def test_create_liquidation_rc_other_region(session):
    rc = make_actor(ROLE_REGIONAL_COORDINATOR, region_id=REGION_III_ID)
    with _reference_patches(hei_snapshot(), _PROGRAM, _YEAR):
        with pytest.raises(UnauthorizedError):
            await liquidation_service.create_liquidation(session, rc, {
                "uii": "13001",
                "program": "TES",
                "academic_year": "2024-2025",
                "amount_received": 1000,
            })


# ---------------------------------------------------------------------------
# HEI-side edits
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_delete_only_drafts(session, rc_ncr):
    liq = make_liquidation(WorkflowStatus.FOR_INITIAL_REVIEW)

    with _Patched(liq):
        with pytest.raises(InvalidStateError):
            await liquidation_service.delete_liquidation(session, liq.id, rc_ncr)

    assert liq.deleted_at is None


@pytest.mark.asyncio
async def test_add_beneficiaries_rejected_after_submission(session, hei_user):
    liq = make_liquidation(WorkflowStatus.FOR_INITIAL_REVIEW)

    with _Patched(liq):
        with pytest.raises(InvalidStateError):
            await liquidation_service.add_beneficiaries(
                session, liq.id, hei_user, [{"last_name": "Cruz", "first_name": "Ana"}]
            )


@pytest.mark.asyncio
async def test_add_beneficiaries_validates_rows(session, hei_user):
    liq = make_liquidation(WorkflowStatus.DRAFT)

    with _Patched(liq):
        with pytest.raises(ValidationError) as exc_info:
            await liquidation_service.add_beneficiaries(
                session, liq.id, hei_user, [{"last_name": "Cruz", "first_name": " "}]
            )

    assert exc_info.value.context["row"] == 1


@pytest.mark.asyncio
async def test_move_location_without_transmittal(session, accountant):
    liq = make_liquidation(WorkflowStatus.ENDORSED_TO_ACCOUNTING)

    with _Patched(liq):
        with pytest.raises(NotFoundError):
            await liquidation_service.move_transmittal_location(
                session, liq.id, accountant, "COA Office"
            )


@pytest.mark.asyncio
async def test_move_location_appends_event(session, accountant):
    liq = make_liquidation(WorkflowStatus.ENDORSED_TO_ACCOUNTING)
    previous = MagicMock(location_name="Records Section")
    view = liquidation_service.TransmittalView(MagicMock(id=uuid.uuid4()), [previous])

    with _Patched(liq) as m:
        m.list_transmittals.return_value = [view]
        await liquidation_service.move_transmittal_location(
            session, liq.id, accountant, "COA Office", "boxed"
        )

    events = _added(session, TransmittalLocationEvent)
    assert len(events) == 1
    assert events[0].previous_location == "Records Section"
    assert events[0].location_name == "COA Office"
    assert m.dispatch.await_args.args[1] == "updated_tracking"


# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------

_REQUIREMENT = {
    "id": str(uuid.uuid4()),
    "program_id": str(uuid.uuid4()),
    "code": "COR",
    "name": "Certificate of Registration",
    "is_required": True,
}


def _document_patches(requirement=None, already_submitted=False, free_form=0):
    stack = ExitStack()
    p = stack.enter_context
    p(patch(
        "liquidation_api.services.reference_data.find_document_requirement",
        new=AsyncMock(return_value=requirement),
    ))
    p(patch(
        f"{SVC}.requirement_has_document", new=AsyncMock(return_value=already_submitted)
    ))
    p(patch(f"{SVC}.count_free_form_files", new=AsyncMock(return_value=free_form)))
    return stack


@pytest.mark.asyncio
async def test_attach_document_for_requirement_uses_requirement_name(session, hei_user):
    liq = make_liquidation(WorkflowStatus.DRAFT, created_by=hei_user.user_id)

    with _Patched(liq, beneficiaries=2) as m, _document_patches(_REQUIREMENT):
        await liquidation_service.attach_document(session, liq.id, hei_user, {
            "file_name": "cor.pdf",
            "file_path": "liquidations/cor.pdf",
            "document_type": "ignored",
            "document_requirement_id": uuid.UUID(_REQUIREMENT["id"]),
        })

    document = _added(session, LiquidationDocument)[0]
    assert document.document_type == "Certificate of Registration"
    assert document.document_requirement_id == uuid.UUID(_REQUIREMENT["id"])
    assert liq.document_status == DocumentStatus.COMPLETE
    assert m.activity.await_args.kwargs["action"] == "uploaded_document"


@pytest.mark.asyncio
async def test_attach_document_requirement_of_other_program(session, hei_user):
    liq = make_liquidation(WorkflowStatus.DRAFT, created_by=hei_user.user_id)

    with _Patched(liq), _document_patches(None):
        with pytest.raises(ValidationError) as exc_info:
            await liquidation_service.attach_document(session, liq.id, hei_user, {
                "file_name": "cor.pdf",
                "file_path": "liquidations/cor.pdf",
                "document_requirement_id": uuid.uuid4(),
            })

    assert exc_info.value.context["field"] == "document_requirement_id"
    session.add.assert_not_called()


@pytest.mark.asyncio
async def test_attach_document_requirement_already_fulfilled(session, hei_user):
    liq = make_liquidation(WorkflowStatus.DRAFT, created_by=hei_user.user_id)

    with _Patched(liq), _document_patches(_REQUIREMENT, already_submitted=True):
        with pytest.raises(ValidationError):
            await liquidation_service.attach_document(session, liq.id, hei_user, {
                "file_name": "cor-2.pdf",
                "file_path": "liquidations/cor-2.pdf",
                "document_requirement_id": uuid.UUID(_REQUIREMENT["id"]),
            })


@pytest.mark.asyncio
async def test_attach_document_concurrent_requirement_upload_is_conflict(session, hei_user):
    liq = make_liquidation(WorkflowStatus.DRAFT, created_by=hei_user.user_id)
    session.flush = AsyncMock(
        side_effect=integrity_error("23505", "uq_documents_liquidation_requirement")
    )

    with _Patched(liq), _document_patches(_REQUIREMENT):
        with pytest.raises(ConflictError):
            await liquidation_service.attach_document(session, liq.id, hei_user, {
                "file_name": "cor.pdf",
                "file_path": "liquidations/cor.pdf",
                "document_requirement_id": uuid.UUID(_REQUIREMENT["id"]),
            })


@pytest.mark.asyncio
async def test_attach_free_form_file_limit(session, hei_user):
    liq = make_liquidation(WorkflowStatus.DRAFT, created_by=hei_user.user_id)

    with _Patched(liq), _document_patches(free_form=3):
        with pytest.raises(ValidationError):
            await liquidation_service.attach_document(session, liq.id, hei_user, {
                "file_name": "letter-4.pdf", "file_path": "liquidations/letter-4.pdf",
            })


@pytest.mark.asyncio
async def test_attach_gdrive_link_ignores_free_form_limit(session, hei_user):
    liq = make_liquidation(WorkflowStatus.DRAFT, created_by=hei_user.user_id)

    with _Patched(liq) as m, _document_patches(free_form=3):
        await liquidation_service.attach_document(session, liq.id, hei_user, {
            "file_name": "Folder", "gdrive_link": "https://drive.google.com/x",
        })

    document = _added(session, LiquidationDocument)[0]
    assert document.document_type == "RC Letter"
    assert document.is_gdrive is True
    assert m.activity.await_args.kwargs["action"] == "added_gdrive_link"


def _document_lookup(session, document):
    result = MagicMock()
    result.scalar_one_or_none.return_value = document
    session.execute = AsyncMock(return_value=result)


@pytest.mark.asyncio
async def test_delete_document_recomputes_document_status(session, hei_user):
    liq = make_liquidation(WorkflowStatus.RETURNED_TO_HEI)
    liq.document_status = DocumentStatus.COMPLETE
    document = MagicMock(id=uuid.uuid4(), uploaded_by=hei_user.user_id, file_name="cor.pdf")
    _document_lookup(session, document)

    with _Patched(liq, beneficiaries=4, documents=0) as m:
        await liquidation_service.delete_document(session, liq.id, document.id, hei_user)

    session.delete.assert_awaited_once_with(document)
    assert liq.document_status == DocumentStatus.PARTIAL
    assert m.activity.await_args.kwargs["action"] == "deleted_document"
    assert m.dispatch.await_args.args[1] == "deleted_document"


@pytest.mark.asyncio
async def test_delete_document_missing(session, hei_user):
    liq = make_liquidation(WorkflowStatus.DRAFT)
    _document_lookup(session, None)

    with _Patched(liq):
        with pytest.raises(NotFoundError):
            await liquidation_service.delete_document(session, liq.id, uuid.uuid4(), hei_user)


@pytest.mark.asyncio
async def test_delete_document_by_other_user_is_unauthorized(session, hei_user):
    liq = make_liquidation(WorkflowStatus.DRAFT)
    document = MagicMock(id=uuid.uuid4(), uploaded_by=uuid.uuid4())
    _document_lookup(session, document)

    with _Patched(liq):
        with pytest.raises(UnauthorizedError):
            await liquidation_service.delete_document(session, liq.id, document.id, hei_user)
    session.delete.assert_not_called()


@pytest.mark.asyncio
async def test_delete_document_after_submission_is_invalid_state(session, hei_user):
    liq = make_liquidation(WorkflowStatus.FOR_INITIAL_REVIEW)
    document = MagicMock(id=uuid.uuid4(), uploaded_by=hei_user.user_id)
    _document_lookup(session, document)

    with _Patched(liq):
        with pytest.raises(InvalidStateError):
            await liquidation_service.delete_document(session, liq.id, document.id, hei_user)


# ---------------------------------------------------------------------------
# Running data
# ---------------------------------------------------------------------------

def _running_patches(existing=()):
    stack = ExitStack()
    p = stack.enter_context
    p(patch(f"{SVC}.list_running_data", new=AsyncMock(return_value=list(existing))))
    upsert = p(patch(
        "liquidation_api.services.financial_service.upsert_financial", new=AsyncMock()
    ))
    return stack, upsert


@pytest.mark.asyncio
async def test_save_running_data_syncs_financial_totals(session, rc_ncr):
    liq = make_liquidation(WorkflowStatus.FOR_INITIAL_REVIEW)
    kept = MagicMock(id=uuid.uuid4())
    dropped = MagicMock(id=uuid.uuid4())
    stack, upsert = _running_patches([kept, dropped])

    with _Patched(liq) as m, stack:
        await liquidation_service.save_running_data(session, liq.id, rc_ncr, [
            {"id": str(kept.id), "total_amount_liquidated": "1000.50", "amount_refunded": "25"},
            {"grantees_liquidated": 3, "total_amount_liquidated": "499.50"},
        ])

    session.delete.assert_awaited_once_with(dropped)
    assert kept.total_amount_liquidated == Decimal("1000.50")
    assert kept.sort_order == 0
    created = _added(session, LiquidationRunningData)
    assert len(created) == 1
    assert created[0].sort_order == 1
    assert created[0].grantees_liquidated == 3
    fields = upsert.await_args.args[2]
    assert fields == {"amount_liquidated": Decimal("1500.00"), "amount_refunded": Decimal("25")}
    assert m.activity.await_args.kwargs["description"] == "Updated running data for TES-2025-00001"


@pytest.mark.asyncio
async def test_save_running_data_rejects_foreign_entry(session, rc_ncr):
    liq = make_liquidation(WorkflowStatus.FOR_INITIAL_REVIEW)
    stack, upsert = _running_patches([])

    with _Patched(liq), stack:
        with pytest.raises(ValidationError) as exc_info:
            await liquidation_service.save_running_data(
                session, liq.id, rc_ncr, [{"id": str(uuid.uuid4())}]
            )

    assert exc_info.value.context["row"] == 1
    upsert.assert_not_called()


@pytest.mark.asyncio
async def test_save_running_data_rejects_negative_amounts(session, rc_ncr):
    liq = make_liquidation(WorkflowStatus.FOR_INITIAL_REVIEW)
    stack, _ = _running_patches([])

    with _Patched(liq), stack:
        with pytest.raises(ValidationError) as exc_info:
            await liquidation_service.save_running_data(
                session, liq.id, rc_ncr, [{"amount_refunded": "-1"}]
            )

    assert exc_info.value.context["field"] == "amount_refunded"


@pytest.mark.asyncio
async def test_save_running_data_by_hei_is_unauthorized(session, hei_user):
    liq = make_liquidation(WorkflowStatus.DRAFT)
    stack, _ = _running_patches([])

    with _Patched(liq), stack:
        with pytest.raises(UnauthorizedError):
            await liquidation_service.save_running_data(session, liq.id, hei_user, [])


@pytest.mark.asyncio
async def test_save_running_data_outside_region(session, rc_region_iii):
    liq = make_liquidation(WorkflowStatus.FOR_INITIAL_REVIEW)
    stack, _ = _running_patches([])

    with _Patched(liq), stack:
        with pytest.raises(UnauthorizedError):
            await liquidation_service.save_running_data(session, liq.id, rc_region_iii, [])


# ---------------------------------------------------------------------------
# Bulk import
# ---------------------------------------------------------------------------

def _savepoints(session):
    savepoint = MagicMock()
    savepoint.__aenter__ = AsyncMock()
    savepoint.__aexit__ = AsyncMock(return_value=False)
    session.begin_nested = MagicMock(return_value=savepoint)
    return savepoint


def _bulk_row(**overrides):
    row = {
        "uii": "13001",
        "program": "TES",
        "academic_year": "2024-2025",
        "semester": "1st",
        "total_disbursements": Decimal("20000"),
        "total_liquidated": Decimal("5000"),
        "document_status": "Completed",
    }
    row.update(overrides)
    return row


@pytest.mark.asyncio
async def test_bulk_import_creates_drafts(session, rc_ncr):
    _savepoints(session)
    with _reference_patches(hei_snapshot(), _PROGRAM, _YEAR), \
            patch(f"{SVC}.control_no_taken", new=AsyncMock(return_value=False)):
        result = await liquidation_service.bulk_import_liquidations(session, rc_ncr, [
            _bulk_row(),
            _bulk_row(control_no="TES-2019-00042", document_status=None),
        ])

    assert result.imported == 2
    assert result.errors == []
    assert result.control_numbers == ["TES-2025-00001", "TES-2019-00042"]
    created = [c.args[0] for c in session.add.call_args_list]
    assert created[0].document_status == DocumentStatus.COMPLETE
    assert created[1].document_status == DocumentStatus.NONE
    assert all(liq.status == WorkflowStatus.DRAFT for liq in created)


@pytest.mark.asyncio
async def test_bulk_import_financial_uses_disbursements(session, rc_ncr):
    _savepoints(session)
    with _reference_patches(hei_snapshot(), _PROGRAM, _YEAR), \
            patch(f"{SVC}.control_no_taken", new=AsyncMock(return_value=False)), \
            patch(
                "liquidation_api.services.financial_service.create_financial",
                new=AsyncMock(),
            ) as create_financial:
        await liquidation_service.bulk_import_liquidations(session, rc_ncr, [_bulk_row()])

    fields = create_financial.await_args.args[2]
    assert fields["amount_received"] == Decimal("20000")
    assert fields["amount_disbursed"] == Decimal("20000")
    assert fields["amount_liquidated"] == Decimal("5000")


@pytest.mark.asyncio
async def test_bulk_import_reports_bad_rows_and_keeps_good_ones(session, rc_ncr):
    _savepoints(session)
    with _reference_patches(hei_snapshot(), _PROGRAM, _YEAR), \
            patch(f"{SVC}.control_no_taken", new=AsyncMock(side_effect=[True, False])), \
            patch(f"{SVC}.create_activity_log", new=AsyncMock()) as activity:
        result = await liquidation_service.bulk_import_liquidations(session, rc_ncr, [
            _bulk_row(control_no="TES-2025-00007"),
            _bulk_row(document_status="lost"),
            _bulk_row(control_no="TES-2025-00008"),
        ])

    assert result.imported == 1
    assert result.control_numbers == ["TES-2025-00008"]
    assert result.errors[0] == "Row 1: Control number TES-2025-00007 is already in use"
    assert result.errors[1].startswith("Row 2: Unknown document status")
    assert activity.await_args.kwargs["action"] == "bulk_imported"
    assert activity.await_args.kwargs["entity_id"] is None


@pytest.mark.asyncio
async def test_bulk_import_rc_other_region_row(session, rc_region_iii):
    _savepoints(session)
    with _reference_patches(hei_snapshot(), _PROGRAM, _YEAR):
        with pytest.raises(ValidationError) as exc_info:
            await liquidation_service.bulk_import_liquidations(
                session, rc_region_iii, [_bulk_row()]
            )

    assert exc_info.value.message.startswith("Import failed: Row 1: HEI 13001 is outside")


@pytest.mark.asyncio
async def test_bulk_import_other_integrity_error_propagates(session, rc_ncr):
    _savepoints(session)
    session.flush = AsyncMock(
        side_effect=integrity_error("23503", "liquidations_created_by_fkey")
    )
    with _reference_patches(hei_snapshot(), _PROGRAM, _YEAR):
        with pytest.raises(IntegrityError):
            await liquidation_service.bulk_import_liquidations(session, rc_ncr, [_bulk_row()])


@pytest.mark.asyncio
async def test_bulk_import_requires_capability(session, hei_user):
    with pytest.raises(UnauthorizedError):
        await liquidation_service.bulk_import_liquidations(session, hei_user, [_bulk_row()])


@pytest.mark.asyncio
async def test_bulk_import_empty(session, rc_ncr):
    with pytest.raises(ValidationError):
        await liquidation_service.bulk_import_liquidations(session, rc_ncr, [])
