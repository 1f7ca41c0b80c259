"""
Liquidation workflow state machine.

    draft ──submit──> for_initial_review <──submit── returned_to_hei
                          │        ^                       ^
          endorse_to_acct │        │ (from returned_to_rc) │ return_to_hei
                          v        │                       │
                  endorsed_to_accounting ──return_to_rc──> returned_to_rc
                          │
            endorse_to_coa│
                          v
                   endorsed_to_coa

``TRANSITIONS`` is the only place edges are defined. ``approved`` and
``rejected`` are terminal: no operation lists them as a source.

Everything in this module is pure; the service layer does the I/O.
"""

import enum
import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Optional

from liquidation_api.config import settings
from liquidation_api.exceptions import InvalidStateError
from liquidation_api.models.liquidation import (
    WorkflowStatus,
    LiquidationStatus,
    DocumentStatus,
)
from liquidation_api.services import permissions


class Operation(str, enum.Enum):
    SUBMIT_FOR_REVIEW = "submit_for_review"
    ENDORSE_TO_ACCOUNTING = "endorse_to_accounting"
    RETURN_TO_HEI = "return_to_hei"
    ENDORSE_TO_COA = "endorse_to_coa"
    RETURN_TO_RC = "return_to_rc"


@dataclass(frozen=True)
class Transition:
    sources: frozenset[WorkflowStatus]
    target: WorkflowStatus
    capability: str


TRANSITIONS: dict[Operation, Transition] = {
    Operation.SUBMIT_FOR_REVIEW: Transition(
        sources=frozenset({WorkflowStatus.DRAFT, WorkflowStatus.RETURNED_TO_HEI}),
        target=WorkflowStatus.FOR_INITIAL_REVIEW,
        capability=permissions.SUBMIT_LIQUIDATION,
    ),
    Operation.ENDORSE_TO_ACCOUNTING: Transition(
        sources=frozenset({WorkflowStatus.FOR_INITIAL_REVIEW, WorkflowStatus.RETURNED_TO_RC}),
        target=WorkflowStatus.ENDORSED_TO_ACCOUNTING,
        capability=permissions.ENDORSE_TO_ACCOUNTING,
    ),
    Operation.RETURN_TO_HEI: Transition(
        sources=frozenset({WorkflowStatus.FOR_INITIAL_REVIEW, WorkflowStatus.RETURNED_TO_RC}),
        target=WorkflowStatus.RETURNED_TO_HEI,
        capability=permissions.RETURN_APPLICATION,
    ),
    Operation.ENDORSE_TO_COA: Transition(
        sources=frozenset({WorkflowStatus.ENDORSED_TO_ACCOUNTING}),
        target=WorkflowStatus.ENDORSED_TO_COA,
        capability=permissions.ENDORSE_TO_COA,
    ),
    Operation.RETURN_TO_RC: Transition(
        sources=frozenset({WorkflowStatus.ENDORSED_TO_ACCOUNTING}),
        target=WorkflowStatus.RETURNED_TO_RC,
        capability=permissions.RETURN_TO_RC,
    ),
}

# Statuses in which the HEI side may still change beneficiaries, documents, fields
EDITABLE_STATUSES = frozenset({WorkflowStatus.DRAFT, WorkflowStatus.RETURNED_TO_HEI})

# No edits at all, not even by administrators
LOCKED_STATUSES = frozenset({
    WorkflowStatus.ENDORSED_TO_COA,
    WorkflowStatus.APPROVED,
    WorkflowStatus.REJECTED,
})


def allowed_operations(status: WorkflowStatus) -> list[Operation]:
    return [op for op, t in TRANSITIONS.items() if status in t.sources]


def is_terminal(status: WorkflowStatus) -> bool:
    return not allowed_operations(status)


def resolve_transition(
    operation: Operation,
    current_status: WorkflowStatus,
    liquidation_id=None,
) -> WorkflowStatus:
    """Return the target status, or raise InvalidStateError if the edge does not exist."""
    transition = TRANSITIONS[operation]
    if current_status not in transition.sources:
        raise InvalidStateError(
            liquidation_id=liquidation_id,
            operation=operation.value,
            current_status=current_status,
        )
    return transition.target


def derive_document_status(has_beneficiaries: bool, has_documents: bool) -> DocumentStatus:
    if not has_beneficiaries and not has_documents:
        return DocumentStatus.NONE
    if has_beneficiaries and has_documents:
        return DocumentStatus.COMPLETE
    return DocumentStatus.PARTIAL


def derive_liquidation_status(financial) -> LiquidationStatus:
    if financial is None:
        return LiquidationStatus.UNLIQUIDATED

    liquidated = Decimal(financial.amount_liquidated or 0)
    if liquidated <= 0:
        return LiquidationStatus.UNLIQUIDATED

    base = financial.amount_disbursed
    if base is None:
        base = financial.amount_received
    base = Decimal(base or 0)

    if base > 0 and liquidated >= base:
        return LiquidationStatus.FULLY_LIQUIDATED
    return LiquidationStatus.PARTIALLY_LIQUIDATED


# ---------- control numbers ----------

def control_prefix(program_code: str) -> str:
    return program_code.strip().upper()


def format_control_number(prefix: str, year: int, sequence: int) -> str:
    width = settings.CONTROL_NO_PAD_WIDTH
    return f"{prefix}-{year}-{sequence:0{width}d}"


def parse_control_sequence(control_no: str, prefix: str, year: int) -> Optional[int]:
    """Sequence part of ``control_no`` if it belongs to (prefix, year), else None."""
    match = re.fullmatch(
        rf"{re.escape(prefix)}-{year}-(\d+)", control_no or ""
    )
    if not match:
        return None
    return int(match.group(1))


# ---------- deadlines ----------

def effective_due_date(
    date_fund_released: Optional[date], due_date: Optional[date] = None
) -> Optional[date]:
    if due_date:
        return due_date
    if not date_fund_released:
        return None
    return date_fund_released + timedelta(days=settings.LIQUIDATION_DUE_DAYS)


def days_lapsed(
    date_fund_released: Optional[date],
    date_submitted: Optional[datetime],
    due_date: Optional[date] = None,
) -> Optional[int]:
    """Days left before the deadline at the moment of submission.

    Negative once the deadline has passed. None until both the release date
    and the submission date are known.
    """
    deadline = effective_due_date(date_fund_released, due_date)
    if deadline is None or date_submitted is None:
        return None
    submitted = (
        date_submitted.date() if isinstance(date_submitted, datetime) else date_submitted
    )
    return (deadline - submitted).days
