from datetime import date
from decimal import Decimal
from typing import List, Optional
from pydantic import BaseModel, Field
import uuid


class LiquidationCreate(BaseModel):
    uii: str = Field(..., min_length=1, max_length=50)
    program: str = Field(..., description="Program id or code")
    academic_year: str = Field(..., description="Academic year id or code, e.g. 2024-2025")
    semester: Optional[str] = Field(None, max_length=50)
    batch_no: Optional[str] = Field(None, max_length=50)
    remarks: Optional[str] = Field(None, max_length=2000)
    amount_received: Decimal = Field(..., ge=0)
    amount_disbursed: Optional[Decimal] = Field(None, ge=0)
    amount_liquidated: Optional[Decimal] = Field(None, ge=0)
    number_of_grantees: Optional[int] = Field(None, ge=0)
    date_fund_released: Optional[date] = None
    due_date: Optional[date] = None
    fund_source: Optional[str] = Field(None, max_length=255)
    purpose: Optional[str] = None


class LiquidationUpdate(BaseModel):
    remarks: Optional[str] = Field(None, max_length=2000)
    batch_no: Optional[str] = Field(None, max_length=50)
    amount_received: Optional[Decimal] = Field(None, ge=0)
    amount_disbursed: Optional[Decimal] = Field(None, ge=0)
    amount_liquidated: Optional[Decimal] = Field(None, ge=0)
    amount_refunded: Optional[Decimal] = Field(None, ge=0)
    number_of_grantees: Optional[int] = Field(None, ge=0)
    date_fund_released: Optional[date] = None
    due_date: Optional[date] = None
    fund_source: Optional[str] = Field(None, max_length=255)
    purpose: Optional[str] = None


class SubmitRequest(BaseModel):
    remarks: Optional[str] = Field(None, max_length=2000)


class EndorseToAccountingRequest(BaseModel):
    transmittal_reference_no: str = Field(..., max_length=255)
    receiver_name: Optional[str] = Field(None, max_length=255)
    document_location: Optional[str] = Field(None, max_length=255)
    number_of_folders: Optional[int] = Field(None, ge=0)
    folder_location_number: Optional[str] = Field(None, max_length=255)
    group_transmittal: Optional[str] = Field(None, max_length=255)
    other_file_location: Optional[str] = Field(None, max_length=255)
    remarks: Optional[str] = Field(None, max_length=2000)


class ReturnToHeiRequest(BaseModel):
    remarks: str = Field(..., max_length=2000)
    documents_for_compliance: Optional[str] = Field(None, max_length=5000)
    amount_with_complete_docs: Optional[Decimal] = Field(None, ge=0)


class EndorseToCoaRequest(BaseModel):
    remarks: Optional[str] = Field(None, max_length=2000)


class ReturnToRcRequest(BaseModel):
    remarks: str = Field(..., max_length=2000)


class BeneficiaryCreate(BaseModel):
    student_no: Optional[str] = Field(None, max_length=50)
    last_name: str = Field(..., max_length=100)
    first_name: str = Field(..., max_length=100)
    middle_name: Optional[str] = Field(None, max_length=100)
    extension_name: Optional[str] = Field(None, max_length=20)
    award_no: Optional[str] = Field(None, max_length=100)
    date_disbursed: Optional[date] = None
    amount: Decimal = Field(Decimal("0"), ge=0)
    remarks: Optional[str] = None


class BeneficiaryImport(BaseModel):
    beneficiaries: List[BeneficiaryCreate] = Field(..., min_length=1, max_length=5000)


class DocumentCreate(BaseModel):
    file_name: str = Field(..., max_length=255)
    document_requirement_id: Optional[uuid.UUID] = None
    document_type: Optional[str] = Field(None, max_length=100)
    file_path: Optional[str] = Field(None, max_length=500)
    file_type: Optional[str] = Field(None, max_length=100)
    file_size: Optional[int] = Field(None, ge=0)
    gdrive_link: Optional[str] = Field(None, max_length=1000)
    description: Optional[str] = None


class RunningDataEntry(BaseModel):
    id: Optional[uuid.UUID] = None
    grantees_liquidated: Optional[int] = Field(None, ge=0)
    amount_complete_docs: Optional[Decimal] = Field(None, ge=0)
    amount_refunded: Optional[Decimal] = Field(None, ge=0)
    refund_or_no: Optional[str] = Field(None, max_length=100)
    total_amount_liquidated: Optional[Decimal] = Field(None, ge=0)
    transmittal_ref_no: Optional[str] = Field(None, max_length=255)
    group_transmittal_ref_no: Optional[str] = Field(None, max_length=255)


class RunningDataSave(BaseModel):
    running_data: List[RunningDataEntry] = Field(default_factory=list, max_length=500)


class BulkImportRow(BaseModel):
    uii: str = Field(..., min_length=1, max_length=50)
    program: str = Field(..., description="Program code or name")
    academic_year: str
    semester: Optional[str] = Field(None, max_length=50)
    batch_no: Optional[str] = Field(None, max_length=50)
    control_no: Optional[str] = Field(None, max_length=50)
    number_of_grantees: Optional[int] = Field(None, ge=0)
    total_disbursements: Optional[Decimal] = Field(None, ge=0)
    total_liquidated: Optional[Decimal] = Field(None, ge=0)
    date_fund_released: Optional[date] = None
    due_date: Optional[date] = None
    document_status: Optional[str] = Field(None, max_length=20)
    remarks: Optional[str] = Field(None, max_length=2000)


class BulkImportRequest(BaseModel):
    rows: List[BulkImportRow] = Field(..., min_length=1, max_length=1000)


class BulkImportResponse(BaseModel):
    imported: int
    control_numbers: List[str] = []
    errors: List[str] = []


class LocationMoveRequest(BaseModel):
    location: str = Field(..., max_length=255)
    notes: Optional[str] = Field(None, max_length=1000)


class FinancialResponse(BaseModel):
    amount_received: Decimal
    amount_disbursed: Optional[Decimal] = None
    amount_liquidated: Decimal
    amount_refunded: Decimal
    unliquidated_amount: Decimal
    liquidation_percentage: Decimal
    number_of_grantees: Optional[int] = None
    date_fund_released: Optional[str] = None
    due_date: Optional[str] = None
    lapsing_period: int = 0
    fund_source: Optional[str] = None
    purpose: Optional[str] = None


class ReviewResponse(BaseModel):
    id: str
    review_type: str
    performed_by: str
    performed_by_name: str
    remarks: Optional[str] = None
    documents_for_compliance: Optional[str] = None
    performed_at: str


class LocationEventResponse(BaseModel):
    location: str
    previous_location: Optional[str] = None
    notes: Optional[str] = None
    changed_at: str


class TransmittalResponse(BaseModel):
    id: str
    transmittal_reference_no: str
    receiver_name: Optional[str] = None
    document_location_id: Optional[str] = None
    current_location: Optional[str] = None
    number_of_folders: Optional[int] = None
    folder_location_number: Optional[str] = None
    group_transmittal: Optional[str] = None
    other_file_location: Optional[str] = None
    endorsed_by: str
    endorsed_at: str
    location_history: List[LocationEventResponse] = []


class RunningDataResponse(BaseModel):
    id: str
    grantees_liquidated: Optional[int] = None
    amount_complete_docs: Optional[Decimal] = None
    amount_refunded: Optional[Decimal] = None
    refund_or_no: Optional[str] = None
    total_amount_liquidated: Optional[Decimal] = None
    transmittal_ref_no: Optional[str] = None
    group_transmittal_ref_no: Optional[str] = None
    sort_order: int = 0


class ComplianceResponse(BaseModel):
    id: str
    documents_required: str
    compliance_status: str
    concerns_emailed_at: Optional[str] = None
    compliance_submitted_at: Optional[str] = None
    amount_with_complete_docs: Optional[Decimal] = None
    created_at: str


class LiquidationSummary(BaseModel):
    id: str
    control_no: str
    hei_id: str
    program_id: str
    academic_year_id: str
    semester_id: Optional[str] = None
    batch_no: Optional[str] = None
    status: str
    liquidation_status: str
    document_status: str
    created_by: str
    date_submitted: Optional[str] = None
    created_at: str
    updated_at: str


class LiquidationResponse(LiquidationSummary):
    remarks: Optional[str] = None
    hei_name: Optional[str] = None
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[str] = None
    accountant_reviewed_by: Optional[str] = None
    accountant_reviewed_at: Optional[str] = None
    coa_endorsed_by: Optional[str] = None
    coa_endorsed_at: Optional[str] = None
    days_lapsed: Optional[int] = None
    beneficiary_count: int = 0
    document_count: int = 0
    allowed_operations: List[str] = []
    financial: Optional[FinancialResponse] = None
    reviews: List[ReviewResponse] = []
    transmittals: List[TransmittalResponse] = []
    compliance: List[ComplianceResponse] = []
    running_data: List[RunningDataResponse] = []
