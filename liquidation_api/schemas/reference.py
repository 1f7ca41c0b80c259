import uuid
from typing import Optional
from pydantic import BaseModel, Field


class RegionCreate(BaseModel):
    code: str = Field(..., min_length=1, max_length=20)
    name: str = Field(..., min_length=1, max_length=255)


class RegionResponse(BaseModel):
    id: str
    code: str
    name: str


class HeiCreate(BaseModel):
    uii: str = Field(..., min_length=1, max_length=50)
    code: Optional[str] = Field(None, max_length=50)
    name: str = Field(..., min_length=1, max_length=255)
    region_id: Optional[uuid.UUID] = None


class HeiUpdate(BaseModel):
    code: Optional[str] = Field(None, max_length=50)
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    region_id: Optional[uuid.UUID] = None
    status: Optional[str] = Field(None, pattern="^(active|inactive)$")


class HeiResponse(BaseModel):
    id: str
    uii: str
    code: Optional[str] = None
    name: str
    region_id: Optional[str] = None
    status: str


class ProgramCreate(BaseModel):
    code: str = Field(..., min_length=1, max_length=20, pattern="^[A-Za-z0-9]+$")
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None


class ProgramUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    status: Optional[str] = Field(None, pattern="^(active|inactive)$")


class ProgramResponse(BaseModel):
    id: str
    code: str
    name: str
    description: Optional[str] = None
    status: str


class SemesterCreate(BaseModel):
    code: str = Field(..., pattern="^(1ST|2ND|SUM)$")
    name: str = Field(..., min_length=1, max_length=100)
    sort_order: int = Field(0, ge=0)


class SemesterResponse(BaseModel):
    id: str
    code: str
    name: str
    sort_order: int
    is_active: bool


class AcademicYearCreate(BaseModel):
    code: str = Field(..., pattern=r"^\d{4}-\d{4}$")
    is_active: bool = True


class AcademicYearResponse(BaseModel):
    id: str
    code: str
    start_year: int
    end_year: int
    is_active: bool


class DocumentLocationCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    sort_order: int = Field(999, ge=0)


class DocumentLocationResponse(BaseModel):
    id: str
    name: str
    sort_order: int


class DocumentRequirementCreate(BaseModel):
    program_id: uuid.UUID
    code: str = Field(..., min_length=1, max_length=50)
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=1000)
    upload_message: Optional[str] = Field(None, max_length=1000)
    sort_order: int = Field(0, ge=0)
    is_required: bool = True
    is_active: bool = True


class DocumentRequirementUpdate(BaseModel):
    program_id: Optional[uuid.UUID] = None
    code: Optional[str] = Field(None, min_length=1, max_length=50)
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=1000)
    upload_message: Optional[str] = Field(None, max_length=1000)
    sort_order: Optional[int] = Field(None, ge=0)
    is_required: Optional[bool] = None
    is_active: Optional[bool] = None


class DocumentRequirementResponse(BaseModel):
    id: str
    program_id: str
    code: str
    name: str
    description: Optional[str] = None
    upload_message: Optional[str] = None
    sort_order: int
    is_required: bool
    is_active: bool
