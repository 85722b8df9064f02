"""
Payroll Core - Payroll Schemas

Pydantic schemas for payroll requests and responses, and the boundary type
for worker compensation data coming from the worker directory.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import AliasChoices, BaseModel, Field, field_validator, model_validator

from payroll_core.models.payroll import (
    AdjustmentCategory,
    AdjustmentKind,
    AdjustmentSource,
    ContractType,
    PayrollStatus,
)
from payroll_core.utils.money import to_decimal


MAX_PERCENTAGE = Decimal("100")


# ===========================================
# ADJUSTMENT SCHEMAS
# ===========================================

class AdjustmentBase(BaseModel):
    """Base adjustment schema."""
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    kind: AdjustmentKind = Field(
        default=AdjustmentKind.FIXED,
        validation_alias=AliasChoices("kind", "type"),
    )
    value: Decimal = Field(..., ge=0, description="Percentage points (0-100) or currency amount")

    class Config:
        populate_by_name = True

    @model_validator(mode="after")
    def check_percentage(self) -> "AdjustmentBase":
        if self.kind == AdjustmentKind.PERCENTAGE and self.value > MAX_PERCENTAGE:
            raise ValueError("percentage value must be between 0 and 100")
        return self


class AdjustmentCreate(AdjustmentBase):
    """Add adjustment request."""
    pass


class AdjustmentUpdate(BaseModel):
    """Partial adjustment update. Omitted fields keep their value."""
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    kind: Optional[AdjustmentKind] = Field(
        default=None,
        validation_alias=AliasChoices("kind", "type"),
    )
    value: Optional[Decimal] = Field(None, ge=0)

    class Config:
        populate_by_name = True

    @model_validator(mode="after")
    def check_percentage(self) -> "AdjustmentUpdate":
        if self.kind == AdjustmentKind.PERCENTAGE and self.value is not None and self.value > MAX_PERCENTAGE:
            raise ValueError("percentage value must be between 0 and 100")
        return self


class AdjustmentResponse(BaseModel):
    """Adjustment response."""
    id: UUID
    category: AdjustmentCategory
    name: str
    description: Optional[str] = None
    kind: AdjustmentKind
    value: Decimal
    source: AdjustmentSource
    position: int

    class Config:
        from_attributes = True


# ===========================================
# PAYROLL SCHEMAS
# ===========================================

class PayrollCreate(BaseModel):
    """Create payroll request."""
    worker_id: str = Field(..., min_length=1, max_length=100)
    worker_name: str = Field(..., min_length=1, max_length=200)
    month: int = Field(..., ge=1, le=12)
    year: int = Field(..., ge=1900, le=9999)
    base_gross_salary: Decimal = Field(default=Decimal("0"), ge=0)
    contract_type: Optional[ContractType] = None
    notes: Optional[str] = None


class PayrollUpdate(BaseModel):
    """
    Update payroll request.

    Totals are derived and are not accepted here.
    """
    worker_name: Optional[str] = Field(None, min_length=1, max_length=200)
    base_gross_salary: Optional[Decimal] = Field(None, ge=0)
    notes: Optional[str] = None

    class Config:
        extra = "forbid"


class PayrollStatusUpdate(BaseModel):
    """Status change request. Only completed and canceled are accepted."""
    status: PayrollStatus


class PayrollResponse(BaseModel):
    """Payroll response."""
    id: UUID
    worker_id: str
    worker_name: str
    contract_type: Optional[ContractType] = None
    month: int
    year: int
    status: PayrollStatus
    base_gross_salary: Decimal
    total_deductions: Decimal
    total_benefits: Decimal
    total_additionals: Decimal
    net_salary: Decimal
    employer_contribution: Decimal
    processed_at: Optional[datetime] = None
    notes: Optional[str] = None
    payroll_run_id: Optional[UUID] = None
    version_id: int
    deductions: List[AdjustmentResponse] = []
    benefits: List[AdjustmentResponse] = []
    additionals: List[AdjustmentResponse] = []
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class PayrollListResponse(BaseModel):
    """Paginated payroll list."""
    items: List[PayrollResponse]
    total: int
    page: int
    limit: int


# ===========================================
# WORKER COMPENSATION (BOUNDARY TYPE)
# ===========================================

_CONTRACT_ALIASES = {
    "clt": ContractType.EMPLOYEE,
    "employee": ContractType.EMPLOYEE,
    "cnpj": ContractType.CONTRACTOR,
    "pj": ContractType.CONTRACTOR,
    "contractor": ContractType.CONTRACTOR,
}


class WorkerAdjustment(BaseModel):
    """
    Line item supplied with worker data.

    Unreadable values are kept as NaN and replaced by the salary calculator,
    which records the substitution.
    """
    name: str = Field(
        default="Other",
        validation_alias=AliasChoices("name", "type"),
    )
    description: Optional[str] = None
    kind: AdjustmentKind = AdjustmentKind.FIXED
    value: Decimal = Field(default=Decimal("0"), allow_inf_nan=True)

    class Config:
        populate_by_name = True

    @field_validator("value", mode="before")
    @classmethod
    def parse_value(cls, v: Any) -> Decimal:
        return to_decimal(v)


class WorkerCompensation(BaseModel):
    """
    Worker identity and compensation as supplied by the worker directory.

    Accepts the directory's own field names (``salario``, ``ajuda``) and
    locale-formatted amounts such as ``"R$ 3.500,00"``.
    """
    worker_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("worker_id", "workerId", "id", "_id"),
    )
    name: str = Field(default="", validation_alias=AliasChoices("name", "nome"))
    position: Optional[str] = Field(default=None, validation_alias=AliasChoices("position", "cargo"))
    department: Optional[str] = Field(default=None, validation_alias=AliasChoices("department", "departamento"))
    contract_type: ContractType = Field(
        default=ContractType.EMPLOYEE,
        validation_alias=AliasChoices("contract_type", "contractType", "tipo_contrato"),
    )
    base_salary: Decimal = Field(
        default=Decimal("NaN"),
        allow_inf_nan=True,
        validation_alias=AliasChoices("base_salary", "baseSalary", "salary", "salario"),
    )
    meal_allowance: Optional[Decimal] = Field(
        default=None,
        allow_inf_nan=True,
        validation_alias=AliasChoices("meal_allowance", "ajuda"),
    )
    dependents: int = Field(default=0, ge=0)
    benefits: List[WorkerAdjustment] = []
    deductions: List[WorkerAdjustment] = []
    additionals: List[WorkerAdjustment] = []

    class Config:
        populate_by_name = True

    @field_validator("worker_id", mode="before")
    @classmethod
    def normalize_worker_id(cls, v: Any) -> Optional[str]:
        if v is None:
            return None
        text = str(v).strip()
        return text or None

    @field_validator("name", mode="before")
    @classmethod
    def normalize_name(cls, v: Any) -> str:
        return "" if v is None else str(v).strip()

    @field_validator("contract_type", mode="before")
    @classmethod
    def normalize_contract_type(cls, v: Any) -> Any:
        if v is None:
            return ContractType.EMPLOYEE
        if isinstance(v, str):
            return _CONTRACT_ALIASES.get(v.strip().lower(), v)
        return v

    @field_validator("base_salary", mode="before")
    @classmethod
    def parse_salary(cls, v: Any) -> Decimal:
        return to_decimal(v)

    @field_validator("meal_allowance", mode="before")
    @classmethod
    def parse_allowance(cls, v: Any) -> Optional[Decimal]:
        if v is None or v == "":
            return None
        return to_decimal(v)

    @field_validator("dependents", mode="before")
    @classmethod
    def default_dependents(cls, v: Any) -> Any:
        return 0 if v is None else v


# ===========================================
# PAYROLL RUN SCHEMAS
# ===========================================

class PayrollRunCreate(BaseModel):
    """Create payroll run request."""
    month: int = Field(..., ge=1, le=12)
    year: int = Field(..., ge=1900, le=9999)
    notes: Optional[str] = None


class BatchProcessRequest(BaseModel):
    """
    Batch request. When ``workers`` is omitted the roster is fetched from
    the worker directory.

    Worker records stay raw here; each one is validated by the batch so a
    bad record is skipped instead of failing the request.
    """
    month: int = Field(..., ge=1, le=12)
    year: int = Field(..., ge=1900, le=9999)
    workers: Optional[List[Dict[str, Any]]] = Field(
        default=None,
        validation_alias=AliasChoices("workers", "employees"),
    )

    class Config:
        populate_by_name = True


class RunProcessRequest(BaseModel):
    """Process an existing run with an explicit roster."""
    workers: List[Dict[str, Any]] = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("workers", "employees"),
    )

    class Config:
        populate_by_name = True


class PayrollRunEntryResponse(BaseModel):
    """Per-worker row of a run."""
    id: UUID
    payroll_id: Optional[UUID] = None
    worker_id: str
    worker_name: str
    contract_type: ContractType
    base_salary: Decimal
    gross_salary: Decimal
    statutory_withholding: Decimal
    income_tax: Decimal
    total_deductions: Decimal
    total_benefits: Decimal
    total_additionals: Decimal
    net_salary: Decimal
    employer_contribution: Decimal
    fallback_count: int

    class Config:
        from_attributes = True


class PayrollRunResponse(BaseModel):
    """Payroll run response."""
    id: UUID
    month: int
    year: int
    status: PayrollStatus
    employee_count: int
    total_gross_salary: Decimal
    total_deductions: Decimal
    total_benefits: Decimal
    total_net_salary: Decimal
    total_employer_contributions: Decimal
    skipped_count: int
    fallback_count: int
    started_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None
    notes: Optional[str] = None
    entries: List[PayrollRunEntryResponse] = []

    class Config:
        from_attributes = True


class SkippedWorkerResponse(BaseModel):
    """Worker left out of a batch and why."""
    worker_id: Optional[str] = None
    name: Optional[str] = None
    reason: str


class BatchResultResponse(BaseModel):
    """Batch run outcome."""
    run: PayrollRunResponse
    succeeded: List[PayrollResponse]
    skipped: List[SkippedWorkerResponse]
    fallbacks: List[Dict[str, Any]] = []


# ===========================================
# PAY STUB SCHEMAS
# ===========================================

class PayStubItemResponse(BaseModel):
    """Snapshot line item."""
    id: UUID
    category: AdjustmentCategory
    name: str
    description: Optional[str] = None
    kind: AdjustmentKind
    value: Decimal
    calculated_value: Decimal
    sort_order: int

    class Config:
        from_attributes = True


class PayStubResponse(BaseModel):
    """Pay stub response."""
    id: UUID
    payroll_id: UUID
    worker_id: str
    worker_name: str
    month: int
    year: int
    document_number: str
    issue_date: date
    base_gross_salary: Decimal
    total_deductions: Decimal
    total_benefits: Decimal
    total_additionals: Decimal
    net_salary: Decimal
    signed_by_employee: bool
    signature_date: Optional[datetime] = None
    signature_ip: Optional[str] = None
    signature_token: Optional[str] = None
    pdf_url: Optional[str] = None
    notes: Optional[str] = None
    deductions: List[PayStubItemResponse] = []
    benefits: List[PayStubItemResponse] = []
    additionals: List[PayStubItemResponse] = []

    class Config:
        from_attributes = True


class PayStubPdfUpdate(BaseModel):
    """Record the location of a rendered pay stub."""
    pdf_url: str = Field(..., min_length=1, max_length=500)
