from pydantic import BaseModel, ConfigDict, Field
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional, Tuple

from app.models.staff_member import StaffKind
from app.models.salary_structure import SalaryType
from app.models.salary_payment import PaymentMethod, PaymentStatus


# --- Domain values (immutable inputs/outputs of the settlement calculator) ---

class StaffRef(BaseModel):
    """Either a system user or a non-user staff member, addressed by (kind, id)."""
    model_config = ConfigDict(frozen=True)

    kind: StaffKind
    id: int

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.id}"


class CompensationProfile(BaseModel):
    model_config = ConfigDict(frozen=True)

    staff: StaffRef
    base_salary: Decimal
    allowances: Decimal = Decimal("0")
    other_deductions: Decimal = Decimal("0")
    tax_rate: Decimal = Decimal("0")
    pension_rate: Decimal = Decimal("0")
    salary_type: SalaryType = SalaryType.MONTHLY
    bank_name: Optional[str] = None
    account_number: Optional[str] = None
    account_name: Optional[str] = None


class LoanRecord(BaseModel):
    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: Optional[int] = None
    staff: Optional[StaffRef] = None
    amount: Decimal
    loan_date: Optional[date] = None
    reason: Optional[str] = None
    is_paid: bool = False
    deducted_date: Optional[date] = None


class SettlementOverrides(BaseModel):
    """Per-settlement replacements for the profile's stored rates and other deductions."""
    model_config = ConfigDict(frozen=True)

    tax_rate: Optional[Decimal] = None
    pension_rate: Optional[Decimal] = None
    other_deductions: Optional[Decimal] = None


class SettlementResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    gross_amount: Decimal
    tax_rate: Decimal
    tax_amount: Decimal
    pension_rate: Decimal
    pension_amount: Decimal
    other_deductions: Decimal
    loan_deduction: Decimal
    total_deductions: Decimal
    net_amount: Decimal
    loan_ids: Tuple[int, ...] = ()


class PaymentMeta(BaseModel):
    model_config = ConfigDict(frozen=True)

    salary_period: Optional[date] = None
    payment_date: Optional[date] = None
    payment_method: PaymentMethod = PaymentMethod.BANK_TRANSFER
    reference_number: Optional[str] = None
    notes: Optional[str] = None
    processed_by: Optional[str] = None


class PaymentRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: Optional[int] = None
    staff: StaffRef
    salary_period: date
    payment_date: date
    base_salary: Decimal
    allowances: Decimal
    gross_amount: Decimal
    tax_rate: Decimal
    tax_amount: Decimal
    pension_rate: Decimal
    pension_amount: Decimal
    other_deductions: Decimal
    loan_deduction: Decimal
    total_deductions: Decimal
    net_amount: Decimal
    payment_method: PaymentMethod
    reference_number: Optional[str] = None
    notes: Optional[str] = None
    status: PaymentStatus = PaymentStatus.PAID
    loan_ids: Tuple[int, ...] = ()
    processed_by: Optional[str] = None
    created_at: Optional[datetime] = None


# --- Requests ---

class SalaryStructureUpdate(BaseModel):
    base_salary: Decimal = Field(ge=0)
    allowances: Decimal = Field(default=Decimal("0"), ge=0)
    deductions: Decimal = Field(default=Decimal("0"), ge=0)
    tax_rate: Decimal = Field(default=Decimal("0"), ge=0, le=100)
    pension_rate: Decimal = Field(default=Decimal("0"), ge=0, le=100)
    salary_type: SalaryType = SalaryType.MONTHLY
    bank_name: Optional[str] = None
    account_number: Optional[str] = None
    account_name: Optional[str] = None
    performed_by: Optional[str] = None


class LoanCreate(BaseModel):
    staff_kind: StaffKind
    staff_id: int
    amount: Decimal = Field(gt=0)
    loan_date: date
    reason: Optional[str] = None
    performed_by: Optional[str] = None


class SettlementPreviewRequest(BaseModel):
    staff_kind: StaffKind
    staff_id: int
    # Range checks happen in the calculator so they surface as INVALID_SETTLEMENT
    tax_rate: Optional[Decimal] = None
    pension_rate: Optional[Decimal] = None
    other_deductions: Optional[Decimal] = None

    @property
    def staff(self) -> StaffRef:
        return StaffRef(kind=self.staff_kind, id=self.staff_id)

    def overrides(self) -> SettlementOverrides:
        return SettlementOverrides(
            tax_rate=self.tax_rate,
            pension_rate=self.pension_rate,
            other_deductions=self.other_deductions
        )


class PaymentCreate(SettlementPreviewRequest):
    salary_period: Optional[date] = None
    payment_date: Optional[date] = None
    payment_method: PaymentMethod = PaymentMethod.BANK_TRANSFER
    reference_number: Optional[str] = None
    notes: Optional[str] = None
    performed_by: Optional[str] = None
    # Loan ids shown in the preview; a mismatch means a loan changed in between
    expected_loan_ids: Optional[List[int]] = None

    def meta(self) -> PaymentMeta:
        return PaymentMeta(
            salary_period=self.salary_period,
            payment_date=self.payment_date,
            payment_method=self.payment_method,
            reference_number=self.reference_number,
            notes=self.notes,
            processed_by=self.performed_by
        )


# --- Responses ---

class SalaryStructureResponse(BaseModel):
    id: int
    staff_kind: StaffKind
    staff_id: int
    base_salary: Decimal
    allowances: Decimal
    deductions: Decimal
    tax_rate: Decimal
    pension_rate: Decimal
    salary_type: SalaryType
    bank_name: Optional[str] = None
    account_number: Optional[str] = None
    account_name: Optional[str] = None
    is_current: bool
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class StaffSalaryResponse(BaseModel):
    staff_kind: StaffKind
    staff_id: int
    full_name: Optional[str] = None
    role: Optional[str] = None
    is_active: bool = True
    salary: Optional[SalaryStructureResponse] = None
    outstanding_loan_amount: Decimal = Decimal("0.00")
    outstanding_loan_count: int = 0


class LoanResponse(BaseModel):
    id: int
    staff_kind: StaffKind
    staff_id: int
    amount: Decimal
    loan_date: date
    reason: Optional[str] = None
    is_paid: bool
    deducted_date: Optional[date] = None
    payment_id: Optional[int] = None

    model_config = ConfigDict(from_attributes=True)


class OutstandingLoansResponse(BaseModel):
    staff_kind: StaffKind
    staff_id: int
    total_outstanding: Decimal
    loans: List[LoanResponse]


class PaymentResponse(BaseModel):
    id: int
    staff_kind: StaffKind
    staff_id: int
    salary_period: date
    payment_date: date
    base_salary: Decimal
    allowances: Decimal
    gross_amount: Decimal
    tax_rate: Decimal
    tax_amount: Decimal
    pension_rate: Decimal
    pension_amount: Decimal
    deductions: Decimal
    loan_deduction: Decimal
    total_deductions: Decimal
    net_amount: Decimal
    payment_method: str
    reference_number: Optional[str] = None
    notes: Optional[str] = None
    status: str
    processed_by: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class PaymentDetailResponse(PaymentResponse):
    staff_name: Optional[str] = None
    loans: List[LoanResponse] = []


class PaginatedLoans(BaseModel):
    loans: List[LoanResponse]
    total: int
    page: int
    limit: int
    pages: int


class PaginatedPayments(BaseModel):
    payments: List[PaymentResponse]
    total: int
    page: int
    limit: int
    pages: int
    total_net_amount: Decimal = Decimal("0.00")


class FilterOptionsResponse(BaseModel):
    roles: List[str]
    salary_types: List[str]
    payment_methods: List[str]
    statuses: List[str]
