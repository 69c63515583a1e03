"""
Salaries Router

Handles HTTP endpoints for salary structures, staff loans and salary payments.
All business logic is delegated to the salary service layer; domain errors are
rendered by the AppException handler in main.
"""

from datetime import date
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.database import get_db
from app.models.salary_payment import PaymentMethod
from app.models.salary_structure import SalaryType
from app.models.staff_member import StaffKind
from app.schemas.salary import (
    FilterOptionsResponse,
    LoanCreate,
    LoanResponse,
    OutstandingLoansResponse,
    PaginatedLoans,
    PaginatedPayments,
    PaymentCreate,
    PaymentDetailResponse,
    PaymentResponse,
    SalaryStructureResponse,
    SalaryStructureUpdate,
    SettlementPreviewRequest,
    SettlementResult,
    StaffRef,
    StaffSalaryResponse,
)
from app.services import salary_service


router = APIRouter(
    prefix="/salaries",
    tags=["salaries"]
)


@router.get("/staff", response_model=List[StaffSalaryResponse])
def list_staff(
    role: Optional[str] = None,
    salary_type: Optional[SalaryType] = None,
    min_salary: Optional[Decimal] = None,
    max_salary: Optional[Decimal] = None,
    search: Optional[str] = None,
    is_active: Optional[bool] = None,
    db: Session = Depends(get_db)
):
    """
    List users and staff members with their current salary structure and
    outstanding loan totals.
    """
    return salary_service.list_staff(
        db,
        role=role,
        salary_type=salary_type,
        min_salary=min_salary,
        max_salary=max_salary,
        search=search,
        is_active=is_active
    )


@router.get("/filters/options", response_model=FilterOptionsResponse)
def get_filter_options(db: Session = Depends(get_db)):
    return salary_service.get_filter_options(db)


@router.post("/staff/{staff_kind}/{staff_id}/salary", response_model=SalaryStructureResponse)
def update_salary_structure(
    staff_kind: StaffKind,
    staff_id: int,
    payload: SalaryStructureUpdate,
    db: Session = Depends(get_db)
):
    """
    Replace a staff member's salary structure. The previous one is kept as superseded.
    """
    return salary_service.update_salary_structure(db, StaffRef(kind=staff_kind, id=staff_id), payload)


@router.get("/staff/{staff_kind}/{staff_id}/salary/history", response_model=List[SalaryStructureResponse])
def get_salary_history(
    staff_kind: StaffKind,
    staff_id: int,
    db: Session = Depends(get_db)
):
    """Current and superseded salary structures, newest first."""
    return salary_service.get_salary_history(db, StaffRef(kind=staff_kind, id=staff_id))


# --- Loans ---

@router.post("/loans", response_model=LoanResponse, status_code=status.HTTP_201_CREATED)
def record_loan(payload: LoanCreate, db: Session = Depends(get_db)):
    return salary_service.record_loan(db, payload)


@router.get("/loans", response_model=PaginatedLoans)
def list_loans(
    status: Optional[str] = Query(default=None, pattern="^(paid|unpaid)$"),
    staff_kind: Optional[StaffKind] = None,
    staff_id: Optional[int] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    page: int = Query(default=1, ge=1),
    limit: Optional[int] = Query(default=None, ge=1),
    db: Session = Depends(get_db)
):
    staff = StaffRef(kind=staff_kind, id=staff_id) if staff_kind and staff_id is not None else None
    return salary_service.list_loans(
        db,
        status=status,
        staff=staff,
        start_date=start_date,
        end_date=end_date,
        page=page,
        limit=limit
    )


@router.get("/loans/details/{staff_kind}/{staff_id}", response_model=OutstandingLoansResponse)
def get_outstanding_loans(
    staff_kind: StaffKind,
    staff_id: int,
    db: Session = Depends(get_db)
):
    """Unpaid loans for one staff member; these are what the next settlement recovers."""
    staff = StaffRef(kind=staff_kind, id=staff_id)
    salary_service.get_staff_record(db, staff)
    loans = salary_service.get_outstanding_loans(db, staff)
    return {
        "staff_kind": staff_kind,
        "staff_id": staff_id,
        "total_outstanding": sum((loan.amount for loan in loans), Decimal("0.00")),
        "loans": loans,
    }


# --- Settlement & payments ---

@router.post("/settlement/preview", response_model=SettlementResult)
def preview_settlement(payload: SettlementPreviewRequest, db: Session = Depends(get_db)):
    """
    Compute gross, deductions and net for the current structure and outstanding
    loans, with optional rate/deduction overrides. Nothing is persisted; a
    negative net is returned as-is.
    """
    return salary_service.preview_settlement(db, payload.staff, payload.overrides())


@router.post("/payments", response_model=PaymentResponse, status_code=status.HTTP_201_CREATED)
def process_payment(payload: PaymentCreate, db: Session = Depends(get_db)):
    """
    Process a salary payment: recompute the settlement, persist the payment
    and mark the recovered loans paid, all or nothing.
    """
    return salary_service.process_payment(db, payload)


@router.get("/payments", response_model=PaginatedPayments)
def list_payments(
    status: Optional[str] = None,
    payment_method: Optional[PaymentMethod] = None,
    staff_kind: Optional[StaffKind] = None,
    staff_id: Optional[int] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    min_amount: Optional[Decimal] = None,
    max_amount: Optional[Decimal] = None,
    search: Optional[str] = None,
    page: int = Query(default=1, ge=1),
    limit: Optional[int] = Query(default=None, ge=1),
    db: Session = Depends(get_db)
):
    staff = StaffRef(kind=staff_kind, id=staff_id) if staff_kind and staff_id is not None else None
    return salary_service.list_payments(
        db,
        status=status,
        payment_method=payment_method,
        staff=staff,
        start_date=start_date,
        end_date=end_date,
        min_amount=min_amount,
        max_amount=max_amount,
        search=search,
        page=page,
        limit=limit
    )


@router.get("/payments/{payment_id}", response_model=PaymentDetailResponse)
def get_payment_details(payment_id: int, db: Session = Depends(get_db)):
    return salary_service.get_payment_details(db, payment_id)
