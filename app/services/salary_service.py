"""
Salary Service Layer

Business logic for salary structures, staff loans and salary payments.
Routers stay focused on HTTP request/response handling.

Architecture:
- Router -> Service (this module) -> Models
- Settlement arithmetic and commit rules live in app.services.settlement;
  this module supplies the staff directory lookup and the SQL store
- System users and non-user staff members are addressed uniformly by StaffRef
"""

import logging
import math
from contextlib import contextmanager
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Iterator, List, Optional, Sequence, Union

from sqlalchemy import and_, func, or_, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import (
    ConcurrentModificationError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from app.core.money import ZERO, to_money
from app.database import commit_or_raise
from app.models.salary_payment import PaymentMethod, PaymentStatus, SalaryPayment
from app.models.salary_structure import SalaryStructure, SalaryType
from app.models.staff_loan import StaffLoan
from app.models.staff_member import StaffKind, StaffMember
from app.models.user import User
from app.schemas.salary import (
    CompensationProfile,
    LoanCreate,
    LoanRecord,
    PaymentCreate,
    PaymentRecord,
    SalaryStructureUpdate,
    SettlementOverrides,
    SettlementResult,
    StaffRef,
)
from app.services.audit import AuditService
from app.services.settlement import compute_settlement, settle_payment

logger = logging.getLogger(__name__)

StaffRecord = Union[User, StaffMember]


def _page_bounds(page: int, limit: Optional[int]) -> tuple:
    limit = limit or settings.default_page_size
    limit = max(1, min(limit, settings.max_page_size))
    page = max(1, page)
    return page, limit


# ============================================================================
# STAFF DIRECTORY
# ============================================================================

def get_staff_record(db: Session, staff: StaffRef) -> StaffRecord:
    model = User if staff.kind == StaffKind.USER else StaffMember
    record = db.get(model, staff.id)
    if record is None:
        raise NotFoundError(f"Staff {staff} not found")
    return record


def _staff_role(record: StaffRecord) -> str:
    if isinstance(record, User):
        return record.role.value.lower()
    return record.role.lower()


def get_current_structure(db: Session, staff: StaffRef) -> Optional[SalaryStructure]:
    return db.query(SalaryStructure).filter(
        SalaryStructure.staff_kind == staff.kind.value,
        SalaryStructure.staff_id == staff.id,
        SalaryStructure.is_current.is_(True)
    ).order_by(SalaryStructure.id.desc()).first()


def _profile_from_structure(staff: StaffRef, structure: SalaryStructure) -> CompensationProfile:
    return CompensationProfile(
        staff=staff,
        base_salary=to_money(structure.base_salary, "base_salary"),
        allowances=to_money(structure.allowances or 0, "allowances"),
        other_deductions=to_money(structure.deductions or 0, "deductions"),
        tax_rate=to_money(structure.tax_rate or 0, "tax_rate"),
        pension_rate=to_money(structure.pension_rate or 0, "pension_rate"),
        salary_type=SalaryType(structure.salary_type),
        bank_name=structure.bank_name,
        account_number=structure.account_number,
        account_name=structure.account_name
    )


def get_compensation_profile(db: Session, staff: StaffRef) -> CompensationProfile:
    """
    Resolve a staff member's current compensation profile.

    Raises:
        NotFoundError: Unknown staff member
        ValidationError: No salary structure has been set yet
    """
    get_staff_record(db, staff)
    structure = get_current_structure(db, staff)
    if structure is None:
        raise ValidationError(f"No salary structure set for staff {staff}", field="base_salary")
    return _profile_from_structure(staff, structure)


def _outstanding_totals(db: Session) -> Dict[tuple, Dict[str, Any]]:
    rows = db.query(
        StaffLoan.staff_kind,
        StaffLoan.staff_id,
        func.sum(StaffLoan.amount),
        func.count(StaffLoan.id)
    ).filter(
        StaffLoan.is_paid.is_(False)
    ).group_by(StaffLoan.staff_kind, StaffLoan.staff_id).all()
    return {
        (kind, staff_id): {"amount": to_money(total or 0), "count": count}
        for kind, staff_id, total, count in rows
    }


def list_staff(
    db: Session,
    role: Optional[str] = None,
    salary_type: Optional[SalaryType] = None,
    min_salary: Optional[Decimal] = None,
    max_salary: Optional[Decimal] = None,
    search: Optional[str] = None,
    is_active: Optional[bool] = None
) -> List[Dict[str, Any]]:
    """
    List users and staff members together with their current salary structure
    and outstanding loan totals.
    """
    user_query = db.query(User)
    member_query = db.query(StaffMember)
    if is_active is not None:
        user_query = user_query.filter(User.is_active.is_(is_active))
        member_query = member_query.filter(StaffMember.is_active.is_(is_active))
    if search:
        pattern = f"%{search.lower()}%"
        user_query = user_query.filter(or_(
            func.lower(User.full_name).like(pattern),
            func.lower(User.email).like(pattern)
        ))
        member_query = member_query.filter(func.lower(StaffMember.full_name).like(pattern))

    records: List[tuple] = (
        [(StaffRef(kind=StaffKind.USER, id=u.id), u) for u in user_query.order_by(User.id).all()]
        + [(StaffRef(kind=StaffKind.STAFF_MEMBER, id=m.id), m) for m in member_query.order_by(StaffMember.id).all()]
    )

    structures = {
        (s.staff_kind, s.staff_id): s
        for s in db.query(SalaryStructure).filter(SalaryStructure.is_current.is_(True)).all()
    }
    outstanding = _outstanding_totals(db)

    results = []
    for staff, record in records:
        staff_role = _staff_role(record)
        if role and staff_role.lower() != role.lower():
            continue

        structure = structures.get((staff.kind.value, staff.id))
        if salary_type and (structure is None or structure.salary_type != salary_type.value):
            continue
        if min_salary is not None and (structure is None or to_money(structure.base_salary) < min_salary):
            continue
        if max_salary is not None and (structure is None or to_money(structure.base_salary) > max_salary):
            continue

        loans = outstanding.get((staff.kind.value, staff.id), {"amount": ZERO, "count": 0})
        results.append({
            "staff_kind": staff.kind,
            "staff_id": staff.id,
            "full_name": record.full_name,
            "role": staff_role,
            "is_active": record.is_active,
            "salary": structure,
            "outstanding_loan_amount": loans["amount"],
            "outstanding_loan_count": loans["count"],
        })
    return results


def get_filter_options(db: Session) -> Dict[str, List[str]]:
    member_roles = [r.lower() for (r,) in db.query(StaffMember.role).distinct().all() if r]
    user_roles = [r.value.lower() for (r,) in db.query(User.role).distinct().all() if r]
    return {
        "roles": sorted(set(member_roles) | set(user_roles)),
        "salary_types": [t.value for t in SalaryType],
        "payment_methods": [m.value for m in PaymentMethod],
        "statuses": [s.value for s in PaymentStatus],
    }


# ============================================================================
# SALARY STRUCTURE
# ============================================================================

def update_salary_structure(db: Session, staff: StaffRef, payload: SalaryStructureUpdate) -> SalaryStructure:
    """
    Replace a staff member's salary structure.

    The previous structure is kept, marked superseded.
    """
    get_staff_record(db, staff)
    previous = get_current_structure(db, staff)

    if previous is not None:
        previous.is_current = False
        previous.superseded_at = datetime.now(timezone.utc)

    structure = SalaryStructure(
        staff_kind=staff.kind.value,
        staff_id=staff.id,
        base_salary=to_money(payload.base_salary, "base_salary"),
        allowances=to_money(payload.allowances, "allowances"),
        deductions=to_money(payload.deductions, "deductions"),
        tax_rate=to_money(payload.tax_rate, "tax_rate"),
        pension_rate=to_money(payload.pension_rate, "pension_rate"),
        salary_type=payload.salary_type.value,
        bank_name=payload.bank_name,
        account_number=payload.account_number,
        account_name=payload.account_name,
        is_current=True,
        created_by=payload.performed_by
    )
    db.add(structure)
    db.flush()

    AuditService.log(
        db,
        action="update_salary_structure",
        entity_type="salary_structure",
        entity_id=structure.id,
        performed_by=payload.performed_by,
        details={"staff": str(staff), "superseded_id": previous.id if previous else None},
        before_state={
            "base_salary": previous.base_salary,
            "allowances": previous.allowances,
            "tax_rate": previous.tax_rate,
            "pension_rate": previous.pension_rate,
        } if previous else None,
        after_state=payload.model_dump(exclude={"performed_by"})
    )
    commit_or_raise(db, "update salary structure")
    db.refresh(structure)

    logger.info(
        f"Salary structure updated for staff {staff}",
        extra={"staff": str(staff), "structure_id": structure.id}
    )
    return structure


def get_salary_history(db: Session, staff: StaffRef) -> List[SalaryStructure]:
    get_staff_record(db, staff)
    return db.query(SalaryStructure).filter(
        SalaryStructure.staff_kind == staff.kind.value,
        SalaryStructure.staff_id == staff.id
    ).order_by(SalaryStructure.id.desc()).all()


# ============================================================================
# LOANS
# ============================================================================

def record_loan(db: Session, payload: LoanCreate) -> StaffLoan:
    staff = StaffRef(kind=payload.staff_kind, id=payload.staff_id)
    get_staff_record(db, staff)

    amount = to_money(payload.amount, "amount")
    if amount <= ZERO:
        raise ValidationError("Loan amount must be greater than zero", field="amount")

    loan = StaffLoan(
        staff_kind=staff.kind.value,
        staff_id=staff.id,
        amount=amount,
        loan_date=payload.loan_date,
        reason=payload.reason,
        is_paid=False,
        created_by=payload.performed_by
    )
    db.add(loan)
    db.flush()
    AuditService.log(
        db,
        action="record_loan",
        entity_type="staff_loan",
        entity_id=loan.id,
        performed_by=payload.performed_by,
        details={"staff": str(staff), "amount": amount, "loan_date": payload.loan_date}
    )
    commit_or_raise(db, "record loan")
    db.refresh(loan)

    logger.info(f"Loan {loan.id} recorded for staff {staff}", extra={"staff": str(staff), "amount": str(amount)})
    return loan


def get_outstanding_loans(db: Session, staff: StaffRef) -> List[StaffLoan]:
    return db.query(StaffLoan).filter(
        StaffLoan.staff_kind == staff.kind.value,
        StaffLoan.staff_id == staff.id,
        StaffLoan.is_paid.is_(False)
    ).order_by(StaffLoan.id).all()


def list_loans(
    db: Session,
    status: Optional[str] = None,
    staff: Optional[StaffRef] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    page: int = 1,
    limit: Optional[int] = None
) -> Dict[str, Any]:
    """
    List loans with filters.

    Args:
        status: "paid" or "unpaid"
        staff: Restrict to one staff member
        start_date / end_date: Inclusive bounds on loan_date
    """
    query = db.query(StaffLoan)
    if status == "paid":
        query = query.filter(StaffLoan.is_paid.is_(True))
    elif status == "unpaid":
        query = query.filter(StaffLoan.is_paid.is_(False))
    elif status:
        raise ValidationError("status must be 'paid' or 'unpaid'", field="status")
    if staff:
        query = query.filter(StaffLoan.staff_kind == staff.kind.value, StaffLoan.staff_id == staff.id)
    if start_date:
        query = query.filter(StaffLoan.loan_date >= start_date)
    if end_date:
        query = query.filter(StaffLoan.loan_date <= end_date)

    page, limit = _page_bounds(page, limit)
    total = query.count()
    loans = query.order_by(StaffLoan.loan_date.desc(), StaffLoan.id.desc()).offset((page - 1) * limit).limit(limit).all()
    return {
        "loans": loans,
        "total": total,
        "page": page,
        "limit": limit,
        "pages": math.ceil(total / limit) if total else 0,
    }


# ============================================================================
# SETTLEMENT
# ============================================================================

def _loan_record(loan: StaffLoan) -> LoanRecord:
    return LoanRecord(
        id=loan.id,
        staff=StaffRef(kind=StaffKind(loan.staff_kind), id=loan.staff_id),
        amount=to_money(loan.amount),
        loan_date=loan.loan_date,
        reason=loan.reason,
        is_paid=loan.is_paid,
        deducted_date=loan.deducted_date
    )


class SqlSettlementStore:
    """SettlementStore over a SQLAlchemy session."""

    def __init__(self, db: Session):
        self.db = db

    @contextmanager
    def transaction(self) -> Iterator[None]:
        try:
            yield
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Settlement rolled back: {e}", exc_info=True)
            raise PersistenceError(details={"reason": e.__class__.__name__}) from e
        except Exception:
            self.db.rollback()
            raise

    def list_unpaid_loans(self, staff: StaffRef) -> List[LoanRecord]:
        # Row locks on PostgreSQL; SQLite serializes writers on its own
        loans = self.db.query(StaffLoan).filter(
            StaffLoan.staff_kind == staff.kind.value,
            StaffLoan.staff_id == staff.id,
            StaffLoan.is_paid.is_(False)
        ).order_by(StaffLoan.id).with_for_update().populate_existing().all()
        return [_loan_record(loan) for loan in loans]

    def add_payment(self, record: PaymentRecord) -> PaymentRecord:
        payment = SalaryPayment(
            staff_kind=record.staff.kind.value,
            staff_id=record.staff.id,
            salary_period=record.salary_period,
            payment_date=record.payment_date,
            base_salary=record.base_salary,
            allowances=record.allowances,
            gross_amount=record.gross_amount,
            tax_rate=record.tax_rate,
            tax_amount=record.tax_amount,
            pension_rate=record.pension_rate,
            pension_amount=record.pension_amount,
            deductions=record.other_deductions,
            loan_deduction=record.loan_deduction,
            total_deductions=record.total_deductions,
            net_amount=record.net_amount,
            payment_method=record.payment_method.value,
            reference_number=record.reference_number,
            notes=record.notes,
            status=record.status.value,
            processed_by=record.processed_by
        )
        self.db.add(payment)
        self.db.flush()

        AuditService.log(
            self.db,
            action="process_salary_payment",
            entity_type="salary_payment",
            entity_id=payment.id,
            performed_by=record.processed_by,
            details={"staff": str(record.staff), "loan_ids": list(record.loan_ids)},
            after_state={
                "gross_amount": record.gross_amount,
                "total_deductions": record.total_deductions,
                "net_amount": record.net_amount,
            }
        )
        return record.model_copy(update={"id": payment.id})

    def mark_loans_paid(self, loan_ids: Sequence[int], deducted_date: date, payment_id: Optional[int]) -> int:
        if not loan_ids:
            return 0
        # Compare-and-swap: only rows still unpaid are flipped
        result = self.db.execute(
            update(StaffLoan)
            .where(StaffLoan.id.in_(list(loan_ids)), StaffLoan.is_paid.is_(False))
            .values(is_paid=True, deducted_date=deducted_date, payment_id=payment_id)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount


def preview_settlement(
    db: Session,
    staff: StaffRef,
    overrides: Optional[SettlementOverrides] = None
) -> SettlementResult:
    profile = get_compensation_profile(db, staff)
    loans = [_loan_record(loan) for loan in get_outstanding_loans(db, staff)]
    return compute_settlement(profile, loans, overrides)


def process_payment(db: Session, payload: PaymentCreate) -> SalaryPayment:
    """
    Compute and commit a salary payment for one staff member.

    Raises:
        InvalidSettlementError: Negative net, non-positive base salary, missing date, bad rate
        ConcurrentModificationError: Outstanding loans differ from expected_loan_ids or changed mid-commit
        PersistenceError: Database failure; nothing was written
    """
    staff = payload.staff
    profile = get_compensation_profile(db, staff)
    loans = [_loan_record(loan) for loan in get_outstanding_loans(db, staff)]

    if payload.expected_loan_ids is not None:
        current_ids = sorted(loan.id for loan in loans)
        if sorted(payload.expected_loan_ids) != current_ids:
            raise ConcurrentModificationError(
                "Outstanding loans changed since the preview. Recompute and retry.",
                details={"expected_loan_ids": sorted(payload.expected_loan_ids), "current_loan_ids": current_ids}
            )

    settlement = compute_settlement(profile, loans, payload.overrides())
    record = settle_payment(profile, loans, settlement, payload.meta(), SqlSettlementStore(db))
    return db.get(SalaryPayment, record.id)


# ============================================================================
# PAYMENTS
# ============================================================================

def _staff_ids_matching(db: Session, search: str) -> Dict[StaffKind, List[int]]:
    pattern = f"%{search.lower()}%"
    user_ids = [i for (i,) in db.query(User.id).filter(or_(
        func.lower(User.full_name).like(pattern),
        func.lower(User.email).like(pattern)
    )).all()]
    member_ids = [i for (i,) in db.query(StaffMember.id).filter(
        func.lower(StaffMember.full_name).like(pattern)
    ).all()]
    return {StaffKind.USER: user_ids, StaffKind.STAFF_MEMBER: member_ids}


def list_payments(
    db: Session,
    status: Optional[str] = None,
    payment_method: Optional[PaymentMethod] = None,
    staff: Optional[StaffRef] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    min_amount: Optional[Decimal] = None,
    max_amount: Optional[Decimal] = None,
    search: Optional[str] = None,
    page: int = 1,
    limit: Optional[int] = None
) -> Dict[str, Any]:
    query = db.query(SalaryPayment)
    if status:
        query = query.filter(SalaryPayment.status == status)
    if payment_method:
        query = query.filter(SalaryPayment.payment_method == payment_method.value)
    if staff:
        query = query.filter(SalaryPayment.staff_kind == staff.kind.value, SalaryPayment.staff_id == staff.id)
    if start_date:
        query = query.filter(SalaryPayment.payment_date >= start_date)
    if end_date:
        query = query.filter(SalaryPayment.payment_date <= end_date)
    if min_amount is not None:
        query = query.filter(SalaryPayment.net_amount >= min_amount)
    if max_amount is not None:
        query = query.filter(SalaryPayment.net_amount <= max_amount)
    if search:
        matches = _staff_ids_matching(db, search)
        query = query.filter(or_(
            and_(SalaryPayment.staff_kind == StaffKind.USER.value, SalaryPayment.staff_id.in_(matches[StaffKind.USER])),
            and_(SalaryPayment.staff_kind == StaffKind.STAFF_MEMBER.value, SalaryPayment.staff_id.in_(matches[StaffKind.STAFF_MEMBER]))
        ))

    page, limit = _page_bounds(page, limit)
    total = query.count()
    total_net = query.with_entities(func.sum(SalaryPayment.net_amount)).scalar()
    payments = query.order_by(SalaryPayment.payment_date.desc(), SalaryPayment.id.desc()).offset((page - 1) * limit).limit(limit).all()
    return {
        "payments": payments,
        "total": total,
        "page": page,
        "limit": limit,
        "pages": math.ceil(total / limit) if total else 0,
        "total_net_amount": to_money(total_net or 0),
    }


def get_payment_details(db: Session, payment_id: int) -> Dict[str, Any]:
    payment = db.get(SalaryPayment, payment_id)
    if payment is None:
        raise NotFoundError(f"Salary payment {payment_id} not found")

    staff = StaffRef(kind=StaffKind(payment.staff_kind), id=payment.staff_id)
    try:
        staff_name = get_staff_record(db, staff).full_name
    except NotFoundError:
        staff_name = None

    return {
        **{c.name: getattr(payment, c.name) for c in SalaryPayment.__table__.columns},
        "staff_name": staff_name,
        "loans": payment.loans,
    }
