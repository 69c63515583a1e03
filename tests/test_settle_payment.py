import threading
import time
from contextlib import contextmanager
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError

from app.core.exceptions import ConcurrentModificationError, InvalidSettlementError, PersistenceError
from app.models.audit_log import AuditLog
from app.models.salary_payment import SalaryPayment
from app.models.staff_loan import StaffLoan
from app.models.staff_member import StaffKind
from app.schemas.salary import CompensationProfile, LoanRecord, PaymentMeta, StaffRef
from app.services import salary_service
from app.services.salary_service import SqlSettlementStore
from app.services.settlement import StaffLockRegistry, compute_settlement, settle_payment

PAY_DAY = date(2024, 5, 28)


class InMemoryStore:
    """Dict-backed SettlementStore; a transaction restores the loan snapshot on failure."""

    def __init__(self, loans, delay=0.0):
        self.loans = {loan.id: loan for loan in loans}
        self.payments = []
        self.delay = delay

    @contextmanager
    def transaction(self):
        snapshot = dict(self.loans)
        payments = list(self.payments)
        try:
            yield
        except Exception:
            self.loans = snapshot
            self.payments = payments
            raise

    def list_unpaid_loans(self, staff):
        return [loan for loan in self.loans.values() if not loan.is_paid]

    def add_payment(self, record):
        time.sleep(self.delay)
        saved = record.model_copy(update={"id": len(self.payments) + 1})
        self.payments.append(saved)
        return saved

    def mark_loans_paid(self, loan_ids, deducted_date, payment_id):
        marked = 0
        for loan_id in loan_ids:
            loan = self.loans.get(loan_id)
            if loan is not None and not loan.is_paid:
                self.loans[loan_id] = loan.model_copy(update={"is_paid": True, "deducted_date": deducted_date})
                marked += 1
        return marked


def _profile(staff, base_salary="150000"):
    return CompensationProfile(
        staff=staff,
        base_salary=Decimal(base_salary),
        allowances=Decimal("20000"),
        other_deductions=Decimal("3000"),
        tax_rate=Decimal("5"),
        pension_rate=Decimal("8"),
    )


@pytest.fixture
def staff():
    return StaffRef(kind=StaffKind.STAFF_MEMBER, id=7)


# --- Commit rules ---

def test_negative_net_is_rejected(staff):
    profile = _profile(staff)
    loans = [LoanRecord(id=1, amount=Decimal("200000"))]
    store = InMemoryStore(loans)
    settlement = compute_settlement(profile, loans)

    with pytest.raises(InvalidSettlementError) as exc:
        settle_payment(profile, loans, settlement, PaymentMeta(payment_date=PAY_DAY), store, StaffLockRegistry())

    assert exc.value.constraint == "net_amount_non_negative"
    assert exc.value.error_code == "INVALID_SETTLEMENT"
    assert store.payments == []
    assert not store.loans[1].is_paid


def test_zero_base_salary_is_rejected(staff):
    profile = _profile(staff, base_salary="0")
    store = InMemoryStore([])
    settlement = compute_settlement(profile)

    with pytest.raises(InvalidSettlementError) as exc:
        settle_payment(profile, [], settlement, PaymentMeta(payment_date=PAY_DAY), store, StaffLockRegistry())
    assert exc.value.constraint == "base_salary_positive"
    assert store.payments == []


def test_missing_payment_date_is_rejected_first(staff):
    profile = _profile(staff, base_salary="0")
    settlement = compute_settlement(profile)

    with pytest.raises(InvalidSettlementError) as exc:
        settle_payment(profile, [], settlement, PaymentMeta(), InMemoryStore([]), StaffLockRegistry())
    assert exc.value.constraint == "payment_date_required"


def test_salary_period_defaults_to_first_of_month(staff):
    profile = _profile(staff)
    store = InMemoryStore([])
    saved = settle_payment(
        profile, [], compute_settlement(profile), PaymentMeta(payment_date=PAY_DAY), store, StaffLockRegistry()
    )
    assert saved.salary_period == date(2024, 5, 1)
    assert saved.id == 1


# --- Against the database ---

def test_settlement_persists_payment_and_clears_loans(db_session, staff_member, make_structure, make_loan):
    make_structure(StaffKind.STAFF_MEMBER, staff_member.id)
    loan = make_loan(StaffKind.STAFF_MEMBER, staff_member.id)
    staff = StaffRef(kind=StaffKind.STAFF_MEMBER, id=staff_member.id)

    profile = salary_service.get_compensation_profile(db_session, staff)
    loans = [salary_service._loan_record(row) for row in salary_service.get_outstanding_loans(db_session, staff)]
    settlement = compute_settlement(profile, loans)

    saved = settle_payment(
        profile, loans, settlement,
        PaymentMeta(payment_date=PAY_DAY, processed_by="admin@bakery.test"),
        SqlSettlementStore(db_session)
    )

    assert saved.net_amount == Decimal("134900.00")
    assert saved.loan_ids == (loan.id,)

    payment = db_session.get(SalaryPayment, saved.id)
    assert payment.loan_deduction == Decimal("10000.00")
    assert payment.deductions == Decimal("3000.00")

    db_session.refresh(loan)
    assert loan.is_paid is True
    assert loan.deducted_date == PAY_DAY
    assert loan.payment_id == saved.id

    audit = db_session.query(AuditLog).filter(AuditLog.action == "process_salary_payment").one()
    assert audit.entity_id == saved.id
    assert audit.performed_by == "admin@bakery.test"


def test_stale_loans_cannot_be_recovered_twice(db_session, staff_member, make_structure, make_loan):
    make_structure(StaffKind.STAFF_MEMBER, staff_member.id)
    make_loan(StaffKind.STAFF_MEMBER, staff_member.id)
    staff = StaffRef(kind=StaffKind.STAFF_MEMBER, id=staff_member.id)

    profile = salary_service.get_compensation_profile(db_session, staff)
    loans = [salary_service._loan_record(row) for row in salary_service.get_outstanding_loans(db_session, staff)]
    settlement = compute_settlement(profile, loans)
    meta = PaymentMeta(payment_date=PAY_DAY)

    settle_payment(profile, loans, settlement, meta, SqlSettlementStore(db_session))
    with pytest.raises(ConcurrentModificationError):
        settle_payment(profile, loans, settlement, meta, SqlSettlementStore(db_session))

    assert db_session.query(SalaryPayment).count() == 1
    assert salary_service.preview_settlement(db_session, staff).loan_deduction == Decimal("0.00")


def test_loan_recorded_after_read_aborts_settlement(db_session, staff_member, make_structure, make_loan):
    make_structure(StaffKind.STAFF_MEMBER, staff_member.id)
    first = make_loan(StaffKind.STAFF_MEMBER, staff_member.id)
    staff = StaffRef(kind=StaffKind.STAFF_MEMBER, id=staff_member.id)

    profile = salary_service.get_compensation_profile(db_session, staff)
    loans = [salary_service._loan_record(row) for row in salary_service.get_outstanding_loans(db_session, staff)]
    settlement = compute_settlement(profile, loans)

    make_loan(StaffKind.STAFF_MEMBER, staff_member.id, amount="5000")

    with pytest.raises(ConcurrentModificationError) as exc:
        settle_payment(profile, loans, settlement, PaymentMeta(payment_date=PAY_DAY), SqlSettlementStore(db_session))

    assert len(exc.value.details["current_loan_ids"]) == 2
    assert db_session.query(SalaryPayment).count() == 0
    db_session.refresh(first)
    assert first.is_paid is False


class FailingStore(SqlSettlementStore):
    def mark_loans_paid(self, loan_ids, deducted_date, payment_id):
        raise OperationalError("UPDATE staff_loans", {}, Exception("disk I/O error"))


def test_storage_failure_rolls_back_everything(db_session, staff_member, make_structure, make_loan):
    make_structure(StaffKind.STAFF_MEMBER, staff_member.id)
    loan = make_loan(StaffKind.STAFF_MEMBER, staff_member.id)
    staff = StaffRef(kind=StaffKind.STAFF_MEMBER, id=staff_member.id)

    profile = salary_service.get_compensation_profile(db_session, staff)
    loans = [salary_service._loan_record(row) for row in salary_service.get_outstanding_loans(db_session, staff)]
    settlement = compute_settlement(profile, loans)

    with pytest.raises(PersistenceError):
        settle_payment(profile, loans, settlement, PaymentMeta(payment_date=PAY_DAY), FailingStore(db_session))

    assert db_session.query(SalaryPayment).count() == 0
    assert db_session.query(AuditLog).filter(AuditLog.action == "process_salary_payment").count() == 0
    assert db_session.get(StaffLoan, loan.id).is_paid is False


# --- Serialization ---

def test_lock_timeout_raises_concurrent_modification(staff):
    registry = StaffLockRegistry()
    profile = _profile(staff)
    settlement = compute_settlement(profile)
    store = InMemoryStore([])

    with registry.hold(staff):
        with pytest.raises(ConcurrentModificationError):
            settle_payment(
                profile, [], settlement, PaymentMeta(payment_date=PAY_DAY), store,
                locks=registry, lock_timeout=0.01
            )
    assert store.payments == []


def test_concurrent_settlements_recover_a_loan_once(staff):
    registry = StaffLockRegistry()
    loans = [LoanRecord(id=1, amount=Decimal("10000"))]
    store = InMemoryStore(loans, delay=0.05)
    profile = _profile(staff)
    settlement = compute_settlement(profile, loans)
    barrier = threading.Barrier(2)
    outcomes = []

    def worker():
        barrier.wait()
        try:
            settle_payment(profile, loans, settlement, PaymentMeta(payment_date=PAY_DAY), store, registry, 5)
            outcomes.append("ok")
        except ConcurrentModificationError:
            outcomes.append("conflict")

    threads = [threading.Thread(target=worker) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(outcomes) == ["conflict", "ok"]
    assert len(store.payments) == 1
    assert store.loans[1].is_paid is True


def test_different_staff_do_not_block_each_other(staff):
    registry = StaffLockRegistry()
    other = StaffRef(kind=StaffKind.USER, id=7)
    profile = _profile(other)

    with registry.hold(staff):
        saved = settle_payment(
            profile, [], compute_settlement(profile), PaymentMeta(payment_date=PAY_DAY),
            InMemoryStore([]), locks=registry, lock_timeout=0.01
        )
    assert saved.staff == other


# --- Settlement must match the loans it clears ---

def test_settlement_missing_a_loan_is_rejected(staff):
    profile = _profile(staff)
    loans = [LoanRecord(id=1, amount=Decimal("10000"))]
    store = InMemoryStore(loans)
    settlement = compute_settlement(profile, [])

    with pytest.raises(InvalidSettlementError) as exc:
        settle_payment(profile, loans, settlement, PaymentMeta(payment_date=PAY_DAY), store, StaffLockRegistry())

    assert exc.value.constraint == "settlement_loans_mismatch"
    assert store.payments == []
    assert store.loans[1].is_paid is False


def test_replayed_settlement_does_not_deduct_twice(staff):
    profile = _profile(staff)
    loans = [LoanRecord(id=1, amount=Decimal("10000"))]
    store = InMemoryStore(loans)
    settlement = compute_settlement(profile, loans)
    meta = PaymentMeta(payment_date=PAY_DAY)
    registry = StaffLockRegistry()

    settle_payment(profile, loans, settlement, meta, store, registry)
    paid_loans = list(store.loans.values())
    assert paid_loans[0].is_paid is True

    with pytest.raises(InvalidSettlementError) as exc:
        settle_payment(profile, paid_loans, settlement, meta, store, registry)

    assert exc.value.constraint == "settlement_loans_mismatch"
    assert len(store.payments) == 1


def test_settlement_with_wrong_loan_amount_is_rejected(staff):
    profile = _profile(staff)
    loans = [LoanRecord(id=1, amount=Decimal("10000"))]
    settlement = compute_settlement(profile, [LoanRecord(id=1, amount=Decimal("4000"))])

    with pytest.raises(InvalidSettlementError):
        settle_payment(
            profile, loans, settlement, PaymentMeta(payment_date=PAY_DAY), InMemoryStore(loans), StaffLockRegistry()
        )


# --- Lock registry housekeeping ---

def test_lock_registry_forgets_released_locks(staff):
    registry = StaffLockRegistry()
    with registry.hold(staff):
        assert len(registry) == 1
    assert len(registry) == 0


def test_lock_registry_forgets_timed_out_waiters(staff):
    registry = StaffLockRegistry()
    with registry.hold(staff):
        with pytest.raises(ConcurrentModificationError):
            with registry.hold(staff, timeout=0.01):
                pass
        assert len(registry) == 1
    assert len(registry) == 0


def test_lock_registry_empty_after_concurrent_settlements(staff):
    registry = StaffLockRegistry()
    profile = _profile(staff)
    store = InMemoryStore([])
    settlement = compute_settlement(profile)

    threads = [
        threading.Thread(
            target=settle_payment,
            args=(profile, [], settlement, PaymentMeta(payment_date=PAY_DAY), store, registry, 5)
        )
        for _ in range(4)
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(store.payments) == 4
    assert len(registry) == 0
