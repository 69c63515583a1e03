import pytest
import os
from datetime import date
from decimal import Decimal
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Set env before importing app components
os.environ["APP_ENV"] = "testing"
os.environ["DATABASE_URL"] = "sqlite:///:memory:"

from app.database import Base, get_db
from app.main import app
from fastapi.testclient import TestClient

# SQLite in-memory database configuration
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

@pytest.fixture(scope="session", autouse=True)
def setup_database():
    """Create tables once for the whole test session."""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)

@pytest.fixture(scope="function")
def db_session():
    """
    Session for one test. Services commit for real (settlement rollback is
    under test), so tables are emptied afterwards instead of rolling back.
    """
    session = TestingSessionLocal()

    yield session

    session.rollback()
    session.close()
    with engine.begin() as connection:
        for table in reversed(Base.metadata.sorted_tables):
            connection.execute(table.delete())

@pytest.fixture(scope="function")
def staff_member(db_session):
    """A non-user staff member (baker)."""
    from app.models.staff_member import StaffMember
    member = StaffMember(full_name="Ada Baker", role="baker", phone="08030000000", is_active=True)
    db_session.add(member)
    db_session.commit()
    return member

@pytest.fixture(scope="function")
def system_user(db_session):
    """A dashboard user who is also on payroll."""
    from app.models.user import User, UserRole
    user = User(email="cashier@bakery.test", full_name="Chidi Cashier", role=UserRole.CASHIER, is_active=True)
    db_session.add(user)
    db_session.commit()
    return user

@pytest.fixture(scope="function")
def make_structure(db_session):
    """Create a current salary structure row for a staff member."""
    from app.models.salary_structure import SalaryStructure

    def _make(kind, staff_id, base_salary="150000", allowances="20000", deductions="3000",
              tax_rate="5", pension_rate="8", salary_type="monthly"):
        structure = SalaryStructure(
            staff_kind=kind.value,
            staff_id=staff_id,
            base_salary=Decimal(base_salary),
            allowances=Decimal(allowances),
            deductions=Decimal(deductions),
            tax_rate=Decimal(tax_rate),
            pension_rate=Decimal(pension_rate),
            salary_type=salary_type,
            bank_name="First Bank",
            account_number="0123456789",
            account_name="Ada Baker",
            is_current=True
        )
        db_session.add(structure)
        db_session.commit()
        return structure
    return _make

@pytest.fixture(scope="function")
def make_loan(db_session):
    """Create an unpaid loan row for a staff member."""
    from app.models.staff_loan import StaffLoan

    def _make(kind, staff_id, amount="10000", loan_date=date(2024, 5, 2), reason="Advance"):
        loan = StaffLoan(
            staff_kind=kind.value,
            staff_id=staff_id,
            amount=Decimal(amount),
            loan_date=loan_date,
            reason=reason,
            is_paid=False
        )
        db_session.add(loan)
        db_session.commit()
        return loan
    return _make

@pytest.fixture(scope="function")
def client(db_session):
    """Get a TestClient that uses the test database session via dependency override."""
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
