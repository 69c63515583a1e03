import pytest
from decimal import Decimal

from app.core.exceptions import InvalidSettlementError, ValidationError
from app.models.staff_member import StaffKind
from app.schemas.salary import CompensationProfile, LoanRecord, SettlementOverrides, StaffRef
from app.services.settlement import compute_settlement

STAFF = StaffRef(kind=StaffKind.STAFF_MEMBER, id=1)


def _profile(**overrides):
    fields = dict(
        staff=STAFF,
        base_salary=Decimal("150000"),
        allowances=Decimal("20000"),
        other_deductions=Decimal("3000"),
        tax_rate=Decimal("5"),
        pension_rate=Decimal("8"),
    )
    fields.update(overrides)
    return CompensationProfile(**fields)


def test_worked_example():
    """150000 base, 20000 allowances, 5% tax, 8% pension, 3000 other, one 10000 loan."""
    result = compute_settlement(_profile(), [LoanRecord(id=1, amount=Decimal("10000"))])

    assert result.gross_amount == Decimal("170000.00")
    assert result.tax_amount == Decimal("8500.00")
    assert result.pension_amount == Decimal("13600.00")
    assert result.other_deductions == Decimal("3000.00")
    assert result.loan_deduction == Decimal("10000.00")
    assert result.total_deductions == Decimal("35100.00")
    assert result.net_amount == Decimal("134900.00")
    assert result.loan_ids == (1,)


def test_deterministic():
    loans = [LoanRecord(id=1, amount=Decimal("2500.50")), LoanRecord(id=2, amount=Decimal("499.49"))]
    first = compute_settlement(_profile(), loans)
    second = compute_settlement(_profile(), loans)
    assert first == second


@pytest.mark.parametrize("base,allowances,tax,pension,other,loans", [
    ("150000", "20000", "5", "8", "3000", ["10000"]),
    ("45000.55", "0", "7.5", "0", "0", []),
    ("333.33", "66.67", "12.25", "3.33", "19.99", ["0.01", "100"]),
    ("80000", "12500", "0", "10", "25000", ["5000", "7500", "1250.75"]),
])
def test_additivity(base, allowances, tax, pension, other, loans):
    profile = _profile(
        base_salary=Decimal(base),
        allowances=Decimal(allowances),
        tax_rate=Decimal(tax),
        pension_rate=Decimal(pension),
        other_deductions=Decimal(other),
    )
    result = compute_settlement(profile, [LoanRecord(id=i, amount=Decimal(a)) for i, a in enumerate(loans, 1)])

    assert result.total_deductions == (
        result.tax_amount + result.pension_amount + result.other_deductions + result.loan_deduction
    )
    assert result.net_amount == result.gross_amount - result.total_deductions
    assert result.gross_amount == Decimal(base) + Decimal(allowances)


def test_rounds_each_component_before_summing():
    # 2.5% of 100.10 is 2.5025 for both tax and pension; summing first would give 5.01
    profile = _profile(
        base_salary=Decimal("100.10"), allowances=Decimal("0"), other_deductions=Decimal("0"),
        tax_rate=Decimal("2.5"), pension_rate=Decimal("2.5"),
    )
    result = compute_settlement(profile)
    assert result.tax_amount == Decimal("2.50")
    assert result.pension_amount == Decimal("2.50")
    assert result.total_deductions == Decimal("5.00")
    assert result.net_amount == Decimal("95.10")


def test_half_cent_rounds_up():
    profile = _profile(base_salary=Decimal("0.50"), allowances=Decimal("0"), other_deductions=Decimal("0"),
                       tax_rate=Decimal("1"), pension_rate=Decimal("0"))
    # 0.50 * 1% = 0.005
    assert compute_settlement(profile).tax_amount == Decimal("0.01")


def test_higher_tax_rate_lowers_net():
    low = compute_settlement(_profile(), overrides=SettlementOverrides(tax_rate=Decimal("5")))
    high = compute_settlement(_profile(), overrides=SettlementOverrides(tax_rate=Decimal("6")))
    assert high.net_amount < low.net_amount


def test_higher_pension_rate_lowers_net():
    low = compute_settlement(_profile(pension_rate=Decimal("8")))
    high = compute_settlement(_profile(pension_rate=Decimal("8.5")))
    assert high.net_amount < low.net_amount


def test_higher_allowances_raise_net():
    low = compute_settlement(_profile(allowances=Decimal("20000")))
    high = compute_settlement(_profile(allowances=Decimal("21000")))
    assert high.net_amount > low.net_amount


def test_overrides_fall_back_to_profile_per_field():
    result = compute_settlement(_profile(), overrides=SettlementOverrides(other_deductions=Decimal("0")))
    assert result.tax_rate == Decimal("5.00")
    assert result.pension_rate == Decimal("8.00")
    assert result.other_deductions == Decimal("0.00")
    assert result.net_amount == Decimal("147900.00")


def test_zero_rate_override_is_not_treated_as_missing():
    result = compute_settlement(_profile(), overrides=SettlementOverrides(tax_rate=Decimal("0")))
    assert result.tax_amount == Decimal("0.00")


def test_paid_loans_are_not_deducted():
    loans = [
        LoanRecord(id=1, amount=Decimal("10000"), is_paid=True),
        LoanRecord(id=2, amount=Decimal("2000")),
    ]
    result = compute_settlement(_profile(), loans)
    assert result.loan_deduction == Decimal("2000.00")
    assert result.loan_ids == (2,)


def test_negative_net_is_returned_not_clamped():
    result = compute_settlement(_profile(), [LoanRecord(id=1, amount=Decimal("200000"))])
    assert result.net_amount == Decimal("-55100.00")


@pytest.mark.parametrize("field,value", [("tax_rate", "100.5"), ("pension_rate", "-1")])
def test_rate_override_out_of_range(field, value):
    with pytest.raises(InvalidSettlementError) as exc:
        compute_settlement(_profile(), overrides=SettlementOverrides(**{field: Decimal(value)}))
    assert exc.value.constraint == f"{field}_range"


def test_stored_rate_out_of_range():
    with pytest.raises(InvalidSettlementError):
        compute_settlement(_profile(tax_rate=Decimal("150")))


@pytest.mark.parametrize("field", ["base_salary", "allowances", "other_deductions"])
def test_negative_money_input_rejected(field):
    with pytest.raises(ValidationError) as exc:
        compute_settlement(_profile(**{field: Decimal("-1")}))
    assert exc.value.field == field
    assert not isinstance(exc.value, InvalidSettlementError)


def test_non_positive_loan_rejected():
    with pytest.raises(ValidationError):
        compute_settlement(_profile(), [LoanRecord(id=1, amount=Decimal("0"))])
