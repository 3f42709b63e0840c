import pytest

from bbdsim.sbloc.interest import (
    accrue_interest,
    effective_annual_rate,
    monthly_interest,
    project_loan_balance,
)


@pytest.mark.parametrize(
    "rate, compounding, expected",
    [
        (0.07, 'annual', 0.07),
        (0.07, 'monthly', 0.0722900808),
        (0.0, 'monthly', 0.0),
        (0.12, 'monthly', 0.1268250301),
    ],
)
def test_effective_annual_rate(rate, compounding, expected):
    assert effective_annual_rate(rate, compounding) == pytest.approx(expected, rel=1e-9)


def test_unknown_compounding():
    with pytest.raises(ValueError):
        effective_annual_rate(0.07, 'daily')


def test_monthly_beats_annual_over_20_years():
    annual = project_loan_balance(1_000_000, 0.0, 0.07, 20, 'annual')[-1]
    monthly = project_loan_balance(1_000_000, 0.0, 0.07, 20, 'monthly')[-1]
    assert monthly > annual
    assert annual == pytest.approx(1_000_000 * 1.07 ** 20)
    assert monthly == pytest.approx(1_000_000 * (1 + 0.07 / 12) ** 240)


def test_accrue_interest():
    balance, interest = accrue_interest(100_000, 0.074)
    assert interest == pytest.approx(7_400)
    assert balance == pytest.approx(107_400)


def test_no_interest_on_zero_balance():
    assert accrue_interest(0.0, 0.07) == (0.0, 0.0)
    assert monthly_interest(0.0, 0.07) == 0.0


def test_monthly_interest():
    assert monthly_interest(120_000, 0.06) == pytest.approx(600)


def test_projection_draws_then_accrues():
    balances = project_loan_balance(0.0, 10_000, 0.10, 2)
    assert balances[0] == pytest.approx(11_000)
    assert balances[1] == pytest.approx((11_000 + 10_000) * 1.1)
