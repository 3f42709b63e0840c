import dataclasses

import numpy as np
import pytest

from bbdsim.config import TaxModeling, WithdrawalSchedule
from bbdsim.sell_strategy import gross_up_withdrawal, simulate_sell_path


@pytest.mark.parametrize(
    "withdrawal, basis_per_dollar, rate, expected",
    [
        (40_000, 1.0, 0.238, 40_000),
        (40_000, 0.0, 0.20, 50_000),
        (40_000, 0.5, 0.20, 40_000 / 0.9),
        (0.0, 0.5, 0.20, 0.0),
    ],
)
def test_gross_up_withdrawal(withdrawal, basis_per_dollar, rate, expected):
    assert gross_up_withdrawal(withdrawal, basis_per_dollar, rate) == pytest.approx(expected)


def test_no_tax_no_withdrawal_follows_returns(flat_config):
    returns = np.array([0.10, -0.20, 0.05, 0.0, 0.15])
    path = simulate_sell_path(returns, flat_config)
    expected = 1_000_000 * np.concatenate([[1.0], np.cumprod(1 + returns)])
    np.testing.assert_allclose(path.yearly_values, expected)
    assert path.total_taxes == 0.0
    assert not path.depleted


def test_withdrawal_sold_before_return(flat_config):
    config = dataclasses.replace(
        flat_config, withdrawals=WithdrawalSchedule(annual_amount=100_000, annual_raise=0.0)
    )
    path = simulate_sell_path(np.full(5, 0.10), config)
    assert path.yearly_values[1] == pytest.approx(900_000 * 1.10)
    np.testing.assert_allclose(path.withdrawals, 100_000)


def test_capital_gains_tax_and_basis(flat_config):
    config = dataclasses.replace(
        flat_config,
        cost_basis_ratio=0.5,
        tax=TaxModeling(dividend_yield=0.0, ltcg_rate=0.20),
        withdrawals=WithdrawalSchedule(annual_amount=90_000, annual_raise=0.0),
    )
    path = simulate_sell_path(np.zeros(1), config)
    sale = 90_000 / 0.9
    assert path.capital_gains_taxes[0] == pytest.approx(sale - 90_000)
    assert path.yearly_values[1] == pytest.approx(1_000_000 - sale)
    assert path.final_cost_basis == pytest.approx(500_000 * (1 - sale / 1_000_000))


def test_dividend_tax_paid_by_selling(flat_config):
    config = dataclasses.replace(
        flat_config,
        tax=TaxModeling(dividend_yield=0.02, ordinary_rate=0.37, ltcg_rate=0.0),
    )
    path = simulate_sell_path(np.zeros(1), config)
    assert path.dividend_taxes[0] == pytest.approx(7_400)
    assert path.yearly_values[1] == pytest.approx(992_600)


def test_tax_advantaged_account_pays_nothing(flat_config):
    config = dataclasses.replace(
        flat_config,
        cost_basis_ratio=0.2,
        tax=TaxModeling(tax_advantaged=True),
        withdrawals=WithdrawalSchedule(annual_amount=50_000, annual_raise=0.0),
    )
    path = simulate_sell_path(np.zeros(5), config)
    assert path.total_taxes == 0.0
    assert path.terminal_value == pytest.approx(750_000)


def test_depletion_is_permanent(flat_config):
    config = dataclasses.replace(
        flat_config, withdrawals=WithdrawalSchedule(annual_amount=400_000, annual_raise=0.0)
    )
    path = simulate_sell_path(np.zeros(5), config)
    assert path.depleted
    assert path.depletion_year == 3
    # Year 3 funds only what was left
    assert path.withdrawals[2] == pytest.approx(200_000)
    np.testing.assert_allclose(path.yearly_values[3:], 0.0)
    np.testing.assert_allclose(path.withdrawals[3:], 0.0)


def test_cumulative_taxes_monotone(flat_config):
    config = dataclasses.replace(
        flat_config,
        cost_basis_ratio=0.4,
        tax=TaxModeling(),
        withdrawals=WithdrawalSchedule(annual_amount=40_000, annual_raise=0.03),
    )
    path = simulate_sell_path(np.full(5, 0.07), config)
    assert np.all(np.diff(path.cumulative_taxes) >= 0)
    assert path.cumulative_taxes[-1] == pytest.approx(path.total_taxes)
