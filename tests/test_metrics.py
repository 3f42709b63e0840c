import numpy as np
import pytest

from bbdsim.metrics import (
    annualized_terminal_returns,
    calculate_annualized_volatility,
    calculate_cagr,
    calculate_performance_summary,
    calculate_return_probabilities,
    calculate_salary_equivalent,
    calculate_success_rate,
    calculate_twrr,
    chain_returns,
)


def test_cagr_uses_horizon_not_point_count():
    assert calculate_cagr(1_000_000, 2_000_000, 10) == pytest.approx(0.071773, abs=1e-6)
    # Off-by-one (11 points) would understate it
    assert calculate_cagr(1_000_000, 2_000_000, 11) < 0.0718 - 0.005


@pytest.mark.parametrize(
    "start, end, years, expected",
    [
        (100.0, 0.0, 10, -1.0),
        (100.0, -50.0, 10, -1.0),
        (100.0, 100.0, 5, 0.0),
    ],
)
def test_cagr_edges(start, end, years, expected):
    assert calculate_cagr(start, end, years) == pytest.approx(expected)


def test_cagr_invalid_inputs_are_nan():
    assert np.isnan(calculate_cagr(0.0, 100.0, 10))
    assert np.isnan(calculate_cagr(100.0, 200.0, 0))


def test_annualized_terminal_returns():
    out = annualized_terminal_returns([400.0, 0.0, 100.0], 100.0, 2)
    np.testing.assert_allclose(out, [1.0, -1.0, 0.0])


def test_volatility():
    assert calculate_annualized_volatility([0.1]) == 0.0
    assert calculate_annualized_volatility([0.1, 0.3, float('nan')]) == pytest.approx(np.std([0.1, 0.3], ddof=1))


def test_chain_returns():
    assert chain_returns([0.10, -0.10]) == pytest.approx(-0.01)
    assert chain_returns([]) == 0.0


def test_twrr_geometric_linking():
    result = calculate_twrr([100.0, 110.0, 121.0])
    assert result['twrr'] == pytest.approx(0.10)
    assert result['cumulative_return'] == pytest.approx(0.21)
    assert len(result['period_returns']) == 2


def test_twrr_stops_at_zero_value():
    result = calculate_twrr([100.0, 0.0, 50.0])
    assert result['period_returns'] == [pytest.approx(-1.0)]
    assert result['twrr'] == -1.0


def test_success_rate_excludes_failed():
    terminal = [1.5e6, 2.0e6, 0.9e6, 1.2e6]
    assert calculate_success_rate(terminal, 1e6) == pytest.approx(0.75)
    assert calculate_success_rate(terminal, 1e6, failed=[False, True, False, False]) == pytest.approx(0.5)


def test_success_requires_strictly_above_initial():
    assert calculate_success_rate([1e6, 1e6], 1e6) == 0.0
    assert calculate_success_rate([], 1e6) == 0.0


def test_return_probabilities_use_year_h_values():
    # Iteration 0 doubles in year 1 then crashes; iteration 1 is flat
    yearly = np.array([
        [100.0, 200.0, 50.0],
        [100.0, 100.0, 100.0],
    ])
    result = calculate_return_probabilities(yearly, 100.0, thresholds=(0.0, 0.5), horizons=(1, 2, 5))
    assert result['horizons'] == [1, 2]
    np.testing.assert_allclose(result['probabilities'][:, 0], [100.0, 50.0])
    np.testing.assert_allclose(result['probabilities'][:, 1], [50.0, 0.0])


def test_return_probabilities_monotone_in_threshold():
    rng = np.random.default_rng(0)
    yearly = 100.0 * np.cumprod(1 + rng.normal(0.07, 0.15, (500, 10)), axis=1)
    yearly = np.hstack([np.full((500, 1), 100.0), yearly])
    probs = calculate_return_probabilities(yearly, 100.0)['probabilities']
    assert np.all(np.diff(probs, axis=0) <= 0)


@pytest.mark.parametrize(
    "withdrawal, rate, salary",
    [
        (100_000, 0.50, 200_000),
        (100_000, 0.0, 100_000),
        (0.0, 0.37, 0.0),
        (100_000, 1.0, float('inf')),
    ],
)
def test_salary_equivalent(withdrawal, rate, salary):
    assert calculate_salary_equivalent(withdrawal, rate)['salary_equivalent'] == salary


def test_performance_summary_real_below_nominal():
    terminal = np.linspace(1e6, 4e6, 101)
    summary = calculate_performance_summary(terminal, 1e6, 10, inflation_rate=0.03)
    assert summary['portfolio_nominal'][50] == pytest.approx(2.5e6)
    assert summary['portfolio_real'][50] == pytest.approx(2.5e6 / 1.03 ** 10)
    assert summary['twrr_real'][50] < summary['twrr_nominal'][50]
