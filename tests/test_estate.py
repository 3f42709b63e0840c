import numpy as np
import pytest

from bbdsim.estate import (
    calculate_bbd_comparison,
    calculate_embedded_capital_gains,
    calculate_estate_analysis,
    calculate_integrated_estate,
    calculate_tax_if_sold,
)


@pytest.mark.parametrize(
    "value, basis, expected",
    [
        (5_000_000, 1_000_000, 4_000_000),
        (800_000, 1_000_000, 0.0),
    ],
)
def test_embedded_gains(value, basis, expected):
    assert calculate_embedded_capital_gains(value, basis) == expected


def test_estate_analysis():
    estate = calculate_estate_analysis(5_000_000, 1_500_000, 1_000_000, 0.238)
    assert estate.net_estate == pytest.approx(3_500_000)
    assert estate.embedded_capital_gains == pytest.approx(4_000_000)
    assert estate.stepped_up_basis_savings == pytest.approx(952_000)


def test_bbd_comparison():
    comparison = calculate_bbd_comparison(5_000_000, 1_500_000, 1_000_000, 0.238)
    assert comparison['taxes_paid_if_sold'] == pytest.approx(952_000)
    assert comparison['sell_net_estate'] == pytest.approx(4_048_000)
    assert comparison['bbd_advantage'] == pytest.approx(3_500_000 - 4_048_000)


def test_tax_if_sold_at_a_loss():
    assert calculate_tax_if_sold(500_000, 1_000_000, 0.238) == 0.0


def test_integrated_estate_ignores_non_finite():
    result = calculate_integrated_estate([1.0, 3.0, np.nan], [2.0, 2.0, 2.0])
    assert result['bbd_net_estate'] == pytest.approx(2.0)
    assert result['bbd_advantage'] == pytest.approx(0.0)
