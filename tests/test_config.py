import dataclasses

import numpy as np
import pandas as pd
import pytest

from bbdsim import config as cfg
from bbdsim.config import (
    Portfolio,
    PortfolioAsset,
    SblocTerms,
    TaxModeling,
    get_simulation_config,
)


def test_defaults_match_lending_terms():
    config = get_simulation_config()
    assert config.sbloc.interest_rate == pytest.approx(0.074)
    assert config.sbloc.max_ltv == pytest.approx(0.65)
    assert config.sbloc.maintenance_margin == pytest.approx(0.50)
    assert config.sbloc.liquidation_haircut == pytest.approx(0.05)
    assert config.withdrawals.annual_amount == 50_000
    assert config.cost_basis_ratio == pytest.approx(0.40)


def test_overrides_do_not_touch_defaults():
    custom = get_simulation_config(iterations=10, time_horizon=3)
    assert custom.iterations == 10
    assert get_simulation_config().iterations == cfg.NUM_SIMULATIONS


def test_config_is_frozen():
    config = get_simulation_config()
    with pytest.raises(dataclasses.FrozenInstanceError):
        config.iterations = 5


def test_liquidation_target_ltv():
    assert SblocTerms(maintenance_margin=0.5).liquidation_target_ltv == pytest.approx(0.4)


def test_initial_cost_basis():
    config = get_simulation_config(initial_value=2_000_000, cost_basis_ratio=0.25)
    assert config.initial_cost_basis == pytest.approx(500_000)


@pytest.mark.parametrize(
    "enabled, advantaged, expected",
    [
        (True, False, True),
        (True, True, False),
        (False, False, False),
    ],
)
def test_tax_active(enabled, advantaged, expected):
    tax = TaxModeling(enabled=enabled, tax_advantaged=advantaged)
    assert tax.active is expected
    if not expected:
        assert tax.dividend_tax(1_000_000) == 0.0
        assert tax.capital_gains_rate == 0.0


def test_dividend_tax_amount():
    tax = TaxModeling(dividend_yield=0.02, ordinary_rate=0.37)
    assert tax.dividend_tax(1_000_000) == pytest.approx(7_400)


def test_portfolio_asset_drops_nans():
    asset = PortfolioAsset('X', 1.0, [np.nan, 0.1, 0.2, np.nan])
    assert list(asset.historical_returns) == [0.1, 0.2]


def test_aligned_history_uses_trailing_window():
    df = pd.DataFrame({
        'OLD': [0.1, 0.2, 0.3, 0.4, 0.5],
        'NEW': [np.nan, np.nan, 0.03, 0.04, 0.05],
    })
    portfolio = Portfolio.from_dataframe(df, {'OLD': 0.5, 'NEW': 0.5})
    aligned = portfolio.aligned_history()
    assert portfolio.history_length == 3
    assert aligned.shape == (2, 3)
    np.testing.assert_allclose(aligned[0], [0.3, 0.4, 0.5])
    np.testing.assert_allclose(aligned[1], [0.03, 0.04, 0.05])


def test_from_dataframe_missing_column():
    df = pd.DataFrame({'A': [0.1, 0.2]})
    with pytest.raises(KeyError):
        Portfolio.from_dataframe(df, {'B': 1.0})


def test_correlation_unit_diagonal(portfolio):
    corr = portfolio.correlation()
    assert corr.shape == (2, 2)
    np.testing.assert_allclose(np.diag(corr), 1.0)
    assert corr[0, 1] == pytest.approx(corr[1, 0])


def test_correlation_identity_with_short_history():
    portfolio = Portfolio(assets=(
        PortfolioAsset('A', 0.5, [0.1, 0.2]),
        PortfolioAsset('B', 0.5, [0.3, -0.1]),
    ))
    np.testing.assert_array_equal(portfolio.correlation(), np.eye(2))


def test_supplied_correlation_wins(portfolio):
    supplied = np.array([[1.0, 0.25], [0.25, 1.0]])
    custom = Portfolio(assets=portfolio.assets, correlation_matrix=supplied)
    np.testing.assert_allclose(custom.correlation(), supplied)
