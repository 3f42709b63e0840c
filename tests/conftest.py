import numpy as np
import pandas as pd
import pytest

from bbdsim.config import (
    Portfolio,
    PortfolioAsset,
    SblocTerms,
    TaxModeling,
    WithdrawalSchedule,
    get_simulation_config,
)


@pytest.fixture
def history_frame():
    rng = np.random.default_rng(7)
    stocks = rng.normal(0.09, 0.17, 40)
    bonds = 0.3 * stocks + rng.normal(0.03, 0.05, 40)
    return pd.DataFrame({'VTI': stocks, 'BND': bonds})


@pytest.fixture
def portfolio(history_frame):
    return Portfolio.from_dataframe(
        history_frame,
        {'VTI': 0.6, 'BND': 0.4},
        asset_classes={'VTI': 'equity_index', 'BND': 'bond'},
    )


@pytest.fixture
def single_asset_portfolio():
    rng = np.random.default_rng(11)
    return Portfolio(assets=(
        PortfolioAsset('SPY', 1.0, rng.normal(0.08, 0.16, 30), 'equity_index'),
    ))


@pytest.fixture
def no_tax():
    return TaxModeling(enabled=False)


@pytest.fixture
def quick_config():
    return get_simulation_config(
        iterations=200,
        time_horizon=15,
        initial_value=1_000_000,
        batch_size=50,
        seed=1234,
        withdrawals=WithdrawalSchedule(annual_amount=40_000, annual_raise=0.03),
    )


@pytest.fixture
def flat_config():
    """No interest, no tax, no withdrawals: engine moves only with returns."""
    return get_simulation_config(
        iterations=1,
        time_horizon=5,
        initial_value=1_000_000,
        sbloc=SblocTerms(interest_rate=0.0),
        withdrawals=WithdrawalSchedule(annual_amount=0.0),
        tax=TaxModeling(enabled=False),
    )
