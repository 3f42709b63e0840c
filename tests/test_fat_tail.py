import numpy as np
import pytest

from bbdsim import config as cfg
from bbdsim.errors import CorrelationMatrixError, InsufficientDataError
from bbdsim.simulation.fat_tail import (
    FatTailModel,
    FatTailParams,
    fat_tail_diagnostics,
    generate_fat_tail_returns,
    historical_moments,
    student_t,
    unit_variance_scale,
)


def test_params_lookup():
    params = FatTailParams.for_asset_class('equity_stock')
    assert params.degrees_of_freedom == 4
    assert params.skew_multiplier == pytest.approx(1.20)


def test_stocks_have_fatter_tails_than_bonds():
    assert (FatTailParams.for_asset_class('equity_stock').degrees_of_freedom
            < FatTailParams.for_asset_class('bond').degrees_of_freedom)


def test_unknown_asset_class():
    with pytest.raises(ValueError):
        FatTailParams.for_asset_class('crypto')


def test_student_t_variance():
    draws = student_t(8, np.random.default_rng(0), size=400_000)
    assert np.var(draws) == pytest.approx(8 / 6, rel=0.03)


@pytest.mark.parametrize(
    "df, expected",
    [
        (4, np.sqrt(0.5)),
        (8, np.sqrt(0.75)),
        (2, 1.0),
    ],
)
def test_unit_variance_scale(df, expected):
    assert unit_variance_scale(df) == pytest.approx(expected)


def test_historical_moments_population_stddev():
    moments = historical_moments([0.1, 0.3])
    assert moments['mean'] == pytest.approx(0.2)
    assert moments['stddev'] == pytest.approx(0.1)


def test_historical_moments_empty():
    with pytest.raises(InsufficientDataError):
        historical_moments([])


def test_non_positive_definite_correlation_is_structured_failure():
    bad = np.array([[1.0, 1.2], [1.2, 1.0]])
    with pytest.raises(CorrelationMatrixError):
        FatTailModel([0.08, 0.03], [0.16, 0.05], ['equity_index', 'bond'], correlation=bad)


def test_sample_clamped_and_shaped():
    model = FatTailModel([0.0], [3.0], ['equity_stock'])
    returns = model.sample(5_000, np.random.default_rng(3))
    assert returns.shape == (1, 5_000)
    low, high = cfg.FAT_TAIL_RETURN_BOUNDS
    assert returns.min() >= low
    assert returns.max() <= high


def test_sample_moments_and_skew():
    model = FatTailModel([0.08], [0.15], ['bond'])
    returns = model.sample(100_000, np.random.default_rng(5))[0]
    params = FatTailParams.for_asset_class('bond')
    # Negative draws are stretched, so the mean sits below mean - bias
    assert np.mean(returns) < 0.08 - params.survivorship_bias
    assert np.mean(returns) == pytest.approx(0.08, abs=0.02)


def test_generate_correlated():
    rng = np.random.default_rng(0)
    history = [rng.normal(0.08, 0.16, 30), rng.normal(0.06, 0.12, 30)]
    corr = np.array([[1.0, 0.7], [0.7, 1.0]])
    returns = generate_fat_tail_returns(50_000, history, ['equity_index', 'equity_index'], corr,
                                        np.random.default_rng(1))
    assert returns.shape == (2, 50_000)
    assert np.corrcoef(returns)[0, 1] == pytest.approx(0.7, abs=0.05)


def test_diagnostics():
    stock = fat_tail_diagnostics('equity_stock')
    bond = fat_tail_diagnostics('bond')
    assert stock['excess_kurtosis'] == float('inf')
    assert bond['excess_kurtosis'] == pytest.approx(6 / (8 - 4))
    assert stock['quantile_1pct'] < stock['normal_quantile_1pct']
