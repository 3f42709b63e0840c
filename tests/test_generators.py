import pickle

import numpy as np
import pytest

from bbdsim.config import get_simulation_config
from bbdsim.errors import ConfigurationError
from bbdsim.simulation.generators import (
    BlockBootstrapGenerator,
    BootstrapGenerator,
    FatTailGenerator,
    RegimeSwitchingGenerator,
    create_return_generator,
    portfolio_returns,
)


@pytest.mark.parametrize(
    "model, cls",
    [
        ('bootstrap', BootstrapGenerator),
        ('block', BlockBootstrapGenerator),
        ('regime', RegimeSwitchingGenerator),
        ('fat_tail', FatTailGenerator),
    ],
)
def test_factory_builds_each_model(portfolio, model, cls):
    config = get_simulation_config(return_model=model)
    generator = create_return_generator(config, portfolio)
    assert isinstance(generator, cls)
    returns = generator.generate(12, portfolio, np.random.default_rng(0))
    assert returns.shape == (portfolio.n_assets, 12)
    assert np.all(np.isfinite(returns))
    assert generator.describe()['model'] == model


@pytest.mark.parametrize("model", ['bootstrap', 'block', 'regime', 'fat_tail'])
def test_generators_reproducible_and_picklable(portfolio, model):
    generator = create_return_generator(get_simulation_config(return_model=model), portfolio)
    clone = pickle.loads(pickle.dumps(generator))
    a = generator.generate(20, portfolio, np.random.default_rng(99))
    b = clone.generate(20, portfolio, np.random.default_rng(99))
    np.testing.assert_array_equal(a, b)


def test_calibrated_regime_generator(portfolio):
    config = get_simulation_config(return_model='regime', regime_params_source='calibrated')
    generator = create_return_generator(config, portfolio)
    assert generator.params_source == 'calibrated'
    np.testing.assert_allclose(generator.transition_matrix.sum(axis=1), 1.0)


def test_block_size_override(portfolio):
    generator = create_return_generator(get_simulation_config(return_model='block', block_size=5),
                                        portfolio)
    assert generator.block_size == 5
    assert generator.describe()['block_size_source'] == 'override'


def test_unknown_model(portfolio):
    with pytest.raises(ConfigurationError):
        create_return_generator(get_simulation_config(return_model='garch'), portfolio)


def test_portfolio_returns_weighting():
    asset_returns = np.array([[0.10, -0.20], [0.02, 0.04]])
    np.testing.assert_allclose(portfolio_returns(asset_returns, [0.75, 0.25]), [0.08, -0.14])


@pytest.mark.parametrize("mode", ['historical', 'conservative'])
def test_calibrated_means_carry_survivorship_bias(mode):
    from bbdsim import config as cfg
    from bbdsim.config import Portfolio, PortfolioAsset
    from bbdsim.simulation.regime_calibration import calibrate_regime_model

    history = np.random.default_rng(21).normal(0.08, 0.16, 60)
    portfolio = Portfolio(assets=(PortfolioAsset('VTI', 1.0, history, 'equity_index'),))
    config = get_simulation_config(return_model='regime', regime_calibration=mode,
                                   regime_params_source='calibrated')
    generator = create_return_generator(config, portfolio)

    estimated = calibrate_regime_model(history[np.newaxis, :], mode, verbose=False)['regime_params'][0]
    bias = cfg.REGIME_CONFIG[mode]['survivorship_bias']
    expected = [estimated[regime]['mean'] - bias for regime in range(cfg.N_REGIMES)]
    np.testing.assert_allclose(generator.regime_params.means[0], expected)
