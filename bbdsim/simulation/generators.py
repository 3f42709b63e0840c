"""
Return generators: one interface, four interchangeable models.

A generator is built once per run (calibration and Cholesky factorisation
happen up front) and then called once per iteration with that iteration's
random generator. Instances hold only numpy arrays and plain values so they
pickle cleanly to loky workers.
"""

import numpy as np
from typing import Dict, Optional
from bbdsim import config as cfg
from bbdsim.config import Portfolio, SimulationConfig
from bbdsim.errors import ConfigurationError
from bbdsim.simulation.bootstrap import BlockBootstrapReturns, correlated_bootstrap
from bbdsim.simulation.fat_tail import FatTailModel, fat_tail_diagnostics
from bbdsim.simulation.regime import (
    RegimeParams,
    build_asset_regime_params,
    generate_regime_returns,
    get_transition_matrix,
    regime_params_from_calibration,
)
from bbdsim.simulation.regime_calibration import calibrate_regime_model
from bbdsim.utils import safe_cholesky


class ReturnGenerator:
    """Base class: generate(years, portfolio, rng) -> (n_assets, years) array."""

    name = 'base'

    def generate(self, years: int, portfolio: Portfolio, rng: np.random.Generator) -> np.ndarray:
        raise NotImplementedError

    def describe(self) -> Dict:
        return {'model': self.name}


class BootstrapGenerator(ReturnGenerator):
    """Shared-index resampling of whole historical years."""

    name = 'bootstrap'

    def __init__(self, history: np.ndarray):
        self.history = np.asarray(history, dtype=float)

    def generate(self, years, portfolio, rng):
        return correlated_bootstrap(self.history, years, rng)

    def describe(self):
        return {'model': self.name, 'history_periods': int(self.history.shape[1])}


class BlockBootstrapGenerator(ReturnGenerator):
    """Shared-start resampling of contiguous blocks of historical years."""

    name = 'block'

    def __init__(self, history: np.ndarray, block_size: Optional[int] = None):
        self.sampler = BlockBootstrapReturns(history, block_size=block_size)

    @property
    def block_size(self) -> int:
        return self.sampler.block_size

    def generate(self, years, portfolio, rng):
        return self.sampler.sample_returns(years, rng)

    def describe(self):
        return {
            'model': self.name,
            'history_periods': int(self.sampler.n_periods),
            'block_size': int(self.sampler.block_size),
            'block_size_source': self.sampler.block_size_source,
        }


class RegimeSwitchingGenerator(ReturnGenerator):
    """Four-state Markov regime model with correlated Normal draws inside each regime."""

    name = 'regime'

    def __init__(self, regime_params: RegimeParams, transition_matrix: np.ndarray,
                 correlation: Optional[np.ndarray] = None, mode: str = 'historical',
                 params_source: str = 'multiplier', initial_regime: int = cfg.BULL):
        self.regime_params = regime_params
        self.transition_matrix = np.asarray(transition_matrix, dtype=float)
        self.mode = mode
        self.params_source = params_source
        self.initial_regime = initial_regime
        if correlation is not None and regime_params.n_assets > 1:
            self.cholesky = safe_cholesky(correlation)
        else:
            self.cholesky = None

    def generate(self, years, portfolio, rng):
        returns, _ = generate_regime_returns(
            years, self.regime_params, self.transition_matrix, rng,
            initial_regime=self.initial_regime, cholesky=self.cholesky,
        )
        return returns

    def describe(self):
        return {
            'model': self.name,
            'calibration': self.mode,
            'params_source': self.params_source,
            'transition_matrix': self.transition_matrix.tolist(),
            'regime_means': self.regime_params.means.tolist(),
            'regime_stddevs': self.regime_params.stddevs.tolist(),
        }


class FatTailGenerator(ReturnGenerator):
    """Student-t returns correlated through the Cholesky factor of the correlation matrix."""

    name = 'fat_tail'

    def __init__(self, model: FatTailModel):
        self.model = model

    def generate(self, years, portfolio, rng):
        return self.model.sample(years, rng)

    def describe(self):
        return {
            'model': self.name,
            'asset_classes': list(self.model.asset_classes),
            'tails': {c: fat_tail_diagnostics(c) for c in set(self.model.asset_classes)},
        }


def create_return_generator(config: SimulationConfig, portfolio: Portfolio,
                            verbose: bool = False) -> ReturnGenerator:
    """
    Build the generator selected by config.return_model.

    Raises:
        ConfigurationError: unknown return model
        CorrelationMatrixError: fat-tail model with a non-positive-definite matrix
    """
    model = config.return_model

    if model == 'bootstrap':
        return BootstrapGenerator(portfolio.aligned_history())

    if model == 'block':
        generator = BlockBootstrapGenerator(portfolio.aligned_history(), config.block_size)
        if verbose:
            print(f"  [INFO] Block bootstrap block size: {generator.block_size} "
                  f"({generator.sampler.block_size_source})")
        return generator

    if model == 'regime':
        mode = config.regime_calibration
        full_history = [a.historical_returns for a in portfolio.assets]
        if config.regime_params_source == 'calibrated':
            calibrated = calibrate_regime_model(
                _pad_histories(full_history), mode,
                asset_ids=portfolio.asset_ids, verbose=verbose,
            )
            params = regime_params_from_calibration(
                calibrated['regime_params'], portfolio.n_assets,
                survivorship_bias=cfg.REGIME_CONFIG[mode]['survivorship_bias'],
            )
            matrix = calibrated['transition_matrix']
        else:
            params = build_asset_regime_params(
                _pad_histories(full_history), portfolio.asset_classes('equity_stock'), mode,
            )
            matrix = get_transition_matrix(mode)
        return RegimeSwitchingGenerator(
            params, matrix, correlation=portfolio.correlation(),
            mode=mode, params_source=config.regime_params_source,
        )

    if model == 'fat_tail':
        fat_tail = FatTailModel.from_history(
            [a.historical_returns for a in portfolio.assets],
            portfolio.asset_classes('equity_index'),
            correlation=portfolio.correlation(),
        )
        return FatTailGenerator(fat_tail)

    raise ConfigurationError(f"Unknown return model: {model}", field='return_model')


def _pad_histories(histories) -> np.ndarray:
    """Stack histories of different lengths into a NaN-padded matrix (right-aligned)."""
    length = max((len(h) for h in histories), default=0)
    out = np.full((len(histories), length), np.nan)
    for i, h in enumerate(histories):
        if len(h):
            out[i, length - len(h):] = h
    return out


def portfolio_returns(asset_returns: np.ndarray, weights) -> np.ndarray:
    """Weighted portfolio return for each simulated year."""
    weights = np.asarray(weights, dtype=float)
    return weights @ np.asarray(asset_returns, dtype=float)
