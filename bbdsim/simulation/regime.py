"""
Four-state Markov regime-switching return model (bull, bear, crash, recovery).

All assets share one regime path per iteration; within a regime each asset's
annual return is Normal with regime-specific mean and volatility.
"""

from dataclasses import dataclass
import numpy as np
from typing import Dict, Optional, Sequence
from bbdsim import config as cfg
from bbdsim.utils import safe_cholesky


@dataclass(frozen=True)
class RegimeParams:
    """Per-asset, per-regime annual return moments, each of shape (n_assets, N_REGIMES)."""
    means: np.ndarray
    stddevs: np.ndarray

    @property
    def n_assets(self) -> int:
        return self.means.shape[0]


def get_transition_matrix(mode: str = 'historical') -> np.ndarray:
    if mode not in cfg.REGIME_CONFIG:
        raise ValueError(f"Unknown regime calibration mode: {mode}")
    return np.array(cfg.REGIME_CONFIG[mode]['transition_matrix'], dtype=float)


def validate_transition_matrix(matrix) -> Dict[str, bool]:
    """
    Structural checks on a transition matrix.

    Returns:
        Dict of named checks plus 'all_passed'
    """
    matrix = np.asarray(matrix, dtype=float)
    square = matrix.ndim == 2 and matrix.shape[0] == matrix.shape[1]
    finite = bool(np.all(np.isfinite(matrix)))
    checks = {
        'square': bool(square),
        'finite': finite,
        'non_negative': bool(finite and np.all(matrix >= 0)),
        'row_stochastic': bool(
            square and finite
            and np.allclose(matrix.sum(axis=1), 1.0, atol=cfg.ROW_SUM_TOLERANCE, rtol=0.0)
        ),
    }
    checks['all_passed'] = all(checks.values())
    return checks


def normalize_transition_matrix(matrix) -> np.ndarray:
    """Sanitize to a row-stochastic matrix; an empty row becomes a self-transition."""
    tm = np.asarray(matrix, dtype=float).copy()
    tm = np.nan_to_num(tm, nan=0.0, posinf=0.0, neginf=0.0)
    tm[tm < 0] = 0.0
    for i in range(tm.shape[0]):
        rs = tm[i].sum()
        if rs <= 0:
            tm[i] = 0.0
            tm[i, i] = 1.0
        else:
            tm[i] = tm[i] / rs
    return tm


def next_regime(current: int, matrix: np.ndarray, rng: np.random.Generator) -> int:
    """Cumulative-probability selection from the current row with one uniform draw."""
    u = rng.random()
    row = matrix[current]
    cumulative = 0.0
    for state in range(len(row)):
        cumulative += row[state]
        if u < cumulative:
            return state
    # Rounding left the cumulative sum just under 1
    return len(row) - 1


def simulate_regime_path(years: int, matrix: np.ndarray, rng: np.random.Generator,
                         initial_regime: int = cfg.BULL) -> np.ndarray:
    """Regime index for each simulated year; year 0 is `initial_regime`."""
    path = np.zeros(years, dtype=int)
    if years <= 0:
        return path
    current = int(initial_regime)
    path[0] = current
    for t in range(1, years):
        current = next_regime(current, matrix, rng)
        path[t] = current
    return path


def box_muller_normal(rng: np.random.Generator, size: int) -> np.ndarray:
    """Standard normal draws via the Box-Muller transform."""
    # 1 - U keeps the log argument in (0, 1]
    u1 = 1.0 - rng.random(size)
    u2 = rng.random(size)
    return np.sqrt(-2.0 * np.log(u1)) * np.cos(2.0 * np.pi * u2)


def _regime_adjustment(mode_config: Dict, regime: int, asset_class: str) -> Dict[str, float]:
    if regime == cfg.BEAR and asset_class in mode_config['bear_overrides']:
        return mode_config['bear_overrides'][asset_class]
    if regime == cfg.CRASH and asset_class in mode_config['crash_overrides']:
        return mode_config['crash_overrides'][asset_class]
    return mode_config['base_params'][regime]


def build_asset_regime_params(history: np.ndarray, asset_classes: Sequence[str],
                              mode: str = 'historical') -> RegimeParams:
    """
    Regime moments from each asset's historical mean and volatility.

        mean   = hist_mean * mean_multiplier + mean_adjustment - survivorship_bias
        stddev = hist_std * vol_multiplier

    Bonds and commodities get their own bear/crash adjustments.

    Args:
        history: Per-asset returns, shape (n_assets, n_periods); rows may be
            padded with NaN when histories differ in length
        asset_classes: Asset class per asset
        mode: 'historical' or 'conservative'

    Returns:
        RegimeParams
    """
    mode_config = cfg.REGIME_CONFIG[mode]
    bias = mode_config['survivorship_bias']
    n_assets = len(asset_classes)
    means = np.zeros((n_assets, cfg.N_REGIMES))
    stddevs = np.zeros((n_assets, cfg.N_REGIMES))

    for i in range(n_assets):
        series = np.asarray(history[i], dtype=float)
        series = series[np.isfinite(series)]
        if len(series) < 2:
            hist_mean, hist_std = cfg.FALLBACK_MEAN_RETURN, cfg.FALLBACK_STDDEV
        else:
            hist_mean, hist_std = float(np.mean(series)), float(np.std(series, ddof=1))

        for regime in range(cfg.N_REGIMES):
            adj = _regime_adjustment(mode_config, regime, asset_classes[i])
            means[i, regime] = hist_mean * adj['mean_multiplier'] + adj['mean_adjustment'] - bias
            stddevs[i, regime] = max(0.0, hist_std * adj['vol_multiplier'])

    return RegimeParams(means=means, stddevs=stddevs)


def regime_params_from_calibration(calibrated: Dict[int, Dict[int, Dict[str, float]]],
                                   n_assets: int, survivorship_bias: float = 0.0) -> RegimeParams:
    """
    Convert calibrate_regime_model() output ({asset: {regime: {...}}}) to RegimeParams.

    In-sample regime means are lowered by `survivorship_bias`, as in
    build_asset_regime_params.
    """
    means = np.zeros((n_assets, cfg.N_REGIMES))
    stddevs = np.zeros((n_assets, cfg.N_REGIMES))
    for i in range(n_assets):
        for regime in range(cfg.N_REGIMES):
            means[i, regime] = calibrated[i][regime]['mean'] - survivorship_bias
            stddevs[i, regime] = calibrated[i][regime]['stddev']
    return RegimeParams(means=means, stddevs=stddevs)


def generate_regime_returns(years: int, regime_params: RegimeParams, matrix: np.ndarray,
                            rng: np.random.Generator, correlation: Optional[np.ndarray] = None,
                            initial_regime: int = cfg.BULL, cholesky: Optional[np.ndarray] = None):
    """
    Correlated regime-switching returns.

    Args:
        years: Number of simulated years
        regime_params: Per-asset regime moments
        matrix: Row-stochastic transition matrix
        rng: Random generator
        correlation: Optional correlation matrix for the Normal draws
        initial_regime: Regime of the first year
        cholesky: Precomputed lower Cholesky factor (skips factorisation)

    Returns:
        (returns of shape (n_assets, years), regime path of shape (years,))
    """
    n_assets = regime_params.n_assets
    path = simulate_regime_path(years, matrix, rng, initial_regime)

    if cholesky is None and correlation is not None and n_assets > 1:
        cholesky = safe_cholesky(correlation)

    low, high = cfg.REGIME_RETURN_BOUNDS
    returns = np.zeros((n_assets, years))
    for t in range(years):
        z = box_muller_normal(rng, n_assets)
        if cholesky is not None:
            z = cholesky @ z
        regime = path[t]
        returns[:, t] = regime_params.means[:, regime] + regime_params.stddevs[:, regime] * z

    return np.clip(returns, low, high), path
