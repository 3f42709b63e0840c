import numpy as np
import pandas as pd
from typing import Optional
from bbdsim import config as cfg
from bbdsim.errors import InsufficientDataError


def _as_history(history) -> np.ndarray:
    """Coerce history to a 2-D (n_assets, n_periods) float array."""
    if isinstance(history, pd.DataFrame):
        history = history.to_numpy(dtype=float).T
    history = np.asarray(history, dtype=float)
    if history.ndim == 1:
        history = history[np.newaxis, :]
    if history.ndim != 2 or history.shape[1] == 0:
        raise InsufficientDataError("Cannot bootstrap from an empty return history",
                                    field='historical_returns')
    return history


def correlated_bootstrap(history, years: int, rng: np.random.Generator) -> np.ndarray:
    """
    Resample whole historical years.

    One index per simulated year is shared by every asset, so the
    cross-asset co-movement of that historical year is carried over intact.

    Args:
        history: Aligned returns, shape (n_assets, n_periods)
        years: Number of simulated years
        rng: Random generator

    Returns:
        Array of shape (n_assets, years)
    """
    history = _as_history(history)
    n = history.shape[1]
    idx = rng.integers(0, n, size=years)
    return history[:, idx]


def independent_bootstrap(history, years: int, rng: np.random.Generator) -> np.ndarray:
    """
    Resample each asset with its own indices.

    Destroys cross-asset correlation; only used by the correlation
    self-check to show what shared indices protect against.
    """
    history = _as_history(history)
    n_assets, n = history.shape
    out = np.empty((n_assets, years))
    for i in range(n_assets):
        out[i] = history[i, rng.integers(0, n, size=years)]
    return out


def _flat_top(s: float) -> float:
    s = abs(s)
    if s <= 0.5:
        return 1.0
    if s <= 1.0:
        return 2.0 * (1.0 - s)
    return 0.0


def optimal_block_length(series) -> int:
    """
    Politis-White (2004) automatic block length for the circular block bootstrap.

    Uses the flat-top lag window with the Patton-Politis-White (2009)
    correction. The estimate is rounded and clamped to
    [MIN_BLOCK_SIZE, n // 4]; short, degenerate or near-unit-root series
    get MIN_BLOCK_SIZE.
    """
    x = np.asarray(series, dtype=float)
    n = len(x)
    if n < cfg.MIN_OBSERVATIONS_FOR_BLOCK or not np.all(np.isfinite(x)):
        return cfg.MIN_BLOCK_SIZE

    x = x - x.mean()
    acv0 = np.dot(x, x) / n
    if acv0 <= 0:
        return cfg.MIN_BLOCK_SIZE

    def acv(k):
        return np.dot(x[k:], x[:n - k]) / n

    if abs(acv(1) / acv0) >= cfg.MAX_AUTOCORRELATION_FOR_BLOCK:
        return cfg.MIN_BLOCK_SIZE

    kn = max(5, int(np.ceil(np.log10(n))))
    m_max = int(np.ceil(np.sqrt(n))) + kn
    m_max = min(m_max, n - 1)
    threshold = 2.0 * np.sqrt(np.log10(n) / n)

    rho = np.array([acv(k) / acv0 for k in range(m_max + 1)])

    # Smallest lag after which kn consecutive autocorrelations are insignificant
    m_hat = None
    for m in range(1, m_max - kn + 1):
        if np.all(np.abs(rho[m + 1:m + kn + 1]) < threshold):
            m_hat = m
            break
    big_m = m_max if m_hat is None else min(2 * m_hat, m_max)
    big_m = max(big_m, 1)

    g_hat = 0.0
    long_run_var = acv0
    for k in range(1, big_m + 1):
        weight = _flat_top(k / big_m)
        c_k = acv(k)
        g_hat += 2.0 * weight * k * c_k
        long_run_var += 2.0 * weight * c_k

    d_cb = (4.0 / 3.0) * long_run_var ** 2
    if not np.isfinite(g_hat) or not np.isfinite(d_cb) or d_cb <= 0:
        return cfg.MIN_BLOCK_SIZE

    b_opt = ((2.0 * g_hat ** 2) / d_cb) ** (1.0 / 3.0) * n ** (1.0 / 3.0)
    if not np.isfinite(b_opt):
        return cfg.MIN_BLOCK_SIZE

    return clamp_block_length(int(round(b_opt)), n)


def clamp_block_length(block: int, n: int) -> int:
    upper = max(cfg.MIN_BLOCK_SIZE, n // 4)
    return int(np.clip(block, cfg.MIN_BLOCK_SIZE, upper))


def portfolio_block_length(history) -> int:
    """Rounded mean of the per-asset optimal block lengths, re-clamped."""
    history = _as_history(history)
    lengths = [optimal_block_length(row) for row in history]
    return clamp_block_length(int(round(np.mean(lengths))), history.shape[1])


def correlated_block_bootstrap(history, years: int, rng: np.random.Generator,
                               block_size: Optional[int] = None) -> np.ndarray:
    """
    Resample contiguous runs of historical years.

    Block starts are drawn uniformly from [0, n - block] and shared across
    assets. The final block is truncated to the years remaining.

    Args:
        history: Aligned returns, shape (n_assets, n_periods)
        years: Number of simulated years
        rng: Random generator
        block_size: Fixed block length; tuned from history when None

    Returns:
        Array of shape (n_assets, years)
    """
    history = _as_history(history)
    n = history.shape[1]
    if block_size is None:
        block_size = portfolio_block_length(history)
    block_size = int(max(1, min(block_size, n)))

    out = np.empty((history.shape[0], years))
    filled = 0
    while filled < years:
        length = min(block_size, years - filled)
        start = rng.integers(0, n - block_size + 1)
        out[:, filled:filled + length] = history[:, start:start + length]
        filled += length
    return out


class BlockBootstrapReturns:
    """
    Generate return paths by sampling blocks of historical years.

    Holds the aligned history once and reuses the tuned block length for
    every iteration. Contiguous blocks preserve serial correlation (momentum
    and mean reversion across consecutive years); sharing the block start
    across assets preserves cross-asset correlation.

    Usage:
        sampler = BlockBootstrapReturns(portfolio.aligned_history())
        returns = sampler.sample_returns(years=30, rng=rng)
    """

    def __init__(self, history, block_size: Optional[int] = None):
        """
        Args:
            history: Aligned returns, shape (n_assets, n_periods)
            block_size: Block length override; Politis-White tuned when None
        """
        self.history = _as_history(history)
        self.n_periods = self.history.shape[1]
        if block_size is None:
            self.block_size = int(max(1, min(portfolio_block_length(self.history), self.n_periods)))
            self.block_size_source = 'politis_white'
        else:
            self.block_size = int(max(1, min(block_size, self.n_periods)))
            self.block_size_source = 'override'

    def _draw_block_len(self, remaining: int) -> int:
        return min(self.block_size, remaining)

    def sample_returns(self, years: int, rng: np.random.Generator) -> np.ndarray:
        """
        Returns:
            Array of shape (n_assets, years)
        """
        out = np.empty((self.history.shape[0], years))
        filled = 0
        max_start = self.n_periods - self.block_size
        while filled < years:
            length = self._draw_block_len(years - filled)
            start = rng.integers(0, max_start + 1)
            out[:, filled:filled + length] = self.history[:, start:start + length]
            filled += length
        return out


def create_bootstrap_sampler(portfolio, block_size: Optional[int] = None,
                             verbose: bool = False) -> BlockBootstrapReturns:
    """Build the block sampler for a portfolio's aligned history."""
    sampler = BlockBootstrapReturns(portfolio.aligned_history(), block_size=block_size)
    if verbose:
        print(f"  [INFO] Block bootstrap: {sampler.n_periods} aligned periods, "
              f"block size {sampler.block_size} ({sampler.block_size_source})")
    return sampler
