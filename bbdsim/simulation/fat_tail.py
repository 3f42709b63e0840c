from dataclasses import dataclass
import numpy as np
from scipy import stats
from typing import Dict, Optional, Sequence
from bbdsim import config as cfg
from bbdsim.errors import InsufficientDataError
from bbdsim.utils import cholesky_lower


@dataclass(frozen=True)
class FatTailParams:
    degrees_of_freedom: float
    skew_multiplier: float
    survivorship_bias: float
    volatility_scaling: float

    @classmethod
    def for_asset_class(cls, asset_class: str) -> 'FatTailParams':
        if asset_class not in cfg.FAT_TAIL_PARAMS:
            raise ValueError(f"Unknown asset class: {asset_class}")
        return cls(**cfg.FAT_TAIL_PARAMS[asset_class])


def student_t(df: float, rng: np.random.Generator, size=None):
    """Student-t draws as Z / sqrt(chi2_df / df)."""
    z = rng.standard_normal(size)
    chi2 = rng.chisquare(df, size)
    return z / np.sqrt(chi2 / df)


def unit_variance_scale(df: float) -> float:
    """Scale that gives a t(df) draw unit variance (requires df > 2)."""
    if df <= 2:
        return 1.0
    return np.sqrt((df - 2.0) / df)


def historical_moments(returns) -> Dict[str, float]:
    """Population mean and stddev of one asset's history."""
    returns = np.asarray(returns, dtype=float)
    returns = returns[np.isfinite(returns)]
    if len(returns) == 0:
        raise InsufficientDataError("Fat-tail model needs a non-empty return history",
                                    field='historical_returns')
    return {'mean': float(np.mean(returns)), 'stddev': float(np.std(returns))}


class FatTailModel:
    """
    Correlated Student-t annual returns.

    Per year: one independent t draw per asset (with that asset's degrees of
    freedom) scaled to unit variance, correlated through the Cholesky
    factor, negative components stretched by the skew multiplier, then
    mapped to mean - survivorship_bias + x * stddev * volatility_scaling.
    """

    def __init__(self, means, stddevs, asset_classes: Sequence[str], correlation=None):
        self.means = np.asarray(means, dtype=float)
        self.stddevs = np.asarray(stddevs, dtype=float)
        self.asset_classes = tuple(asset_classes)
        self.params = [FatTailParams.for_asset_class(c) for c in self.asset_classes]
        n_assets = len(self.asset_classes)

        self.dfs = np.array([p.degrees_of_freedom for p in self.params], dtype=float)
        self.skews = np.array([p.skew_multiplier for p in self.params])
        self.biases = np.array([p.survivorship_bias for p in self.params])
        self.vol_scaling = np.array([p.volatility_scaling for p in self.params])
        self.unit_scale = np.array([unit_variance_scale(df) for df in self.dfs])

        if correlation is None or n_assets == 1:
            self.cholesky = np.eye(n_assets)
        else:
            self.cholesky = cholesky_lower(correlation)

    @classmethod
    def from_history(cls, history: Sequence, asset_classes: Sequence[str], correlation=None) -> 'FatTailModel':
        moments = [historical_moments(h) for h in history]
        return cls(
            means=[m['mean'] for m in moments],
            stddevs=[m['stddev'] for m in moments],
            asset_classes=asset_classes,
            correlation=correlation,
        )

    def sample_year(self, rng: np.random.Generator) -> np.ndarray:
        x = np.array([student_t(df, rng) for df in self.dfs]) * self.unit_scale
        x = self.cholesky @ x
        x = np.where(x < 0, x * self.skews, x)
        return self.means - self.biases + x * self.stddevs * self.vol_scaling

    def sample(self, years: int, rng: np.random.Generator) -> np.ndarray:
        """
        Returns:
            Array of shape (n_assets, years), clamped to FAT_TAIL_RETURN_BOUNDS
        """
        out = np.empty((len(self.asset_classes), years))
        for t in range(years):
            out[:, t] = self.sample_year(rng)
        low, high = cfg.FAT_TAIL_RETURN_BOUNDS
        return np.clip(out, low, high)


def generate_fat_tail_returns(years: int, history: Sequence, asset_classes: Sequence[str],
                              correlation: Optional[np.ndarray], rng: np.random.Generator) -> np.ndarray:
    """
    Correlated fat-tailed returns for every asset.

    Args:
        years: Number of simulated years
        history: Per-asset historical returns (each 1-D, lengths may differ)
        asset_classes: Asset class per asset
        correlation: Correlation matrix; must be positive definite
        rng: Random generator

    Returns:
        Array of shape (n_assets, years)

    Raises:
        CorrelationMatrixError: correlation matrix is not positive definite
    """
    model = FatTailModel.from_history(history, asset_classes, correlation)
    return model.sample(years, rng)


def fat_tail_diagnostics(asset_class: str) -> Dict[str, float]:
    """Tail statistics of the configured t distribution (unit-variance scale)."""
    params = FatTailParams.for_asset_class(asset_class)
    df = params.degrees_of_freedom
    scale = unit_variance_scale(df)
    excess_kurtosis = float(stats.t.stats(df, moments='k')) if df > 4 else float('inf')
    return {
        'degrees_of_freedom': df,
        'excess_kurtosis': excess_kurtosis,
        'quantile_1pct': float(stats.t.ppf(0.01, df) * scale * params.skew_multiplier),
        'normal_quantile_1pct': float(stats.norm.ppf(0.01)),
    }
