from dataclasses import dataclass, field, replace
from typing import Dict, Optional, Tuple
import multiprocessing
import numpy as np
import pandas as pd

# ============================================================================
# CONFIGURATION
# ============================================================================

INITIAL_VALUE = 5_000_000
TIME_HORIZON = 30

# Monte Carlo parameters
N_WORKERS = max(1, multiprocessing.cpu_count() - 2)
NUM_SIMULATIONS = 10_000

# Iterations per dispatched batch. Progress is reported and cancellation is
# checked once per completed batch.
BATCH_SIZE = 1_000

DEFAULT_SEED = 42

RETURN_MODELS = ('bootstrap', 'block', 'regime', 'fat_tail')
CALIBRATION_MODES = ('historical', 'conservative')
REGIME_PARAM_SOURCES = ('multiplier', 'calibrated')
COMPOUNDING_FREQUENCIES = ('annual', 'monthly')
ASSET_CLASSES = ('equity_stock', 'equity_index', 'commodity', 'bond')

PERCENTILES = (10, 25, 50, 75, 90)

# Historical data requirements
MIN_HISTORY_YEARS = 2
MIN_OBSERVATIONS_FOR_BLOCK = 12
MIN_OBSERVATIONS_FOR_CALIBRATION = 10

# Block bootstrap
MIN_BLOCK_SIZE = 3
MAX_AUTOCORRELATION_FOR_BLOCK = 0.99

# Sampled return clamps
REGIME_RETURN_BOUNDS = (-0.99, 5.0)
FAT_TAIL_RETURN_BOUNDS = (-2.0, 2.0)

# Fallback moments when an asset has too little history
FALLBACK_MEAN_RETURN = 0.10
FALLBACK_STDDEV = 0.20

# Tolerance for weights and transition-matrix rows
WEIGHT_TOLERANCE = 1e-6
ROW_SUM_TOLERANCE = 1e-6

# ============================================================================
# REGIME MODEL
# ============================================================================

N_REGIMES = 4
BULL, BEAR, CRASH, RECOVERY = 0, 1, 2, 3
REGIME_NAMES = {BULL: 'bull', BEAR: 'bear', CRASH: 'crash', RECOVERY: 'recovery'}

# Fallback per-regime annual return parameters (used when a regime has too
# few observations to estimate from history)
DEFAULT_REGIME_PARAMS = {
    BULL: {'mean': 0.10, 'stddev': 0.12},
    BEAR: {'mean': -0.05, 'stddev': 0.15},
    CRASH: {'mean': -0.25, 'stddev': 0.30},
    RECOVERY: {'mean': 0.15, 'stddev': 0.20},
}

# Rows: from-state, columns: to-state (bull, bear, crash, recovery)
HISTORICAL_TRANSITION_MATRIX = np.array([
    [0.85, 0.10, 0.02, 0.03],
    [0.20, 0.60, 0.10, 0.10],
    [0.05, 0.15, 0.30, 0.50],
    [0.55, 0.10, 0.05, 0.30],
])

# Stress-test matrix: shorter bull runs, more crashes, slower recovery
CONSERVATIVE_TRANSITION_MATRIX = np.array([
    [0.78, 0.14, 0.04, 0.04],
    [0.15, 0.62, 0.14, 0.09],
    [0.03, 0.22, 0.40, 0.35],
    [0.45, 0.17, 0.08, 0.30],
])

# Regime return = hist_mean * mean_multiplier + mean_adjustment - survivorship_bias
# Regime stddev = hist_stddev * vol_multiplier
REGIME_CONFIG = {
    'historical': {
        'survivorship_bias': 0.015,
        'transition_matrix': HISTORICAL_TRANSITION_MATRIX,
        'base_params': {
            BULL: {'mean_multiplier': 1.3, 'mean_adjustment': 0.02, 'vol_multiplier': 0.85},
            BEAR: {'mean_multiplier': -0.5, 'mean_adjustment': -0.05, 'vol_multiplier': 1.3},
            CRASH: {'mean_multiplier': -1.5, 'mean_adjustment': -0.20, 'vol_multiplier': 2.0},
            RECOVERY: {'mean_multiplier': 1.5, 'mean_adjustment': 0.05, 'vol_multiplier': 1.2},
        },
        # Bonds rally in equity bear markets, commodities fall less in crashes
        'bear_overrides': {
            'bond': {'mean_multiplier': 0.8, 'mean_adjustment': 0.0, 'vol_multiplier': 1.1},
        },
        'crash_overrides': {
            'bond': {'mean_multiplier': 0.5, 'mean_adjustment': 0.02, 'vol_multiplier': 1.3},
            'commodity': {'mean_multiplier': -1.0, 'mean_adjustment': -0.10, 'vol_multiplier': 1.8},
        },
    },
    'conservative': {
        'survivorship_bias': 0.020,
        'transition_matrix': CONSERVATIVE_TRANSITION_MATRIX,
        'base_params': {
            BULL: {'mean_multiplier': 1.1, 'mean_adjustment': 0.01, 'vol_multiplier': 0.9},
            BEAR: {'mean_multiplier': -0.7, 'mean_adjustment': -0.07, 'vol_multiplier': 1.4},
            CRASH: {'mean_multiplier': -2.0, 'mean_adjustment': -0.25, 'vol_multiplier': 2.2},
            RECOVERY: {'mean_multiplier': 1.2, 'mean_adjustment': 0.03, 'vol_multiplier': 1.3},
        },
        'bear_overrides': {
            'bond': {'mean_multiplier': 0.6, 'mean_adjustment': -0.01, 'vol_multiplier': 1.2},
        },
        'crash_overrides': {
            'bond': {'mean_multiplier': 0.3, 'mean_adjustment': 0.0, 'vol_multiplier': 1.4},
            'commodity': {'mean_multiplier': -1.3, 'mean_adjustment': -0.13, 'vol_multiplier': 2.0},
        },
    },
}

# ============================================================================
# FAT-TAIL MODEL
# ============================================================================

# Lower degrees of freedom = fatter tails. Skew multiplier scales negative
# draws only. Survivorship bias is subtracted from the historical mean.
FAT_TAIL_PARAMS = {
    'equity_stock': {
        'degrees_of_freedom': 4,
        'skew_multiplier': 1.20,
        'survivorship_bias': 0.020,
        'volatility_scaling': 1.00,
    },
    'equity_index': {
        'degrees_of_freedom': 5,
        'skew_multiplier': 1.15,
        'survivorship_bias': 0.005,
        'volatility_scaling': 1.00,
    },
    'commodity': {
        'degrees_of_freedom': 4,
        'skew_multiplier': 1.10,
        'survivorship_bias': 0.010,
        'volatility_scaling': 1.05,
    },
    'bond': {
        'degrees_of_freedom': 8,
        'skew_multiplier': 1.05,
        'survivorship_bias': 0.000,
        'volatility_scaling': 1.00,
    },
}

# ============================================================================
# SBLOC / WITHDRAWAL / TAX DEFAULTS
# ============================================================================

DEFAULT_INTEREST_RATE = 0.074
DEFAULT_MAX_LTV = 0.65
DEFAULT_MAINTENANCE_MARGIN = 0.50
DEFAULT_LIQUIDATION_HAIRCUT = 0.05
# Forced liquidation sells down to maintenance_margin * multiplier
DEFAULT_LIQUIDATION_TARGET_MULTIPLIER = 0.8

DEFAULT_ANNUAL_WITHDRAWAL = 50_000
DEFAULT_WITHDRAWAL_RAISE = 0.03

# Lending limits by collateral type
ASSET_CLASS_LTV_LIMITS = {
    'equities': 0.65,
    'bonds': 0.85,
    'cash': 0.95,
}
ASSET_CLASS_COLLATERAL = {
    'equity_stock': 'equities',
    'equity_index': 'equities',
    'commodity': 'equities',
    'bond': 'bonds',
}

DEFAULT_COST_BASIS_RATIO = 0.40
DEFAULT_DIVIDEND_YIELD = 0.02
DEFAULT_ORDINARY_TAX_RATE = 0.37
DEFAULT_LTCG_TAX_RATE = 0.238
DEFAULT_INFLATION_RATE = 0.025


# ============================================================================
# PORTFOLIO
# ============================================================================

@dataclass(frozen=True)
class PortfolioAsset:
    """One holding: target weight plus its historical period returns (oldest first)."""
    asset_id: str
    weight: float
    historical_returns: np.ndarray
    asset_class: Optional[str] = None

    def __post_init__(self):
        returns = np.asarray(self.historical_returns, dtype=float).ravel()
        returns = returns[np.isfinite(returns)]
        returns.setflags(write=False)
        object.__setattr__(self, 'historical_returns', returns)


@dataclass(frozen=True)
class Portfolio:
    """Immutable set of assets with an optional explicit correlation matrix."""
    assets: Tuple[PortfolioAsset, ...]
    correlation_matrix: Optional[np.ndarray] = None

    def __post_init__(self):
        object.__setattr__(self, 'assets', tuple(self.assets))
        if self.correlation_matrix is not None:
            corr = np.array(self.correlation_matrix, dtype=float)
            corr.setflags(write=False)
            object.__setattr__(self, 'correlation_matrix', corr)

    @classmethod
    def from_dataframe(cls, df: pd.DataFrame, weights: Dict[str, float],
                       asset_classes: Optional[Dict[str, str]] = None,
                       correlation_matrix: Optional[np.ndarray] = None) -> 'Portfolio':
        """
        Build a portfolio from a DataFrame of period returns (one column per asset).

        Columns may have different start dates; leading/trailing NaNs are
        dropped per column. Only columns present in `weights` are used, in
        the order of `weights`.
        """
        asset_classes = asset_classes or {}
        assets = []
        for asset_id, weight in weights.items():
            if asset_id not in df.columns:
                raise KeyError(f"No historical returns column for asset '{asset_id}'")
            series = df[asset_id].dropna()
            assets.append(PortfolioAsset(
                asset_id=asset_id,
                weight=float(weight),
                historical_returns=series.to_numpy(dtype=float),
                asset_class=asset_classes.get(asset_id),
            ))
        return cls(assets=tuple(assets), correlation_matrix=correlation_matrix)

    @property
    def n_assets(self) -> int:
        return len(self.assets)

    @property
    def asset_ids(self) -> Tuple[str, ...]:
        return tuple(a.asset_id for a in self.assets)

    @property
    def weights(self) -> np.ndarray:
        return np.array([a.weight for a in self.assets], dtype=float)

    def asset_classes(self, default: str) -> Tuple[str, ...]:
        return tuple(a.asset_class or default for a in self.assets)

    @property
    def history_length(self) -> int:
        """Shortest available history across assets."""
        if not self.assets:
            return 0
        return min(len(a.historical_returns) for a in self.assets)

    def aligned_history(self) -> np.ndarray:
        """
        Trailing window of history common to every asset.

        Series are assumed to end on the same period, so the most recent
        `history_length` returns of each asset line up year for year.

        Returns:
            Array of shape (n_assets, history_length)
        """
        n = self.history_length
        if n == 0:
            return np.zeros((self.n_assets, 0))
        return np.vstack([a.historical_returns[-n:] for a in self.assets])

    def history_frame(self) -> pd.DataFrame:
        return pd.DataFrame(self.aligned_history().T, columns=list(self.asset_ids))

    def correlation(self) -> np.ndarray:
        """
        Supplied correlation matrix, or the Pearson matrix of aligned history.

        Derived matrices fall back to identity with fewer than 3 aligned
        points and are projected to the nearest PSD matrix when needed.
        """
        if self.correlation_matrix is not None:
            return np.array(self.correlation_matrix, dtype=float)

        from bbdsim.utils import correlation_from_history
        return correlation_from_history(self.history_frame())


# ============================================================================
# RUN CONFIGURATION
# ============================================================================

@dataclass(frozen=True)
class SblocTerms:
    """Securities-backed line of credit terms."""
    interest_rate: float = DEFAULT_INTEREST_RATE
    max_ltv: float = DEFAULT_MAX_LTV
    maintenance_margin: float = DEFAULT_MAINTENANCE_MARGIN
    liquidation_haircut: float = DEFAULT_LIQUIDATION_HAIRCUT
    liquidation_target_multiplier: float = DEFAULT_LIQUIDATION_TARGET_MULTIPLIER
    compounding: str = 'annual'

    @property
    def liquidation_target_ltv(self) -> float:
        return self.maintenance_margin * self.liquidation_target_multiplier


@dataclass(frozen=True)
class WithdrawalChapter:
    """Spending reduction that activates `years_after_start` years into withdrawals."""
    years_after_start: int
    reduction: float


@dataclass(frozen=True)
class WithdrawalSchedule:
    annual_amount: float = DEFAULT_ANNUAL_WITHDRAWAL
    annual_raise: float = DEFAULT_WITHDRAWAL_RAISE
    start_year: int = 0
    monthly: bool = False
    chapters: Tuple[WithdrawalChapter, ...] = ()


@dataclass(frozen=True)
class TaxModeling:
    enabled: bool = True
    tax_advantaged: bool = False
    dividend_yield: float = DEFAULT_DIVIDEND_YIELD
    ordinary_rate: float = DEFAULT_ORDINARY_TAX_RATE
    ltcg_rate: float = DEFAULT_LTCG_TAX_RATE

    @property
    def active(self) -> bool:
        """Tax effects apply only to enabled, taxable accounts."""
        return self.enabled and not self.tax_advantaged

    @property
    def dividend_tax_rate(self) -> float:
        return self.ordinary_rate if self.active else 0.0

    @property
    def capital_gains_rate(self) -> float:
        return self.ltcg_rate if self.active else 0.0

    def dividend_tax(self, portfolio_value: float) -> float:
        if not self.active or self.dividend_yield <= 0 or portfolio_value <= 0:
            return 0.0
        return portfolio_value * self.dividend_yield * self.ordinary_rate


@dataclass(frozen=True)
class SimulationConfig:
    """Fully-resolved, immutable configuration for one Monte Carlo run."""
    iterations: int = NUM_SIMULATIONS
    time_horizon: int = TIME_HORIZON
    initial_value: float = INITIAL_VALUE
    initial_loan_balance: float = 0.0
    inflation_rate: float = DEFAULT_INFLATION_RATE
    inflation_adjusted: bool = False
    return_model: str = 'bootstrap'
    block_size: Optional[int] = None
    regime_calibration: str = 'historical'
    regime_params_source: str = 'multiplier'
    sbloc: SblocTerms = field(default_factory=SblocTerms)
    withdrawals: WithdrawalSchedule = field(default_factory=WithdrawalSchedule)
    tax: TaxModeling = field(default_factory=TaxModeling)
    cost_basis_ratio: float = DEFAULT_COST_BASIS_RATIO
    seed: Optional[int] = DEFAULT_SEED
    batch_size: int = BATCH_SIZE

    @property
    def initial_cost_basis(self) -> float:
        return self.initial_value * self.cost_basis_ratio


def get_simulation_config(**overrides) -> SimulationConfig:
    """Return the canonical default configuration with `overrides` applied."""
    return replace(SimulationConfig(), **overrides)


def print_banner(config: SimulationConfig, portfolio: Optional[Portfolio] = None):
    """Print the run header with the resolved configuration."""
    terms = config.sbloc
    schedule = config.withdrawals
    print(f"\n{'='*80}")
    print(f"BUY-BORROW-DIE MONTE CARLO: {config.iterations:,} iterations x {config.time_horizon}Y")
    print(f"{'='*80}")
    if portfolio is not None:
        holdings = ", ".join(f"{a.asset_id} {a.weight*100:.0f}%" for a in portfolio.assets)
        print(f"  Portfolio:        {holdings}")
        print(f"  History:          {portfolio.history_length} aligned periods")
    print(f"  Initial value:    ${config.initial_value:,.0f} (loan ${config.initial_loan_balance:,.0f})")
    print(f"  Return model:     {config.return_model}"
          + (f" ({config.regime_calibration}, {config.regime_params_source})"
             if config.return_model == 'regime' else ""))
    print(f"  SBLOC:            rate {terms.interest_rate*100:.2f}% ({terms.compounding}), "
          f"max LTV {terms.max_ltv*100:.0f}%, maintenance {terms.maintenance_margin*100:.0f}%, "
          f"haircut {terms.liquidation_haircut*100:.0f}%")
    print(f"  Withdrawals:      ${schedule.annual_amount:,.0f}/yr +{schedule.annual_raise*100:.1f}%/yr "
          f"from year {schedule.start_year} ({'monthly' if schedule.monthly else 'annual'})")
    for chapter in schedule.chapters:
        print(f"    Chapter: -{chapter.reduction*100:.0f}% after {chapter.years_after_start} years")
    if config.tax.active:
        print(f"  Taxes:            dividend yield {config.tax.dividend_yield*100:.1f}% @ "
              f"{config.tax.ordinary_rate*100:.1f}%, LTCG {config.tax.ltcg_rate*100:.1f}%")
    else:
        print(f"  Taxes:            disabled (tax-advantaged or modeling off)")
    print(f"  Seed:             {config.seed}")
    print(f"{'='*80}\n")
