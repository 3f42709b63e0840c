from dataclasses import dataclass, field
import numpy as np
import pandas as pd
from typing import Dict, List, Sequence
from bbdsim import config as cfg
from bbdsim.config import Portfolio, SimulationConfig
from bbdsim.errors import AllIterationsNonFiniteError
from bbdsim.estate import (
    EstateAnalysis,
    calculate_bbd_comparison,
    calculate_estate_analysis,
    calculate_integrated_estate,
)
from bbdsim.metrics import (
    annualized_terminal_returns,
    calculate_annualized_volatility,
    calculate_cagr,
    calculate_performance_summary,
    calculate_return_probabilities,
    calculate_salary_equivalent,
    calculate_success_rate,
    calculate_twrr,
)
from bbdsim.utils import percentile_dict
from bbdsim.withdrawals import cumulative_withdrawals


@dataclass
class PercentilePaths:
    """One whole simulated path per percentile, picked by terminal-value rank."""
    simulation_indices: Dict[int, int]
    paths: Dict[int, np.ndarray]

    def terminal(self, p: int) -> float:
        return float(self.paths[p][-1])


def path_coherent_rank(p: float, n: int) -> int:
    """Rank (0-based, ascending) of the iteration that represents percentile p."""
    return min(int(np.floor(p / 100.0 * n)), n - 1)


def extract_path_coherent_percentiles(yearly, terminal,
                                      percentiles: Sequence[int] = cfg.PERCENTILES) -> PercentilePaths:
    """
    Rank iterations by terminal value and return each percentile's full path.

    Non-finite terminal values are dropped before ranking. Ties keep
    iteration order (stable sort).

    Args:
        yearly: Matrix (iterations x points) of path values
        terminal: Terminal value per iteration

    Returns:
        PercentilePaths keyed by percentile (row indices into `yearly`)

    Raises:
        AllIterationsNonFiniteError: no finite terminal value
    """
    yearly = np.asarray(yearly, dtype=float)
    terminal = np.asarray(terminal, dtype=float)
    finite_idx = np.flatnonzero(np.isfinite(terminal))
    if len(finite_idx) == 0:
        raise AllIterationsNonFiniteError(len(terminal))

    order = finite_idx[np.argsort(terminal[finite_idx], kind='stable')]
    n = len(order)
    indices = {}
    paths = {}
    for p in percentiles:
        row = int(order[path_coherent_rank(p, n)])
        indices[p] = row
        paths[p] = yearly[row].copy()
    return PercentilePaths(simulation_indices=indices, paths=paths)


def pointwise_percentiles(yearly, percentiles: Sequence[int] = cfg.PERCENTILES) -> Dict[int, np.ndarray]:
    """Independent per-year percentiles (used for loan-balance bands, not for net worth paths)."""
    yearly = np.asarray(yearly, dtype=float)
    out = {}
    for p in percentiles:
        out[p] = np.array([
            np.percentile(col[np.isfinite(col)], p) if np.isfinite(col).any() else np.nan
            for col in yearly.T
        ])
    return out


def compute_margin_call_stats(margin_call_matrix, first_years, horizon: int) -> List[Dict[str, float]]:
    """
    Per-year margin-call risk, in percent.

    Args:
        margin_call_matrix: Bool matrix (iterations x horizon), True where a call happened
        first_years: First margin-call year per iteration (1-indexed, -1 for none)
        horizon: Simulation years

    Returns:
        List of {'year', 'probability', 'cumulative_probability'}; the
        cumulative probability never decreases
    """
    calls = np.asarray(margin_call_matrix, dtype=bool)
    first_years = np.asarray(first_years, dtype=int)
    n = max(1, calls.shape[0])

    stats = []
    running = 0.0
    for year in range(1, horizon + 1):
        probability = calls[:, year - 1].sum() / n * 100 if calls.size else 0.0
        cumulative = ((first_years > 0) & (first_years <= year)).sum() / n * 100
        running = max(running, cumulative)
        stats.append({
            'year': year,
            'probability': float(probability),
            'cumulative_probability': float(running),
        })
    return stats


def _summary(values) -> Dict[str, float]:
    values = np.asarray(values, dtype=float)
    values = values[np.isfinite(values)]
    if len(values) == 0:
        return {'mean': 0.0, 'median': 0.0, 'p10': 0.0, 'p90': 0.0, 'max': 0.0}
    return {
        'mean': float(np.mean(values)),
        'median': float(np.median(values)),
        'p10': float(np.percentile(values, 10)),
        'p90': float(np.percentile(values, 90)),
        'max': float(np.max(values)),
    }


@dataclass
class SimulationOutput:
    """Read-only result of one Monte Carlo run."""
    seed: int
    seed_generated: bool
    iterations: int
    time_horizon: int
    initial_value: float
    inflation_adjusted: bool
    terminal_values: np.ndarray
    terminal_percentiles: Dict[int, float]
    net_worth_paths: PercentilePaths
    sell_paths: PercentilePaths
    statistics: Dict[str, float]
    margin_call_stats: List[Dict[str, float]]
    sbloc_trajectory: Dict
    estate_analysis: EstateAnalysis
    bbd_comparison: Dict[str, float]
    integrated_estate: Dict[str, float]
    sell_strategy: Dict
    diagnostics: Dict
    yearly_net_worth: np.ndarray = field(repr=False, default=None)
    yearly_sell_values: np.ndarray = field(repr=False, default=None)

    def yearly_frame(self) -> pd.DataFrame:
        """Year-by-year percentile table for both strategies."""
        years = np.arange(self.time_horizon + 1)
        data = {}
        for p in self.net_worth_paths.paths:
            data[f'bbd_p{p}'] = self.net_worth_paths.paths[p]
        for p in self.sell_paths.paths:
            data[f'sell_p{p}'] = self.sell_paths.paths[p]
        for p, band in self.sbloc_trajectory['loan_percentiles'].items():
            data[f'loan_p{p}'] = band
        data['cumulative_withdrawals'] = self.sbloc_trajectory['cumulative_withdrawals']
        return pd.DataFrame(data, index=pd.Index(years, name='year'))


def aggregate_results(results, portfolio: Portfolio, config: SimulationConfig,
                      generator=None, seed_generated: bool = False) -> SimulationOutput:
    """
    Reduce per-iteration results to a SimulationOutput.

    Results may arrive in any completion order; they are put back in
    iteration order first so ranking ties resolve identically every run.
    """
    results = sorted(results, key=lambda r: r.iteration)
    horizon = config.time_horizon
    initial = config.initial_value

    deflators = np.ones(horizon + 1)
    if config.inflation_adjusted:
        deflators = (1 + config.inflation_rate) ** np.arange(horizon + 1)

    nominal_net_worth = np.vstack([r.bbd.net_worth for r in results])
    net_worth = nominal_net_worth / deflators
    loans = np.vstack([r.bbd.loan_balances for r in results]) / deflators
    sell_values = np.vstack([r.sell.yearly_values for r in results]) / deflators
    terminal = net_worth[:, -1]
    sell_terminal = sell_values[:, -1]

    failed = np.array([r.bbd.failed for r in results])
    margin_called = np.array([r.bbd.had_margin_call for r in results])
    depleted = np.array([r.sell.depleted for r in results])
    non_finite = int((~np.isfinite(terminal)).sum())

    bbd_paths = extract_path_coherent_percentiles(net_worth, terminal)
    sell_paths = extract_path_coherent_percentiles(sell_values, sell_terminal)

    finite_terminal = terminal[np.isfinite(terminal)]
    terminal_percentiles = percentile_dict(finite_terminal, cfg.PERCENTILES)
    median_terminal = terminal_percentiles[50]

    statistics = {
        'mean': float(np.mean(finite_terminal)),
        'median': median_terminal,
        'stddev': float(np.std(finite_terminal, ddof=1)) if len(finite_terminal) > 1 else 0.0,
        'success_rate': calculate_success_rate(terminal, initial, failed),
        'margin_call_rate': float(margin_called.mean()),
        'failure_rate': float(failed.mean()),
        'depletion_rate': float(depleted.mean()),
        'cagr': calculate_cagr(initial, median_terminal, horizon),
        'annualized_volatility': calculate_annualized_volatility(
            annualized_terminal_returns(finite_terminal, initial, horizon)
        ),
        'twrr': calculate_twrr(bbd_paths.paths[50])['twrr'],
        'return_probabilities': calculate_return_probabilities(net_worth, initial),
        'performance_summary': calculate_performance_summary(
            nominal_net_worth[:, -1], initial, horizon, config.inflation_rate
        ),
        'salary_equivalent': calculate_salary_equivalent(
            config.withdrawals.annual_amount, config.tax.ordinary_rate
        ),
    }

    margin_matrix = np.vstack([r.bbd.margin_calls for r in results])
    first_calls = np.array([r.bbd.first_margin_call_year for r in results])
    margin_stats = compute_margin_call_stats(margin_matrix, first_calls, horizon)

    cumulative_interest = np.vstack([np.concatenate([[0.0], np.cumsum(r.bbd.interest)]) for r in results])
    sbloc_trajectory = {
        'loan_percentiles': pointwise_percentiles(loans),
        'cumulative_withdrawals': np.concatenate(
            [[0.0], cumulative_withdrawals(config.withdrawals, horizon)]
        ),
        'median_cumulative_interest': np.median(cumulative_interest, axis=0),
    }

    # Estate figures follow the median (P50) borrow-strategy iteration
    median_result = results[bbd_paths.simulation_indices[50]]
    cg_rate = config.tax.ltcg_rate
    estate = calculate_estate_analysis(
        median_result.bbd.terminal_portfolio,
        median_result.bbd.terminal_loan,
        median_result.bbd.final_cost_basis,
        cg_rate,
    )
    comparison = calculate_bbd_comparison(
        median_result.bbd.terminal_portfolio,
        median_result.bbd.terminal_loan,
        median_result.bbd.final_cost_basis,
        cg_rate,
    )
    integrated = calculate_integrated_estate(terminal, sell_terminal)

    sell_cg = np.array([r.sell.total_capital_gains_tax for r in results])
    sell_div = np.array([r.sell.total_dividend_tax for r in results])
    sell_summary = {
        'terminal_percentiles': percentile_dict(sell_terminal, cfg.PERCENTILES),
        'success_rate': calculate_success_rate(sell_terminal, initial, depleted),
        'depletion_rate': float(depleted.mean()),
        'median_capital_gains_tax': float(np.median(sell_cg)),
        'median_dividend_tax': float(np.median(sell_div)),
        'median_total_tax': float(np.median(sell_cg + sell_div)),
        'median_cumulative_taxes': np.median(
            np.vstack([r.sell.cumulative_taxes for r in results]), axis=0
        ),
    }

    margin_counts = np.array([r.bbd.margin_call_count for r in results])
    failure_years = np.array([r.bbd.failure_year for r in results])
    diagnostics = {
        'margin_call_count_distribution': {
            int(k): int(v) for k, v in zip(*np.unique(margin_counts, return_counts=True))
        },
        'haircut_losses': _summary([r.bbd.total_haircut for r in results]),
        'liquidation_taxes': _summary([r.bbd.total_liquidation_tax for r in results]),
        'interest_paid': _summary([r.bbd.total_interest for r in results]),
        'dividend_tax_borrowed': _summary([r.bbd.total_dividend_tax_borrowed for r in results]),
        'failure_analysis': {
            'count': int(failed.sum()),
            'mean_failure_year': float(failure_years[failed].mean()) if failed.any() else None,
            'earliest_failure_year': int(failure_years[failed].min()) if failed.any() else None,
        },
        'generator': generator.describe() if generator is not None else None,
        'non_finite_count': non_finite,
        'assets': [a.asset_id for a in portfolio.assets],
    }

    return SimulationOutput(
        seed=config.seed,
        seed_generated=seed_generated,
        iterations=len(results),
        time_horizon=horizon,
        initial_value=initial,
        inflation_adjusted=config.inflation_adjusted,
        terminal_values=terminal,
        terminal_percentiles=terminal_percentiles,
        net_worth_paths=bbd_paths,
        sell_paths=sell_paths,
        statistics=statistics,
        margin_call_stats=margin_stats,
        sbloc_trajectory=sbloc_trajectory,
        estate_analysis=estate,
        bbd_comparison=comparison,
        integrated_estate=integrated,
        sell_strategy=sell_summary,
        diagnostics=diagnostics,
        yearly_net_worth=net_worth,
        yearly_sell_values=sell_values,
    )
