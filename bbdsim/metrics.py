import numpy as np
from typing import Dict, Optional, Sequence
from bbdsim import config as cfg

DEFAULT_RETURN_THRESHOLDS = (0.0, 0.025, 0.05, 0.075, 0.10, 0.125)
DEFAULT_RETURN_HORIZONS = (1, 3, 5, 10, 15)


def calculate_cagr(start_value: float, end_value: float, years: float) -> float:
    """
    Compound annual growth rate over `years` periods.

    `years` is the simulation horizon: a 10-year run has 10 compounding
    periods even though its path holds 11 points (year 0 through year 10).

    Returns:
        NaN when years <= 0 or start_value <= 0; -1.0 when end_value <= 0
    """
    if years <= 0 or start_value <= 0:
        return float('nan')
    if end_value <= 0:
        return -1.0
    return (end_value / start_value) ** (1.0 / years) - 1


def annualized_terminal_returns(terminal_values, initial_value: float, horizon: int) -> np.ndarray:
    """Per-iteration annualized return implied by each terminal value (-1 for total loss)."""
    terminal = np.asarray(terminal_values, dtype=float)
    out = np.full(terminal.shape, -1.0)
    if initial_value <= 0 or horizon <= 0:
        return np.full(terminal.shape, np.nan)
    positive = terminal > 0
    out[positive] = (terminal[positive] / initial_value) ** (1.0 / horizon) - 1
    return out


def calculate_annualized_volatility(returns) -> float:
    """Sample standard deviation of annualized returns (0.0 for fewer than 2 values)."""
    returns = np.asarray(returns, dtype=float)
    returns = returns[np.isfinite(returns)]
    if len(returns) < 2:
        return 0.0
    return float(np.std(returns, ddof=1))


def calculate_period_return(start_value: float, end_value: float) -> float:
    if start_value <= 0:
        return float('nan')
    return (end_value - start_value) / start_value


def chain_returns(period_returns: Sequence[float]) -> float:
    """Geometric linking: prod(1 + r) - 1."""
    if len(period_returns) == 0:
        return 0.0
    return float(np.prod(1 + np.asarray(period_returns, dtype=float)) - 1)


def annualize_return(total_return: float, periods: int) -> float:
    if periods <= 0:
        return float('nan')
    if total_return <= -1:
        return -1.0
    return (1 + total_return) ** (1.0 / periods) - 1


def calculate_twrr(path) -> Dict:
    """
    Time-weighted rate of return of one value path (year 0 first).

    Period returns are linked geometrically; linking stops at the first
    period that starts from a non-positive value.
    """
    path = np.asarray(path, dtype=float)
    period_returns = []
    for i in range(1, len(path)):
        r = calculate_period_return(path[i - 1], path[i])
        if not np.isfinite(r):
            break
        period_returns.append(r)

    if not period_returns:
        return {'twrr': 0.0, 'period_returns': [], 'cumulative_return': 0.0}

    cumulative = chain_returns(period_returns)
    twrr = annualize_return(cumulative, len(period_returns))
    return {
        'twrr': 0.0 if not np.isfinite(twrr) else twrr,
        'period_returns': period_returns,
        'cumulative_return': cumulative,
    }


def calculate_success_rate(terminal_values, initial_value: float, failed=None) -> float:
    """
    Fraction (0-1) of iterations ending strictly above the initial value.

    Iterations flagged in `failed` never count as successes. Both strategies
    use this same definition.
    """
    terminal = np.asarray(terminal_values, dtype=float)
    if len(terminal) == 0:
        return 0.0
    success = np.isfinite(terminal) & (terminal > initial_value)
    if failed is not None:
        success &= ~np.asarray(failed, dtype=bool)
    return float(success.mean())


def calculate_return_probabilities(yearly_values, initial_value: float,
                                   thresholds: Sequence[float] = DEFAULT_RETURN_THRESHOLDS,
                                   horizons: Sequence[int] = DEFAULT_RETURN_HORIZONS) -> Dict:
    """
    Probability (percent) that the annualized return through year h meets each threshold.

    Args:
        yearly_values: Matrix (iterations x horizon+1) of values, year 0 first
        initial_value: Starting value
        thresholds: Annualized return thresholds
        horizons: Years to evaluate; horizons beyond the run are dropped

    Returns:
        Dict with 'thresholds', 'horizons' and 'probabilities'
        (len(thresholds) x len(valid horizons))
    """
    yearly = np.atleast_2d(np.asarray(yearly_values, dtype=float))
    max_horizon = yearly.shape[1] - 1
    valid = [h for h in horizons if 0 < h <= max_horizon]
    probabilities = np.zeros((len(thresholds), len(valid)))

    if yearly.shape[0] > 0 and initial_value > 0:
        for j, h in enumerate(valid):
            implied = annualized_terminal_returns(yearly[:, h], initial_value, h)
            finite = np.isfinite(implied)
            n = max(1, finite.sum())
            for i, threshold in enumerate(thresholds):
                probabilities[i, j] = (implied[finite] >= threshold).sum() / n * 100

    return {'thresholds': list(thresholds), 'horizons': valid, 'probabilities': probabilities}


def calculate_salary_equivalent(annual_withdrawal: float, effective_tax_rate: float) -> Dict[str, float]:
    """
    Pre-tax salary that nets the same spending as a tax-free loan draw.

    salary = withdrawal / (1 - tax_rate); infinite at a 100% rate.
    """
    if annual_withdrawal <= 0:
        return {'annual_withdrawal': 0.0, 'salary_equivalent': 0.0,
                'effective_tax_rate': effective_tax_rate, 'tax_savings': 0.0}
    if effective_tax_rate <= 0:
        return {'annual_withdrawal': annual_withdrawal, 'salary_equivalent': annual_withdrawal,
                'effective_tax_rate': 0.0, 'tax_savings': 0.0}
    if effective_tax_rate >= 1:
        return {'annual_withdrawal': annual_withdrawal, 'salary_equivalent': float('inf'),
                'effective_tax_rate': effective_tax_rate, 'tax_savings': float('inf')}

    salary = annual_withdrawal / (1 - effective_tax_rate)
    return {
        'annual_withdrawal': annual_withdrawal,
        'salary_equivalent': salary,
        'effective_tax_rate': effective_tax_rate,
        'tax_savings': salary - annual_withdrawal,
    }


def _bands(values) -> Dict[int, float]:
    values = np.asarray(values, dtype=float)
    values = values[np.isfinite(values)]
    if len(values) == 0:
        return {p: 0.0 for p in cfg.PERCENTILES}
    return {p: float(np.percentile(values, p)) for p in cfg.PERCENTILES}


def calculate_performance_summary(terminal_values, initial_value: float, horizon: int,
                                  inflation_rate: Optional[float] = None) -> Dict[str, Dict[int, float]]:
    """
    Percentile bands of nominal/real annualized return and ending balance.

    Returns:
        Dict of row name -> {percentile: value}
    """
    if inflation_rate is None:
        inflation_rate = cfg.DEFAULT_INFLATION_RATE
    terminal = np.asarray(terminal_values, dtype=float)
    deflator = (1 + inflation_rate) ** horizon

    nominal = annualized_terminal_returns(terminal, initial_value, horizon)
    real = annualized_terminal_returns(terminal / deflator, initial_value, horizon)
    simple_mean = np.where(terminal > 0, (terminal - initial_value) / initial_value / max(horizon, 1), -1.0)

    return {
        'twrr_nominal': _bands(nominal),
        'twrr_real': _bands(real),
        'portfolio_nominal': _bands(terminal),
        'portfolio_real': _bands(terminal / deflator),
        'mean_return': _bands(simple_mean),
    }
