"""Loan-to-value math for the securities-backed line of credit."""

from dataclasses import dataclass
import numpy as np
from bbdsim import config as cfg


def calculate_ltv(loan_balance: float, collateral_value: float) -> float:
    """
    Loan-to-value ratio.

    Returns 0.0 with no loan and inf when a positive loan has no collateral
    behind it.
    """
    if loan_balance <= 0:
        return 0.0
    if collateral_value <= 0:
        return float('inf')
    return loan_balance / collateral_value


def calculate_max_borrowing(collateral_value: float, max_ltv: float) -> float:
    return max(0.0, collateral_value * max_ltv)


def available_credit(state, terms) -> float:
    """Undrawn credit before the hard LTV limit is reached."""
    return max(0.0, calculate_max_borrowing(state.portfolio_value, terms.max_ltv) - state.loan_balance)


def is_within_borrowing_limit(loan_balance: float, collateral_value: float, max_ltv: float) -> bool:
    return calculate_ltv(loan_balance, collateral_value) < max_ltv


def effective_max_ltv(portfolio, default_class: str = 'equity_index') -> float:
    """
    Weighted lending limit across the portfolio's collateral types.

    Equities lend at 65%, bonds at 85%; an unknown asset class is treated
    as equity.
    """
    weights = portfolio.weights
    total = weights.sum()
    if total <= 0:
        return cfg.ASSET_CLASS_LTV_LIMITS['equities']
    limits = []
    for asset_class in portfolio.asset_classes(default_class):
        collateral = cfg.ASSET_CLASS_COLLATERAL.get(asset_class, 'equities')
        limits.append(cfg.ASSET_CLASS_LTV_LIMITS[collateral])
    return float(np.dot(weights, limits) / total)


@dataclass(frozen=True)
class MarginBuffer:
    """Distance from the current state to the warning and margin-call thresholds."""
    current_ltv: float
    dollars_until_warning: float
    dollars_until_margin_call: float
    percent_until_margin_call: float
    drop_to_margin_call: float


def calculate_drop_to_margin_call(state, terms) -> float:
    """Fractional portfolio decline that would push LTV to the hard limit."""
    if state.loan_balance <= 0:
        return 1.0
    if state.portfolio_value <= 0:
        return 0.0
    return max(0.0, 1.0 - state.loan_balance / (terms.max_ltv * state.portfolio_value))


def calculate_margin_buffer(state, terms) -> MarginBuffer:
    ltv = calculate_ltv(state.loan_balance, state.portfolio_value)
    if state.loan_balance <= 0:
        return MarginBuffer(
            current_ltv=0.0,
            dollars_until_warning=state.portfolio_value,
            dollars_until_margin_call=state.portfolio_value,
            percent_until_margin_call=1.0,
            drop_to_margin_call=1.0,
        )

    if np.isfinite(ltv):
        percent = max(0.0, 1.0 - ltv / terms.max_ltv)
    else:
        percent = 0.0

    return MarginBuffer(
        current_ltv=ltv,
        dollars_until_warning=max(0.0, state.portfolio_value - state.loan_balance / terms.maintenance_margin),
        dollars_until_margin_call=max(0.0, state.portfolio_value - state.loan_balance / terms.max_ltv),
        percent_until_margin_call=percent,
        drop_to_margin_call=calculate_drop_to_margin_call(state, terms),
    )
