"""
Estate comparison at the end of the horizon.

Under Buy-Borrow-Die the heirs inherit the portfolio with a stepped-up cost
basis, so the embedded gain is never taxed; the loan is repaid from the
estate. The sell alternative pays capital-gains tax on that gain.
"""

from dataclasses import dataclass
import numpy as np
from typing import Dict


def calculate_embedded_capital_gains(current_value: float, cost_basis: float) -> float:
    return max(0.0, current_value - cost_basis)


def calculate_stepped_up_basis_savings(embedded_gains: float, capital_gains_rate: float) -> float:
    """Capital-gains tax heirs avoid thanks to the basis step-up at death."""
    return embedded_gains * capital_gains_rate


def calculate_tax_if_sold(portfolio_value: float, cost_basis: float, capital_gains_rate: float) -> float:
    return calculate_embedded_capital_gains(portfolio_value, cost_basis) * capital_gains_rate


@dataclass(frozen=True)
class EstateAnalysis:
    terminal_portfolio_value: float
    terminal_loan_balance: float
    net_estate: float
    embedded_capital_gains: float
    stepped_up_basis_savings: float


def calculate_estate_analysis(terminal_portfolio_value: float, terminal_loan_balance: float,
                              cost_basis: float, capital_gains_rate: float) -> EstateAnalysis:
    embedded = calculate_embedded_capital_gains(terminal_portfolio_value, cost_basis)
    return EstateAnalysis(
        terminal_portfolio_value=terminal_portfolio_value,
        terminal_loan_balance=terminal_loan_balance,
        net_estate=terminal_portfolio_value - terminal_loan_balance,
        embedded_capital_gains=embedded,
        stepped_up_basis_savings=calculate_stepped_up_basis_savings(embedded, capital_gains_rate),
    )


def calculate_bbd_comparison(terminal_portfolio_value: float, terminal_loan_balance: float,
                             cost_basis: float, capital_gains_rate: float) -> Dict[str, float]:
    """
    Same terminal portfolio, two exits: inherit with step-up (repay loan) vs sell (pay tax).
    """
    bbd_net = terminal_portfolio_value - terminal_loan_balance
    taxes = calculate_tax_if_sold(terminal_portfolio_value, cost_basis, capital_gains_rate)
    sell_net = terminal_portfolio_value - taxes
    return {
        'bbd_net_estate': bbd_net,
        'sell_net_estate': sell_net,
        'bbd_advantage': bbd_net - sell_net,
        'taxes_paid_if_sold': taxes,
    }


def calculate_integrated_estate(bbd_net_worth, sell_terminal_values) -> Dict[str, float]:
    """
    Median outcome of each simulated strategy.

    Both arguments hold one terminal value per iteration, simulated on the
    same return paths.
    """
    bbd = np.asarray(bbd_net_worth, dtype=float)
    sell = np.asarray(sell_terminal_values, dtype=float)
    bbd_median = float(np.median(bbd[np.isfinite(bbd)])) if np.isfinite(bbd).any() else float('nan')
    sell_median = float(np.median(sell[np.isfinite(sell)])) if np.isfinite(sell).any() else float('nan')
    return {
        'bbd_net_estate': bbd_median,
        'sell_net_estate': sell_median,
        'bbd_advantage': bbd_median - sell_median,
    }
