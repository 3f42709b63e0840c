"""
Sell-assets strategy run on the same return sequence as the borrow engine.

Per year, in order:
    1. sell to pay the dividend tax (tax modeling active only)
    2. sell the withdrawal grossed up for capital-gains tax; if that exceeds
       the portfolio the path is depleted from this year on
    3. shrink cost basis by the fraction sold (basis never grows)
    4. apply the year's return to what is left
"""

from dataclasses import dataclass
import numpy as np
from typing import Optional
from bbdsim.config import SimulationConfig
from bbdsim.withdrawals import withdrawal_schedule


@dataclass
class SellPathResult:
    """Trajectory of one sell-strategy iteration (yearly_values[0] = start)."""
    yearly_values: np.ndarray
    capital_gains_taxes: np.ndarray
    dividend_taxes: np.ndarray
    withdrawals: np.ndarray
    depleted: bool = False
    depletion_year: int = -1
    final_cost_basis: float = 0.0
    returns: Optional[np.ndarray] = None

    @property
    def terminal_value(self) -> float:
        return float(self.yearly_values[-1])

    @property
    def yearly_taxes(self) -> np.ndarray:
        return self.capital_gains_taxes + self.dividend_taxes

    @property
    def total_capital_gains_tax(self) -> float:
        return float(self.capital_gains_taxes.sum())

    @property
    def total_dividend_tax(self) -> float:
        return float(self.dividend_taxes.sum())

    @property
    def total_taxes(self) -> float:
        return self.total_capital_gains_tax + self.total_dividend_tax

    @property
    def cumulative_taxes(self) -> np.ndarray:
        return np.cumsum(self.yearly_taxes)


def gross_up_withdrawal(withdrawal: float, basis_per_dollar: float, ltcg_rate: float) -> float:
    """
    Gross sale needed to net `withdrawal` after capital-gains tax.

    Each dollar sold carries (1 - basis_per_dollar) of gain taxed at ltcg_rate:
        sale = withdrawal / (1 - (1 - basis_per_dollar) * ltcg_rate)
    """
    if withdrawal <= 0:
        return 0.0
    gain_share = min(1.0, max(0.0, 1.0 - basis_per_dollar))
    net_per_dollar = 1.0 - gain_share * ltcg_rate
    if net_per_dollar <= 0:
        return float('inf')
    return withdrawal / net_per_dollar


def simulate_sell_path(returns, config: SimulationConfig) -> SellPathResult:
    """
    Run the sell strategy over one sequence of yearly portfolio returns.

    Withdrawals come from the same schedule the borrow engine uses, so both
    strategies fund identical spending under identical markets.
    """
    returns = np.asarray(returns, dtype=float)
    horizon = len(returns)
    tax = config.tax
    ltcg_rate = tax.capital_gains_rate
    planned = withdrawal_schedule(config.withdrawals, horizon)

    values = np.zeros(horizon + 1)
    cg_taxes = np.zeros(horizon)
    dividend_taxes = np.zeros(horizon)
    withdrawals = np.zeros(horizon)

    portfolio = float(config.initial_value)
    basis = float(config.initial_cost_basis)
    values[0] = portfolio
    depletion_year = -1

    for year in range(horizon):
        if depletion_year >= 0:
            continue
        if portfolio <= 0:
            depletion_year = year + 1
            continue

        # 1. Dividend tax paid by selling
        dividend_tax = min(tax.dividend_tax(portfolio), portfolio)
        if dividend_tax > 0:
            basis *= 1 - dividend_tax / portfolio
            portfolio -= dividend_tax
            dividend_taxes[year] = dividend_tax

        # 2. Grossed-up withdrawal
        withdrawal = planned[year]
        if withdrawal > 0:
            basis_per_dollar = basis / portfolio if portfolio > 0 else 1.0
            sale = gross_up_withdrawal(withdrawal, basis_per_dollar, ltcg_rate)
            if sale > portfolio:
                # Sell what is left; spending can no longer be funded
                gain = max(0.0, portfolio - basis)
                cg_taxes[year] = gain * ltcg_rate
                withdrawals[year] = max(0.0, portfolio - cg_taxes[year])
                portfolio = 0.0
                basis = 0.0
                depletion_year = year + 1
                continue

            # 3. Basis shrinks with the fraction sold
            sold_fraction = sale / portfolio
            cg_taxes[year] = sale - withdrawal
            basis *= 1 - sold_fraction
            portfolio -= sale
            withdrawals[year] = withdrawal

        # 4. Market return on the remainder
        portfolio = max(0.0, portfolio * (1 + returns[year]))
        values[year + 1] = portfolio

    return SellPathResult(
        yearly_values=values,
        capital_gains_taxes=cg_taxes,
        dividend_taxes=dividend_taxes,
        withdrawals=withdrawals,
        depleted=depletion_year >= 0,
        depletion_year=depletion_year,
        final_cost_basis=basis,
        returns=returns.copy(),
    )
