"""
Forced liquidation after a margin call.

Order of deductions on a forced sale of gross value S (portfolio P, cost
basis B, haircut h, long-term capital gains rate t):

    proceeds       = S * (1 - h)              haircut first
    gain fraction  g = max(0, 1 - B / P)
    cg tax         = S * (1 - h) * g * t      tax on the post-haircut proceeds
    loan repaid    = S * (1 - h) * (1 - g * t)

Cost basis shrinks by the sold fraction S / P.
"""

from dataclasses import dataclass, replace
from typing import Tuple
from bbdsim.sbloc.ltv import calculate_ltv
from bbdsim.sbloc.margin_call import LoanStatus, classify_status


@dataclass(frozen=True)
class LiquidationEvent:
    year: int
    assets_sold: float
    haircut_loss: float
    capital_gains_tax: float
    loan_repaid: float
    new_loan_balance: float
    new_portfolio_value: float


def gain_fraction(portfolio_value: float, cost_basis: float) -> float:
    """Share of each dollar of portfolio value that is embedded gain."""
    if portfolio_value <= 0:
        return 0.0
    return max(0.0, 1.0 - cost_basis / portfolio_value)


def calculate_liquidation_amount(state, terms, ltcg_rate: float = 0.0) -> Tuple[float, float]:
    """
    Gross assets to sell to repay the loan excess over P * target LTV.

    Target LTV = maintenance_margin * liquidation_target_multiplier. The loan
    excess over P * target is grossed up for both the haircut and the
    capital-gains tax, then capped at the whole portfolio. The excess is
    measured against the pre-sale portfolio, so the post-sale LTV sits
    above the target.

    Returns:
        (assets_to_sell, target_ltv)
    """
    target_ltv = terms.liquidation_target_ltv
    excess = state.loan_balance - state.portfolio_value * target_ltv
    if excess <= 0 or state.portfolio_value <= 0:
        return 0.0, target_ltv

    g = gain_fraction(state.portfolio_value, state.cost_basis)
    net_per_dollar = (1 - terms.liquidation_haircut) * (1 - g * ltcg_rate)
    if net_per_dollar <= 0:
        return state.portfolio_value, target_ltv

    assets_to_sell = min(excess / net_per_dollar, state.portfolio_value)
    return assets_to_sell, target_ltv


def execute_forced_liquidation(state, terms, year: int, ltcg_rate: float = 0.0):
    """
    Sell collateral to pay down the loan.

    Args:
        state: SBLOCState at the margin call
        terms: SblocTerms
        year: Simulation year (0-indexed) for the event record
        ltcg_rate: Capital-gains rate on the embedded gain (0 when tax is off)

    Returns:
        (new_state, event, failed) where failed means net worth <= 0 afterwards
    """
    assets_to_sell, _ = calculate_liquidation_amount(state, terms, ltcg_rate)

    if assets_to_sell <= 0:
        event = LiquidationEvent(
            year=year,
            assets_sold=0.0,
            haircut_loss=0.0,
            capital_gains_tax=0.0,
            loan_repaid=0.0,
            new_loan_balance=state.loan_balance,
            new_portfolio_value=state.portfolio_value,
        )
        return state, event, state.portfolio_value - state.loan_balance <= 0

    g = gain_fraction(state.portfolio_value, state.cost_basis)
    proceeds = assets_to_sell * (1 - terms.liquidation_haircut)
    haircut_loss = assets_to_sell - proceeds
    cg_tax = proceeds * g * ltcg_rate
    loan_repaid = min(proceeds - cg_tax, state.loan_balance)

    sold_fraction = assets_to_sell / state.portfolio_value
    new_portfolio = max(0.0, state.portfolio_value - assets_to_sell)
    new_loan = max(0.0, state.loan_balance - loan_repaid)
    new_basis = max(0.0, state.cost_basis * (1 - sold_fraction))

    new_ltv = calculate_ltv(new_loan, new_portfolio)
    failed = new_portfolio - new_loan <= 0
    status = LoanStatus.FAILED if failed else classify_status(new_ltv, terms)
    if status == LoanStatus.MARGIN_CALL:
        # Still above the hard limit after selling, but solvent
        status = LoanStatus.FORCED_LIQUIDATION

    new_state = replace(
        state,
        portfolio_value=new_portfolio,
        loan_balance=new_loan,
        cost_basis=new_basis,
        current_ltv=new_ltv,
        status=status,
        failed=failed,
    )
    event = LiquidationEvent(
        year=year,
        assets_sold=assets_to_sell,
        haircut_loss=haircut_loss,
        capital_gains_tax=cg_tax,
        loan_repaid=loan_repaid,
        new_loan_balance=new_loan,
        new_portfolio_value=new_portfolio,
    )
    return new_state, event, failed


def can_recover_from_margin_call(state, terms) -> bool:
    """False when selling everything at the haircut still cannot cover the loan."""
    return state.portfolio_value * (1 - terms.liquidation_haircut) >= state.loan_balance
