"""
Buy-Borrow-Die leverage engine.

One simulated year, in order:
    1. apply the portfolio return (value floored at 0)
    2. borrow the dividend tax when tax modeling is active
    3. borrow the year's withdrawal
    4. accrue interest on the loan
    5. recompute LTV; at or above max_ltv a margin call forces liquidation

State is threaded functionally: every step returns a new frozen SBLOCState.
A failed state is absorbing. The lender seizes the collateral (portfolio 0,
loan = unpaid deficiency) and nothing further happens on that path.
"""

from dataclasses import dataclass, field, replace
import numpy as np
from typing import List, Optional, Tuple
from bbdsim.config import SblocTerms, SimulationConfig, TaxModeling
from bbdsim.sbloc.interest import accrue_interest
from bbdsim.sbloc.liquidation import LiquidationEvent, execute_forced_liquidation
from bbdsim.sbloc.ltv import calculate_ltv
from bbdsim.sbloc.margin_call import LoanStatus, classify_status, detect_margin_call
from bbdsim.withdrawals import withdrawal_schedule


@dataclass(frozen=True)
class SBLOCState:
    portfolio_value: float
    loan_balance: float
    cost_basis: float
    current_ltv: float
    status: LoanStatus = LoanStatus.NORMAL
    years_elapsed: int = 0
    failed: bool = False

    @property
    def net_worth(self) -> float:
        return self.portfolio_value - self.loan_balance


@dataclass(frozen=True)
class SBLOCYearResult:
    state: SBLOCState
    margin_call: bool
    liquidation_events: Tuple[LiquidationEvent, ...]
    interest: float
    withdrawal: float
    dividend_tax_borrowed: float
    failed: bool

    @property
    def liquidation_event(self) -> Optional[LiquidationEvent]:
        return self.liquidation_events[0] if self.liquidation_events else None

    @property
    def haircut_loss(self) -> float:
        return sum(e.haircut_loss for e in self.liquidation_events)

    @property
    def liquidation_tax(self) -> float:
        return sum(e.capital_gains_tax for e in self.liquidation_events)


def initialize_state(terms: SblocTerms, initial_value: float, initial_loan: float = 0.0,
                     cost_basis: Optional[float] = None) -> SBLOCState:
    """Starting state, validated before the first step."""
    from bbdsim.validation import validate_sbloc_state

    if cost_basis is None:
        cost_basis = initial_value
    ltv = calculate_ltv(initial_loan, initial_value)
    state = SBLOCState(
        portfolio_value=float(initial_value),
        loan_balance=float(initial_loan),
        cost_basis=float(cost_basis),
        current_ltv=ltv,
        status=classify_status(ltv, terms),
    )
    validate_sbloc_state(state)
    return state


def seize_collateral(state: SBLOCState) -> SBLOCState:
    """Failed path: the lender takes the collateral, the deficiency stays as debt."""
    deficiency = max(0.0, state.loan_balance - state.portfolio_value)
    return replace(
        state,
        portfolio_value=0.0,
        loan_balance=deficiency,
        cost_basis=0.0,
        current_ltv=calculate_ltv(deficiency, 0.0),
        status=LoanStatus.FAILED,
        failed=True,
    )


def resolve_margin(state: SBLOCState, terms: SblocTerms, year: int, ltcg_rate: float):
    """
    Margin-call check and forced liquidation on a post-accrual state.

    Returns:
        (new_state, margin_call_triggered, liquidation_event_or_None)
    """
    ltv = calculate_ltv(state.loan_balance, state.portfolio_value)
    state = replace(state, current_ltv=ltv, status=classify_status(ltv, terms))

    event = None
    margin_call = detect_margin_call(state, terms, year) is not None
    if margin_call:
        state, event, failed = execute_forced_liquidation(state, terms, year, ltcg_rate)
        if failed:
            state = seize_collateral(state)

    if not state.failed and state.net_worth <= 0:
        state = seize_collateral(state)
    return state, margin_call, event


def step_year(state: SBLOCState, terms: SblocTerms, portfolio_return: float,
              withdrawal: float, tax: TaxModeling, year: int) -> SBLOCYearResult:
    """
    Advance the borrow strategy by one year.

    Args:
        state: State at the start of the year
        terms: SBLOC terms
        portfolio_return: Portfolio-weighted return for the year
        withdrawal: Amount to borrow for spending this year
        tax: Tax modeling parameters
        year: Simulation year (0-indexed)

    Returns:
        SBLOCYearResult with the end-of-year state
    """
    if state.failed:
        return SBLOCYearResult(
            state=replace(state, years_elapsed=state.years_elapsed + 1),
            margin_call=False,
            liquidation_events=(),
            interest=0.0,
            withdrawal=0.0,
            dividend_tax_borrowed=0.0,
            failed=True,
        )

    portfolio = max(0.0, state.portfolio_value * (1 + portfolio_return))

    dividend_tax = tax.dividend_tax(portfolio)
    loan = state.loan_balance + dividend_tax + max(0.0, withdrawal)

    loan, interest = accrue_interest(loan, terms.interest_rate, terms.compounding)

    new_state = replace(
        state,
        portfolio_value=portfolio,
        loan_balance=loan,
        years_elapsed=state.years_elapsed + 1,
    )
    new_state, margin_call, event = resolve_margin(new_state, terms, year, tax.capital_gains_rate)

    return SBLOCYearResult(
        state=new_state,
        margin_call=margin_call,
        liquidation_events=(event,) if event is not None else (),
        interest=interest,
        withdrawal=max(0.0, withdrawal),
        dividend_tax_borrowed=dividend_tax,
        failed=new_state.failed,
    )


@dataclass
class BBDPathResult:
    """Year-by-year trajectory of one borrow-strategy iteration (index 0 = start)."""
    portfolio_values: np.ndarray
    loan_balances: np.ndarray
    net_worth: np.ndarray
    ltv: np.ndarray
    withdrawals: np.ndarray
    interest: np.ndarray
    margin_calls: np.ndarray
    statuses: List[LoanStatus]
    liquidations: List[LiquidationEvent] = field(default_factory=list)
    total_interest: float = 0.0
    total_haircut: float = 0.0
    total_liquidation_tax: float = 0.0
    total_dividend_tax_borrowed: float = 0.0
    margin_call_count: int = 0
    first_margin_call_year: int = -1
    failure_year: int = -1
    final_cost_basis: float = 0.0
    returns: Optional[np.ndarray] = None

    @property
    def terminal_net_worth(self) -> float:
        return float(self.net_worth[-1])

    @property
    def terminal_portfolio(self) -> float:
        return float(self.portfolio_values[-1])

    @property
    def terminal_loan(self) -> float:
        return float(self.loan_balances[-1])

    @property
    def failed(self) -> bool:
        return self.failure_year >= 0

    @property
    def had_margin_call(self) -> bool:
        return self.margin_call_count > 0


def simulate_sbloc_path(returns, config: SimulationConfig) -> BBDPathResult:
    """
    Run the borrow strategy over one sequence of yearly portfolio returns.

    Years are reported 1-indexed in first_margin_call_year / failure_year
    (-1 when the event never happens).
    """
    from bbdsim.sbloc.monthly import step_year_monthly

    returns = np.asarray(returns, dtype=float)
    horizon = len(returns)
    terms = config.sbloc
    monthly = config.withdrawals.monthly
    planned = withdrawal_schedule(config.withdrawals, horizon)

    state = initialize_state(terms, config.initial_value, config.initial_loan_balance,
                             config.initial_cost_basis)

    portfolio_values = np.zeros(horizon + 1)
    loan_balances = np.zeros(horizon + 1)
    ltv = np.zeros(horizon + 1)
    portfolio_values[0] = state.portfolio_value
    loan_balances[0] = state.loan_balance
    ltv[0] = state.current_ltv
    withdrawals = np.zeros(horizon)
    interest = np.zeros(horizon)
    margin_calls = np.zeros(horizon, dtype=bool)
    statuses = [state.status]
    liquidations = []

    totals = {'haircut': 0.0, 'cg_tax': 0.0, 'dividend_tax': 0.0}
    first_margin_call_year = -1
    failure_year = -1

    for year in range(horizon):
        if monthly:
            result = step_year_monthly(state, terms, returns[year], planned[year], config.tax, year)
        else:
            result = step_year(state, terms, returns[year], planned[year], config.tax, year)
        state = result.state

        portfolio_values[year + 1] = state.portfolio_value
        loan_balances[year + 1] = state.loan_balance
        ltv[year + 1] = state.current_ltv
        withdrawals[year] = result.withdrawal
        interest[year] = result.interest
        margin_calls[year] = result.margin_call
        statuses.append(state.status)
        liquidations.extend(result.liquidation_events)
        totals['haircut'] += result.haircut_loss
        totals['cg_tax'] += result.liquidation_tax
        totals['dividend_tax'] += result.dividend_tax_borrowed

        if result.margin_call and first_margin_call_year < 0:
            first_margin_call_year = year + 1
        if result.failed and failure_year < 0:
            failure_year = year + 1

    return BBDPathResult(
        portfolio_values=portfolio_values,
        loan_balances=loan_balances,
        net_worth=portfolio_values - loan_balances,
        ltv=ltv,
        withdrawals=withdrawals,
        interest=interest,
        margin_calls=margin_calls,
        statuses=statuses,
        liquidations=liquidations,
        total_interest=float(interest.sum()),
        total_haircut=totals['haircut'],
        total_liquidation_tax=totals['cg_tax'],
        total_dividend_tax_borrowed=totals['dividend_tax'],
        margin_call_count=int(margin_calls.sum()),
        first_margin_call_year=first_margin_call_year,
        failure_year=failure_year,
        final_cost_basis=state.cost_basis,
        returns=returns.copy(),
    )
