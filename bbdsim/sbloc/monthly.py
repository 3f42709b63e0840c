"""
Monthly sub-stepping for the borrow engine.

The annual return is spread evenly over twelve months, one twelfth of the
withdrawal and dividend tax is borrowed each month, and a month of interest
at rate/12 accrues on the running balance. Margin calls can therefore fire
at any of the twelve monthly checkpoints.
"""

from dataclasses import replace
from bbdsim.config import SblocTerms, TaxModeling
from bbdsim.sbloc.engine import SBLOCState, SBLOCYearResult, resolve_margin
from bbdsim.sbloc.interest import monthly_interest

MONTHS_PER_YEAR = 12


def annual_to_monthly_return(annual_return: float) -> float:
    """Monthly return that compounds to `annual_return` over twelve months."""
    if annual_return <= -1:
        return -1.0
    return (1 + annual_return) ** (1 / MONTHS_PER_YEAR) - 1


def step_month(state: SBLOCState, terms: SblocTerms, monthly_return: float,
               monthly_withdrawal: float, tax: TaxModeling, year: int):
    """
    One month of the borrow strategy.

    Returns:
        (new_state, margin_call, liquidation_event, interest, dividend_tax)
    """
    portfolio = max(0.0, state.portfolio_value * (1 + monthly_return))
    dividend_tax = tax.dividend_tax(portfolio) / MONTHS_PER_YEAR
    loan = state.loan_balance + dividend_tax + max(0.0, monthly_withdrawal)

    interest = monthly_interest(loan, terms.interest_rate)
    loan += interest

    new_state = replace(state, portfolio_value=portfolio, loan_balance=loan)
    new_state, margin_call, event = resolve_margin(new_state, terms, year, tax.capital_gains_rate)
    return new_state, margin_call, event, interest, dividend_tax


def step_year_monthly(state: SBLOCState, terms: SblocTerms, annual_return: float,
                      withdrawal: float, tax: TaxModeling, year: int) -> SBLOCYearResult:
    """Twelve monthly sub-steps aggregated into one year result; stops early on failure."""
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

    monthly_return = annual_to_monthly_return(annual_return)
    monthly_withdrawal = max(0.0, withdrawal) / MONTHS_PER_YEAR

    total_interest = 0.0
    total_withdrawal = 0.0
    total_dividend_tax = 0.0
    margin_call = False
    events = []

    for _ in range(MONTHS_PER_YEAR):
        state, called, event, interest, dividend_tax = step_month(
            state, terms, monthly_return, monthly_withdrawal, tax, year
        )
        total_interest += interest
        total_withdrawal += monthly_withdrawal
        total_dividend_tax += dividend_tax
        margin_call = margin_call or called
        if event is not None:
            events.append(event)
        if state.failed:
            break

    return SBLOCYearResult(
        state=replace(state, years_elapsed=state.years_elapsed + 1),
        margin_call=margin_call,
        liquidation_events=tuple(events),
        interest=total_interest,
        withdrawal=total_withdrawal,
        dividend_tax_borrowed=total_dividend_tax,
        failed=state.failed,
    )
