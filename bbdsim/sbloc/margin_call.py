"""Loan status classification and margin-call detection."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional
from bbdsim.sbloc.ltv import calculate_ltv


class LoanStatus(Enum):
    NORMAL = 'normal'
    WARNING = 'warning'
    MARGIN_CALL = 'margin_call'
    FORCED_LIQUIDATION = 'forced_liquidation'
    FAILED = 'failed'


def classify_status(ltv: float, terms) -> LoanStatus:
    """WARNING once LTV reaches the maintenance margin, MARGIN_CALL at the hard limit."""
    if ltv >= terms.max_ltv:
        return LoanStatus.MARGIN_CALL
    if ltv >= terms.maintenance_margin:
        return LoanStatus.WARNING
    return LoanStatus.NORMAL


def is_in_warning_zone(ltv: float, terms) -> bool:
    return terms.maintenance_margin <= ltv < terms.max_ltv


@dataclass(frozen=True)
class MarginCallEvent:
    year: int
    portfolio_value: float
    loan_balance: float
    ltv: float
    max_ltv: float
    # Loan reduction required to get back under the hard limit
    shortfall: float


def detect_margin_call(state, terms, year: int) -> Optional[MarginCallEvent]:
    """Margin-call event when the state's LTV is at or above max_ltv, else None."""
    ltv = calculate_ltv(state.loan_balance, state.portfolio_value)
    if ltv < terms.max_ltv:
        return None
    shortfall = max(0.0, state.loan_balance - state.portfolio_value * terms.max_ltv)
    return MarginCallEvent(
        year=year,
        portfolio_value=state.portfolio_value,
        loan_balance=state.loan_balance,
        ltv=ltv,
        max_ltv=terms.max_ltv,
        shortfall=shortfall,
    )
