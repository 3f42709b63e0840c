"""Loan interest accrual."""

import numpy as np
from typing import Tuple


def effective_annual_rate(rate: float, compounding: str = 'annual') -> float:
    """
    Effective annual rate for a nominal rate.

    Monthly compounding charges rate/12 each month, so 7% nominal becomes
    (1 + 0.07/12)**12 - 1 = 7.229% effective.
    """
    if compounding == 'monthly':
        return (1 + rate / 12) ** 12 - 1
    if compounding == 'annual':
        return rate
    raise ValueError(f"Unknown compounding frequency: {compounding}")


def monthly_interest(balance: float, rate: float) -> float:
    """One month of interest at rate/12."""
    if balance <= 0:
        return 0.0
    return balance * rate / 12


def accrue_interest(balance: float, rate: float, compounding: str = 'annual') -> Tuple[float, float]:
    """
    One year of interest on a loan balance.

    Returns:
        (new_balance, interest_charged)
    """
    if balance <= 0:
        return balance, 0.0
    interest = balance * effective_annual_rate(rate, compounding)
    return balance + interest, interest


def project_loan_balance(initial_balance: float, annual_withdrawal: float, rate: float,
                         years: int, compounding: str = 'annual') -> np.ndarray:
    """
    Deterministic loan balance at the end of each year.

    Each year the withdrawal is drawn first, then a year of interest accrues
    on the whole balance.
    """
    balances = np.zeros(years)
    balance = initial_balance
    for year in range(years):
        balance += annual_withdrawal
        balance, _ = accrue_interest(balance, rate, compounding)
        balances[year] = balance
    return balances
