import pytest

from bbdsim.config import SblocTerms
from bbdsim.sbloc.engine import SBLOCState
from bbdsim.sbloc.liquidation import (
    calculate_liquidation_amount,
    can_recover_from_margin_call,
    execute_forced_liquidation,
    gain_fraction,
)
from bbdsim.sbloc.ltv import (
    available_credit,
    calculate_drop_to_margin_call,
    calculate_ltv,
    calculate_margin_buffer,
    effective_max_ltv,
)
from bbdsim.sbloc.margin_call import (
    LoanStatus,
    classify_status,
    detect_margin_call,
    is_in_warning_zone,
)

TERMS = SblocTerms()


def state(portfolio, loan, basis=None):
    basis = portfolio if basis is None else basis
    return SBLOCState(portfolio, loan, basis, calculate_ltv(loan, portfolio))


@pytest.mark.parametrize(
    "loan, collateral, expected",
    [
        (0.0, 1_000_000, 0.0),
        (500_000, 1_000_000, 0.5),
        (100.0, 0.0, float('inf')),
        (0.0, 0.0, 0.0),
    ],
)
def test_calculate_ltv(loan, collateral, expected):
    assert calculate_ltv(loan, collateral) == expected


@pytest.mark.parametrize(
    "ltv, expected",
    [
        (0.10, LoanStatus.NORMAL),
        (0.50, LoanStatus.WARNING),
        (0.64, LoanStatus.WARNING),
        (0.65, LoanStatus.MARGIN_CALL),
        (float('inf'), LoanStatus.MARGIN_CALL),
    ],
)
def test_classify_status(ltv, expected):
    assert classify_status(ltv, TERMS) == expected


def test_warning_zone():
    assert is_in_warning_zone(0.55, TERMS)
    assert not is_in_warning_zone(0.65, TERMS)


def test_detect_margin_call():
    assert detect_margin_call(state(1_000_000, 600_000), TERMS, 0) is None
    event = detect_margin_call(state(1_000_000, 700_000), TERMS, 3)
    assert event.year == 3
    assert event.ltv == pytest.approx(0.70)
    assert event.shortfall == pytest.approx(50_000)


def test_liquidation_amount_grosses_up_for_haircut():
    assets, target = calculate_liquidation_amount(state(1_000_000, 700_000), TERMS)
    assert target == pytest.approx(0.40)
    assert assets == pytest.approx(315_789.47, abs=0.01)


def test_liquidation_amount_grosses_up_for_tax():
    # Half the portfolio is gain, 20% LTCG: each dollar nets 0.95 * 0.9
    s = state(1_000_000, 700_000, basis=500_000)
    assets, _ = calculate_liquidation_amount(s, TERMS, ltcg_rate=0.20)
    assert assets == pytest.approx(300_000 / (0.95 * 0.9))


def test_forced_liquidation_repays_excess():
    new_state, event, failed = execute_forced_liquidation(state(1_000_000, 700_000), TERMS, 0)
    assert not failed
    assert event.assets_sold == pytest.approx(315_789.47, abs=0.01)
    assert event.haircut_loss == pytest.approx(15_789.47, abs=0.01)
    assert event.loan_repaid == pytest.approx(300_000)
    assert new_state.loan_balance == pytest.approx(400_000)
    assert new_state.portfolio_value == pytest.approx(684_210.53, abs=0.01)
    # Sized against the pre-sale portfolio, so LTV lands above the 0.40 target
    assert new_state.current_ltv == pytest.approx(400_000 / 684_210.53)
    assert new_state.status == LoanStatus.WARNING


def test_forced_liquidation_tax_and_basis():
    s = state(1_000_000, 700_000, basis=400_000)
    new_state, event, _ = execute_forced_liquidation(s, TERMS, 0, ltcg_rate=0.238)
    g = gain_fraction(1_000_000, 400_000)
    assert g == pytest.approx(0.6)
    proceeds = event.assets_sold * 0.95
    assert event.capital_gains_tax == pytest.approx(proceeds * g * 0.238)
    assert event.loan_repaid == pytest.approx(proceeds - event.capital_gains_tax)
    assert new_state.loan_balance == pytest.approx(400_000)
    assert new_state.cost_basis == pytest.approx(400_000 * (1 - event.assets_sold / 1_000_000))


def test_forced_liquidation_insolvent():
    new_state, event, failed = execute_forced_liquidation(state(500_000, 500_000), TERMS, 0)
    assert failed
    assert new_state.status == LoanStatus.FAILED
    assert new_state.portfolio_value - new_state.loan_balance <= 0


def test_can_recover():
    assert can_recover_from_margin_call(state(1_000_000, 700_000), TERMS)
    assert not can_recover_from_margin_call(state(500_000, 480_000), TERMS)


def test_available_credit():
    assert available_credit(state(1_000_000, 200_000), TERMS) == pytest.approx(450_000)


def test_margin_buffer():
    s = state(1_000_000, 325_000)
    assert calculate_drop_to_margin_call(s, TERMS) == pytest.approx(0.5)
    buffer = calculate_margin_buffer(s, TERMS)
    assert buffer.dollars_until_margin_call == pytest.approx(500_000)
    assert buffer.dollars_until_warning == pytest.approx(350_000)
    assert buffer.percent_until_margin_call == pytest.approx(0.5)


def test_effective_max_ltv(portfolio):
    # 60% equity at 65%, 40% bonds at 85%
    assert effective_max_ltv(portfolio) == pytest.approx(0.6 * 0.65 + 0.4 * 0.85)
