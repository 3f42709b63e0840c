import numpy as np
import pytest

from bbdsim.config import WithdrawalChapter, WithdrawalSchedule
from bbdsim.withdrawals import (
    chapter_multiplier,
    cumulative_withdrawals,
    withdrawal_for_year,
    withdrawal_schedule,
)

TWO_CUTS = (
    WithdrawalChapter(years_after_start=10, reduction=0.25),
    WithdrawalChapter(years_after_start=20, reduction=0.25),
)


@pytest.mark.parametrize(
    "year, expected",
    [
        (0, 1.0),
        (9, 1.0),
        (10, 0.75),
        (19, 0.75),
        (20, 0.5625),
        (29, 0.5625),
    ],
)
def test_chapters_compound_multiplicatively(year, expected):
    assert chapter_multiplier(TWO_CUTS, year) == pytest.approx(expected)


def test_chapters_not_additive():
    assert chapter_multiplier(TWO_CUTS, 25) != pytest.approx(0.50)


def test_chapter_order_irrelevant():
    assert chapter_multiplier(TWO_CUTS[::-1], 20) == pytest.approx(0.5625)


def test_chapters_count_from_start_year():
    assert chapter_multiplier(TWO_CUTS, 14, start_year=5) == pytest.approx(1.0)
    assert chapter_multiplier(TWO_CUTS, 15, start_year=5) == pytest.approx(0.75)


def test_no_chapters():
    assert chapter_multiplier((), 50) == 1.0


def test_withdrawal_escalates_with_raise():
    schedule = WithdrawalSchedule(annual_amount=50_000, annual_raise=0.03)
    assert withdrawal_for_year(schedule, 0) == pytest.approx(50_000)
    assert withdrawal_for_year(schedule, 2) == pytest.approx(50_000 * 1.03 ** 2)


def test_withdrawal_zero_before_start_year():
    schedule = WithdrawalSchedule(annual_amount=50_000, annual_raise=0.03, start_year=3)
    amounts = withdrawal_schedule(schedule, 5)
    np.testing.assert_allclose(amounts[:3], 0.0)
    assert amounts[3] == pytest.approx(50_000)
    assert amounts[4] == pytest.approx(51_500)


def test_withdrawal_with_chapter():
    schedule = WithdrawalSchedule(
        annual_amount=100_000, annual_raise=0.0,
        chapters=(WithdrawalChapter(years_after_start=2, reduction=0.5),),
    )
    np.testing.assert_allclose(withdrawal_schedule(schedule, 4), [100_000, 100_000, 50_000, 50_000])


def test_cumulative_withdrawals():
    schedule = WithdrawalSchedule(annual_amount=10_000, annual_raise=0.0)
    np.testing.assert_allclose(cumulative_withdrawals(schedule, 3), [10_000, 20_000, 30_000])
