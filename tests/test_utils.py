import numpy as np
import pandas as pd
import pytest

from bbdsim.errors import CorrelationMatrixError
from bbdsim.utils import (
    cholesky_lower,
    correlation_from_history,
    format_money,
    is_positive_definite,
    nearest_psd_matrix,
    percentile_dict,
    safe_cholesky,
    sample_correlation,
)

INDEFINITE = np.array([
    [1.0, 0.9, -0.9],
    [0.9, 1.0, 0.9],
    [-0.9, 0.9, 1.0],
])


def test_nearest_psd_repairs_indefinite_matrix():
    assert not is_positive_definite(INDEFINITE)
    repaired = nearest_psd_matrix(INDEFINITE)
    np.testing.assert_allclose(np.diag(repaired), 1.0)
    np.testing.assert_allclose(repaired, repaired.T)
    assert np.all(np.linalg.eigvalsh(repaired) > -1e-10)


def test_cholesky_lower_reconstructs():
    corr = np.array([[1.0, 0.6], [0.6, 1.0]])
    lower = cholesky_lower(corr)
    np.testing.assert_allclose(lower @ lower.T, corr)
    assert lower[0, 1] == 0.0


def test_cholesky_lower_rejects_indefinite():
    with pytest.raises(CorrelationMatrixError):
        cholesky_lower(INDEFINITE)


def test_cholesky_lower_rejects_nan():
    with pytest.raises(CorrelationMatrixError):
        cholesky_lower(np.array([[1.0, np.nan], [np.nan, 1.0]]))


def test_safe_cholesky_falls_back():
    lower = safe_cholesky(INDEFINITE)
    assert np.all(np.isfinite(lower))
    np.testing.assert_allclose(np.diag(lower @ lower.T), 1.0, atol=1e-8)


def test_correlation_from_history_constant_column():
    df = pd.DataFrame({'A': [0.1, 0.2, -0.1, 0.05], 'B': [0.02] * 4})
    corr = correlation_from_history(df)
    np.testing.assert_allclose(corr, np.eye(2))


@pytest.mark.parametrize(
    "x, y, expected",
    [
        ([1, 2, 3, 4], [2, 4, 6, 8], 1.0),
        ([1, 2, 3, 4], [8, 6, 4, 2], -1.0),
        ([1, 2, 3, 4], [5, 5, 5, 5], 0.0),
    ],
)
def test_sample_correlation(x, y, expected):
    assert sample_correlation(x, y) == pytest.approx(expected)


def test_percentile_dict_ignores_nan():
    result = percentile_dict([1.0, 2.0, 3.0, np.nan], (50,))
    assert result[50] == pytest.approx(2.0)


@pytest.mark.parametrize(
    "value, expected",
    [
        (1_500_000, "$1.50M"),
        (-2_000_000_000, "-$2.00B"),
        (None, "n/a"),
        (float('nan'), "n/a"),
    ],
)
def test_format_money(value, expected):
    assert format_money(value) == expected
