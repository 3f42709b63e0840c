import numpy as np
import pandas as pd
from typing import Dict, Iterable, Optional
from bbdsim.errors import CorrelationMatrixError


def nearest_psd_matrix(corr_matrix):
    """Project correlation matrix to nearest positive semi-definite matrix."""
    corr_matrix = np.asarray(corr_matrix, dtype=float)
    corr_matrix = (corr_matrix + corr_matrix.T) / 2
    eigenvalues, eigenvectors = np.linalg.eigh(corr_matrix)
    eigenvalues[eigenvalues < 1e-8] = 1e-8

    corr_psd = eigenvectors @ np.diag(eigenvalues) @ eigenvectors.T

    # Normalize to correlation matrix (diagonal = 1)
    d = np.sqrt(np.diag(corr_psd))
    corr_psd = corr_psd / np.outer(d, d)
    np.fill_diagonal(corr_psd, 1.0)

    return corr_psd


def is_positive_definite(matrix) -> bool:
    try:
        np.linalg.cholesky(np.asarray(matrix, dtype=float))
    except np.linalg.LinAlgError:
        return False
    return True


def cholesky_lower(matrix) -> np.ndarray:
    """
    Lower-triangular Cholesky factor L with L @ L.T == matrix.

    Raises:
        CorrelationMatrixError: matrix is non-finite or not positive definite
    """
    matrix = np.asarray(matrix, dtype=float)
    if not np.all(np.isfinite(matrix)):
        raise CorrelationMatrixError("Correlation matrix contains non-finite entries",
                                     field='correlation_matrix')
    try:
        lower = np.linalg.cholesky(matrix)
    except np.linalg.LinAlgError as e:
        raise CorrelationMatrixError(
            f"Correlation matrix is not positive definite: {e}",
            field='correlation_matrix'
        ) from e
    return lower


def safe_cholesky(matrix) -> np.ndarray:
    """Cholesky factor of `matrix`, or of its nearest PSD projection when it is degenerate."""
    matrix = np.asarray(matrix, dtype=float)
    if np.all(np.isfinite(matrix)) and is_positive_definite(matrix):
        return np.linalg.cholesky(matrix)
    sanitized = np.nan_to_num(matrix, nan=0.0, posinf=1.0, neginf=-1.0)
    np.fill_diagonal(sanitized, 1.0)
    return cholesky_lower(nearest_psd_matrix(sanitized))


def correlation_from_history(history: pd.DataFrame) -> np.ndarray:
    """
    Pearson correlation of aligned historical returns (one column per asset).

    Identity with fewer than 3 rows; zero-variance columns are treated as
    uncorrelated; the result is projected to the nearest PSD matrix when it
    is not positive definite.
    """
    n_assets = history.shape[1]
    if len(history) < 3 or n_assets < 2:
        return np.eye(n_assets)

    corr = history.corr().to_numpy(dtype=float)
    corr = np.nan_to_num(corr, nan=0.0)
    corr = np.clip(corr, -1.0, 1.0)
    np.fill_diagonal(corr, 1.0)

    if not is_positive_definite(corr):
        corr = nearest_psd_matrix(corr)
    return corr


def sample_correlation(x, y) -> float:
    """Pearson correlation of two samples; 0.0 when either is constant."""
    x = np.asarray(x, dtype=float)
    y = np.asarray(y, dtype=float)
    if len(x) < 2 or np.std(x) == 0 or np.std(y) == 0:
        return 0.0
    return float(np.corrcoef(x, y)[0, 1])


def finite_mask(values) -> np.ndarray:
    return np.isfinite(np.asarray(values, dtype=float))


def percentile_dict(values, percentiles: Iterable[int]) -> Dict[int, float]:
    """np.percentile of the finite values, keyed by percentile."""
    values = np.asarray(values, dtype=float)
    values = values[np.isfinite(values)]
    if len(values) == 0:
        return {p: float('nan') for p in percentiles}
    return {p: float(np.percentile(values, p)) for p in percentiles}


def format_money(value: Optional[float]) -> str:
    """Compact dollar formatting for console tables ($1.23M, $450K)."""
    if value is None or not np.isfinite(value):
        return "n/a"
    sign = "-" if value < 0 else ""
    value = abs(value)
    if value >= 1e9:
        return f"{sign}${value/1e9:.2f}B"
    if value >= 1e6:
        return f"{sign}${value/1e6:.2f}M"
    if value >= 1e3:
        return f"{sign}${value/1e3:.0f}K"
    return f"{sign}${value:.0f}"
