"""
Structured failure signals raised by the simulation engine.

Configuration problems are raised before any iteration runs. Per-iteration
financial outcomes (margin-call insolvency, sell-strategy depletion) are
simulation data and never raised.
"""

from typing import Optional


class SimulationError(Exception):
    """Base class for every error raised by bbdsim."""


class ConfigurationError(SimulationError, ValueError):
    """Invalid run inputs detected before simulation starts."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class InsufficientDataError(ConfigurationError):
    """Historical return series too short (or empty) to sample from."""


class CorrelationMatrixError(ConfigurationError):
    """Correlation matrix is malformed or not positive definite."""


class SBLOCStateValidationError(SimulationError, ValueError):
    """An SBLOC engine state holds a NaN or negative quantity."""

    def __init__(self, message: str, field: str, value: float):
        super().__init__(f"{message} ({field}={value!r})")
        self.field = field
        self.value = value


class SimulationCancelled(SimulationError):
    """Cooperative cancellation observed between batches."""

    def __init__(self, completed_iterations: int, total_iterations: int):
        super().__init__(
            f"Simulation cancelled after {completed_iterations:,} of "
            f"{total_iterations:,} iterations"
        )
        self.completed_iterations = completed_iterations
        self.total_iterations = total_iterations


class AllIterationsNonFiniteError(SimulationError):
    """No iteration produced a finite terminal value, so nothing can be ranked."""

    def __init__(self, n_iterations: int):
        super().__init__(
            f"All {n_iterations:,} iterations produced non-finite terminal values"
        )
        self.n_iterations = n_iterations
