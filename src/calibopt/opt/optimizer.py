#########################################################################################
##
##                       OPTIMIZER INTERFACE AND RESULT CONTAINER
##                                (opt/optimizer.py)
##
#########################################################################################

# IMPORTS ===============================================================================

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum

import numpy as np


__all__ = [
    "SolverStatus",
    "OptimizationResult",
    "Optimizer",
]


# STATUS ================================================================================

class SolverStatus(Enum):
    """Lifecycle of a solver run.

    ``CONVERGED``, ``MAX_ITERATIONS`` and ``DIVERGED`` are
    terminal. ``DIVERGED`` is not an error: the run ends normally and the best
    point found so far is still available.
    """

    INITIALIZED = "initialized"
    ITERATING = "iterating"
    CONVERGED = "converged"
    MAX_ITERATIONS = "max_iterations"
    DIVERGED = "diverged"


    @property
    def is_terminal(self) -> bool:
        return self not in (SolverStatus.INITIALIZED, SolverStatus.ITERATING)


# RESULT ================================================================================

@dataclass
class OptimizationResult:
    """Outcome of an optimizer run."""

    x: np.ndarray
    rms_error: float
    iterations: int
    status: SolverStatus
    success: bool
    message: str


    def __repr__(self) -> str:
        state = "SUCCESS" if self.success else "FAILED"
        return (
            f"OptimizationResult({state}, status={self.status.value}, "
            f"rms_error={self.rms_error:.4g}, iterations={self.iterations}, "
            f"x={self.x})"
        )


# INTERFACE =============================================================================

class Optimizer(ABC):
    """Uniform interface over the available least-squares backends.

    A calibration call-site only relies on this interface, so the concrete
    backend can be swapped through an
    :class:`~calibopt.opt.factory.OptimizerFactory` without touching the
    calibration logic.
    """

    @abstractmethod
    def run(self) -> None:
        """Run the optimisation; blocks until a terminal state is reached."""


    @property
    @abstractmethod
    def best_fit_parameters(self) -> np.ndarray:
        """Best parameter vector found (copy)."""


    @property
    @abstractmethod
    def root_mean_squared_error(self) -> float:
        """Weighted root mean squared error at the best fit."""


    @property
    @abstractmethod
    def iterations(self) -> int:
        """Number of iterations performed."""


    @property
    @abstractmethod
    def status(self) -> SolverStatus:
        """Current lifecycle state."""


    def done(self) -> bool:
        """True once the optimizer reached a terminal state."""
        return self.status.is_terminal


    def result(self) -> OptimizationResult:
        """Snapshot of the current best fit."""
        status = self.status
        return OptimizationResult(
            x=self.best_fit_parameters,
            rms_error=float(self.root_mean_squared_error),
            iterations=int(self.iterations),
            status=status,
            success=status is SolverStatus.CONVERGED,
            message=_MESSAGES[status],
        )


_MESSAGES = {
    SolverStatus.INITIALIZED: "Optimizer has not been run.",
    SolverStatus.ITERATING: "Optimizer is running.",
    SolverStatus.CONVERGED: "Error improvement fell below the error tolerance.",
    SolverStatus.MAX_ITERATIONS: "Maximum number of iterations reached.",
    SolverStatus.DIVERGED: "Damping factor diverged; no further reduction possible.",
}
