#########################################################################################
##
##                    OPTIMIZER FACTORIES (BACKEND SELECTION LAYER)
##                                 (opt/factory.py)
##
#########################################################################################

# IMPORTS ===============================================================================

from __future__ import annotations

from abc import ABC, abstractmethod
from concurrent.futures import Executor
from typing import Callable, Sequence

import numpy as np

from .._constants import (
    DEFAULT_ERROR_TOLERANCE,
    DEFAULT_MAX_ITERATION,
    DEFAULT_NUMBER_OF_THREADS,
)
from ..utils.logger import LoggerManager
from .backends import DifferentialEvolutionOptimizer, LeastSquaresOptimizer
from .levenberg_marquardt import LevenbergMarquardt
from .objective import ObjectiveFunction
from .optimizer import Optimizer
from .regularization import RegularizationMethod


__all__ = [
    "OptimizerFactory",
    "OptimizerFactoryLevenbergMarquardt",
    "OptimizerFactoryLeastSquares",
    "OptimizerFactoryDifferentialEvolution",
]

logger = LoggerManager().get_logger(__name__)


# INTERFACE =============================================================================

class OptimizerFactory(ABC):
    """Builds ready-to-run optimizers from a uniform configuration.

    A calibration routine only sees this interface, so the backend (damped
    Gauss-Newton, trust-region least squares, differential evolution) can be
    swapped without touching the calibration logic.
    """

    @abstractmethod
    def get_optimizer(
        self,
        objective_function: ObjectiveFunction | Callable,
        initial_parameters: Sequence[float],
        target_values: Sequence[float],
        *,
        lower_bound: Sequence[float] | None = None,
        upper_bound: Sequence[float] | None = None,
        parameter_steps: Sequence[float] | None = None,
        weights: Sequence[float] | None = None,
    ) -> Optimizer:
        """Return a configured, not yet run, optimizer.

        Parameters
        ----------
        objective_function : ObjectiveFunction or callable
            ``parameters -> values``.
        initial_parameters : array_like
            Initial guess.
        target_values : array_like
            Target vector.
        lower_bound, upper_bound : array_like, optional
            Box bounds, honoured if the backend supports them.
        parameter_steps : array_like, optional
            Finite difference shifts per parameter.
        weights : array_like, optional
            Non-negative weights per value.

        Returns
        -------
        Optimizer
        """


# LEVENBERG-MARQUARDT ===================================================================

class OptimizerFactoryLevenbergMarquardt(OptimizerFactory):
    """Factory for the damped Gauss-Newton core.

    The core has no native bound support. Bounds passed to
    :meth:`get_optimizer` are ignored; use a
    :class:`~calibopt.opt.transform.ParameterTransformation` to keep
    parameters admissible.

    Parameters
    ----------
    regularization_method : RegularizationMethod or str
        Damping of the normal equations.
    max_iterations : int
        Maximum number of outer iterations.
    error_tolerance : float
        Stop once the RMS error changes by no more than this.
    number_of_threads : int
        Worker threads for finite differences.
    executor : concurrent.futures.Executor, optional
        Shared worker pool; never shut down by the optimizers.
    **solver_options
        Forwarded to :class:`LevenbergMarquardt` (``lambda_``,
        ``lambda_divisor``, ``lambda_multiplicator``).
    """

    def __init__(
        self,
        regularization_method: RegularizationMethod | str = RegularizationMethod.LEVENBERG_MARQUARDT,
        max_iterations: int = DEFAULT_MAX_ITERATION,
        error_tolerance: float = DEFAULT_ERROR_TOLERANCE,
        number_of_threads: int = DEFAULT_NUMBER_OF_THREADS,
        executor: Executor | None = None,
        **solver_options,
    ):
        self.regularization_method = RegularizationMethod.parse(regularization_method)
        self.max_iterations = int(max_iterations)
        self.error_tolerance = float(error_tolerance)
        self.number_of_threads = int(number_of_threads)
        self.executor = executor
        self.solver_options = solver_options


    def get_optimizer(
        self,
        objective_function,
        initial_parameters,
        target_values,
        *,
        lower_bound=None,
        upper_bound=None,
        parameter_steps=None,
        weights=None,
    ) -> LevenbergMarquardt:
        if lower_bound is not None or upper_bound is not None:
            logger.debug("bounds are not supported by LevenbergMarquardt and are ignored")

        return LevenbergMarquardt(
            objective_function,
            initial_parameters,
            target_values,
            weights=weights,
            parameter_steps=parameter_steps,
            regularization_method=self.regularization_method,
            max_iteration=self.max_iterations,
            error_tolerance=self.error_tolerance,
            number_of_threads=self.number_of_threads,
            executor=self.executor,
            **self.solver_options,
        )


    def __repr__(self) -> str:
        return (
            f"OptimizerFactoryLevenbergMarquardt("
            f"method={self.regularization_method.name}, "
            f"max_iterations={self.max_iterations}, "
            f"error_tolerance={self.error_tolerance}, "
            f"number_of_threads={self.number_of_threads})"
        )


# LEAST SQUARES =========================================================================

class OptimizerFactoryLeastSquares(OptimizerFactory):
    """Factory for the bounded ``scipy.optimize.least_squares`` backend.

    Parameters
    ----------
    max_nfev : int, optional
        Maximum number of function evaluations.
    loss : str
        Robust loss function name.
    f_scale : float
        Residual scale for robust losses.
    """

    def __init__(self, max_nfev: int | None = None, loss: str = "linear", f_scale: float = 1.0):
        self.max_nfev = max_nfev
        self.loss = loss
        self.f_scale = f_scale


    def get_optimizer(
        self,
        objective_function,
        initial_parameters,
        target_values,
        *,
        lower_bound=None,
        upper_bound=None,
        parameter_steps=None,
        weights=None,
    ) -> LeastSquaresOptimizer:
        return LeastSquaresOptimizer(
            objective_function,
            initial_parameters,
            target_values,
            weights=weights,
            lower_bound=lower_bound,
            upper_bound=upper_bound,
            parameter_steps=parameter_steps,
            max_nfev=self.max_nfev,
            loss=self.loss,
            f_scale=self.f_scale,
        )


# DIFFERENTIAL EVOLUTION ================================================================

class OptimizerFactoryDifferentialEvolution(OptimizerFactory):
    """Factory for the derivative free evolutionary backend.

    Requires finite bounds for every parameter. ``parameter_steps`` is not
    used by this backend.

    Parameters
    ----------
    max_iterations : int
        Maximum number of generations.
    population_size : int
        Population multiplier.
    tolerance : float
        Relative population convergence tolerance.
    polish : bool
        Refine the best member with a local gradient method.
    seed : int, optional
        Random seed.
    executor : concurrent.futures.Executor, optional
        Parallel evaluation of each generation.
    """

    def __init__(
        self,
        max_iterations: int = 1000,
        population_size: int = 15,
        tolerance: float = 1e-8,
        polish: bool = True,
        seed: int | None = None,
        executor: Executor | None = None,
    ):
        self.max_iterations = int(max_iterations)
        self.population_size = int(population_size)
        self.tolerance = float(tolerance)
        self.polish = bool(polish)
        self.seed = seed
        self.executor = executor


    def get_optimizer(
        self,
        objective_function,
        initial_parameters,
        target_values,
        *,
        lower_bound=None,
        upper_bound=None,
        parameter_steps=None,
        weights=None,
    ) -> DifferentialEvolutionOptimizer:
        if lower_bound is None or upper_bound is None:
            raise ValueError("differential evolution requires lower_bound and upper_bound")

        return DifferentialEvolutionOptimizer(
            objective_function,
            initial_parameters,
            target_values,
            lower_bound=np.asarray(lower_bound, dtype=float),
            upper_bound=np.asarray(upper_bound, dtype=float),
            weights=weights,
            max_iteration=self.max_iterations,
            population_size=self.population_size,
            tolerance=self.tolerance,
            polish=self.polish,
            seed=self.seed,
            executor=self.executor,
        )
