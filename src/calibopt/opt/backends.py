#########################################################################################
##
##                        SCIPY BASED ALTERNATIVE OPTIMIZER BACKENDS
##                                 (opt/backends.py)
##
#########################################################################################

# IMPORTS ===============================================================================

from __future__ import annotations

import math
from concurrent.futures import Executor
from typing import Callable, Sequence

import numpy as np
import scipy.optimize as sci_opt

from ..utils.logger import LoggerManager
from .derivatives import DerivativeEstimator
from .exceptions import SolverUsageError
from .objective import ObjectiveFunction, as_objective
from .optimizer import Optimizer, SolverStatus


__all__ = [
    "LeastSquaresOptimizer",
    "DifferentialEvolutionOptimizer",
]

logger = LoggerManager().get_logger(__name__)


# SHARED BASE ===========================================================================

class _ScipyOptimizer(Optimizer):
    """Common state of the scipy backed optimizers.

    Holds the objective, the target and weight vectors and the box bounds,
    and implements the run-once bookkeeping shared with
    :class:`~calibopt.opt.levenberg_marquardt.LevenbergMarquardt`.
    """

    def __init__(
        self,
        objective_function: ObjectiveFunction | Callable,
        initial_parameters: Sequence[float],
        target_values: Sequence[float],
        *,
        weights: Sequence[float] | None = None,
        lower_bound: Sequence[float] | None = None,
        upper_bound: Sequence[float] | None = None,
        derivatives: Callable | None = None,
    ):
        self._objective = as_objective(objective_function, derivatives)

        self._initial_parameters = np.array(initial_parameters, dtype=float).reshape(-1)
        self._target_values = np.array(target_values, dtype=float).reshape(-1)

        n = self._initial_parameters.size
        m = self._target_values.size

        if n == 0 or m == 0:
            raise ValueError("initial_parameters and target_values must not be empty")

        if weights is None:
            self._weights = np.ones(m)
        else:
            self._weights = np.array(weights, dtype=float).reshape(-1)
            if self._weights.size != m:
                raise ValueError(
                    f"weights has length {self._weights.size}, expected {m}"
                )
            if np.any(self._weights < 0.0):
                raise ValueError("weights must be non-negative")

        self._lower = self._bound(lower_bound, -np.inf, n, "lower_bound")
        self._upper = self._bound(upper_bound, np.inf, n, "upper_bound")

        if np.any(self._lower > self._upper):
            raise ValueError("lower_bound exceeds upper_bound")

        self._has_run = False
        self._status = SolverStatus.INITIALIZED
        self._best = None
        self._rms = math.inf
        self._iterations = 0


    @staticmethod
    def _bound(values, default, n, name):
        if values is None:
            return np.full(n, default)
        arr = np.array(values, dtype=float).reshape(-1)
        if arr.size != n:
            raise ValueError(f"{name} has length {arr.size}, expected {n}")
        #NaN means "no bound" for this component
        arr[np.isnan(arr)] = default
        return arr


    def _evaluate(self, parameters):
        values = np.asarray(
            self._objective.evaluate(np.array(parameters, dtype=float)), dtype=float
        ).reshape(-1)
        if values.size != self._target_values.size:
            raise ValueError(
                f"objective returned {values.size} values, "
                f"expected {self._target_values.size}"
            )
        return values


    def _start(self):
        if self._has_run:
            raise SolverUsageError(
                "run() can only be called once per optimizer instance."
            )
        self._has_run = True
        self._status = SolverStatus.ITERATING
        return np.clip(self._initial_parameters, self._lower, self._upper)


    def _finish(self, x, mse, iterations, status, message):
        self._best = np.array(x, dtype=float)
        self._rms = math.sqrt(mse) if mse >= 0.0 else math.nan
        self._iterations = int(iterations)
        self._status = status
        logger.info(
            "%s finished (%s) after %d iterations, rms error %.6g: %s",
            type(self).__name__,
            self._status.value,
            self._iterations,
            self._rms,
            message,
        )


    @property
    def best_fit_parameters(self):
        if self._best is None:
            return self._initial_parameters.copy()
        return self._best.copy()


    @property
    def root_mean_squared_error(self):
        return self._rms


    @property
    def iterations(self):
        return self._iterations


    @property
    def status(self):
        return self._status


# LEAST SQUARES =========================================================================

class LeastSquaresOptimizer(_ScipyOptimizer):
    """Bounded trust-region least squares via ``scipy.optimize.least_squares``.

    The residual vector is ``√w (f(p) - t)``, so the minimised quantity has
    the same weighted mean squared error as the Levenberg-Marquardt core.
    Box bounds are honoured natively; the initial guess is clipped into the
    box.

    ``iterations`` counts objective evaluations (scipy's ``nfev``); scipy
    reports no separate iteration count for this method.

    Parameters
    ----------
    objective_function : ObjectiveFunction or callable
        ``parameters -> values``.
    initial_parameters : array_like
        Initial guess.
    target_values : array_like
        Target vector.
    weights : array_like, optional
        Non-negative weights; all ones by default.
    lower_bound, upper_bound : array_like, optional
        Box bounds; ``±inf`` or ``NaN`` entries leave a component unbounded.
    parameter_steps : array_like, optional
        Absolute forward difference shifts; otherwise scipy's ``"2-point"``
        scheme is used unless the objective has an analytic derivative.
    max_nfev : int, optional
        Maximum number of function evaluations.
    loss : str
        Loss function passed to scipy (``"linear"``, ``"soft_l1"``, ...).
    f_scale : float
        Residual scale for robust loss functions.
    ftol, xtol, gtol : float
        Termination tolerances passed to scipy.
    """

    def __init__(
        self,
        objective_function,
        initial_parameters,
        target_values,
        *,
        weights=None,
        lower_bound=None,
        upper_bound=None,
        parameter_steps=None,
        derivatives=None,
        max_nfev: int | None = None,
        loss: str = "linear",
        f_scale: float = 1.0,
        ftol: float = 1e-8,
        xtol: float = 1e-8,
        gtol: float = 1e-8,
    ):
        super().__init__(
            objective_function,
            initial_parameters,
            target_values,
            weights=weights,
            lower_bound=lower_bound,
            upper_bound=upper_bound,
            derivatives=derivatives,
        )
        self._derivative_estimator = (
            None if parameter_steps is None else DerivativeEstimator(parameter_steps)
        )
        self.max_nfev = max_nfev
        self.loss = loss
        self.f_scale = float(f_scale)
        self.ftol = ftol
        self.xtol = xtol
        self.gtol = gtol


    def residuals(self, parameters: np.ndarray) -> np.ndarray:
        """Weighted residual vector ``√w (f(p) - t)``."""
        values = self._evaluate(parameters)
        return np.sqrt(self._weights) * (values - self._target_values)


    def _jacobian(self, parameters):
        #scipy expects (M, N), the estimator returns (N, M)
        p = np.array(parameters, dtype=float)
        if self._objective.has_derivatives:
            jac = np.asarray(self._objective.derivatives(p.copy()), dtype=float)
        else:
            jac = self._derivative_estimator.jacobian(self._objective, p, self._evaluate(p))
        return (jac * np.sqrt(self._weights)).T


    def run(self) -> None:
        x0 = self._start()

        if self._objective.has_derivatives or self._derivative_estimator is not None:
            jac = self._jacobian
        else:
            jac = "2-point"

        res = sci_opt.least_squares(
            self.residuals,
            x0=x0,
            jac=jac,
            bounds=(self._lower, self._upper),
            loss=self.loss,
            f_scale=self.f_scale,
            max_nfev=self.max_nfev,
            ftol=self.ftol,
            xtol=self.xtol,
            gtol=self.gtol,
        )

        #res.fun holds √w (f - t), independent of the loss function
        mse = float(np.mean(res.fun ** 2))

        if res.success:
            status = SolverStatus.CONVERGED
        elif res.status == 0:
            status = SolverStatus.MAX_ITERATIONS
        else:
            status = SolverStatus.DIVERGED

        self._finish(res.x, mse, res.nfev, status, str(res.message))


# DIFFERENTIAL EVOLUTION ================================================================

class DifferentialEvolutionOptimizer(_ScipyOptimizer):
    """Derivative free evolutionary search via ``scipy.optimize.differential_evolution``.

    Minimises the weighted mean squared error inside a finite box. Points
    at which the objective returns non-finite values get an infinite error
    and are never selected.

    Parameters
    ----------
    objective_function : ObjectiveFunction or callable
        ``parameters -> values``.
    initial_parameters : array_like
        Seeded into the initial population (clipped into the box).
    target_values : array_like
        Target vector.
    lower_bound, upper_bound : array_like
        Finite box bounds, required.
    weights : array_like, optional
        Non-negative weights; all ones by default.
    max_iteration : int
        Maximum number of generations.
    population_size : int
        Population multiplier (``popsize`` in scipy).
    tolerance : float
        Relative convergence tolerance of the population.
    polish : bool
        Refine the best member with L-BFGS-B at the end.
    seed : int, optional
        Random seed for reproducible runs.
    executor : concurrent.futures.Executor, optional
        Evaluate each generation in parallel via ``executor.map``. The
        objective function must then be thread safe.
    """

    def __init__(
        self,
        objective_function,
        initial_parameters,
        target_values,
        *,
        lower_bound,
        upper_bound,
        weights=None,
        derivatives=None,
        max_iteration: int = 1000,
        population_size: int = 15,
        tolerance: float = 1e-8,
        polish: bool = True,
        seed: int | None = None,
        executor: Executor | None = None,
    ):
        super().__init__(
            objective_function,
            initial_parameters,
            target_values,
            weights=weights,
            lower_bound=lower_bound,
            upper_bound=upper_bound,
            derivatives=derivatives,
        )
        if not (np.all(np.isfinite(self._lower)) and np.all(np.isfinite(self._upper))):
            raise ValueError("differential evolution requires finite lower and upper bounds")

        self.max_iteration = int(max_iteration)
        self.population_size = int(population_size)
        self.tolerance = float(tolerance)
        self.polish = bool(polish)
        self.seed = seed
        self.executor = executor


    def mean_squared_error(self, parameters: np.ndarray) -> float:
        """Weighted mean squared error, ``inf`` for non-finite points."""
        values = self._evaluate(parameters)
        with np.errstate(invalid="ignore", over="ignore"):
            deviation = values - self._target_values
            mse = float(np.sum(self._weights * deviation * deviation)) / values.size
        return mse if np.isfinite(mse) else math.inf


    def run(self) -> None:
        x0 = self._start()

        options = {}
        if self.executor is not None:
            options["workers"] = self.executor.map
            options["updating"] = "deferred"

        res = sci_opt.differential_evolution(
            self.mean_squared_error,
            bounds=list(zip(self._lower, self._upper)),
            x0=x0,
            maxiter=self.max_iteration,
            popsize=self.population_size,
            tol=self.tolerance,
            polish=self.polish,
            seed=self.seed,
            **options,
        )

        if res.success:
            status = SolverStatus.CONVERGED
        elif res.nit >= self.max_iteration:
            status = SolverStatus.MAX_ITERATIONS
        else:
            status = SolverStatus.DIVERGED

        self._finish(res.x, float(res.fun), res.nit, status, str(res.message))
