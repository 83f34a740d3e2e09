#########################################################################################
##
##                  DAMPED GAUSS-NEWTON (LEVENBERG-MARQUARDT) SOLVER
##                           (opt/levenberg_marquardt.py)
##
#########################################################################################

# IMPORTS ===============================================================================

from __future__ import annotations

import copy
import logging
import math
from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Sequence

import numpy as np
from scipy.linalg import LinAlgError, cho_factor, cho_solve

from .._constants import (
    DEFAULT_LAMBDA,
    DEFAULT_LAMBDA_DIVISOR,
    DEFAULT_LAMBDA_MULTIPLICATOR,
    LAMBDA_SINGULAR_ESCALATION,
    DEFAULT_MAX_ITERATION,
    DEFAULT_ERROR_TOLERANCE,
    DEFAULT_NUMBER_OF_THREADS,
)
from ..utils.logger import LoggerManager
from .derivatives import DerivativeEstimator
from .exceptions import SolverUsageError
from .objective import ObjectiveFunction, as_objective
from .optimizer import Optimizer, SolverStatus
from .regularization import RegularizationMethod


__all__ = ["LevenbergMarquardt", "IterationRecord"]

logger = LoggerManager().get_logger(__name__)

#smallest damping factor, keeps lambda > 0 under repeated division
_LAMBDA_FLOOR = np.finfo(float).tiny


# HELPERS ===============================================================================

def _as_vector(name, values, allow_none=False):
    if values is None:
        if allow_none:
            return None
        raise ValueError(f"{name} must be provided")
    arr = np.array(values, dtype=float).reshape(-1)
    if arr.size == 0:
        raise ValueError(f"{name} must not be empty")
    return arr


def _as_count(name, value, minimum):
    if isinstance(value, bool) or not math.isfinite(float(value)) or float(value) != int(value):
        raise ValueError(f"{name} must be an integer, got {value}")
    if int(value) < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got {value}")
    return int(value)


@dataclass(frozen=True)
class IterationRecord:
    """One outer accept/reject cycle."""

    iteration: int
    rms_error: float
    rms_error_candidate: float
    lambda_: float
    accepted: bool


# SOLVER ================================================================================

class LevenbergMarquardt(Optimizer):
    """Parallel Levenberg-Marquardt non-linear least-squares solver.

    Drives ``objective_function(p)`` towards ``target_values`` by minimising
    the weighted mean squared error::

        E(p) = Σ_k w_k (f_k(p) - t_k)² / M

    Each outer iteration evaluates a candidate point and accepts it only if
    its error is strictly lower than the current one (a ``NaN`` error always
    loses). Acceptance divides the damping factor ``λ`` by
    ``lambda_divisor``, rejection multiplies it by ``lambda_multiplicator``.
    The next candidate solves the damped normal equations::

        H_λ Δp = β,    H = JᵀWJ,    β_i = Σ_k w_k (t_k - f_k) J_ik

    where the Jacobian is recomputed only after an accepted step. If ``H_λ``
    cannot be factorised, ``λ`` is multiplied by 16 and the same system is
    rebuilt and solved again, without evaluating the objective function and
    without counting an iteration.

    The run stops when the iteration count exceeds ``max_iteration``, when
    the change in root mean squared error is at most ``error_tolerance``, or
    when ``λ`` has become infinite. Divergence is not an exception; inspect
    :attr:`status` and :attr:`root_mean_squared_error` instead.

    Parameters
    ----------
    objective_function : ObjectiveFunction or callable
        ``parameters -> values``.
    initial_parameters : array_like, optional
        Initial guess of length ``N``. May be set later via the property.
    target_values : array_like, optional
        Targets of length ``M``. May be set later via the property.
    weights : array_like, optional
        Non-negative weights of length ``M``; all ones by default.
    parameter_steps : array_like, optional
        Finite difference shift per parameter; adaptive by default.
    regularization_method : RegularizationMethod or str
        Additive ``LEVENBERG`` or multiplicative ``LEVENBERG_MARQUARDT``.
    max_iteration : int
        Maximum number of outer iterations.
    error_tolerance : float
        Stop once the RMS error changes by no more than this. ``0`` iterates
        to the numerical limit, a negative value disables the criterion.
    number_of_threads : int
        Size of the worker pool used for finite differences. Values above one
        require a thread safe objective function.
    executor : concurrent.futures.Executor, optional
        Externally owned worker pool; takes precedence over
        ``number_of_threads`` and is never shut down by the solver.
    derivatives : callable, optional
        Analytic Jacobian ``parameters -> (N, M) array``, only together with a
        plain callable objective.
    lambda_ : float
        Initial damping factor.
    lambda_divisor : float
        Damping divisor after an accepted step, ``> 1``.
    lambda_multiplicator : float
        Damping multiplicator after a rejected step, ``> 1``.

    Example
    -------
    .. code-block:: python

        solver = LevenbergMarquardt(
            lambda p: [p[1], 2.0 * p[0] + p[1]],
            initial_parameters=[0.0, 0.0],
            target_values=[5.0, 10.0],
        )
        solver.run()
        solver.best_fit_parameters     # array([2.5, 5. ])
    """

    def __init__(
        self,
        objective_function: ObjectiveFunction | Callable,
        initial_parameters: Sequence[float] | None = None,
        target_values: Sequence[float] | None = None,
        *,
        weights: Sequence[float] | None = None,
        parameter_steps: Sequence[float] | None = None,
        regularization_method: RegularizationMethod | str = RegularizationMethod.LEVENBERG_MARQUARDT,
        max_iteration: int = DEFAULT_MAX_ITERATION,
        error_tolerance: float = DEFAULT_ERROR_TOLERANCE,
        number_of_threads: int = DEFAULT_NUMBER_OF_THREADS,
        executor: Executor | None = None,
        derivatives: Callable | None = None,
        lambda_: float = DEFAULT_LAMBDA,
        lambda_divisor: float = DEFAULT_LAMBDA_DIVISOR,
        lambda_multiplicator: float = DEFAULT_LAMBDA_MULTIPLICATOR,
    ):
        self._objective = as_objective(objective_function, derivatives)
        self._regularization_method = RegularizationMethod.parse(regularization_method)

        self._has_run = False

        self.initial_parameters = initial_parameters
        self.target_values = target_values
        self.weights = weights
        self.parameter_steps = parameter_steps
        self.max_iteration = max_iteration
        self.error_tolerance = error_tolerance
        self.number_of_threads = number_of_threads
        self.executor = executor
        self.lambda_ = lambda_
        self.lambda_divisor = lambda_divisor
        self.lambda_multiplicator = lambda_multiplicator

        self._reset_state()


    def _reset_state(self) -> None:
        """Put all run state back to its initial values."""
        self._has_run = False
        self._status = SolverStatus.INITIALIZED

        self._lambda = self._initial_lambda
        self._iteration = 0
        self._accepted_steps = 0

        self._parameter_test = None
        self._parameter_current = None
        self._value_current = None
        self._derivative_current = None
        self._is_derivative_valid = False

        self._error_mean_squared_current = math.inf
        self._error_root_mean_squared_change = math.inf

        self.history: list[IterationRecord] = []


    # CONFIGURATION ---------------------------------------------------------------------

    def _check_mutable(self) -> None:
        if self._has_run:
            raise SolverUsageError(
                "Solver cannot be modified after run() has been called. "
                "Use clone() or get_clone_with_modified_target_values()."
            )


    @property
    def objective_function(self) -> ObjectiveFunction:
        return self._objective


    @property
    def regularization_method(self) -> RegularizationMethod:
        return self._regularization_method


    @property
    def initial_parameters(self) -> np.ndarray | None:
        return None if self._initial_parameters is None else self._initial_parameters.copy()


    @initial_parameters.setter
    def initial_parameters(self, values) -> None:
        self._check_mutable()
        arr = _as_vector("initial_parameters", values, allow_none=True)
        if arr is not None and not np.all(np.isfinite(arr)):
            raise ValueError("initial_parameters must be finite")
        self._initial_parameters = arr


    @property
    def target_values(self) -> np.ndarray | None:
        return None if self._target_values is None else self._target_values.copy()


    @target_values.setter
    def target_values(self, values) -> None:
        self._check_mutable()
        self._target_values = _as_vector("target_values", values, allow_none=True)


    @property
    def weights(self) -> np.ndarray | None:
        """Weights per value; ``None`` means all ones."""
        return None if self._weights is None else self._weights.copy()


    @weights.setter
    def weights(self, values) -> None:
        self._check_mutable()
        arr = _as_vector("weights", values, allow_none=True)
        if arr is not None and (np.any(arr < 0.0) or not np.all(np.isfinite(arr))):
            raise ValueError("weights must be finite and non-negative")
        self._weights = arr


    @property
    def parameter_steps(self) -> np.ndarray | None:
        return None if self._parameter_steps is None else self._parameter_steps.copy()


    @parameter_steps.setter
    def parameter_steps(self, values) -> None:
        self._check_mutable()
        self._parameter_steps = _as_vector("parameter_steps", values, allow_none=True)
        self._derivative_estimator = DerivativeEstimator(self._parameter_steps)


    @property
    def max_iteration(self) -> int:
        return self._max_iteration


    @max_iteration.setter
    def max_iteration(self, value: int) -> None:
        self._check_mutable()
        self._max_iteration = _as_count("max_iteration", value, 0)


    @property
    def error_tolerance(self) -> float:
        return self._error_tolerance


    @error_tolerance.setter
    def error_tolerance(self, value: float) -> None:
        self._check_mutable()
        if math.isnan(float(value)):
            raise ValueError("error_tolerance must not be NaN")
        self._error_tolerance = float(value)


    @property
    def number_of_threads(self) -> int:
        return self._number_of_threads


    @number_of_threads.setter
    def number_of_threads(self, value: int) -> None:
        self._check_mutable()
        self._number_of_threads = _as_count("number_of_threads", value, 1)


    @property
    def executor(self) -> Executor | None:
        return self._executor


    @executor.setter
    def executor(self, executor: Executor | None) -> None:
        self._check_mutable()
        if executor is not None and not hasattr(executor, "submit"):
            raise TypeError(
                f"executor must provide submit(), got {type(executor).__name__}"
            )
        self._executor = executor


    @property
    def lambda_(self) -> float:
        """Current damping factor (the initial one before ``run()``)."""
        return self._lambda if self._has_run else self._initial_lambda


    @lambda_.setter
    def lambda_(self, value: float) -> None:
        self._check_mutable()
        value = float(value)
        if not value > 0.0 or math.isinf(value):
            raise ValueError(f"lambda_ must be finite and > 0, got {value}")
        self._initial_lambda = value
        self._lambda = value


    @property
    def lambda_divisor(self) -> float:
        return self._lambda_divisor


    @lambda_divisor.setter
    def lambda_divisor(self, value: float) -> None:
        self._check_mutable()
        if not float(value) > 1.0:
            raise ValueError(f"lambda_divisor is required to be > 1, got {value}")
        self._lambda_divisor = float(value)


    @property
    def lambda_multiplicator(self) -> float:
        return self._lambda_multiplicator


    @lambda_multiplicator.setter
    def lambda_multiplicator(self, value: float) -> None:
        self._check_mutable()
        if not float(value) > 1.0:
            raise ValueError(f"lambda_multiplicator is required to be > 1, got {value}")
        self._lambda_multiplicator = float(value)


    def _validate(self) -> None:
        """Cross-check vector lengths right before a run."""
        if self._initial_parameters is None:
            raise ValueError("initial_parameters must be set before run()")
        if self._target_values is None:
            raise ValueError("target_values must be set before run()")

        n = self._initial_parameters.size
        m = self._target_values.size

        if self._weights is not None and self._weights.size != m:
            raise ValueError(
                f"weights has length {self._weights.size}, expected {m} "
                "(length of target_values)"
            )
        if self._parameter_steps is not None and self._parameter_steps.size != n:
            raise ValueError(
                f"parameter_steps has length {self._parameter_steps.size}, expected {n} "
                "(length of initial_parameters)"
            )


    # RESULTS ---------------------------------------------------------------------------

    @property
    def status(self) -> SolverStatus:
        return self._status


    @property
    def best_fit_parameters(self) -> np.ndarray | None:
        """Best parameters found; the initial guess until a point is accepted."""
        if self._parameter_current is None:
            return self.initial_parameters
        return self._parameter_current.copy()


    @property
    def best_fit_values(self) -> np.ndarray | None:
        """Objective values at :attr:`best_fit_parameters`."""
        return None if self._value_current is None else self._value_current.copy()


    @property
    def jacobian(self) -> np.ndarray | None:
        """Last Jacobian ``(N, M)`` computed at the current point, if valid."""
        if not self._is_derivative_valid or self._derivative_current is None:
            return None
        return self._derivative_current.copy()


    @property
    def root_mean_squared_error(self) -> float:
        return math.sqrt(self._error_mean_squared_current)


    @property
    def iterations(self) -> int:
        return self._iteration


    @property
    def accepted_steps(self) -> int:
        """Number of accepted candidates, the initial guess included."""
        return self._accepted_steps


    def mean_squared_error(self, values) -> float:
        """Weighted mean squared deviation of ``values`` from the targets."""
        v = np.asarray(values, dtype=float).reshape(-1)
        with np.errstate(invalid="ignore", over="ignore"):
            deviation = v - self._target_values
            if self._weights is None:
                error = np.sum(deviation * deviation)
            else:
                error = np.sum(self._weights * deviation * deviation)
        return float(error) / v.size


    # STOPPING CRITERION ----------------------------------------------------------------

    def _termination_status(self) -> SolverStatus | None:
        if self._iteration > self._max_iteration:
            return SolverStatus.MAX_ITERATIONS

        #an initial guess that is already optimal counts as converged
        if self._error_root_mean_squared_change <= self._error_tolerance:
            return SolverStatus.CONVERGED

        if math.isinf(self._lambda):
            return SolverStatus.DIVERGED

        return None


    # OPTIMIZATION ENGINE ---------------------------------------------------------------

    def _evaluate(self, parameters: np.ndarray) -> np.ndarray:
        values = np.asarray(
            self._objective.evaluate(parameters.copy()), dtype=float
        ).reshape(-1)
        if values.size != self._target_values.size:
            raise ValueError(
                f"objective returned {values.size} values, "
                f"expected {self._target_values.size} (length of target_values)"
            )
        return values


    def run(self) -> None:
        """Run the optimisation.

        Blocks until a terminal state is reached. Exceptions raised by the
        objective function propagate unchanged.

        Raises
        ------
        SolverUsageError
            if the solver has already been run
        """
        if self._has_run:
            raise SolverUsageError(
                "run() can only be called once per solver instance; use clone()."
            )
        self._validate()
        self._has_run = True

        executor = self._executor
        owns_executor = False
        if executor is None and self._number_of_threads > 1:
            executor = ThreadPoolExecutor(max_workers=self._number_of_threads)
            owns_executor = True

        try:
            self._iterate(executor)
        finally:
            if owns_executor:
                executor.shutdown(wait=True)


    def _iterate(self, executor: Executor | None) -> None:
        self._status = SolverStatus.ITERATING
        self._parameter_test = self._initial_parameters.copy()
        self._iteration = 0

        while True:
            self._iteration += 1

            value_test = self._evaluate(self._parameter_test)
            error_test = self.mean_squared_error(value_test)
            error_current = self._error_mean_squared_current

            #NaN compares False, a rejected point never wins
            accepted = error_test < error_current

            if accepted:
                self._error_root_mean_squared_change = math.sqrt(error_current) - math.sqrt(error_test)

                self._parameter_current = self._parameter_test.copy()
                self._value_current = value_test
                self._error_mean_squared_current = error_test

                self._is_derivative_valid = False
                self._accepted_steps += 1

                self._lambda = max(self._lambda / self._lambda_divisor, _LAMBDA_FLOOR)
            else:
                self._error_root_mean_squared_change = math.sqrt(error_test) - math.sqrt(error_current)
                self._lambda *= self._lambda_multiplicator

            self.history.append(
                IterationRecord(
                    iteration=self._iteration,
                    rms_error=math.sqrt(self._error_mean_squared_current),
                    rms_error_candidate=math.sqrt(error_test),
                    lambda_=self._lambda,
                    accepted=accepted,
                )
            )

            if logger.isEnabledFor(logging.DEBUG):
                logger.debug(
                    "iteration %d: lambda=%.6g rms=%.6g change=%.6g %s parameters=%s",
                    self._iteration,
                    self._lambda,
                    math.sqrt(self._error_mean_squared_current),
                    self._error_root_mean_squared_change,
                    "accepted" if accepted else "rejected",
                    np.array2string(self.best_fit_parameters, precision=8),
                )

            if self._parameter_current is None:
                #initial guess rejected, there is no point to linearise around
                logger.warning("objective is not finite at the initial parameters")
                self._status = SolverStatus.DIVERGED
                break

            status = self._termination_status()
            if status is not None:
                self._status = status
                break

            self._update_parameter_test(executor)

        logger.info(
            "solver finished (%s) after %d iterations, rms error %.6g",
            self._status.value,
            self._iteration,
            self.root_mean_squared_error,
        )


    def _update_parameter_test(self, executor: Executor | None) -> None:
        """Solve the damped normal equations for the next candidate."""
        if not self._is_derivative_valid:
            self._derivative_current = self._derivative_estimator.jacobian(
                self._objective,
                self._parameter_current,
                self._value_current,
                executor,
            )
            self._is_derivative_valid = True

        jac = self._derivative_current
        weights = self._weights if self._weights is not None else 1.0

        with np.errstate(invalid="ignore", over="ignore"):
            weighted_jac = jac * weights
            alpha = weighted_jac @ jac.T
            beta = weighted_jac @ (self._target_values - self._value_current)

        while True:
            hessian = self._regularization_method.apply(alpha, self._lambda)
            try:
                increment = cho_solve(cho_factor(hessian), beta)
                if not np.all(np.isfinite(increment)):
                    raise LinAlgError("non-finite parameter increment")
                break
            except (LinAlgError, ValueError) as err:
                if math.isinf(self._lambda):
                    #nothing left to escalate, the outer loop terminates
                    increment = np.zeros_like(self._parameter_current)
                    break
                self._lambda *= LAMBDA_SINGULAR_ESCALATION
                logger.debug(
                    "damped system not solvable (%s), lambda escalated to %.6g",
                    err,
                    self._lambda,
                )

        self._parameter_test = self._parameter_current + increment


    # WARM RESTART ----------------------------------------------------------------------

    def clone(self) -> "LevenbergMarquardt":
        """Return an independent solver with the same configuration.

        The objective function and a caller supplied executor are shared,
        everything else is copied. The clone starts in the ``INITIALIZED``
        state with the configured initial damping factor.
        """
        cloned = copy.copy(self)
        for attr in ("_initial_parameters", "_target_values", "_weights", "_parameter_steps"):
            value = getattr(self, attr)
            setattr(cloned, attr, None if value is None else value.copy())
        cloned._derivative_estimator = DerivativeEstimator(cloned._parameter_steps)
        cloned._reset_state()
        return cloned


    def get_clone_with_modified_target_values(
        self,
        target_values: Sequence[float],
        weights: Sequence[float] | None = None,
        use_best_parameters_as_initial: bool = True,
    ) -> "LevenbergMarquardt":
        """Clone with new targets and weights, optionally warm started.

        Parameters
        ----------
        target_values : array_like
            replacement target vector
        weights : array_like, optional
            replacement weights; all ones if omitted
        use_best_parameters_as_initial : bool
            seed the clone with this solver's best fit. Only honoured if this
            solver is done; otherwise the original initial guess is kept.

        Returns
        -------
        LevenbergMarquardt
        """
        cloned = self.clone()
        cloned.target_values = target_values
        cloned.weights = weights

        if use_best_parameters_as_initial:
            if self.done():
                cloned.initial_parameters = self.best_fit_parameters
            else:
                logger.warning(
                    "warm start requested from a solver in state '%s'; "
                    "keeping the original initial parameters",
                    self._status.value,
                )

        return cloned


    def __repr__(self) -> str:
        n = None if self._initial_parameters is None else self._initial_parameters.size
        m = None if self._target_values is None else self._target_values.size
        return (
            f"LevenbergMarquardt(method={self._regularization_method.name}, "
            f"n_parameters={n}, n_values={m}, status={self._status.value}, "
            f"iterations={self._iteration})"
        )
