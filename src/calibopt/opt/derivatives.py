#########################################################################################
##
##                       JACOBIAN ESTIMATION FOR THE DAMPED SOLVER
##                               (opt/derivatives.py)
##
#########################################################################################

# IMPORTS ===============================================================================

from __future__ import annotations

from concurrent.futures import Executor
from typing import Sequence

import numpy as np

from .._constants import FINITE_DIFFERENCE_RELATIVE_STEP
from .objective import ObjectiveFunction


__all__ = ["DerivativeEstimator"]


# CLASS =================================================================================

class DerivativeEstimator:
    """Jacobian of an objective function at the current parameter point.

    Uses the objective's analytic derivative when it has one. Otherwise each
    parameter is shifted independently by ``h_i`` and the column is estimated
    by forward differences::

        J[i, :] = (f(p + h_i e_i) - f(p)) / h_i

    The ``N`` shifted evaluations are independent. With an executor they are
    submitted as ``N`` tasks and the call blocks until every task has
    finished, so the returned Jacobian is always fully populated.

    Parameters
    ----------
    parameter_steps : sequence of float, optional
        Per-parameter shift ``h_i``. Defaults to ``(|p_i| + 1) * 1e-8``.

    Notes
    -----
    A non-finite difference quotient (the shifted point was rejected with
    ``NaN``, or overflowed) is replaced by ``0.0`` for that single entry.
    Exceptions raised by an evaluation are not caught; they surface from
    :meth:`jacobian` once all submitted tasks have completed.
    """

    def __init__(self, parameter_steps: Sequence[float] | None = None):
        if parameter_steps is None:
            self.parameter_steps = None
        else:
            steps = np.asarray(parameter_steps, dtype=float).reshape(-1)
            if np.any(steps == 0.0) or not np.all(np.isfinite(steps)):
                raise ValueError("parameter_steps must be finite and non-zero")
            self.parameter_steps = steps


    def step(self, parameters: np.ndarray, index: int) -> float:
        """Finite difference shift for parameter ``index``."""
        if self.parameter_steps is not None:
            return float(self.parameter_steps[index])
        return (abs(float(parameters[index])) + 1.0) * FINITE_DIFFERENCE_RELATIVE_STEP


    def _column(
        self,
        objective: ObjectiveFunction,
        parameters: np.ndarray,
        values: np.ndarray,
        index: int,
    ) -> np.ndarray:
        h = self.step(parameters, index)

        shifted = parameters.copy()
        shifted[index] += h

        values_shifted = np.asarray(objective.evaluate(shifted), dtype=float).reshape(-1)
        if values_shifted.size != values.size:
            raise ValueError(
                f"objective returned {values_shifted.size} values at the shifted "
                f"point, expected {values.size}"
            )

        with np.errstate(invalid="ignore", over="ignore"):
            column = (values_shifted - values) / h
        column[~np.isfinite(column)] = 0.0
        return column


    def jacobian(
        self,
        objective: ObjectiveFunction,
        parameters: np.ndarray,
        values: np.ndarray,
        executor: Executor | None = None,
    ) -> np.ndarray:
        """Return the Jacobian of shape ``(n_parameters, n_values)``.

        Parameters
        ----------
        objective : ObjectiveFunction
            function to differentiate
        parameters : np.ndarray
            point of differentiation
        values : np.ndarray
            ``objective.evaluate(parameters)``, reused as the base value
        executor : concurrent.futures.Executor, optional
            worker pool for the shifted evaluations; sequential if ``None``

        Returns
        -------
        np.ndarray
        """
        p = np.asarray(parameters, dtype=float).reshape(-1)
        v = np.asarray(values, dtype=float).reshape(-1)

        if self.parameter_steps is not None and self.parameter_steps.size != p.size:
            raise ValueError(
                f"parameter_steps has length {self.parameter_steps.size}, "
                f"expected {p.size}"
            )

        if objective.has_derivatives:
            jac = np.asarray(objective.derivatives(p.copy()), dtype=float)
            if jac.shape != (p.size, v.size):
                raise ValueError(
                    f"analytic derivative has shape {jac.shape}, "
                    f"expected {(p.size, v.size)}"
                )
            return jac

        jac = np.empty((p.size, v.size))

        if executor is None:
            for i in range(p.size):
                jac[i, :] = self._column(objective, p, v, i)
            return jac

        futures = [
            executor.submit(self._column, objective, p, v, i)
            for i in range(p.size)
        ]

        #barrier: wait for every task before the first error is re-raised
        errors = []
        for i, future in enumerate(futures):
            try:
                jac[i, :] = future.result()
            except Exception as e:
                errors.append(e)

        if errors:
            raise errors[0]

        return jac
