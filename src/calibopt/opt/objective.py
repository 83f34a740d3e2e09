#########################################################################################
##
##                             OBJECTIVE FUNCTION CONTRACT
##                               (opt/objective.py)
##
#########################################################################################

# IMPORTS ===============================================================================

from __future__ import annotations

from typing import Callable

import numpy as np


__all__ = [
    "ObjectiveFunction",
    "FunctionObjective",
    "as_objective",
]


# BASE CLASS ============================================================================

class ObjectiveFunction:
    """Pure mapping from a parameter vector to a value vector.

    Subclasses implement :meth:`evaluate` and may override :meth:`derivatives`
    to provide an analytic Jacobian. Without an override the solver estimates
    the Jacobian by forward finite differences.

    Notes
    -----
    * ``evaluate`` must return the same values for the same parameters on
      every call.
    * If the solver is configured with more than one worker thread,
      ``evaluate`` is called concurrently and must be thread safe.
    * A ``NaN`` entry in the returned values marks the point as rejected; it
      will never replace the solver's current best point.
    * Raising :class:`~calibopt.opt.exceptions.SolverError` aborts the run.

    Example
    -------
    .. code-block:: python

        class Linear(ObjectiveFunction):
            def evaluate(self, p):
                return np.array([p[1], 2.0 * p[0] + p[1]])
    """

    def evaluate(self, parameters: np.ndarray) -> np.ndarray:
        """Return the value vector for ``parameters``."""
        raise NotImplementedError


    def derivatives(self, parameters: np.ndarray) -> np.ndarray:
        """Return the Jacobian of shape ``(n_parameters, n_values)``.

        Entry ``[i, k]`` is ``d value_k / d parameter_i``.
        """
        raise NotImplementedError


    @property
    def has_derivatives(self) -> bool:
        """True if :meth:`derivatives` is implemented by a subclass."""
        return type(self).derivatives is not ObjectiveFunction.derivatives


    def __call__(self, parameters: np.ndarray) -> np.ndarray:
        return self.evaluate(parameters)


# CALLABLE ADAPTER ======================================================================

class FunctionObjective(ObjectiveFunction):
    """Objective function built from plain callables.

    Parameters
    ----------
    values_fn : callable
        ``values_fn(parameters) -> values``.
    derivatives_fn : callable, optional
        ``derivatives_fn(parameters) -> jacobian`` with shape
        ``(n_parameters, n_values)``.
    """

    def __init__(
        self,
        values_fn: Callable[[np.ndarray], np.ndarray],
        derivatives_fn: Callable[[np.ndarray], np.ndarray] | None = None,
    ):
        if not callable(values_fn):
            raise TypeError(
                f"values_fn must be callable, got {type(values_fn).__name__}"
            )
        if derivatives_fn is not None and not callable(derivatives_fn):
            raise TypeError(
                f"derivatives_fn must be callable, got {type(derivatives_fn).__name__}"
            )
        self.values_fn = values_fn
        self.derivatives_fn = derivatives_fn


    def evaluate(self, parameters):
        return np.asarray(self.values_fn(parameters), dtype=float).reshape(-1)


    def derivatives(self, parameters):
        if self.derivatives_fn is None:
            raise NotImplementedError("no analytic derivative was supplied")
        return np.asarray(self.derivatives_fn(parameters), dtype=float)


    @property
    def has_derivatives(self) -> bool:
        return self.derivatives_fn is not None


    def __repr__(self) -> str:
        name = getattr(self.values_fn, "__name__", type(self.values_fn).__name__)
        return (
            f"FunctionObjective({name}, "
            f"analytic_derivatives={self.derivatives_fn is not None})"
        )


# HELPERS ===============================================================================

def as_objective(objective, derivatives=None) -> ObjectiveFunction:
    """Normalise an objective given as instance or callable.

    Parameters
    ----------
    objective : ObjectiveFunction or callable
        The objective function.
    derivatives : callable, optional
        Analytic Jacobian; only allowed together with a plain callable.

    Returns
    -------
    ObjectiveFunction
    """
    if isinstance(objective, ObjectiveFunction):
        if derivatives is not None:
            raise ValueError(
                "Pass derivatives only with a plain callable objective; "
                "override ObjectiveFunction.derivatives() instead."
            )
        return objective
    return FunctionObjective(objective, derivatives)
