#########################################################################################
##
##                  PARAMETER TRANSFORMATIONS (SOLVER SPACE <-> MODEL SPACE)
##                                (opt/transform.py)
##
#########################################################################################

# IMPORTS ===============================================================================

from __future__ import annotations

from typing import Sequence

import numpy as np
from scipy.special import expit, logit

from .objective import ObjectiveFunction, as_objective


__all__ = [
    "ParameterTransformation",
    "IdentityTransformation",
    "LogTransformation",
    "BoundedTransformation",
    "ComponentwiseTransformation",
    "TransformedObjective",
]


# BASE CLASS ============================================================================

class ParameterTransformation:
    """Monotone map between solver space and model space.

    The solver works on unconstrained parameters ``x``; the model sees
    ``y = to_model(x)``, which lies in an admissible region. Every component
    is mapped independently and monotonically, so the Jacobian of the map is
    diagonal and returned by :meth:`derivative`.
    """

    def to_model(self, parameters: np.ndarray) -> np.ndarray:
        """Map solver space parameters to model space."""
        raise NotImplementedError


    def to_solver(self, parameters: np.ndarray) -> np.ndarray:
        """Map model space parameters to solver space."""
        raise NotImplementedError


    def derivative(self, parameters: np.ndarray) -> np.ndarray:
        """Diagonal ``dy_i / dx_i`` at solver space ``parameters``."""
        raise NotImplementedError


class IdentityTransformation(ParameterTransformation):
    """No-op transformation."""

    def to_model(self, parameters):
        return np.array(parameters, dtype=float)


    def to_solver(self, parameters):
        return np.array(parameters, dtype=float)


    def derivative(self, parameters):
        return np.ones_like(np.asarray(parameters, dtype=float))


    def __repr__(self):
        return "IdentityTransformation()"


class LogTransformation(ParameterTransformation):
    """Positivity through ``y = exp(x) + shift``.

    Parameters
    ----------
    shift : float
        Lower limit of the model space value.
    """

    def __init__(self, shift: float = 0.0):
        self.shift = float(shift)


    def to_model(self, parameters):
        return np.exp(np.asarray(parameters, dtype=float)) + self.shift


    def to_solver(self, parameters):
        y = np.asarray(parameters, dtype=float)
        if np.any(y <= self.shift):
            raise ValueError(
                f"LogTransformation requires values > {self.shift}, got {y}"
            )
        return np.log(y - self.shift)


    def derivative(self, parameters):
        return np.exp(np.asarray(parameters, dtype=float))


    def __repr__(self):
        return f"LogTransformation(shift={self.shift})"


class BoundedTransformation(ParameterTransformation):
    """Box constraints ``lower < y < upper`` through a logistic map.

    Components with only one finite bound use an exponential map towards
    that bound, components without finite bounds are left unchanged.

    Parameters
    ----------
    lower, upper : float or array_like
        Per component bounds, scalars are broadcast. ``±inf`` means
        unbounded on that side.

    Example
    -------
    .. code-block:: python

        t = BoundedTransformation(lower=[0.0, -1.0], upper=[1.0, np.inf])
        t.to_model([0.0, 0.0])    # array([0.5, 0. ])
    """

    def __init__(self, lower: float | Sequence[float] = -np.inf, upper: float | Sequence[float] = np.inf):
        lower, upper = np.broadcast_arrays(
            np.asarray(lower, dtype=float), np.asarray(upper, dtype=float)
        )
        if np.any(lower >= upper):
            raise ValueError("every lower bound must be strictly below its upper bound")

        self.lower = lower.copy()
        self.upper = upper.copy()

        lo_fin = np.isfinite(self.lower)
        hi_fin = np.isfinite(self.upper)

        self._both = lo_fin & hi_fin
        self._lower_only = lo_fin & ~hi_fin
        self._upper_only = ~lo_fin & hi_fin


    def _masks(self, shape):
        return (
            np.broadcast_to(self._both, shape),
            np.broadcast_to(self._lower_only, shape),
            np.broadcast_to(self._upper_only, shape),
            np.broadcast_to(self.lower, shape),
            np.broadcast_to(self.upper, shape),
        )


    def to_model(self, parameters):
        x = np.array(parameters, dtype=float)
        both, lower_only, upper_only, lo, hi = self._masks(x.shape)

        y = x.copy()
        y[both] = lo[both] + (hi[both] - lo[both]) * expit(x[both])
        y[lower_only] = lo[lower_only] + np.exp(x[lower_only])
        y[upper_only] = hi[upper_only] - np.exp(-x[upper_only])
        return y


    def to_solver(self, parameters):
        y = np.array(parameters, dtype=float)
        both, lower_only, upper_only, lo, hi = self._masks(y.shape)

        outside = (np.isfinite(lo) & (y <= lo)) | (np.isfinite(hi) & (y >= hi))
        if np.any(outside):
            raise ValueError(
                f"values {y[outside]} are not strictly inside their bounds"
            )

        x = y.copy()
        x[both] = logit((y[both] - lo[both]) / (hi[both] - lo[both]))
        x[lower_only] = np.log(y[lower_only] - lo[lower_only])
        x[upper_only] = -np.log(hi[upper_only] - y[upper_only])
        return x


    def derivative(self, parameters):
        x = np.array(parameters, dtype=float)
        both, lower_only, upper_only, lo, hi = self._masks(x.shape)

        d = np.ones_like(x)
        s = expit(x[both])
        d[both] = (hi[both] - lo[both]) * s * (1.0 - s)
        d[lower_only] = np.exp(x[lower_only])
        d[upper_only] = np.exp(-x[upper_only])
        return d


    def __repr__(self):
        return f"BoundedTransformation(lower={self.lower}, upper={self.upper})"


class ComponentwiseTransformation(ParameterTransformation):
    """One transformation per parameter component.

    Parameters
    ----------
    transformations : sequence of ParameterTransformation or None
        ``None`` entries are treated as identity.
    """

    def __init__(self, transformations: Sequence[ParameterTransformation | None]):
        self.transformations = [
            IdentityTransformation() if t is None else t for t in transformations
        ]
        if not self.transformations:
            raise ValueError("at least one transformation is required")


    def _apply(self, method, parameters):
        arr = np.asarray(parameters, dtype=float).reshape(-1)
        if arr.size != len(self.transformations):
            raise ValueError(
                f"expected {len(self.transformations)} parameters, got {arr.size}"
            )
        return np.array([
            float(np.asarray(getattr(t, method)(arr[i:i + 1])).reshape(-1)[0])
            for i, t in enumerate(self.transformations)
        ])


    def to_model(self, parameters):
        return self._apply("to_model", parameters)


    def to_solver(self, parameters):
        return self._apply("to_solver", parameters)


    def derivative(self, parameters):
        return self._apply("derivative", parameters)


    def __repr__(self):
        return f"ComponentwiseTransformation({self.transformations})"


# OBJECTIVE ADAPTER =====================================================================

class TransformedObjective(ObjectiveFunction):
    """Objective function evaluated through a parameter transformation.

    The wrapped objective receives model space parameters, the solver sees
    solver space parameters. An analytic derivative of the wrapped objective
    is carried over by the chain rule::

        dF/dx_i = dy_i/dx_i * dF/dy_i

    Parameters
    ----------
    objective : ObjectiveFunction or callable
        Model space objective.
    transformation : ParameterTransformation
        Solver to model space map.
    """

    def __init__(self, objective, transformation: ParameterTransformation):
        self.objective = as_objective(objective)
        self.transformation = transformation


    def evaluate(self, parameters):
        return self.objective.evaluate(self.transformation.to_model(parameters))


    def derivatives(self, parameters):
        x = np.asarray(parameters, dtype=float).reshape(-1)
        jac = np.asarray(
            self.objective.derivatives(self.transformation.to_model(x)), dtype=float
        )
        return self.transformation.derivative(x)[:, None] * jac


    @property
    def has_derivatives(self) -> bool:
        return self.objective.has_derivatives


    def __repr__(self):
        return f"TransformedObjective({self.objective!r}, {self.transformation!r})"
