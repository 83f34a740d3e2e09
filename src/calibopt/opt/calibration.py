#########################################################################################
##
##                      CALIBRATION DRIVER (PARAMETERS, TARGETS, BACKEND)
##                               (opt/calibration.py)
##
#########################################################################################

# IMPORTS ===============================================================================

from __future__ import annotations

import os
import warnings
from dataclasses import dataclass, field
from typing import Callable, Sequence

import numpy as np

from ..utils.logger import LoggerManager
from .derivatives import DerivativeEstimator
from .objective import ObjectiveFunction, as_objective
from .optimizer import Optimizer, SolverStatus
from .factory import OptimizerFactory, OptimizerFactoryLevenbergMarquardt
from .transform import (
    BoundedTransformation,
    ComponentwiseTransformation,
    ParameterTransformation,
    TransformedObjective,
)


__all__ = [
    "Parameter",
    "Calibrator",
    "CalibrationResult",
]

logger = LoggerManager().get_logger(__name__)


# PARAMETER DECLARATION =================================================================

class Parameter:
    """Named calibration parameter.

    The value is held in model space, the space the model function sees.
    An optional transformation maps the unconstrained solver space onto the
    admissible model space region, e.g. a
    :class:`~calibopt.opt.transform.LogTransformation` to keep a rate
    positive.

    Parameters
    ----------
    name : str
        Parameter identifier.
    value : float
        Initial model space value.
    bounds : tuple[float, float]
        Lower and upper bound in model space. Passed to backends that
        support box bounds.
    transformation : ParameterTransformation, optional
        Solver space to model space map.

    Example
    -------
    .. code-block:: python

        k = Parameter("k", value=0.5, transformation=LogTransformation())
        k()              # 0.5
        k.solver_value   # log(0.5)
    """

    def __init__(
        self,
        name: str,
        value: float = 1.0,
        bounds: tuple[float, float] = (-np.inf, np.inf),
        transformation: ParameterTransformation | None = None,
    ):
        self.name = name
        self.transformation = transformation

        lo, hi = bounds
        if np.isfinite(lo) and np.isfinite(hi) and lo > hi:
            raise ValueError(
                f"Parameter '{name}': lower bound {lo} > upper bound {hi}"
            )
        self.bounds = (float(lo), float(hi))

        if np.isfinite(lo) and float(value) < lo:
            warnings.warn(
                f"Parameter '{name}': initial value {value} < lower bound {lo}",
                UserWarning,
                stacklevel=2,
            )
        if np.isfinite(hi) and float(value) > hi:
            warnings.warn(
                f"Parameter '{name}': initial value {value} > upper bound {hi}",
                UserWarning,
                stacklevel=2,
            )

        self.value = float(value)


    def __call__(self) -> float:
        """Return the model space value."""
        return self.value


    def _map(self, method, value):
        if self.transformation is None:
            return float(value)
        return float(np.asarray(getattr(self.transformation, method)(np.array([value]))).reshape(-1)[0])


    @property
    def solver_value(self) -> float:
        """Current value in solver space."""
        return self._map("to_solver", self.value)


    @solver_value.setter
    def solver_value(self, x: float) -> None:
        self.value = self._map("to_model", x)


    @property
    def solver_bounds(self) -> tuple[float, float]:
        """Bounds mapped into solver space; unbounded where they cannot be mapped."""
        lo, hi = self.bounds
        if self.transformation is None:
            return lo, hi

        def _mapped(b, default):
            if not np.isfinite(b):
                return default
            try:
                return self._map("to_solver", b)
            except ValueError:
                return default

        return _mapped(lo, -np.inf), _mapped(hi, np.inf)


    def __repr__(self) -> str:
        return (
            f"Parameter(name={self.name!r}, value={self.value}, "
            f"bounds={self.bounds}, transformation={self.transformation!r})"
        )


# CALIBRATION RESULT ====================================================================

@dataclass
class CalibrationResult:
    """Calibrated parameters in model space together with the fit quality."""

    parameters: dict
    x: np.ndarray
    rms_error: float
    iterations: int
    status: SolverStatus
    success: bool
    message: str = ""
    values: np.ndarray | None = field(default=None, repr=False)


    def __getitem__(self, name: str) -> float:
        return self.parameters[name]


    def __repr__(self) -> str:
        state = "SUCCESS" if self.success else "FAILED"
        return (
            f"CalibrationResult({state}, status={self.status.value}, "
            f"rms_error={self.rms_error:.4g}, iterations={self.iterations}, "
            f"parameters={self.parameters})"
        )


# CALIBRATOR ============================================================================

class Calibrator:
    """Fits model parameters to target values through an optimizer factory.

    Builds the solver space objective from the model function and the
    parameter transformations, requests an optimizer from the factory, runs
    it and writes the calibrated values back into the :class:`Parameter`
    objects.

    Parameters
    ----------
    model : ObjectiveFunction or callable
        ``model_space_parameters -> values``.
    parameters : list[Parameter]
        Parameters in the order the model expects them.
    target_values : array_like
        Values the model should reproduce.
    weights : array_like, optional
        Non-negative weights per target value.
    optimizer_factory : OptimizerFactory, optional
        Backend selection. Defaults to Levenberg-Marquardt with
        ``min(2 * cpu_count, n_parameters)`` worker threads.
    parameter_steps : array_like, optional
        Finite difference shifts in solver space.

    Example
    -------
    .. code-block:: python

        t = np.linspace(0.0, 5.0, 20)
        data = 2.0 * np.exp(-0.7 * t)

        amp = Parameter("amplitude", value=1.0)
        rate = Parameter("rate", value=0.1, transformation=LogTransformation())

        cal = Calibrator(
            lambda p: p[0] * np.exp(-p[1] * t),
            parameters=[amp, rate],
            target_values=data,
        )
        result = cal.calibrate()
        result["rate"]     # ≈ 0.7
    """

    def __init__(
        self,
        model: ObjectiveFunction | Callable,
        parameters: Sequence[Parameter],
        target_values: Sequence[float],
        weights: Sequence[float] | None = None,
        optimizer_factory: OptimizerFactory | None = None,
        parameter_steps: Sequence[float] | None = None,
    ):
        self.model = as_objective(model)
        self.parameters = list(parameters)

        if not self.parameters:
            raise ValueError("at least one parameter is required")

        names = [p.name for p in self.parameters]
        if len(set(names)) != len(names):
            raise ValueError(f"parameter names must be unique, got {names}")

        self.target_values = np.asarray(target_values, dtype=float).reshape(-1)
        self.weights = None if weights is None else np.asarray(weights, dtype=float).reshape(-1)
        self.parameter_steps = parameter_steps

        if optimizer_factory is None:
            threads = min(2 * (os.cpu_count() or 1), len(self.parameters))
            optimizer_factory = OptimizerFactoryLevenbergMarquardt(number_of_threads=threads)
        self.optimizer_factory = optimizer_factory

        self.optimizer: Optimizer | None = None
        self.result: CalibrationResult | None = None


    @property
    def transformation(self) -> ParameterTransformation | None:
        """Combined solver to model space map, ``None`` if no parameter has one."""
        if all(p.transformation is None for p in self.parameters):
            return None
        return ComponentwiseTransformation([p.transformation for p in self.parameters])


    def objective(self) -> ObjectiveFunction:
        """Objective function in solver space."""
        transformation = self.transformation
        if transformation is None:
            return self.model
        return TransformedObjective(self.model, transformation)


    def calibrate(self) -> CalibrationResult:
        """Run the calibration and update the parameter values.

        Levenberg-Marquardt has no box constraints, so bounded parameters
        without a transformation get a :class:`BoundedTransformation` before
        the run.

        Returns
        -------
        CalibrationResult
        """
        if isinstance(self.optimizer_factory, OptimizerFactoryLevenbergMarquardt):
            self._project_bounds()

        x0 = np.array([p.solver_value for p in self.parameters])
        lower = np.array([p.solver_bounds[0] for p in self.parameters])
        upper = np.array([p.solver_bounds[1] for p in self.parameters])

        bounded = np.any(np.isfinite(lower)) or np.any(np.isfinite(upper))

        self.optimizer = self.optimizer_factory.get_optimizer(
            self.objective(),
            x0,
            self.target_values,
            lower_bound=lower if bounded else None,
            upper_bound=upper if bounded else None,
            parameter_steps=self.parameter_steps,
            weights=self.weights,
        )

        logger.info(
            "calibrating %d parameters against %d targets with %s",
            len(self.parameters),
            self.target_values.size,
            type(self.optimizer).__name__,
        )

        self.optimizer.run()
        opt_result = self.optimizer.result()

        for p, x in zip(self.parameters, opt_result.x):
            p.solver_value = x

        model_values = np.array([p() for p in self.parameters])

        self.result = CalibrationResult(
            parameters={p.name: p() for p in self.parameters},
            x=model_values,
            rms_error=opt_result.rms_error,
            iterations=opt_result.iterations,
            status=opt_result.status,
            success=opt_result.success,
            message=opt_result.message,
            values=np.asarray(self.model.evaluate(model_values.copy()), dtype=float),
        )

        if not self.result.success:
            logger.warning(
                "calibration ended with status '%s', rms error %.6g",
                self.result.status.value,
                self.result.rms_error,
            )

        return self.result


    def _project_bounds(self) -> None:
        for p in self.parameters:
            lo, hi = p.bounds
            if p.transformation is not None or not (np.isfinite(lo) or np.isfinite(hi)):
                continue

            #the logistic and exponential maps only reach the open interval
            if np.isfinite(lo) and np.isfinite(hi):
                margin = 1e-6 * (hi - lo)
            else:
                margin = 1e-6 * max(1.0, abs(lo if np.isfinite(lo) else hi))
            value = min(max(p.value, lo + margin), hi - margin)
            if value != p.value:
                warnings.warn(
                    f"Parameter '{p.name}': initial value {p.value} moved to {value} "
                    f"to lie strictly inside its bounds",
                    UserWarning,
                    stacklevel=3,
                )
                p.value = value

            p.transformation = BoundedTransformation(lo, hi)
            logger.info(
                "parameter '%s' bounded to [%g, %g] through BoundedTransformation",
                p.name,
                lo,
                hi,
            )


    # DIAGNOSTICS -----------------------------------------------------------------------

    def sensitivity(self, x: Sequence[float] | None = None, *, scale_by_residuals: bool = False):
        """Local sensitivity of the weighted residuals at ``x``.

        Parameters
        ----------
        x : array_like, optional
            Model space parameter vector; defaults to the calibrated values.
        scale_by_residuals : bool
            Scale the covariance by the residual variance
            ``Σ w r² / (M - N)`` instead of assuming unit variance.

        Returns
        -------
        SensitivityResult
        """
        from .sensitivity import SensitivityResult

        if x is None:
            if self.result is None:
                raise ValueError("No x provided and no calibration result available.")
            x_arr = self.result.x.copy()
        else:
            x_arr = np.asarray(x, dtype=float).reshape(-1)

        sqrt_w = np.ones_like(self.target_values) if self.weights is None else np.sqrt(self.weights)

        values = np.asarray(self.model.evaluate(x_arr.copy()), dtype=float).reshape(-1)
        jac = DerivativeEstimator().jacobian(self.model, x_arr, values)
        residual_jacobian = (jac * sqrt_w).T

        residual_variance = 1.0
        dof = self.target_values.size - x_arr.size
        if scale_by_residuals and dof > 0:
            r = sqrt_w * (values - self.target_values)
            residual_variance = max(float(r @ r) / dof, np.finfo(float).tiny)

        return SensitivityResult(
            jacobian=residual_jacobian,
            param_names=[p.name for p in self.parameters],
            param_values=x_arr,
            residual_variance=residual_variance,
        )


    def display(self) -> None:
        """Print a summary table of all parameters and the fit quality."""
        print("=" * 60)
        print("Calibration Results")
        print("=" * 60)

        for p in self.parameters:
            lo, hi = p.bounds
            lo_s = f"{lo:.4g}" if lo != -np.inf else "-inf"
            hi_s = f"{hi:.4g}" if hi != np.inf else "inf"
            bounds_s = f"  [{lo_s}, {hi_s}]" if lo != -np.inf or hi != np.inf else ""
            if p.transformation is not None:
                print(f"  {p.name:32s}  x={p.solver_value:.6g}  ->  {p():.6g}{bounds_s}")
            else:
                print(f"  {p.name:32s}  = {p():.6g}{bounds_s}")

        if self.result is not None:
            print("-" * 40)
            print(f"  status     : {self.result.status.value}")
            print(f"  rms error  : {self.result.rms_error:.6g}")
            print(f"  iterations : {self.result.iterations}")

        print("=" * 60)
