#########################################################################################
##
##                        CALIBRATION SOLVER TOOLKIT - PUBLIC API
##                                  (opt/__init__.py)
##
#########################################################################################

from .exceptions import SolverError, SolverUsageError
from .objective import ObjectiveFunction, FunctionObjective, as_objective
from .regularization import RegularizationMethod
from .derivatives import DerivativeEstimator
from .optimizer import Optimizer, OptimizationResult, SolverStatus
from .levenberg_marquardt import LevenbergMarquardt, IterationRecord
from .backends import LeastSquaresOptimizer, DifferentialEvolutionOptimizer
from .factory import (
    OptimizerFactory,
    OptimizerFactoryLevenbergMarquardt,
    OptimizerFactoryLeastSquares,
    OptimizerFactoryDifferentialEvolution,
)
from .transform import (
    ParameterTransformation,
    IdentityTransformation,
    LogTransformation,
    BoundedTransformation,
    ComponentwiseTransformation,
    TransformedObjective,
)
from .calibration import Parameter, Calibrator, CalibrationResult
from .sensitivity import SensitivityResult
from .golden_section import GoldenSectionSearch
