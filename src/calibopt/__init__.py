from importlib import metadata

try:
    __version__ = metadata.version("calibopt")
except Exception:
    __version__ = "unknown"

from .utils.logger import LoggerManager
from .opt import (
    ObjectiveFunction,
    LevenbergMarquardt,
    RegularizationMethod,
    SolverError,
    SolverUsageError,
    SolverStatus,
    Calibrator,
    Parameter,
)
