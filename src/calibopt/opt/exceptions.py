#########################################################################################
##
##                                SOLVER EXCEPTIONS
##                               (opt/exceptions.py)
##
#########################################################################################

__all__ = ["SolverError", "SolverUsageError"]


class SolverError(Exception):
    """Fatal, non-recoverable failure while evaluating an objective function.

    Raised by objective functions to signal a problem that retrying cannot
    fix, e.g. malformed market data or an inconsistent model configuration.
    The solver never catches it; it propagates out of ``run()`` unchanged.
    Numerical trouble (rejected points, singular systems) is *not* reported
    through this exception.
    """


class SolverUsageError(RuntimeError):
    """Raised when a solver is used in a way its lifecycle does not allow,
    e.g. changing its configuration after ``run()`` has been called.
    """
