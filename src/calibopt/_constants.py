#########################################################################################
##
##                              LIBRARY WIDE DEFAULTS
##                                 (_constants.py)
##
#########################################################################################

# DAMPING ===============================================================================

#initial Levenberg-Marquardt damping factor
DEFAULT_LAMBDA = 1e-3

#damping is divided by this after an accepted step
DEFAULT_LAMBDA_DIVISOR = 3.0

#damping is multiplied by this after a rejected step
DEFAULT_LAMBDA_MULTIPLICATOR = 2.0

#damping escalation when the damped normal equations cannot be solved
LAMBDA_SINGULAR_ESCALATION = 16.0


# TERMINATION ===========================================================================

DEFAULT_MAX_ITERATION = 100

#zero means iterate to the numerical limit
DEFAULT_ERROR_TOLERANCE = 0.0


# DERIVATIVES ===========================================================================

DEFAULT_NUMBER_OF_THREADS = 1

#adaptive forward difference step is (|p| + 1) * FINITE_DIFFERENCE_RELATIVE_STEP
FINITE_DIFFERENCE_RELATIVE_STEP = 1e-8


# LOGGING ===============================================================================

LOG_ROOT_NAME = "calibopt"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
