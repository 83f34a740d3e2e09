#########################################################################################
##
##              calibopt example: small linear system and warm restart
##
##  Model:   f(p) = (p1, 2 p0 + p1)
##  Target:  (5, 10), solution p = (2.5, 5)
##
##  The converged solver is then cloned with slightly shifted targets and
##  started from its own best fit, as is done when a calibration is repeated
##  for a market that moved only a little.
##
#########################################################################################

# IMPORTS ===============================================================================

import logging

import numpy as np

from calibopt import LoggerManager
from calibopt.opt import LevenbergMarquardt


# MODEL DEFINITION ======================================================================

def linear(p):
    return np.array([p[1], 2.0 * p[0] + p[1]])


# Run Example ===========================================================================

if __name__ == '__main__':

    # per-iteration solver output
    LoggerManager().set_level(logging.DEBUG)

    solver = LevenbergMarquardt(
        linear,
        initial_parameters=[0.0, 0.0],
        target_values=[5.0, 10.0],
        max_iteration=100,
    )
    solver.run()
    print(solver.result())

    # warm restart with new targets
    LoggerManager().set_level(logging.INFO)

    solver2 = solver.get_clone_with_modified_target_values([5.1, 10.2])
    solver2.run()
    print(solver2.result())
