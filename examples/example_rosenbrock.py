#########################################################################################
##
##             calibopt example: Rosenbrock valley with several backends
##
##  Model:   f(p) = (10 (p1 - p0²), 1 - p0),   target (0, 0)
##  Minimum: p = (1, 1)
##
##  The same problem is handed to every optimizer factory. The calling code
##  does not change, only the factory does.
##
#########################################################################################

# IMPORTS ===============================================================================

import numpy as np
import matplotlib.pyplot as plt

from calibopt.opt import (
    OptimizerFactoryLevenbergMarquardt,
    OptimizerFactoryLeastSquares,
    OptimizerFactoryDifferentialEvolution,
)


# MODEL DEFINITION ======================================================================

def rosenbrock(p):
    return np.array([10.0 * (p[1] - p[0] * p[0]), 1.0 - p[0]])


factories = {
    "Levenberg-Marquardt": OptimizerFactoryLevenbergMarquardt(number_of_threads=2),
    "least_squares (trf)": OptimizerFactoryLeastSquares(),
    "differential evolution": OptimizerFactoryDifferentialEvolution(seed=42),
}


# Run Example ===========================================================================

if __name__ == '__main__':

    lm = None
    for name, factory in factories.items():
        optimizer = factory.get_optimizer(
            rosenbrock,
            [-1.2, 1.0],
            [0.0, 0.0],
            lower_bound=[-2.0, -2.0],
            upper_bound=[2.0, 2.0],
        )
        optimizer.run()
        print(f"{name:24s} {optimizer.result()}")

        if lm is None:
            lm = optimizer

    # convergence history of the damped Gauss-Newton run
    it = [rec.iteration for rec in lm.history]
    rms = [max(rec.rms_error, 1e-18) for rec in lm.history]
    lam = [rec.lambda_ for rec in lm.history]

    fig, ax = plt.subplots(figsize=(7, 4))
    ax.semilogy(it, rms, label="RMS error")
    ax.semilogy(it, lam, "--", label="λ")
    ax.set_xlabel("Iteration")
    ax.legend()
    ax.grid(True, alpha=0.3)
    ax.set_title("Levenberg-Marquardt on the Rosenbrock valley")
    plt.tight_layout()
    plt.show()
