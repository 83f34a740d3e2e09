#########################################################################################
##
##        calibopt example: calibrating a decay curve with a positive rate
##
##  Model:   y(t) = A exp(-k t)
##  Fit:     amplitude A and rate k > 0 from noisy observations
##
##  The rate carries a log transformation, so the solver works on log(k) and
##  can never propose a negative rate. After the fit, the local sensitivity
##  of the calibration is reported.
##
#########################################################################################

# IMPORTS ===============================================================================

import numpy as np
import matplotlib.pyplot as plt

from calibopt.opt import Calibrator, Parameter, LogTransformation


# MODEL DEFINITION ======================================================================

t = np.linspace(0.0, 6.0, 30)

def decay(p):
    return p[0] * np.exp(-p[1] * t)


# Run Example ===========================================================================

if __name__ == '__main__':

    rng = np.random.default_rng(1)
    sigma = 0.02
    data = decay([2.0, 0.7]) + sigma * rng.standard_normal(t.size)

    amplitude = Parameter("amplitude", value=1.0, bounds=(0.0, 10.0))
    rate = Parameter("rate", value=0.1, transformation=LogTransformation())

    cal = Calibrator(
        decay,
        parameters=[amplitude, rate],
        target_values=data,
        weights=np.full(t.size, 1.0 / sigma**2),
    )
    result = cal.calibrate()
    cal.display()

    sens = cal.sensitivity()
    sens.display()

    fig, ax = plt.subplots(figsize=(7, 4))
    ax.plot(t, data, "o", label="observations")
    ax.plot(t, result.values, "-", label="calibrated")
    ax.set_xlabel("t")
    ax.legend()
    ax.grid(True, alpha=0.3)

    sens.plot()
    plt.show()
