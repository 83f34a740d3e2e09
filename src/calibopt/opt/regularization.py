#########################################################################################
##
##                      REGULARIZATION OF THE APPROXIMATE HESSIAN
##                             (opt/regularization.py)
##
#########################################################################################

# IMPORTS ===============================================================================

from enum import Enum

import numpy as np


# ENUM ==================================================================================

class RegularizationMethod(Enum):
    """How the damping factor ``λ`` enters the diagonal of ``JᵀWJ``.

    LEVENBERG
        Additive, ``H_ii + λ``. Preferable when the parameters are already
        normalised to similar magnitudes.
    LEVENBERG_MARQUARDT
        Multiplicative, ``H_ii (1 + λ)``, or ``λ`` where ``H_ii`` is exactly
        zero so that a parameter without local sensitivity does not make the
        system structurally singular. Equalises the step size across
        parameters of very different scale.
    """

    LEVENBERG = "levenberg"
    LEVENBERG_MARQUARDT = "levenberg_marquardt"


    @classmethod
    def parse(cls, method):
        """Accept an enum member or its (case insensitive) name."""
        if isinstance(method, cls):
            return method
        if isinstance(method, str):
            key = method.strip().upper()
            if key in cls.__members__:
                return cls[key]
        raise ValueError(
            f"Unknown regularization method {method!r}; "
            f"expected one of {list(cls.__members__)}"
        )


    def apply(self, hessian, lambda_):
        """Return a damped copy of the approximate Hessian.

        Parameters
        ----------
        hessian : np.ndarray
            symmetric matrix ``JᵀWJ``
        lambda_ : float
            damping factor

        Returns
        -------
        np.ndarray
        """
        damped = np.array(hessian, dtype=float, copy=True)
        diag = np.diag(damped).copy()

        if self is RegularizationMethod.LEVENBERG:
            diag = diag + lambda_
        else:
            with np.errstate(invalid="ignore", over="ignore"):
                diag = np.where(diag == 0.0, lambda_, diag * (1.0 + lambda_))

        np.fill_diagonal(damped, diag)
        return damped
