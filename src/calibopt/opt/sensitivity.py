#########################################################################################
##
##                 LOCAL SENSITIVITY AND IDENTIFIABILITY OF A CALIBRATION
##                               (opt/sensitivity.py)
##
#########################################################################################

# IMPORTS ===============================================================================

import numpy as np


__all__ = ["SensitivityResult"]


# HELPERS ===============================================================================

def _correlation(covariance, std_errors):
    n_p = covariance.shape[0]
    denom = np.outer(std_errors, std_errors)

    corr = np.zeros((n_p, n_p))
    np.divide(covariance, denom, out=corr, where=denom > 0.0)

    np.fill_diagonal(corr, 1.0)
    return corr


def _condition_number(eigenvalues):
    n_p = eigenvalues.size
    positive = eigenvalues[eigenvalues > 0.0]
    if positive.size < n_p or n_p == 0:
        return np.inf
    return float(positive[0] / positive[-1])


# CLASS =================================================================================

class SensitivityResult:
    """Local sensitivity of a calibrated parameter set.

    All statistics are derived from the weighted Jacobian of the residual
    vector ``√w (f(p) - t)`` at the best fit. Linearising there, the Fisher
    information is ``JᵀJ`` and the parameter covariance its pseudo-inverse,
    scaled by the residual variance.

    Parameters
    ----------
    jacobian : np.ndarray, shape (n_values, n_params)
        Weighted Jacobian ``∂r_k/∂θ_i``.
    param_names : list of str
        Parameter names, ordered like the Jacobian columns.
    param_values : np.ndarray, shape (n_params,)
        Parameter values at the best fit.
    residual_variance : float
        Variance of a single weighted residual. Use ``1.0`` when the weights
        already are inverse measurement variances.

    Attributes
    ----------
    fim : np.ndarray
        Fisher information ``JᵀJ / residual_variance``.
    covariance : np.ndarray
        ``pinv(fim)``.
    std_errors : np.ndarray
        ``√diag(covariance)``.
    correlation : np.ndarray
        Normalised covariance; off-diagonal entries near ``±1`` flag pairs
        of parameters that cannot be told apart by the data.
    eigenvalues : np.ndarray
        Eigenvalues of the Fisher information, descending.
    eigenvectors : np.ndarray
        Matching eigenvectors as columns.
    condition_number : float
        Ratio of largest to smallest eigenvalue; ``inf`` if any eigenvalue
        is not positive.
    """

    def __init__(self, jacobian, param_names, param_values, residual_variance=1.0):
        self.jacobian = np.asarray(jacobian, dtype=float)
        self.param_names = list(param_names)
        self.param_values = np.asarray(param_values, dtype=float)
        self.residual_variance = float(residual_variance)

        if self.jacobian.ndim != 2 or self.jacobian.shape[1] != len(self.param_names):
            raise ValueError(
                f"jacobian of shape {self.jacobian.shape} does not match "
                f"{len(self.param_names)} parameter names"
            )
        if not self.residual_variance > 0.0:
            raise ValueError("residual_variance must be > 0")

        self.fim = self.jacobian.T @ self.jacobian / self.residual_variance

        self.covariance = np.linalg.pinv(self.fim)
        self.std_errors = np.sqrt(np.maximum(np.diag(self.covariance), 0.0))
        self.correlation = _correlation(self.covariance, self.std_errors)

        eigenvalues, eigenvectors = np.linalg.eigh(self.fim)
        order = np.argsort(eigenvalues)[::-1]
        self.eigenvalues = eigenvalues[order]
        self.eigenvectors = eigenvectors[:, order]

        self.condition_number = _condition_number(self.eigenvalues)


    def correlated_pairs(self, threshold: float = 0.9) -> list:
        """Parameter pairs with ``|correlation| > threshold``.

        Returns
        -------
        list of (str, str, float)
        """
        n_p = len(self.param_names)
        return [
            (self.param_names[i], self.param_names[j], float(self.correlation[i, j]))
            for i in range(n_p)
            for j in range(i + 1, n_p)
            if abs(self.correlation[i, j]) > threshold
        ]


    # DISPLAY ===========================================================================

    def display(self) -> None:
        """Print values, standard errors and identifiability hints."""
        W = 72
        line = "=" * W

        print(line)
        print("  Sensitivity & Identifiability Analysis")
        print(line)

        print(f"  {'Parameter':<22} {'Value':>12} {'Std Error':>12} {'Rel Error':>10}")
        print("-" * W)
        for name, val, se in zip(self.param_names, self.param_values, self.std_errors):
            if abs(val) > 1e-15 and np.isfinite(se):
                rel_str = f"{se / abs(val) * 100:.2f}%"
            else:
                rel_str = "N/A"
            print(f"  {name:<22} {val:>12.4g} {se:>12.4g} {rel_str:>10}")
        print("-" * W)

        cn = self.condition_number
        if cn < 1e3:
            label = "well conditioned"
        elif cn < 1e6:
            label = "acceptable"
        else:
            label = "poor, parameters may not be identifiable"
        print(f"\n  Condition number : {cn:.3g}  ({label})")

        pairs = self.correlated_pairs()
        if pairs:
            print("  Highly correlated pairs (|r| > 0.90):")
            for a, b, r in pairs:
                print(f"    {a} <-> {b}  :  r = {r:+.3f}")
        else:
            print("  No highly correlated parameter pairs")

        print(line)


    # PLOT ==============================================================================

    def plot(self, *, figsize: tuple = (11, 4.5)):
        """Plot the correlation matrix and the eigenvalue spectrum.

        Returns
        -------
        fig : matplotlib.figure.Figure
        axes : np.ndarray of matplotlib.axes.Axes, shape (2,)
        """
        import matplotlib.pyplot as plt
        import matplotlib.colors as mcolors

        n_p = len(self.param_names)
        fig, axes = plt.subplots(1, 2, figsize=figsize)

        ax = axes[0]
        norm = mcolors.TwoSlopeNorm(vmin=-1.0, vcenter=0.0, vmax=1.0)
        im = ax.imshow(self.correlation, cmap="RdBu_r", norm=norm, aspect="auto")
        fig.colorbar(im, ax=ax, label="Correlation")
        ax.set_xticks(range(n_p))
        ax.set_yticks(range(n_p))
        ax.set_xticklabels(self.param_names, rotation=45, ha="right", fontsize=9)
        ax.set_yticklabels(self.param_names, fontsize=9)
        ax.set_title("Parameter Correlation")

        ax2 = axes[1]
        ev = self.eigenvalues
        positive = ev > 0.0
        ax2.bar(
            range(ev.size),
            np.abs(ev),
            color=["steelblue" if p else "salmon" for p in positive],
        )
        if positive.sum() > 1 and ev[positive].max() / ev[positive].min() > 100.0:
            ax2.set_yscale("log")
        ax2.set_xticks(range(ev.size))
        ax2.set_xticklabels([f"λ{i + 1}" for i in range(ev.size)], fontsize=9)
        ax2.set_ylabel("Eigenvalue magnitude")
        ax2.set_title("Fisher Information Spectrum")
        ax2.grid(True, axis="y", alpha=0.3)

        fig.suptitle("Calibration Sensitivity", fontweight="bold")
        plt.tight_layout()
        return fig, axes
