########################################################################################
##
##                                  TESTS FOR
##                               'opt/sensitivity.py'
##
########################################################################################

# IMPORTS ==============================================================================

import unittest

import numpy as np
import pytest

from calibopt.opt import SensitivityResult


# HELPERS ==============================================================================

def _result(jacobian, values=None, **kwargs):
    jac = np.asarray(jacobian, dtype=float)
    n = jac.shape[1]
    names = [f"p{i}" for i in range(n)]
    if values is None:
        values = np.full(n, 2.0)
    return SensitivityResult(jacobian=jac, param_names=names, param_values=values, **kwargs)


# TESTS ================================================================================

class TestSensitivityResultConstruction(unittest.TestCase):
    """SensitivityResult built from a known Jacobian."""

    def test_identity_jacobian(self):
        r = _result(np.eye(3))
        np.testing.assert_allclose(r.fim, np.eye(3))
        np.testing.assert_allclose(r.covariance, np.eye(3), atol=1e-12)
        np.testing.assert_allclose(r.std_errors, np.ones(3), atol=1e-12)
        np.testing.assert_allclose(r.correlation, np.eye(3), atol=1e-12)
        self.assertAlmostEqual(r.condition_number, 1.0)

    def test_scaled_columns(self):
        r = _result(np.diag([2.0, 0.5]))
        np.testing.assert_allclose(r.std_errors, [0.5, 2.0])
        np.testing.assert_allclose(r.eigenvalues, [4.0, 0.25])
        self.assertAlmostEqual(r.condition_number, 16.0)

    def test_residual_variance_scales_covariance(self):
        r = _result(np.eye(2), residual_variance=4.0)
        np.testing.assert_allclose(r.std_errors, [2.0, 2.0])

    def test_rank_deficient(self):
        #two identical columns carry the same information
        r = _result([[1.0, 1.0], [2.0, 2.0], [3.0, 3.0]])
        self.assertGreater(r.condition_number, 1e12)
        self.assertTrue(np.all(np.isfinite(r.covariance)))
        np.testing.assert_allclose(np.diag(r.correlation), [1.0, 1.0])

    def test_correlated_pairs(self):
        r = _result([[1.0, 1.0], [1.0, 1.01], [1.0, 0.99]])
        pairs = r.correlated_pairs()
        self.assertEqual(len(pairs), 1)
        self.assertEqual(pairs[0][:2], ("p0", "p1"))
        self.assertLess(pairs[0][2], -0.9)

    def test_eigenvalues_descending(self):
        r = _result(np.array([[1.0, 0.0, 0.0], [0.0, 3.0, 0.0], [0.0, 0.0, 2.0]]))
        self.assertTrue(np.all(np.diff(r.eigenvalues) <= 0.0))

    def test_shape_mismatch(self):
        with self.assertRaises(ValueError):
            SensitivityResult(np.eye(2), ["a"], [1.0])

    def test_invalid_residual_variance(self):
        with self.assertRaises(ValueError):
            _result(np.eye(2), residual_variance=0.0)


class TestSensitivityDisplay:

    def test_display(self, capsys):
        _result([[1.0, 1.0], [1.0, 1.01], [1.0, 0.99]]).display()
        out = capsys.readouterr().out
        assert "Sensitivity & Identifiability Analysis" in out
        assert "p0 <-> p1" in out
        assert "Condition number" in out

    def test_display_zero_value(self, capsys):
        _result(np.eye(2), values=np.zeros(2)).display()
        assert "N/A" in capsys.readouterr().out

    def test_plot(self):
        matplotlib = pytest.importorskip("matplotlib")
        matplotlib.use("Agg")
        import matplotlib.pyplot as plt

        fig, axes = _result(np.diag([1.0, 1e3])).plot()
        assert len(axes) == 2
        plt.close(fig)
