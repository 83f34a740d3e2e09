########################################################################################
##
##                                  TESTS FOR
##                              'opt/regularization.py'
##
########################################################################################

# IMPORTS ==============================================================================

import unittest

import numpy as np

from calibopt.opt import RegularizationMethod


# TESTS ================================================================================

class TestRegularizationMethod(unittest.TestCase):

    def setUp(self):
        self.H = np.array([[4.0, 1.0], [1.0, 0.0]])

    def test_levenberg_adds_lambda(self):
        damped = RegularizationMethod.LEVENBERG.apply(self.H, 0.5)
        np.testing.assert_allclose(damped, [[4.5, 1.0], [1.0, 0.5]])

    def test_levenberg_marquardt_scales_diagonal(self):
        damped = RegularizationMethod.LEVENBERG_MARQUARDT.apply(self.H, 0.5)
        #zero diagonal entry is replaced by lambda
        np.testing.assert_allclose(damped, [[6.0, 1.0], [1.0, 0.5]])

    def test_input_not_modified(self):
        H = self.H.copy()
        RegularizationMethod.LEVENBERG_MARQUARDT.apply(H, 2.0)
        RegularizationMethod.LEVENBERG.apply(H, 2.0)
        np.testing.assert_array_equal(H, self.H)

    def test_infinite_lambda(self):
        damped = RegularizationMethod.LEVENBERG_MARQUARDT.apply(self.H, np.inf)
        self.assertTrue(np.all(np.isinf(np.diag(damped))))
        self.assertEqual(damped[0, 1], 1.0)

    def test_parse(self):
        self.assertIs(
            RegularizationMethod.parse("levenberg"), RegularizationMethod.LEVENBERG
        )
        self.assertIs(
            RegularizationMethod.parse("Levenberg_Marquardt"),
            RegularizationMethod.LEVENBERG_MARQUARDT,
        )
        self.assertIs(
            RegularizationMethod.parse(RegularizationMethod.LEVENBERG),
            RegularizationMethod.LEVENBERG,
        )

    def test_parse_unknown(self):
        with self.assertRaises(ValueError):
            RegularizationMethod.parse("gauss_newton")
        with self.assertRaises(ValueError):
            RegularizationMethod.parse(3)
