########################################################################################
##
##                                  TESTS FOR
##                                'opt/transform.py'
##
########################################################################################

# IMPORTS ==============================================================================

import numpy as np
import pytest

from calibopt.opt import (
    BoundedTransformation,
    ComponentwiseTransformation,
    FunctionObjective,
    IdentityTransformation,
    LevenbergMarquardt,
    LogTransformation,
    TransformedObjective,
)


# TESTS ================================================================================

class TestScalarTransformations:

    @pytest.mark.parametrize(
        "transformation, model",
        [
            (IdentityTransformation(), [-3.0, 0.0, 2.5]),
            (LogTransformation(), [0.1, 1.0, 40.0]),
            (LogTransformation(shift=-2.0), [-1.5, 0.0, 3.0]),
            (BoundedTransformation(-1.0, 4.0), [-0.9, 0.0, 3.99]),
            (BoundedTransformation(lower=2.0), [2.1, 5.0, 100.0]),
            (BoundedTransformation(upper=2.0), [-100.0, 0.0, 1.9]),
        ],
    )
    def test_inverse_pair(self, transformation, model):
        y = np.array(model)
        x = transformation.to_solver(y)
        np.testing.assert_allclose(transformation.to_model(x), y, rtol=1e-10)

    @pytest.mark.parametrize(
        "transformation",
        [
            LogTransformation(),
            BoundedTransformation(-1.0, 4.0),
            BoundedTransformation(lower=2.0),
            BoundedTransformation(upper=2.0),
        ],
    )
    def test_monotone_and_inside_region(self, transformation):
        x = np.linspace(-20.0, 20.0, 101)
        y = transformation.to_model(x)
        assert np.all(np.diff(y) >= 0.0)
        assert np.all(transformation.derivative(x) >= 0.0)

    @pytest.mark.parametrize(
        "transformation",
        [
            LogTransformation(),
            BoundedTransformation(-1.0, 4.0),
            BoundedTransformation(lower=2.0),
            BoundedTransformation(upper=2.0),
        ],
    )
    def test_derivative_matches_finite_difference(self, transformation):
        x = np.array([-1.3, 0.0, 0.7])
        h = 1e-6
        fd = (transformation.to_model(x + h) - transformation.to_model(x - h)) / (2 * h)
        np.testing.assert_allclose(transformation.derivative(x), fd, rtol=1e-6)

    def test_log_rejects_non_positive(self):
        with pytest.raises(ValueError):
            LogTransformation().to_solver(np.array([1.0, 0.0]))

    def test_bounded_rejects_outside(self):
        with pytest.raises(ValueError):
            BoundedTransformation(0.0, 1.0).to_solver(np.array([1.0]))

    def test_bounded_invalid_bounds(self):
        with pytest.raises(ValueError):
            BoundedTransformation(1.0, 1.0)

    def test_bounded_per_component(self):
        t = BoundedTransformation(lower=[0.0, -np.inf], upper=[1.0, np.inf])
        np.testing.assert_allclose(t.to_model([0.0, 7.0]), [0.5, 7.0])


class TestComponentwise:

    def test_mixed(self):
        t = ComponentwiseTransformation([None, LogTransformation(), BoundedTransformation(0.0, 2.0)])
        x = np.array([3.0, 0.0, 0.0])
        np.testing.assert_allclose(t.to_model(x), [3.0, 1.0, 1.0])
        np.testing.assert_allclose(t.to_solver(t.to_model(x)), x, atol=1e-12)
        np.testing.assert_allclose(t.derivative(x), [1.0, 1.0, 0.5])

    def test_length_checked(self):
        t = ComponentwiseTransformation([None, LogTransformation()])
        with pytest.raises(ValueError):
            t.to_model(np.zeros(3))

    def test_empty(self):
        with pytest.raises(ValueError):
            ComponentwiseTransformation([])


class TestTransformedObjective:

    def test_evaluate_in_model_space(self):
        obj = TransformedObjective(lambda y: y * 2.0, LogTransformation())
        np.testing.assert_allclose(obj.evaluate(np.array([0.0, np.log(3.0)])), [2.0, 6.0])

    def test_chain_rule(self):
        model = FunctionObjective(
            lambda y: np.array([y[0] * y[1], y[1]]),
            lambda y: np.array([[y[1], 0.0], [y[0], 1.0]]),
        )
        obj = TransformedObjective(model, LogTransformation())
        assert obj.has_derivatives

        x = np.array([0.2, -0.4])
        y = np.exp(x)
        expected = np.array([[y[1] * y[0], 0.0], [y[0] * y[1], y[1]]])
        np.testing.assert_allclose(obj.derivatives(x), expected)

    def test_no_derivatives_passthrough(self):
        obj = TransformedObjective(lambda y: y, IdentityTransformation())
        assert not obj.has_derivatives

    def test_positivity_through_solver(self):
        #best fit of y -> (y, y) to targets (-1, 2) with y > 0 is y = 0.5
        obj = TransformedObjective(lambda y: np.array([y[0], y[0]]), LogTransformation())
        solver = LevenbergMarquardt(obj, [0.0], [-1.0, 2.0], error_tolerance=1e-12)
        solver.run()

        y = LogTransformation().to_model(solver.best_fit_parameters)
        assert y[0] > 0.0
        np.testing.assert_allclose(y, [0.5], rtol=1e-5)
