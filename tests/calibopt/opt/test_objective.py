########################################################################################
##
##                                  TESTS FOR
##                                'opt/objective.py'
##
########################################################################################

# IMPORTS ==============================================================================

import numpy as np
import pytest

from calibopt.opt import FunctionObjective, ObjectiveFunction, as_objective


# HELPERS ==============================================================================

class _Linear(ObjectiveFunction):

    def evaluate(self, parameters):
        return np.array([parameters[1], 2.0 * parameters[0] + parameters[1]])


class _LinearWithDerivative(_Linear):

    def derivatives(self, parameters):
        return np.array([[0.0, 2.0], [1.0, 1.0]])


# TESTS ================================================================================

class TestObjectiveFunction:

    def test_base_not_implemented(self):
        with pytest.raises(NotImplementedError):
            ObjectiveFunction().evaluate(np.zeros(2))

    def test_has_derivatives_detects_override(self):
        assert not _Linear().has_derivatives
        assert _LinearWithDerivative().has_derivatives

    def test_call_evaluates(self):
        np.testing.assert_array_equal(_Linear()(np.array([1.0, 2.0])), [2.0, 4.0])


class TestFunctionObjective:

    def test_values_as_float_vector(self):
        obj = FunctionObjective(lambda p: [[1, 2], [3, 4]])
        out = obj.evaluate(np.zeros(1))
        assert out.dtype == float
        np.testing.assert_array_equal(out, [1.0, 2.0, 3.0, 4.0])

    def test_derivatives(self):
        obj = FunctionObjective(lambda p: p, lambda p: np.eye(p.size))
        assert obj.has_derivatives
        np.testing.assert_array_equal(obj.derivatives(np.zeros(2)), np.eye(2))

    def test_no_derivatives(self):
        obj = FunctionObjective(lambda p: p)
        assert not obj.has_derivatives
        with pytest.raises(NotImplementedError):
            obj.derivatives(np.zeros(2))

    def test_type_checks(self):
        with pytest.raises(TypeError):
            FunctionObjective(3.0)
        with pytest.raises(TypeError):
            FunctionObjective(lambda p: p, derivatives_fn="jac")

    def test_repr(self):
        def model(p):
            return p
        assert "model" in repr(FunctionObjective(model))


class TestAsObjective:

    def test_instance_passthrough(self):
        obj = _Linear()
        assert as_objective(obj) is obj

    def test_callable_wrapped(self):
        obj = as_objective(lambda p: p, lambda p: np.eye(2))
        assert isinstance(obj, FunctionObjective)
        assert obj.has_derivatives

    def test_instance_with_derivatives_rejected(self):
        with pytest.raises(ValueError):
            as_objective(_Linear(), lambda p: np.eye(2))
