########################################################################################
##
##                                  TESTS FOR
##                        'opt/factory.py' and 'opt/backends.py'
##
########################################################################################

# IMPORTS ==============================================================================

import math
from concurrent.futures import ThreadPoolExecutor

import numpy as np
import pytest
from scipy.optimize import OptimizeResult

import calibopt.opt.backends as backends
from calibopt.opt import (
    DifferentialEvolutionOptimizer,
    LeastSquaresOptimizer,
    LevenbergMarquardt,
    Optimizer,
    OptimizerFactoryDifferentialEvolution,
    OptimizerFactoryLeastSquares,
    OptimizerFactoryLevenbergMarquardt,
    RegularizationMethod,
    SolverStatus,
    SolverUsageError,
)


# HELPERS ==============================================================================

def _linear(p):
    return np.array([p[1], 2.0 * p[0] + p[1]])


def _linear_jacobian(p):
    return np.array([[0.0, 2.0], [1.0, 1.0]])


ALL_FACTORIES = [
    OptimizerFactoryLevenbergMarquardt(error_tolerance=1e-10),
    OptimizerFactoryLeastSquares(),
    OptimizerFactoryDifferentialEvolution(seed=3),
]


# TESTS: UNIFORM INTERFACE =============================================================

class TestUniformInterface:

    @pytest.mark.parametrize("factory", ALL_FACTORIES, ids=lambda f: type(f).__name__)
    def test_backends_interchangeable(self, factory):
        optimizer = factory.get_optimizer(
            _linear,
            [0.0, 0.0],
            [5.0, 10.0],
            lower_bound=[-10.0, -10.0],
            upper_bound=[10.0, 10.0],
        )
        assert isinstance(optimizer, Optimizer)
        assert optimizer.status is SolverStatus.INITIALIZED
        assert not optimizer.done()

        optimizer.run()

        assert optimizer.done()
        np.testing.assert_allclose(optimizer.best_fit_parameters, [2.5, 5.0], atol=1e-4)
        assert optimizer.root_mean_squared_error < 1e-4

        result = optimizer.result()
        assert result.status.is_terminal
        assert result.iterations == optimizer.iterations

    @pytest.mark.parametrize("factory", ALL_FACTORIES[:2], ids=lambda f: type(f).__name__)
    def test_gradient_backends_report_success(self, factory):
        optimizer = factory.get_optimizer(_linear, [0.0, 0.0], [5.0, 10.0])
        optimizer.run()
        assert optimizer.result().success
        assert optimizer.status is SolverStatus.CONVERGED

    @pytest.mark.parametrize("factory", ALL_FACTORIES, ids=lambda f: type(f).__name__)
    def test_run_once(self, factory):
        optimizer = factory.get_optimizer(
            _linear, [0.0, 0.0], [5.0, 10.0],
            lower_bound=[-10.0, -10.0], upper_bound=[10.0, 10.0],
        )
        optimizer.run()
        with pytest.raises(SolverUsageError):
            optimizer.run()


# TESTS: LEVENBERG-MARQUARDT FACTORY ===================================================

class TestLevenbergMarquardtFactory:

    def test_configuration_forwarded(self):
        factory = OptimizerFactoryLevenbergMarquardt(
            regularization_method="levenberg",
            max_iterations=7,
            error_tolerance=1e-3,
            number_of_threads=3,
            lambda_=0.1,
        )
        optimizer = factory.get_optimizer(
            _linear, [0.0, 0.0], [5.0, 10.0],
            parameter_steps=[1e-6, 1e-6], weights=[1.0, 2.0],
        )

        assert isinstance(optimizer, LevenbergMarquardt)
        assert optimizer.regularization_method is RegularizationMethod.LEVENBERG
        assert optimizer.max_iteration == 7
        assert optimizer.error_tolerance == 1e-3
        assert optimizer.number_of_threads == 3
        assert optimizer.lambda_ == 0.1
        np.testing.assert_array_equal(optimizer.parameter_steps, [1e-6, 1e-6])
        np.testing.assert_array_equal(optimizer.weights, [1.0, 2.0])

    def test_shared_executor(self):
        with ThreadPoolExecutor(max_workers=2) as pool:
            factory = OptimizerFactoryLevenbergMarquardt(executor=pool)
            first = factory.get_optimizer(_linear, [0.0, 0.0], [5.0, 10.0])
            second = factory.get_optimizer(_linear, [1.0, 1.0], [1.0, 2.0])
            first.run()
            second.run()

            assert first.executor is pool
            assert pool.submit(lambda: 1).result() == 1

        np.testing.assert_allclose(second.best_fit_parameters, [0.5, 1.0], atol=1e-10)

    def test_repr(self):
        assert "LEVENBERG_MARQUARDT" in repr(OptimizerFactoryLevenbergMarquardt())


# TESTS: LEAST SQUARES BACKEND =========================================================

class TestLeastSquares:

    def test_bounds_active(self):
        optimizer = LeastSquaresOptimizer(
            _linear, [0.0, 0.0], [5.0, 10.0], upper_bound=[2.0, np.inf]
        )
        optimizer.run()

        best = optimizer.best_fit_parameters
        assert best[0] <= 2.0
        np.testing.assert_allclose(best, [2.0, 5.5], atol=1e-5)

    def test_initial_point_clipped(self):
        optimizer = LeastSquaresOptimizer(
            _linear, [50.0, 0.0], [5.0, 10.0],
            lower_bound=[-5.0, -5.0], upper_bound=[5.0, 10.0],
        )
        optimizer.run()
        np.testing.assert_allclose(optimizer.best_fit_parameters, [2.5, 5.0], atol=1e-6)

    def test_analytic_jacobian(self):
        optimizer = LeastSquaresOptimizer(
            _linear, [0.0, 0.0], [5.0, 10.0], derivatives=_linear_jacobian
        )
        optimizer.run()
        np.testing.assert_allclose(optimizer.best_fit_parameters, [2.5, 5.0], atol=1e-8)

    def test_explicit_parameter_steps(self):
        optimizer = LeastSquaresOptimizer(
            _linear, [0.0, 0.0], [5.0, 10.0], parameter_steps=[1e-6, 1e-6]
        )
        optimizer.run()
        np.testing.assert_allclose(optimizer.best_fit_parameters, [2.5, 5.0], atol=1e-6)

    def test_weighted_rms_error(self):
        optimizer = LeastSquaresOptimizer(
            lambda p: np.array([p[0], p[0]]), [0.0], [0.0, 2.0], weights=[1.0, 3.0]
        )
        optimizer.run()

        #weighted mean is 1.5, weighted mse = (1 * 1.5² + 3 * 0.5²) / 2
        np.testing.assert_allclose(optimizer.best_fit_parameters, [1.5], atol=1e-6)
        assert optimizer.root_mean_squared_error == pytest.approx(math.sqrt(1.5), rel=1e-6)

    def test_evaluation_budget_exhausted(self):
        optimizer = LeastSquaresOptimizer(
            lambda p: np.array([10.0 * (p[1] - p[0] ** 2), 1.0 - p[0]]),
            [-1.2, 1.0],
            [0.0, 0.0],
            max_nfev=2,
        )
        optimizer.run()

        assert optimizer.status is SolverStatus.MAX_ITERATIONS
        assert not optimizer.result().success
        #iterations counts objective evaluations
        assert 1 <= optimizer.iterations <= 3

    def test_scipy_failure_reported_as_diverged(self, monkeypatch):
        def failing_least_squares(fun, x0, **kwargs):
            return OptimizeResult(
                x=np.asarray(x0, dtype=float),
                fun=fun(x0),
                nfev=1,
                status=-1,
                success=False,
                message="improper input parameters",
            )

        monkeypatch.setattr(backends.sci_opt, "least_squares", failing_least_squares)

        optimizer = LeastSquaresOptimizer(_linear, [0.0, 0.0], [5.0, 10.0])
        optimizer.run()

        assert optimizer.status is SolverStatus.DIVERGED
        assert optimizer.iterations == 1
        np.testing.assert_array_equal(optimizer.best_fit_parameters, [0.0, 0.0])

    def test_invalid_bounds(self):
        with pytest.raises(ValueError):
            LeastSquaresOptimizer(
                _linear, [0.0, 0.0], [5.0, 10.0],
                lower_bound=[1.0, 1.0], upper_bound=[0.0, 2.0],
            )

    def test_weights_length(self):
        with pytest.raises(ValueError):
            LeastSquaresOptimizer(_linear, [0.0, 0.0], [5.0, 10.0], weights=[1.0])


# TESTS: DIFFERENTIAL EVOLUTION BACKEND ================================================

class TestDifferentialEvolution:

    def test_requires_finite_bounds(self):
        with pytest.raises(ValueError):
            DifferentialEvolutionOptimizer(
                _linear, [0.0, 0.0], [5.0, 10.0],
                lower_bound=[-1.0, -np.inf], upper_bound=[1.0, 1.0],
            )

    def test_factory_requires_bounds(self):
        with pytest.raises(ValueError):
            OptimizerFactoryDifferentialEvolution().get_optimizer(_linear, [0.0, 0.0], [5.0, 10.0])

    def test_nan_points_never_selected(self):
        def objective(p):
            if p[0] < 3.0:
                return np.array([np.nan, np.nan])
            return _linear(p)

        optimizer = DifferentialEvolutionOptimizer(
            objective, [5.0, 0.0], [5.0, 10.0],
            lower_bound=[-10.0, -10.0], upper_bound=[10.0, 10.0],
            seed=7, polish=False,
        )
        assert optimizer.mean_squared_error(np.array([0.0, 0.0])) == math.inf

        optimizer.run()
        assert optimizer.best_fit_parameters[0] >= 3.0
        assert math.isfinite(optimizer.root_mean_squared_error)

    def test_seed_reproducible(self):
        results = []
        for _ in range(2):
            optimizer = DifferentialEvolutionOptimizer(
                _linear, [0.0, 0.0], [5.0, 10.0],
                lower_bound=[-10.0, -10.0], upper_bound=[10.0, 10.0],
                seed=11, max_iteration=20, polish=False,
            )
            optimizer.run()
            results.append(optimizer.best_fit_parameters)

        np.testing.assert_array_equal(results[0], results[1])

    def test_parallel_generations(self):
        with ThreadPoolExecutor(max_workers=2) as pool:
            optimizer = OptimizerFactoryDifferentialEvolution(seed=5, executor=pool).get_optimizer(
                _linear, [0.0, 0.0], [5.0, 10.0],
                lower_bound=[-10.0, -10.0], upper_bound=[10.0, 10.0],
            )
            optimizer.run()

        np.testing.assert_allclose(optimizer.best_fit_parameters, [2.5, 5.0], atol=1e-4)
