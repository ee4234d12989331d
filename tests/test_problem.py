"""Tests for GradientProblem."""

import jax
import jax.numpy as jnp
import numpy as np
import pytest

from gradprob_jax import (
    AutoDiffFirstOrderFunction,
    CurvatureHistory,
    GradientProblem,
    HomogeneousVectorParameterization,
    PreconditionError,
    QuasiNewtonFunction,
    SubsetParameterization,
)

# Enable 64-bit precision for numerical accuracy
jax.config.update("jax_enable_x64", True)


def linear(x, weights):
    return jnp.dot(x, weights), None


def sum_of_squares(x, args):
    return jnp.sum(x**2), None


@pytest.fixture
def euclidean_problem():
    return GradientProblem(AutoDiffFirstOrderFunction(sum_of_squares, 2))


@pytest.fixture
def sphere_problem():
    function = AutoDiffFirstOrderFunction(linear, 2, args=jnp.array([2.0, 3.0]))
    return GradientProblem(function, HomogeneousVectorParameterization(2))


class TestSizes:
    def test_euclidean(self, euclidean_problem):
        assert euclidean_problem.num_parameters() == 2
        assert euclidean_problem.num_local_parameters() == 2

    def test_manifold(self, sphere_problem):
        assert sphere_problem.num_parameters() == 2
        assert sphere_problem.num_local_parameters() == 1

    def test_parameterization_size_mismatch(self):
        function = AutoDiffFirstOrderFunction(sum_of_squares, 3)
        with pytest.raises(PreconditionError):
            GradientProblem(function, HomogeneousVectorParameterization(2))


class TestEvaluate:
    def test_euclidean_gradient(self, euclidean_problem):
        evaluation = euclidean_problem.evaluate(jnp.array([3.0, 4.0]))

        assert evaluation.success
        np.testing.assert_allclose(evaluation.cost, 25.0)
        np.testing.assert_allclose(evaluation.gradient, [6.0, 8.0])

    def test_gradient_is_mapped_to_tangent_space(self, sphere_problem):
        """At x = (0, 1) the tangent direction is e_0, so (2, 3) -> (2,)."""
        evaluation = sphere_problem.evaluate(jnp.array([0.0, 1.0]))

        assert evaluation.success
        np.testing.assert_allclose(evaluation.cost, 3.0)
        assert evaluation.gradient.shape == (1,)
        np.testing.assert_allclose(evaluation.gradient, [2.0], atol=1e-12)

    def test_subset_gradient_drops_constant_entries(self):
        function = AutoDiffFirstOrderFunction(sum_of_squares, 3)
        problem = GradientProblem(function, SubsetParameterization(3, [1]))

        evaluation = problem.evaluate(jnp.array([1.0, 2.0, 3.0]))

        np.testing.assert_allclose(evaluation.gradient, [2.0, 6.0])

    def test_cost_only(self, sphere_problem):
        evaluation = sphere_problem.evaluate(
            jnp.array([0.0, 1.0]), compute_gradient=False
        )
        assert evaluation.gradient is None
        np.testing.assert_allclose(evaluation.cost, 3.0)

    def test_repeated_evaluation_is_identical(self, sphere_problem):
        x = jnp.array([0.6, 0.8])
        first = sphere_problem.evaluate(x)
        second = sphere_problem.evaluate(x)

        np.testing.assert_array_equal(first.cost, second.cost)
        np.testing.assert_array_equal(first.gradient, second.gradient)

    def test_wrong_parameter_size(self, euclidean_problem):
        with pytest.raises(PreconditionError):
            euclidean_problem.evaluate(jnp.ones(3))

    def test_failure_is_reported(self):
        def sqrt_cost(x, args):
            return jnp.sum(jnp.sqrt(x)), None

        problem = GradientProblem(AutoDiffFirstOrderFunction(sqrt_cost, 2))
        assert not problem.evaluate(jnp.array([-1.0, 1.0])).success


class TestPlus:
    def test_euclidean(self, euclidean_problem):
        result = euclidean_problem.plus(jnp.array([1.0, 2.0]), jnp.array([0.5, -1.0]))
        np.testing.assert_array_equal(result, [1.5, 1.0])

    def test_manifold_step_stays_on_sphere(self, sphere_problem):
        result = sphere_problem.plus(jnp.array([0.0, 1.0]), jnp.array([jnp.pi / 2]))
        np.testing.assert_allclose(result, [1.0, 0.0], atol=1e-12)

    def test_non_finite_step_returns_none(self, euclidean_problem):
        assert euclidean_problem.plus(jnp.zeros(2), jnp.array([jnp.inf, 0.0])) is None

    def test_delta_must_have_local_size(self, sphere_problem):
        with pytest.raises(PreconditionError):
            sphere_problem.plus(jnp.array([0.0, 1.0]), jnp.zeros(2))


class TestOptionalHooks:
    def test_unsupported_by_default(self, euclidean_problem):
        history = CurvatureHistory(2, 3)
        assert euclidean_problem.evaluate_gradient_norms(jnp.zeros(2), jnp.ones(2)) is None
        assert (
            euclidean_problem.next_direction(None, 0.0, jnp.ones(2), None, history)
            is None
        )

    def test_forwarded_from_objective(self):
        function = QuasiNewtonFunction(AutoDiffFirstOrderFunction(sum_of_squares, 2))
        problem = GradientProblem(function)
        history = CurvatureHistory(2, 3)

        norms = problem.evaluate_gradient_norms(jnp.zeros(2), jnp.array([3.0, -4.0]))
        update = problem.next_direction(None, 0.0, jnp.array([3.0, -4.0]), None, history)

        np.testing.assert_allclose(norms.squared_norm, 25.0)
        np.testing.assert_array_equal(update.search_direction, [-3.0, 4.0])
