"""Tests for first-order objective functions."""

import jax
import jax.numpy as jnp
import numpy as np

from gradprob_jax import (
    AutoDiffFirstOrderFunction,
    CurvatureHistory,
    QuasiNewtonFunction,
)

# Enable 64-bit precision for numerical accuracy
jax.config.update("jax_enable_x64", True)


def rosenbrock(x, args):
    """Rosenbrock function, minimum at (1, 1)."""
    return (1.0 - x[0]) ** 2 + 100.0 * (x[1] - x[0] ** 2) ** 2, None


def rosenbrock_grad(x, args):
    return jnp.array(
        [
            -2.0 * (1.0 - x[0]) - 400.0 * x[0] * (x[1] - x[0] ** 2),
            200.0 * (x[1] - x[0] ** 2),
        ]
    )


class TestAutoDiffFirstOrderFunction:
    """Tests for evaluation through JAX autodiff."""

    def test_cost_and_gradient(self):
        function = AutoDiffFirstOrderFunction(rosenbrock, 2)
        x = jnp.array([-1.2, 1.0])

        evaluation = function.evaluate(x)

        assert evaluation.success
        np.testing.assert_allclose(evaluation.cost, 24.2)
        np.testing.assert_allclose(evaluation.gradient, rosenbrock_grad(x, None))
        assert function.num_parameters() == 2

    def test_cost_only(self):
        function = AutoDiffFirstOrderFunction(rosenbrock, 2)
        evaluation = function.evaluate(jnp.array([1.0, 1.0]), compute_gradient=False)

        assert evaluation.success
        assert evaluation.gradient is None
        np.testing.assert_allclose(evaluation.cost, 0.0)

    def test_user_supplied_gradient(self):
        calls = []

        def counting_grad(x, args):
            calls.append(1)
            return rosenbrock_grad(x, args)

        function = AutoDiffFirstOrderFunction(rosenbrock, 2, grad_fn=counting_grad)
        x = jnp.array([0.5, 0.5])

        evaluation = function.evaluate(x)

        np.testing.assert_allclose(evaluation.gradient, rosenbrock_grad(x, None))
        assert calls, "grad_fn was not used"

    def test_args_are_forwarded(self):
        def weighted(x, weights):
            return jnp.sum(weights * x**2), None

        function = AutoDiffFirstOrderFunction(
            weighted, 3, args=jnp.array([1.0, 2.0, 3.0])
        )
        evaluation = function.evaluate(jnp.ones(3))

        np.testing.assert_allclose(evaluation.cost, 6.0)
        np.testing.assert_allclose(evaluation.gradient, [2.0, 4.0, 6.0])

    def test_integer_parameters(self):
        function = AutoDiffFirstOrderFunction(rosenbrock, 2)
        evaluation = function.evaluate(np.array([1, 1]))
        assert evaluation.success
        assert jnp.issubdtype(evaluation.gradient.dtype, jnp.floating)

    def test_non_finite_cost_is_unsuccessful(self):
        def log_barrier(x, args):
            return -jnp.sum(jnp.log(x)), None

        function = AutoDiffFirstOrderFunction(log_barrier, 2)

        assert function.evaluate(jnp.array([1.0, 2.0])).success
        assert not function.evaluate(jnp.array([-1.0, 2.0])).success
        assert not function.evaluate(
            jnp.array([0.0, 2.0]), compute_gradient=False
        ).success

    def test_optional_hooks_unsupported(self):
        function = AutoDiffFirstOrderFunction(rosenbrock, 2)
        history = CurvatureHistory(2, 3)

        assert function.evaluate_gradient_norms(jnp.zeros(2), jnp.ones(2)) is None
        assert function.next_direction(None, 0.0, jnp.ones(2), None, history) is None


class TestQuasiNewtonFunction:
    """Tests for the objective that supplies both optional capabilities."""

    def test_evaluation_is_delegated(self):
        inner = AutoDiffFirstOrderFunction(rosenbrock, 2)
        function = QuasiNewtonFunction(inner)
        x = jnp.array([-1.2, 1.0])

        evaluation = function.evaluate(x)

        assert function.num_parameters() == 2
        np.testing.assert_allclose(evaluation.cost, inner.evaluate(x).cost)
        np.testing.assert_allclose(evaluation.gradient, inner.evaluate(x).gradient)

    def test_gradient_norms(self):
        function = QuasiNewtonFunction(AutoDiffFirstOrderFunction(rosenbrock, 2))
        norms = function.evaluate_gradient_norms(jnp.zeros(2), jnp.array([3.0, -4.0]))

        np.testing.assert_allclose(norms.squared_norm, 25.0)
        np.testing.assert_allclose(norms.max_norm, 4.0)

    def test_next_direction(self):
        function = QuasiNewtonFunction(AutoDiffFirstOrderFunction(rosenbrock, 2))
        history = CurvatureHistory(2, 3)

        update = function.next_direction(None, 0.0, jnp.array([6.0, 8.0]), None, history)

        assert update is not None
        assert update.success
        np.testing.assert_array_equal(update.search_direction, [-6.0, -8.0])
