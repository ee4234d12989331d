"""Tests for local parameterizations."""

import jax
import jax.numpy as jnp
import numpy as np
import pytest

from gradprob_jax import (
    HomogeneousVectorParameterization,
    IdentityParameterization,
    PreconditionError,
    QuaternionParameterization,
    SubsetParameterization,
)

# Enable 64-bit precision for numerical accuracy
jax.config.update("jax_enable_x64", True)


class TestIdentityParameterization:
    def test_plus_and_jacobian(self):
        param = IdentityParameterization(3)
        x = jnp.array([1.0, 2.0, 3.0])
        delta = jnp.array([0.5, -1.0, 0.0])

        np.testing.assert_array_equal(param.plus(x, delta), [1.5, 1.0, 3.0])
        np.testing.assert_array_equal(param.compute_jacobian(x), np.eye(3))
        assert param.global_size() == param.local_size() == 3

    def test_multiply_by_jacobian_is_identity(self):
        param = IdentityParameterization(2)
        gradient = jnp.array([3.0, -4.0])
        np.testing.assert_array_equal(
            param.multiply_by_jacobian(jnp.zeros(2), gradient), gradient
        )


class TestSubsetParameterization:
    def test_plus_skips_constant_coordinates(self):
        param = SubsetParameterization(4, [3, 1])
        x = jnp.array([1.0, 2.0, 3.0, 4.0])

        result = param.plus(x, jnp.array([10.0, 20.0]))

        np.testing.assert_array_equal(result, [11.0, 2.0, 23.0, 4.0])
        assert param.local_size() == 2
        assert param.constant_parameters == (1, 3)

    def test_jacobian_selects_free_coordinates(self):
        param = SubsetParameterization(4, [1, 3])
        x = jnp.array([1.0, 2.0, 3.0, 4.0])

        expected = np.array([[1.0, 0.0], [0.0, 0.0], [0.0, 1.0], [0.0, 0.0]])
        np.testing.assert_array_equal(param.compute_jacobian(x), expected)
        np.testing.assert_array_equal(
            param.multiply_by_jacobian(x, jnp.array([1.0, 2.0, 3.0, 4.0])),
            [1.0, 3.0],
        )

    def test_multiply_by_jacobian_rows(self):
        param = SubsetParameterization(3, [0])
        rows = jnp.arange(6.0).reshape(2, 3)
        result = param.multiply_by_jacobian(jnp.zeros(3), rows)
        np.testing.assert_array_equal(result, [[1.0, 2.0], [4.0, 5.0]])

    @pytest.mark.parametrize(
        "constant",
        [[0, 0], [-1], [3], [0, 1, 2, 3]],
        ids=["duplicate", "negative", "out_of_range", "too_many"],
    )
    def test_invalid_constant_parameters(self, constant):
        with pytest.raises(PreconditionError):
            SubsetParameterization(3, constant)


class TestHomogeneousVectorParameterization:
    def test_requires_at_least_two_coordinates(self):
        with pytest.raises(PreconditionError):
            HomogeneousVectorParameterization(1)

    @pytest.mark.parametrize(
        "x",
        [[1.0, 2.0, 2.0], [0.0, 0.0, -2.0], [0.0, 0.0, 5.0], [-3.0, 0.0, 4.0]],
    )
    def test_zero_step_returns_x(self, x):
        param = HomogeneousVectorParameterization(3)
        x = jnp.array(x)
        np.testing.assert_allclose(param.plus(x, jnp.zeros(2)), x, atol=1e-12)

    def test_plus_preserves_norm(self):
        param = HomogeneousVectorParameterization(3)
        x = jnp.array([1.0, 2.0, 2.0])

        for delta in ([0.1, -0.2], [1.0, 0.5], [3.0, 0.0]):
            result = param.plus(x, jnp.array(delta))
            np.testing.assert_allclose(jnp.linalg.norm(result), 3.0, rtol=1e-12)

    def test_jacobian_spans_tangent_space(self):
        """J^T J = |x|^2 I and x^T J = 0."""
        param = HomogeneousVectorParameterization(4)
        x = jnp.array([1.0, -2.0, 0.5, 3.0])

        jacobian = param.compute_jacobian(x)

        assert jacobian.shape == (4, 3)
        np.testing.assert_allclose(
            jacobian.T @ jacobian, jnp.dot(x, x) * np.eye(3), atol=1e-12
        )
        np.testing.assert_allclose(x @ jacobian, np.zeros(3), atol=1e-12)
        assert np.all(np.isfinite(jacobian))

    def test_jacobian_at_pole(self):
        param = HomogeneousVectorParameterization(2)
        jacobian = param.compute_jacobian(jnp.array([0.0, 1.0]))
        np.testing.assert_allclose(jacobian, [[1.0], [0.0]], atol=1e-12)


class TestQuaternionParameterization:
    def test_rotation_about_x(self):
        param = QuaternionParameterization()
        identity = jnp.array([1.0, 0.0, 0.0, 0.0])

        result = param.plus(identity, jnp.array([0.3, 0.0, 0.0]))

        np.testing.assert_allclose(
            result, [np.cos(0.3), np.sin(0.3), 0.0, 0.0], rtol=1e-12
        )

    def test_zero_step_returns_x(self):
        param = QuaternionParameterization()
        q = jnp.array([0.5, 0.5, -0.5, 0.5])
        np.testing.assert_allclose(param.plus(q, jnp.zeros(3)), q, atol=1e-12)

    def test_plus_preserves_unit_norm(self):
        param = QuaternionParameterization()
        q = jnp.array([0.5, 0.5, -0.5, 0.5])
        result = param.plus(q, jnp.array([0.2, -0.7, 1.1]))
        np.testing.assert_allclose(jnp.linalg.norm(result), 1.0, rtol=1e-12)

    def test_jacobian_at_identity(self):
        param = QuaternionParameterization()
        jacobian = param.compute_jacobian(jnp.array([1.0, 0.0, 0.0, 0.0]))

        expected = np.vstack([np.zeros((1, 3)), np.eye(3)])
        np.testing.assert_allclose(jacobian, expected, atol=1e-12)
        assert param.global_size() == 4
        assert param.local_size() == 3
