"""Local parameterizations: how steps are applied on a manifold.

A parameterization describes a point x living in an ambient space of size
``global_size()`` that moves along a tangent space of size ``local_size()``:

    x_plus_delta = plus(x, delta),   plus(x, 0) = x

The minimizer takes steps ``delta`` in the tangent space and never adds them
to x directly. The Jacobian of ``plus`` with respect to delta at delta = 0
maps ambient gradients into the tangent space:

    local_gradient = gradient @ J(x),   J(x) = d plus(x, delta) / d delta |_0

``plus`` is written in jax.numpy so the default Jacobian can come from
``jax.jacfwd``.
"""

import abc
from collections.abc import Sequence

import equinox as eqx
import jax
import jax.numpy as jnp
import numpy as np
from jaxtyping import Array, ArrayLike, Float

from gradprob_jax.exceptions import PreconditionError
from gradprob_jax.types import LocalVector, Vector


def _safe_sinc_cos(
    delta: Float[Array, " m"],
) -> tuple[Float[Array, ""], Float[Array, ""]]:
    """sin(|delta|) / |delta| and cos(|delta|), with finite derivatives at 0."""
    squared_norm = jnp.dot(delta, delta)
    nonzero = squared_norm > 0.0
    norm = jnp.sqrt(jnp.where(nonzero, squared_norm, 1.0))
    sin_delta_by_delta = jnp.where(nonzero, jnp.sin(norm) / norm, 1.0)
    cos_delta = jnp.where(nonzero, jnp.cos(norm), 1.0)
    return sin_delta_by_delta, cos_delta


class AbstractLocalParameterization(eqx.Module):
    """Base class for manifolds the parameters are constrained to."""

    @abc.abstractmethod
    def plus(self, x: Vector, delta: LocalVector) -> Vector:
        """Move x along the tangent vector delta."""

    @abc.abstractmethod
    def global_size(self) -> int:
        """Ambient dimension of x."""

    @abc.abstractmethod
    def local_size(self) -> int:
        """Tangent dimension of delta."""

    def compute_jacobian(self, x: ArrayLike) -> Float[Array, "n m"]:
        """Jacobian of ``plus(x, delta)`` with respect to delta at delta = 0."""
        x = jnp.asarray(x)
        zero = jnp.zeros((self.local_size(),), dtype=x.dtype)
        return jax.jacfwd(lambda delta: self.plus(x, delta))(zero)

    def multiply_by_jacobian(
        self, x: ArrayLike, global_matrix: ArrayLike
    ) -> Float[Array, "*rows m"]:
        """Right-multiply ambient row vectors by the Jacobian at x.

        Args:
            x: Point on the manifold.
            global_matrix: Array of shape (global_size,) or
                (num_rows, global_size).

        Returns:
            Array of shape (local_size,) or (num_rows, local_size).
        """
        return jnp.asarray(global_matrix) @ self.compute_jacobian(x)


class IdentityParameterization(AbstractLocalParameterization):
    """Euclidean space: ``plus(x, delta) = x + delta``."""

    size: int = eqx.field(static=True)

    def plus(self, x: Vector, delta: LocalVector) -> Vector:
        return x + delta

    def global_size(self) -> int:
        return self.size

    def local_size(self) -> int:
        return self.size

    def compute_jacobian(self, x: ArrayLike) -> Float[Array, "n m"]:
        return jnp.eye(self.size, dtype=jnp.asarray(x).dtype)


class SubsetParameterization(AbstractLocalParameterization):
    """Hold a subset of the coordinates constant.

    The tangent space consists of the remaining coordinates, in order.

    Attributes:
        size: Ambient dimension.
        constant_parameters: Sorted indices of the coordinates held fixed.
    """

    size: int = eqx.field(static=True)
    constant_parameters: tuple[int, ...] = eqx.field(static=True)

    def __init__(self, size: int, constant_parameters: Sequence[int]):
        constant = sorted(constant_parameters)
        if len(set(constant)) != len(constant):
            raise PreconditionError(
                f"Duplicate constant parameter indices: {list(constant_parameters)}."
            )
        if constant and (constant[0] < 0 or constant[-1] >= size):
            raise PreconditionError(
                f"Constant parameter indices must lie in [0, {size}), "
                f"got {list(constant_parameters)}."
            )
        self.size = size
        self.constant_parameters = tuple(constant)

    @property
    def _free_indices(self) -> np.ndarray:
        constant = set(self.constant_parameters)
        return np.array([i for i in range(self.size) if i not in constant], dtype=int)

    def plus(self, x: Vector, delta: LocalVector) -> Vector:
        return x.at[self._free_indices].add(delta)

    def global_size(self) -> int:
        return self.size

    def local_size(self) -> int:
        return self.size - len(self.constant_parameters)


class HomogeneousVectorParameterization(AbstractLocalParameterization):
    """Points on the sphere of radius ``|x|`` in R^size.

    The tangent space at x is spanned by the first ``size - 1`` columns of a
    Householder reflection H with H e_last = x / |x|, and

        plus(x, delta) = |x| * H [sin(|delta|) / |delta| * delta, cos(|delta|)]

    so the norm of x is preserved by every step.
    """

    size: int = eqx.field(static=True)

    def __check_init__(self):
        if self.size < 2:
            raise PreconditionError(
                "HomogeneousVectorParameterization needs size >= 2, "
                f"got {self.size}."
            )

    def plus(self, x: Vector, delta: LocalVector) -> Vector:
        v, beta = _householder_vector(x)
        sin_delta_by_delta, cos_delta = _safe_sinc_cos(delta)
        y = jnp.concatenate([sin_delta_by_delta * delta, cos_delta[None]])
        return jnp.linalg.norm(x) * (y - v * (beta * jnp.dot(v, y)))

    def global_size(self) -> int:
        return self.size

    def local_size(self) -> int:
        return self.size - 1


def _householder_vector(
    x: Float[Array, " n"],
) -> tuple[Float[Array, " n"], Float[Array, ""]]:
    """Householder vector v (with v[-1] = 1) and beta such that
    (I - beta v v^T) x = |x| e_last (Golub & Van Loan, Algorithm 5.1.1)."""
    head = x[:-1]
    x_pivot = x[-1]
    sigma = jnp.dot(head, head)
    mu = jnp.sqrt(x_pivot * x_pivot + sigma)

    degenerate = sigma <= jnp.finfo(x.dtype).eps
    v_pivot = jnp.where(
        x_pivot <= 0.0,
        x_pivot - mu,
        -sigma / jnp.where(x_pivot > 0.0, x_pivot + mu, 1.0),
    )
    v_pivot = jnp.where(degenerate, 1.0, v_pivot)

    beta = jnp.where(
        degenerate,
        jnp.where(x_pivot < 0.0, 2.0, 0.0),
        2.0 * v_pivot * v_pivot / (sigma + v_pivot * v_pivot),
    )
    v = jnp.concatenate([head / v_pivot, jnp.ones((1,), dtype=x.dtype)])
    return v, beta


class QuaternionParameterization(AbstractLocalParameterization):
    """Unit quaternions [w, x, y, z] updated by the exponential map.

    plus(q, delta) = [cos(|delta|), sin(|delta|) / |delta| * delta] * q,
    with * the Hamilton product.
    """

    def plus(self, x: Vector, delta: LocalVector) -> Vector:
        sin_delta_by_delta, cos_delta = _safe_sinc_cos(delta)
        q_delta = jnp.concatenate([cos_delta[None], sin_delta_by_delta * delta])
        return _quaternion_product(q_delta, x)

    def global_size(self) -> int:
        return 4

    def local_size(self) -> int:
        return 3


def _quaternion_product(
    z: Float[Array, " 4"], w: Float[Array, " 4"]
) -> Float[Array, " 4"]:
    return jnp.stack(
        [
            z[0] * w[0] - z[1] * w[1] - z[2] * w[2] - z[3] * w[3],
            z[0] * w[1] + z[1] * w[0] + z[2] * w[3] - z[3] * w[2],
            z[0] * w[2] - z[1] * w[3] + z[2] * w[0] + z[3] * w[1],
            z[0] * w[3] + z[1] * w[2] - z[2] * w[1] + z[3] * w[0],
        ]
    )
