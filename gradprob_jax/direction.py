"""L-BFGS search direction via the two-loop recursion.

Given the gradient at the current iterate, the previous search direction and
step size, and the previous gradient, this module computes the next quasi-Newton
search direction

    d = -H g

where H is the limited-memory BFGS approximation to the inverse Hessian built
from the last k curvature pairs (Nocedal & Wright, Algorithm 7.4):

    q = g
    for i = newest ... oldest:
        alpha_i = (s_i^T q) / (s_i^T y_i)
        q = q - alpha_i * y_i
    r = gamma * q
    for i = oldest ... newest:
        beta_i = (y_i^T r) / (s_i^T y_i)
        r = r + (alpha_i - beta_i) * s_i
    d = -r

The pairs are never owned here. They are written and read through a
:class:`~gradprob_jax.history.CurvatureHistoryAccess` supplied by the caller,
one slot at a time, so the storage layout is entirely the caller's business.

The history access is plain Python, so the recursion runs eagerly; the
per-pair arithmetic is jit-compiled.
"""

import itertools
import logging
from typing import NamedTuple, Optional

import jax
import jax.numpy as jnp
import numpy as np
from beartype import beartype
from jaxtyping import Array, ArrayLike, Float, jaxtyped

from gradprob_jax.exceptions import PreconditionError
from gradprob_jax.history import CurvatureHistoryAccess, ReadSlot
from gradprob_jax.types import LocalVector, Scalar
from gradprob_jax.utils import all_finite, as_float_array

logger = logging.getLogger(__name__)


class DirectionUpdate(NamedTuple):
    """Result of one direction update.

    Attributes:
        search_direction: The new search direction d.
        search_direction_dot_current_gradient: d^T g, strictly negative
            for a descent direction.
        approximate_eigenvalue_scale: The inverse Hessian scaling in use after
            this update.
        success: False if a non-finite value appeared or d is not a descent
            direction. The caller should then restart the history or take a
            steepest descent step.
    """

    search_direction: LocalVector
    search_direction_dot_current_gradient: Scalar
    approximate_eigenvalue_scale: Scalar
    success: bool


@jax.jit
@jaxtyped(typechecker=beartype)
def _curvature_pair(
    previous_search_direction: Float[Array, " m"],
    previous_step_size: Scalar,
    current_gradient: Float[Array, " m"],
    previous_gradient: Float[Array, " m"],
) -> tuple[Float[Array, " m"], Float[Array, " m"], Scalar]:
    delta_x = previous_step_size * previous_search_direction
    delta_gradient = current_gradient - previous_gradient
    return delta_x, delta_gradient, jnp.dot(delta_x, delta_gradient)


@jax.jit
@jaxtyped(typechecker=beartype)
def _backward_step(
    q: Float[Array, " m"],
    delta_x: Float[Array, " m"],
    delta_gradient: Float[Array, " m"],
    delta_x_dot_delta_gradient: Scalar,
) -> tuple[Float[Array, " m"], Scalar]:
    alpha = jnp.dot(delta_x, q) / delta_x_dot_delta_gradient
    return q - alpha * delta_gradient, alpha


@jax.jit
@jaxtyped(typechecker=beartype)
def _forward_step(
    r: Float[Array, " m"],
    delta_x: Float[Array, " m"],
    delta_gradient: Float[Array, " m"],
    delta_x_dot_delta_gradient: Scalar,
    alpha: Scalar,
) -> Float[Array, " m"]:
    beta = jnp.dot(delta_gradient, r) / delta_x_dot_delta_gradient
    return r + (alpha - beta) * delta_x


def _check_shape(name: str, array, gradient: jax.Array) -> None:
    if array.shape != gradient.shape:
        raise PreconditionError(
            f"{name} has shape {array.shape}, but the gradient has shape "
            f"{gradient.shape}."
        )


def _slot_arrays(slot: ReadSlot, dtype) -> tuple[jax.Array, jax.Array, jax.Array]:
    return (
        jnp.asarray(slot.delta_x, dtype=dtype),
        jnp.asarray(slot.delta_gradient, dtype=dtype),
        jnp.asarray(slot.delta_x_dot_delta_gradient, dtype=dtype),
    )


def lbfgs_next_direction(
    previous_search_direction: Optional[ArrayLike],
    previous_step_size: float,
    current_gradient: ArrayLike,
    previous_gradient: Optional[ArrayLike],
    history: CurvatureHistoryAccess,
    approximate_eigenvalue_scale: float = 1.0,
    use_approximate_eigenvalue_scaling: bool = False,
) -> DirectionUpdate:
    """Compute the next L-BFGS search direction.

    First the newest curvature pair is formed:

        s = previous_step_size * previous_search_direction
        y = current_gradient - previous_gradient

    and, if s^T y is finite and positive, offered to
    ``history.acquire_write_slot(s^T y)``. The history may refuse it too (for
    instance below a secant tolerance); if it returns a slot, s, y and s^T y
    are written into it, and when approximate eigenvalue scaling is enabled
    the scaling gamma = s^T y / y^T y is refreshed and written too.

    Then every stored pair is visited newest to oldest and back again through
    ``history.acquire_read_slot(age)``, with age counting up from 0 until the
    history returns None.

    On the first iteration pass ``previous_search_direction=None`` (and/or
    ``previous_gradient=None``): no pair is formed, and with an empty history
    the result is the steepest descent direction, scaled by
    ``approximate_eigenvalue_scale`` if scaling is enabled.

    Args:
        previous_search_direction: Direction used by the previous iteration,
            or None on the first iteration.
        previous_step_size: Step size accepted along that direction.
        current_gradient: Gradient at the current iterate (tangent space).
        previous_gradient: Gradient at the previous iterate, or None.
        history: Caller-owned curvature pair storage.
        approximate_eigenvalue_scale: Current initial inverse Hessian scaling.
        use_approximate_eigenvalue_scaling: Scale the initial inverse Hessian
            by gamma instead of using the identity.

    Returns:
        A DirectionUpdate. ``success`` is False if any value became
        non-finite or the result is not a strict descent direction.

    Raises:
        PreconditionError: If the vectors, or the slots handed out by the
            history, do not all have the same shape.
    """
    gradient = as_float_array(current_gradient)
    dtype = gradient.dtype
    scale = jnp.asarray(approximate_eigenvalue_scale, dtype=dtype)
    if gradient.ndim != 1:
        raise PreconditionError(
            f"current_gradient must be a vector, got shape {gradient.shape}."
        )

    if previous_search_direction is not None and previous_gradient is not None:
        previous_search_direction = jnp.asarray(previous_search_direction, dtype=dtype)
        previous_gradient = jnp.asarray(previous_gradient, dtype=dtype)
        _check_shape("previous_search_direction", previous_search_direction, gradient)
        _check_shape("previous_gradient", previous_gradient, gradient)

        delta_x, delta_gradient, delta_x_dot_delta_gradient = _curvature_pair(
            previous_search_direction,
            jnp.asarray(previous_step_size, dtype=dtype),
            gradient,
            previous_gradient,
        )
        if not all_finite(delta_x, delta_gradient):
            logger.warning("Non-finite curvature pair in L-BFGS update.")
            return _failed_update(gradient, scale)

        rho_inv = float(delta_x_dot_delta_gradient)
        if not np.isfinite(rho_inv) or rho_inv <= 0.0:
            logger.debug(
                "Skipping L-BFGS update, delta_x . delta_gradient = %g <= 0.",
                rho_inv,
            )
            slot = None
        else:
            slot = history.acquire_write_slot(rho_inv)
        if slot is not None:
            _check_shape("delta_x slot", slot.delta_x, gradient)
            _check_shape("delta_gradient slot", slot.delta_gradient, gradient)
            slot.delta_x[...] = np.asarray(delta_x)
            slot.delta_gradient[...] = np.asarray(delta_gradient)
            slot.delta_x_dot_delta_gradient[...] = np.asarray(
                delta_x_dot_delta_gradient
            )
            if use_approximate_eigenvalue_scaling:
                # gamma = s^T y / y^T y (Nocedal & Wright, eq. 7.20)
                scale = delta_x_dot_delta_gradient / jnp.dot(
                    delta_gradient, delta_gradient
                )
                slot.approximate_eigenvalue_scale[...] = np.asarray(scale)

    # Backward pass, newest to oldest
    q = gradient
    visited = []
    for age in itertools.count():
        read_slot = history.acquire_read_slot(age)
        if read_slot is None:
            break
        _check_shape("stored delta_x", read_slot.delta_x, gradient)
        pair = _slot_arrays(read_slot, dtype)
        q, alpha = _backward_step(q, *pair)
        visited.append((pair, alpha))

    r = scale * q if use_approximate_eigenvalue_scaling else q

    # Forward pass, oldest to newest
    for pair, alpha in reversed(visited):
        r = _forward_step(r, *pair, alpha)

    search_direction = -r
    search_direction_dot_current_gradient = jnp.dot(search_direction, gradient)

    if not all_finite(search_direction, search_direction_dot_current_gradient):
        logger.warning("Non-finite search direction in L-BFGS update.")
        return DirectionUpdate(
            search_direction, search_direction_dot_current_gradient, scale, False
        )

    if search_direction_dot_current_gradient >= 0.0:
        logger.warning(
            "Numerical failure in L-BFGS update: search direction is not a "
            "descent direction, search_direction . gradient = %g.",
            float(search_direction_dot_current_gradient),
        )
        return DirectionUpdate(
            search_direction, search_direction_dot_current_gradient, scale, False
        )

    return DirectionUpdate(
        search_direction, search_direction_dot_current_gradient, scale, True
    )


def _failed_update(gradient: jax.Array, scale: jax.Array) -> DirectionUpdate:
    nan_direction = jnp.full_like(gradient, jnp.nan)
    nan_dot = jnp.asarray(jnp.nan, dtype=gradient.dtype)
    return DirectionUpdate(nan_direction, nan_dot, scale, False)
