"""Unconstrained gradient problems.

A :class:`GradientProblem` owns an objective and, optionally, the local
parameterization of the manifold its parameters live on. It is the single
object a first-order minimizer needs: cost and gradient, how to apply a step,
and the optional gradient-norm and search-direction hooks of the objective.

When a parameterization is present the minimizer works in its tangent space:
steps go through ``parameterization.plus`` and the gradient returned by
:meth:`GradientProblem.evaluate` is the ambient gradient mapped through the
Jacobian of ``plus``, so it has ``num_local_parameters()`` entries.

A problem is not safe to use from several threads at once.
"""

from typing import Optional

import equinox as eqx
import jax.numpy as jnp
from jaxtyping import ArrayLike

from gradprob_jax.direction import DirectionUpdate
from gradprob_jax.exceptions import PreconditionError
from gradprob_jax.function import AbstractFirstOrderFunction, Evaluation, GradientNorms
from gradprob_jax.history import CurvatureHistoryAccess
from gradprob_jax.parameterization import AbstractLocalParameterization
from gradprob_jax.types import Vector
from gradprob_jax.utils import all_finite, as_float_array


class GradientProblem(eqx.Module):
    """An objective together with an optional manifold.

    Attributes:
        function: The objective.
        parameterization: Manifold of the parameters, or None for Euclidean
            space.

    Example:
        >>> import jax.numpy as jnp
        >>> from gradprob_jax import (
        ...     AutoDiffFirstOrderFunction,
        ...     GradientProblem,
        ...     HomogeneousVectorParameterization,
        ... )
        >>>
        >>> def objective(x, args):
        ...     return jnp.dot(x, args), None
        >>>
        >>> function = AutoDiffFirstOrderFunction(objective, 3, args=jnp.ones(3))
        >>> problem = GradientProblem(function, HomogeneousVectorParameterization(3))
        >>> problem.num_local_parameters()
        2
    """

    function: AbstractFirstOrderFunction
    parameterization: Optional[AbstractLocalParameterization] = None

    def __check_init__(self):
        if self.parameterization is not None and (
            self.function.num_parameters() != self.parameterization.global_size()
        ):
            raise PreconditionError(
                f"The function has {self.function.num_parameters()} parameters "
                "but the parameterization has global size "
                f"{self.parameterization.global_size()}."
            )

    def num_parameters(self) -> int:
        return self.function.num_parameters()

    def num_local_parameters(self) -> int:
        if self.parameterization is None:
            return self.num_parameters()
        return self.parameterization.local_size()

    def _check_size(self, name: str, array: Vector, expected: int) -> None:
        if array.shape != (expected,):
            raise PreconditionError(
                f"{name} has shape {array.shape}, expected ({expected},)."
            )

    def evaluate(self, parameters: ArrayLike, compute_gradient: bool = True) -> Evaluation:
        """Cost, and the (tangent space) gradient if ``compute_gradient``."""
        x = as_float_array(parameters)
        self._check_size("parameters", x, self.num_parameters())

        evaluation = self.function.evaluate(x, compute_gradient)
        if (
            not compute_gradient
            or self.parameterization is None
            or not evaluation.success
        ):
            return evaluation

        local_gradient = self.parameterization.multiply_by_jacobian(
            x, evaluation.gradient
        )
        return evaluation._replace(
            gradient=local_gradient, success=all_finite(local_gradient)
        )

    def plus(self, x: ArrayLike, delta: ArrayLike) -> Optional[Vector]:
        """Apply the tangent step delta to x; None on numerical breakdown."""
        x = as_float_array(x)
        delta = jnp.asarray(delta, dtype=x.dtype)
        self._check_size("x", x, self.num_parameters())
        self._check_size("delta", delta, self.num_local_parameters())

        if self.parameterization is None:
            x_plus_delta = x + delta
        else:
            x_plus_delta = self.parameterization.plus(x, delta)

        if not all_finite(x_plus_delta):
            return None
        return x_plus_delta

    def evaluate_gradient_norms(
        self, x: ArrayLike, gradient: ArrayLike
    ) -> Optional[GradientNorms]:
        """The objective's gradient norms, or None if it does not provide them."""
        return self.function.evaluate_gradient_norms(x, gradient)

    def next_direction(
        self,
        previous_search_direction: Optional[ArrayLike],
        previous_step_size: float,
        current_gradient: ArrayLike,
        previous_gradient: Optional[ArrayLike],
        history: CurvatureHistoryAccess,
        approximate_eigenvalue_scale: float = 1.0,
        use_approximate_eigenvalue_scaling: bool = False,
    ) -> Optional[DirectionUpdate]:
        """The objective's next search direction, or None if it does not provide one."""
        return self.function.next_direction(
            previous_search_direction,
            previous_step_size,
            current_gradient,
            previous_gradient,
            history,
            approximate_eigenvalue_scale,
            use_approximate_eigenvalue_scaling,
        )
