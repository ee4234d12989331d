"""First-order objective functions.

An objective is anything that can evaluate a scalar cost and its gradient at
a point of fixed dimension. Two further capabilities are optional and default
to "unsupported" (``None``), in which case callers fall back to generic code:

- ``evaluate_gradient_norms``: squared L2 and max norms of the gradient, for
  objectives that know a faster way than the generic projection.
- ``next_direction``: the next quasi-Newton search direction.
"""

import abc
from typing import Any, NamedTuple, Optional

import equinox as eqx
import jax
import jax.numpy as jnp
import optimistix as optx
from jaxtyping import ArrayLike

from gradprob_jax.direction import DirectionUpdate, lbfgs_next_direction
from gradprob_jax.history import CurvatureHistoryAccess
from gradprob_jax.types import GradFn, ObjectiveFn, Scalar, Vector
from gradprob_jax.utils import all_finite, args_closure, as_float_array


class Evaluation(NamedTuple):
    """Result of evaluating an objective.

    Attributes:
        cost: Objective value f(x).
        gradient: Gradient of f at x, or None for a cost-only evaluation.
        success: False when the cost or gradient is not usable at this point
            (for instance non-finite). This is recoverable: the minimizer
            should shorten the step, not stop.
    """

    cost: Scalar
    gradient: Optional[Vector]
    success: bool


class GradientNorms(NamedTuple):
    """Squared L2 norm and max-abs norm of a gradient."""

    squared_norm: Scalar
    max_norm: Scalar


class AbstractFirstOrderFunction(eqx.Module):
    """Base class for objectives with a cost and gradient.

    Subclasses implement :meth:`evaluate` and :meth:`num_parameters`, and may
    override the optional hooks.
    """

    @abc.abstractmethod
    def evaluate(self, parameters: ArrayLike, compute_gradient: bool = True) -> Evaluation:
        """Evaluate the cost, and the gradient if ``compute_gradient``."""

    @abc.abstractmethod
    def num_parameters(self) -> int:
        """Dimension of the parameter vector. Constant for the object's lifetime."""

    def evaluate_gradient_norms(
        self, x: ArrayLike, gradient: ArrayLike
    ) -> Optional[GradientNorms]:
        """Gradient norms at x, or None if this objective has no fast path."""
        return None

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
        """Next search direction, or None if this objective does not provide one.

        See :func:`gradprob_jax.direction.lbfgs_next_direction` for the
        meaning of the arguments.
        """
        return None


class AutoDiffFirstOrderFunction(AbstractFirstOrderFunction):
    """Objective whose gradient comes from ``jax.value_and_grad``.

    The objective follows the ``fn(x, args) -> (value, aux)`` convention; aux
    is ignored. A hand-written gradient ``grad_fn(x, args)`` may be supplied
    instead of automatic differentiation. Evaluations are jit-compiled.

    Attributes:
        fn: Objective function.
        n: Number of parameters.
        args: Extra arguments passed to ``fn`` (and ``grad_fn``).
        grad_fn: Optional user-supplied gradient.

    Example:
        >>> import jax.numpy as jnp
        >>> from gradprob_jax import AutoDiffFirstOrderFunction
        >>>
        >>> def objective(x, args):
        ...     return jnp.sum(x**2), None
        >>>
        >>> function = AutoDiffFirstOrderFunction(objective, 2)
        >>> evaluation = function.evaluate(jnp.array([3.0, 4.0]))
    """

    fn: ObjectiveFn = eqx.field(static=True)
    n: int = eqx.field(static=True)
    args: Any = None
    grad_fn: Optional[GradFn] = eqx.field(static=True, default=None)

    def __init__(
        self,
        fn: ObjectiveFn,
        num_parameters: int,
        args: Any = None,
        grad_fn: Optional[GradFn] = None,
    ):
        self.fn = fn
        self.n = num_parameters
        self.args = args
        self.grad_fn = grad_fn

    def num_parameters(self) -> int:
        return self.n

    @eqx.filter_jit
    def _cost(self, x: Vector) -> Scalar:
        value, _ = self.fn(x, self.args)
        return value

    @eqx.filter_jit
    def _cost_and_gradient(self, x: Vector) -> tuple[Scalar, Vector]:
        if self.grad_fn is not None:
            value, _ = self.fn(x, self.args)
            return value, self.grad_fn(x, self.args)
        objective = args_closure(self.fn, self.args)
        (value, _), gradient = jax.value_and_grad(objective, has_aux=True)(x)
        return value, gradient

    def evaluate(self, parameters: ArrayLike, compute_gradient: bool = True) -> Evaluation:
        x = as_float_array(parameters)
        if not compute_gradient:
            cost = self._cost(x)
            return Evaluation(cost=cost, gradient=None, success=all_finite(cost))
        cost, gradient = self._cost_and_gradient(x)
        return Evaluation(
            cost=cost, gradient=gradient, success=all_finite(cost, gradient)
        )


class QuasiNewtonFunction(AbstractFirstOrderFunction):
    """Wraps an objective and provides both optional capabilities.

    Gradient norms are taken directly from the gradient (no projection through
    a manifold, so use this only for Euclidean problems or gradients already in
    the tangent space), and search directions come from the L-BFGS two-loop
    recursion.
    """

    function: AbstractFirstOrderFunction

    def evaluate(self, parameters: ArrayLike, compute_gradient: bool = True) -> Evaluation:
        return self.function.evaluate(parameters, compute_gradient)

    def num_parameters(self) -> int:
        return self.function.num_parameters()

    def evaluate_gradient_norms(
        self, x: ArrayLike, gradient: ArrayLike
    ) -> Optional[GradientNorms]:
        g = as_float_array(gradient)
        return GradientNorms(squared_norm=jnp.dot(g, g), max_norm=optx.max_norm(g))

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
        return lbfgs_next_direction(
            previous_search_direction,
            previous_step_size,
            current_gradient,
            previous_gradient,
            history,
            approximate_eigenvalue_scale,
            use_approximate_eigenvalue_scaling,
        )
