"""L-BFGS search directions for a line search minimizer.

:class:`LBFGSSearchDirection` is the minimizer-side owner of the curvature
history. Each iteration it hands the history to the evaluator's
``next_direction`` together with the previous direction, step size and
gradient. If the update fails (non-finite values, or not a descent direction)
the history is discarded and the steepest descent direction is used instead.

Choosing the step size along the returned direction is the line search's job
and is not done here.
"""

import logging
from typing import Optional

import equinox as eqx
import jax
import jax.numpy as jnp
import optimistix as optx
from jaxtyping import ArrayLike

from gradprob_jax.direction import DirectionUpdate
from gradprob_jax.evaluator import AbstractEvaluator
from gradprob_jax.history import CurvatureHistory
from gradprob_jax.utils import as_float_array

logger = logging.getLogger(__name__)


class SearchDirectionOptions(eqx.Module):
    """Configuration of :class:`LBFGSSearchDirection`.

    Attributes:
        max_lbfgs_rank: Number of curvature pairs kept (typically 5-20).
        use_approximate_eigenvalue_scaling: Scale the initial inverse Hessian
            by s^T y / y^T y of the newest pair instead of the identity.
        secant_tolerance: Pairs with s^T y at or below this are not stored.
    """

    max_lbfgs_rank: int = eqx.field(static=True, default=20)
    use_approximate_eigenvalue_scaling: bool = eqx.field(static=True, default=False)
    secant_tolerance: float = 1e-14


class LBFGSSearchDirection:
    """Stateful L-BFGS direction generator for one minimizer loop.

    Example:
        >>> direction = LBFGSSearchDirection(evaluator)
        >>> update = direction.next_direction(gradient)  # first iteration
        >>> # ... line search picks step_size, move, re-evaluate gradient ...
        >>> update = direction.next_direction(gradient, step_size)
    """

    def __init__(
        self,
        evaluator: AbstractEvaluator,
        options: Optional[SearchDirectionOptions] = None,
    ):
        self.evaluator = evaluator
        self.options = options if options is not None else SearchDirectionOptions()
        self.history = CurvatureHistory(
            evaluator.num_effective_parameters(),
            self.options.max_lbfgs_rank,
            secant_tolerance=self.options.secant_tolerance,
        )
        self._previous_search_direction: Optional[jax.Array] = None
        self._previous_gradient: Optional[jax.Array] = None

    def reset(self) -> None:
        """Forget the history; the next direction is steepest descent."""
        self.history.reset()
        self._previous_search_direction = None
        self._previous_gradient = None

    def next_direction(
        self, gradient: ArrayLike, previous_step_size: float = 0.0
    ) -> DirectionUpdate:
        """Search direction at the current iterate.

        Args:
            gradient: Gradient at the current iterate (tangent space).
            previous_step_size: Step size the line search accepted along the
                previously returned direction. Ignored on the first call.

        Returns:
            The update. ``success`` is False only if even the steepest
            descent fallback is not a descent direction (zero gradient).
        """
        gradient = as_float_array(gradient)
        update = self.evaluator.next_direction(
            self._previous_search_direction,
            previous_step_size,
            gradient,
            self._previous_gradient,
            self.history,
            self.history.approximate_eigenvalue_scale,
            self.options.use_approximate_eigenvalue_scaling,
        )

        if not update.success:
            logger.warning(
                "Numerical failure in L-BFGS update, restarting with steepest "
                "descent. |gradient|_max = %g.",
                float(optx.max_norm(gradient)),
            )
            self.reset()
            search_direction = -gradient
            directional_derivative = jnp.dot(search_direction, gradient)
            update = DirectionUpdate(
                search_direction=search_direction,
                search_direction_dot_current_gradient=directional_derivative,
                approximate_eigenvalue_scale=jnp.asarray(1.0, dtype=gradient.dtype),
                success=bool(directional_derivative < 0.0),
            )

        self._previous_search_direction = update.search_direction
        self._previous_gradient = gradient
        return update
