"""Evaluators: the interface a line search minimizer drives.

:class:`AbstractEvaluator` is the generic contract shared with least-squares
evaluators: evaluate at a state, apply a step, report sizes and timing
statistics. It also supplies the generic fallbacks for the two optional
capabilities:

- gradient norms from the projected gradient ``x - plus(x, -gradient)``;
- search directions from the L-BFGS two-loop recursion.

:class:`GradientProblemEvaluator` adapts a :class:`GradientProblem` to this
contract, preferring the problem's own gradient norms and directions when its
objective provides them.
"""

import abc
import logging
from typing import NamedTuple, Optional

import equinox as eqx
import jax.numpy as jnp
import optimistix as optx
from jaxtyping import ArrayLike

from gradprob_jax.direction import DirectionUpdate, lbfgs_next_direction
from gradprob_jax.exceptions import PreconditionError
from gradprob_jax.execution_summary import (
    CallStatistics,
    ExecutionSummary,
    execution_timer,
)
from gradprob_jax.function import GradientNorms
from gradprob_jax.history import CurvatureHistoryAccess
from gradprob_jax.problem import GradientProblem
from gradprob_jax.types import Scalar, Vector
from gradprob_jax.utils import as_float_array

logger = logging.getLogger(__name__)


class EvaluateOptions(eqx.Module):
    """Options for :meth:`AbstractEvaluator.evaluate`.

    Attributes:
        new_evaluation_point: The state differs from the previous call, so
            cached quantities must not be reused.
    """

    new_evaluation_point: bool = eqx.field(static=True, default=True)


class EvaluatorResult(NamedTuple):
    """Result of :meth:`AbstractEvaluator.evaluate`.

    Attributes:
        cost: Objective value.
        residuals: Residual vector, for evaluators of least-squares problems.
            Always None for scalar objectives.
        gradient: Gradient in the tangent space, or None if not requested.
        success: False if the objective could not be evaluated at this state.
    """

    cost: Scalar
    residuals: Optional[Vector]
    gradient: Optional[Vector]
    success: bool


class AbstractEvaluator(abc.ABC):
    """Generic evaluator contract consumed by a line search minimizer."""

    @abc.abstractmethod
    def evaluate(
        self,
        state: ArrayLike,
        compute_gradient: bool = True,
        jacobian: Optional[object] = None,
        options: EvaluateOptions = EvaluateOptions(),
    ) -> EvaluatorResult:
        """Evaluate the cost (and gradient) at ``state``."""

    @abc.abstractmethod
    def plus(self, state: ArrayLike, delta: ArrayLike) -> Optional[Vector]:
        """Apply a tangent step; None on numerical breakdown."""

    @abc.abstractmethod
    def num_parameters(self) -> int:
        """Size of the state vector."""

    @abc.abstractmethod
    def num_effective_parameters(self) -> int:
        """Size of the tangent space steps are taken in."""

    @abc.abstractmethod
    def num_residuals(self) -> int:
        """Number of residuals."""

    @abc.abstractmethod
    def statistics(self) -> dict[str, CallStatistics]:
        """Timing statistics per call category."""

    @abc.abstractmethod
    def create_jacobian(self) -> Optional[object]:
        """A Jacobian of the right structure, or None if there is none."""

    def evaluate_gradient_norms(
        self, x: ArrayLike, gradient: ArrayLike
    ) -> Optional[GradientNorms]:
        """Norms of the projected gradient ``x - plus(x, -gradient)``.

        On a manifold this measures how far a unit steepest descent step
        actually moves x. Returns None if ``plus`` breaks down.
        """
        x = as_float_array(x)
        projected_gradient_step = self.plus(x, -as_float_array(gradient))
        if projected_gradient_step is None:
            logger.warning(
                "plus(x, -gradient) failed. Unable to compute the gradient norms."
            )
            return None
        projected_gradient = x - projected_gradient_step
        return GradientNorms(
            squared_norm=jnp.dot(projected_gradient, projected_gradient),
            max_norm=optx.max_norm(projected_gradient),
        )

    def next_direction(
        self,
        previous_search_direction: Optional[ArrayLike],
        previous_step_size: float,
        current_gradient: ArrayLike,
        previous_gradient: Optional[ArrayLike],
        history: CurvatureHistoryAccess,
        approximate_eigenvalue_scale: float = 1.0,
        use_approximate_eigenvalue_scaling: bool = False,
    ) -> DirectionUpdate:
        """Next search direction from the L-BFGS two-loop recursion."""
        return lbfgs_next_direction(
            previous_search_direction,
            previous_step_size,
            current_gradient,
            previous_gradient,
            history,
            approximate_eigenvalue_scale,
            use_approximate_eigenvalue_scaling,
        )


class GradientProblemEvaluator(AbstractEvaluator):
    """Evaluator for a :class:`GradientProblem`.

    A gradient problem has a single scalar "residual" and no Jacobian. Every
    call to :meth:`evaluate` is timed twice: under "Evaluator::Total" and
    under "Evaluator::Jacobian" when a gradient is requested, else
    "Evaluator::Residual". The same names are used by least-squares
    evaluators, so statistics from both can be reported together.

    Not safe for concurrent use.
    """

    def __init__(self, problem: GradientProblem):
        self.problem = problem
        self.execution_summary = ExecutionSummary()

    def create_jacobian(self) -> None:
        return None

    def evaluate(
        self,
        state: ArrayLike,
        compute_gradient: bool = True,
        jacobian: Optional[object] = None,
        options: EvaluateOptions = EvaluateOptions(),
    ) -> EvaluatorResult:
        if jacobian is not None:
            raise PreconditionError(
                "GradientProblemEvaluator has no Jacobian; jacobian must be None."
            )
        with execution_timer("Evaluator::Total", self.execution_summary):
            with execution_timer(
                "Evaluator::Jacobian" if compute_gradient else "Evaluator::Residual",
                self.execution_summary,
            ):
                evaluation = self.problem.evaluate(state, compute_gradient)
        return EvaluatorResult(
            cost=evaluation.cost,
            residuals=None,
            gradient=evaluation.gradient,
            success=evaluation.success,
        )

    def plus(self, state: ArrayLike, delta: ArrayLike) -> Optional[Vector]:
        return self.problem.plus(state, delta)

    def evaluate_gradient_norms(
        self, x: ArrayLike, gradient: ArrayLike
    ) -> Optional[GradientNorms]:
        norms = self.problem.evaluate_gradient_norms(x, gradient)
        if norms is not None:
            return norms
        return super().evaluate_gradient_norms(x, gradient)

    def next_direction(
        self,
        previous_search_direction: Optional[ArrayLike],
        previous_step_size: float,
        current_gradient: ArrayLike,
        previous_gradient: Optional[ArrayLike],
        history: CurvatureHistoryAccess,
        approximate_eigenvalue_scale: float = 1.0,
        use_approximate_eigenvalue_scaling: bool = False,
    ) -> DirectionUpdate:
        args = (
            previous_search_direction,
            previous_step_size,
            current_gradient,
            previous_gradient,
            history,
            approximate_eigenvalue_scale,
            use_approximate_eigenvalue_scaling,
        )
        update = self.problem.next_direction(*args)
        if update is not None:
            return update
        return super().next_direction(*args)

    def num_parameters(self) -> int:
        return self.problem.num_parameters()

    def num_effective_parameters(self) -> int:
        return self.problem.num_local_parameters()

    def num_residuals(self) -> int:
        return 1

    def statistics(self) -> dict[str, CallStatistics]:
        return self.execution_summary.statistics()
