"""gradprob-jax: unconstrained gradient problems and L-BFGS directions in JAX.

This package provides the first-order core of a line search minimizer:
objectives that evaluate a cost and gradient, manifolds (local
parameterizations) that define how steps are applied, a problem/evaluator
layer a minimizer drives, and the limited-memory BFGS two-loop recursion
that turns gradient history into search directions. The curvature history is
owned by the caller and accessed through slot views, so its storage layout is
independent of the recursion.
"""

from gradprob_jax.direction import DirectionUpdate, lbfgs_next_direction
from gradprob_jax.evaluator import (
    AbstractEvaluator,
    EvaluateOptions,
    EvaluatorResult,
    GradientProblemEvaluator,
)
from gradprob_jax.exceptions import GradientProblemError, PreconditionError
from gradprob_jax.execution_summary import (
    CallStatistics,
    ExecutionSummary,
    execution_timer,
)
from gradprob_jax.function import (
    AbstractFirstOrderFunction,
    AutoDiffFirstOrderFunction,
    Evaluation,
    GradientNorms,
    QuasiNewtonFunction,
)
from gradprob_jax.history import (
    CurvatureHistory,
    CurvatureHistoryAccess,
    ReadSlot,
    WriteSlot,
)
from gradprob_jax.parameterization import (
    AbstractLocalParameterization,
    HomogeneousVectorParameterization,
    IdentityParameterization,
    QuaternionParameterization,
    SubsetParameterization,
)
from gradprob_jax.problem import GradientProblem
from gradprob_jax.search import LBFGSSearchDirection, SearchDirectionOptions
from gradprob_jax.types import GradFn, ObjectiveFn

__all__ = [
    # Objectives
    "AbstractFirstOrderFunction",
    "AutoDiffFirstOrderFunction",
    "QuasiNewtonFunction",
    "Evaluation",
    "GradientNorms",
    # Types
    "ObjectiveFn",
    "GradFn",
    # Manifolds
    "AbstractLocalParameterization",
    "IdentityParameterization",
    "SubsetParameterization",
    "HomogeneousVectorParameterization",
    "QuaternionParameterization",
    # Problem and evaluator
    "GradientProblem",
    "AbstractEvaluator",
    "GradientProblemEvaluator",
    "EvaluateOptions",
    "EvaluatorResult",
    # Timing
    "CallStatistics",
    "ExecutionSummary",
    "execution_timer",
    # L-BFGS
    "CurvatureHistory",
    "CurvatureHistoryAccess",
    "WriteSlot",
    "ReadSlot",
    "DirectionUpdate",
    "lbfgs_next_direction",
    "LBFGSSearchDirection",
    "SearchDirectionOptions",
    # Errors
    "GradientProblemError",
    "PreconditionError",
]
