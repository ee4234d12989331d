"""Exceptions raised by gradprob-jax.

Only caller misuse raises. Data-dependent failures (an objective that cannot
be evaluated at a point, a manifold step that breaks down, a degenerate
curvature pair) are reported through ``success`` flags or ``None`` returns
so the surrounding minimizer can back off or restart.
"""


class GradientProblemError(Exception):
    """Base exception for all gradprob-jax errors."""


class PreconditionError(GradientProblemError):
    """Raised when a caller violates an interface precondition.

    Examples are requesting a Jacobian from an evaluator that has none,
    passing vectors whose size does not match the problem, or composing a
    function and a parameterization of different ambient sizes. These are
    programming errors and are not meant to be caught and retried.
    """
