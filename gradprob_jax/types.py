"""Type definitions for gradprob-jax.

This module contains type aliases used throughout the package.
Array annotations use jaxtyping; the numerical kernels check them at
runtime with beartype.
"""

from collections.abc import Callable
from typing import Any

import numpy as np
from jaxtyping import Array, Float

# Type aliases for common array shapes
Scalar = Float[Array, ""]
Vector = Float[Array, " n"]

# Tangent-space vectors (search directions, projected gradients)
LocalVector = Float[Array, " m"]

# Caller-owned storage for the curvature history
HistoryColumn = Float[np.ndarray, " m"]
HistoryCell = Float[np.ndarray, ""]

# Objective function type: takes parameters and args, returns (value, aux)
ObjectiveFn = Callable[[Vector, Any], tuple[Scalar, Any]]

# Gradient function type: takes parameters and args, returns gradient of objective
# grad_fn(x, args) -> ∇f(x)
GradFn = Callable[[Vector, Any], Vector]
