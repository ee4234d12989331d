from typing import Any, Callable, TypeVar

import jax
import jax.numpy as jnp

T = TypeVar("T")


def args_closure(
    fn: Callable[[jax.Array, T], Any], args: T
) -> Callable[[jax.Array], Any]:
    def wrapped(x: jax.Array) -> Any:
        return fn(x, args)

    return wrapped


def all_finite(*arrays: Any) -> bool:
    """True when every entry of every (non-None) array is finite."""
    return all(bool(jnp.all(jnp.isfinite(a))) for a in arrays if a is not None)


def as_float_array(x: Any) -> jax.Array:
    """Convert to a jax array, promoting integer input to the default float."""
    array = jnp.asarray(x)
    if not jnp.issubdtype(array.dtype, jnp.inexact):
        array = array.astype(float)
    return array
